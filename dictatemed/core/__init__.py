"""
Core utilities and infrastructure for DictateMED.

This package provides core functionality including logging configuration,
error types, database setup, the LLM client and object storage.
"""

from dictatemed.core.logging_config import get_logger, setup_logging

__all__ = ["get_logger", "setup_logging"]
