"""
Exception handlers for the DictateMED server.

This package maps domain errors to JSON responses and provides a global
handler for anything unexpected.
"""

from .global_handler import setup_exception_handlers

__all__ = ["setup_exception_handlers"]
