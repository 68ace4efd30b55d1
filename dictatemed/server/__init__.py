"""
DictateMED Server Package.

This package contains the web server implementation for DictateMED.

Subpackages:
    api: FastAPI route definitions and endpoint logic.
    core: Configuration and constants.
    exception_handlers: Mapping of domain errors to HTTP responses.
    middleware: Request timing and monitoring.
    services: FastAPI dependencies (current user, clients).
"""
