"""
Application error taxonomy.

Domain services raise these errors; the API layer maps them to HTTP
responses in ``dictatemed.server.exception_handlers``. Anything that is not
an ``AppError`` is treated as an unexpected failure and surfaces as a 500.
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class AppError(Exception):
    """Base class for errors that carry an HTTP status and a machine code."""

    status_code: int = 500
    default_code: str = "INTERNAL_ERROR"

    def __init__(self, message: str, code: Optional[str] = None, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"error": self.message, "code": self.code}
        if self.details:
            body["details"] = self.details
        return body


class UnauthorizedError(AppError):
    """The caller is not authenticated."""

    status_code = 401
    default_code = "UNAUTHORIZED"

    def __init__(self, message: str = "Authentication required", code: Optional[str] = None) -> None:
        super().__init__(message, code)


class ForbiddenError(AppError):
    """The caller is authenticated but may not perform the operation."""

    status_code = 403
    default_code = "FORBIDDEN"

    def __init__(self, message: str = "You do not have permission to perform this action", code: Optional[str] = None) -> None:
        super().__init__(message, code)


class NotFoundError(AppError):
    """The requested resource does not exist or is not visible to the caller."""

    status_code = 404
    default_code = "NOT_FOUND"

    def __init__(self, message: str = "Resource not found", code: Optional[str] = None) -> None:
        super().__init__(message, code)


class ValidationError(AppError):
    """Input or state does not satisfy a business rule."""

    status_code = 400
    default_code = "VALIDATION_ERROR"


class ExternalServiceError(Exception):
    """An upstream dependency (LLM, object storage, transcription) failed.

    Attributes:
        service: Name of the failing dependency
        retryable: Whether the failure is worth retrying
    """

    def __init__(self, service: str, message: str, retryable: bool = False) -> None:
        super().__init__(f"{service}: {message}")
        self.service = service
        self.retryable = retryable
