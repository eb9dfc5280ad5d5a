"""Custom exception classes for the Pin-a-Tree API.

Each exception carries the HTTP status code it maps to, so route
handlers can raise them directly and let the error middleware
render a consistent JSON body.
"""

from typing import Any, Dict, Optional


class AppException(Exception):
    """Base exception for all application errors.

    Attributes:
        message: Human-readable error message.
        status_code: HTTP status code to return.
        details: Additional error context.
    """

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        status_code: int = 500,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Initialize the exception.

        Args:
            message: Human-readable error message.
            status_code: HTTP status code to return.
            details: Additional error context.
        """
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        super().__init__(self.message)


class NotFoundException(AppException):
    """Raised when a tree, user or stored image does not exist."""

    def __init__(
        self,
        message: str = "Resource not found",
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message=message, status_code=404, details=details)


class ValidationException(AppException):
    """Raised when a request body or form field fails validation.

    Rendered as 400 so clients can tell a rejected record apart
    from a transport or server failure.
    """

    def __init__(
        self,
        message: str = "Validation error",
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message=message, status_code=400, details=details)


class DatabaseException(AppException):
    """Raised when a database operation fails."""

    def __init__(
        self,
        message: str = "Database operation failed",
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message=message, status_code=500, details=details)


class UnauthorizedException(AppException):
    """Raised when a bearer token is missing, invalid or expired."""

    def __init__(
        self,
        message: str = "Authentication required",
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message=message, status_code=401, details=details)


class ForbiddenException(AppException):
    """Raised when a user acts on a tree they do not own."""

    def __init__(
        self,
        message: str = "Permission denied",
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message=message, status_code=403, details=details)


class ConflictException(AppException):
    """Raised when an email or username is already registered."""

    def __init__(
        self,
        message: str = "Resource already exists",
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message=message, status_code=409, details=details)


class PayloadTooLargeException(AppException):
    """Raised when an uploaded image exceeds the configured size limit."""

    def __init__(
        self,
        message: str = "File too large",
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message=message, status_code=413, details=details)


class UnsupportedMediaTypeException(AppException):
    """Raised when an uploaded file is not an accepted image type."""

    def __init__(
        self,
        message: str = "Unsupported media type",
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message=message, status_code=415, details=details)
