"""Client-side exceptions.

Two families:

- ``APIError`` and subclasses map HTTP status codes returned by the
  Pin-a-Tree API (and transport failures) onto exception types.
- ``SubmissionError`` and subclasses are what the upload submission
  flow raises, so a caller can tell a rejected form apart from a failed
  upload and from a failed record creation.
"""

from typing import Any, Dict, Optional


class APIError(Exception):
    """Base exception for API errors."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        response: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.message = message
        self.status_code = status_code
        self.response = response or {}
        super().__init__(self.message)

    @property
    def details(self) -> Dict[str, Any]:
        details = self.response.get("details")
        return details if isinstance(details, dict) else {}


class TransportError(APIError):
    """The request never produced an HTTP response."""


class BadRequestError(APIError):
    """400 Bad Request"""


class AuthenticationError(APIError):
    """401 Unauthorized"""


class AuthorizationError(APIError):
    """403 Forbidden"""


class NotFoundError(APIError):
    """404 Not Found"""


class ConflictError(APIError):
    """409 Conflict"""


class PayloadTooLargeError(APIError):
    """413 Payload Too Large"""


class UnsupportedMediaTypeError(APIError):
    """415 Unsupported Media Type"""


class RateLimitError(APIError):
    """429 Too Many Requests"""

    def __init__(self, message: str, retry_after: Optional[int] = None, **kwargs: Any) -> None:
        super().__init__(message, **kwargs)
        self.retry_after = retry_after


class ServerError(APIError):
    """5xx Server Error"""


STATUS_ERRORS = {
    400: BadRequestError,
    401: AuthenticationError,
    403: AuthorizationError,
    404: NotFoundError,
    409: ConflictError,
    413: PayloadTooLargeError,
    415: UnsupportedMediaTypeError,
}


class SubmissionError(Exception):
    """Base class for failures of the upload submission flow."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class ValidationError(SubmissionError):
    """The selected file or the form failed a client-side check.

    Nothing was sent to the server.
    """

    def __init__(self, message: str, field: Optional[str] = None) -> None:
        super().__init__(message)
        self.field = field


class UploadFailure(SubmissionError):
    """The image upload failed; no record was created.

    Attributes:
        status_code: HTTP status, or None for transport failures.
        retryable: False when retrying the same file cannot succeed
            (413 too large, 415 wrong type, 400 rejected content).
    """

    NON_RETRYABLE_STATUSES = frozenset({400, 401, 403, 413, 415})

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.retryable = status_code not in self.NON_RETRYABLE_STATUSES


class RecordCreationFailure(SubmissionError):
    """The image was stored but the tree record was rejected.

    ``image_url`` points at the stored image; the flow keeps it so a
    retry only re-posts the record.
    """

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
        image_url: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.details = details or {}
        self.image_url = image_url


class GeocodingError(APIError):
    """The geocoding service failed or returned an unreadable answer."""
