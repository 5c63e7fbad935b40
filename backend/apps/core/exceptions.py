"""
Base exception for service-layer errors.

Services raise subclasses of ServiceError; the API layer renders them as
``{"error": message, "code": code}`` with the class's HTTP status. Keeping
the status on the exception lets services stay free of HTTP concerns while
the mapping lives in one place.
"""


class ServiceError(Exception):
    """Base exception for errors that surface to API clients."""

    status_code: int = 400
    code: str = "error"
    default_message: str = "Request failed"

    def __init__(self, message: str | None = None, *, code: str | None = None) -> None:
        super().__init__(message or self.default_message)
        if code is not None:
            self.code = code

    @property
    def message(self) -> str:
        return str(self)


class InvalidRequestError(ServiceError):
    """Malformed or incomplete request input."""

    status_code = 400
    code = "invalid_request"
    default_message = "Invalid request"


class RateLimitExceeded(ServiceError):
    """Raised when a rate limit is exceeded."""

    status_code = 429
    code = "rate_limited"
    default_message = "Too many requests. Please try again later."

    def __init__(self, message: str | None = None, retry_after: int = 60) -> None:
        super().__init__(message)
        self.retry_after = retry_after
