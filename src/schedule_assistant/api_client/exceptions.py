"""Custom exceptions for the schedule-assistant HTTP client."""

from typing import Any


class ApiClientError(Exception):
    """Base exception for API client errors."""

    pass


class ApiConnectionError(ApiClientError):
    """Exception raised when the server cannot be reached."""

    pass


class ApiTimeoutError(ApiClientError):
    """Exception raised when a request times out."""

    pass


class ApiRequestError(ApiClientError):
    """Exception raised for error responses from the server."""

    def __init__(
        self,
        message: str,
        status_code: int,
        error_code: str | None = None,
        data: Any = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.error_code = error_code
        self.data = data


class AuthenticationError(ApiRequestError):
    """Exception raised on 401; the stored token has been cleared."""

    pass


class ApiNotFoundError(ApiRequestError):
    """Exception raised on 404."""

    pass


class ApiServerError(ApiRequestError):
    """Exception raised on 5xx responses."""

    pass
