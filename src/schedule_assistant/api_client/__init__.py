"""Async HTTP client for the schedule-assistant API."""

from .auth import AuthAPI
from .config import ApiConfig
from .csv_task_analysis import CSVTaskAnalysisAPI
from .exceptions import (
    ApiClientError,
    ApiConnectionError,
    ApiNotFoundError,
    ApiRequestError,
    ApiServerError,
    ApiTimeoutError,
    AuthenticationError,
)
from .http import ApiClient, ApiResponse
from .schedule_import import ScheduleImportAPI
from .token_store import FileTokenStore, InMemoryTokenStore, TokenStore

__all__ = [
    "ApiClient",
    "ApiConfig",
    "ApiResponse",
    "AuthAPI",
    "CSVTaskAnalysisAPI",
    "ScheduleImportAPI",
    "TokenStore",
    "InMemoryTokenStore",
    "FileTokenStore",
    "ApiClientError",
    "ApiConnectionError",
    "ApiNotFoundError",
    "ApiRequestError",
    "ApiServerError",
    "ApiTimeoutError",
    "AuthenticationError",
]
