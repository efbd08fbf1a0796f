"""Thin async HTTP client with bearer-token injection."""

import logging
from dataclasses import dataclass
from typing import Any

import httpx

from schedule_assistant.csv_analysis.schemas import Envelope

from .config import ApiConfig
from .exceptions import (
    ApiConnectionError,
    ApiNotFoundError,
    ApiRequestError,
    ApiServerError,
    ApiTimeoutError,
    AuthenticationError,
)
from .token_store import InMemoryTokenStore, TokenStore

logger = logging.getLogger(__name__)

CONNECTION_ERROR_MESSAGE = (
    "Unable to connect to server. Please check your internet connection."
)
TIMEOUT_ERROR_MESSAGE = "Request timeout. Please try again."
SERVER_ERROR_MESSAGE = "Server error. Please try again later."
NOT_FOUND_MESSAGE = "Service not found. Please check your configuration."


@dataclass
class ApiResponse:
    """Decoded response body and HTTP status."""

    data: Any
    status: int

    def unwrap(self) -> Any:
        """
        Return the `data` field of a success envelope.

        Raises:
            ApiRequestError: If the envelope reports failure
        """
        if not isinstance(self.data, dict) or "success" not in self.data:
            return self.data
        envelope = Envelope.model_validate(self.data)
        if not envelope.success:
            raise ApiRequestError(
                envelope.message or "Request failed",
                status_code=self.status,
                error_code=envelope.error,
                data=envelope.data,
            )
        return envelope.data


class ApiClient:
    """
    HTTP client for the schedule-assistant API.

    Every request carries JSON headers and, when a token is stored, an
    `Authorization: Bearer` header. A 401 response clears the stored
    token. Errors are raised immediately; nothing is retried.
    """

    def __init__(
        self,
        config: ApiConfig,
        token_store: TokenStore | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """
        Initialize API client.

        Args:
            config: Resolved client configuration
            token_store: Where the bearer token is kept
            transport: Custom httpx transport (e.g. ASGITransport in tests)
        """
        self.config = config
        self.token_store = token_store or InMemoryTokenStore()
        self._client = httpx.AsyncClient(
            base_url=config.api_base_url,
            timeout=config.timeout,
            headers={"Content-Type": "application/json", "Accept": "application/json"},
            transport=transport,
        )

    async def __aenter__(self) -> "ApiClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def request(
        self,
        method: str,
        url: str,
        json: Any = None,
        params: dict[str, Any] | None = None,
    ) -> ApiResponse:
        """
        Send a request and decode the response.

        Raises:
            ApiConnectionError: If the server cannot be reached
            ApiTimeoutError: If the request times out
            AuthenticationError: On 401 (the stored token is cleared)
            ApiNotFoundError: On 404
            ApiServerError: On 5xx
            ApiRequestError: On any other error status
        """
        headers = {}
        token = await self.token_store.get_token()
        if token:
            headers["Authorization"] = f"Bearer {token}"

        try:
            response = await self._client.request(
                method, url, json=json, params=params, headers=headers
            )
        except httpx.TimeoutException as e:
            logger.error(f"❌ {method} {url} timed out: {e}")
            raise ApiTimeoutError(TIMEOUT_ERROR_MESSAGE) from e
        except httpx.TransportError as e:
            logger.error(f"❌ {method} {url} failed: {e}")
            raise ApiConnectionError(CONNECTION_ERROR_MESSAGE) from e

        try:
            body = response.json()
        except ValueError:
            body = response.text

        if response.is_success:
            return ApiResponse(data=body, status=response.status_code)

        if response.status_code == 401:
            await self.token_store.clear()
        raise self._error_for_status(method, url, response.status_code, body)

    def _error_for_status(
        self, method: str, url: str, status: int, body: Any
    ) -> ApiRequestError:
        message = error_code = data = None
        if isinstance(body, dict):
            message = body.get("message") or body.get("detail")
            message = str(message) if message else None
            error_code = body.get("error")
            data = body.get("data")

        logger.error(f"❌ {method} {url} -> {status}: {message or body}")

        if status == 401:
            return AuthenticationError(
                message or "Authentication required", status, error_code, data
            )
        if status == 404:
            return ApiNotFoundError(message or NOT_FOUND_MESSAGE, status, error_code, data)
        if status >= 500:
            return ApiServerError(SERVER_ERROR_MESSAGE, status, error_code, data)
        return ApiRequestError(message or f"Request failed ({status})", status, error_code, data)

    async def get(self, url: str, params: dict[str, Any] | None = None) -> ApiResponse:
        return await self.request("GET", url, params=params)

    async def post(self, url: str, json: Any = None) -> ApiResponse:
        return await self.request("POST", url, json=json)

    async def put(self, url: str, json: Any = None) -> ApiResponse:
        return await self.request("PUT", url, json=json)

    async def patch(self, url: str, json: Any = None) -> ApiResponse:
        return await self.request("PATCH", url, json=json)

    async def delete(self, url: str) -> ApiResponse:
        return await self.request("DELETE", url)
