"""Authentication endpoints."""

import logging

from schedule_assistant.csv_analysis.schemas import AuthOut, UserOut
from .http import ApiClient

logger = logging.getLogger(__name__)


class AuthAPI:
    """Login, registration and token verification."""

    def __init__(self, client: ApiClient) -> None:
        self._client = client

    async def login(self, email: str, password: str) -> AuthOut:
        """Log in and store the returned token."""
        response = await self._client.post(
            "/auth/login", {"email": email, "password": password}
        )
        auth = AuthOut.model_validate(response.unwrap())
        await self._client.token_store.set_token(auth.token)
        logger.info(f"🔑 Logged in as {auth.user.email}")
        return auth

    async def register(
        self,
        name: str,
        email: str,
        password: str,
        profession: str | None = None,
    ) -> AuthOut:
        """Register a user and store the returned token."""
        response = await self._client.post(
            "/auth/register",
            {"name": name, "email": email, "password": password, "profession": profession},
        )
        auth = AuthOut.model_validate(response.unwrap())
        await self._client.token_store.set_token(auth.token)
        return auth

    async def logout(self) -> None:
        """Revoke the token on the server and forget it locally."""
        try:
            await self._client.post("/auth/logout")
        finally:
            await self._client.token_store.clear()

    async def verify_token(self) -> UserOut:
        """Return the user the stored token belongs to."""
        response = await self._client.get("/auth/verify")
        return UserOut.model_validate(response.unwrap())
