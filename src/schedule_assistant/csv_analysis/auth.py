"""User registration and opaque bearer tokens."""

import logging
import secrets

from passlib.context import CryptContext

from .config import PASSWORD_BCRYPT_ROUNDS, TOKEN_BYTES
from .database import ScheduleDatabase
from .exceptions import (
    AuthenticationError,
    DatabaseError,
    RegistrationError,
    UserNotFoundError,
)
from .models import User

logger = logging.getLogger(__name__)

PWD_CONTEXT = CryptContext(
    schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=PASSWORD_BCRYPT_ROUNDS
)


def hash_password(password: str) -> str:
    """Hash a password with bcrypt."""
    return PWD_CONTEXT.hash(password)


def verify_password(password: str, stored_hash: str) -> bool:
    """Check a password against a stored bcrypt hash."""
    try:
        return PWD_CONTEXT.verify(password, stored_hash)
    except ValueError:
        return False


class AuthService:
    """Registers users and issues opaque bearer tokens stored in the database."""

    def __init__(self, database: ScheduleDatabase) -> None:
        self._database = database

    async def register(
        self,
        name: str,
        email: str,
        password: str,
        profession: str | None = None,
    ) -> tuple[User, str]:
        """
        Register a user and issue a token.

        Returns:
            Tuple of (user, token)

        Raises:
            RegistrationError: If the input is invalid or the email is taken
        """
        if not name.strip() or "@" not in email or not password:
            raise RegistrationError("Name, a valid email and a password are required")

        try:
            user = await self._database.insert_user(
                name.strip(), email.strip(), hash_password(password), profession
            )
        except DatabaseError as e:
            raise RegistrationError(str(e)) from e

        logger.info(f"👤 Registered user {user.id} ({user.email})")
        return user, await self._issue_token(user.id)

    async def login(self, email: str, password: str) -> tuple[User, str]:
        """
        Check credentials and issue a token.

        Raises:
            AuthenticationError: If the credentials are wrong
        """
        try:
            user, stored_hash = await self._database.get_user_credentials(email.strip())
        except UserNotFoundError as e:
            raise AuthenticationError("Invalid email or password") from e

        if not verify_password(password, stored_hash):
            raise AuthenticationError("Invalid email or password")

        logger.info(f"User {user.id} logged in")
        return user, await self._issue_token(user.id)

    async def logout(self, token: str) -> None:
        """Revoke a token. Unknown tokens are ignored."""
        await self._database.delete_token(token)

    async def authenticate(self, token: str | None) -> User:
        """
        Resolve a bearer token to its user.

        Raises:
            AuthenticationError: If the token is missing or unknown
        """
        if not token:
            raise AuthenticationError("Missing bearer token")

        user_id = await self._database.get_user_id_for_token(token)
        if user_id is None:
            raise AuthenticationError("Invalid or expired token")

        try:
            return await self._database.get_user(user_id)
        except UserNotFoundError as e:
            raise AuthenticationError("Invalid or expired token") from e

    async def _issue_token(self, user_id: int) -> str:
        token = secrets.token_urlsafe(TOKEN_BYTES)
        await self._database.store_token(token, user_id)
        return token
