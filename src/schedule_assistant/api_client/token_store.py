"""Bearer token persistence for the HTTP client."""

import json
import logging
import os
from abc import ABC, abstractmethod

from .config import DEFAULT_TOKEN_PATH

logger = logging.getLogger(__name__)


class TokenStore(ABC):
    """Abstract interface for storing the current bearer token."""

    @abstractmethod
    async def get_token(self) -> str | None:
        """Return the stored token, if any."""
        pass

    @abstractmethod
    async def set_token(self, token: str) -> None:
        """Store a token, replacing any previous one."""
        pass

    @abstractmethod
    async def clear(self) -> None:
        """Forget the stored token."""
        pass


class InMemoryTokenStore(TokenStore):
    """Token store that lives as long as the process."""

    def __init__(self, token: str | None = None) -> None:
        self._token = token

    async def get_token(self) -> str | None:
        return self._token

    async def set_token(self, token: str) -> None:
        self._token = token

    async def clear(self) -> None:
        self._token = None


class FileTokenStore(TokenStore):
    """Token store backed by a small JSON file."""

    def __init__(self, path: str = DEFAULT_TOKEN_PATH) -> None:
        self.path = path

    async def get_token(self) -> str | None:
        try:
            with open(self.path, encoding="utf-8") as f:
                return json.load(f).get("token")
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as e:
            logger.warning(f"Could not read token file {self.path}: {e}")
            return None

    async def set_token(self, token: str) -> None:
        os.makedirs(os.path.dirname(os.path.abspath(self.path)), exist_ok=True)
        # Owner read/write only, from creation on
        fd = os.open(self.path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        os.fchmod(fd, 0o600)
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump({"token": token}, f)

    async def clear(self) -> None:
        try:
            os.remove(self.path)
        except FileNotFoundError:
            pass
