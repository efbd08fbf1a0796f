"""Tests for client configuration and token storage."""

import json
import os
import stat
from unittest.mock import patch

import pytest

from schedule_assistant.api_client.config import ApiConfig
from schedule_assistant.api_client.token_store import FileTokenStore, InMemoryTokenStore


@pytest.mark.unit
class TestApiConfig:
    """Test cases for base URL resolution."""

    def test_named_environment(self) -> None:
        """Test selecting a named environment."""
        config = ApiConfig.from_environment("production")

        assert config.base_url == "https://api.scheduleapp.com"
        assert config.api_base_url == "https://api.scheduleapp.com/api/v1"
        assert config.environment == "production"

    def test_environment_variable(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test that the environment variable selects the environment."""
        monkeypatch.setenv("SCHEDULE_API_ENV", "development")

        config = ApiConfig.from_environment()

        assert config.base_url == "http://192.168.1.2:8000"

    def test_default_environment(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test the default environment when nothing is set."""
        monkeypatch.delenv("SCHEDULE_API_ENV", raising=False)

        config = ApiConfig.from_environment()

        assert config.environment == "localhost"
        assert config.base_url == "http://127.0.0.1:8000"

    def test_custom_base_urls(self) -> None:
        """Test overriding the base URLs."""
        config = ApiConfig.from_environment(
            "staging", base_urls={"staging": "https://staging.example.com/"}
        )

        assert config.base_url == "https://staging.example.com"

    def test_unknown_environment(self) -> None:
        """Test that an unknown environment name raises."""
        with pytest.raises(ValueError, match="Unknown API environment"):
            ApiConfig.from_environment("moon")

    def test_api_and_storage_urls(self) -> None:
        """Test the API and storage URLs of an environment."""
        config = ApiConfig(base_url="http://127.0.0.1:8000")

        assert config.get_api_url("/csv-tasks/analyze") == (
            "http://127.0.0.1:8000/api/v1/csv-tasks/analyze"
        )
        assert config.storage_url == "http://127.0.0.1:8000/storage"
        assert config.get_image_url("avatars/an.png") == (
            "http://127.0.0.1:8000/storage/avatars/an.png"
        )
        assert config.get_image_url("https://cdn.example.com/a.png") == (
            "https://cdn.example.com/a.png"
        )


@pytest.mark.unit
class TestTokenStores:
    """Test cases for token persistence."""

    @pytest.mark.asyncio
    async def test_in_memory_store(self) -> None:
        """Test storing and clearing a token in memory."""
        store = InMemoryTokenStore()

        assert await store.get_token() is None
        await store.set_token("abc")
        assert await store.get_token() == "abc"
        await store.clear()
        assert await store.get_token() is None

    @pytest.mark.asyncio
    async def test_file_store(self, tmp_path) -> None:
        """Test that the file store persists the token across instances."""
        path = tmp_path / "auth" / "token.json"
        store = FileTokenStore(str(path))

        assert await store.get_token() is None
        await store.set_token("abc")

        assert json.loads(path.read_text()) == {"token": "abc"}
        assert stat.S_IMODE(os.stat(path).st_mode) == 0o600
        assert await FileTokenStore(str(path)).get_token() == "abc"

        await store.clear()
        assert not path.exists()
        await store.clear()

    @pytest.mark.asyncio
    async def test_file_store_creates_token_file_owner_only(self, tmp_path) -> None:
        """Test the token file is opened with owner-only permissions."""
        path = tmp_path / "token.json"

        with patch("os.open", wraps=os.open) as mock_open:
            await FileTokenStore(str(path)).set_token("abc")

        mock_open.assert_called_once()
        assert mock_open.call_args.args[2] == 0o600
        assert stat.S_IMODE(os.stat(path).st_mode) == 0o600

    @pytest.mark.asyncio
    async def test_file_store_tightens_existing_file(self, tmp_path) -> None:
        """Test an existing world-readable token file is made owner-only."""
        path = tmp_path / "token.json"
        path.write_text('{"token": "old"}')
        os.chmod(path, 0o644)

        await FileTokenStore(str(path)).set_token("new")

        assert stat.S_IMODE(os.stat(path).st_mode) == 0o600
        assert json.loads(path.read_text()) == {"token": "new"}

    @pytest.mark.asyncio
    async def test_corrupt_file_is_ignored(self, tmp_path) -> None:
        """Test that a corrupt token file reads as no token."""
        path = tmp_path / "token.json"
        path.write_text("{not json")

        assert await FileTokenStore(str(path)).get_token() is None
