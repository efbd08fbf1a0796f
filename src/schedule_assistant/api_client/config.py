"""Configuration for the schedule-assistant HTTP client."""

import os
from dataclasses import dataclass, field

# Environment variable selecting the base URL at startup
API_ENV_VAR = "SCHEDULE_API_ENV"

DEFAULT_ENVIRONMENT = "localhost"
DEFAULT_BASE_URLS = {
    "development": "http://192.168.1.2:8000",
    "production": "https://api.scheduleapp.com",
    "localhost": "http://127.0.0.1:8000",
}
DEFAULT_API_PREFIX = "/api/v1"
DEFAULT_TIMEOUT = 10.0

DEFAULT_TOKEN_PATH = os.path.expanduser("~/.schedule-assistant/token.json")


@dataclass(frozen=True)
class ApiConfig:
    """
    Resolved client configuration.

    Built once at startup and passed to ApiClient instead of being read
    from globals.
    """

    base_url: str
    api_prefix: str = DEFAULT_API_PREFIX
    timeout: float = DEFAULT_TIMEOUT
    environment: str = DEFAULT_ENVIRONMENT
    base_urls: dict[str, str] = field(default_factory=lambda: dict(DEFAULT_BASE_URLS))

    @classmethod
    def from_environment(
        cls,
        environment: str | None = None,
        base_urls: dict[str, str] | None = None,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> "ApiConfig":
        """
        Resolve the base URL for an environment.

        Args:
            environment: Environment name; defaults to $SCHEDULE_API_ENV,
                then to 'localhost'
            base_urls: Override the environment -> URL table
            timeout: Request timeout in seconds

        Raises:
            ValueError: If the environment is unknown
        """
        urls = dict(base_urls or DEFAULT_BASE_URLS)
        env = (environment or os.environ.get(API_ENV_VAR) or DEFAULT_ENVIRONMENT).lower()
        if env not in urls:
            raise ValueError(
                f"Unknown API environment '{env}', expected one of {sorted(urls)}"
            )
        return cls(
            base_url=urls[env].rstrip("/"),
            timeout=timeout,
            environment=env,
            base_urls=urls,
        )

    @property
    def api_base_url(self) -> str:
        return f"{self.base_url}{self.api_prefix}"

    @property
    def storage_url(self) -> str:
        return f"{self.base_url}/storage"

    def get_api_url(self, endpoint: str) -> str:
        """Full URL of an API endpoint such as '/csv-tasks/analyze'."""
        return f"{self.api_base_url}/{endpoint.lstrip('/')}"

    def get_image_url(self, image_path: str) -> str:
        """Full URL of a stored file; absolute URLs are returned unchanged."""
        if image_path.startswith("http"):
            return image_path
        return f"{self.storage_url}/{image_path.lstrip('/')}"
