import logging
from pathlib import Path

from cryptography.fernet import Fernet
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    # GitHub OAuth application (required)
    github_client_id: str
    github_client_secret: str
    # External base URL of this service, e.g. https://deploy.example.com
    host: str

    # Persistence (required)
    github_token_path: str
    scripts_dir: str

    # HTTP surface
    api_prefix: str = "/cd/api"
    dashboard_path: str = "/cd"
    port: int = 3000
    bind_address: str = "0.0.0.0"
    cors_origins: str = "http://localhost:3000"

    # GitHub endpoints
    github_api_url: str = "https://api.github.com"
    github_web_url: str = "https://github.com"
    github_request_timeout_seconds: float = 10.0
    # Upper bound on Link-header pages followed per listing call
    github_max_pages: int = 10
    # Empty disables X-Hub-Signature-256 verification
    github_webhook_secret: str = Field(default="", validation_alias="GITHUB_WEBHOOK_SECRET")
    oauth_state_ttl_seconds: int = 600

    # Fernet key for the token file. Empty stores the token payload as plain JSON.
    token_encryption_key: str = Field(default="", validation_alias="TOKEN_ENCRYPTION_KEY")

    # Deployment execution
    shell_path: str = "bash"

    # Application Configuration
    log_level: str = "INFO"

    @field_validator(
        "github_client_id", "github_client_secret", "host", "github_token_path", "scripts_dir"
    )
    @classmethod
    def validate_required(cls, v: str) -> str:
        """Reject blank values for settings the service cannot start without."""
        if not v or not v.strip():
            raise ValueError("must not be empty")
        return v.strip()

    @field_validator("host", "github_api_url", "github_web_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")

    @field_validator("log_level")
    @classmethod
    def normalize_log_level(cls, v: str) -> str:
        return v.upper()

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse CORS origins from comma-separated string."""
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    @property
    def scripts_path(self) -> Path:
        return Path(self.scripts_dir)

    @property
    def webhook_url(self) -> str:
        """URL GitHub should deliver push events to."""
        return f"{self.host}{self.api_prefix}/webhook"

    @property
    def oauth_redirect_uri(self) -> str:
        return f"{self.host}{self.api_prefix}/github/callback"

    @property
    def dashboard_url(self) -> str:
        return f"{self.host}{self.dashboard_path}"

    def model_post_init(self, __context: object) -> None:
        """Validate the token encryption key and make sure the scripts root exists."""
        if self.token_encryption_key:
            try:
                Fernet(self.token_encryption_key.encode())
            except Exception as exc:  # noqa: BLE001
                logger.error(
                    "TOKEN_ENCRYPTION_KEY is invalid. Provide a 32-byte URL-safe base64 string."
                )
                raise exc

        try:
            self.scripts_path.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            logger.error("Failed to create scripts directory %s", self.scripts_path)
            raise exc


settings = Settings()
