"""Environment-based configuration loader using pydantic BaseSettings."""

from __future__ import annotations

from pydantic_settings import BaseSettings

DEFAULT_ALLOWED_UPLOAD_TYPES = [
    "application/pdf",
    "application/msword",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "application/vnd.ms-excel",
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    "image/jpeg",
    "image/png",
]

DEFAULT_REVIEWERS = [
    "Jeremy Webster",
    "Luke Duchesneau",
    "Heather Phan",
    "Dave Artz",
]


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    All IMS (Aras Innovator) endpoints and application configuration are
    loaded from environment variables (or a .env file) and validated at
    startup. List values are given as JSON arrays.
    """

    # IMS OData endpoint, e.g. https://ims.example.com/IMS/Server/odata/
    ims_base_url: str

    # Vault subsystem base URLs, probed in order by BeginTransaction
    vault_base_urls: list[str]

    # Aras OAuth server (password grant)
    oauth_token_url: str
    oauth_client_id: str = "IOMApp"
    oauth_scope: str = "Innovator"
    ims_database: str

    # Outbound HTTP
    http_timeout_seconds: float = 30.0
    vault_upload_timeout_seconds: float = 120.0

    # Uploads
    max_upload_bytes: int = 10 * 1024 * 1024
    allowed_upload_types: list[str] = DEFAULT_ALLOWED_UPLOAD_TYPES

    # Procurement form defaults
    reviewers: list[str] = DEFAULT_REVIEWERS
    default_reviewer: str = "Jeremy Webster"

    # Application
    cors_origins: list[str] = ["http://localhost:5173"]
    log_level: str = "INFO"

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}

    @property
    def odata_base_url(self) -> str:
        """OData base URL, always ending with a slash."""
        return self.ims_base_url if self.ims_base_url.endswith("/") else f"{self.ims_base_url}/"


def get_settings() -> Settings:
    """Create and return a validated Settings instance."""
    return Settings()  # type: ignore[call-arg]
