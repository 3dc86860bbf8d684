"""Application settings loaded from environment variables."""

from __future__ import annotations

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Netgate service configuration.

    All settings can be overridden via environment variables
    (e.g., GATE_CONFIG_PATH, AUDIT_STORE_DIR, JWT_SECRET).
    """

    # Gate
    gate_config_path: str | None = None
    audit_store_dir: str = "var/audit"

    # API
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    api_log_level: str = "info"

    # Auth
    jwt_secret: str = "change-me-in-production"
    jwt_algorithm: str = "HS256"

    # GitHub
    github_api_url: str = "https://api.github.com"

    model_config = {"env_prefix": "", "case_sensitive": False}


settings = Settings()
