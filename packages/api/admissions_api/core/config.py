# This project was developed with assistance from AI tools.
"""
Application configuration.

All settings read from environment variables with sensible local dev defaults.
Group related settings together; each group becomes a section future PRs extend.
"""

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# Resolve project root .env regardless of CWD
_PROJECT_ROOT = Path(__file__).resolve().parents[4]
_ENV_FILE = _PROJECT_ROOT / ".env"


class Settings(BaseSettings):
    """Application settings -- single source of truth for env-driven config."""

    model_config = SettingsConfigDict(
        env_file=str(_ENV_FILE),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # -- App --
    APP_NAME: str = "Admissions Portal API"
    DEBUG: bool = False

    # -- CORS --
    ALLOWED_HOSTS: list[str] = ["http://localhost:3000"]

    # -- Auth (Supabase) --
    AUTH_DISABLED: bool = Field(
        default=False,
        description="Bypass JWT validation. Set True for tests and local dev without Supabase.",
    )
    DEV_USER_EMAIL: str = Field(
        default="dev@admissions.local",
        description="Caller email used when AUTH_DISABLED is set.",
    )
    SUPABASE_URL: str = "http://localhost:54321"
    SUPABASE_JWT_SECRET: str = Field(
        default="super-secret-jwt-token-with-at-least-32-characters-long",
        description="HS256 secret Supabase signs access tokens with.",
    )
    SUPABASE_JWT_AUDIENCE: str = "authenticated"

    # -- Salesforce --
    SF_LOGIN_URL: str = Field(
        default="https://login.salesforce.com",
        description="https://login.salesforce.com (prod) or https://test.salesforce.com (sandbox).",
    )
    SF_USERNAME: str = ""
    SF_PASSWORD: str = ""
    SF_SECURITY_TOKEN: str = Field(
        default="",
        description="Appended to SF_PASSWORD on login.",
    )
    SF_API_VERSION: str = "59.0"
    SF_TIMEOUT: float = Field(
        default=30.0,
        description="Per-request timeout in seconds for Salesforce calls.",
    )

    # -- Progress --
    FILE_LINK_PAGE_SIZE: int = Field(
        default=50,
        description="Maximum ContentDocumentLink rows scanned per progress detail request.",
    )
    TERMINAL_STAGE_KEYWORDS: list[str] = Field(
        default=["closed", "rejected"],
        description="Stage name fragments that block the activate segment.",
    )


settings = Settings()
