"""Client configuration using environment variables."""

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import AliasChoices, AnyHttpUrl, Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

from .auth import DEFAULT_API_KEY_HEADER, ApiKeyAuth, AuthConfig, BearerAuth, NoAuth

# Resolve the project root once so that `.env` is discovered regardless of CWD
PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent


class Settings(BaseSettings):
    """Load configuration from environment variables and `.env`."""

    model_config = SettingsConfigDict(
        env_file=str(PROJECT_ROOT / ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    endpoint: AnyHttpUrl = Field(
        ...,
        validation_alias=AliasChoices("REPORT_CHAT_ENDPOINT", "endpoint"),
    )
    api_key: Optional[SecretStr] = Field(
        default=None,
        validation_alias=AliasChoices("REPORT_CHAT_API_KEY", "api_key"),
    )
    api_key_header: str = Field(
        default=DEFAULT_API_KEY_HEADER,
        validation_alias=AliasChoices("REPORT_CHAT_API_KEY_HEADER", "api_key_header"),
    )
    bearer_token: Optional[SecretStr] = Field(
        default=None,
        validation_alias=AliasChoices("REPORT_CHAT_BEARER_TOKEN", "bearer_token"),
    )
    max_messages: int = Field(
        default=20,
        ge=1,
        validation_alias=AliasChoices("REPORT_CHAT_MAX_MESSAGES", "max_messages"),
    )
    locale: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("REPORT_CHAT_LOCALE", "locale"),
    )
    request_timeout: float = Field(
        default=120.0,
        ge=1,
        validation_alias=AliasChoices("REPORT_CHAT_TIMEOUT", "timeout"),
    )
    logging_settings_path: Path = Field(
        default_factory=lambda: PROJECT_ROOT / "logging_settings.conf",
        validation_alias=AliasChoices(
            "REPORT_CHAT_LOGGING_SETTINGS",
            "logging_settings_path",
        ),
    )

    def auth_config(self) -> AuthConfig:
        """Return the auth mode implied by the configured credentials."""

        if self.bearer_token is not None:
            return BearerAuth(token=self.bearer_token.get_secret_value())
        if self.api_key is not None:
            return ApiKeyAuth(
                key=self.api_key.get_secret_value(),
                header_name=self.api_key_header,
            )
        return NoAuth()


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached `Settings` instance."""

    return Settings()  # pyright: ignore[reportCallIssue]


__all__ = ["Settings", "get_settings"]
