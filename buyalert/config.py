"""Application configuration management."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Annotated, Any, List, Literal, Optional

from pydantic import AnyHttpUrl, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class Settings(BaseSettings):
    """Runtime configuration loaded from environment or `.env`."""

    model_config = SettingsConfigDict(
        env_file=(".env",),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    telegram_bot_token: str = Field(..., alias="TELEGRAM_BOT_TOKEN")
    debank_api_key: str = Field(..., alias="DEBANK_API_KEY")
    telegram_chat_id: Optional[int] = Field(default=None, alias="TELEGRAM_CHAT_ID")

    explorer_base_url: AnyHttpUrl = Field(
        default="https://apechain.calderaexplorer.xyz/api/v2",
        alias="EXPLORER_BASE_URL",
    )
    price_api_base_url: AnyHttpUrl = Field(
        default="https://pro-openapi.debank.com/v1",
        alias="PRICE_API_BASE_URL",
    )
    price_chain_id: str = Field(default="ape", alias="PRICE_CHAIN_ID")
    http_timeout_seconds: float = Field(
        default=10.0,
        alias="HTTP_TIMEOUT_SECONDS",
        ge=1.0,
        le=60.0,
    )

    poll_interval_seconds: float = Field(
        default=5.0,
        alias="POLL_INTERVAL_SECONDS",
        ge=1.0,
        le=300.0,
    )
    fetch_error_policy: Literal["continue", "terminate", "severity"] = Field(
        default="severity",
        alias="FETCH_ERROR_POLICY",
    )
    notify_empty_transfers: bool = Field(default=True, alias="NOTIFY_EMPTY_TRANSFERS")

    settings_backend: Literal["json", "sql"] = Field(
        default="json",
        alias="SETTINGS_BACKEND",
    )
    settings_file: Path = Field(
        default=Path("./.tmp/settings.json"),
        alias="SETTINGS_FILE",
    )
    database_url: str = Field(
        default="sqlite+aiosqlite:///./.tmp/settings.db",
        alias="DATABASE_URL",
    )
    persist_interval_seconds: int = Field(
        default=30,
        alias="PERSIST_INTERVAL_SECONDS",
        ge=1,
        le=3600,
    )

    admin_user_ids: Annotated[List[int], NoDecode] = Field(
        default_factory=list, alias="ADMIN_USER_IDS"
    )

    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_file: Optional[Path] = Field(default=None, alias="LOG_FILE")

    @field_validator("admin_user_ids", mode="before")
    @classmethod
    def _parse_admin_ids(cls, value: Any) -> List[int]:
        if value in (None, "", []):
            return []
        if isinstance(value, str):
            return [int(part.strip()) for part in value.split(",") if part.strip()]
        if isinstance(value, (list, tuple, set)):
            return [int(v) for v in value]
        return [int(value)]

    @field_validator("fetch_error_policy", "settings_backend", mode="before")
    @classmethod
    def _lower(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip().lower()
        return value


@lru_cache(maxsize=1)
def load_settings() -> Settings:
    """Return cached Settings instance, raising a helpful message on failure."""
    try:
        return Settings()
    except ValidationError as exc:  # pragma: no cover
        raise RuntimeError(f"Invalid configuration: {exc}") from exc


__all__ = ["Settings", "load_settings"]
