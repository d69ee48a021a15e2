from __future__ import annotations

import os
from enum import Enum
from typing import Any, List, Optional

from dotenv import dotenv_values
from pydantic import BaseModel, ConfigDict, Field, field_validator

from authsession.logging import get_logger
from authsession.storage.cookies import CookieOptions, SameSite

logger = get_logger(__name__)

DEFAULT_BASE_URL = "https://api.rauth.dev"
DEFAULT_STORAGE_PREFIX = "rauth_"
DEFAULT_REFRESH_INTERVAL_SECONDS = 5 * 60

SUPPORTED_PROVIDERS: tuple[str, ...] = (
    "google",
    "github",
    "facebook",
    "twitter",
    "linkedin",
)


class StorageType(str, Enum):
    """Where session records are persisted on the client.

    - DURABLE: survives restarts (file-backed when ``storage_dir`` is set)
    - PER_TAB: lives as long as the current client context
    - COOKIE: cookie jar, readable by server-side accessors
    """

    DURABLE = "durable"
    PER_TAB = "per_tab"
    COOKIE = "cookie"


def env_field(default: Any, env: str, **kwargs):
    extra = kwargs.pop("json_schema_extra", {}) or {}
    extra = {**extra, "env": env}
    return Field(default, json_schema_extra=extra, **kwargs)


class Settings(BaseModel):
    """Client configuration shared by every session component.

    One instance is built at startup and passed explicitly to each component
    constructor.
    """

    api_key: Optional[str] = env_field(None, "AUTHSESSION_API_KEY")
    app_id: Optional[str] = env_field(None, "AUTHSESSION_APP_ID")
    base_url: str = env_field(DEFAULT_BASE_URL, "AUTHSESSION_BASE_URL")
    providers: List[str] = env_field(
        list(SUPPORTED_PROVIDERS),
        "AUTHSESSION_PROVIDERS",
        description="Comma separated list of enabled OAuth providers",
    )
    redirect_url: Optional[str] = env_field(
        None,
        "AUTHSESSION_REDIRECT_URL",
        description="OAuth callback URL; derived from the client origin when unset",
    )
    logout_redirect_url: Optional[str] = env_field(None, "AUTHSESSION_LOGOUT_REDIRECT_URL")
    storage_type: StorageType = env_field(StorageType.DURABLE, "AUTHSESSION_STORAGE_TYPE")
    storage_prefix: str = env_field(DEFAULT_STORAGE_PREFIX, "AUTHSESSION_STORAGE_PREFIX")
    storage_dir: Optional[str] = env_field(
        None,
        "AUTHSESSION_STORAGE_DIR",
        description="Directory for the file-backed durable store; in-memory when unset",
    )
    cookie_path: Optional[str] = env_field("/", "AUTHSESSION_COOKIE_PATH")
    cookie_domain: Optional[str] = env_field(None, "AUTHSESSION_COOKIE_DOMAIN")
    cookie_secure: bool = env_field(False, "AUTHSESSION_COOKIE_SECURE")
    cookie_same_site: Optional[SameSite] = env_field(None, "AUTHSESSION_COOKIE_SAME_SITE")
    cookie_max_age: Optional[int] = env_field(None, "AUTHSESSION_COOKIE_MAX_AGE")
    cookie_http_only: bool = env_field(False, "AUTHSESSION_COOKIE_HTTP_ONLY")
    app_env: str = env_field(
        "development",
        "AUTHSESSION_APP_ENV",
        description="'production' forces the Secure attribute on server-built cookies",
    )
    auto_refresh: bool = env_field(True, "AUTHSESSION_AUTO_REFRESH")
    refresh_interval_seconds: float = env_field(
        DEFAULT_REFRESH_INTERVAL_SECONDS, "AUTHSESSION_REFRESH_INTERVAL_SECONDS"
    )
    refresh_threshold_ms: Optional[int] = env_field(
        None,
        "AUTHSESSION_REFRESH_THRESHOLD_MS",
        description="Also renew when the access token expires within this window",
    )
    http_timeout_seconds: float = env_field(10.0, "AUTHSESSION_HTTP_TIMEOUT_SECONDS")
    debug: bool = env_field(False, "AUTHSESSION_DEBUG")

    model_config = ConfigDict(extra="ignore", validate_default=True)

    @classmethod
    def from_env(cls, env_file: str = ".env") -> "Settings":
        env_file_values = dotenv_values(env_file)
        merged: dict[str, str] = {}
        for name, field in cls.model_fields.items():
            extra = field.json_schema_extra or {}
            env_key = extra.get("env") if isinstance(extra, dict) else None
            env_name = env_key or name.upper()
            if env_name in os.environ:
                merged[name] = os.environ[env_name]
            elif env_name in env_file_values:
                merged[name] = env_file_values[env_name]
        settings = cls(**merged)
        if settings.debug:
            logger.info(
                "settings_loaded",
                api_key_masked=settings.masked_api_key(),
                base_url=settings.base_url,
                storage_type=settings.storage_type.value,
                providers=settings.providers,
            )
        return settings

    @field_validator("api_key")
    @classmethod
    def _require_api_key(cls, value: Optional[str]) -> str:
        if not value or not value.strip():
            raise ValueError("api_key is required; copy it from the auth dashboard")
        return value

    @field_validator("app_id")
    @classmethod
    def _require_app_id(cls, value: Optional[str]) -> str:
        if not value or not value.strip():
            raise ValueError("app_id is required; copy it from the auth dashboard")
        return value

    @field_validator("providers", mode="before")
    @classmethod
    def _validate_providers(cls, value: Any) -> List[str]:
        if isinstance(value, str):
            value = [item.strip() for item in value.split(",") if item.strip()]
        if not value:
            raise ValueError(
                "At least one provider must be configured. "
                f"Supported providers: {', '.join(SUPPORTED_PROVIDERS)}"
            )
        for provider in value:
            if provider not in SUPPORTED_PROVIDERS:
                raise ValueError(
                    f"Invalid provider: {provider}. "
                    f"Supported providers are: {', '.join(SUPPORTED_PROVIDERS)}"
                )
        return list(value)

    @field_validator("base_url")
    @classmethod
    def _validate_base_url(cls, value: str) -> str:
        value = (value or DEFAULT_BASE_URL).rstrip("/")
        if not value.startswith(("http://", "https://")):
            raise ValueError("base_url must start with http:// or https://")
        if value.startswith("http://"):
            logger.warning(
                "base_url_insecure",
                base_url=value,
                message="HTTP is only recommended for local development",
            )
        return value

    @field_validator("storage_type")
    @classmethod
    def _validate_storage_type(cls, value: StorageType) -> StorageType:
        return StorageType(value)

    @field_validator("storage_prefix")
    @classmethod
    def _validate_prefix(cls, value: str) -> str:
        return value or DEFAULT_STORAGE_PREFIX

    @field_validator("refresh_interval_seconds")
    @classmethod
    def _validate_interval(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("refresh_interval_seconds must be positive")
        return value

    @property
    def is_production(self) -> bool:
        return self.app_env.lower() == "production"

    def cookie_options(self) -> CookieOptions:
        """Default attributes applied to every cookie write."""
        return CookieOptions(
            path=self.cookie_path,
            domain=self.cookie_domain,
            secure=self.cookie_secure,
            same_site=self.cookie_same_site,
            max_age=self.cookie_max_age,
            http_only=self.cookie_http_only,
        )

    def masked_api_key(self) -> str:
        key = self.api_key or ""
        if len(key) <= 10:
            return key[:3] + "***"
        prefix = key[: key.find("_") + 1]
        visible = key[len(prefix) : len(prefix) + 4]
        return prefix + visible + "******"
