from __future__ import annotations

import os
from functools import lru_cache

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class BaseAppSettings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    APP_NAME: str = "Sentul Intake"
    ENV: str = "dev"
    DATABASE_URL: str | None = None

    # Public origin prepended to stored image paths on every read, e.g. "https://api.example.com"
    BASE_URL: str = ""

    # Upload storage
    UPLOAD_DIR: str = "./uploads"
    UPLOAD_URL_PREFIX: str = "/uploads"
    UPLOAD_CATEGORIES: list[str] = ["news", "events", "holes"]
    UPLOAD_COPY_TIMEOUT_SECONDS: float = 30.0
    # Multipart overhead on top of the 5 MiB image limit
    MAX_REQUEST_BODY: int = 6 * 1024 * 1024

    CORS_ALLOW_ORIGINS: list[str] = ["*"]
    CORS_ALLOW_METHODS: list[str] = ["*"]
    CORS_ALLOW_HEADERS: list[str] = ["*"]
    CORS_ALLOW_CREDENTIALS: bool = True
    CONTENT_SECURITY_POLICY: str = (
        "default-src 'self'; "
        "img-src 'self' data:; "
        "style-src 'self' 'unsafe-inline' https://cdn.jsdelivr.net; "
        "script-src 'self' 'unsafe-inline' https://cdn.jsdelivr.net"
    )
    HSTS_SECONDS: int = 31_536_000
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "plain"
    SENTRY_DSN: str | None = None

    @field_validator("UPLOAD_URL_PREFIX")
    @classmethod
    def _normalize_url_prefix(cls, v: str) -> str:
        v = v.strip()
        if not v.startswith("/"):
            raise ValueError("UPLOAD_URL_PREFIX must start with '/'")
        return v.rstrip("/") or "/uploads"

    @field_validator("BASE_URL")
    @classmethod
    def _strip_base_url(cls, v: str) -> str:
        return v.strip().rstrip("/")

    @model_validator(mode="after")
    def _validate_required_fields(self) -> BaseAppSettings:
        # Heroku-style postgres:// URLs
        if self.DATABASE_URL and self.DATABASE_URL.startswith("postgres://"):
            self.DATABASE_URL = self.DATABASE_URL.replace("postgres://", "postgresql://", 1)

        if self.ENV.lower() == "prod":
            missing = [name for name in ("DATABASE_URL", "BASE_URL") if not getattr(self, name)]
            if missing:
                raise ValueError(f"Missing required production settings: {', '.join(missing)}")
        return self


class DevSettings(BaseAppSettings):
    ENV: str = "dev"
    DATABASE_URL: str = "sqlite:///./storage/dev.db"
    BASE_URL: str = "http://localhost:8000"


class TestSettings(BaseAppSettings):
    ENV: str = "test"
    DATABASE_URL: str = "sqlite:///:memory:"
    BASE_URL: str = "http://testserver"
    UPLOAD_DIR: str = "./storage/test-uploads"


class ProdSettings(BaseAppSettings):
    ENV: str = "prod"
    CORS_ALLOW_ORIGINS: list[str] = [
        "https://sentulgolf.com",
        "https://www.sentulgolf.com",
        "https://admin.sentulgolf.com",
    ]
    CORS_ALLOW_CREDENTIALS: bool = True
    LOG_FORMAT: str = "json"


_ENV_TO_SETTINGS: dict[str, type[BaseAppSettings]] = {
    "dev": DevSettings,
    "development": DevSettings,
    "test": TestSettings,
    "testing": TestSettings,
    "prod": ProdSettings,
    "production": ProdSettings,
}


@lru_cache
def get_settings() -> BaseAppSettings:
    env_name = os.getenv("APP_ENV") or os.getenv("ENV") or "dev"
    env = env_name.lower()
    settings_cls = _ENV_TO_SETTINGS.get(env, DevSettings)
    return settings_cls()


settings = get_settings()
