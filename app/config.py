from __future__ import annotations

import os
from dataclasses import dataclass


def _csv(value: str) -> list[str]:
    items: list[str] = []
    for part in (value or "").split(","):
        item = part.strip()
        if item:
            items.append(item)
    return items


def _env_str(name: str, default: str) -> str:
    return str(os.getenv(name, default) or default).strip()


def _env_bool(name: str, default: bool = False) -> bool:
    raw = str(os.getenv(name, "") or "").strip().lower()
    if not raw:
        return default
    return raw in {"1", "true", "yes", "y", "on"}


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)))
    except Exception:
        return default


@dataclass(frozen=True)
class BaseConfig:
    ENV: str = "development"
    DEBUG: bool = False
    TESTING: bool = False

    APP_VERSION: str = "dev"
    TIMEZONE_DISPLAY: str = "Asia/Kolkata"

    DATABASE_URL: str = "sqlite:///./drive.db"

    CORS_ORIGINS: list[str] | str = (
        "http://localhost:5173,http://127.0.0.1:5173,http://localhost:3000,http://127.0.0.1:3000"
    )
    CORS_ALLOW_CREDENTIALS: bool = False

    LOG_LEVEL: str = "INFO"

    RATE_LIMIT_GLOBAL: str = "1200 per minute"
    RATE_LIMIT_DEFAULT: str = "300 per minute"
    RATE_LIMIT_CANDIDATE: str = "120 per minute"

    TRUST_PROXY_HEADERS: bool = True

    INTERNAL_CRON_TOKEN: str = ""
    PUBLIC_BASE_URL: str = "http://localhost:5173"

    # Drive flow
    TEST_LINK_TTL_HOURS: int = 24
    REQUALIFY_BATCH_SIZE: int = 500
    MAX_ROSTER_ROWS: int = 20000

    # Outbound candidate notifications
    NOTIFY_WEBHOOK_URL: str = ""
    NOTIFY_API_KEY: str = ""
    NOTIFY_TIMEOUT_SECONDS: int = 10
    NOTIFY_MAX_WORKERS: int = 8

    ENABLE_SCHEDULER: bool = False
    SCHEDULER_INTERVAL_SECONDS: int = 300

    def __post_init__(self) -> None:
        object.__setattr__(self, "APP_VERSION", _env_str("APP_VERSION", self.APP_VERSION))
        object.__setattr__(self, "TIMEZONE_DISPLAY", _env_str("TIMEZONE_DISPLAY", self.TIMEZONE_DISPLAY))
        object.__setattr__(self, "DATABASE_URL", _env_str("DATABASE_URL", self.DATABASE_URL))

        cors_raw = os.getenv("CORS_ORIGINS")
        if cors_raw is not None:
            cors_raw = str(cors_raw or "").strip()
            if cors_raw == "*":
                object.__setattr__(self, "CORS_ORIGINS", "*")
            else:
                object.__setattr__(self, "CORS_ORIGINS", _csv(cors_raw))
        else:
            object.__setattr__(self, "CORS_ORIGINS", _csv(str(self.CORS_ORIGINS)))

        object.__setattr__(
            self, "CORS_ALLOW_CREDENTIALS", _env_bool("CORS_ALLOW_CREDENTIALS", self.CORS_ALLOW_CREDENTIALS)
        )

        object.__setattr__(self, "LOG_LEVEL", _env_str("LOG_LEVEL", self.LOG_LEVEL).upper())

        object.__setattr__(self, "RATE_LIMIT_GLOBAL", _env_str("RATE_LIMIT_GLOBAL", self.RATE_LIMIT_GLOBAL))
        object.__setattr__(self, "RATE_LIMIT_DEFAULT", _env_str("RATE_LIMIT_DEFAULT", self.RATE_LIMIT_DEFAULT))
        object.__setattr__(self, "RATE_LIMIT_CANDIDATE", _env_str("RATE_LIMIT_CANDIDATE", self.RATE_LIMIT_CANDIDATE))

        object.__setattr__(self, "TRUST_PROXY_HEADERS", _env_bool("TRUST_PROXY_HEADERS", self.TRUST_PROXY_HEADERS))

        object.__setattr__(self, "INTERNAL_CRON_TOKEN", _env_str("INTERNAL_CRON_TOKEN", self.INTERNAL_CRON_TOKEN))
        object.__setattr__(self, "PUBLIC_BASE_URL", _env_str("PUBLIC_BASE_URL", self.PUBLIC_BASE_URL).rstrip("/"))

        object.__setattr__(self, "TEST_LINK_TTL_HOURS", max(1, _env_int("TEST_LINK_TTL_HOURS", self.TEST_LINK_TTL_HOURS)))
        object.__setattr__(
            self, "REQUALIFY_BATCH_SIZE", max(1, _env_int("REQUALIFY_BATCH_SIZE", self.REQUALIFY_BATCH_SIZE))
        )
        object.__setattr__(self, "MAX_ROSTER_ROWS", max(1, _env_int("MAX_ROSTER_ROWS", self.MAX_ROSTER_ROWS)))

        object.__setattr__(self, "NOTIFY_WEBHOOK_URL", _env_str("NOTIFY_WEBHOOK_URL", self.NOTIFY_WEBHOOK_URL))
        object.__setattr__(self, "NOTIFY_API_KEY", _env_str("NOTIFY_API_KEY", self.NOTIFY_API_KEY))
        object.__setattr__(
            self, "NOTIFY_TIMEOUT_SECONDS", max(1, _env_int("NOTIFY_TIMEOUT_SECONDS", self.NOTIFY_TIMEOUT_SECONDS))
        )
        object.__setattr__(self, "NOTIFY_MAX_WORKERS", max(1, _env_int("NOTIFY_MAX_WORKERS", self.NOTIFY_MAX_WORKERS)))

        object.__setattr__(self, "ENABLE_SCHEDULER", _env_bool("ENABLE_SCHEDULER", self.ENABLE_SCHEDULER))
        object.__setattr__(
            self,
            "SCHEDULER_INTERVAL_SECONDS",
            max(30, _env_int("SCHEDULER_INTERVAL_SECONDS", self.SCHEDULER_INTERVAL_SECONDS)),
        )

    @property
    def IS_PRODUCTION(self) -> bool:
        return str(self.ENV or "").lower() == "production"

    def validate(self) -> None:
        if not self.IS_PRODUCTION:
            return
        if not self.DATABASE_URL or self.DATABASE_URL.startswith("sqlite"):
            raise RuntimeError("DATABASE_URL must point at a server database in production")
        if self.CORS_ORIGINS == "*":
            raise RuntimeError("CORS_ORIGINS must list explicit origins in production")
        if not self.INTERNAL_CRON_TOKEN:
            raise RuntimeError("INTERNAL_CRON_TOKEN must be set in production")


@dataclass(frozen=True)
class DevelopmentConfig(BaseConfig):
    ENV: str = "development"
    DEBUG: bool = True


@dataclass(frozen=True)
class ProductionConfig(BaseConfig):
    ENV: str = "production"
    DEBUG: bool = False


@dataclass(frozen=True)
class TestingConfig(BaseConfig):
    ENV: str = "testing"
    TESTING: bool = True
    INTERNAL_CRON_TOKEN: str = "test-cron-token"


def get_config() -> BaseConfig:
    env = str(os.getenv("ENV") or os.getenv("APP_ENV") or "development").strip().lower()
    if env in {"prod", "production"}:
        cfg: BaseConfig = ProductionConfig()
    elif env in {"test", "testing"}:
        cfg = TestingConfig()
    else:
        cfg = DevelopmentConfig()

    cfg.validate()
    return cfg
