"""Environment-backed application settings with strict validation."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Mapping

logger = logging.getLogger(__name__)

REQUIRED_ENV_VARS = (
    "DATABASE_URL",
    "JWT_SECRET",
)

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


def _read_env_var(name: str, env: Mapping[str, str | None]) -> str:
    value = env.get(name)
    if value is None or str(value).strip() == "":
        raise RuntimeError(f"Missing required environment variable: {name}")
    return str(value)


def _read_optional(name: str, env: Mapping[str, str | None], default: str | None = None) -> str | None:
    value = env.get(name)
    if value is None or str(value).strip() == "":
        return default
    return str(value).strip()


def _read_int(name: str, env: Mapping[str, str | None], default: int) -> int:
    raw = _read_optional(name, env)
    if raw is None:
        return default
    try:
        value = int(raw)
    except ValueError as exc:
        raise RuntimeError(f"Environment variable {name} must be an integer") from exc
    if value <= 0:
        raise RuntimeError(f"Environment variable {name} must be positive")
    return value


def _read_bool(name: str, env: Mapping[str, str | None], default: bool) -> bool:
    raw = _read_optional(name, env)
    if raw is None:
        return default
    normalized = raw.lower()
    if normalized in _TRUE_VALUES:
        return True
    if normalized in _FALSE_VALUES:
        return False
    raise RuntimeError(f"Environment variable {name} must be a boolean")


@dataclass(frozen=True)
class Settings:
    database_url: str
    jwt_secret: str
    app_env: str = "development"
    log_level: str = "INFO"
    session_ttl_seconds: int = 3600
    otp_ttl_seconds: int = 600
    login_rate_limit_max: int = 10
    login_rate_limit_window_seconds: int = 60
    client_url: str = "*"
    razorpay_key_id: str | None = None
    razorpay_key_secret: str | None = None
    razorpay_plan_id: str | None = None
    razorpay_webhook_secret: str | None = None
    razorpay_base_url: str = "https://api.razorpay.com"
    razorpay_total_count: int = 12
    allow_unsigned_webhooks: bool = False
    smtp_host: str | None = None
    smtp_port: int = 587
    smtp_username: str | None = None
    smtp_password: str | None = None
    mail_from: str | None = None
    mail_from_name: str = "Expense Tracker"
    smtp_use_tls: bool = True


def load_settings(env: Mapping[str, str | None] | None = None) -> Settings:
    """Load and validate environment variables into a Settings object."""
    source_env = os.environ if env is None else env

    missing = [key for key in REQUIRED_ENV_VARS if not str(source_env.get(key) or "").strip()]
    if missing:
        raise RuntimeError(f"Missing required environment variables: {', '.join(missing)}")

    settings = Settings(
        database_url=_read_env_var("DATABASE_URL", source_env),
        jwt_secret=_read_env_var("JWT_SECRET", source_env),
        app_env=_read_optional("APP_ENV", source_env, "development"),
        log_level=_read_optional("LOG_LEVEL", source_env, "INFO").upper(),
        session_ttl_seconds=_read_int("SESSION_TTL_SECONDS", source_env, 3600),
        otp_ttl_seconds=_read_int("OTP_TTL_SECONDS", source_env, 600),
        login_rate_limit_max=_read_int("LOGIN_RATE_LIMIT_MAX", source_env, 10),
        login_rate_limit_window_seconds=_read_int("LOGIN_RATE_LIMIT_WINDOW_SECONDS", source_env, 60),
        client_url=_read_optional("CLIENT_URL", source_env, "*"),
        razorpay_key_id=_read_optional("RAZORPAY_KEY_ID", source_env),
        razorpay_key_secret=_read_optional("RAZORPAY_KEY_SECRET", source_env),
        razorpay_plan_id=_read_optional("RAZORPAY_PLAN_ID", source_env),
        razorpay_webhook_secret=_read_optional("RAZORPAY_WEBHOOK_SECRET", source_env),
        razorpay_base_url=_read_optional("RAZORPAY_BASE_URL", source_env, "https://api.razorpay.com"),
        razorpay_total_count=_read_int("RAZORPAY_TOTAL_COUNT", source_env, 12),
        allow_unsigned_webhooks=_read_bool("ALLOW_UNSIGNED_WEBHOOKS", source_env, False),
        smtp_host=_read_optional("SMTP_HOST", source_env),
        smtp_port=_read_int("SMTP_PORT", source_env, 587),
        smtp_username=_read_optional("SMTP_USERNAME", source_env),
        smtp_password=_read_optional("SMTP_PASSWORD", source_env),
        mail_from=_read_optional("MAIL_FROM", source_env),
        mail_from_name=_read_optional("MAIL_FROM_NAME", source_env, "Expense Tracker"),
        smtp_use_tls=_read_bool("SMTP_USE_TLS", source_env, True),
    )

    if not settings.razorpay_webhook_secret and settings.allow_unsigned_webhooks:
        logger.warning("Webhook signature verification disabled: RAZORPAY_WEBHOOK_SECRET is not set")
    logger.info("Loaded application settings for env=%s", settings.app_env)
    return settings
