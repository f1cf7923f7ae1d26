from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Literal

AppEnv = Literal["dev", "test", "prod"]
LogLevel = Literal["debug", "info", "warning", "error"]


def _getenv(name: str, default: str) -> str:
    # Centralize env access so it's easy to extend later (type casting, required vars)
    return os.environ.get(name, default).strip()


def _getbool(name: str, default: bool) -> bool:
    raw = _getenv(name, "true" if default else "false").lower()
    if raw in ("1", "true", "yes", "on"):
        return True
    if raw in ("0", "false", "no", "off", ""):
        return False
    raise ValueError(f"{name} must be a boolean (got {raw!r})")


@dataclass(frozen=True)
class Settings:
    app_env: AppEnv
    log_level: LogLevel
    log_json: bool
    port: int
    database_url: str | None
    redis_url: str | None

    # External scheduling platform (single static credential)
    scheduling_api_url: str | None
    scheduling_api_key: str | None
    scheduling_timeout_seconds: float

    # The out-of-band provisioned account that owns every external team
    default_admin_email: str | None

    # Tenant provisioning collaborator
    tenant_api_url: str | None
    tenant_api_key: str | None
    tenant_domain_suffix: str

    # Shared secret for booking status notifications
    webhook_secret: str | None

    # Caller authentication: the identity provider's ES256 verifying key (PEM)
    jwt_public_key: str | None = None
    jwt_issuer: str = "calsync-service"
    jwt_audience: str = "calsync-service"

    # A pending booking older than this is treated as abandoned
    booking_pending_stale_seconds: float = 60.0

    @property
    def is_dev(self) -> bool:
        return self.app_env == "dev"

    @property
    def is_test(self) -> bool:
        return self.app_env == "test"

    @property
    def is_prod(self) -> bool:
        return self.app_env == "prod"


def load_settings() -> Settings:
    app_env_raw = _getenv("APP_ENV", "dev").lower()
    log_level_raw = _getenv("LOG_LEVEL", "info").lower()
    port_raw = _getenv("PORT", "8000")
    timeout_raw = _getenv("SCHEDULING_TIMEOUT_SECONDS", "10")

    if app_env_raw not in ("dev", "test", "prod"):
        raise ValueError(f"APP_ENV must be dev|test|prod (got {app_env_raw!r})")

    if log_level_raw not in ("debug", "info", "warning", "error"):
        raise ValueError(
            f"LOG_LEVEL must be debug|info|warning|error (got {log_level_raw!r})"
        )

    try:
        port = int(port_raw)
    except ValueError:
        raise ValueError(f"PORT must be an integer (got {port_raw!r})") from None

    try:
        scheduling_timeout = float(timeout_raw)
    except ValueError:
        raise ValueError(
            f"SCHEDULING_TIMEOUT_SECONDS must be a number (got {timeout_raw!r})"
        ) from None
    if scheduling_timeout <= 0:
        raise ValueError(
            f"SCHEDULING_TIMEOUT_SECONDS must be positive (got {timeout_raw!r})"
        )

    database_url = _getenv("DATABASE_URL", "") or None
    redis_url = _getenv("REDIS_URL", "") or None
    scheduling_api_url = _getenv("SCHEDULING_API_URL", "") or None
    scheduling_api_key = _getenv("SCHEDULING_API_KEY", "") or None
    default_admin_email = _getenv("DEFAULT_ADMIN_EMAIL", "").lower() or None
    tenant_api_url = _getenv("TENANT_API_URL", "") or None
    tenant_api_key = _getenv("TENANT_API_KEY", "") or None
    tenant_domain_suffix = _getenv("TENANT_DOMAIN_SUFFIX", "tenants.local").lower()
    webhook_secret = _getenv("WEBHOOK_SECRET", "") or None

    if scheduling_api_url and not scheduling_api_key:
        raise ValueError("SCHEDULING_API_KEY is required when SCHEDULING_API_URL is set")

    # Env files usually carry the PEM on one line with literal \n escapes
    jwt_public_key = _getenv("JWT_PUBLIC_KEY", "").replace("\\n", "\n") or None
    if app_env_raw == "prod" and jwt_public_key is None:
        raise ValueError("JWT_PUBLIC_KEY is required when APP_ENV=prod")

    stale_raw = _getenv("BOOKING_PENDING_STALE_SECONDS", "60")
    try:
        booking_pending_stale = float(stale_raw)
    except ValueError:
        raise ValueError(
            f"BOOKING_PENDING_STALE_SECONDS must be a number (got {stale_raw!r})"
        ) from None
    if booking_pending_stale <= 0:
        raise ValueError(
            f"BOOKING_PENDING_STALE_SECONDS must be positive (got {stale_raw!r})"
        )

    return Settings(  # type: ignore[arg-type]
        app_env=app_env_raw,
        log_level=log_level_raw,
        log_json=_getbool("LOG_JSON", False),
        port=port,
        database_url=database_url,
        redis_url=redis_url,
        scheduling_api_url=scheduling_api_url,
        scheduling_api_key=scheduling_api_key,
        scheduling_timeout_seconds=scheduling_timeout,
        default_admin_email=default_admin_email,
        tenant_api_url=tenant_api_url,
        tenant_api_key=tenant_api_key,
        tenant_domain_suffix=tenant_domain_suffix,
        webhook_secret=webhook_secret,
        jwt_public_key=jwt_public_key,
        jwt_issuer=_getenv("JWT_ISSUER", "calsync-service"),
        jwt_audience=_getenv("JWT_AUDIENCE", "calsync-service"),
        booking_pending_stale_seconds=booking_pending_stale,
    )


# Optional: module-level singleton so imports are cheap
SETTINGS = load_settings()
