from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Literal

AppEnv = Literal["dev", "test", "prod"]
LogLevel = Literal["debug", "info", "warning", "error"]

_TRUTHY = ("1", "true", "yes", "on")
_FALSY = ("0", "false", "no", "off")


def _getenv(name: str, default: str) -> str:
    return os.environ.get(name, default).strip()


def _getbool(name: str, default: bool) -> bool:
    raw = _getenv(name, "true" if default else "false").lower()
    if raw in _TRUTHY:
        return True
    if raw in _FALSY:
        return False
    raise ValueError(f"{name} must be a boolean (got {raw!r})")


def _getint(name: str, default: int | None, *, minimum: int = 0) -> int | None:
    raw = _getenv(name, "" if default is None else str(default))
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer (got {raw!r})") from None
    if value < minimum:
        raise ValueError(f"{name} must be >= {minimum} (got {value})")
    return value


@dataclass(frozen=True)
class TenancyPolicy:
    """Deployment-wide switches for how tenants come into existence.

    allow_public_registration: False means an account can only be created
        for an email that holds a pending invitation.
    allow_org_creation: False means POST /organizations is rejected.
    max_members_per_org: None disables the cap.
    """

    allow_public_registration: bool = True
    allow_org_creation: bool = True
    max_members_per_org: int | None = None


@dataclass(frozen=True)
class SmtpSettings:
    host: str | None = None
    port: int = 587
    username: str | None = None
    password: str | None = None
    mail_from: str = "no-reply@localhost"
    use_tls: bool = True


@dataclass(frozen=True)
class Settings:
    app_env: AppEnv
    log_level: LogLevel
    port: int
    database_url: str | None
    redis_url: str | None
    log_json: bool = False
    app_url: str = "http://localhost:5173"
    invite_ttl_days: int = 7
    lockout_max_attempts: int = 5
    lockout_minutes: int = 15
    jwt_private_key_file: str | None = None
    smtp: SmtpSettings = field(default_factory=SmtpSettings)
    tenancy: TenancyPolicy = field(default_factory=TenancyPolicy)

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

    smtp = SmtpSettings(
        host=_getenv("SMTP_HOST", "") or None,
        port=_getint("SMTP_PORT", 587, minimum=1),  # type: ignore[arg-type]
        username=_getenv("SMTP_USER", "") or None,
        password=_getenv("SMTP_PASSWORD", "") or None,
        mail_from=_getenv("MAIL_FROM", "no-reply@localhost"),
        use_tls=_getbool("SMTP_TLS", True),
    )

    tenancy = TenancyPolicy(
        allow_public_registration=_getbool("ALLOW_PUBLIC_REGISTRATION", True),
        allow_org_creation=_getbool("ALLOW_ORG_CREATION", True),
        max_members_per_org=_getint("MAX_MEMBERS_PER_ORG", None, minimum=1),
    )

    return Settings(  # type: ignore[arg-type]
        app_env=app_env_raw,
        log_level=log_level_raw,
        port=port,
        database_url=_getenv("DATABASE_URL", "") or None,
        redis_url=_getenv("REDIS_URL", "") or None,
        log_json=_getbool("LOG_JSON", False),
        app_url=_getenv("APP_URL", "http://localhost:5173").rstrip("/"),
        invite_ttl_days=_getint("INVITE_TTL_DAYS", 7, minimum=1),
        lockout_max_attempts=_getint("LOCKOUT_MAX_ATTEMPTS", 5, minimum=1),
        lockout_minutes=_getint("LOCKOUT_MINUTES", 15, minimum=1),
        jwt_private_key_file=_getenv("JWT_PRIVATE_KEY_FILE", "") or None,
        smtp=smtp,
        tenancy=tenancy,
    )
