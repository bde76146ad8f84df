from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Literal
from urllib.parse import urlsplit

AppEnv = Literal["dev", "test", "prod"]
LogLevel = Literal["debug", "info", "warning", "error"]
HasherName = Literal["sha256", "argon2"]

_LOCAL_HOSTS = ("localhost", "127.0.0.1")


def _getenv(name: str, default: str) -> str:
    return os.environ.get(name, default).strip()


def _getenv_bool(name: str, default: bool) -> bool:
    raw = _getenv(name, "true" if default else "false").lower()
    if raw in ("1", "true", "yes", "on"):
        return True
    if raw in ("0", "false", "no", "off", ""):
        return False
    raise ValueError(f"{name} must be a boolean (got {raw!r})")


def _getenv_int(name: str, default: int, *, minimum: int = 1) -> int:
    raw = _getenv(name, str(default))
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer (got {raw!r})") from None
    if value < minimum:
        raise ValueError(f"{name} must be >= {minimum} (got {value})")
    return value


def _getenv_scopes(name: str, default: str) -> tuple[str, ...]:
    return tuple(s for s in _getenv(name, default).split() if s)


def validate_issuer_url(url: str) -> None:
    """Reject issuer URLs that RFC 8414 does not allow.

    https is required except for localhost, and the issuer may carry
    neither a query nor a fragment.
    """
    parts = urlsplit(url)
    if parts.scheme not in ("http", "https") or not parts.netloc:
        raise ValueError(f"Issuer URL must be an absolute http(s) URL (got {url!r})")
    if parts.scheme != "https" and parts.hostname not in _LOCAL_HOSTS:
        raise ValueError(f"Issuer URL {url!r} must be HTTPS")
    if parts.fragment:
        raise ValueError(f"Issuer URL {url!r} must not have a fragment")
    if parts.query:
        raise ValueError(f"Issuer URL {url!r} must not have a query string")


@dataclass(frozen=True)
class Settings:
    app_env: AppEnv
    log_level: LogLevel
    log_json: bool
    port: int
    database_url: str | None
    redis_url: str | None
    db_path: str = "./db"
    issuer_url: str = "http://localhost:8000"
    resource_server_url: str = "http://localhost:8000"
    resource_name: str = "oauth-server"
    service_documentation_url: str | None = None
    access_token_lifetime: int = 3600
    refresh_token_lifetime: int = 86400
    authorization_code_lifetime: int = 600
    session_ttl: int = 1800
    allowed_scopes: tuple[str, ...] = ("read", "write", "admin")
    default_scopes: tuple[str, ...] = ("read",)
    cleanup_interval: int = 3600
    session_cleanup_interval: int = 300
    password_hasher: HasherName = "sha256"
    use_https: bool = False

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

    issuer_url = _getenv("OAUTH_ISSUER_URL", "") or f"http://localhost:{port}"
    validate_issuer_url(issuer_url)
    resource_server_url = _getenv("OAUTH_RESOURCE_SERVER_URL", "") or issuer_url

    allowed_scopes = _getenv_scopes("OAUTH_ALLOWED_SCOPES", "read write admin")
    default_scopes = _getenv_scopes("OAUTH_DEFAULT_SCOPES", "read")
    if not allowed_scopes:
        raise ValueError("OAUTH_ALLOWED_SCOPES must name at least one scope")
    unknown = [s for s in default_scopes if s not in allowed_scopes]
    if unknown:
        raise ValueError(
            f"OAUTH_DEFAULT_SCOPES must be a subset of OAUTH_ALLOWED_SCOPES "
            f"(unknown: {', '.join(unknown)})"
        )

    hasher_raw = _getenv("PASSWORD_HASHER", "sha256").lower()
    if hasher_raw not in ("sha256", "argon2"):
        raise ValueError(f"PASSWORD_HASHER must be sha256|argon2 (got {hasher_raw!r})")

    return Settings(  # type: ignore[arg-type]
        app_env=app_env_raw,
        log_level=log_level_raw,
        log_json=_getenv_bool("LOG_JSON", False),
        port=port,
        database_url=_getenv("DATABASE_URL", "") or None,
        redis_url=_getenv("REDIS_URL", "") or None,
        db_path=_getenv("OAUTH_DB_PATH", "./db"),
        issuer_url=issuer_url,
        resource_server_url=resource_server_url,
        resource_name=_getenv("OAUTH_RESOURCE_NAME", "oauth-server"),
        service_documentation_url=_getenv("OAUTH_SERVICE_DOCUMENTATION_URL", "")
        or None,
        access_token_lifetime=_getenv_int("OAUTH_ACCESS_TOKEN_LIFETIME", 3600),
        refresh_token_lifetime=_getenv_int("OAUTH_REFRESH_TOKEN_LIFETIME", 86400),
        authorization_code_lifetime=_getenv_int(
            "OAUTH_AUTHORIZATION_CODE_LIFETIME", 600
        ),
        session_ttl=_getenv_int("OAUTH_SESSION_TTL", 1800),
        allowed_scopes=allowed_scopes,
        default_scopes=default_scopes,
        cleanup_interval=_getenv_int("OAUTH_CLEANUP_INTERVAL", 3600),
        session_cleanup_interval=_getenv_int("OAUTH_SESSION_CLEANUP_INTERVAL", 300),
        password_hasher=hasher_raw,
        use_https=_getenv_bool("USE_HTTPS", False),
    )


SETTINGS = load_settings()
