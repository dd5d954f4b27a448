from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import List, Tuple

from dotenv import load_dotenv


ROOT_DIR = Path(__file__).resolve().parents[3]
ENV_FILE_NAME = "portfolio.env"
DEV_SESSION_SECRET = "dev-secret-change-me"
DEFAULT_LOCALES = ("en", "tr", "de")
DEFAULT_SCOPES = ("openid", "profile", "email")


@dataclass(frozen=True)
class Settings:
    environment: str
    session_secret: str
    session_max_age_days: int
    session_cookie_name: str
    cookie_secure: bool
    oauth_issuer: str
    oauth_client_id: str
    oauth_client_secret: str | None
    oauth_redirect_uri: str
    oauth_scopes: Tuple[str, ...]
    discovery_ttl_seconds: int
    http_timeout_seconds: int
    database_path: Path
    supported_locales: Tuple[str, ...]
    default_locale: str
    site_url: str
    site_name: str
    admin_emails: Tuple[str, ...]
    log_level: str

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def session_max_age_seconds(self) -> int:
        return self.session_max_age_days * 24 * 60 * 60


def parse_env_bool(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    lowered = value.strip().lower()
    if lowered in {"1", "true", "t", "yes", "y", "on"}:
        return True
    if lowered in {"0", "false", "f", "no", "n", "off"}:
        return False
    return default


def _parse_env_int(name: str, default: int, *, minimum: int = 1) -> int:
    raw = os.getenv(name, "")
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        return default
    return value if value >= minimum else default


def _parse_csv_env(var_name: str, *, lower: bool = False) -> List[str]:
    raw = os.getenv(var_name, "")
    if not raw:
        return []
    values = []
    for part in raw.split(","):
        item = part.strip()
        if lower:
            item = item.lower()
        if item and item not in values:
            values.append(item)
    return values


def _normalize_cookie_name(name: str, *, cookie_secure: bool, fallback: str) -> str:
    value = (name or "").strip() or fallback
    if not cookie_secure and value.startswith("__Host-"):
        value = value[len("__Host-") :].strip() or fallback
    return value


def load_env_file(path: Path | None = None) -> bool:
    """Apply ``portfolio.env`` without overriding variables already set."""
    env_path = path or Path.cwd() / ENV_FILE_NAME
    if not env_path.is_file():
        return False
    return load_dotenv(env_path, override=False)


def load_settings() -> Settings:
    environment = os.getenv("PORTFOLIO_ENV", "development").strip().lower() or "development"
    if environment not in {"development", "production", "test"}:
        environment = "development"
    cookie_secure = parse_env_bool(
        os.getenv("PORTFOLIO_SESSION_COOKIE_SECURE"),
        default=environment == "production",
    )

    session_secret = os.getenv("PORTFOLIO_SESSION_SECRET", "").strip()
    if len(session_secret) < 8:
        session_secret = DEV_SESSION_SECRET

    cookie_default = "__Host-portfolio_session" if cookie_secure else "portfolio_session"
    session_cookie_name = _normalize_cookie_name(
        os.getenv("PORTFOLIO_SESSION_COOKIE_NAME", cookie_default),
        cookie_secure=cookie_secure,
        fallback=cookie_default,
    )

    locales = tuple(_parse_csv_env("PORTFOLIO_LOCALES", lower=True)) or DEFAULT_LOCALES
    default_locale = os.getenv("PORTFOLIO_DEFAULT_LOCALE", "").strip().lower()
    if default_locale not in locales:
        default_locale = locales[0]

    scopes = tuple(os.getenv("PORTFOLIO_OAUTH_SCOPES", "").split()) or DEFAULT_SCOPES
    if "openid" not in scopes:
        scopes = ("openid",) + scopes

    raw_db_path = os.getenv("PORTFOLIO_DATABASE_PATH", "").strip()
    database_path = Path(raw_db_path).expanduser() if raw_db_path else ROOT_DIR / "data" / "portfolio.sqlite3"

    return Settings(
        environment=environment,
        session_secret=session_secret,
        session_max_age_days=_parse_env_int("PORTFOLIO_SESSION_MAX_AGE_DAYS", 7),
        session_cookie_name=session_cookie_name,
        cookie_secure=cookie_secure,
        oauth_issuer=os.getenv("PORTFOLIO_OAUTH_ISSUER", "").strip() or "https://example-issuer.test",
        oauth_client_id=os.getenv("PORTFOLIO_OAUTH_CLIENT_ID", "").strip() or "demo-client-id",
        oauth_client_secret=os.getenv("PORTFOLIO_OAUTH_CLIENT_SECRET", "").strip() or None,
        oauth_redirect_uri=os.getenv("PORTFOLIO_OAUTH_REDIRECT_URI", "").strip()
        or "http://localhost:4321/auth/callback",
        oauth_scopes=scopes,
        discovery_ttl_seconds=_parse_env_int("PORTFOLIO_OIDC_DISCOVERY_TTL_SECONDS", 0, minimum=0),
        http_timeout_seconds=_parse_env_int("PORTFOLIO_OIDC_HTTP_TIMEOUT_SECONDS", 10),
        database_path=database_path,
        supported_locales=locales,
        default_locale=default_locale,
        site_url=(os.getenv("PORTFOLIO_SITE_URL", "").strip() or "http://localhost:4321").rstrip("/"),
        site_name=os.getenv("PORTFOLIO_SITE_NAME", "").strip() or "Orange Spark",
        admin_emails=tuple(_parse_csv_env("PORTFOLIO_ADMIN_EMAILS", lower=True)),
        log_level=(os.getenv("PORTFOLIO_LOG_LEVEL", "").strip() or "INFO").upper(),
    )


def validate_settings(settings: Settings) -> None:
    if settings.is_production and settings.session_secret == DEV_SESSION_SECRET:
        raise RuntimeError("PORTFOLIO_SESSION_SECRET must be set in production")
    if settings.is_production and not settings.cookie_secure:
        logging.getLogger(__name__).warning("Session cookie is not marked Secure in production")


def configure_logging(settings: Settings) -> None:
    level = getattr(logging, settings.log_level, logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    logging.getLogger("portfolio").setLevel(level)
