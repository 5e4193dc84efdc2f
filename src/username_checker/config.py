"""
Configuration dataclasses for the username checker service.

This module defines all configuration structures used throughout the system,
including origin endpoints, credentials, session, cache, rate limiting,
store connection, HTTP server and logging configuration, plus the loader
that builds them from the process environment.
"""

import os
import re
from dataclasses import dataclass, field
from typing import Mapping, Optional
from urllib.parse import urlparse

from dotenv import load_dotenv

from .exceptions import ConfigError


@dataclass
class CredentialsConfig:
    """Account used to authenticate against the origin."""

    identifier: str
    password: str

    def __repr__(self) -> str:
        return f"CredentialsConfig(identifier={self.identifier!r}, password='***')"


@dataclass
class OriginConfig:
    """Origin API endpoints and cookie names."""

    accounts_base_url: str = "https://accounts.hytale.com"
    backend_base_url: str = "https://backend.accounts.hytale.com"
    availability_path: str = "/api/account/username-reservations/availability"
    login_init_path: str = "/self-service/login/browser"
    login_submit_path: str = "/self-service/login"
    session_cookie_name: str = "ory_kratos_session"
    csrf_cookie_prefix: str = "csrf_token"
    probe_username: str = "test"
    timeout_seconds: float = 10.0

    @property
    def availability_url(self) -> str:
        return self.accounts_base_url.rstrip("/") + self.availability_path

    @property
    def login_init_url(self) -> str:
        return self.backend_base_url.rstrip("/") + self.login_init_path

    @property
    def login_submit_url(self) -> str:
        return self.backend_base_url.rstrip("/") + self.login_submit_path


@dataclass
class SessionConfig:
    """Session validity configuration."""

    safety_margin_seconds: float = 300.0


@dataclass
class CacheConfig:
    """Availability cache configuration."""

    key_prefix: str = "username:"
    available_ttl_seconds: int = 60


@dataclass
class RateLimitRule:
    """Sliding window rule applied per caller identity."""

    max_requests: int = 30
    window_seconds: int = 60
    operation: str = "check_username"
    key_prefix: str = "ratelimit"


@dataclass
class StoreConfig:
    """Key-value store connection configuration."""

    url: str = "redis://localhost:6379"
    timeout_seconds: float = 5.0


@dataclass
class ServerConfig:
    """HTTP surface configuration."""

    cors_origins: list[str] = field(default_factory=list)
    host: str = "0.0.0.0"
    port: int = 8080


@dataclass
class LoggingConfig:
    """Logging configuration."""

    level: str = "info"
    output_format: str = "text"  # 'json', 'text', 'both'


@dataclass
class SystemConfig:
    """Main system configuration combining all sub-configurations."""

    credentials: CredentialsConfig
    server: ServerConfig
    store: StoreConfig = field(default_factory=StoreConfig)
    origin: OriginConfig = field(default_factory=OriginConfig)
    session: SessionConfig = field(default_factory=SessionConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    rate_limit: RateLimitRule = field(default_factory=RateLimitRule)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


_EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
_STORE_SCHEMES = ("redis", "rediss", "unix")
_LOG_LEVELS = ("debug", "info", "warn", "error")
_LOG_FORMATS = ("json", "text", "both")


def parse_origins(raw: str) -> list[str]:
    """Split a comma-separated origin list, trimming entries and dropping empties."""
    return [origin.strip() for origin in raw.split(",") if origin.strip()]


def _is_http_url(value: str) -> bool:
    parsed = urlparse(value)
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def _get(env: Mapping[str, str], name: str) -> Optional[str]:
    # Empty strings count as unset.
    value = env.get(name)
    if value is None or value.strip() == "":
        return None
    return value


def load_config_from_env(
    env: Optional[Mapping[str, str]] = None,
    dotenv: bool = True,
) -> SystemConfig:
    """
    Build the system configuration from environment variables.

    Args:
        env: Mapping to read from (defaults to os.environ)
        dotenv: Load a .env file into os.environ first (ignored when env is given)

    Returns:
        Validated SystemConfig

    Raises:
        ConfigError: If any variable is missing or malformed. All problems
            are reported at once in details["errors"].
    """
    if env is None:
        if dotenv:
            load_dotenv()
        env = os.environ

    errors: list[str] = []

    identifier = _get(env, "HYTALE_EMAIL")
    if identifier is None:
        errors.append("HYTALE_EMAIL is required")
    elif not _EMAIL_PATTERN.match(identifier):
        errors.append("HYTALE_EMAIL must be a valid email address")

    password = _get(env, "HYTALE_PASSWORD")
    if password is None:
        errors.append("HYTALE_PASSWORD must not be empty")

    cors_origins: list[str] = []
    raw_origins = _get(env, "CORS_ORIGINS")
    if raw_origins is None:
        errors.append("CORS_ORIGINS must contain at least one origin")
    else:
        cors_origins = parse_origins(raw_origins)
        if not cors_origins:
            errors.append("CORS_ORIGINS must contain at least one valid origin")
        for origin in cors_origins:
            if not _is_http_url(origin):
                errors.append(f"Each CORS origin must be a valid URL: {origin!r}")

    store_url = _get(env, "REDIS_URL") or StoreConfig.url
    if urlparse(store_url).scheme not in _STORE_SCHEMES:
        errors.append("REDIS_URL must be a valid URL")

    port = ServerConfig.port
    raw_port = _get(env, "PORT")
    if raw_port is not None:
        try:
            port = int(raw_port)
            if not 0 < port < 65536:
                raise ValueError(raw_port)
        except ValueError:
            errors.append(f"PORT must be an integer between 1 and 65535: {raw_port!r}")

    log_level = (_get(env, "LOG_LEVEL") or LoggingConfig.level).lower()
    if log_level not in _LOG_LEVELS:
        errors.append(f"LOG_LEVEL must be one of {', '.join(_LOG_LEVELS)}")

    log_format = (_get(env, "LOG_FORMAT") or LoggingConfig.output_format).lower()
    if log_format not in _LOG_FORMATS:
        errors.append(f"LOG_FORMAT must be one of {', '.join(_LOG_FORMATS)}")

    if errors:
        raise ConfigError(
            code="invalid_environment",
            message="Invalid environment variables: " + "; ".join(errors),
            details={"errors": errors},
        )

    return SystemConfig(
        credentials=CredentialsConfig(identifier=identifier, password=password),
        server=ServerConfig(
            cors_origins=cors_origins,
            host=_get(env, "HOST") or ServerConfig.host,
            port=port,
        ),
        store=StoreConfig(url=store_url),
        logging=LoggingConfig(level=log_level, output_format=log_format),
    )
