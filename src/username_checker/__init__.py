"""
Username Checker - availability proxy with one shared authenticated session.

This package checks username availability against an account API on behalf
of many callers, keeping a single logged-in session alive and shielding the
API with a cache and a distributed rate limiter.
"""

__version__ = "0.1.0"
__author__ = "Username Checker Team"

from username_checker.exceptions import (
    UsernameCheckerError,
    ConfigError,
    StoreError,
    SessionFatalError,
    FlowIdMissingError,
    CsrfMissingError,
    LoginRejectedError,
)
from username_checker.enums import (
    CheckFailureKind,
    LoginErrorCode,
    StoreErrorCode,
    LogLevel,
)
from username_checker.config import (
    CredentialsConfig,
    OriginConfig,
    SessionConfig,
    CacheConfig,
    RateLimitRule,
    StoreConfig,
    ServerConfig,
    LoggingConfig,
    SystemConfig,
    load_config_from_env,
)
from username_checker.models import (
    CheckSuccess,
    CheckFailure,
    CheckResult,
    RateLimitStatus,
    OriginResponse,
    SessionStatus,
)
from username_checker.audit_logger import (
    AuditLogger,
    LogEntry,
)
from username_checker.store import (
    KeyValueStore,
)
from username_checker.rate_limiter import (
    RateLimiter,
)
from username_checker.cache import (
    AvailabilityCache,
)
from username_checker.session import (
    Session,
    SessionManager,
)
from username_checker.origin_client import (
    OriginClient,
)
from username_checker.checker import (
    AvailabilityChecker,
)
from username_checker.self_test import (
    SelfTest,
    SelfTestResult,
    ComponentTestResult,
    ConfigValidationResult,
)

__all__ = [
    # Exceptions
    "UsernameCheckerError",
    "ConfigError",
    "StoreError",
    "SessionFatalError",
    "FlowIdMissingError",
    "CsrfMissingError",
    "LoginRejectedError",
    # Enums
    "CheckFailureKind",
    "LoginErrorCode",
    "StoreErrorCode",
    "LogLevel",
    # Configuration
    "CredentialsConfig",
    "OriginConfig",
    "SessionConfig",
    "CacheConfig",
    "RateLimitRule",
    "StoreConfig",
    "ServerConfig",
    "LoggingConfig",
    "SystemConfig",
    "load_config_from_env",
    # Models
    "CheckSuccess",
    "CheckFailure",
    "CheckResult",
    "RateLimitStatus",
    "OriginResponse",
    "SessionStatus",
    # Logging
    "AuditLogger",
    "LogEntry",
    # Store
    "KeyValueStore",
    # Rate Limiter
    "RateLimiter",
    # Cache
    "AvailabilityCache",
    # Session
    "Session",
    "SessionManager",
    # Origin
    "OriginClient",
    # Checker
    "AvailabilityChecker",
    # Self-Test
    "SelfTest",
    "SelfTestResult",
    "ComponentTestResult",
    "ConfigValidationResult",
]
