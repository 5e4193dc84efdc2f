"""
Enumeration types for the username checker service.

These enums provide type-safe constants for failure kinds, error codes,
and logging levels throughout the system.
"""

from enum import Enum


class CheckFailureKind(Enum):
    """Discriminator of a failed availability check."""

    ORIGIN_ERROR = "origin_error"
    RATE_LIMITED = "rate_limited"
    STORE_UNAVAILABLE = "store_unavailable"


class LoginErrorCode(Enum):
    """Error codes for the login protocol."""

    FLOW_ID_MISSING = "flow_id_missing"
    CSRF_MISSING = "csrf_missing"
    LOGIN_REJECTED = "login_rejected"
    TIMEOUT = "timeout"
    NETWORK_ERROR = "network_error"
    SESSION_COOKIE_MISSING = "session_cookie_missing"


class StoreErrorCode(Enum):
    """Error codes for key-value store operations."""

    CONNECTION_ERROR = "connection_error"
    TIMEOUT = "timeout"
    SCRIPT_ERROR = "script_error"
    COMMAND_ERROR = "command_error"


class LogLevel(Enum):
    """Logging severity levels."""

    DEBUG = "debug"
    INFO = "info"
    WARN = "warn"
    ERROR = "error"
