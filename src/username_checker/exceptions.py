"""
Exception classes for the username checker service.

All exceptions inherit from UsernameCheckerError and provide structured
error information with codes, messages, and optional details.

Two families matter at runtime:
- StoreError is an infrastructure failure; the checker reports it to the
  caller as an explicit failure result.
- SessionFatalError means the service can no longer authenticate against
  the origin. It is never handled by the checker; the composition root
  (server or CLI) turns it into a controlled shutdown.
"""

from typing import Optional

from .enums import LoginErrorCode


class UsernameCheckerError(Exception):
    """Base exception for all username checker errors."""

    def __init__(
        self,
        code: str,
        message: str,
        details: Optional[dict] = None,
    ) -> None:
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(code={self.code!r}, message={self.message!r})"

    def to_dict(self) -> dict:
        """Convert exception to dictionary for serialization."""
        return {
            "error_type": self.__class__.__name__,
            "code": self.code,
            "message": self.message,
            "details": self.details,
        }


class ConfigError(UsernameCheckerError):
    """Raised when the environment configuration is invalid."""

    pass


class StoreError(UsernameCheckerError):
    """Raised when the key-value store is unreachable or rejects a command."""

    pass


class SessionFatalError(UsernameCheckerError):
    """Raised when the login protocol fails; the process must not keep serving."""

    pass


class FlowIdMissingError(SessionFatalError):
    """Raised when the login-flow redirect carries no flow identifier."""

    pass


class CsrfMissingError(SessionFatalError):
    """Raised when no CSRF cookie was issued for the backend domain."""

    pass


class LoginRejectedError(SessionFatalError):
    """Raised when the credential submission is not answered with a 303 to /settings."""

    def __init__(self, status_code: int, body_snippet: str) -> None:
        super().__init__(
            code=LoginErrorCode.LOGIN_REJECTED.value,
            message=f"Login failed: {status_code} - {body_snippet}",
            details={"status_code": status_code, "body_snippet": body_snippet},
        )
        self.status_code = status_code
        self.body_snippet = body_snippet
