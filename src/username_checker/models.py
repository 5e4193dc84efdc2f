"""
Data models for the username checker service.

This module defines the check result variants, rate limit outcomes and the
session status report handed to the HTTP layer.
"""

import math
from dataclasses import dataclass
from typing import Optional, Union

from .enums import CheckFailureKind


@dataclass(frozen=True)
class CheckSuccess:
    """A verdict for one username."""

    available: bool
    from_cache: bool


@dataclass(frozen=True)
class CheckFailure:
    """A check that produced no verdict."""

    kind: CheckFailureKind
    status_code: Optional[int] = None  # ORIGIN_ERROR only; 0 means timeout/network
    retry_after_seconds: Optional[int] = None  # RATE_LIMITED only
    message: Optional[str] = None

    @classmethod
    def origin_error(cls, status_code: int) -> "CheckFailure":
        return cls(kind=CheckFailureKind.ORIGIN_ERROR, status_code=status_code)

    @classmethod
    def rate_limited(cls, retry_after_seconds: int) -> "CheckFailure":
        return cls(
            kind=CheckFailureKind.RATE_LIMITED,
            retry_after_seconds=retry_after_seconds,
        )

    @classmethod
    def store_unavailable(cls, message: str) -> "CheckFailure":
        return cls(kind=CheckFailureKind.STORE_UNAVAILABLE, message=message)


CheckResult = Union[CheckSuccess, CheckFailure]


@dataclass(frozen=True)
class RateLimitStatus:
    """Result of one rate limit evaluation."""

    success: bool
    limit: int
    remaining: int
    reset_at_ms: int

    def retry_after_seconds(self, now_ms: int) -> int:
        """Whole seconds until the window resets, rounded up."""
        return max(0, math.ceil((self.reset_at_ms - now_ms) / 1000))


@dataclass(frozen=True)
class OriginResponse:
    """Raw answer of the origin availability endpoint."""

    status_code: int  # 0 when the request never completed
    error: Optional[str] = None
    session_generation: Optional[int] = None  # session the request was sent with

    @property
    def verdict(self) -> Optional[bool]:
        """True for available, False for taken, None when not a verdict."""
        if self.status_code == 200:
            return True
        if self.status_code == 400:
            return False
        return None


@dataclass(frozen=True)
class SessionStatus:
    """Operational view of the authenticated session."""

    logged_in: bool
    expires_at: Optional[str]  # ISO-8601, UTC
    hours_left: Optional[float]

    def to_dict(self) -> dict:
        return {
            "loggedIn": self.logged_in,
            "expiresAt": self.expires_at,
            "hoursLeft": self.hours_left,
        }
