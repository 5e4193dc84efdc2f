"""
Availability Checker for the username checker service.

This module provides the orchestration layer that answers one availability
question per call. It integrates:
- The availability cache (cache-aside, consulted first)
- The distributed rate limiter (consulted only on cache misses)
- The session manager (logs in on demand)
- The origin client (the actual availability probe)

The order is fixed: cache, rate limiter, session, origin, cache write.
Failures come back as CheckFailure values; only a failed login escapes as
an exception, because the service cannot do anything useful after it.
"""

import time
from typing import Callable, Optional

import httpx

from .audit_logger import AuditLogger
from .cache import AvailabilityCache
from .config import SystemConfig
from .enums import LogLevel
from .exceptions import StoreError
from .models import CheckFailure, CheckResult, CheckSuccess, SessionStatus
from .origin_client import OriginClient
from .rate_limiter import RateLimiter
from .session import SessionManager
from .store import KeyValueStore


class AvailabilityChecker:
    """
    Main orchestrator for username availability checks.

    Coordinates cache, rate limiter, session and origin so that cached
    answers cost nothing, uncached answers are rate limited per caller, and
    the origin is only contacted with a valid session.
    """

    def __init__(
        self,
        cache: AvailabilityCache,
        rate_limiter: RateLimiter,
        session_manager: SessionManager,
        origin_client: OriginClient,
        clock: Optional[Callable[[], float]] = None,
        logger: Optional[AuditLogger] = None,
    ) -> None:
        """
        Initialize the availability checker.

        Args:
            cache: Availability cache
            rate_limiter: Per-identity rate limiter
            session_manager: Owner of the authenticated session
            origin_client: Availability probe client
            clock: Returns the current epoch time in seconds
            logger: Optional audit logger
        """
        self._cache = cache
        self._rate_limiter = rate_limiter
        self._session_manager = session_manager
        self._origin_client = origin_client
        self._clock = clock or time.time
        self._logger = logger

    @classmethod
    def from_config(
        cls,
        config: SystemConfig,
        store: KeyValueStore,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Optional[Callable[[], float]] = None,
        logger: Optional[AuditLogger] = None,
    ) -> "AvailabilityChecker":
        """Wire all components from the system configuration."""
        session_manager = SessionManager(
            credentials=config.credentials,
            origin=config.origin,
            config=config.session,
            transport=transport,
            clock=clock,
            logger=logger,
        )
        return cls(
            cache=AvailabilityCache(store, config.cache),
            rate_limiter=RateLimiter(store, config.rate_limit, clock=clock, logger=logger),
            session_manager=session_manager,
            origin_client=OriginClient(session_manager, config.origin, logger=logger),
            clock=clock,
            logger=logger,
        )

    async def __aenter__(self) -> "AvailabilityChecker":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    @property
    def session_manager(self) -> SessionManager:
        return self._session_manager

    @property
    def rate_limiter(self) -> RateLimiter:
        return self._rate_limiter

    @property
    def cache(self) -> AvailabilityCache:
        return self._cache

    async def check_username(self, username: str, identity: Optional[str]) -> CheckResult:
        """
        Check whether a username is available.

        Steps:
        1. Cache lookup; a hit returns immediately without touching the limiter
        2. Rate limit for the caller; a denial returns without contacting origin
        3. Ensure a valid session (may log in)
        4. Query the origin: 200 means available, 400 means taken
        5. Cache the verdict

        Args:
            username: Username as requested; cached case-insensitively
            identity: Caller identity (client IP) or None if unknown

        Returns:
            CheckSuccess or CheckFailure

        Raises:
            SessionFatalError: If logging in fails
        """
        try:
            cached = await self._cache.get(username)
        except StoreError as e:
            return self._store_failure("Cache lookup failed", e, username)

        if cached is not None:
            self._log_info(
                "AvailabilityChecker",
                f"Cache hit for {username}",
                {"username": username, "available": cached},
            )
            return CheckSuccess(available=cached, from_cache=True)

        try:
            limit_status = await self._rate_limiter.limit(identity)
        except StoreError as e:
            return self._store_failure("Rate limit evaluation failed", e, username)

        if not limit_status.success:
            now_ms = int(self._clock() * 1000)
            return CheckFailure.rate_limited(
                max(1, limit_status.retry_after_seconds(now_ms))
            )

        await self._session_manager.ensure_logged_in()
        response = await self._origin_client.query(username)

        if self._origin_client.is_session_rejected(response):
            self._log_info(
                "AvailabilityChecker",
                "Origin rejected the session, renewing",
                {"username": username, "status_code": response.status_code},
            )
            self._session_manager.invalidate(response.session_generation)
            await self._session_manager.ensure_logged_in()
            response = await self._origin_client.query(username)

        available = response.verdict
        if available is None:
            self._log_error(
                "AvailabilityChecker",
                f"Origin error for {username}: {response.status_code}",
                {"username": username, "status_code": response.status_code, "error": response.error},
            )
            return CheckFailure.origin_error(response.status_code)

        try:
            await self._cache.set(username, available)
        except StoreError as e:
            # The verdict is genuine; only the caching of it failed.
            self._log_error(
                "AvailabilityChecker",
                "Cache write failed",
                {"username": username, "error_code": e.code, "error": e.message},
            )

        self._log_info(
            "AvailabilityChecker",
            f'Username "{username}" is {"available" if available else "taken"}',
            {"username": username, "available": available},
        )
        return CheckSuccess(available=available, from_cache=False)

    def get_status(self) -> SessionStatus:
        """Report session validity and remaining lifetime."""
        expires_at = self._session_manager.get_expiry()
        hours_left = None
        if expires_at is not None:
            hours_left = round((expires_at.timestamp() - self._clock()) / 3600, 2)
        return SessionStatus(
            logged_in=self._session_manager.is_valid(),
            expires_at=expires_at.isoformat() if expires_at else None,
            hours_left=hours_left,
        )

    async def close(self) -> None:
        await self._session_manager.close()

    def _store_failure(self, message: str, error: StoreError, username: str) -> CheckFailure:
        self._log_error(
            "AvailabilityChecker",
            message,
            {"username": username, "error_code": error.code, "error": error.message},
        )
        return CheckFailure.store_unavailable(error.message)

    def _log_info(self, component: str, message: str, data: dict) -> None:
        """Log an info message if logger is available."""
        if self._logger:
            self._logger.log(LogLevel.INFO, component, message, data)

    def _log_error(self, component: str, message: str, data: dict) -> None:
        """Log an error message if logger is available."""
        if self._logger:
            self._logger.log(LogLevel.ERROR, component, message, data)
