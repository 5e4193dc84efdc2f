"""
Rate Limiter module for the username checker service.

This module provides a distributed sliding-window rate limiter:
- Counters live in the key-value store, one per identity and fixed bucket
- The previous bucket is weighted by how much of it still overlaps the
  sliding window, which approximates a true rolling window
- Check and increment run as one Lua script so concurrent callers, even
  from different processes, can never both take the last permit
"""

import time
from typing import Callable, Optional

from username_checker.audit_logger import AuditLogger
from username_checker.config import RateLimitRule
from username_checker.enums import LogLevel
from username_checker.models import RateLimitStatus
from username_checker.store import KeyValueStore


UNKNOWN_IDENTITY = "unknown"

# KEYS[1]: counter of the current bucket, KEYS[2]: counter of the previous bucket
# ARGV[1]: limit, ARGV[2]: now in ms, ARGV[3]: window in ms
# Returns {allowed (0|1), remaining}
SLIDING_WINDOW_SCRIPT = """
local current_key = KEYS[1]
local previous_key = KEYS[2]
local limit = tonumber(ARGV[1])
local now_ms = tonumber(ARGV[2])
local window_ms = tonumber(ARGV[3])

local current = tonumber(redis.call('GET', current_key) or '0')
local previous = tonumber(redis.call('GET', previous_key) or '0')

-- Share of the previous bucket still inside the sliding window
local elapsed_ratio = (now_ms % window_ms) / window_ms
local weighted_previous = math.floor((1 - elapsed_ratio) * previous)

if weighted_previous + current >= limit then
    return {0, 0}
end

local count = redis.call('INCR', current_key)
if count == 1 then
    -- Keep the bucket around while it can still be someone's previous bucket
    redis.call('PEXPIRE', current_key, window_ms * 2 + 1000)
end

return {1, limit - (count + weighted_previous)}
"""


class RateLimiter:
    """
    Sliding-window rate limiter evaluated inside the key-value store.

    Each call consumes at most one permit for the given identity. There is
    no client-side state and no client-side locking; atomicity comes from
    the store executing the script as a single command.
    """

    def __init__(
        self,
        store: KeyValueStore,
        rule: Optional[RateLimitRule] = None,
        clock: Optional[Callable[[], float]] = None,
        logger: Optional[AuditLogger] = None,
    ) -> None:
        """
        Initialize the rate limiter.

        Args:
            store: Key-value store adapter
            rule: Limit, window and operation name (defaults to 30 per 60s)
            clock: Returns the current epoch time in seconds
            logger: Optional audit logger
        """
        self._store = store
        self._rule = rule or RateLimitRule()
        self._clock = clock or time.time
        self._logger = logger

    @property
    def rule(self) -> RateLimitRule:
        return self._rule

    def now_ms(self) -> int:
        return int(self._clock() * 1000)

    def build_identifier(self, identity: Optional[str]) -> str:
        """Combine the operation name and the caller identity into one key part."""
        return f"{self._rule.operation}:{identity or UNKNOWN_IDENTITY}"

    def _bucket_key(self, identifier: str, bucket: int) -> str:
        return f"{self._rule.key_prefix}:{identifier}:{bucket}"

    async def limit(self, identity: Optional[str]) -> RateLimitStatus:
        """
        Try to consume one permit for the identity.

        Args:
            identity: Caller identity, usually the client IP; None means unknown

        Returns:
            RateLimitStatus with success flag and the epoch ms of the window reset

        Raises:
            StoreError: If the store cannot evaluate the script
        """
        identifier = self.build_identifier(identity)
        window_ms = int(self._rule.window_seconds * 1000)
        now_ms = self.now_ms()
        bucket = now_ms // window_ms
        reset_at_ms = (bucket + 1) * window_ms

        allowed, remaining = await self._store.run_script(
            SLIDING_WINDOW_SCRIPT,
            keys=[
                self._bucket_key(identifier, bucket),
                self._bucket_key(identifier, bucket - 1),
            ],
            args=[self._rule.max_requests, now_ms, window_ms],
        )

        status = RateLimitStatus(
            success=bool(int(allowed)),
            limit=self._rule.max_requests,
            remaining=max(0, int(remaining)),
            reset_at_ms=reset_at_ms,
        )

        if not status.success and self._logger:
            self._logger.log(
                LogLevel.INFO,
                "RateLimiter",
                f"Rate limit reached for {identifier}",
                {
                    "identity": identity or UNKNOWN_IDENTITY,
                    "limit": status.limit,
                    "reset_at_ms": reset_at_ms,
                },
            )

        return status
