"""
Availability cache for the username checker service.

Cache-aside storage of availability verdicts keyed by the lower-cased
username. Taken names are stored without expiry because a taken name
stays taken; available names expire quickly because they can be claimed
at any moment.
"""

from typing import Optional

from .config import CacheConfig
from .store import KeyValueStore


AVAILABLE = "1"
TAKEN = "0"


class AvailabilityCache:
    """Read and write availability verdicts in the key-value store."""

    def __init__(self, store: KeyValueStore, config: Optional[CacheConfig] = None) -> None:
        self._store = store
        self._config = config or CacheConfig()

    @property
    def config(self) -> CacheConfig:
        return self._config

    def key_for(self, username: str) -> str:
        """Cache key for a username; case-insensitive by construction."""
        return f"{self._config.key_prefix}{username.lower()}"

    async def get(self, username: str) -> Optional[bool]:
        """
        Look up a cached verdict.

        Returns:
            True or False for a hit, None for a miss

        Raises:
            StoreError: If the store is unreachable
        """
        value = await self._store.get(self.key_for(username))
        if value is None:
            return None
        return value == AVAILABLE

    async def set(self, username: str, available: bool) -> None:
        """
        Store a verdict.

        Available verdicts expire after the configured TTL, taken verdicts
        never expire.

        Raises:
            StoreError: If the store is unreachable
        """
        if available:
            await self._store.set(
                self.key_for(username),
                AVAILABLE,
                ex=self._config.available_ttl_seconds,
            )
        else:
            await self._store.set(self.key_for(username), TAKEN)
