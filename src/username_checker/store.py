"""
Key-value store adapter for the username checker service.

Translates the abstract operations used by the cache and the rate limiter
(get, set with expiry, atomic script evaluation, set/hash helpers) into
calls on a redis.asyncio client. Every client-side failure is converted
into a StoreError so callers never mistake an outage for a cache miss or
a permitted request.
"""

from contextlib import contextmanager
from typing import Any, Iterator, Optional, Sequence

import redis.asyncio as redis
from redis import exceptions as redis_exceptions

from .config import StoreConfig
from .enums import StoreErrorCode
from .exceptions import StoreError


class KeyValueStore:
    """
    Async adapter over a Redis-compatible server.

    Scripts are loaded once and executed with EVALSHA; if the server lost
    its script cache they fall back to EVAL, which loads them again.
    """

    def __init__(self, client: "redis.Redis") -> None:
        """
        Initialize the adapter.

        Args:
            client: A redis.asyncio client created with decode_responses=True
        """
        self._client = client
        self._script_shas: dict[str, str] = {}

    @classmethod
    def from_config(cls, config: StoreConfig) -> "KeyValueStore":
        """Create an adapter connected to the configured URL."""
        client = redis.from_url(
            config.url,
            encoding="utf-8",
            decode_responses=True,
            socket_timeout=config.timeout_seconds,
            socket_connect_timeout=config.timeout_seconds,
        )
        return cls(client)

    @property
    def client(self) -> "redis.Redis":
        return self._client

    @contextmanager
    def _translate_errors(
        self,
        operation: str,
        key: Optional[str] = None,
        response_code: StoreErrorCode = StoreErrorCode.COMMAND_ERROR,
    ) -> Iterator[None]:
        try:
            yield
        except redis_exceptions.NoScriptError:
            raise
        except redis_exceptions.TimeoutError as e:
            raise self._store_error(StoreErrorCode.TIMEOUT, operation, key, e) from e
        except redis_exceptions.ConnectionError as e:
            raise self._store_error(StoreErrorCode.CONNECTION_ERROR, operation, key, e) from e
        except redis_exceptions.RedisError as e:
            raise self._store_error(response_code, operation, key, e) from e

    @staticmethod
    def _store_error(
        code: StoreErrorCode,
        operation: str,
        key: Optional[str],
        error: Exception,
    ) -> StoreError:
        details = {"operation": operation}
        if key is not None:
            details["key"] = key
        return StoreError(
            code=code.value,
            message=f"Store {operation} failed: {error}",
            details=details,
        )

    async def get(self, key: str) -> Optional[str]:
        with self._translate_errors("get", key):
            return await self._client.get(key)

    async def set(self, key: str, value: str, ex: Optional[int] = None) -> bool:
        """Set a value; ex is the expiry in seconds, None keeps it forever."""
        with self._translate_errors("set", key):
            if ex:
                return bool(await self._client.set(key, value, ex=ex))
            return bool(await self._client.set(key, value))

    async def ttl(self, key: str) -> int:
        with self._translate_errors("ttl", key):
            return await self._client.ttl(key)

    async def eval(self, script: str, keys: Sequence[str], args: Sequence[Any]) -> Any:
        with self._translate_errors("eval", response_code=StoreErrorCode.SCRIPT_ERROR):
            return await self._client.eval(script, len(keys), *keys, *map(str, args))

    async def script_load(self, script: str) -> str:
        with self._translate_errors("script_load", response_code=StoreErrorCode.SCRIPT_ERROR):
            sha = await self._client.script_load(script)
        self._script_shas[script] = sha
        return sha

    async def evalsha(self, sha: str, keys: Sequence[str], args: Sequence[Any]) -> Any:
        with self._translate_errors("evalsha", response_code=StoreErrorCode.SCRIPT_ERROR):
            return await self._client.evalsha(sha, len(keys), *keys, *map(str, args))

    async def run_script(self, script: str, keys: Sequence[str], args: Sequence[Any]) -> Any:
        """
        Evaluate a script atomically on the server.

        Args:
            script: Lua source
            keys: Keys the script touches (KEYS)
            args: Arguments, converted to strings (ARGV)

        Returns:
            Whatever the script returns

        Raises:
            StoreError: If the server is unreachable or the script fails
        """
        sha = self._script_shas.get(script)
        if sha is None:
            sha = await self.script_load(script)
        try:
            return await self.evalsha(sha, keys, args)
        except redis_exceptions.NoScriptError:
            # Script cache was flushed; EVAL loads it again.
            return await self.eval(script, keys, args)

    async def sadd(self, key: str, *members: Any) -> int:
        with self._translate_errors("sadd", key):
            return await self._client.sadd(key, *map(str, members))

    async def smismember(self, key: str, members: Sequence[Any]) -> list[int]:
        with self._translate_errors("smismember", key):
            result = await self._client.smismember(key, [str(m) for m in members])
        return [1 if flag else 0 for flag in result]

    async def hset(self, key: str, mapping: dict[str, Any]) -> int:
        with self._translate_errors("hset", key):
            return await self._client.hset(key, mapping={k: str(v) for k, v in mapping.items()})

    async def ping(self) -> bool:
        with self._translate_errors("ping"):
            return bool(await self._client.ping())

    async def close(self) -> None:
        await self._client.aclose()
