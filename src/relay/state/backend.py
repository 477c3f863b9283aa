"""Key-value backends for the relay's persisted state.

The relay persists two kinds of records:
- the application identity (two keys, no expiry)
- workflow run correlation records (one key each, fixed expiry)

RedisBackend is the production implementation. InMemoryBackend provides the
same contract, expiry included, for local development and tests.
"""

import logging
import time
from typing import Callable, Dict, List, Mapping, Optional, Protocol, Tuple, runtime_checkable

from redis.asyncio import Redis
from redis.exceptions import RedisError

from src.relay.errors import StoreError


logger = logging.getLogger(__name__)


@runtime_checkable
class KeyValueBackend(Protocol):
    """Narrow contract over the external key-value service.

    Every method is a single logical operation; there are no multi-call
    transactions.
    """

    async def get(self, key: str) -> Optional[str]:
        """Return the value stored under ``key``, or None when absent."""
        ...

    async def set(self, key: str, value: str, ttl_seconds: Optional[int] = None) -> None:
        """Store ``value`` under ``key``, expiring after ``ttl_seconds``."""
        ...

    async def set_many_if_absent(self, mapping: Mapping[str, str]) -> bool:
        """Atomically set every key, only if none of them exist.

        Returns:
            True if the keys were written, False if any already existed.
        """
        ...

    async def delete(self, key: str) -> None:
        """Remove ``key``; removing an absent key is not an error."""
        ...

    async def ttl(self, key: str) -> Optional[int]:
        """Seconds until ``key`` expires; None when absent or persistent."""
        ...

    async def ping(self) -> bool:
        """Whether the backend is reachable."""
        ...

    async def close(self) -> None:
        """Release connections."""
        ...


class RedisBackend:
    """Redis implementation of the KeyValueBackend protocol.

    Uses the redis.asyncio client, whose built-in connection pool checks a
    connection out per command. Redis errors surface as StoreError.

    Example:
        >>> backend = RedisBackend.from_url("redis://localhost:6379/0")
        >>> await backend.set("k", "v", ttl_seconds=60)
    """

    def __init__(self, client: Redis):
        self._redis = client

    @classmethod
    def from_url(cls, url: str, max_connections: int = 16) -> "RedisBackend":
        """Create a backend from a connection URL.

        Args:
            url: redis://, rediss:// or unix:// connection URL.
            max_connections: Upper bound of the connection pool.
        """
        client = Redis.from_url(
            url,
            decode_responses=True,
            max_connections=max_connections,
        )
        return cls(client)

    async def get(self, key: str) -> Optional[str]:
        try:
            return await self._redis.get(key)
        except RedisError as e:
            raise StoreError(f"GET {key} failed: {e}", original_error=e) from e

    async def set(self, key: str, value: str, ttl_seconds: Optional[int] = None) -> None:
        try:
            await self._redis.set(key, value, ex=ttl_seconds)
        except RedisError as e:
            raise StoreError(f"SET {key} failed: {e}", original_error=e) from e

    async def set_many_if_absent(self, mapping: Mapping[str, str]) -> bool:
        try:
            return bool(await self._redis.msetnx(dict(mapping)))
        except RedisError as e:
            raise StoreError(
                f"MSETNX {', '.join(mapping)} failed: {e}", original_error=e
            ) from e

    async def delete(self, key: str) -> None:
        try:
            await self._redis.delete(key)
        except RedisError as e:
            raise StoreError(f"DEL {key} failed: {e}", original_error=e) from e

    async def ttl(self, key: str) -> Optional[int]:
        try:
            remaining = await self._redis.ttl(key)
        except RedisError as e:
            raise StoreError(f"TTL {key} failed: {e}", original_error=e) from e
        # -2: no such key, -1: no expiry
        return remaining if remaining >= 0 else None

    async def ping(self) -> bool:
        try:
            return bool(await self._redis.ping())
        except RedisError as e:
            logger.warning("Redis ping failed", extra={"error": str(e)})
            return False

    async def close(self) -> None:
        await self._redis.aclose()


class InMemoryBackend:
    """In-process implementation of the KeyValueBackend protocol.

    Expiry is evaluated lazily on access against ``clock``, a monotonic
    seconds counter that tests can replace to move time forward.
    """

    def __init__(self, clock: Optional[Callable[[], float]] = None):
        self.clock = clock or time.monotonic
        self._data: Dict[str, Tuple[str, Optional[float]]] = {}

    def _live(self, key: str) -> Optional[Tuple[str, Optional[float]]]:
        entry = self._data.get(key)
        if entry is None:
            return None
        _, deadline = entry
        if deadline is not None and self.clock() >= deadline:
            del self._data[key]
            return None
        return entry

    async def get(self, key: str) -> Optional[str]:
        entry = self._live(key)
        return entry[0] if entry is not None else None

    async def set(self, key: str, value: str, ttl_seconds: Optional[int] = None) -> None:
        deadline = self.clock() + ttl_seconds if ttl_seconds is not None else None
        self._data[key] = (str(value), deadline)

    async def set_many_if_absent(self, mapping: Mapping[str, str]) -> bool:
        if any(self._live(key) is not None for key in mapping):
            return False
        for key, value in mapping.items():
            self._data[key] = (str(value), None)
        return True

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)

    async def ttl(self, key: str) -> Optional[int]:
        entry = self._live(key)
        if entry is None or entry[1] is None:
            return None
        return int(round(entry[1] - self.clock()))

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        self._data.clear()

    def keys(self) -> List[str]:
        """Live keys, for inspection in tests."""
        return [key for key in list(self._data) if self._live(key) is not None]


def create_backend(redis_url: Optional[str]) -> KeyValueBackend:
    """Create the backend for a configured Redis URL.

    Args:
        redis_url: Redis connection URL, or None for the in-memory backend.

    Returns:
        A RedisBackend, or an InMemoryBackend when no URL is configured.
    """
    if redis_url is None:
        logger.warning(
            "No Redis URL configured; using the in-memory store. "
            "Identity and correlation records will not survive a restart."
        )
        return InMemoryBackend()
    return RedisBackend.from_url(redis_url)
