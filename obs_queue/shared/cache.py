"""Read-through memory cache for the token row and the KV table.

The EventSub loop and every authorized API request read the stored token
and broadcaster identity. Those reads go through an ``AsyncTTLCache``;
writers in this process store the committed value with ``set``, so the TTL
only limits how long a change made by another process stays invisible.

Each cache also keeps the last value it loaded per key. When storage reads
keep failing, that value is served instead of an error so a running
session does not stop on a database blip.
"""

import asyncio
import functools
import logging
from collections import OrderedDict
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from cachetools import TTLCache  # type: ignore[import-untyped]

logger = logging.getLogger(__name__)

# Cached values may legitimately be None
MISSING = object()

F = TypeVar("F", bound=Callable[..., Any])


class AsyncTTLCache:
    """TTL-bounded values plus a bounded last-known-good store."""

    def __init__(self, maxsize: int = 32, ttl: float = 300.0):
        self._maxsize = maxsize
        self._fresh: TTLCache = TTLCache(maxsize=maxsize, ttl=ttl)
        self._last_good: OrderedDict[str, Any] = OrderedDict()
        self._loading: dict[str, asyncio.Lock] = {}

    def get(self, key: str) -> Any:
        return self._fresh.get(key, MISSING)

    def set(self, key: str, value: Any) -> None:
        self._fresh[key] = value
        self._last_good[key] = value
        self._last_good.move_to_end(key)
        while len(self._last_good) > self._maxsize:
            self._last_good.popitem(last=False)

    def last_good(self, key: str) -> Any:
        return self._last_good.get(key, MISSING)

    async def load(
        self,
        key: str,
        loader: Callable[[], Awaitable[Any]],
        *,
        attempts: int = 2,
        retry_delay: float = 0.5,
    ) -> Any:
        """Return the fresh value for *key*, calling *loader* on a miss.

        Concurrent misses on one key share a single load. When every attempt
        fails the last-known-good value is returned, or the final error is
        raised when there is none.
        """
        value = self.get(key)
        if value is not MISSING:
            return value

        lock = self._loading.setdefault(key, asyncio.Lock())
        async with lock:
            value = self.get(key)
            if value is not MISSING:
                return value

            error: Exception | None = None
            for attempt in range(1, attempts + 1):
                try:
                    value = await loader()
                except asyncio.CancelledError:
                    raise
                except Exception as exc:
                    error = exc
                    if attempt < attempts:
                        logger.warning(
                            f"Storage read {attempt}/{attempts} for {key} failed "
                            f"({type(exc).__name__}), retrying in {retry_delay:.1f}s"
                        )
                        await asyncio.sleep(retry_delay)
                    continue
                self.set(key, value)
                return value

            fallback = self.last_good(key)
            if fallback is MISSING:
                assert error is not None
                raise error
            logger.warning(f"Serving last known value for {key} ({type(error).__name__})")
            return fallback


def cached(
    cache: AsyncTTLCache,
    key_func: Callable[..., str],
    *,
    retry: int = 2,
    retry_delay: float = 0.5,
):
    """Route an async repository read through *cache*.

    ``key_func`` gets the same arguments as the decorated method.
    """

    def decorator(func: F) -> F:
        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            return await cache.load(
                key_func(*args, **kwargs),
                lambda: func(*args, **kwargs),
                attempts=retry,
                retry_delay=retry_delay,
            )

        wrapper.cache = cache  # type: ignore[attr-defined]
        return wrapper  # type: ignore[return-value]

    return decorator
