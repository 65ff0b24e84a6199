"""Backing store client.

A narrow capability surface over a remote key-value store: field maps
(hashes), ordered lists, sets, string reads and key deletion. Each call is
an independent round-trip; nothing here is atomic across keys. Failures of
the underlying store are raised as `StoreUnavailable` and never retried.
"""
import fnmatch
import logging
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Dict, List, Optional, Set

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from .errors import StoreUnavailable

logger = logging.getLogger(__name__)


class Store(ABC):
    """Primitive operations the community core relies on"""

    # Field maps
    @abstractmethod
    async def hgetall(self, key: str) -> Dict[str, str]:
        """Return the whole field map, or an empty dict when the key is missing"""

    @abstractmethod
    async def hset(self, key: str, mapping: Dict[str, str]) -> None:
        pass

    # Ordered lists
    @abstractmethod
    async def lpush(self, key: str, value: str) -> int:
        pass

    @abstractmethod
    async def rpush(self, key: str, value: str) -> int:
        pass

    @abstractmethod
    async def lrem(self, key: str, value: str) -> int:
        """Remove every occurrence of value, returning how many were removed"""

    @abstractmethod
    async def lrange(self, key: str, start: int = 0, end: int = -1) -> List[str]:
        pass

    @abstractmethod
    async def llen(self, key: str) -> int:
        pass

    # Sets
    @abstractmethod
    async def sadd(self, key: str, member: str) -> int:
        pass

    @abstractmethod
    async def srem(self, key: str, member: str) -> int:
        pass

    @abstractmethod
    async def sismember(self, key: str, member: str) -> bool:
        pass

    @abstractmethod
    async def scard(self, key: str) -> int:
        pass

    @abstractmethod
    async def smembers(self, key: str) -> Set[str]:
        pass

    # Keys and strings
    @abstractmethod
    async def delete(self, *keys: str) -> int:
        pass

    @abstractmethod
    async def scan_keys(self, pattern: str) -> List[str]:
        """Enumerate keys matching a glob pattern"""

    @abstractmethod
    async def get(self, key: str) -> Optional[str]:
        pass

    async def close(self) -> None:
        pass


##########
# Redis
##########
@contextmanager
def translate_errors(operation: str, key: str):
    """Surface any Redis failure as StoreUnavailable"""
    try:
        yield
    except RedisError as exc:
        logger.warning("Store %s on %s failed: %s", operation, key, exc)
        raise StoreUnavailable(f"Store {operation} failed") from exc


class RedisStore(Store):
    """Store client backed by redis.asyncio"""

    def __init__(self, client: aioredis.Redis):
        self._redis = client

    @classmethod
    def from_url(
        cls,
        url: str,
        socket_timeout: Optional[float] = None,
        max_connections: int = 50,
        pool_timeout: Optional[float] = None,
    ) -> "RedisStore":
        """Client on a blocking pool: callers past max_connections wait for a free connection"""
        pool = aioredis.BlockingConnectionPool.from_url(
            url,
            max_connections=max_connections,
            timeout=pool_timeout,
            decode_responses=True,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
        )
        return cls(aioredis.Redis.from_pool(pool))

    async def hgetall(self, key):
        with translate_errors("hgetall", key):
            return await self._redis.hgetall(key) or {}

    async def hset(self, key, mapping):
        with translate_errors("hset", key):
            await self._redis.hset(key, mapping=mapping)

    async def lpush(self, key, value):
        with translate_errors("lpush", key):
            return await self._redis.lpush(key, value)

    async def rpush(self, key, value):
        with translate_errors("rpush", key):
            return await self._redis.rpush(key, value)

    async def lrem(self, key, value):
        with translate_errors("lrem", key):
            return await self._redis.lrem(key, 0, value)

    async def lrange(self, key, start=0, end=-1):
        with translate_errors("lrange", key):
            return await self._redis.lrange(key, start, end)

    async def llen(self, key):
        with translate_errors("llen", key):
            return await self._redis.llen(key)

    async def sadd(self, key, member):
        with translate_errors("sadd", key):
            return await self._redis.sadd(key, member)

    async def srem(self, key, member):
        with translate_errors("srem", key):
            return await self._redis.srem(key, member)

    async def sismember(self, key, member):
        with translate_errors("sismember", key):
            return bool(await self._redis.sismember(key, member))

    async def scard(self, key):
        with translate_errors("scard", key):
            return await self._redis.scard(key)

    async def smembers(self, key):
        with translate_errors("smembers", key):
            return set(await self._redis.smembers(key))

    async def delete(self, *keys):
        with translate_errors("delete", ",".join(keys)):
            return await self._redis.delete(*keys)

    async def scan_keys(self, pattern):
        with translate_errors("scan", pattern):
            return [key async for key in self._redis.scan_iter(match=pattern)]

    async def get(self, key):
        with translate_errors("get", key):
            return await self._redis.get(key)

    async def close(self):
        await self._redis.aclose()


##########
# In-memory
##########
class MemoryStore(Store):
    """In-process store with Redis semantics, for development and tests

    Emptied lists and sets disappear like they do in Redis, and a value of
    the wrong type for an operation fails the way Redis' WRONGTYPE does.
    """

    def __init__(self):
        self._data = {}

    def _typed(self, key, kind, create=False):
        value = self._data.get(key)
        if value is None:
            if not create:
                return None
            value = self._data[key] = kind()
        if not isinstance(value, kind):
            raise StoreUnavailable(f"WRONGTYPE operation against {key}")
        return value

    def _prune(self, key):
        if not self._data.get(key):
            self._data.pop(key, None)

    async def hgetall(self, key):
        return dict(self._typed(key, dict) or {})

    async def hset(self, key, mapping):
        self._typed(key, dict, create=True).update({k: str(v) for k, v in mapping.items()})

    async def lpush(self, key, value):
        items = self._typed(key, list, create=True)
        items.insert(0, value)
        return len(items)

    async def rpush(self, key, value):
        items = self._typed(key, list, create=True)
        items.append(value)
        return len(items)

    async def lrem(self, key, value):
        items = self._typed(key, list)
        if not items:
            return 0
        kept = [item for item in items if item != value]
        removed = len(items) - len(kept)
        items[:] = kept
        self._prune(key)
        return removed

    async def lrange(self, key, start=0, end=-1):
        items = self._typed(key, list) or []
        size = len(items)
        if start < 0:
            start = max(size + start, 0)
        if end < 0:
            end = size + end
            if end < 0:
                return []
        return list(items[start:end + 1])

    async def llen(self, key):
        return len(self._typed(key, list) or [])

    async def sadd(self, key, member):
        members = self._typed(key, set, create=True)
        if member in members:
            return 0
        members.add(member)
        return 1

    async def srem(self, key, member):
        members = self._typed(key, set)
        if not members or member not in members:
            return 0
        members.discard(member)
        self._prune(key)
        return 1

    async def sismember(self, key, member):
        return member in (self._typed(key, set) or ())

    async def scard(self, key):
        return len(self._typed(key, set) or ())

    async def smembers(self, key):
        return set(self._typed(key, set) or ())

    async def delete(self, *keys):
        return sum(1 for key in keys if self._data.pop(key, None) is not None)

    async def scan_keys(self, pattern):
        return [key for key in self._data if fnmatch.fnmatchcase(key, pattern)]

    async def get(self, key):
        return self._typed(key, str)

    def keys(self) -> List[str]:
        return sorted(self._data)
