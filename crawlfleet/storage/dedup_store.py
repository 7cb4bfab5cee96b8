"""
Shared visited-URL store.

The check-then-mark sequence (exists, then mark) is two round-trips and is
not atomic: two agents racing on the same URL can both see it unvisited and
both fetch it. Once marked, a URL stays marked.
"""

import logging
from abc import ABC, abstractmethod
from typing import Optional, Set

import redis.asyncio as redis
from redis.exceptions import RedisError

from ..errors import StoreError


class DedupStore(ABC):
    """Existence check and insert for visited URLs."""

    @abstractmethod
    async def exists(self, key: str) -> bool:
        """True when the key has been marked. Raises StoreError."""

    @abstractmethod
    async def mark(self, key: str):
        """Mark the key as visited. Raises StoreError."""

    async def close(self):
        pass


class RedisDedupStore(DedupStore):
    """
    Visited set kept as fields of one Redis hash.

    Every agent process pointed at the same Redis shares the set.
    """

    def __init__(self, redis_client: redis.Redis, visited_key: str = "crawler:visited_urls",
                 owns_client: bool = False):
        self.redis_client = redis_client
        self.visited_key = visited_key
        self.owns_client = owns_client
        self.logger = logging.getLogger(__name__)

    @classmethod
    def from_url_parts(cls, host: str, port: int, db: int = 0, password: Optional[str] = None,
                       visited_key: str = "crawler:visited_urls") -> 'RedisDedupStore':
        client = redis.Redis(host=host, port=port, db=db, password=password,
                             decode_responses=False)
        return cls(client, visited_key=visited_key, owns_client=True)

    async def ping(self):
        """Verify the connection. Raises StoreError."""
        try:
            await self.redis_client.ping()
        except RedisError as e:
            raise StoreError(f"Redis ping failed: {e}")
        self.logger.info("Dedup store connection established")

    async def exists(self, key: str) -> bool:
        try:
            return bool(await self.redis_client.hexists(self.visited_key, key))
        except RedisError as e:
            raise StoreError(f"Redis exists check error for {key}: {e}")

    async def mark(self, key: str):
        try:
            await self.redis_client.hset(self.visited_key, key, "true")
        except RedisError as e:
            raise StoreError(f"Redis mark error for {key}: {e}")

    async def count(self) -> int:
        try:
            return await self.redis_client.hlen(self.visited_key)
        except RedisError as e:
            raise StoreError(f"Redis count error: {e}")

    async def close(self):
        if self.owns_client:
            await self.redis_client.aclose()


class MemoryDedupStore(DedupStore):
    """Process-local visited set for single-process runs."""

    def __init__(self, visited: Optional[Set[str]] = None):
        self.visited: Set[str] = set(visited or ())

    async def exists(self, key: str) -> bool:
        return key in self.visited

    async def mark(self, key: str):
        self.visited.add(key)

    async def count(self) -> int:
        return len(self.visited)
