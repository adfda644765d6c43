# fastapi_stash/backend/redis.py

import logging
import time
from typing import Any, Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

from .base import BaseCacheBackend, Entry
from fastapi_stash.key_codec import DEFAULT_PREFIX
from fastapi_stash.nested_index import NestedKeyIndex
from fastapi_stash.serializer import SerializationFormat, pack_entry, unpack_entry

logger = logging.getLogger(__name__)


class RedisCacheBackend(BaseCacheBackend):
    """
    Redis cache backend implementation.
    Uses redis-py for asynchronous Redis operations.

    Redis has no cheap prefix delete, so keys are versioned through a
    :class:`NestedKeyIndex`: deleting ``a.b.*`` increments one counter
    and leaves the orphaned entries to expire.
    """

    def __init__(
        self,
        client: redis.Redis,
        key_prefix: str = DEFAULT_PREFIX,
        *,
        format: Optional[SerializationFormat] = None,
        index_window: float = 1.0,
    ) -> None:
        super().__init__(key_prefix)
        self.client = client
        self.format = format
        self.index = NestedKeyIndex(
            self.prefix,
            self.keys.separator,
            self._get_path_index,
            window=index_window,
        )

    @classmethod
    def from_url(cls, url: str, **kwargs: Any) -> "RedisCacheBackend":
        return cls(redis.Redis.from_url(url), **kwargs)

    async def _get_path_index(self, path_key: str) -> int:
        raw = await self.client.get(path_key)
        return int(raw) if raw is not None else 0

    async def _storage_key(self, namespace: str, key: str) -> str:
        storage_key, _ = await self.index.create_nested_key(namespace, key)
        return storage_key

    async def store(
        self,
        namespace: str,
        key: str,
        value: Any,
        created: int,
        expires: Optional[int] = None,
    ) -> bool:
        ttl = expires - created if expires is not None else 0
        # raises InvalidKeyError for wildcard keys
        self.keys.create_key(namespace, key)

        try:
            data = pack_entry(value, expires, self.format)
        except ValueError:
            logger.exception("redis cache: cannot serialize %s:%s", namespace, key)
            return False

        try:
            redis_key = await self._storage_key(namespace, key)

            if ttl > 0:
                return bool(await self.client.set(redis_key, data, ex=ttl))
            return bool(await self.client.set(redis_key, data))
        except RedisError:
            logger.exception("redis cache: failed to store %s:%s", namespace, key)
            return False

    async def fetch(self, namespace: str, key: str) -> Optional[Entry]:
        self.keys.create_key(namespace, key)

        try:
            redis_key = await self._storage_key(namespace, key)
            raw = await self.client.get(redis_key)
        except RedisError:
            logger.exception("redis cache: failed to fetch %s:%s", namespace, key)
            return None

        if raw is None:
            return None

        if isinstance(raw, str):
            raw = raw.encode("utf-8")

        return unpack_entry(raw, self.format)

    async def delete(self, namespace: str, key: str) -> bool:
        parsed = self.keys.parse_key(key)

        try:
            storage_key, path_key = await self.index.create_nested_key(
                namespace, parsed.normal
            )

            if parsed.matches_self:
                await self.client.delete(storage_key)

            if parsed.matches_children:
                await self.client.incr(path_key)
        except RedisError:
            logger.exception("redis cache: failed to delete %s:%s", namespace, key)
            return False
        finally:
            self.index.invalidate()

        return True

    async def clear_all(self, namespace: str) -> bool:
        try:
            _, path_key = await self.index.create_nested_key(namespace, None)
            await self.client.incr(path_key)
        except RedisError:
            logger.exception("redis cache: failed to clear %s", namespace)
            return False
        finally:
            self.index.invalidate()

        return True

    async def store_lock(self, namespace: str, key: str, expires: int) -> bool:
        ttl = max(1, expires - int(time.time()))

        try:
            return bool(
                await self.client.set(
                    self.keys.create_lock_key(namespace, key), expires, ex=ttl
                )
            )
        except RedisError:
            logger.exception("redis cache: failed to lock %s:%s", namespace, key)
            return False

    async def fetch_lock(self, namespace: str, key: str) -> Optional[int]:
        try:
            raw = await self.client.get(self.keys.create_lock_key(namespace, key))
        except RedisError:
            logger.exception("redis cache: failed to read lock %s:%s", namespace, key)
            return None

        try:
            return int(raw) if raw is not None else None
        except ValueError:
            return None

    async def delete_lock(self, namespace: str, key: str) -> bool:
        try:
            await self.client.delete(self.keys.create_lock_key(namespace, key))
        except RedisError:
            logger.exception("redis cache: failed to unlock %s:%s", namespace, key)
            return False

        return True

    async def count(self, namespace: str) -> int:
        return len(await self.get_keys(namespace))

    async def get_keys(self, namespace: str) -> list[str]:
        """
        List value keys under this backend's prefix.

        Storage keys are hashes, so the list is not narrowed to
        ``namespace`` and may include entries orphaned by a wildcard delete.
        """
        pattern = f"{self.prefix}:c{self.keys.separator}*"

        try:
            keys = await self.client.keys(pattern)
        except RedisError:
            logger.exception("redis cache: failed to list keys")
            return []

        return [k.decode("utf-8") if isinstance(k, bytes) else k for k in keys]

    async def purge(self) -> None:
        """
        Delete every key written under this backend's prefix.
        WARNING: Uses KEYS command (acceptable for an explicit flush).
        """
        try:
            keys = await self.client.keys(f"{self.prefix}[:!]*")
            if keys:
                await self.client.delete(*keys)
        except RedisError:
            logger.exception("redis cache: failed to purge %s", self.prefix)
        finally:
            self.index.invalidate()

    async def aclose(self) -> None:
        await self.client.aclose()
