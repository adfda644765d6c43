# fastapi_stash/backend/base.py

"""
Abstract base class for cache backends.
Defines the interface that all cache backends must implement.
"""

from abc import ABC, abstractmethod
from typing import Any, Optional

from fastapi_stash.key_codec import KeyCodec

# A stored value together with its absolute expiry timestamp
Entry = tuple[Any, Optional[int]]


class BaseCacheBackend(ABC):
    """
    Abstract base class for cache backends.
    All cache backends must implement this interface.

    Backends report I/O failures as ``False`` (writes) or ``None`` (reads)
    instead of raising, so an unavailable cache degrades to misses.
    """

    def __init__(self, prefix: Optional[str] = None, separator: str = "::") -> None:
        self.keys = KeyCodec(prefix, separator)

    @property
    def prefix(self) -> str:
        return self.keys.prefix

    @classmethod
    def is_available(cls) -> bool:
        """Whether this backend can be used in the current environment."""
        return True

    @abstractmethod
    async def store(
        self,
        namespace: str,
        key: str,
        value: Any,
        created: int,
        expires: Optional[int] = None,
    ) -> bool:
        """
        Store a value with an optional absolute expiry.

        :param namespace: Namespace the key belongs to.
        :param key: The key under which to store the value.
        :param value: The value to store in the cache.
        :param created: Timestamp of the write.
        :param expires: Optional expiry timestamp.
        :return: Whether the value was written.
        """
        raise NotImplementedError

    @abstractmethod
    async def fetch(self, namespace: str, key: str) -> Optional[Entry]:
        """
        Retrieve a value and its expiry from the cache.

        :param namespace: Namespace the key belongs to.
        :param key: The key to look up in the cache.
        :return: ``(value, expires)``, or None if not found.
        """
        raise NotImplementedError

    @abstractmethod
    async def delete(self, namespace: str, key: str) -> bool:
        """
        Delete a value from the cache by its key.
        :param key: The key to delete, optionally with a children wildcard.
        """
        raise NotImplementedError

    @abstractmethod
    async def clear_all(self, namespace: str) -> bool:
        """
        Clear every value within a namespace.
        :param namespace: Namespace to clear.
        """
        raise NotImplementedError

    @abstractmethod
    async def store_lock(self, namespace: str, key: str, expires: int) -> bool:
        """
        Record a regeneration lock for a key.
        :param expires: Timestamp the lock lapses at.
        """
        raise NotImplementedError

    @abstractmethod
    async def fetch_lock(self, namespace: str, key: str) -> Optional[int]:
        """
        Retrieve the expiry of a key's regeneration lock, if any.
        """
        raise NotImplementedError

    @abstractmethod
    async def delete_lock(self, namespace: str, key: str) -> bool:
        raise NotImplementedError

    @abstractmethod
    async def count(self, namespace: str) -> int:
        raise NotImplementedError

    @abstractmethod
    async def get_keys(self, namespace: str) -> list[str]:
        raise NotImplementedError

    @abstractmethod
    async def purge(self) -> None:
        """
        Delete everything held by this backend, in every namespace.
        """
        raise NotImplementedError

    async def aclose(self) -> None:
        """Release any connection held by the backend."""
        return None
