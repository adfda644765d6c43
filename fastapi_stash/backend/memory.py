# fastapi_stash/backend/memory.py

from typing import Any, Optional

from .base import BaseCacheBackend, Entry


class MemoryBackend(BaseCacheBackend):
    """
    Process-local cache backend.

    Entries are never expired by the backend itself; expired entries are
    swept when an item resolves them.
    """

    def __init__(self, prefix: Optional[str] = None) -> None:
        super().__init__(prefix)
        self._values: dict[str, Entry] = {}
        self._locks: dict[str, dict[str, int]] = {}

    async def store(
        self,
        namespace: str,
        key: str,
        value: Any,
        created: int,
        expires: Optional[int] = None,
    ) -> bool:
        self._values[self.keys.create_key(namespace, key)] = (value, expires)
        return True

    async def fetch(self, namespace: str, key: str) -> Optional[Entry]:
        return self._values.get(self.keys.create_key(namespace, key))

    async def delete(self, namespace: str, key: str) -> bool:
        self._delete_matching(namespace, key)
        return True

    async def clear_all(self, namespace: str) -> bool:
        self._delete_matching(namespace, None)
        self._locks.pop(namespace, None)
        return True

    def _delete_matching(self, namespace: str, key: Optional[str]) -> None:
        pattern = self.keys.create_pattern(namespace, key)

        for stored in [k for k in self._values if pattern.match(k)]:
            del self._values[stored]

    async def store_lock(self, namespace: str, key: str, expires: int) -> bool:
        self._locks.setdefault(namespace, {})[key] = expires
        return True

    async def fetch_lock(self, namespace: str, key: str) -> Optional[int]:
        return self._locks.get(namespace, {}).get(key)

    async def delete_lock(self, namespace: str, key: str) -> bool:
        self._locks.get(namespace, {}).pop(key, None)
        return True

    async def count(self, namespace: str) -> int:
        return len(await self.get_keys(namespace))

    async def get_keys(self, namespace: str) -> list[str]:
        pattern = self.keys.create_pattern(namespace, None)
        return [k for k in self._values if pattern.match(k)]

    async def purge(self) -> None:
        self._values.clear()
        self._locks.clear()
