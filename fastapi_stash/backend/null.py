# fastapi_stash/backend/null.py

from typing import Any, Optional

from .base import BaseCacheBackend, Entry


class NullBackend(BaseCacheBackend):
    """
    Backend that accepts every write and never returns anything.
    """

    async def store(
        self,
        namespace: str,
        key: str,
        value: Any,
        created: int,
        expires: Optional[int] = None,
    ) -> bool:
        return True

    async def fetch(self, namespace: str, key: str) -> Optional[Entry]:
        return None

    async def delete(self, namespace: str, key: str) -> bool:
        return True

    async def clear_all(self, namespace: str) -> bool:
        return True

    async def store_lock(self, namespace: str, key: str, expires: int) -> bool:
        return True

    async def fetch_lock(self, namespace: str, key: str) -> Optional[int]:
        return None

    async def delete_lock(self, namespace: str, key: str) -> bool:
        return True

    async def count(self, namespace: str) -> int:
        return 0

    async def get_keys(self, namespace: str) -> list[str]:
        return []

    async def purge(self) -> None:
        return None
