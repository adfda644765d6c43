# fastapi_stash/nested_index.py

"""
Versioned path keys for backends without a native prefix scan.

Each dotted segment of a key owns a version counter stored in the backend
under a "path key". The storage key of a value is a hash of its segments
interleaved with the current version of every parent segment, so bumping a
segment's counter orphans every key built beneath it in a single write.
"""

from __future__ import annotations

import hashlib
import time
from typing import Awaitable, Callable, Optional

PathIndexFetcher = Callable[[str], Awaitable[int]]


def _md5(value: str) -> str:
    return hashlib.md5(value.encode("utf-8")).hexdigest()


class NestedKeyIndex:
    """
    Builds versioned storage keys and caches path versions briefly.

    :param prefix: Backend key prefix.
    :param separator: Separator placed between segments.
    :param fetch_index: Coroutine returning the current version of a path key
        (``0`` when it has never been bumped).
    :param window: Seconds a looked-up version may be reused.
    :param clock: Monotonic time source.
    """

    def __init__(
        self,
        prefix: str,
        separator: str,
        fetch_index: PathIndexFetcher,
        *,
        window: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.prefix = prefix
        self.separator = separator
        self.window = window
        self._fetch_index = fetch_index
        self._clock = clock
        self._cache: dict[str, int] = {}
        self._cache_time = clock()

    @property
    def cached_paths(self) -> int:
        return len(self._cache)

    def invalidate(self) -> None:
        """Forget every cached path version."""
        self._cache.clear()
        self._cache_time = self._clock()

    def path_key(self, literal: str) -> str:
        return f"{self.prefix}:p{self.separator}{_md5(literal)}"

    async def create_nested_key(
        self,
        namespace: str,
        key: Optional[str],
    ) -> tuple[str, str]:
        """
        Build the storage key of ``key`` and the path key that versions its
        children.

        :return: ``(storage_key, path_key)``
        """
        now = self._clock()

        if now - self._cache_time >= self.window:
            self._cache.clear()
            self._cache_time = now

        parts = [namespace]

        if key is not None:
            parts.extend(key.strip(".").split("."))

        literal = ""
        path_key = ""
        last = len(parts) - 1

        for i, part in enumerate(parts):
            literal += part
            path_key = self.path_key(literal)

            if i < last:
                index = self._cache.get(path_key)

                if index is None:
                    index = await self._fetch_index(path_key)
                    self._cache[path_key] = index

                literal += f"_{index}{self.separator}"

        return f"{self.prefix}:c{self.separator}{_md5(literal)}", path_key


__all__ = ["NestedKeyIndex", "PathIndexFetcher"]
