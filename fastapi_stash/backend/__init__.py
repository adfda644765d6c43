from fastapi_stash.backend.base import BaseCacheBackend, Entry
from fastapi_stash.backend.file import FileBackend
from fastapi_stash.backend.memory import MemoryBackend
from fastapi_stash.backend.null import NullBackend
from fastapi_stash.backend.redis import RedisCacheBackend

__all__ = [
    "BaseCacheBackend",
    "Entry",
    "FileBackend",
    "MemoryBackend",
    "NullBackend",
    "RedisCacheBackend",
]
