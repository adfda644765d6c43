import fnmatch
import random
from collections import Counter
from typing import Any, Optional, Union

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from fastapi_stash.backend.memory import MemoryBackend
from fastapi_stash.store import Store

START = 1_700_000_000


class FakeClock:
    """Wall clock that only moves when told to."""

    def __init__(self, now: float = START) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class NoJitter(random.Random):
    def randint(self, a: int, b: int) -> int:
        return a


class MaxJitter(random.Random):
    def randint(self, a: int, b: int) -> int:
        return b


class CountingBackend(MemoryBackend):
    """Memory backend recording how often each operation is called."""

    def __init__(self, prefix: Optional[str] = None) -> None:
        super().__init__(prefix)
        self.calls: Counter = Counter()

    async def fetch(self, namespace, key):
        self.calls["fetch"] += 1
        return await super().fetch(namespace, key)

    async def fetch_lock(self, namespace, key):
        self.calls["fetch_lock"] += 1
        return await super().fetch_lock(namespace, key)

    async def delete(self, namespace, key):
        self.calls["delete"] += 1
        return await super().delete(namespace, key)


class FakeRedis:
    """Just enough of redis.asyncio.Redis for the redis backend."""

    def __init__(self) -> None:
        self.data: dict[str, bytes] = {}
        self.expiry: dict[str, Optional[int]] = {}
        self.closed = False

    @staticmethod
    def _encode(value: Any) -> bytes:
        if isinstance(value, bytes):
            return value
        return str(value).encode("utf-8")

    async def get(self, key: str) -> Optional[bytes]:
        return self.data.get(key)

    async def set(self, key: str, value: Any, ex: Optional[int] = None) -> bool:
        self.data[key] = self._encode(value)
        self.expiry[key] = ex
        return True

    async def delete(self, *keys: Union[str, bytes]) -> int:
        removed = 0
        for key in keys:
            if isinstance(key, bytes):
                key = key.decode("utf-8")
            if self.data.pop(key, None) is not None:
                removed += 1
            self.expiry.pop(key, None)
        return removed

    async def incr(self, key: str) -> int:
        value = int(self.data.get(key, b"0")) + 1
        self.data[key] = self._encode(value)
        return value

    async def keys(self, pattern: str) -> list[bytes]:
        return [k.encode("utf-8") for k in self.data if fnmatch.fnmatchcase(k, pattern)]

    async def aclose(self) -> None:
        self.closed = True


class FailingRedis(FakeRedis):
    """A client whose server is unreachable."""

    async def get(self, key):
        raise RedisConnectionError("down")

    async def set(self, key, value, ex=None):
        raise RedisConnectionError("down")

    async def keys(self, pattern):
        raise RedisConnectionError("down")

    async def delete(self, *keys):
        raise RedisConnectionError("down")

    async def incr(self, key):
        raise RedisConnectionError("down")


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def backend() -> CountingBackend:
    return CountingBackend()


@pytest.fixture
def store(backend, clock) -> Store:
    return Store("test", backend, clock=clock, rng=NoJitter())


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()
