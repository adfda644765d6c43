# fastapi_stash/store.py

"""
Namespace-scoped cache store.
"""

from __future__ import annotations

import copy
import inspect
import logging
import random
import re
import time
from datetime import timedelta
from typing import Any, Awaitable, Callable, Generic, Iterable, Mapping, Optional, TypeVar, Union

from fastapi_stash.backend.base import BaseCacheBackend
from fastapi_stash.exceptions import InvalidKeyError
from fastapi_stash.item import Item
from fastapi_stash.policy import (
    DEFAULT_PILE_UP_POLICY,
    DEFAULT_PREEMPT_TIME,
    DEFAULT_SLEEP_ATTEMPTS,
    DEFAULT_SLEEP_TIME,
    PileUpPolicy,
    positive,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

ValueGenerator = Callable[[Item[T], "Store[T]"], Union[T, Awaitable[T]]]
TTL = Union[int, timedelta, None]

RESERVED_CHARACTERS = "{}()/\\@:"
_RESERVED = re.compile(r"[{}()/\\@:]")


class Store(Generic[T]):
    """
    Cache façade for one namespace.

    Args:
        namespace: Logical partition of the cache.
        driver: Backend the namespace is stored in.
        pile_up_policy: Default stampede policy for items of this store.
        preempt_time: Default preempt window, in seconds.
        sleep_time: Default poll interval, in milliseconds.
        sleep_attempts: Default number of polls.
        clock: Wall clock returning epoch seconds.
        rng: Random source for expiry jitter.
    """

    def __init__(
        self,
        namespace: str,
        driver: BaseCacheBackend,
        *,
        pile_up_policy: Optional[PileUpPolicy] = None,
        preempt_time: Optional[int] = None,
        sleep_time: Optional[int] = None,
        sleep_attempts: Optional[int] = None,
        clock: Callable[[], float] = time.time,
        rng: Optional[random.Random] = None,
    ) -> None:
        if not namespace:
            raise ValueError("Cache namespace must be a non-empty string")

        self.namespace = namespace
        self.driver = driver
        self.clock = clock
        self.rng = rng or random.Random()
        self._deferred: dict[str, Item[T]] = {}

        self.pile_up_policy = pile_up_policy or DEFAULT_PILE_UP_POLICY
        self.preempt_time = preempt_time if preempt_time is not None else DEFAULT_PREEMPT_TIME
        self.sleep_time = sleep_time if sleep_time is not None else DEFAULT_SLEEP_TIME
        self.sleep_attempts = sleep_attempts if sleep_attempts is not None else DEFAULT_SLEEP_ATTEMPTS

    def __repr__(self) -> str:
        return f"<Store {self.namespace} on {type(self.driver).__name__}>"

    def now(self) -> int:
        return int(self.clock())

    # -- reads -------------------------------------------------------------

    def get_item(self, key: str) -> Item[T]:
        """
        Return the item for ``key``, reflecting any deferred write.

        :raises InvalidKeyError: If the key is invalid or a wildcard.
        """
        key = self.validate_key(key)

        if key.endswith("*"):
            raise InvalidKeyError("Wildcard keys are only valid for delete", key)

        deferred = self._deferred.get(key)

        if deferred is not None:
            return copy.copy(deferred)

        return Item(self, key)

    def get_items(self, keys: Iterable[str]) -> dict[str, Item[T]]:
        items: dict[str, Item[T]] = {}

        for key in keys:
            item = self.get_item(key)
            items[item.key] = item

        return items

    async def get(self, key: str, default: Optional[T] = None) -> Optional[T]:
        item = self.get_item(key)

        if await item.is_hit():
            return item.value

        return default

    async def get_multiple(
        self,
        keys: Iterable[str],
        default: Optional[T] = None,
    ) -> dict[str, Optional[T]]:
        output: dict[str, Optional[T]] = {}

        for key, item in self.get_items(keys).items():
            output[key] = item.value if await item.is_hit() else default

        return output

    async def has(self, key: str, *keys: str) -> bool:
        """Whether any of the keys is a hit."""
        for k in (key, *keys):
            if await self.has_item(k):
                return True

        return False

    async def has_item(self, key: str) -> bool:
        return await self.get_item(key).is_hit()

    async def fetch(self, key: str, generator: ValueGenerator[T], ttl: TTL = None) -> Optional[T]:
        """
        Read through the cache.

        On a miss the item is locked, ``generator(item, store)`` produces the
        value (it may be a coroutine function), and the value is saved. If
        the generator raises, the lock is released and the error propagates.
        """
        item = self.get_item(key)

        if await item.is_miss():
            await item.lock()

            try:
                value = generator(item, self)
                if inspect.isawaitable(value):
                    value = await value
            except BaseException:
                await item.unlock()
                raise

            if ttl is not None:
                item.expires_after(ttl)

            item.set(value)
            await item.save()

        return item.value

    # -- writes ------------------------------------------------------------

    async def set(self, key: str, value: T, ttl: TTL = None) -> bool:
        item = self.get_item(key).expires_after(ttl)
        item.set(value)
        return await self.save(item)

    async def set_multiple(self, values: Mapping[str, T], ttl: TTL = None) -> bool:
        success = True

        for key, item in self.get_items(values.keys()).items():
            item.set(values[key])
            item.expires_after(ttl)
            success = self.save_deferred(item) and success

        return await self.commit() and success

    async def save(self, item: Item[T]) -> bool:
        return await self._check_item(item).save()

    def save_deferred(self, item: Item[T]) -> bool:
        item = self._check_item(item)
        self._deferred[item.key] = item
        return True

    async def commit(self) -> bool:
        """Save and forget every deferred item."""
        success = True

        while self._deferred:
            key = next(iter(self._deferred))
            item = self._deferred.pop(key)

            if not await item.save():
                logger.debug("%s: deferred save of %r failed", self.namespace, key)
                success = False

        return success

    # -- deletion ----------------------------------------------------------

    async def delete(self, key: str, *keys: str) -> bool:
        return await self.delete_items((key, *keys))

    async def delete_items(self, keys: Iterable[str]) -> bool:
        """
        Delete keys, which may carry a children wildcard (``a.*``, ``a..*``).
        """
        success = True

        for key in keys:
            key = self.validate_key(key)
            self._discard_deferred(key)

            if not await self.driver.delete(self.namespace, key):
                success = False

        return success

    async def clear(self) -> bool:
        self.clear_deferred()
        return await self.driver.clear_all(self.namespace)

    def clear_deferred(self) -> bool:
        self._deferred.clear()
        return True

    def _discard_deferred(self, key: str) -> None:
        parsed = self.driver.keys.parse_key(key)

        if not parsed.matches_children:
            self._deferred.pop(key, None)
            return

        prefix = f"{parsed.normal}."

        for pending in list(self._deferred):
            if pending.startswith(prefix) or (parsed.matches_self and pending == parsed.normal):
                del self._deferred[pending]

    # -- introspection -----------------------------------------------------

    async def count(self) -> int:
        return await self.driver.count(self.namespace)

    async def get_driver_keys(self) -> list[str]:
        return await self.driver.get_keys(self.namespace)

    # -- policy defaults ---------------------------------------------------

    def pile_up_ignore(self) -> Store[T]:
        self.pile_up_policy = PileUpPolicy.IGNORE
        return self

    def pile_up_preempt(self, preempt_time: Optional[int] = None) -> Store[T]:
        self.pile_up_policy = PileUpPolicy.PREEMPT
        if preempt_time is not None:
            self.preempt_time = preempt_time
        return self

    def pile_up_sleep(
        self,
        time: Optional[int] = None,
        attempts: Optional[int] = None,
    ) -> Store[T]:
        self.pile_up_policy = PileUpPolicy.SLEEP
        if time is not None:
            self.sleep_time = time
        if attempts is not None:
            self.sleep_attempts = attempts
        return self

    def pile_up_value(self) -> Store[T]:
        self.pile_up_policy = PileUpPolicy.VALUE
        return self

    @property
    def pile_up_policy(self) -> PileUpPolicy:
        return self._pile_up_policy

    @pile_up_policy.setter
    def pile_up_policy(self, policy: Union[PileUpPolicy, str]) -> None:
        self._pile_up_policy = PileUpPolicy(policy)

    @property
    def preempt_time(self) -> int:
        return self._preempt_time

    @preempt_time.setter
    def preempt_time(self, time: int) -> None:
        self._preempt_time = positive("preempt_time", time)

    @property
    def sleep_time(self) -> int:
        return self._sleep_time

    @sleep_time.setter
    def sleep_time(self, time: int) -> None:
        self._sleep_time = positive("sleep_time", time)

    @property
    def sleep_attempts(self) -> int:
        return self._sleep_attempts

    @sleep_attempts.setter
    def sleep_attempts(self, attempts: int) -> None:
        self._sleep_attempts = positive("sleep_attempts", attempts)

    # -- validation --------------------------------------------------------

    @staticmethod
    def validate_key(key: Any) -> str:
        """
        :raises InvalidKeyError: If the key is empty or contains one of
            ``{}()/\\@:``.
        """
        if not isinstance(key, str) or not key:
            raise InvalidKeyError("Cache key must be a non-empty string", key)

        if _RESERVED.search(key):
            raise InvalidKeyError(
                f"Cache key must not contain reserved characters: {RESERVED_CHARACTERS}",
                key,
            )

        return key

    def _check_item(self, item: Any) -> Item[T]:
        if not isinstance(item, Item):
            raise InvalidKeyError(f"Cache items must be instances of {Item.__qualname__}", item)
        return item


__all__ = ["RESERVED_CHARACTERS", "Store"]
