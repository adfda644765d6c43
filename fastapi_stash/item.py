# fastapi_stash/item.py

"""
A single cache entry and its stampede-control state machine.

An item starts ``UNRESOLVED`` and is resolved against the backend at most
once, the first time its hit state or value is read. Resolution applies the
pile-up policy: a soon-to-expire hit may be downgraded to a miss so that a
single caller regenerates early (``PREEMPT``), and a miss on a key another
caller is regenerating may be answered by a fallback value (``VALUE``) or by
polling until the value appears (``SLEEP``).

Locks are advisory. They carry an expiry and no fencing token, so a
regeneration that outlives its lock can race with a second one; the cost is
duplicate work, never a caller blocked on a dead lock.
"""

from __future__ import annotations

import asyncio
import logging
import math
from datetime import datetime, timedelta
from enum import Enum
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Generic, Optional, TypeVar, Union

from fastapi_stash.backend.base import Entry
from fastapi_stash.policy import LOCK_TTL, PileUpPolicy, positive, strategies_for

if TYPE_CHECKING:
    from fastapi_stash.store import Store

logger = logging.getLogger(__name__)

T = TypeVar("T")

Expiration = Union[datetime, int, float, None]
Interval = Union[timedelta, int, float, None]

# Fraction of the TTL by which a save may pull the expiry forward
EXPIRY_JITTER = 0.15

_MISSING: Any = object()


class ItemState(Enum):
    UNRESOLVED = "unresolved"
    HIT = "hit"
    MISS = "miss"


def _seconds(interval: Union[timedelta, int, float]) -> int:
    if isinstance(interval, timedelta):
        return int(interval.total_seconds())
    return int(interval)


class Item(Generic[T]):
    """
    Cache item bound to one key of one store.

    Items are single-owner: share one between tasks only with external
    synchronization.
    """

    def __init__(self, store: Store[T], key: str) -> None:
        self.store = store
        self.key = key
        self.value: Optional[T] = None
        self.state = ItemState.UNRESOLVED
        self.expiration: Optional[int] = None
        self.locked = False

        self._pile_up_policy: Optional[PileUpPolicy] = None
        self._preempt_time: Optional[int] = None
        self._sleep_time: Optional[int] = None
        self._sleep_attempts: Optional[int] = None
        self._fallback_value: Any = _MISSING

    def __repr__(self) -> str:
        return f"<Item {self.store.namespace}:{self.key} {self.state.value}>"

    @property
    def fetched(self) -> bool:
        return self.state is not ItemState.UNRESOLVED

    # -- value -------------------------------------------------------------

    def set(self, value: T) -> Item[T]:
        """Set the value; the item becomes a resolved hit."""
        self.value = value
        self.state = ItemState.HIT
        return self

    async def get(self) -> Optional[T]:
        """Return the value, or None on a miss."""
        if not await self.is_hit():
            return None
        return self.value

    async def is_hit(self) -> bool:
        await self._ensure_fetched()

        if self.state is not ItemState.HIT:
            return False

        if self.expiration is not None:
            return self.expiration > self.store.now()

        return True

    async def is_miss(self) -> bool:
        return not await self.is_hit()

    # -- expiration --------------------------------------------------------

    def expires_at(self, expiration: Expiration) -> Item[T]:
        """Expire at an absolute datetime or timestamp; None never expires."""
        if expiration is None:
            self.expiration = None
        elif isinstance(expiration, datetime):
            self.expiration = int(expiration.timestamp())
        else:
            self.expiration = int(expiration)
        return self

    def expires_after(self, interval: Interval) -> Item[T]:
        """Expire a number of seconds (or a timedelta) from now."""
        if interval is None:
            self.expiration = None
        else:
            self.expiration = self.store.now() + _seconds(interval)
        return self

    def set_expiration(self, expiration: Union[datetime, timedelta, int, float, None]) -> Item[T]:
        """
        Treat timedeltas and integers too small to be a timestamp as
        relative, everything else as absolute.
        """
        if isinstance(expiration, timedelta) or (
            isinstance(expiration, (int, float)) and expiration < self.store.now() / 10
        ):
            return self.expires_after(expiration)
        return self.expires_at(expiration)

    @property
    def expiration_timestamp(self) -> Optional[int]:
        return self.expiration

    def time_remaining(self) -> Optional[timedelta]:
        if self.expiration is None:
            return None
        return timedelta(seconds=max(0, self.expiration - self.store.now()))

    # -- pile-up policy ----------------------------------------------------

    def pile_up_ignore(self) -> Item[T]:
        self._pile_up_policy = PileUpPolicy.IGNORE
        return self

    def pile_up_preempt(self, time: Optional[int] = None) -> Item[T]:
        self._pile_up_policy = PileUpPolicy.PREEMPT
        if time is not None:
            self.preempt_time = time
        return self

    def pile_up_sleep(
        self,
        time: Optional[int] = None,
        attempts: Optional[int] = None,
    ) -> Item[T]:
        self._pile_up_policy = PileUpPolicy.SLEEP
        if time is not None:
            self.sleep_time = time
        if attempts is not None:
            self.sleep_attempts = attempts
        return self

    def pile_up_value(self, value: Any) -> Item[T]:
        self._pile_up_policy = PileUpPolicy.VALUE
        self._fallback_value = value
        return self

    @property
    def pile_up_policy(self) -> PileUpPolicy:
        if self._pile_up_policy is not None:
            return self._pile_up_policy
        return self.store.pile_up_policy

    @pile_up_policy.setter
    def pile_up_policy(self, policy: Union[PileUpPolicy, str]) -> None:
        self._pile_up_policy = PileUpPolicy(policy)

    @property
    def preempt_time(self) -> int:
        """Seconds before expiry within which a hit triggers regeneration."""
        if self._preempt_time is not None:
            return self._preempt_time
        return self.store.preempt_time

    @preempt_time.setter
    def preempt_time(self, time: int) -> None:
        self._preempt_time = positive("preempt_time", time)

    @property
    def sleep_time(self) -> int:
        """Milliseconds between polls under the sleep strategy."""
        if self._sleep_time is not None:
            return self._sleep_time
        return self.store.sleep_time

    @sleep_time.setter
    def sleep_time(self, time: int) -> None:
        self._sleep_time = positive("sleep_time", time)

    @property
    def sleep_attempts(self) -> int:
        if self._sleep_attempts is not None:
            return self._sleep_attempts
        return self.store.sleep_attempts

    @sleep_attempts.setter
    def sleep_attempts(self, attempts: int) -> None:
        self._sleep_attempts = positive("sleep_attempts", attempts)

    @property
    def fallback_value(self) -> Any:
        if self._fallback_value is _MISSING:
            return None
        return self._fallback_value

    @fallback_value.setter
    def fallback_value(self, value: Any) -> None:
        self._fallback_value = value

    @property
    def has_fallback_value(self) -> bool:
        return self._fallback_value is not _MISSING

    # -- locking -----------------------------------------------------------

    async def lock(self, ttl: Interval = None) -> bool:
        """
        Record that this caller is regenerating the value.
        """
        seconds = LOCK_TTL if ttl is None else _seconds(ttl)
        self.locked = True
        return await self.store.driver.store_lock(
            self.store.namespace,
            self.key,
            self.store.now() + seconds,
        )

    async def unlock(self) -> None:
        if not self.locked:
            return

        self.locked = False
        await self.store.driver.delete_lock(self.store.namespace, self.key)

    # -- persistence -------------------------------------------------------

    async def save(self) -> bool:
        """
        Write the item to the backend, releasing any lock this item holds.

        The expiry is pulled forward by a random share of up to 15% of the
        TTL so entries written together do not expire together. An expiry
        already in the past deletes the entry instead and returns False.
        """
        await self.unlock()
        await self._ensure_fetched()

        created = self.store.now()
        expires = self.expiration

        if expires is not None:
            span = expires - created

            if span > 0:
                expires -= self.store.rng.randint(0, math.floor(span * EXPIRY_JITTER))

            if expires < created:
                await self.delete()
                return False

        return await self.store.driver.store(
            self.store.namespace,
            self.key,
            self.value,
            created,
            expires,
        )

    def defer(self) -> bool:
        """Queue the item for the store's next commit."""
        return self.store.save_deferred(self)

    async def update(self, value: T, ttl: Union[datetime, timedelta, int, None] = None) -> bool:
        if ttl:
            self.set_expiration(ttl)

        self.set(value)
        return await self.save()

    async def extend(self, ttl: Union[datetime, timedelta, int, None] = None) -> bool:
        """
        Re-save the current value, optionally with a new expiry.

        Returns False without writing when there is no value to extend.
        """
        if not await self.is_hit():
            return False

        if ttl:
            self.set_expiration(ttl)

        return await self.save()

    async def delete(self) -> bool:
        deleted = await self.store.driver.delete(self.store.namespace, self.key)

        if deleted:
            self._mark_miss()

        return deleted

    # -- resolution --------------------------------------------------------

    def _mark_hit(self, entry: Entry) -> None:
        self.value, self.expiration = entry
        self.state = ItemState.HIT

    def _mark_miss(self) -> None:
        # The expiry of a discarded entry must not carry over to a regenerated value
        self.value = None
        self.expiration = None
        self.state = ItemState.MISS

    @staticmethod
    def _is_expired(entry: Entry, now: int) -> bool:
        return entry[1] is not None and entry[1] <= now

    async def _lock_held(self, now: int) -> bool:
        expires = await self.store.driver.fetch_lock(self.store.namespace, self.key)
        return expires is not None and expires > now

    async def _ensure_fetched(self) -> None:
        if self.state is not ItemState.UNRESOLVED:
            return

        now = self.store.now()
        driver = self.store.driver
        entry = await driver.fetch(self.store.namespace, self.key)

        if entry is None:
            self._mark_miss()
        elif self._is_expired(entry, now):
            self._mark_miss()
            await driver.delete(self.store.namespace, self.key)
        else:
            self._mark_hit(entry)

        policy = self.pile_up_policy

        if policy is PileUpPolicy.IGNORE:
            return

        if self.state is ItemState.HIT:
            if (
                policy is PileUpPolicy.PREEMPT
                and self.expiration is not None
                and 0 < self.expiration - now < self.preempt_time
                and not await self._lock_held(now)
            ):
                logger.debug("preempting %r: expires in %ss", self, self.expiration - now)
                self._mark_miss()
            return

        if not await self._lock_held(now):
            return

        for strategy in strategies_for(policy):
            if await _STRATEGIES[strategy](self):
                return

    async def _serve_fallback_value(self) -> bool:
        if not self.has_fallback_value:
            return False

        logger.debug("%r is being regenerated; serving fallback value", self)
        self.value = self._fallback_value
        self.state = ItemState.HIT
        return True

    async def _wait_for_value(self) -> bool:
        driver = self.store.driver

        for _ in range(self.sleep_attempts):
            await asyncio.sleep(self.sleep_time / 1000)
            entry = await driver.fetch(self.store.namespace, self.key)

            if entry is not None and not self._is_expired(entry, self.store.now()):
                self._mark_hit(entry)
                return True

        logger.debug("%r still missing after %s attempts", self, self.sleep_attempts)
        self._mark_miss()
        return False


_STRATEGIES: dict[PileUpPolicy, Callable[[Item[Any]], Awaitable[bool]]] = {
    PileUpPolicy.VALUE: Item._serve_fallback_value,
    PileUpPolicy.SLEEP: Item._wait_for_value,
}


__all__ = ["EXPIRY_JITTER", "Item", "ItemState"]
