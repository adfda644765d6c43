# fastapi_stash/registry.py

"""
Resolution of namespaces to stores and backends.

A registry is built once at application startup and passed to whatever
needs a store; it is never looked up globally.
"""

import logging
import random
import time
from typing import Any, Callable, Optional

import redis.asyncio as redis

from fastapi_stash.backend import (
    BaseCacheBackend,
    FileBackend,
    MemoryBackend,
    NullBackend,
    RedisCacheBackend,
)
from fastapi_stash.config import (
    FileDriverConfig,
    MemoryDriverConfig,
    NullDriverConfig,
    RedisDriverConfig,
    StashConfig,
)
from fastapi_stash.exceptions import NoDriverAvailableError
from fastapi_stash.key_codec import DEFAULT_PREFIX
from fastapi_stash.store import Store

logger = logging.getLogger(__name__)

FALLBACK_DRIVER = "fallback"


def build_driver(config: Any, default_prefix: Optional[str] = None) -> BaseCacheBackend:
    """
    Instantiate the backend a driver configuration describes.

    Raises:
        ValueError: If the configuration type is unknown
    """
    prefix = config.prefix or default_prefix

    if isinstance(config, MemoryDriverConfig):
        return MemoryBackend(prefix)

    if isinstance(config, NullDriverConfig):
        return NullBackend(prefix)

    if isinstance(config, FileDriverConfig):
        return FileBackend(
            config.path,
            prefix,
            format=config.format,
            dir_permissions=config.dir_permissions,
            file_permissions=config.file_permissions,
        )

    if isinstance(config, RedisDriverConfig):
        if config.url:
            client = redis.Redis.from_url(config.url, password=config.password)
        else:
            client = redis.Redis(
                host=config.host,
                port=config.port,
                db=config.db,
                username=config.username,
                password=config.password,
                socket_timeout=config.socket_timeout,
            )
        return RedisCacheBackend(
            client,
            prefix or DEFAULT_PREFIX,
            format=config.format,
            index_window=config.index_window,
        )

    raise ValueError(f"Unknown driver configuration: {config!r}")


class StashRegistry:
    """
    Hands out one :class:`Store` per namespace.

    Args:
        config: Cache configuration; defaults to an empty one, which
            resolves every namespace to a process-local backend.
        clock: Wall clock shared by every store.
        rng: Random source for expiry jitter shared by every store.
    """

    def __init__(
        self,
        config: Optional[StashConfig] = None,
        *,
        clock: Callable[[], float] = time.time,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.config = config or StashConfig()
        self.clock = clock
        self.rng = rng
        self._stores: dict[str, Store[Any]] = {}
        self._drivers: dict[str, BaseCacheBackend] = {}

    def register_driver(self, name: str, driver: BaseCacheBackend) -> None:
        """Use an already built backend for the driver called ``name``."""
        self._drivers[name] = driver

    def load(self, namespace: str) -> Store[Any]:
        """
        Return the store for a namespace, creating it on first use.

        Raises:
            NoDriverAvailableError: If no backend can serve the namespace
        """
        store = self._stores.get(namespace)
        if store is not None:
            return store

        ns_config = self.config.namespace_config(namespace)
        store = Store(
            namespace,
            self.load_driver_for(namespace),
            pile_up_policy=ns_config.pile_up_policy,
            preempt_time=ns_config.preempt_time,
            sleep_time=ns_config.sleep_time,
            sleep_attempts=ns_config.sleep_attempts,
            clock=self.clock,
            rng=self.rng,
        )

        self._stores[namespace] = store
        return store

    def _candidates(self, namespace: str) -> list[str]:
        names: list[str] = []
        preferred = self.config.namespace_config(namespace).driver

        for name in (preferred, "default", *self.config.driver_names(), *self._drivers):
            if name is not None and name not in names:
                names.append(name)

        if self.config.fallback:
            names.append(FALLBACK_DRIVER)

        return names

    def load_driver_for(self, namespace: str) -> BaseCacheBackend:
        for name in self._candidates(namespace):
            try:
                driver = self.load_driver(name)
            except Exception:
                logger.exception("cache driver %r failed to load", name)
                continue

            if driver is not None:
                return driver

        raise NoDriverAvailableError(
            f"No cache drivers available for namespace: {namespace}"
        )

    def load_driver(self, name: str) -> Optional[BaseCacheBackend]:
        """
        Return the backend registered or configured as ``name``, or None
        if there is none or it is unavailable.
        """
        driver = self._drivers.get(name)
        if driver is not None:
            return driver

        config = self.config.driver_config(name)

        if config is None:
            if name != FALLBACK_DRIVER:
                return None
            logger.warning("no usable cache driver configured; using process memory")
            config = MemoryDriverConfig(name=FALLBACK_DRIVER)

        driver = build_driver(config, self.config.default_prefix)

        if not driver.is_available():
            return None

        self._drivers[name] = driver
        return driver

    def _unique_drivers(self) -> list[BaseCacheBackend]:
        return list({id(driver): driver for driver in self._drivers.values()}.values())

    async def purge(self) -> None:
        """Wipe every namespace of every configured or loaded backend."""
        for name in self.config.driver_names():
            try:
                self.load_driver(name)
            except Exception:
                logger.exception("cache driver %r failed to load for purge", name)

        for store in self._stores.values():
            store.clear_deferred()

        for driver in self._unique_drivers():
            await driver.purge()

    async def aclose(self) -> None:
        for driver in self._unique_drivers():
            await driver.aclose()

        self._drivers.clear()
        self._stores.clear()


__all__ = ["FALLBACK_DRIVER", "StashRegistry", "build_driver"]
