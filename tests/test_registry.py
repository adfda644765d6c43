"""Tests for namespace resolution."""

import logging

import pytest

from fastapi_stash import registry as registry_module
from fastapi_stash.backend import FileBackend, MemoryBackend, NullBackend, RedisCacheBackend
from fastapi_stash.config import (
    FileDriverConfig,
    MemoryDriverConfig,
    NamespaceConfig,
    NullDriverConfig,
    RedisDriverConfig,
    StashConfig,
)
from fastapi_stash.exceptions import NoDriverAvailableError
from fastapi_stash.policy import PileUpPolicy
from fastapi_stash.registry import FALLBACK_DRIVER, StashRegistry, build_driver
from tests.conftest import FailingRedis


class TestBuildDriver:
    def test_memory_and_null(self):
        assert isinstance(build_driver(MemoryDriverConfig(name="m")), MemoryBackend)
        assert isinstance(build_driver(NullDriverConfig(name="n")), NullBackend)

    def test_file(self, tmp_path):
        driver = build_driver(FileDriverConfig(name="f", path=str(tmp_path)), "site")

        assert isinstance(driver, FileBackend)
        assert driver.path == tmp_path
        assert driver.prefix == "site"

    def test_redis_prefix(self):
        driver = build_driver(RedisDriverConfig(name="r", url="redis://localhost:6379/0", prefix="demo"))

        assert isinstance(driver, RedisCacheBackend)
        assert driver.prefix == "demo"

    def test_redis_default_prefix(self):
        driver = build_driver(RedisDriverConfig(name="r"))
        assert driver.prefix == "fastapi-stash"


class TestStashRegistry:
    def test_falls_back_to_memory(self, caplog):
        registry = StashRegistry()

        with caplog.at_level(logging.WARNING):
            store = registry.load("users")

        assert isinstance(store.driver, MemoryBackend)
        assert "using process memory" in caplog.text

    def test_store_cached_per_namespace(self):
        registry = StashRegistry()

        assert registry.load("a") is registry.load("a")
        assert registry.load("a") is not registry.load("b")
        assert registry.load("a").driver is registry.load("b").driver

    def test_no_driver_without_fallback(self):
        registry = StashRegistry(StashConfig(fallback=False))

        with pytest.raises(NoDriverAvailableError):
            registry.load("users")

    def test_registered_driver(self):
        backend = NullBackend()
        registry = StashRegistry(StashConfig(fallback=False))
        registry.register_driver("default", backend)

        assert registry.load("users").driver is backend

    def test_namespace_driver_preferred(self):
        registry = StashRegistry(StashConfig(
            drivers=[MemoryDriverConfig(name="default"), NullDriverConfig(name="void")],
            namespaces=[NamespaceConfig(namespace="pages", driver="void")],
        ))

        assert isinstance(registry.load("pages").driver, NullBackend)
        assert isinstance(registry.load("users").driver, MemoryBackend)

    def test_missing_preferred_driver_uses_default(self):
        registry = StashRegistry(StashConfig(
            drivers=[NullDriverConfig(name="default")],
            namespaces=[NamespaceConfig(namespace="pages", driver="absent")],
        ))

        assert isinstance(registry.load("pages").driver, NullBackend)

    def test_broken_driver_skipped(self, monkeypatch, caplog):
        real_build = registry_module.build_driver

        def build(config, default_prefix=None):
            if config.name == "broken":
                raise OSError("no such mount")
            return real_build(config, default_prefix)

        monkeypatch.setattr(registry_module, "build_driver", build)
        registry = StashRegistry(StashConfig(
            drivers=[FileDriverConfig(name="broken")],
            namespaces=[NamespaceConfig(namespace="pages", driver="broken")],
        ))

        with caplog.at_level(logging.ERROR):
            store = registry.load("pages")

        assert registry.load_driver(FALLBACK_DRIVER) is store.driver
        assert "'broken' failed to load" in caplog.text

    def test_namespace_defaults_applied(self):
        clock = lambda: 1234.9
        registry = StashRegistry(
            StashConfig(namespaces=[
                NamespaceConfig(namespace="pages", pile_up_policy=PileUpPolicy.SLEEP, sleep_time=20),
            ]),
            clock=clock,
        )
        store = registry.load("pages")

        assert store.pile_up_policy is PileUpPolicy.SLEEP
        assert store.sleep_time == 20
        assert store.sleep_attempts == 10
        assert store.preempt_time == 30
        assert store.now() == 1234

    def test_default_prefix(self):
        registry = StashRegistry(StashConfig(
            drivers=[MemoryDriverConfig(name="default")],
            default_prefix="site",
        ))

        assert registry.load("a").driver.prefix == "site"

    @pytest.mark.asyncio
    async def test_purge(self):
        registry = StashRegistry(StashConfig(
            drivers=[MemoryDriverConfig(name="default"), MemoryDriverConfig(name="other")],
            namespaces=[NamespaceConfig(namespace="b", driver="other")],
        ))
        a, b = registry.load("a"), registry.load("b")
        await a.set("x", 1)
        await b.set("y", 2)
        b.save_deferred(b.get_item("z").set(3))

        await registry.purge()

        assert await a.get("x") is None
        assert await b.get("y") is None
        assert await b.get("z") is None

    @pytest.mark.asyncio
    async def test_unreachable_redis_is_kept_and_misses(self, caplog):
        registry = StashRegistry()
        backend = RedisCacheBackend(FailingRedis())
        registry.register_driver("default", backend)
        store = registry.load("users")

        with caplog.at_level(logging.ERROR):
            assert await store.set("a", 1) is False
            assert await store.get("a", "default") == "default"

        assert store.driver is backend
        assert "using process memory" not in caplog.text

    @pytest.mark.asyncio
    async def test_purge_continues_past_unreachable_redis(self, caplog):
        registry = StashRegistry(StashConfig(
            namespaces=[NamespaceConfig(namespace="b", driver="other")],
        ))
        registry.register_driver("default", RedisCacheBackend(FailingRedis()))
        registry.register_driver("other", MemoryBackend())
        b = registry.load("b")
        await b.set("y", 2)

        with caplog.at_level(logging.ERROR):
            await registry.purge()

        assert await b.get("y") is None
        assert "failed to purge" in caplog.text

    @pytest.mark.asyncio
    async def test_aclose_forgets_stores(self):
        registry = StashRegistry()
        store = registry.load("a")

        await registry.aclose()

        assert registry.load("a") is not store
