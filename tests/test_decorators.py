"""Tests for the caching decorators."""

import asyncio
import logging

import pytest

from fastapi_stash import cache_evict, cache_put, cacheable
from fastapi_stash.config import NamespaceConfig, StashConfig
from fastapi_stash.policy import PileUpPolicy
from fastapi_stash.registry import StashRegistry


@pytest.fixture
def registry():
    return StashRegistry(StashConfig(namespaces=[
        NamespaceConfig(
            namespace="users",
            pile_up_policy=PileUpPolicy.SLEEP,
            sleep_time=10,
            sleep_attempts=50,
        ),
    ]))


class Source:
    """Counts calls to the wrapped function."""

    def __init__(self):
        self.calls = 0

    async def __call__(self, user_id, **extra):
        self.calls += 1
        return {"id": user_id, "version": self.calls}


class TestCacheable:
    @pytest.mark.asyncio
    async def test_second_call_cached(self, registry):
        source = Source()

        @cacheable(registry, namespace="users", key="user")
        async def get_user(user_id: int):
            return await source(user_id)

        assert await get_user(1) == {"id": 1, "version": 1}
        assert await get_user(1) == {"id": 1, "version": 1}
        assert await get_user(2) == {"id": 2, "version": 2}
        assert source.calls == 2

    @pytest.mark.asyncio
    async def test_ttl_applied(self, registry):
        class ByUser:
            def build(self, func, args, kwargs):
                return f"user.{args[0]}"

        @cacheable(registry, namespace="users", key_builder=ByUser(), ttl=120)
        async def get_user(user_id: int):
            return user_id

        await get_user(1)
        item = registry.load("users").get_item("user.1")

        assert await item.is_hit()
        assert 0 < item.time_remaining().total_seconds() <= 120

    @pytest.mark.asyncio
    async def test_concurrent_callers_share_one_call(self, registry):
        source = Source()

        @cacheable(registry, namespace="users", key="user")
        async def get_user(user_id: int):
            await asyncio.sleep(0.03)
            return await source(user_id)

        results = await asyncio.gather(get_user(1), get_user(1), get_user(1))

        assert source.calls == 1
        assert results == [{"id": 1, "version": 1}] * 3

    @pytest.mark.asyncio
    async def test_condition_false_bypasses(self, registry):
        source = Source()

        @cacheable(registry, namespace="users", key="user", condition=lambda user_id: user_id > 0)
        async def get_user(user_id: int):
            return await source(user_id)

        await get_user(0)
        await get_user(0)

        assert source.calls == 2
        assert await registry.load("users").count() == 0

    @pytest.mark.asyncio
    async def test_async_condition(self, registry):
        async def allowed(user_id):
            return True

        source = Source()

        @cacheable(registry, namespace="users", key="user", condition=allowed)
        async def get_user(user_id: int):
            return await source(user_id)

        await get_user(1)
        await get_user(1)
        assert source.calls == 1

    @pytest.mark.asyncio
    async def test_unless_skips_store_and_releases_lock(self, registry):
        calls = []

        @cacheable(registry, namespace="users", key="user", unless=lambda result: result is None)
        async def find_user(user_id: int):
            calls.append(user_id)
            return None

        assert await find_user(1) is None
        assert await find_user(1) is None
        assert calls == [1, 1]

    @pytest.mark.asyncio
    async def test_error_releases_lock(self, registry):
        attempts = []

        @cacheable(registry, namespace="users", key="user")
        async def flaky(user_id: int):
            attempts.append(user_id)
            if len(attempts) == 1:
                raise RuntimeError("source down")
            return "ok"

        with pytest.raises(RuntimeError):
            await flaky(1)

        # no lock left behind, so the retry does not wait
        assert await asyncio.wait_for(flaky(1), timeout=0.2) == "ok"

    @pytest.mark.asyncio
    async def test_excluded_params(self, registry):
        source = Source()

        @cacheable(registry, namespace="users", key="user")
        async def get_user(user_id: int, request=None):
            return await source(user_id)

        await get_user(1, request=object())
        await get_user(1, request=object())

        assert source.calls == 1

    @pytest.mark.asyncio
    async def test_custom_key_builder(self, registry):
        class ByUser:
            def build(self, func, args, kwargs):
                return f"user.{args[0]}"

        @cacheable(registry, namespace="users", key_builder=ByUser())
        async def get_user(user_id: int):
            return user_id

        await get_user(7)
        assert await registry.load("users").get("user.7") == 7

    @pytest.mark.asyncio
    async def test_invalid_custom_key_falls_back(self, registry, caplog):
        class Broken:
            def build(self, func, args, kwargs):
                return "user:7"

        source = Source()

        @cacheable(registry, namespace="users", key_builder=Broken())
        async def get_user(user_id: int):
            return await source(user_id)

        await get_user(7)
        await get_user(7)

        assert source.calls == 1
        assert "falling back to default" in caplog.text

    @pytest.mark.asyncio
    async def test_unavailable_cache_calls_through(self, caplog):
        registry = StashRegistry(StashConfig(fallback=False))

        @cacheable(registry, namespace="users")
        async def get_user(user_id: int):
            return user_id

        with caplog.at_level(logging.ERROR):
            assert await get_user(3) == 3

        assert "cache unavailable" in caplog.text

    def test_requires_coroutine_function(self, registry):
        with pytest.raises(TypeError):
            @cacheable(registry, namespace="users")
            def get_user(user_id):
                return user_id

    def test_wraps(self, registry):
        @cacheable(registry, namespace="users")
        async def get_user(user_id: int):
            """Load a user."""
            return user_id

        assert get_user.__name__ == "get_user"
        assert get_user.__doc__ == "Load a user."


class TestCachePut:
    @pytest.mark.asyncio
    async def test_refreshes_cached_value(self, registry):
        source = Source()

        @cacheable(registry, namespace="users", key="user")
        async def get_user(user_id: int):
            return await source(user_id)

        @cache_put(registry, namespace="users", key="user")
        async def refresh_user(user_id: int):
            return await source(user_id)

        await get_user(1)
        assert await refresh_user(1) == {"id": 1, "version": 2}
        assert await refresh_user(1) == {"id": 1, "version": 3}
        assert await get_user(1) == {"id": 1, "version": 3}

    @pytest.mark.asyncio
    async def test_unless(self, registry):
        @cache_put(registry, namespace="users", key="user", unless=lambda result: result < 0)
        async def put(user_id: int):
            return -1

        assert await put(1) == -1
        assert await registry.load("users").count() == 0

    @pytest.mark.asyncio
    async def test_condition(self, registry):
        @cache_put(registry, namespace="users", key="user", condition=lambda user_id: False)
        async def put(user_id: int):
            return user_id

        await put(1)
        assert await registry.load("users").count() == 0


class TestCacheEvict:
    @pytest.fixture
    def cached(self, registry):
        source = Source()

        @cacheable(registry, namespace="users", key="user")
        async def get_user(user_id: int):
            return await source(user_id)

        return get_user, source

    @pytest.mark.asyncio
    async def test_single_entry(self, registry, cached):
        get_user, source = cached

        @cache_evict(registry, namespace="users", key="user")
        async def update_user(user_id: int):
            return True

        await get_user(1)
        await get_user(2)
        await update_user(1)
        await get_user(1)
        await get_user(2)

        assert source.calls == 3

    @pytest.mark.asyncio
    async def test_all_calls(self, registry, cached):
        get_user, source = cached
        await registry.load("users").set("other", "kept")

        @cache_evict(registry, namespace="users", key="user", all_calls=True)
        async def reset():
            return None

        await get_user(1)
        await get_user(2)
        await reset()
        await get_user(1)
        await get_user(2)

        assert source.calls == 4
        assert await registry.load("users").get("other") == "kept"

    @pytest.mark.asyncio
    async def test_all_entries(self, registry, cached):
        get_user, source = cached
        await registry.load("users").set("other", "gone")

        @cache_evict(registry, namespace="users", all_entries=True)
        async def reset():
            return None

        await get_user(1)
        await reset()

        assert await registry.load("users").count() == 0

    @pytest.mark.asyncio
    async def test_after_invocation_skipped_on_error(self, registry, cached):
        get_user, source = cached

        @cache_evict(registry, namespace="users", key="user")
        async def update_user(user_id: int):
            raise RuntimeError("rejected")

        await get_user(1)
        with pytest.raises(RuntimeError):
            await update_user(1)
        await get_user(1)

        assert source.calls == 1

    @pytest.mark.asyncio
    async def test_before_invocation_survives_error(self, registry, cached):
        get_user, source = cached

        @cache_evict(registry, namespace="users", key="user", before_invocation=True)
        async def update_user(user_id: int):
            raise RuntimeError("rejected")

        await get_user(1)
        with pytest.raises(RuntimeError):
            await update_user(1)
        await get_user(1)

        assert source.calls == 2

    @pytest.mark.asyncio
    async def test_condition(self, registry, cached):
        get_user, source = cached

        @cache_evict(registry, namespace="users", key="user", condition=lambda user_id: user_id == 2)
        async def update_user(user_id: int):
            return None

        await get_user(1)
        await update_user(1)
        await get_user(1)

        assert source.calls == 1
