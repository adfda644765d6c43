# fastapi_stash/decorators.py

"""
Spring-style caching decorators for async functions.

Each decorator is bound to a registry and a namespace. Calls are keyed as
``<key>.<argument digest>`` inside the namespace, so every cached call of one
function can be evicted with a single ``<key>.*`` delete.
"""

from __future__ import annotations

import functools
import inspect
import logging
from typing import Any, Awaitable, Callable, Optional, ParamSpec, TypeVar, Union, cast

from fastapi_stash.exceptions import CacheError
from fastapi_stash.item import Item
from fastapi_stash.key_builder import DefaultKeyBuilder, KeyBuilder
from fastapi_stash.registry import StashRegistry
from fastapi_stash.store import Store

logger = logging.getLogger(__name__)

P = ParamSpec("P")
R = TypeVar("R")

Condition = Callable[..., Union[bool, Awaitable[bool]]]
Unless = Callable[[Any], Union[bool, Awaitable[bool]]]
Decorator = Callable[[Callable[P, Awaitable[R]]], Callable[P, Awaitable[R]]]

DEFAULT_EXCLUDED_PARAMS = frozenset({"request", "response", "db", "session", "self"})


def _require_coroutine(func: Callable[..., Any]) -> None:
	if not inspect.iscoroutinefunction(func):
		raise TypeError(f"{func.__qualname__} must be an async function to be cached")


async def _truthy(value: Union[bool, Awaitable[bool]]) -> bool:
	if inspect.isawaitable(value):
		value = await value
	return bool(value)


class _CallKeys:
	"""Turns the arguments of a decorated call into a store key."""

	def __init__(
		self,
		key: Optional[str],
		excluded_params: Optional[set[str]],
		key_builder: Optional[KeyBuilder],
	) -> None:
		if excluded_params is None:
			excluded_params = set(DEFAULT_EXCLUDED_PARAMS)

		self.default = DefaultKeyBuilder(key, excluded_params)
		self.custom = key_builder

	def base(self, func: Callable[..., Any]) -> str:
		return self.default.base(func)

	def __call__(self, func: Callable[..., Any], args: Any, kwargs: Any) -> str:
		args = cast(tuple[Any, ...], args)
		kwargs = cast(dict[str, Any], kwargs)

		if self.custom is not None:
			try:
				return Store.validate_key(self.custom.build(func, args, kwargs))
			except Exception:
				logger.exception("custom key_builder failed; falling back to default")

		return self.default.build(func, args, kwargs)


async def _regenerate(
	item: Item[Any],
	call: Callable[[], Awaitable[R]],
	ttl: Optional[int],
	unless: Optional[Unless],
) -> R:
	# same lock protocol as Store.fetch, plus the unless veto
	await item.lock()

	try:
		result = await call()
	except BaseException:
		await item.unlock()
		raise

	if unless is not None and await _truthy(unless(result)):
		await item.unlock()
		return result

	if not await item.expires_after(ttl).set(result).save():
		logger.debug("%r was not stored", item)

	return result


def cacheable(
	registry: StashRegistry,
	*,
	namespace: str,
	key: Optional[str] = None,
	ttl: Optional[int] = 3600,
	key_builder: Optional[KeyBuilder] = None,
	condition: Optional[Condition] = None,
	unless: Optional[Unless] = None,
	excluded_params: Optional[set[str]] = None,
) -> Decorator:
	"""Like Spring's @Cacheable.

	A hit returns the cached value. On a miss this caller takes the
	regeneration lock, runs the function and stores the result; concurrent
	callers of the same key follow the namespace's pile-up policy meanwhile.

	``condition`` (called with the arguments) decides whether the cache is
	used at all; ``unless`` (called with the result) vetoes storing it.
	"""
	keys = _CallKeys(key, excluded_params, key_builder)

	def decorator(func: Callable[P, Awaitable[R]]) -> Callable[P, Awaitable[R]]:
		_require_coroutine(func)

		@functools.wraps(func)
		async def wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
			if condition is not None and not await _truthy(condition(*args, **kwargs)):
				logger.debug("cacheable(%s): bypassing cache for %s", namespace, func.__qualname__)
				return await func(*args, **kwargs)

			cache_key = keys(func, args, kwargs)

			try:
				item = registry.load(namespace).get_item(cache_key)
				hit = await item.is_hit()
			except CacheError:
				logger.exception("cacheable(%s): cache unavailable", namespace)
				return await func(*args, **kwargs)

			if hit:
				return cast(R, item.value)

			return await _regenerate(item, lambda: func(*args, **kwargs), ttl, unless)

		return wrapper

	return decorator


def cache_put(
	registry: StashRegistry,
	*,
	namespace: str,
	key: Optional[str] = None,
	ttl: Optional[int] = 3600,
	key_builder: Optional[KeyBuilder] = None,
	condition: Optional[Condition] = None,
	unless: Optional[Unless] = None,
	excluded_params: Optional[set[str]] = None,
) -> Decorator:
	"""Like Spring's @CachePut: always run, then overwrite the cached value."""
	keys = _CallKeys(key, excluded_params, key_builder)

	def decorator(func: Callable[P, Awaitable[R]]) -> Callable[P, Awaitable[R]]:
		_require_coroutine(func)

		@functools.wraps(func)
		async def wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
			result = await func(*args, **kwargs)

			if condition is not None and not await _truthy(condition(*args, **kwargs)):
				return result
			if unless is not None and await _truthy(unless(result)):
				return result

			cache_key = keys(func, args, kwargs)

			try:
				stored = await registry.load(namespace).set(cache_key, result, ttl=ttl)
			except CacheError:
				logger.exception("cache_put(%s): cache unavailable", namespace)
				return result

			if not stored:
				logger.debug("cache_put(%s): %s was not stored", namespace, cache_key)

			return result

		return wrapper

	return decorator


def cache_evict(
	registry: StashRegistry,
	*,
	namespace: str,
	key: Optional[str] = None,
	all_entries: bool = False,
	all_calls: bool = False,
	before_invocation: bool = False,
	key_builder: Optional[KeyBuilder] = None,
	condition: Optional[Condition] = None,
	excluded_params: Optional[set[str]] = None,
) -> Decorator:
	"""Like Spring's @CacheEvict.

	By default the entry for the same arguments is removed once the function
	returns; an exception skips the eviction unless ``before_invocation``.

	- ``all_calls`` removes every cached call under ``key`` (``<key>.*``).
	- ``all_entries`` clears the whole namespace.
	"""
	keys = _CallKeys(key, excluded_params, key_builder)

	def decorator(func: Callable[P, Awaitable[R]]) -> Callable[P, Awaitable[R]]:
		_require_coroutine(func)

		async def evict(args: Any, kwargs: Any, when: str) -> None:
			try:
				store = registry.load(namespace)

				if all_entries:
					await store.clear()
				elif all_calls:
					await store.delete(f"{keys.base(func)}.*")
				else:
					await store.delete(keys(func, args, kwargs))
			except CacheError:
				logger.exception("cache_evict(%s): eviction failed %s invocation", namespace, when)

		@functools.wraps(func)
		async def wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
			if condition is not None and not await _truthy(condition(*args, **kwargs)):
				return await func(*args, **kwargs)

			if before_invocation:
				await evict(args, kwargs, "before")
				return await func(*args, **kwargs)

			result = await func(*args, **kwargs)
			await evict(args, kwargs, "after")
			return result

		return wrapper

	return decorator


__all__ = ["DEFAULT_EXCLUDED_PARAMS", "cache_evict", "cache_put", "cacheable"]
