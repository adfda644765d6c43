# fastapi_stash/key_builder.py

"""
Store keys for decorated function calls.

A call of ``get_user(42)`` cached under the base ``users`` is stored as
``users.<digest>``: the digest covers the bound arguments, and the base is a
parent segment shared by every call, so ``users.*`` evicts them all.
"""

from __future__ import annotations

import dataclasses
import functools
import hashlib
import inspect
import json
import re
from datetime import date, datetime, time
from decimal import Decimal
from enum import Enum
from typing import Any, Callable, Iterable, Optional, Protocol
from uuid import UUID

from pydantic import BaseModel

_UNSAFE = re.compile(r"[{}()/\\@:*]")


class KeyBuilder(Protocol):
    """
    Interface for custom decorator keys.
    """

    def build(
        self,
        func: Callable[..., Any],
        args: tuple[Any, ...],
        kwargs: dict[str, Any],
    ) -> str:
        """
        :param func: The decorated function.
        :param args: Positional arguments of the call.
        :param kwargs: Keyword arguments of the call.
        :return: A key valid within a store namespace.
        """
        ...


def sanitize_key(key: str) -> str:
    """Replace characters a store rejects in keys."""
    return _UNSAFE.sub("_", key).strip(".") or "_"


def function_key(func: Callable[..., Any]) -> str:
    return sanitize_key(f"{func.__module__}.{func.__qualname__}")


@functools.singledispatch
def key_data(obj: Any) -> Any:
    """
    Reduce an argument to plain JSON data for hashing.

    Unknown types fall back to their ``repr``.
    """
    if dataclasses.is_dataclass(obj) and not isinstance(obj, type):
        return key_data(dataclasses.asdict(obj))
    return repr(obj)


@key_data.register(str)
@key_data.register(int)
@key_data.register(float)
@key_data.register(type(None))
def _(obj: Any) -> Any:
    return obj


@key_data.register(date)
@key_data.register(time)
def _(obj: Any) -> str:
    # datetime is a date subclass
    return obj.isoformat()


@key_data.register(UUID)
@key_data.register(Decimal)
def _(obj: Any) -> str:
    return str(obj)


@key_data.register(Enum)
def _(obj: Enum) -> Any:
    return key_data(obj.value)


@key_data.register(bytes)
def _(obj: bytes) -> str:
    return obj.hex()


@key_data.register(BaseModel)
def _(obj: BaseModel) -> Any:
    return key_data(obj.model_dump())


@key_data.register(list)
@key_data.register(tuple)
def _(obj: Iterable[Any]) -> list[Any]:
    return [key_data(item) for item in obj]


@key_data.register(set)
@key_data.register(frozenset)
def _(obj: Iterable[Any]) -> list[Any]:
    return sorted((key_data(item) for item in obj), key=repr)


@key_data.register(dict)
def _(obj: dict) -> dict[str, Any]:
    return {str(key): key_data(value) for key, value in obj.items()}


def digest(data: Any) -> str:
    raw = json.dumps(data, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


class DefaultKeyBuilder:
    """
    Keys calls as ``<base>.<sha256 of the bound arguments>``.

    :param key: Base segment; defaults to the function's module and
        qualified name.
    :param excluded_params: Argument names left out of the digest, such as
        a request or database session.
    """

    def __init__(
        self,
        key: Optional[str] = None,
        excluded_params: Optional[set[str]] = None,
    ) -> None:
        self.key = sanitize_key(key) if key else None
        self.excluded_params = frozenset(excluded_params or ())

    def base(self, func: Callable[..., Any]) -> str:
        return self.key or function_key(func)

    def arguments(
        self,
        func: Callable[..., Any],
        args: tuple[Any, ...],
        kwargs: dict[str, Any],
    ) -> dict[str, Any]:
        bound = inspect.signature(func).bind_partial(*args, **kwargs)
        bound.apply_defaults()

        return {
            name: key_data(value)
            for name, value in bound.arguments.items()
            if name not in self.excluded_params
        }

    def build(
        self,
        func: Callable[..., Any],
        args: tuple[Any, ...],
        kwargs: dict[str, Any],
    ) -> str:
        return f"{self.base(func)}.{digest(self.arguments(func, args, kwargs))}"


__all__ = [
    "DefaultKeyBuilder",
    "KeyBuilder",
    "digest",
    "function_key",
    "key_data",
    "sanitize_key",
]
