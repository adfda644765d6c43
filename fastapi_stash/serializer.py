"""
Payload serialization for backends that store bytes.

Values are wrapped in an ``[value, expires]`` envelope before encoding.
JSON and MessagePack payloads tag non-native types (datetime, UUID, Decimal,
Pydantic models, dataclasses and so on) so they survive a round trip.
"""

import dataclasses
import importlib
import json
import logging
import pickle
import warnings
from datetime import date, datetime, time, timedelta
from decimal import Decimal
from enum import Enum
from typing import Any, Callable, Optional, Union
from uuid import UUID

import msgpack
from pydantic import BaseModel

logger = logging.getLogger(__name__)


class SerializationFormat(str, Enum):
    """Supported serialization formats."""
    JSON = "json"
    PICKLE = "pickle"
    MSGPACK = "msgpack"


def _qualified_name(cls: type) -> str:
    return f"{cls.__module__}.{cls.__qualname__}"


def _import_qualified(path: str) -> Any:
    module_path, _, name = path.rpartition(".")
    module = importlib.import_module(module_path)
    return getattr(module, name)


def _tag(obj: Any) -> Optional[dict[str, Any]]:
    """Return a tagged, JSON-safe representation of ``obj``, or None."""
    # datetime must be checked before its date base class
    if isinstance(obj, datetime):
        return {"__type__": "datetime", "value": obj.isoformat()}
    if isinstance(obj, date):
        return {"__type__": "date", "value": obj.isoformat()}
    if isinstance(obj, time):
        return {"__type__": "time", "value": obj.isoformat()}
    if isinstance(obj, timedelta):
        return {"__type__": "timedelta", "value": obj.total_seconds()}
    if isinstance(obj, UUID):
        return {"__type__": "uuid", "value": str(obj)}
    if isinstance(obj, Decimal):
        return {"__type__": "decimal", "value": str(obj)}
    if isinstance(obj, Enum):
        return {"__type__": "enum", "class": _qualified_name(type(obj)), "value": obj.value}
    if isinstance(obj, (set, frozenset)):
        return {"__type__": type(obj).__name__, "value": list(obj)}
    if isinstance(obj, bytes):
        return {"__type__": "bytes", "value": obj.decode("latin-1")}
    if isinstance(obj, BaseModel):
        return {
            "__type__": "pydantic",
            "class": _qualified_name(type(obj)),
            "value": obj.model_dump(mode="json"),
        }
    if dataclasses.is_dataclass(obj) and not isinstance(obj, type):
        return {
            "__type__": "dataclass",
            "class": _qualified_name(type(obj)),
            "value": dataclasses.asdict(obj),
        }
    return None


class JSONEncoder(json.JSONEncoder):
    """
    JSON encoder that tags the additional Python types cached values
    commonly carry.
    """

    def default(self, obj: Any) -> Any:
        tagged = _tag(obj)
        if tagged is None:
            return super().default(obj)
        return tagged


def _restore_class(obj: dict[str, Any]) -> Any:
    try:
        cls = _import_qualified(obj["class"])
    except (ImportError, AttributeError):
        logger.warning("cannot import %s; returning raw cached value", obj["class"])
        return obj["value"]

    if obj["__type__"] == "enum":
        return cls(obj["value"])
    if obj["__type__"] == "pydantic":
        return cls.model_validate(obj["value"])
    return cls(**obj["value"])


_UNTAGGERS: dict[str, Callable[[dict[str, Any]], Any]] = {
    "datetime": lambda o: datetime.fromisoformat(o["value"]),
    "date": lambda o: date.fromisoformat(o["value"]),
    "time": lambda o: time.fromisoformat(o["value"]),
    "timedelta": lambda o: timedelta(seconds=o["value"]),
    "uuid": lambda o: UUID(o["value"]),
    "decimal": lambda o: Decimal(o["value"]),
    "set": lambda o: set(o["value"]),
    "frozenset": lambda o: frozenset(o["value"]),
    "bytes": lambda o: o["value"].encode("latin-1"),
    "enum": _restore_class,
    "pydantic": _restore_class,
    "dataclass": _restore_class,
}


def _json_object_hook(obj: dict) -> Any:
    """
    Restore a tagged object produced by :class:`JSONEncoder`.
    """
    untag = _UNTAGGERS.get(obj.get("__type__"))  # type: ignore[arg-type]
    if untag is None:
        return obj
    return untag(obj)


def serialize_json(data: Any) -> bytes:
    return json.dumps(
        data, cls=JSONEncoder, separators=(",", ":"), ensure_ascii=False
    ).encode("utf-8")


def deserialize_json(data: bytes) -> Any:
    return json.loads(data.decode("utf-8"), object_hook=_json_object_hook)


def serialize_pickle(data: Any) -> bytes:
    """
    Serialize data with pickle.

    Note: Pickle is the most flexible but least secure. Only use with trusted
    cache backends.
    """
    warnings.warn(
        "Pickle serialization is unsafe for untrusted data. "
        "Only use with trusted cache backends.",
        RuntimeWarning,
        stacklevel=2,
    )
    return pickle.dumps(data, protocol=pickle.HIGHEST_PROTOCOL)


def deserialize_pickle(data: bytes) -> Any:
    return pickle.loads(data)


def serialize_msgpack(data: Any) -> bytes:
    return msgpack.packb(data, default=_tag_for_msgpack, use_bin_type=True)


def _tag_for_msgpack(obj: Any) -> Any:
    tagged = _tag(obj)
    if tagged is None:
        raise TypeError(f"Object of type {type(obj).__name__} is not serializable")
    return tagged


def deserialize_msgpack(data: bytes) -> Any:
    return msgpack.unpackb(data, raw=False, object_hook=_json_object_hook)


_DEFAULT_FORMAT = SerializationFormat.JSON

_SERIALIZERS: dict[str, Callable[[Any], bytes]] = {
    SerializationFormat.JSON.value: serialize_json,
    SerializationFormat.PICKLE.value: serialize_pickle,
    SerializationFormat.MSGPACK.value: serialize_msgpack,
}

_DESERIALIZERS: dict[str, Callable[[bytes], Any]] = {
    SerializationFormat.JSON.value: deserialize_json,
    SerializationFormat.PICKLE.value: deserialize_pickle,
    SerializationFormat.MSGPACK.value: deserialize_msgpack,
}


def set_default_format(format: SerializationFormat) -> None:
    global _DEFAULT_FORMAT
    _DEFAULT_FORMAT = format


def get_default_format() -> SerializationFormat:
    return _DEFAULT_FORMAT


def register_serializer(
    format: Union[str, SerializationFormat],
    serializer: Callable[[Any], bytes],
    deserializer: Callable[[bytes], Any],
) -> None:
    """
    Register a custom serializer/deserializer pair under a format name.

    :param format: Format identifier
    :param serializer: Serialization function
    :param deserializer: Deserialization function
    """
    name = format.value if isinstance(format, SerializationFormat) else format
    _SERIALIZERS[name] = serializer
    _DESERIALIZERS[name] = deserializer


def _format_name(format: Union[str, SerializationFormat, None]) -> str:
    if format is None:
        format = _DEFAULT_FORMAT
    return format.value if isinstance(format, SerializationFormat) else format


def serialize(
    data: Any,
    format: Union[str, SerializationFormat, None] = None,
) -> bytes:
    """
    Serialize data to bytes using the specified or default format.

    :raises ValueError: If the format is unknown or serialization fails
    """
    name = _format_name(format)

    if name not in _SERIALIZERS:
        raise ValueError(f"Unsupported serialization format: {name}")

    try:
        return _SERIALIZERS[name](data)
    except Exception as e:
        raise ValueError(f"Failed to serialize data with format {name}: {e}") from e


def deserialize(
    data: bytes,
    format: Union[str, SerializationFormat, None] = None,
) -> Any:
    """
    Deserialize bytes using the specified or default format.

    :raises ValueError: If the format is unknown or deserialization fails
    """
    name = _format_name(format)

    if name not in _DESERIALIZERS:
        raise ValueError(f"Unsupported deserialization format: {name}")

    try:
        return _DESERIALIZERS[name](data)
    except Exception as e:
        raise ValueError(f"Failed to deserialize data with format {name}: {e}") from e


def pack_entry(
    value: Any,
    expires: Optional[int],
    format: Union[str, SerializationFormat, None] = None,
) -> bytes:
    """Serialize a cache entry envelope."""
    return serialize([value, expires], format)


def unpack_entry(
    data: bytes,
    format: Union[str, SerializationFormat, None] = None,
) -> Optional[tuple[Any, Optional[int]]]:
    """
    Deserialize a cache entry envelope.

    A corrupt or foreign payload yields None so it reads as a miss.
    """
    try:
        payload = deserialize(data, format)
    except ValueError:
        logger.warning("discarding unreadable cache payload", exc_info=True)
        return None

    if not isinstance(payload, (list, tuple)) or len(payload) != 2:
        return None

    value, expires = payload
    if expires is not None and not isinstance(expires, int):
        return None

    return value, expires


__all__ = [
    "serialize",
    "deserialize",
    "pack_entry",
    "unpack_entry",
    "SerializationFormat",
    "set_default_format",
    "get_default_format",
    "register_serializer",
    "JSONEncoder",
    "serialize_json",
    "deserialize_json",
    "serialize_pickle",
    "deserialize_pickle",
    "serialize_msgpack",
    "deserialize_msgpack",
]
