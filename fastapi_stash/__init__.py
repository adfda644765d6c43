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
	NamespaceConfig,
	NullDriverConfig,
	RedisDriverConfig,
	StashConfig,
)
from fastapi_stash.decorators import cacheable, cache_evict, cache_put
from fastapi_stash.exceptions import (
	CacheConfigError,
	CacheError,
	InvalidKeyError,
	NoDriverAvailableError,
)
from fastapi_stash.item import Item, ItemState
from fastapi_stash.key_builder import DefaultKeyBuilder, KeyBuilder
from fastapi_stash.key_codec import KeyCodec
from fastapi_stash.nested_index import NestedKeyIndex
from fastapi_stash.policy import PileUpPolicy
from fastapi_stash.registry import StashRegistry
from fastapi_stash.serializer import (
	SerializationFormat,
	deserialize,
	get_default_format,
	register_serializer,
	serialize,
	set_default_format,
)
from fastapi_stash.store import Store

__all__ = [
	"Store",
	"Item",
	"ItemState",
	"PileUpPolicy",
	"StashRegistry",
	"StashConfig",
	"NamespaceConfig",
	"MemoryDriverConfig",
	"NullDriverConfig",
	"FileDriverConfig",
	"RedisDriverConfig",
	"BaseCacheBackend",
	"MemoryBackend",
	"NullBackend",
	"FileBackend",
	"RedisCacheBackend",
	"KeyCodec",
	"NestedKeyIndex",
	"CacheError",
	"CacheConfigError",
	"InvalidKeyError",
	"NoDriverAvailableError",
	"cacheable",
	"cache_evict",
	"cache_put",
	"DefaultKeyBuilder",
	"KeyBuilder",
	"SerializationFormat",
	"serialize",
	"deserialize",
	"get_default_format",
	"set_default_format",
	"register_serializer",
]
