# fastapi_stash/config.py

from typing import Annotated, Any, Literal, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, PositiveInt, ValidationError

from fastapi_stash.exceptions import CacheConfigError
from fastapi_stash.policy import PileUpPolicy
from fastapi_stash.serializer import SerializationFormat

DEFAULT_NAMESPACE = "default"


class _DriverConfig(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    name: str
    prefix: Optional[str] = None


class MemoryDriverConfig(_DriverConfig):
    driver: Literal["memory"] = "memory"


class NullDriverConfig(_DriverConfig):
    driver: Literal["null"] = "null"


class FileDriverConfig(_DriverConfig):
    driver: Literal["file"] = "file"
    path: str = "stash/cache"
    format: SerializationFormat = SerializationFormat.JSON
    dir_permissions: int = 0o770
    file_permissions: int = 0o660


class RedisDriverConfig(_DriverConfig):
    driver: Literal["redis"] = "redis"
    url: Optional[str] = None
    host: str = "127.0.0.1"
    port: int = 6379
    db: int = 0
    username: Optional[str] = None
    password: Optional[str] = None
    socket_timeout: Optional[float] = None
    format: SerializationFormat = SerializationFormat.JSON
    index_window: float = 1.0


DriverConfig = Annotated[
    Union[MemoryDriverConfig, NullDriverConfig, FileDriverConfig, RedisDriverConfig],
    Field(discriminator="driver"),
]


class NamespaceConfig(BaseModel):
    """
    Per-namespace driver choice and pile-up defaults.

    Unset values fall back to the store defaults.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    namespace: str = Field(min_length=1)
    driver: Optional[str] = None
    pile_up_policy: Optional[PileUpPolicy] = None
    preempt_time: Optional[PositiveInt] = None
    sleep_time: Optional[PositiveInt] = None
    sleep_attempts: Optional[PositiveInt] = None


class StashConfig(BaseModel):
    """
    Cache configuration.

    Build one at application startup and hand it to a
    :class:`~fastapi_stash.registry.StashRegistry`.

    Args:
        drivers: Named backend configurations.
        namespaces: Per-namespace settings; a ``"default"`` entry applies to
            namespaces without one of their own.
        default_prefix: Key prefix for drivers that do not set their own.
        fallback: Whether to fall back to a process-local backend when the
            configured one cannot be built.
    """

    model_config = ConfigDict(extra="forbid")

    drivers: list[DriverConfig] = Field(default_factory=list)
    namespaces: list[NamespaceConfig] = Field(default_factory=list)
    default_prefix: Optional[str] = None
    fallback: bool = True

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "StashConfig":
        """
        Validate plain configuration data.

        Raises:
            CacheConfigError: If the data is not a valid configuration
        """
        try:
            return cls.model_validate(data)
        except ValidationError as e:
            raise CacheConfigError(f"Invalid cache configuration: {e}") from e

    def namespace_config(self, namespace: str) -> NamespaceConfig:
        fallback: Optional[NamespaceConfig] = None

        for config in self.namespaces:
            if config.namespace == namespace:
                return config
            if config.namespace == DEFAULT_NAMESPACE:
                fallback = config

        if fallback is not None:
            return fallback.model_copy(update={"namespace": namespace})

        return NamespaceConfig(namespace=namespace)

    def driver_config(self, name: str) -> Optional[_DriverConfig]:
        for config in self.drivers:
            if config.name == name:
                return config
        return None

    def driver_names(self) -> list[str]:
        return [config.name for config in self.drivers]


__all__ = [
    "DEFAULT_NAMESPACE",
    "DriverConfig",
    "FileDriverConfig",
    "MemoryDriverConfig",
    "NamespaceConfig",
    "NullDriverConfig",
    "RedisDriverConfig",
    "StashConfig",
]
