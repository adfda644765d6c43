"""Tests for configuration models."""

import pytest
from pydantic import ValidationError

from fastapi_stash.config import (
    FileDriverConfig,
    MemoryDriverConfig,
    NamespaceConfig,
    RedisDriverConfig,
    StashConfig,
)
from fastapi_stash.exceptions import CacheConfigError
from fastapi_stash.policy import PileUpPolicy
from fastapi_stash.serializer import SerializationFormat


class TestStashConfig:
    def test_from_mapping(self):
        config = StashConfig.from_mapping({
            "drivers": [
                {"name": "disk", "driver": "file", "path": "/tmp/stash"},
                {"name": "shared", "driver": "redis", "url": "redis://cache:6379/1", "format": "msgpack"},
            ],
            "namespaces": [
                {"namespace": "pages", "driver": "disk", "pile_up_policy": "sleep", "sleep_time": 50},
            ],
            "default_prefix": "site",
        })

        disk = config.driver_config("disk")
        shared = config.driver_config("shared")

        assert isinstance(disk, FileDriverConfig)
        assert disk.path == "/tmp/stash"
        assert isinstance(shared, RedisDriverConfig)
        assert shared.format is SerializationFormat.MSGPACK
        assert config.driver_names() == ["disk", "shared"]

        pages = config.namespace_config("pages")
        assert pages.pile_up_policy is PileUpPolicy.SLEEP
        assert pages.sleep_time == 50
        assert pages.sleep_attempts is None

    def test_defaults(self):
        config = StashConfig()

        assert config.drivers == []
        assert config.fallback is True
        assert config.driver_config("default") is None

    @pytest.mark.parametrize("data", [
        {"drivers": [{"name": "x", "driver": "memcached"}]},
        {"drivers": [{"driver": "memory"}]},
        {"namespaces": [{"namespace": "a", "preempt_time": 0}]},
        {"namespaces": [{"namespace": "a", "pile_up_policy": "panic"}]},
        {"namespaces": [{"namespace": ""}]},
        {"unknown": True},
    ])
    def test_invalid(self, data):
        with pytest.raises(CacheConfigError):
            StashConfig.from_mapping(data)

    def test_default_namespace_applies_to_others(self):
        config = StashConfig(namespaces=[
            NamespaceConfig(namespace="default", pile_up_policy=PileUpPolicy.VALUE, driver="mem"),
            NamespaceConfig(namespace="users", preempt_time=10),
        ])

        pages = config.namespace_config("pages")
        assert pages.namespace == "pages"
        assert pages.pile_up_policy is PileUpPolicy.VALUE
        assert pages.driver == "mem"

        users = config.namespace_config("users")
        assert users.pile_up_policy is None
        assert users.preempt_time == 10

    def test_unconfigured_namespace(self):
        assert StashConfig().namespace_config("x") == NamespaceConfig(namespace="x")

    def test_driver_configs_are_frozen(self):
        config = MemoryDriverConfig(name="m")

        with pytest.raises(ValidationError):
            config.name = "other"
