# fastapi_stash/backend/file.py

import asyncio
import hashlib
import logging
import os
import shutil
import tempfile
from pathlib import Path
from typing import Any, Optional, Union

from .base import BaseCacheBackend, Entry
from fastapi_stash.serializer import SerializationFormat, deserialize, serialize

logger = logging.getLogger(__name__)

EXTENSION = ".cache"
LOCK_EXTENSION = ".lock"


class FileBackend(BaseCacheBackend):
    """
    Filesystem cache backend.

    Every key segment becomes a hashed path component, so ``a.b`` is stored
    in ``<root>/<a>/<b>.cache`` and the children of ``a.b`` live in the
    ``<root>/<a>/<b>/`` directory, which a wildcard delete removes whole.
    """

    def __init__(
        self,
        path: Union[str, os.PathLike],
        prefix: Optional[str] = None,
        *,
        format: Optional[SerializationFormat] = None,
        dir_permissions: int = 0o770,
        file_permissions: int = 0o660,
    ) -> None:
        super().__init__(prefix, separator="/")
        self.path = Path(path)
        self.format = format
        self.dir_permissions = dir_permissions
        self.file_permissions = file_permissions

    def _hash_key(self, key: str) -> Path:
        parts = [
            hashlib.md5(part.encode("utf-8")).hexdigest()
            for part in key.strip("/").split("/")
            if part
        ]
        return self.path.joinpath(*parts)

    def _file(self, namespace: str, key: str, extension: str = EXTENSION) -> Path:
        root = self._hash_key(self.keys.create_key(namespace, key))
        return root.with_name(root.name + extension)

    def _namespace_root(self, namespace: str) -> Path:
        return self._hash_key(self.keys.build_key(namespace, None))

    def _write(self, file: Path, data: bytes) -> None:
        file.parent.mkdir(mode=self.dir_permissions, parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=file.parent, prefix=".tmp-")

        try:
            with os.fdopen(fd, "wb") as handle:
                handle.write(data)
            os.chmod(tmp, self.file_permissions)
            os.replace(tmp, file)
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise

    async def store(
        self,
        namespace: str,
        key: str,
        value: Any,
        created: int,
        expires: Optional[int] = None,
    ) -> bool:
        file = self._file(namespace, key)
        payload = {
            "namespace": namespace,
            "key": key,
            "expires": expires,
            "value": value,
        }

        try:
            data = serialize(payload, self.format)
            await asyncio.to_thread(self._write, file, data)
        except (OSError, ValueError):
            logger.exception("file cache: failed to write %s:%s", namespace, key)
            return False

        return True

    def _load(self, file: Path) -> Optional[dict[str, Any]]:
        try:
            data = file.read_bytes()
        except FileNotFoundError:
            return None

        try:
            payload = deserialize(data, self.format)
        except ValueError:
            logger.warning("file cache: discarding unreadable %s", file)
            return None

        return payload if isinstance(payload, dict) else None

    async def fetch(self, namespace: str, key: str) -> Optional[Entry]:
        file = self._file(namespace, key)

        try:
            payload = await asyncio.to_thread(self._load, file)
        except OSError:
            logger.exception("file cache: failed to read %s:%s", namespace, key)
            return None

        if (
            payload is None
            or payload.get("namespace") != namespace
            or payload.get("key") != key
        ):
            return None

        return payload.get("value"), payload.get("expires")

    async def delete(self, namespace: str, key: str) -> bool:
        inspected = self.keys.inspect_key(namespace, key)
        root = self._hash_key(inspected.key)

        try:
            if inspected.matches_children:
                await asyncio.to_thread(shutil.rmtree, root, True)
            if inspected.matches_self:
                await asyncio.to_thread(root.with_name(root.name + EXTENSION).unlink, True)
        except OSError:
            logger.exception("file cache: failed to delete %s:%s", namespace, key)
            return False

        return True

    async def clear_all(self, namespace: str) -> bool:
        await asyncio.to_thread(shutil.rmtree, self._namespace_root(namespace), True)
        return True

    async def store_lock(self, namespace: str, key: str, expires: int) -> bool:
        file = self._file(namespace, key, LOCK_EXTENSION)

        try:
            await asyncio.to_thread(self._write, file, str(expires).encode("ascii"))
        except OSError:
            logger.exception("file cache: failed to lock %s:%s", namespace, key)
            return False

        return True

    @staticmethod
    def _read_lock(file: Path) -> Optional[int]:
        try:
            content = file.read_text("ascii").strip()
        except FileNotFoundError:
            return None

        return int(content) if content.isdigit() else None

    async def fetch_lock(self, namespace: str, key: str) -> Optional[int]:
        file = self._file(namespace, key, LOCK_EXTENSION)

        try:
            return await asyncio.to_thread(self._read_lock, file)
        except OSError:
            logger.exception("file cache: failed to read lock %s:%s", namespace, key)
            return None

    async def delete_lock(self, namespace: str, key: str) -> bool:
        file = self._file(namespace, key, LOCK_EXTENSION)

        try:
            await asyncio.to_thread(file.unlink, True)
        except OSError:
            logger.exception("file cache: failed to unlock %s:%s", namespace, key)
            return False

        return True

    def _value_files(self, namespace: str) -> list[Path]:
        return list(self._namespace_root(namespace).rglob("*" + EXTENSION))

    def _list_keys(self, namespace: str) -> list[str]:
        keys = []

        for file in self._value_files(namespace):
            payload = self._load(file)
            if payload is not None and payload.get("namespace") == namespace:
                keys.append(payload["key"])

        return sorted(keys)

    async def count(self, namespace: str) -> int:
        return len(await asyncio.to_thread(self._value_files, namespace))

    async def get_keys(self, namespace: str) -> list[str]:
        return await asyncio.to_thread(self._list_keys, namespace)

    async def purge(self) -> None:
        await asyncio.to_thread(shutil.rmtree, self.path, True)
