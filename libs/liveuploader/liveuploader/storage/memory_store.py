"""In-memory storage driver used by tests."""

from __future__ import annotations

import builtins
import io
import posixpath
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import BinaryIO

from liveuploader.error_codes import ErrorCode
from liveuploader.exceptions import TransientStorageError
from liveuploader.storage.base import (
    FileInfo,
    FileProperties,
    PageInfo,
    ReadResult,
    SaveResult,
    StorageDriver,
    StorageSession,
)


@dataclass
class StoredObject:
    data: bytes
    properties: FileProperties = field(default_factory=FileProperties)
    last_modified: datetime = field(default_factory=datetime.now)


class MemorySession(StorageSession):
    def __init__(self, driver: "MemoryDriver", base_key: str) -> None:
        super().__init__(base_key)
        self.driver = driver

    async def save(
        self,
        name: str,
        data: BinaryIO,
        properties: FileProperties | None = None,
        timeout: float | None = None,
    ) -> SaveResult:
        key = self.object_key(name)
        body = data.read()
        self.driver.put(key, StoredObject(data=body, properties=properties or FileProperties()))
        return SaveResult(url=f"memory://{self.driver.host}/{key}")

    async def read(self, name: str = "") -> ReadResult:
        key = self.object_key(name)
        obj = self.driver.get(key)
        if obj is None:
            raise TransientStorageError(
                f"memory://{self.driver.host}/{key}",
                "object not found",
                error_code=ErrorCode.STORAGE_READ_FAILED,
            )
        return ReadResult(
            name=key,
            body=io.BytesIO(obj.data),
            size=len(obj.data),
            metadata=dict(obj.properties.metadata),
        )

    async def list(self, prefix: str = "", delimiter: str = "/") -> PageInfo:
        base = self.object_key(prefix) if prefix else self.base_key
        base = f"{base.rstrip('/')}/" if base else ""
        files: builtins.list[FileInfo] = []
        dirs: set[str] = set()
        for key, obj in sorted(self.driver.items()):
            if not key.startswith(base):
                continue
            rest = key[len(base):]
            if delimiter and delimiter in rest:
                dirs.add(rest.split(delimiter, 1)[0])
                continue
            files.append(FileInfo(name=posixpath.basename(key), size=len(obj.data), last_modified=obj.last_modified))
        return PageInfo(files=files, directories=sorted(dirs))


class MemoryDriver(StorageDriver):
    description = "Memory driver for tests."
    uri_schemes = ("memory",)

    def __init__(self, host: str, key_prefix: str = "") -> None:
        self.host = host
        self.key_prefix = key_prefix.lstrip("/")
        self._objects: dict[str, StoredObject] = {}
        self._lock = threading.Lock()

    def put(self, key: str, obj: StoredObject) -> None:
        with self._lock:
            self._objects[key] = obj

    def get(self, key: str) -> StoredObject | None:
        with self._lock:
            return self._objects.get(key.lstrip("/"))

    def items(self) -> builtins.list[tuple[str, StoredObject]]:
        with self._lock:
            return list(self._objects.items())

    def with_prefix(self, key_prefix: str) -> "MemoryDriver":
        """A view sharing this driver's objects, rooted at another key."""
        view = MemoryDriver(self.host, key_prefix)
        view._objects = self._objects
        view._lock = self._lock
        return view

    def new_session(self, path: str = "") -> StorageSession:
        key = f"{self.key_prefix}/{path}".strip("/") if path else self.key_prefix
        return MemorySession(self, key)
