"""Local filesystem storage driver."""

from __future__ import annotations

import builtins
import logging
import os
import shutil
import tempfile
from datetime import datetime
from pathlib import Path
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
    WriteGuard,
    run_with_timeout,
)

logger = logging.getLogger(__name__)


class FilesystemSession(StorageSession):
    def _path(self, name: str = "") -> Path:
        key = self.object_key(name)
        if self.base_key.startswith("/") and not key.startswith("/"):
            key = "/" + key
        return Path(key)

    async def save(
        self,
        name: str,
        data: BinaryIO,
        properties: FileProperties | None = None,
        timeout: float | None = None,
    ) -> SaveResult:
        path = self._path(name)
        guard = WriteGuard()

        def _write() -> None:
            path.parent.mkdir(parents=True, exist_ok=True)
            # Write next to the target then rename so readers never see a partial file.
            fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
            try:
                with os.fdopen(fd, "wb") as fh:
                    shutil.copyfileobj(data, fh)
                    fh.flush()
                    os.fsync(fh.fileno())
                guard.commit(str(path), lambda: os.replace(tmp_name, path))
            except BaseException:
                try:
                    os.unlink(tmp_name)
                except OSError:
                    pass
                raise

        try:
            await run_with_timeout(str(path), _write, timeout, guard=guard)
        except OSError as exc:
            raise TransientStorageError(str(path), f"write failed: {exc}") from exc
        return SaveResult(url=str(path))

    async def read(self, name: str = "") -> ReadResult:
        path = self._path(name)
        try:
            fh = path.open("rb")
            size = path.stat().st_size
        except OSError as exc:
            raise TransientStorageError(
                str(path), f"read failed: {exc}", error_code=ErrorCode.STORAGE_READ_FAILED
            ) from exc
        return ReadResult(name=str(path), body=fh, size=size)

    async def list(self, prefix: str = "", delimiter: str = "/") -> PageInfo:
        base = self._path(prefix) if prefix else self._path()
        if not base.is_dir():
            return PageInfo()

        def _scan() -> tuple[builtins.list[FileInfo], builtins.list[str]]:
            files: builtins.list[FileInfo] = []
            dirs: builtins.list[str] = []
            for entry in sorted(os.scandir(base), key=lambda e: e.name):
                if entry.is_dir():
                    dirs.append(entry.name)
                    continue
                st = entry.stat()
                files.append(
                    FileInfo(
                        name=entry.name,
                        size=st.st_size,
                        last_modified=datetime.fromtimestamp(st.st_mtime),
                    )
                )
            return files, dirs

        files, dirs = await run_with_timeout(str(base), _scan, None)
        return PageInfo(files=files, directories=dirs)


class FilesystemDriver(StorageDriver):
    description = "File system driver."
    uri_schemes = ("", "file")

    def __init__(self, base_path: str) -> None:
        self.base_path = base_path

    def new_session(self, path: str = "") -> StorageSession:
        base = os.path.join(self.base_path, path) if path else self.base_path
        return FilesystemSession(base)
