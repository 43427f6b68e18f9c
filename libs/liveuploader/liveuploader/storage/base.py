"""Storage driver interface shared by all backends."""

from __future__ import annotations

import asyncio
import mimetypes
import posixpath
import threading
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import BinaryIO, TypeVar

from liveuploader.error_codes import ErrorCode
from liveuploader.exceptions import TransientStorageError

T = TypeVar("T")

_EXT_TO_MIME = {
    ".ts": "video/mp2t",
    ".mp4": "video/mp4",
    ".m3u8": "application/x-mpegURL",
    ".jpg": "image/jpeg",
}


def content_type_for(name: str) -> str:
    ext = posixpath.splitext(name)[1].lower()
    if ext in _EXT_TO_MIME:
        return _EXT_TO_MIME[ext]
    guessed, _ = mimetypes.guess_type(name)
    return guessed or "application/octet-stream"


@dataclass(frozen=True)
class FileProperties:
    cache_control: str | None = None
    metadata: dict[str, str] = field(default_factory=dict)
    content_type: str | None = None


@dataclass(frozen=True)
class SaveResult:
    url: str
    headers: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class FileInfo:
    name: str
    size: int | None = None
    etag: str = ""
    last_modified: datetime | None = None


@dataclass
class ReadResult:
    name: str
    body: BinaryIO
    size: int | None = None
    etag: str = ""
    metadata: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class PageInfo:
    files: list[FileInfo] = field(default_factory=list)
    directories: list[str] = field(default_factory=list)
    next_token: str | None = None

    @property
    def has_next_page(self) -> bool:
        return bool(self.next_token)


class StorageSession(ABC):
    """A session bound to one object key (the destination URI's path)."""

    def __init__(self, base_key: str) -> None:
        self.base_key = base_key

    def object_key(self, name: str = "") -> str:
        if not name:
            return self.base_key
        return posixpath.normpath(posixpath.join(self.base_key, name)).lstrip("/")

    @abstractmethod
    async def save(
        self,
        name: str,
        data: BinaryIO,
        properties: FileProperties | None = None,
        timeout: float | None = None,
    ) -> SaveResult:
        """Write the whole of `data` as one object. Never leaves a partial object."""

    @abstractmethod
    async def read(self, name: str = "") -> ReadResult:
        """Read one object."""

    @abstractmethod
    async def list(self, prefix: str = "", delimiter: str = "/") -> PageInfo:
        """List objects under `prefix`."""

    async def read_bytes(self, name: str = "") -> bytes:
        res = await self.read(name)
        try:
            return res.body.read()
        finally:
            res.body.close()

    def end_session(self) -> None:
        return None


class StorageDriver(ABC):
    description: str = ""
    uri_schemes: tuple[str, ...] = ()

    @abstractmethod
    def new_session(self, path: str = "") -> StorageSession:
        """Open a session; `path` is appended to the driver's base key."""


class WriteGuard:
    """Lets a timed-out attempt abort its own commit step.

    The worker thread of an abandoned attempt keeps running; `commit` runs its
    final step (e.g. the rename that publishes an object) only if `abort` has
    not been called, and both take the same lock so the two never interleave.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._aborted = False

    def abort(self) -> None:
        with self._lock:
            self._aborted = True

    def commit(self, uri: str, fn: Callable[[], T]) -> T:
        with self._lock:
            if self._aborted:
                raise TransientStorageError(
                    uri, "write abandoned after timeout", error_code=ErrorCode.STORAGE_TIMEOUT
                )
            return fn()


async def run_with_timeout(
    uri: str,
    fn: Callable[[], T],
    timeout: float | None,
    *,
    guard: WriteGuard | None = None,
) -> T:
    """Run blocking `fn` in a worker thread bounded by `timeout` seconds.

    On timeout `guard` is aborted, so a write that finishes late cannot
    publish over a newer one.
    """
    task = asyncio.to_thread(fn)
    if not timeout or timeout <= 0:
        return await task
    try:
        return await asyncio.wait_for(task, timeout=timeout)
    except asyncio.TimeoutError as exc:
        if guard is not None:
            guard.abort()
        raise TransientStorageError(
            uri, f"timed out after {timeout}s", error_code=ErrorCode.STORAGE_TIMEOUT
        ) from exc
