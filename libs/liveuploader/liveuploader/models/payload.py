"""Payload sources handed to storage writes."""

from __future__ import annotations

import io
import os
import tempfile
from pathlib import Path
from typing import BinaryIO, Protocol


class PayloadSource(Protocol):
    """Something a write attempt can (re)open from the start."""

    @property
    def size(self) -> int: ...

    def open(self) -> BinaryIO: ...


class CountingReader(io.RawIOBase):
    """Wraps a reader and counts the bytes handed out."""

    def __init__(self, inner: BinaryIO) -> None:
        self._inner = inner
        self.count = 0

    def readable(self) -> bool:
        return True

    def readinto(self, b) -> int:  # noqa: ANN001
        data = self._inner.read(len(b))
        n = len(data)
        b[:n] = data
        self.count += n
        return n

    def read(self, size: int = -1) -> bytes:
        data = self._inner.read(size)
        self.count += len(data)
        return data

    def close(self) -> None:
        try:
            self._inner.close()
        finally:
            super().close()


class BytesPayload:
    def __init__(self, data: bytes) -> None:
        self._data = bytes(data)

    @property
    def size(self) -> int:
        return len(self._data)

    def open(self) -> BinaryIO:
        return io.BytesIO(self._data)


class FilePayload:
    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    @property
    def size(self) -> int:
        return self.path.stat().st_size

    def open(self) -> BinaryIO:
        return self.path.open("rb")


class _BoundedReader(io.RawIOBase):
    """Reads at most `limit` bytes from a file, so a snapshot ignores later appends."""

    def __init__(self, fh: BinaryIO, limit: int) -> None:
        self._fh = fh
        self._remaining = limit

    def readable(self) -> bool:
        return True

    def readinto(self, b) -> int:  # noqa: ANN001
        if self._remaining <= 0:
            return 0
        data = self._fh.read(min(len(b), self._remaining))
        n = len(data)
        b[:n] = data
        self._remaining -= n
        return n

    def close(self) -> None:
        try:
            self._fh.close()
        finally:
            super().close()


class PendingPayload:
    """Append-only manifest buffer.

    Held in memory until it grows past `spool_bytes`, then moved to a temp
    file. `open()` returns a reader over the bytes appended so far; bytes are
    never removed or reordered.
    """

    def __init__(self, *, spool_bytes: int = 1024 * 1024, tmp_dir: str | None = None) -> None:
        self.spool_bytes = int(spool_bytes)
        self.tmp_dir = tmp_dir
        self._buf = bytearray()
        self._path: Path | None = None
        self._size = 0

    @property
    def size(self) -> int:
        return self._size

    @property
    def spooled(self) -> bool:
        return self._path is not None

    def append(self, record: bytes) -> None:
        if not record:
            return
        if self._path is None and self.spool_bytes and self._size + len(record) > self.spool_bytes:
            self._spool()
        if self._path is not None:
            with self._path.open("ab") as fh:
                fh.write(record)
        else:
            self._buf.extend(record)
        self._size += len(record)

    def _spool(self) -> None:
        fd, name = tempfile.mkstemp(prefix="liveuploader-payload-", dir=self.tmp_dir)
        with os.fdopen(fd, "wb") as fh:
            fh.write(self._buf)
        self._path = Path(name)
        self._buf = bytearray()

    def open(self) -> BinaryIO:
        if self._path is None:
            return io.BytesIO(bytes(self._buf))
        return io.BufferedReader(_BoundedReader(self._path.open("rb"), self._size))

    def getvalue(self) -> bytes:
        with self.open() as fh:
            return fh.read()

    def close(self) -> None:
        if self._path is not None:
            try:
                self._path.unlink()
            except FileNotFoundError:
                pass
            self._path = None
        self._buf = bytearray()
        self._size = 0

    def __enter__(self) -> "PendingPayload":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:  # noqa: ANN001
        self.close()
