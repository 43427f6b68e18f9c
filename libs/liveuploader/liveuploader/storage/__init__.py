"""Storage drivers, resolved from a destination URI by scheme."""

from __future__ import annotations

import json
import logging
import threading

from liveuploader.error_codes import ErrorCode
from liveuploader.exceptions import ConfigurationError
from liveuploader.models.destination import Destination
from liveuploader.storage.base import (
    FileInfo,
    FileProperties,
    PageInfo,
    ReadResult,
    SaveResult,
    StorageDriver,
    StorageSession,
)
from liveuploader.storage.fs_store import FilesystemDriver
from liveuploader.storage.memory_store import MemoryDriver
from liveuploader.storage.s3_store import GCS_ENDPOINT, S3Driver

logger = logging.getLogger(__name__)

AVAILABLE_DRIVERS: tuple[type[StorageDriver], ...] = (S3Driver, FilesystemDriver, MemoryDriver)


def describe_drivers() -> bytes:
    """JSON description of supported URI schemes."""
    descrs = [{"scheme": list(d.uri_schemes), "desc": d.description} for d in AVAILABLE_DRIVERS]
    return json.dumps({"storage_drivers": descrs}).encode("utf-8")


def _split_bucket_key(path: str) -> tuple[str, str]:
    parts = [p for p in path.split("/") if p]
    if not parts:
        raise ConfigurationError("S3 bucket not found in URL path", error_code=ErrorCode.INVALID_URI)
    return parts[0], "/".join(parts[1:])


def _require_password(dest: Destination) -> str:
    if not dest.password:
        raise ConfigurationError(
            f"password is required with {dest.scheme}:// OS ({dest.redacted()})",
            error_code=ErrorCode.INVALID_URI,
        )
    return dest.password


class DriverResolver:
    """Maps destination URIs to storage drivers.

    The memory:// scheme is only honoured when `testing` is set; memory
    drivers are cached per host on this resolver instance so that a write and
    a later read of the same host see the same objects.
    """

    def __init__(self, *, testing: bool = False) -> None:
        self.testing = testing
        self._memory: dict[str, MemoryDriver] = {}
        self._lock = threading.Lock()

    def memory_driver(self, host: str) -> MemoryDriver:
        with self._lock:
            driver = self._memory.get(host)
            if driver is None:
                driver = MemoryDriver(host)
                self._memory[host] = driver
            return driver

    def resolve(self, uri: str | Destination) -> StorageDriver:
        dest = uri if isinstance(uri, Destination) else Destination.parse(uri)
        match dest.scheme:
            case "s3":
                bucket, key = _split_bucket_key(dest.path)
                return S3Driver(
                    bucket=bucket,
                    key_prefix=key,
                    access_key=dest.username or "",
                    secret_key=_require_password(dest),
                    region=dest.host or None,
                    scheme="s3",
                )
            case "s3+http" | "s3+https":
                bucket, key = _split_bucket_key(dest.path)
                http_scheme = dest.scheme.split("+", 1)[1]
                return S3Driver(
                    bucket=bucket,
                    key_prefix=key,
                    access_key=dest.username or "",
                    secret_key=_require_password(dest),
                    endpoint=f"{http_scheme}://{dest.host}",
                    region="us-east-1",
                    scheme=dest.scheme,
                )
            case "gs":
                if not dest.host:
                    raise ConfigurationError("GCS bucket not found in URL host", error_code=ErrorCode.INVALID_URI)
                return S3Driver(
                    bucket=dest.host,
                    key_prefix=dest.path,
                    access_key=dest.username or "",
                    secret_key=_require_password(dest),
                    endpoint=GCS_ENDPOINT,
                    region="auto",
                    scheme="gs",
                )
            case "memory" if self.testing:
                return self.memory_driver(dest.host).with_prefix(dest.path)
            case "" | "file":
                return FilesystemDriver(dest.path)
            case _:
                raise ConfigurationError(
                    f"unrecognized OS scheme: {dest.scheme}", error_code=ErrorCode.INVALID_URI
                )

    def session_for(self, uri: str | Destination) -> StorageSession:
        return self.resolve(uri).new_session("")


__all__ = [
    "AVAILABLE_DRIVERS",
    "DriverResolver",
    "FileInfo",
    "FileProperties",
    "FilesystemDriver",
    "MemoryDriver",
    "PageInfo",
    "ReadResult",
    "S3Driver",
    "SaveResult",
    "StorageDriver",
    "StorageSession",
    "describe_drivers",
]
