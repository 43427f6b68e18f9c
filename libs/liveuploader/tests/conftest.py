from __future__ import annotations

import io
import stat
import time
from pathlib import Path
from typing import BinaryIO

import pytest

from liveuploader.config import RetryConfig, Settings, ThumbnailConfig
from liveuploader.exceptions import TransientStorageError
from liveuploader.models.destination import Destination
from liveuploader.storage import DriverResolver, MemoryDriver
from liveuploader.storage.base import (
    FileProperties,
    PageInfo,
    ReadResult,
    SaveResult,
    StorageDriver,
    StorageSession,
)


class FlakyDriver:
    """Fails the first `fail_times` saves (every save when None), then stores in memory."""

    def __init__(self, memory: MemoryDriver, fail_times: int | None = None, error: str = "backend unavailable"):
        self.memory = memory
        self.fail_times = fail_times
        self.error = error
        self.calls = 0


class _FlakySession(StorageSession):
    def __init__(self, flaky: FlakyDriver, base_key: str) -> None:
        super().__init__(base_key)
        self.flaky = flaky
        self._delegate = flaky.memory.with_prefix(base_key).new_session("")

    async def save(
        self,
        name: str,
        data: BinaryIO,
        properties: FileProperties | None = None,
        timeout: float | None = None,
    ) -> SaveResult:
        self.flaky.calls += 1
        body = data.read()
        if self.flaky.fail_times is None or self.flaky.calls <= self.flaky.fail_times:
            raise TransientStorageError(f"memory://{self.flaky.memory.host}/{self.object_key(name)}", self.flaky.error)
        return await self._delegate.save(name, io.BytesIO(body), properties, timeout)

    async def read(self, name: str = "") -> ReadResult:
        return await self._delegate.read(name)

    async def list(self, prefix: str = "", delimiter: str = "/") -> PageInfo:
        return await self._delegate.list(prefix, delimiter)


class _FlakyAt(StorageDriver):
    def __init__(self, flaky: FlakyDriver, key_prefix: str) -> None:
        self.flaky = flaky
        self.key_prefix = key_prefix.lstrip("/")

    def new_session(self, path: str = "") -> StorageSession:
        return _FlakySession(self.flaky, self.key_prefix)


class FakeResolver(DriverResolver):
    """DriverResolver whose memory:// hosts can be made to fail."""

    def __init__(self) -> None:
        super().__init__(testing=True)
        self.flaky: dict[str, FlakyDriver] = {}

    def make_flaky(self, host: str, fail_times: int | None = None, error: str = "backend unavailable") -> FlakyDriver:
        driver = FlakyDriver(self.memory_driver(host), fail_times=fail_times, error=error)
        self.flaky[host] = driver
        return driver

    def resolve(self, uri: str | Destination) -> StorageDriver:
        dest = uri if isinstance(uri, Destination) else Destination.parse(uri)
        if dest.scheme == "memory" and dest.host in self.flaky:
            return _FlakyAt(self.flaky[dest.host], dest.path)
        return super().resolve(dest)

    def stored(self, host: str, key: str) -> bytes | None:
        obj = self.memory_driver(host).get(key)
        return None if obj is None else obj.data


class SlowReader:
    """Returns one record per read, sleeping before each one."""

    def __init__(self, records: list[bytes], interval: float) -> None:
        self.records = list(records)
        self.interval = interval

    def read1(self, n: int = -1) -> bytes:
        if not self.records:
            return b""
        time.sleep(self.interval)
        return self.records.pop(0)

    read = read1


def write_script(path: Path, body: str) -> Path:
    path.write_text("#!/bin/sh\n" + body, encoding="utf-8")
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return path


@pytest.fixture()
def fake_ffmpeg(tmp_path: Path) -> Path:
    # The output path is the last argument.
    return write_script(tmp_path / "ffmpeg-ok", 'for last; do :; done\nprintf "JPEGDATA" > "$last"\n')


@pytest.fixture()
def broken_ffmpeg(tmp_path: Path) -> Path:
    return write_script(tmp_path / "ffmpeg-bad", 'echo "Invalid data found when processing input" >&2\nexit 1\n')


@pytest.fixture()
def retry_config() -> RetryConfig:
    return RetryConfig(
        _env_file=None,
        persistent_initial_s=0,
        persistent_max_s=0,
        persistent_attempts=3,
        short_initial_s=0,
        short_max_s=0,
        short_attempts=2,
        overwrite_initial_timeout_s=1,
        overwrite_max_timeout_s=2,
    )


@pytest.fixture()
def settings(tmp_path, retry_config: RetryConfig) -> Settings:
    return Settings(
        _env_file=None,
        testing=True,
        log_dir=str(tmp_path / "logs"),
        retry=retry_config,
        thumbnails=ThumbnailConfig(_env_file=None, enabled=False),
    )


@pytest.fixture()
def resolver() -> FakeResolver:
    return FakeResolver()
