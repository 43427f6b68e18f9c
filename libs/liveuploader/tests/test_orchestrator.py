from __future__ import annotations

import io
import time
from pathlib import Path

import pytest

from conftest import FakeResolver, SlowReader, write_script
from liveuploader.config import Settings, ThumbnailConfig
from liveuploader.exceptions import InputStreamError, UploadError
from liveuploader.pipeline.orchestrator import UploadOrchestrator, expiry_properties, upload, upload_async


class _BrokenStream:
    def read(self, n: int = -1) -> bytes:
        raise OSError("broken pipe")


@pytest.mark.asyncio
async def test_segment_is_stored_byte_identical(settings: Settings, resolver: FakeResolver) -> None:
    body = bytes(range(256)) * 1000
    orch = UploadOrchestrator(settings, resolver=resolver)

    result = await orch.upload(io.BytesIO(body), "memory://primary/bucket/hls/seg0.ts")

    assert resolver.stored("primary", "bucket/hls/seg0.ts") == body
    assert result.bytes_written == len(body)


@pytest.mark.asyncio
async def test_segment_failure_reports_failed_to_upload_video(settings: Settings, resolver: FakeResolver) -> None:
    flaky = resolver.make_flaky("primary", error="service unavailable")
    orch = UploadOrchestrator(settings, resolver=resolver)

    with pytest.raises(UploadError) as exc_info:
        await orch.upload(io.BytesIO(b"abc"), "memory://primary/bucket/seg0.ts")

    assert "failed to upload video" in str(exc_info.value)
    assert "service unavailable" in str(exc_info.value)
    assert exc_info.value.bytes_written == 3
    assert flaky.calls == 3


@pytest.mark.asyncio
async def test_segment_uses_configured_failover(settings: Settings, resolver: FakeResolver) -> None:
    resolver.make_flaky("primary")
    settings.upload.storage_fallback_urls = [("memory://primary/", "memory://backup/")]
    orch = UploadOrchestrator(settings, resolver=resolver)

    await orch.upload(io.BytesIO(b"seg"), "memory://primary/bucket/seg0.ts")

    assert resolver.stored("backup", "bucket/seg0.ts") == b"seg"


@pytest.mark.asyncio
async def test_manifest_final_object_is_concatenation_of_records(settings: Settings, resolver: FakeResolver) -> None:
    records = [b"#EXTM3U\n", b"#EXTINF:2.0,\nseg0.ts\n", b"#EXTINF:2.0,\nseg1.ts\n"]
    orch = UploadOrchestrator(settings, resolver=resolver)

    result = await orch.upload(
        SlowReader(records, interval=0.01), "memory://primary/bucket/hls/index.m3u8", min_write_interval=60
    )

    assert resolver.stored("primary", "bucket/hls/index.m3u8") == b"".join(records)
    assert result.bytes_written == sum(len(r) for r in records)


@pytest.mark.asyncio
async def test_manifest_is_flushed_incrementally(settings: Settings, tmp_path: Path) -> None:
    target = tmp_path / "out" / "index.m3u8"
    seen: list[bytes] = []

    class _Watching(SlowReader):
        def read1(self, n: int = -1) -> bytes:
            if target.exists():
                seen.append(target.read_bytes())
            return super().read1(n)

    orch = UploadOrchestrator(settings)
    await orch.upload(_Watching([b"a", b"b", b"c"], interval=0.02), str(target), min_write_interval=0)

    # Each periodic write is a prefix of the final content.
    assert seen == [b"a", b"ab", b"abc"]
    assert target.read_bytes() == b"abc"


@pytest.mark.asyncio
async def test_manifest_intermediate_failures_are_not_fatal(settings: Settings, resolver: FakeResolver) -> None:
    flaky = resolver.make_flaky("primary", fail_times=2)
    orch = UploadOrchestrator(settings, resolver=resolver)

    result = await orch.upload(
        SlowReader([b"1", b"2", b"3"], interval=0.01), "memory://primary/b/index.m3u8", min_write_interval=0
    )

    # Three best-effort writes (two failing) plus the final one.
    assert flaky.calls == 4
    assert resolver.stored("primary", "b/index.m3u8") == b"123"
    assert result.bytes_written == 3


@pytest.mark.asyncio
async def test_manifest_final_save_failure(settings: Settings, resolver: FakeResolver) -> None:
    flaky = resolver.make_flaky("primary", error="no space")
    orch = UploadOrchestrator(settings, resolver=resolver)

    with pytest.raises(UploadError) as exc_info:
        await orch.upload(
            SlowReader([b"abcd"], interval=0.01), "memory://primary/b/index.m3u8", min_write_interval=0
        )

    assert "failed to write final save" in str(exc_info.value)
    assert "no space" in str(exc_info.value)
    assert exc_info.value.bytes_written == 4
    # One best-effort write, then the persistent profile's three attempts.
    assert flaky.calls == 4


@pytest.mark.asyncio
async def test_manifest_spools_large_payloads(settings: Settings, resolver: FakeResolver) -> None:
    settings.upload.payload_spool_bytes = 8
    records = [b"0123456789", b"abcdefghij", b"KLMNOPQRST"]
    orch = UploadOrchestrator(settings, resolver=resolver)

    await orch.upload(SlowReader(records, interval=0.0), "memory://primary/b/index.m3u8", min_write_interval=60)

    assert resolver.stored("primary", "b/index.m3u8") == b"".join(records)


@pytest.mark.asyncio
async def test_expiry_rules_set_object_metadata(settings: Settings, resolver: FakeResolver) -> None:
    settings.upload.object_expiry_rules = [("/recordings/", "+168h")]
    orch = UploadOrchestrator(settings, resolver=resolver)

    await orch.upload(io.BytesIO(b"v"), "memory://primary/bucket/recordings/seg.ts")
    await orch.upload(io.BytesIO(b"v"), "memory://primary/bucket/live/seg.ts")

    kept = resolver.memory_driver("primary").get("bucket/recordings/seg.ts")
    live = resolver.memory_driver("primary").get("bucket/live/seg.ts")
    assert kept is not None and kept.properties.metadata == {"Object-Expires": "+168h"}
    assert live is not None and live.properties.metadata == {}


def test_expiry_properties_first_rule_wins() -> None:
    props = expiry_properties("s3://b/recordings/x.ts", [("recordings", "+1h"), ("x.ts", "+2h")])
    assert props is not None
    assert props.metadata == {"Object-Expires": "+1h"}
    assert expiry_properties("s3://b/live/x.m3u8", [("recordings", "+1h")]) is None


@pytest.mark.asyncio
async def test_input_read_failure(settings: Settings, resolver: FakeResolver) -> None:
    orch = UploadOrchestrator(settings, resolver=resolver)
    with pytest.raises(InputStreamError):
        await orch.upload(_BrokenStream(), "memory://primary/b/seg.ts")
    with pytest.raises(InputStreamError):
        await orch.upload(_BrokenStream(), "memory://primary/b/index.m3u8")


@pytest.mark.asyncio
async def test_segment_thumbnails_written_next_to_segment(
    settings: Settings, resolver: FakeResolver, fake_ffmpeg: Path
) -> None:
    settings.thumbnails = ThumbnailConfig(_env_file=None, enabled=True, ffmpeg_bin=str(fake_ffmpeg))
    orch = UploadOrchestrator(settings, resolver=resolver)

    await orch.upload(io.BytesIO(b"video"), "memory://primary/bucket/hls/stream/session/720p/seg0.ts")

    assert resolver.stored("primary", "bucket/hls/stream/session/720p/seg0.ts") == b"video"
    assert resolver.stored("primary", "bucket/hls/stream/session/720p/latest.jpg") == b"JPEGDATA"
    assert resolver.stored("primary", "bucket/hls/stream/latest.jpg") == b"JPEGDATA"
    thumb = resolver.memory_driver("primary").get("bucket/hls/stream/latest.jpg")
    assert thumb is not None and thumb.properties.cache_control == "max-age=5"


@pytest.mark.asyncio
async def test_thumbnail_failure_does_not_fail_segment(
    settings: Settings, resolver: FakeResolver, broken_ffmpeg: Path
) -> None:
    settings.thumbnails = ThumbnailConfig(_env_file=None, enabled=True, ffmpeg_bin=str(broken_ffmpeg))
    orch = UploadOrchestrator(settings, resolver=resolver)

    result = await orch.upload(io.BytesIO(b"not really video"), "memory://primary/bucket/a/b/c/seg0.ts")

    assert result.bytes_written == len(b"not really video")
    assert resolver.stored("primary", "bucket/a/b/c/seg0.ts") == b"not really video"
    assert resolver.stored("primary", "bucket/a/b/c/latest.jpg") is None
    assert resolver.stored("primary", "bucket/a/latest.jpg") is None


@pytest.mark.asyncio
async def test_slow_thumbnail_is_bounded(settings: Settings, resolver: FakeResolver, tmp_path: Path) -> None:
    slow = write_script(tmp_path / "ffmpeg-slow", "sleep 1\n")
    settings.thumbnails = ThumbnailConfig(
        _env_file=None, enabled=True, ffmpeg_bin=str(slow), timeout_s=3, total_timeout_s=0.2
    )
    orch = UploadOrchestrator(settings, resolver=resolver)

    started = time.monotonic()
    result = await orch.upload(io.BytesIO(b"video"), "memory://primary/bucket/a/b/c/seg0.ts")

    assert time.monotonic() - started < 0.9
    assert result.bytes_written == len(b"video")
    assert resolver.stored("primary", "bucket/a/b/c/latest.jpg") is None


def test_sync_upload_entry_point(settings: Settings, tmp_path: Path) -> None:
    target = tmp_path / "seg.ts"
    result = upload(io.BytesIO(b"payload"), str(target), settings=settings)
    assert target.read_bytes() == b"payload"
    assert result.final_uri == str(target)


@pytest.mark.asyncio
async def test_upload_async_accepts_mapping_failover(settings: Settings, resolver: FakeResolver) -> None:
    resolver.make_flaky("primary")
    result = await upload_async(
        io.BytesIO(b"m3u8"),
        "memory://primary/b/index.m3u8",
        failover_map={"memory://primary/": "memory://backup/"},
        settings=settings,
        resolver=resolver,
    )
    assert result.final_uri == "memory://backup/b/index.m3u8"
    assert resolver.stored("backup", "b/index.m3u8") == b"m3u8"
