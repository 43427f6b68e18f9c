from __future__ import annotations

from pathlib import Path

import pytest

from conftest import FakeResolver, write_script
from liveuploader.config import RetryConfig, ThumbnailConfig
from liveuploader.exceptions import ExternalToolError, UploadError
from liveuploader.models.destination import Destination
from liveuploader.pipeline.thumbnails import ThumbnailPipeline, is_disabled, rewrite_destination
from liveuploader.resilience.retry import RetryProfiles
from liveuploader.resilience.writer import ResilientWriter
from liveuploader.utils.ffmpeg import resolve_ffmpeg_bin, thumbnail_args

SEGMENT_URI = "memory://primary/bucket/hls/stream42/session/720p/seg0.ts"


def _pipeline(resolver: FakeResolver, retry_config: RetryConfig, ffmpeg: Path, **overrides) -> ThumbnailPipeline:  # noqa: ANN003
    config = ThumbnailConfig(_env_file=None, ffmpeg_bin=str(ffmpeg), **overrides)
    return ThumbnailPipeline(ResilientWriter(resolver, RetryProfiles.from_config(retry_config)), config)


@pytest.fixture()
def segment_file(tmp_path: Path) -> Path:
    path = tmp_path / "seg0.ts"
    path.write_bytes(b"\x47" * 188)
    return path


def test_thumbnail_args_extract_first_frame() -> None:
    args = thumbnail_args("ffmpeg", "in.ts", "out.jpg", scale="scale=640:360:force_original_aspect_ratio=decrease")
    assert args == [
        "ffmpeg",
        "-i",
        "in.ts",
        "-ss",
        "00:00:00",
        "-vframes",
        "1",
        "-vf",
        "scale=640:360:force_original_aspect_ratio=decrease",
        "-y",
        "out.jpg",
    ]


def test_resolve_ffmpeg_bin_prefers_existing_path(fake_ffmpeg: Path) -> None:
    assert resolve_ffmpeg_bin(str(fake_ffmpeg)) == str(fake_ffmpeg)


def test_disable_list_and_rewrite_rules() -> None:
    dest = Destination.parse(SEGMENT_URI)
    assert is_disabled(dest, ["stream42"])
    assert not is_disabled(dest, ["stream7", ""])
    rewritten = rewrite_destination(dest, [("memory://other/", "x"), ("memory://primary/", "memory://thumbs/")])
    assert rewritten.uri == "memory://thumbs/bucket/hls/stream42/session/720p/seg0.ts"
    assert rewrite_destination(dest, []) is dest


@pytest.mark.asyncio
async def test_extract_and_upload_fans_out(
    resolver: FakeResolver, retry_config: RetryConfig, fake_ffmpeg: Path, segment_file: Path
) -> None:
    pipeline = _pipeline(resolver, retry_config, fake_ffmpeg)

    results = await pipeline.extract_and_upload(segment_file, Destination.parse(SEGMENT_URI))

    assert sorted(r.final_uri for r in results) == [
        "memory://primary/bucket/hls/stream42/latest.jpg",
        "memory://primary/bucket/hls/stream42/session/720p/latest.jpg",
    ]
    stored = resolver.memory_driver("primary").get("bucket/hls/stream42/latest.jpg")
    assert stored is not None
    assert stored.data == b"JPEGDATA"
    assert stored.properties.cache_control == "max-age=5"
    assert stored.properties.content_type == "image/jpeg"


@pytest.mark.asyncio
async def test_rewrite_rules_redirect_thumbnails(
    resolver: FakeResolver, retry_config: RetryConfig, fake_ffmpeg: Path, segment_file: Path
) -> None:
    pipeline = _pipeline(resolver, retry_config, fake_ffmpeg)

    await pipeline.extract_and_upload(
        segment_file,
        Destination.parse(SEGMENT_URI),
        url_rewrite_rules=[("memory://primary/", "memory://thumbs/")],
    )

    assert resolver.stored("thumbs", "bucket/hls/stream42/session/720p/latest.jpg") == b"JPEGDATA"
    assert resolver.stored("primary", "bucket/hls/stream42/session/720p/latest.jpg") is None


@pytest.mark.asyncio
async def test_disabled_stream_skips_extraction(
    resolver: FakeResolver, retry_config: RetryConfig, broken_ffmpeg: Path, segment_file: Path
) -> None:
    pipeline = _pipeline(resolver, retry_config, broken_ffmpeg, disable_list="stream42")
    assert await pipeline.extract_and_upload(segment_file, Destination.parse(SEGMENT_URI)) == []


@pytest.mark.asyncio
async def test_ffmpeg_failure_raises(
    resolver: FakeResolver, retry_config: RetryConfig, broken_ffmpeg: Path, segment_file: Path
) -> None:
    pipeline = _pipeline(resolver, retry_config, broken_ffmpeg)
    with pytest.raises(ExternalToolError, match="Invalid data found"):
        await pipeline.extract_and_upload(segment_file, Destination.parse(SEGMENT_URI))


@pytest.mark.asyncio
async def test_ffmpeg_without_output_raises(
    tmp_path: Path, resolver: FakeResolver, retry_config: RetryConfig, segment_file: Path
) -> None:
    silent = write_script(tmp_path / "ffmpeg-silent", "exit 0\n")
    pipeline = _pipeline(resolver, retry_config, silent)
    with pytest.raises(ExternalToolError, match="no thumbnail produced"):
        await pipeline.extract_and_upload(segment_file, Destination.parse(SEGMENT_URI))


@pytest.mark.asyncio
async def test_ffmpeg_timeout_raises(
    tmp_path: Path, resolver: FakeResolver, retry_config: RetryConfig, segment_file: Path
) -> None:
    slow = write_script(tmp_path / "ffmpeg-slow", "exec sleep 5\n")
    pipeline = _pipeline(resolver, retry_config, slow, timeout_s=0.2)
    with pytest.raises(ExternalToolError, match="timed out"):
        await pipeline.extract_and_upload(segment_file, Destination.parse(SEGMENT_URI))


@pytest.mark.asyncio
async def test_thumbnail_upload_failure_raises(
    resolver: FakeResolver, retry_config: RetryConfig, fake_ffmpeg: Path, segment_file: Path
) -> None:
    resolver.make_flaky("primary")
    pipeline = _pipeline(resolver, retry_config, fake_ffmpeg)
    with pytest.raises(UploadError):
        await pipeline.extract_and_upload(segment_file, Destination.parse(SEGMENT_URI))
