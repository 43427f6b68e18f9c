"""Upload orchestration: segment one-shot writes and incremental manifest writes."""

from __future__ import annotations

import asyncio
import logging
import shutil
import tempfile
import time
from collections.abc import Iterable, Mapping
from pathlib import Path
from typing import BinaryIO

from liveuploader.config import Settings
from liveuploader.exceptions import InputStreamError, UploadError
from liveuploader.models.destination import ArtifactClass, Destination
from liveuploader.models.payload import FilePayload, PendingPayload
from liveuploader.models.result import UploadResult
from liveuploader.pipeline.thumbnails import ThumbnailPipeline
from liveuploader.resilience.failover import FailoverMap, as_failover_map
from liveuploader.resilience.retry import RetryProfiles
from liveuploader.resilience.writer import ResilientWriter
from liveuploader.storage import DriverResolver
from liveuploader.storage.base import FileProperties

logger = logging.getLogger(__name__)

READ_CHUNK_BYTES = 64 * 1024


def expiry_properties(uri: str, rules: Iterable[tuple[str, str]]) -> FileProperties | None:
    """Object-Expires metadata for destinations matching an expiry rule."""
    for needle, expires in rules:
        if needle and needle in uri:
            return FileProperties(metadata={"Object-Expires": expires})
    return None


class UploadOrchestrator:
    """Uploads one artifact from an input stream.

    Segments (`.ts`/`.mp4`) are buffered to a temp file and written once with
    retries and failover, then thumbnailed. Anything else is a manifest:
    every read is one record appended to a growing payload that is flushed
    best-effort at most once per `min_write_interval`, and once more,
    persistently, at end of input.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        resolver: DriverResolver | None = None,
        thumbnails: ThumbnailPipeline | None = None,
    ) -> None:
        self.settings = settings or Settings()
        self.resolver = resolver or DriverResolver(testing=self.settings.testing)
        self.profiles = RetryProfiles.from_config(self.settings.retry)
        self.writer = ResilientWriter(self.resolver, self.profiles)
        if thumbnails is None and self.settings.thumbnails.enabled:
            thumbnails = ThumbnailPipeline(self.writer, self.settings.thumbnails)
        self.thumbnails = thumbnails

    async def upload(
        self,
        input_stream: BinaryIO,
        destination: str | Destination,
        *,
        min_write_interval: float | None = None,
        write_timeout: float | None = None,
        failover_map: Mapping[str, str] | FailoverMap | None = None,
        segment_timeout: float | None = None,
    ) -> UploadResult:
        """Upload one artifact and return where it was written.

        For segments the thumbnail step runs before this returns, so it adds
        at most `THUMBS_TOTAL_TIMEOUT_S` to the call; its failures are logged
        and never change the result.
        """
        dest = destination if isinstance(destination, Destination) else Destination.parse(destination)
        cfg = self.settings.upload
        fallback = as_failover_map(failover_map if failover_map is not None else cfg.storage_fallback_urls)
        properties = expiry_properties(dest.uri, cfg.object_expiry_rules)

        if dest.artifact_class is ArtifactClass.SEGMENT:
            return await self._upload_segment(
                input_stream,
                dest,
                properties=properties,
                timeout=float(segment_timeout if segment_timeout is not None else cfg.segment_timeout_s),
                failover_map=fallback,
            )
        return await self._upload_manifest(
            input_stream,
            dest,
            properties=properties,
            interval=float(min_write_interval if min_write_interval is not None else cfg.wait_between_writes_s),
            timeout=float(write_timeout if write_timeout is not None else cfg.write_timeout_s),
            failover_map=fallback,
        )

    async def _upload_segment(
        self,
        input_stream: BinaryIO,
        dest: Destination,
        *,
        properties: FileProperties | None,
        timeout: float,
        failover_map: FailoverMap,
    ) -> UploadResult:
        tmp_dir = tempfile.mkdtemp(prefix="liveuploader-")
        try:
            segment_file = Path(tmp_dir) / (dest.filename or "segment")
            size = await _spool_to_file(input_stream, segment_file)
            logger.debug("segment buffered (uri=%s, bytes=%d)", dest.redacted(), size)

            try:
                result = await self.writer.write(
                    dest,
                    FilePayload(segment_file),
                    properties=properties,
                    timeout=timeout,
                    profile=self.profiles.persistent,
                    failover_map=failover_map,
                )
            except UploadError as exc:
                raise UploadError(
                    dest.redacted(), "failed to upload video", bytes_written=exc.bytes_written
                ) from exc.__cause__

            if self.thumbnails is not None:
                # Runs after the segment result is final; the temp dir must outlive it.
                await self._thumbnail(segment_file, dest, failover_map)
            return result
        finally:
            shutil.rmtree(tmp_dir, ignore_errors=True)

    async def _thumbnail(self, segment_file: Path, dest: Destination, failover_map: FailoverMap) -> None:
        assert self.thumbnails is not None
        limit = float(self.thumbnails.config.total_timeout_s)
        try:
            await asyncio.wait_for(
                self.thumbnails.extract_and_upload(segment_file, dest, failover_map), timeout=limit
            )
        except asyncio.TimeoutError:
            logger.error("extracting thumbnail timed out (uri=%s, timeout_s=%.1f)", dest.redacted(), limit)
        except Exception as exc:
            logger.error("extracting thumbnail failed (uri=%s): %s", dest.redacted(), exc)

    async def _upload_manifest(
        self,
        input_stream: BinaryIO,
        dest: Destination,
        *,
        properties: FileProperties | None,
        interval: float,
        timeout: float,
        failover_map: FailoverMap,
    ) -> UploadResult:
        cfg = self.settings.upload
        with PendingPayload(spool_bytes=int(cfg.payload_spool_bytes)) as payload:
            last_write = time.monotonic()
            while True:
                record = await _read_record(input_stream)
                if not record:
                    break
                payload.append(record)
                logger.debug("received new bytes (uri=%s, bytes=%d)", dest.redacted(), len(record))

                # Only write the latest snapshot once enough time has passed since the last write.
                if time.monotonic() - last_write > interval:
                    try:
                        await self.writer.write(
                            dest,
                            payload,
                            properties=properties,
                            timeout=timeout,
                            profile=self.profiles.best_effort,
                            failover_map=failover_map,
                        )
                        logger.info("wrote manifest (uri=%s, bytes=%d)", dest.redacted(), payload.size)
                    except UploadError as exc:
                        # The next periodic write carries a superset of this payload.
                        logger.warning("failed to write manifest (uri=%s): %s", dest.redacted(), exc)
                    last_write = time.monotonic()

            # Final write, there may be data that arrived since the last periodic write.
            try:
                return await self.writer.write(
                    dest,
                    payload,
                    properties=properties,
                    timeout=timeout,
                    profile=self.profiles.persistent,
                    failover_map=failover_map,
                )
            except UploadError as exc:
                raise UploadError(
                    dest.redacted(), "failed to write final save", bytes_written=exc.bytes_written
                ) from exc.__cause__


async def _read_record(stream: BinaryIO) -> bytes:
    """One read from the producer; `read1` returns whatever a single write produced."""
    read = getattr(stream, "read1", None) or stream.read
    try:
        return bytes(await asyncio.to_thread(read, READ_CHUNK_BYTES) or b"")
    except (OSError, ValueError) as exc:
        raise InputStreamError(f"failed to read input: {exc}") from exc


async def _spool_to_file(stream: BinaryIO, path: Path) -> int:
    def _copy() -> int:
        with path.open("wb") as fh:
            shutil.copyfileobj(stream, fh, READ_CHUNK_BYTES)
            fh.flush()
            return fh.tell()

    try:
        return await asyncio.to_thread(_copy)
    except (OSError, ValueError) as exc:
        raise InputStreamError(f"failed to read input: {exc}") from exc


async def upload_async(
    input_stream: BinaryIO,
    destination: str | Destination,
    *,
    min_write_interval: float | None = None,
    write_timeout: float | None = None,
    failover_map: Mapping[str, str] | FailoverMap | None = None,
    segment_timeout: float | None = None,
    settings: Settings | None = None,
    resolver: DriverResolver | None = None,
) -> UploadResult:
    orchestrator = UploadOrchestrator(settings, resolver=resolver)
    return await orchestrator.upload(
        input_stream,
        destination,
        min_write_interval=min_write_interval,
        write_timeout=write_timeout,
        failover_map=failover_map,
        segment_timeout=segment_timeout,
    )


def upload(
    input_stream: BinaryIO,
    destination: str | Destination,
    *,
    min_write_interval: float | None = None,
    write_timeout: float | None = None,
    failover_map: Mapping[str, str] | FailoverMap | None = None,
    segment_timeout: float | None = None,
    settings: Settings | None = None,
    resolver: DriverResolver | None = None,
) -> UploadResult:
    """Synchronous entry point: upload `input_stream` to `destination`."""
    return asyncio.run(
        upload_async(
            input_stream,
            destination,
            min_write_interval=min_write_interval,
            write_timeout=write_timeout,
            failover_map=failover_map,
            segment_timeout=segment_timeout,
            settings=settings,
            resolver=resolver,
        )
    )


__all__ = ["UploadOrchestrator", "expiry_properties", "upload", "upload_async"]
