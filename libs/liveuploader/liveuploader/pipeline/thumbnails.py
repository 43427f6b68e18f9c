"""Thumbnail extraction and fan-out for uploaded segments."""

from __future__ import annotations

import asyncio
import logging
import tempfile
from collections.abc import Sequence
from pathlib import Path

from liveuploader.config import ThumbnailConfig
from liveuploader.exceptions import ExternalToolError
from liveuploader.models.destination import Destination
from liveuploader.models.payload import BytesPayload
from liveuploader.models.result import UploadResult
from liveuploader.resilience.failover import FailoverMap
from liveuploader.resilience.writer import ResilientWriter
from liveuploader.storage.base import FileProperties
from liveuploader.utils.ffmpeg import resolve_ffmpeg_bin, thumbnail_args
from liveuploader.utils.subprocess import run_subprocess

logger = logging.getLogger(__name__)


def is_disabled(destination: Destination, disable_list: Sequence[str]) -> bool:
    return any(stream_id and stream_id in destination.path for stream_id in disable_list)


def rewrite_destination(destination: Destination, rules: Sequence[tuple[str, str]]) -> Destination:
    for prefix, replacement in rules:
        if prefix and destination.uri.startswith(prefix):
            return destination.with_prefix_replaced(prefix, replacement)
    return destination


class ThumbnailPipeline:
    def __init__(self, writer: ResilientWriter, config: ThumbnailConfig | None = None) -> None:
        self.writer = writer
        self.config = config or ThumbnailConfig()
        self.ffmpeg_bin = resolve_ffmpeg_bin(self.config.ffmpeg_bin)

    async def extract_and_upload(
        self,
        segment_file: str | Path,
        destination: Destination,
        failover_map: FailoverMap | None = None,
        disable_list: Sequence[str] | None = None,
        url_rewrite_rules: Sequence[tuple[str, str]] | None = None,
    ) -> list[UploadResult]:
        """Extract the first frame of `segment_file` and upload it next to `destination`.

        Returns the fan-out results; raises the first error. Callers treat any
        error as advisory.
        """
        disable_list = self.config.disable_list if disable_list is None else disable_list
        rules = self.config.url_rewrite_rules if url_rewrite_rules is None else url_rewrite_rules

        if is_disabled(destination, disable_list):
            logger.info("thumbnails disabled (uri=%s)", destination.redacted())
            return []
        destination = rewrite_destination(destination, rules)

        with tempfile.TemporaryDirectory(prefix="thumb-") as tmp_dir:
            image = await self._extract(Path(segment_file), Path(tmp_dir) / "out.jpg")
            targets = [destination.join(target) for target in self.config.targets]
            outcomes = await asyncio.gather(
                *(self._upload(target, image, failover_map) for target in targets),
                return_exceptions=True,
            )

        errors = [o for o in outcomes if isinstance(o, BaseException)]
        for err in errors:
            logger.warning("thumbnail upload failed (uri=%s): %s", destination.redacted(), err)
        if errors:
            raise errors[0]
        return [o for o in outcomes if isinstance(o, UploadResult)]

    async def _extract(self, segment_file: Path, out_file: Path) -> BytesPayload:
        args = thumbnail_args(self.ffmpeg_bin, str(segment_file), str(out_file), scale=self.config.scale)
        res = await run_subprocess(args, timeout_s=float(self.config.timeout_s))
        if res.returncode != 0:
            raise ExternalToolError(
                "ffmpeg",
                f"failed (code={res.returncode}) {res.output_text()}",
                stdout=res.stdout,
                stderr=res.stderr,
            )
        if not out_file.is_file() or out_file.stat().st_size == 0:
            raise ExternalToolError(
                "ffmpeg", f"no thumbnail produced {res.output_text()}", stdout=res.stdout, stderr=res.stderr
            )
        return BytesPayload(out_file.read_bytes())

    async def _upload(
        self,
        target: Destination,
        image: BytesPayload,
        failover_map: FailoverMap | None,
    ) -> UploadResult:
        result = await self.writer.write(
            target,
            image,
            properties=FileProperties(cache_control=self.config.cache_control, content_type="image/jpeg"),
            timeout=float(self.config.upload_timeout_s),
            profile=self.writer.profiles.persistent,
            failover_map=failover_map,
        )
        logger.info("thumbnail uploaded (uri=%s, bytes=%d)", target.redacted(), result.bytes_written)
        return result
