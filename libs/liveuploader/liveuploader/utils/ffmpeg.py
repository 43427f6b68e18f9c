"""Locating ffmpeg and building thumbnail command lines.

A configured path wins, then `$PATH`, then the binary bundled with the
optional `imageio-ffmpeg` package.
"""

from __future__ import annotations

import logging
import shutil
from pathlib import Path

logger = logging.getLogger(__name__)

SEEK_START = "00:00:00"


def resolve_ffmpeg_bin(ffmpeg_bin: str = "ffmpeg") -> str:
    candidate = (ffmpeg_bin or "ffmpeg").strip()
    if Path(candidate).is_file():
        return candidate

    on_path = shutil.which(candidate)
    if on_path:
        return on_path

    try:
        import imageio_ffmpeg

        return str(imageio_ffmpeg.get_ffmpeg_exe())
    except (ImportError, RuntimeError) as exc:
        logger.warning("ffmpeg not found (bin=%s, error=%s); thumbnails will fail", candidate, exc)
        return candidate


def thumbnail_args(ffmpeg_bin: str, input_path: str, output_path: str, *, scale: str) -> list[str]:
    """Arguments extracting the first frame of `input_path` as a scaled JPEG."""
    return [
        ffmpeg_bin,
        "-i",
        input_path,
        "-ss",
        SEEK_START,
        "-vframes",
        "1",
        "-vf",
        scale,
        "-y",
        output_path,
    ]
