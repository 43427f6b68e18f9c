"""Utility helpers."""

from liveuploader.utils.ffmpeg import resolve_ffmpeg_bin, thumbnail_args
from liveuploader.utils.subprocess import RunResult, run_subprocess

__all__ = ["RunResult", "resolve_ffmpeg_bin", "run_subprocess", "thumbnail_args"]
