"""Data models."""

from liveuploader.models.destination import ArtifactClass, Destination
from liveuploader.models.payload import (
    BytesPayload,
    CountingReader,
    FilePayload,
    PayloadSource,
    PendingPayload,
)
from liveuploader.models.result import UploadResult

__all__ = [
    "ArtifactClass",
    "BytesPayload",
    "CountingReader",
    "Destination",
    "FilePayload",
    "PayloadSource",
    "PendingPayload",
    "UploadResult",
]
