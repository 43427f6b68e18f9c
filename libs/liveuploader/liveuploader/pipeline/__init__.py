"""Upload pipeline: orchestration, coalescing writes and thumbnails."""

from liveuploader.pipeline.coalescing import CoalescingWriter
from liveuploader.pipeline.orchestrator import UploadOrchestrator, upload, upload_async
from liveuploader.pipeline.thumbnails import ThumbnailPipeline

__all__ = ["CoalescingWriter", "ThumbnailPipeline", "UploadOrchestrator", "upload", "upload_async"]
