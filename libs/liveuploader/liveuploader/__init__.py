"""liveuploader: reliable uploads of live video segments and manifests to object storage."""

__version__ = "0.1.0"

from liveuploader.models import ArtifactClass, Destination, UploadResult
from liveuploader.pipeline import CoalescingWriter, ThumbnailPipeline, UploadOrchestrator, upload
from liveuploader.storage import DriverResolver

__all__ = [
    "ArtifactClass",
    "CoalescingWriter",
    "Destination",
    "DriverResolver",
    "ThumbnailPipeline",
    "UploadOrchestrator",
    "UploadResult",
    "__version__",
    "upload",
]
