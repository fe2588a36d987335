"""deepshield.monitor – live sampling and batch verification drivers."""
from .content_discovery import classify_upload, looks_like_image_bytes, sniff_image_mime
from .frame_source import FrameSource, PushFrameSource
from .extraction import ArtifactExtractor, ExtractedArtifact, MediaFrameExtractor, describe_image
from .batch_queue import BatchQueueProcessor, TaskStatus, VerificationTask
from .live_scheduler import LiveSession, LiveState, SamplingScheduler, SessionActiveError

__all__ = [
    "ArtifactExtractor",
    "BatchQueueProcessor",
    "ExtractedArtifact",
    "FrameSource",
    "LiveSession",
    "LiveState",
    "MediaFrameExtractor",
    "PushFrameSource",
    "SamplingScheduler",
    "SessionActiveError",
    "TaskStatus",
    "VerificationTask",
    "classify_upload",
    "describe_image",
    "looks_like_image_bytes",
    "sniff_image_mime",
]
