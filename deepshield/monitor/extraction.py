"""
deepshield.monitor.extraction – turn a queued upload into classifier input.

Images are passed through after a signature check.  Videos are decoded with
OpenCV and a single representative frame is grabbed at
``min(1 s, duration / 2)`` to skip black intro frames, then re-encoded as
JPEG.  Decoding is blocking, so it runs in a worker thread.

Every extraction also reports :class:`ContentMetadata` for the source
artifact (format, resolution and, for video, duration and frame rate).
"""
from __future__ import annotations

import asyncio
import logging
import mimetypes
import os
import tempfile
from dataclasses import dataclass
from pathlib import PurePath
from typing import TYPE_CHECKING, Protocol

import cv2
import numpy as np

from deepshield.ai.models import ContentMetadata
from deepshield.errors import ResourceUnavailableError

from .content_discovery import sniff_image_mime

if TYPE_CHECKING:
    from .batch_queue import VerificationTask

logger = logging.getLogger(__name__)

FRAME_SEEK_SECONDS = 1.0
JPEG_QUALITY = 90


@dataclass(frozen=True)
class ExtractedArtifact:
    payload: bytes
    metadata: ContentMetadata


class ArtifactExtractor(Protocol):
    async def extract(self, task: VerificationTask) -> ExtractedArtifact: ...


class MediaFrameExtractor:
    """Default extractor for image and video uploads."""

    async def extract(self, task: VerificationTask) -> ExtractedArtifact:
        """
        Return the bytes to classify for *task* and what they came from.

        Raises:
            ResourceUnavailableError  Empty, undecodable or unsupported upload.
        """
        if not task.data:
            raise ResourceUnavailableError(f"{task.file_name} is empty")

        if task.upload_kind == "IMAGE":
            sniffed = sniff_image_mime(task.data)
            if sniffed is None:
                raise ResourceUnavailableError(f"{task.file_name} does not appear to be an image")
            metadata = await asyncio.to_thread(
                describe_image, task.data, _declared(task.content_type, "image/") or sniffed
            )
            return ExtractedArtifact(task.data, metadata)

        if task.upload_kind == "VIDEO":
            suffix = PurePath(task.file_name).suffix or ".mp4"
            return await asyncio.to_thread(
                extract_video_frame, task.data, suffix, _declared(task.content_type, "video/")
            )

        raise ResourceUnavailableError(f"{task.file_name} is not a supported image or video")


def describe_image(data: bytes, image_format: str) -> ContentMetadata:
    """Metadata for a still image; resolution stays None when it cannot be decoded."""
    resolution = None
    if data:
        try:
            image = cv2.imdecode(np.frombuffer(data, dtype=np.uint8), cv2.IMREAD_UNCHANGED)
        except cv2.error as exc:
            logger.debug("Could not decode image for metadata: %s", exc)
            image = None
        if image is not None:
            resolution = _resolution(image)
    return ContentMetadata(type="IMAGE", format=image_format, resolution=resolution)


def extract_video_frame(
    data: bytes, suffix: str = ".mp4", content_type: str | None = None
) -> ExtractedArtifact:
    """Decode *data* and return one JPEG-encoded frame near the start of the clip."""
    fd, path = tempfile.mkstemp(suffix=suffix)
    capture = None
    try:
        with os.fdopen(fd, "wb") as handle:
            handle.write(data)

        capture = cv2.VideoCapture(path)
        if not capture.isOpened():
            raise ResourceUnavailableError("video could not be opened for frame extraction")

        fps = capture.get(cv2.CAP_PROP_FPS) or 0.0
        frame_count = capture.get(cv2.CAP_PROP_FRAME_COUNT) or 0.0
        duration = frame_count / fps if fps > 0 else 0.0
        seek_s = min(FRAME_SEEK_SECONDS, duration / 2) if duration > 0 else 0.0
        capture.set(cv2.CAP_PROP_POS_MSEC, seek_s * 1000.0)

        ok, frame = capture.read()
        if not ok or frame is None:
            # Some containers cannot seek; fall back to the first decodable frame.
            capture.set(cv2.CAP_PROP_POS_FRAMES, 0)
            ok, frame = capture.read()
        if not ok or frame is None:
            raise ResourceUnavailableError("video contains no decodable frame")

        encoded_ok, buffer = cv2.imencode(".jpg", frame, [int(cv2.IMWRITE_JPEG_QUALITY), JPEG_QUALITY])
        if not encoded_ok:
            raise ResourceUnavailableError("frame could not be encoded as JPEG")
        logger.debug("Extracted frame at %.2fs (duration %.2fs)", seek_s, duration)

        metadata = ContentMetadata(
            type="VIDEO",
            format=content_type or mimetypes.guess_type(f"clip{suffix}")[0] or "video/mp4",
            resolution=_resolution(frame),
            duration=round(duration, 3) if duration > 0 else None,
            fps=round(fps, 3) if fps > 0 else None,
        )
        return ExtractedArtifact(buffer.tobytes(), metadata)
    finally:
        if capture is not None:
            capture.release()
        try:
            os.unlink(path)
        except OSError:
            logger.warning("Could not remove temporary video file %s", path)


def _resolution(image: np.ndarray) -> str:
    height, width = image.shape[:2]
    return f"{width}x{height}"


def _declared(content_type: str | None, prefix: str) -> str | None:
    declared = (content_type or "").split(";")[0].strip().lower()
    return declared if declared.startswith(prefix) else None
