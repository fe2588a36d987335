"""
deepshield.monitor.content_discovery – upload type detection.

Decides whether an uploaded artifact is a still image or a video before it is
queued, and recognises image payloads by their magic bytes so the
classifier can label inline data with the right MIME type.
"""
from __future__ import annotations

from pathlib import PurePath
from typing import Literal

UploadKind = Literal["IMAGE", "VIDEO", "UNKNOWN"]

# Known image file extensions
_IMAGE_EXTENSIONS = {
    ".jpg", ".jpeg", ".png", ".gif", ".webp",
    ".bmp", ".tiff", ".tif",
}

# Known video file extensions
_VIDEO_EXTENSIONS = {
    ".mp4", ".mov", ".avi", ".mkv", ".webm",
    ".m4v", ".3gp",
}

_IMAGE_SIGNATURES: tuple[tuple[bytes, str], ...] = (
    (b"\xFF\xD8\xFF", "image/jpeg"),
    (b"\x89PNG\r\n\x1a\n", "image/png"),
    (b"GIF87a", "image/gif"),
    (b"GIF89a", "image/gif"),
    (b"BM", "image/bmp"),
    (b"II*\x00", "image/tiff"),  # little-endian
    (b"MM\x00*", "image/tiff"),  # big-endian
)


def classify_upload(file_name: str, content_type: str | None = None) -> UploadKind:
    """
    Classify an upload by its declared content type, falling back to the
    file extension.

    Returns:
        "IMAGE" | "VIDEO" | "UNKNOWN"
    """
    declared = (content_type or "").split(";")[0].strip().lower()
    if declared.startswith("image/"):
        return "IMAGE"
    if declared.startswith("video/"):
        return "VIDEO"

    ext = PurePath(file_name.lower()).suffix
    if ext in _IMAGE_EXTENSIONS:
        return "IMAGE"
    if ext in _VIDEO_EXTENSIONS:
        return "VIDEO"
    return "UNKNOWN"


def sniff_image_mime(blob: bytes) -> str | None:
    """Return the MIME type implied by *blob*'s magic bytes, or None."""
    for signature, mime in _IMAGE_SIGNATURES:
        if blob.startswith(signature):
            return mime
    if blob[:4] == b"RIFF" and blob[8:12] == b"WEBP":
        return "image/webp"
    return None


def looks_like_image_bytes(blob: bytes) -> bool:
    """Return True if *blob* starts with a known image signature."""
    return sniff_image_mime(blob) is not None
