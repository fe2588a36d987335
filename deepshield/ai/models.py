"""
deepshield.ai.models – request and verdict value types.

AnalysisVerdict is the only shape that crosses the invoker boundary: every
field has already been validated, defaulted and clamped by the verdict
parser, so drivers and the classification policy can trust it blindly.
"""
from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Literal, Protocol

from pydantic import BaseModel, ConfigDict, Field


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------

class Classification(str, Enum):
    AUTHENTIC = "AUTHENTIC"
    SUSPICIOUS = "SUSPICIOUS"
    FAKE = "FAKE"


class MediaKind(str, Enum):
    IMAGE = "image"
    VIDEO_FRAME = "video-frame"


AnomalyCategory = Literal["NEURAL", "BIOMETRIC", "ENVIRONMENTAL", "AUDIO", "METADATA", "TEMPORAL"]
BlinkPattern = Literal["Normal", "Abnormal"]
LipSync = Literal["Match", "Mismatch", "N/A"]
PixelArtifacts = Literal["Detected", "Not Detected"]
ContentType = Literal["IMAGE", "VIDEO"]


# ---------------------------------------------------------------------------
# Content metadata
# ---------------------------------------------------------------------------

class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True)


class ContentMetadata(_Frozen):
    """Describes the artifact that was classified, not the classifier output."""
    type: ContentType
    format: str
    resolution: str | None = None  # "WIDTHxHEIGHT"
    duration: float | None = None  # seconds, video only
    fps: float | None = None


# ---------------------------------------------------------------------------
# Request
# ---------------------------------------------------------------------------

ProgressSink = Callable[[str], None]


class ForensicClassifier(Protocol):
    """Opaque forensic inference: image bytes in, raw JSON verdict text out."""

    async def classify(self, image_bytes: bytes, media_kind: MediaKind, *, model: str) -> str: ...


@dataclass(frozen=True)
class AnalysisRequest:
    """
    One invocation's input, built fresh by the live scheduler or the batch
    processor.

    ``is_live`` selects the light model tier and silences progress messages.
    """
    payload: bytes
    media_kind: MediaKind
    file_name: str = "artifact.jpg"
    is_live: bool = False
    on_progress: ProgressSink | None = None
    metadata: ContentMetadata | None = None


# ---------------------------------------------------------------------------
# Verdict
# ---------------------------------------------------------------------------

class Anomaly(_Frozen):
    label: str
    category: AnomalyCategory
    description: str
    confidence: float = Field(ge=0.0, le=1.0)


class ForensicMetrics(_Frozen):
    expression_stability: int = Field(ge=0, le=100)
    blink_pattern: BlinkPattern
    lip_sync: LipSync
    pixel_artifacts: PixelArtifacts
    audio_integrity: int = Field(ge=0, le=100)


class ForensicScores(_Frozen):
    pixel_integrity: int = Field(ge=0, le=100)
    temporal_consistency: int = Field(ge=0, le=100)
    lighting_cohesion: int = Field(ge=0, le=100)
    biometric_sync: int = Field(ge=0, le=100)


class AnalysisVerdict(_Frozen):
    """Structured result of one successful forensic classification call."""
    classification: Classification
    authenticity_score: int = Field(ge=0, le=100)
    summary: str
    anomalies: tuple[Anomaly, ...] = ()
    metrics: ForensicMetrics
    scores: ForensicScores

    # Provenance
    fingerprint: str
    model: str
    attempts: int = Field(ge=1)
    file_name: str
    media_kind: MediaKind
    metadata: ContentMetadata | None = None
    analyzed_at: int  # ms epoch
