"""
deepshield.ai.verdict_parser – strict validation of raw classifier output.

Parsing happens in two stages:

1. **Parse** – the text must be JSON, the top level must be an object and
   every present field must have a usable type.  Any violation yields a
   :class:`ParseFailure`; the invoker turns that into ``MalformedError``.
2. **Normalize** – only after a successful parse, absent or out-of-vocabulary
   fields are filled with neutral defaults and every score is clamped.

Defaults:
    numeric fields     50
    classification     SUSPICIOUS
    blinkPattern       Normal
    lipSync            N/A
    pixelArtifacts     Not Detected
"""
from __future__ import annotations

import json
import logging
import math
from dataclasses import dataclass
from typing import Any, Union

from pydantic import BaseModel, ConfigDict, ValidationError

from .models import Anomaly, Classification, ForensicMetrics, ForensicScores

logger = logging.getLogger(__name__)

NEUTRAL_SCORE = 50
DEFAULT_SUMMARY = "Forensic analysis generated no definitive summary."


# ---------------------------------------------------------------------------
# Raw wire shapes (camelCase, everything optional)
# ---------------------------------------------------------------------------

class _Raw(BaseModel):
    model_config = ConfigDict(extra="ignore")


class _RawMetrics(_Raw):
    expressionStability: float | None = None
    blinkPattern: str | None = None
    lipSync: str | None = None
    pixelArtifacts: str | None = None
    audioIntegrity: float | None = None


class _RawScores(_Raw):
    pixelIntegrity: float | None = None
    temporalConsistency: float | None = None
    lightingCohesion: float | None = None
    biometricSync: float | None = None


class _RawVerdict(_Raw):
    classification: str | None = None
    authenticityScore: float | None = None
    summary: str | None = None
    anomalies: list[dict[str, Any]] | None = None
    metrics: _RawMetrics | None = None
    scores: _RawScores | None = None


# ---------------------------------------------------------------------------
# Tagged result
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ParsedVerdict:
    classification: Classification
    authenticity_score: int
    summary: str
    anomalies: tuple[Anomaly, ...]
    metrics: ForensicMetrics
    scores: ForensicScores


@dataclass(frozen=True)
class ParseFailure:
    reason: str


ParseResult = Union[ParsedVerdict, ParseFailure]


def parse_verdict(raw_text: str | None) -> ParseResult:
    """Validate *raw_text* and return a normalized verdict or the reason it failed."""
    if not raw_text or not raw_text.strip():
        return ParseFailure("empty response from forensic service")

    try:
        payload = json.loads(_strip_code_fence(raw_text))
    except ValueError as exc:
        return ParseFailure(f"response is not valid JSON: {exc}")

    if not isinstance(payload, dict):
        return ParseFailure(f"response must be a JSON object, got {type(payload).__name__}")

    try:
        raw = _RawVerdict.model_validate(payload)
    except ValidationError as exc:
        first = exc.errors()[0]
        location = ".".join(str(part) for part in first["loc"])
        return ParseFailure(f"invalid field '{location}': {first['msg']}")

    return _normalize(raw)


# ---------------------------------------------------------------------------
# Normalization
# ---------------------------------------------------------------------------

def clamp_score(value: float | None) -> int:
    """Round to an integer in [0, 100]; missing or non-finite values become 50."""
    if value is None or not math.isfinite(value):
        return NEUTRAL_SCORE
    return int(max(0, min(100, round(value))))


def _normalize(raw: _RawVerdict) -> ParsedVerdict:
    metrics = raw.metrics or _RawMetrics()
    scores = raw.scores or _RawScores()

    return ParsedVerdict(
        classification=_classification(raw.classification),
        authenticity_score=clamp_score(raw.authenticityScore),
        summary=(raw.summary or "").strip() or DEFAULT_SUMMARY,
        anomalies=_anomalies(raw.anomalies or []),
        metrics=ForensicMetrics(
            expression_stability=clamp_score(metrics.expressionStability),
            blink_pattern="Abnormal" if metrics.blinkPattern == "Abnormal" else "Normal",
            lip_sync=metrics.lipSync if metrics.lipSync in ("Match", "Mismatch", "N/A") else "N/A",
            pixel_artifacts="Detected" if metrics.pixelArtifacts == "Detected" else "Not Detected",
            audio_integrity=clamp_score(metrics.audioIntegrity),
        ),
        scores=ForensicScores(
            pixel_integrity=clamp_score(scores.pixelIntegrity),
            temporal_consistency=clamp_score(scores.temporalConsistency),
            lighting_cohesion=clamp_score(scores.lightingCohesion),
            biometric_sync=clamp_score(scores.biometricSync),
        ),
    )


def _classification(value: str | None) -> Classification:
    try:
        return Classification((value or "").strip().upper())
    except ValueError:
        return Classification.SUSPICIOUS


def _anomalies(items: list[dict[str, Any]]) -> tuple[Anomaly, ...]:
    kept: list[Anomaly] = []
    for index, item in enumerate(items):
        candidate = dict(item)
        if isinstance(candidate.get("category"), str):
            candidate["category"] = candidate["category"].strip().upper()
        confidence = candidate.get("confidence")
        if isinstance(confidence, (int, float)) and math.isfinite(confidence):
            candidate["confidence"] = max(0.0, min(1.0, float(confidence)))
        try:
            kept.append(Anomaly.model_validate(candidate))
        except ValidationError as exc:
            logger.warning("Dropping anomaly #%d: %s", index, exc.errors()[0]["msg"])
    return tuple(kept)


def _strip_code_fence(text: str) -> str:
    stripped = text.strip()
    if stripped.startswith("```"):
        stripped = stripped.split("\n", 1)[1] if "\n" in stripped else ""
        if stripped.rstrip().endswith("```"):
            stripped = stripped.rstrip()[:-3]
    return stripped
