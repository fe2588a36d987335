"""
deepshield.ai.gemini_client – Gemini Vision forensic classifier.

Posts one inline JPEG/PNG to the ``generateContent`` REST endpoint with a JSON
response schema and returns the model's raw JSON text.  Validation of that
text is the verdict parser's job; this module only maps transport and HTTP
outcomes onto the error taxonomy:

    429                      QuotaExceededError (Retry-After honoured)
    500/502/503/504, timeout TransientError
    other non-200, no text   MalformedError
"""
from __future__ import annotations

import base64
import logging
import math
from typing import Any

import httpx

from deepshield.config import Settings
from deepshield.errors import MalformedError, QuotaExceededError, TransientError
from deepshield.monitor.content_discovery import sniff_image_mime

from .models import MediaKind

logger = logging.getLogger(__name__)

TRANSIENT_STATUS_CODES = {500, 502, 503, 504}

SYSTEM_INSTRUCTION = """Act as an elite AI deepfake forensic specialist. Analyze the provided \
image or video frame for signs of neural manipulation, synthetic generation, or deepfake artifacts.
Focus on:
1. Neural upsampling: checkerboard patterns or unnatural pixel smoothing.
2. Biometric integrity: ocular reflections, dental alignment, micro-expression latency.
3. Edge blending: halos or blurring around hair/skin transitions.
4. Environmental logic: light sources vs reflections and shadow geometry.
5. Audio/visual sync: for video frames, check lip-sync markers.

Your response MUST follow the provided schema exactly.
- classification must be AUTHENTIC, SUSPICIOUS or FAKE.
- authenticityScore is 0 to 100 where 100 means fully authentic.
- blinkPattern must be 'Normal' or 'Abnormal'.
- lipSync must be 'Match', 'Mismatch' or 'N/A'.
- pixelArtifacts must be 'Detected' or 'Not Detected'.
- anomaly category must be one of NEURAL, BIOMETRIC, ENVIRONMENTAL, AUDIO, METADATA, TEMPORAL."""

RESPONSE_SCHEMA: dict[str, Any] = {
    "type": "OBJECT",
    "properties": {
        "classification": {"type": "STRING", "enum": ["AUTHENTIC", "SUSPICIOUS", "FAKE"]},
        "authenticityScore": {"type": "NUMBER"},
        "summary": {"type": "STRING"},
        "anomalies": {
            "type": "ARRAY",
            "items": {
                "type": "OBJECT",
                "properties": {
                    "label": {"type": "STRING"},
                    "category": {"type": "STRING"},
                    "description": {"type": "STRING"},
                    "confidence": {"type": "NUMBER"},
                },
                "required": ["label", "category", "description", "confidence"],
            },
        },
        "metrics": {
            "type": "OBJECT",
            "properties": {
                "expressionStability": {"type": "NUMBER"},
                "blinkPattern": {"type": "STRING"},
                "lipSync": {"type": "STRING"},
                "pixelArtifacts": {"type": "STRING"},
                "audioIntegrity": {"type": "NUMBER"},
            },
            "required": [
                "expressionStability", "blinkPattern", "lipSync",
                "pixelArtifacts", "audioIntegrity",
            ],
        },
        "scores": {
            "type": "OBJECT",
            "properties": {
                "pixelIntegrity": {"type": "NUMBER"},
                "temporalConsistency": {"type": "NUMBER"},
                "lightingCohesion": {"type": "NUMBER"},
                "biometricSync": {"type": "NUMBER"},
            },
            "required": [
                "pixelIntegrity", "temporalConsistency",
                "lightingCohesion", "biometricSync",
            ],
        },
    },
    "required": ["classification", "authenticityScore", "summary", "anomalies", "metrics", "scores"],
}


class GeminiForensicClassifier:
    """
    Stateless Gemini REST client.

    A fresh ``httpx.AsyncClient`` is opened per call; credentials come from
    the injected Settings, never from module state.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.settings = settings
        self.timeout = httpx.Timeout(settings.request_timeout_s, connect=10.0)
        self._transport = transport

    # ------------------------------------------------------------------
    # Public
    # ------------------------------------------------------------------

    async def classify(self, image_bytes: bytes, media_kind: MediaKind, *, model: str) -> str:
        """
        Submit *image_bytes* to *model* and return the raw JSON verdict text.

        Raises:
            QuotaExceededError  HTTP 429.
            TransientError      5xx, timeouts and connection failures.
            MalformedError      Any other rejection or an unreadable envelope.
        """
        url = f"{self.settings.gemini_base_url.rstrip('/')}/models/{model}:generateContent"
        headers = {
            "x-goog-api-key": self.settings.gemini_api_key,
            "User-Agent": "DeepShield/1.0",
        }
        body = self._build_body(image_bytes, media_kind)

        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            try:
                response = await client.post(url, json=body, headers=headers)
            except httpx.TimeoutException as exc:
                raise TransientError(f"forensic service timed out ({model})") from exc
            except httpx.TransportError as exc:
                raise TransientError(f"forensic service unreachable: {exc}") from exc

        self._raise_for_status(response, model)
        return self._extract_text(response)

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _build_body(image_bytes: bytes, media_kind: MediaKind) -> dict[str, Any]:
        hint = "video frame" if media_kind is MediaKind.VIDEO_FRAME else "still image"
        return {
            "systemInstruction": {"parts": [{"text": SYSTEM_INSTRUCTION}]},
            "contents": [
                {
                    "role": "user",
                    "parts": [
                        {
                            "inlineData": {
                                "mimeType": sniff_image_mime(image_bytes) or "image/jpeg",
                                "data": base64.b64encode(image_bytes).decode("ascii"),
                            }
                        },
                        {"text": f"Artifact type: {hint}."},
                    ],
                }
            ],
            "generationConfig": {
                "responseMimeType": "application/json",
                "responseSchema": RESPONSE_SCHEMA,
            },
        }

    @staticmethod
    def _raise_for_status(response: httpx.Response, model: str) -> None:
        status = response.status_code
        if status == 200:
            return
        if status == 429:
            raise QuotaExceededError(
                f"forensic quota exceeded for {model}",
                retry_after=_retry_after_seconds(response),
            )
        if status in TRANSIENT_STATUS_CODES:
            raise TransientError(f"forensic service returned {status} for {model}")
        logger.warning("Forensic request rejected (%s): %s", status, response.text[:300])
        raise MalformedError(f"forensic service rejected the request with status {status}")

    @staticmethod
    def _extract_text(response: httpx.Response) -> str:
        try:
            envelope = response.json()
        except ValueError as exc:
            raise MalformedError("forensic service returned a non-JSON envelope") from exc

        candidates = envelope.get("candidates") if isinstance(envelope, dict) else None
        if not candidates:
            feedback = envelope.get("promptFeedback") if isinstance(envelope, dict) else None
            raise MalformedError(f"forensic service returned no candidates ({feedback or 'no feedback'})")

        first = candidates[0] if isinstance(candidates, list) and isinstance(candidates[0], dict) else {}
        content = first.get("content")
        parts = content.get("parts") if isinstance(content, dict) else None
        if not isinstance(parts, list):
            parts = []
        text = "".join(part.get("text", "") for part in parts if isinstance(part, dict))
        if not text.strip():
            raise MalformedError("forensic service returned an empty candidate")
        return text


def _retry_after_seconds(response: httpx.Response) -> float | None:
    raw = (response.headers.get("retry-after") or "").strip()
    if not raw:
        return None
    try:
        seconds = float(raw)
    except ValueError:
        return None
    if not math.isfinite(seconds) or seconds < 0:
        return None
    return seconds
