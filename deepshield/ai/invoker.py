"""
deepshield.ai.invoker – resilient wrapper around one forensic classification.

The invoker owns retries, exponential backoff and model-tier degradation for a
single artifact.  It knows nothing about live sessions or batch queues; both
drivers call :meth:`AnalysisInvoker.invoke` and receive either a fully
normalized :class:`AnalysisVerdict` or one terminal ForensicError.

Retry policy (per call):
    attempt 1          initial tier (light when live, high-fidelity otherwise)
    attempt 2..1+N     after backoff_base_s * 2**(k-1) seconds, light tier
    quota exhausted    QuotaExceededError (with caller hint)
    transient exhausted ServiceUnavailableError
    malformed          MalformedError immediately, no retry
"""
from __future__ import annotations

import asyncio
import hashlib
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from deepshield.config import Settings
from deepshield.errors import (
    MalformedError,
    QuotaExceededError,
    ServiceUnavailableError,
    TransientError,
)

from .models import AnalysisRequest, AnalysisVerdict, ForensicClassifier
from .verdict_parser import ParseFailure, parse_verdict

logger = logging.getLogger(__name__)

Sleeper = Callable[[float], Awaitable[None]]


def content_fingerprint(payload: bytes, prefix_bytes: int = 2048) -> str:
    """SHA-256 hex digest over the first *prefix_bytes* of *payload*."""
    return hashlib.sha256(payload[:prefix_bytes]).hexdigest()


@dataclass
class _RetryState:
    model: str
    backoff: float
    attempt: int = 0


class AnalysisInvoker:
    """
    Submit one artifact to the forensic classifier with bounded retries.

    Usage::

        invoker = AnalysisInvoker(GeminiForensicClassifier(settings), settings)
        verdict = await invoker.invoke(AnalysisRequest(payload, MediaKind.IMAGE))
    """

    def __init__(
        self,
        classifier: ForensicClassifier,
        settings: Settings,
        *,
        sleep: Sleeper = asyncio.sleep,
    ) -> None:
        self.classifier = classifier
        self.settings = settings
        self._sleep = sleep

    # ------------------------------------------------------------------
    # Public interface
    # ------------------------------------------------------------------

    async def invoke(self, request: AnalysisRequest) -> AnalysisVerdict:
        """
        Classify ``request.payload`` and return a normalized verdict.

        Raises:
            QuotaExceededError       Quota failures outlasted the retry budget.
            ServiceUnavailableError  Transient failures outlasted the retry budget.
            MalformedError           The request or response was unusable.
        """
        settings = self.settings
        state = _RetryState(
            model=settings.live_model if request.is_live else settings.analysis_model,
            backoff=settings.backoff_base_s,
        )

        while True:
            state.attempt += 1
            self._progress(request, state)
            try:
                raw = await self.classifier.classify(
                    request.payload, request.media_kind, model=state.model
                )
                return self._build_verdict(request, raw, state)
            except MalformedError:
                logger.warning(
                    "Malformed forensic result for %s on attempt %d (%s)",
                    request.file_name, state.attempt, state.model,
                )
                raise
            except (QuotaExceededError, TransientError) as exc:
                if state.attempt > settings.retry_budget:
                    raise self._exhausted(exc, state) from exc
                delay = state.backoff
                if isinstance(exc, QuotaExceededError) and exc.retry_after:
                    # server hint is a floor, bounded by the live cooldown
                    delay = max(delay, min(exc.retry_after, settings.cooldown_s))
                logger.warning(
                    "Forensic attempt %d/%d failed on %s (%s); retrying in %.1fs",
                    state.attempt, settings.retry_budget + 1, state.model, exc, delay,
                )
                self._degrade(state)
                await self._sleep(delay)
                state.backoff *= 2

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _build_verdict(
        self, request: AnalysisRequest, raw: str, state: _RetryState
    ) -> AnalysisVerdict:
        parsed = parse_verdict(raw)
        if isinstance(parsed, ParseFailure):
            raise MalformedError(parsed.reason)

        return AnalysisVerdict(
            classification=parsed.classification,
            authenticity_score=parsed.authenticity_score,
            summary=parsed.summary,
            anomalies=parsed.anomalies,
            metrics=parsed.metrics,
            scores=parsed.scores,
            fingerprint=content_fingerprint(
                request.payload, self.settings.fingerprint_prefix_bytes
            ),
            model=state.model,
            attempts=state.attempt,
            file_name=request.file_name,
            media_kind=request.media_kind,
            metadata=request.metadata,
            analyzed_at=int(time.time() * 1000),
        )

    def _degrade(self, state: _RetryState) -> None:
        # One-way: the light tier is never swapped back within a call.
        if state.model == self.settings.analysis_model != self.settings.live_model:
            logger.info(
                "Degrading from %s to %s for remaining attempts",
                state.model, self.settings.live_model,
            )
            state.model = self.settings.live_model

    def _exhausted(self, exc: Exception, state: _RetryState) -> Exception:
        if isinstance(exc, QuotaExceededError):
            return QuotaExceededError(
                f"forensic quota still exceeded after {state.attempt} attempts",
                retry_after=exc.retry_after,
            )
        return ServiceUnavailableError(
            f"forensic service unavailable after {state.attempt} attempts: {exc}"
        )

    @staticmethod
    def _progress(request: AnalysisRequest, state: _RetryState) -> None:
        if request.is_live or request.on_progress is None:
            return
        if state.attempt == 1:
            message = "Establishing Neural Link..."
        else:
            message = f"Re-establishing Neural Link (attempt {state.attempt}, {state.model})..."
        try:
            request.on_progress(message)
        except Exception:
            logger.exception("Progress sink raised; continuing analysis")
