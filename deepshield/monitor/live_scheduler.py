"""
deepshield.monitor.live_scheduler – live-tap sampling session.

State machine::

    STOPPED ──start()──▶ STARTING ──source acquired──▶ RUNNING
       ▲                                              │   ▲
       │                                 quota error  ▼   │ cooldown elapsed
       └────────────────stop()─────────────────── COOLDOWN

Each cycle samples exactly one frame, awaits the invoker, applies the
classification policy and only then arms the timer for the next cycle, so at
most one request is ever in flight per session.  ``stop()`` is synchronous:
it cancels the armed timer and releases the source, and any verdict that
arrives afterwards is discarded because the session is no longer current.

Cadence:
    frame not ready    not_ready_delay_s   (1 s)
    not alerted        live_interval_s     (2 s)
    alerted            alert_interval_s    (4 s)
    quota exceeded     cooldown_s          (30 s, then an immediate sample)
"""
from __future__ import annotations

import asyncio
import logging
import time
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from deepshield.ai.invoker import AnalysisInvoker
from deepshield.ai.models import AnalysisRequest, AnalysisVerdict, MediaKind
from deepshield.config import Settings
from deepshield.db.database import ReportStore
from deepshield.errors import (
    ForensicError,
    FrameNotReadyError,
    FrameSourceLostError,
    QuotaExceededError,
    ResourceUnavailableError,
    classify_error,
)
from deepshield.forensic.policy import Decision, PriorState, decide
from deepshield.utils.logging import log_context
from deepshield.utils.scheduler import AsyncioTimer, Timer, TimerHandle

from .content_discovery import sniff_image_mime
from .extraction import describe_image
from .frame_source import FrameSource

logger = logging.getLogger(__name__)

AlertSink = Callable[[AnalysisVerdict, Decision], None]


class LiveState(str, Enum):
    STOPPED = "STOPPED"
    STARTING = "STARTING"
    RUNNING = "RUNNING"
    COOLDOWN = "COOLDOWN"


class SessionActiveError(RuntimeError):
    """Raised when start() is called while a session is already live."""


@dataclass
class LiveSession:
    session_id: str
    source_kind: str
    state: LiveState = LiveState.STARTING
    running: bool = False
    cooldown_active: bool = False
    cooldown_ends_at: int | None = None
    in_flight: bool = False
    last_threat_score: int = 0
    last_safe: bool = True
    trend: str = "STABLE"
    alert: AnalysisVerdict | None = None
    scan_count: int = 0
    last_scan_at: int | None = None
    last_error: str | None = None
    last_error_kind: str | None = None
    timer: TimerHandle | None = field(default=None, repr=False)

    def snapshot(self) -> dict[str, Any]:
        return {
            "session_id": self.session_id,
            "source_kind": self.source_kind,
            "state": self.state.value,
            "running": self.running,
            "cooldown_active": self.cooldown_active,
            "cooldown_ends_at": self.cooldown_ends_at,
            "in_flight": self.in_flight,
            "threat_score": self.last_threat_score,
            "safe": self.last_safe,
            "trend": self.trend,
            "alert": self.alert.model_dump(mode="json") if self.alert else None,
            "scan_count": self.scan_count,
            "last_scan_at": self.last_scan_at,
            "last_error": self.last_error,
            "last_error_kind": self.last_error_kind,
        }


class SamplingScheduler:
    """
    Drives one live monitoring session at a time.

    Usage::

        scheduler = SamplingScheduler(invoker, settings, store=store)
        await scheduler.start(PushFrameSource("CAMERA"))
        # … frames are pushed, verdicts accumulate …
        scheduler.stop()
    """

    def __init__(
        self,
        invoker: AnalysisInvoker,
        settings: Settings,
        *,
        timer: Timer | None = None,
        store: ReportStore | None = None,
        on_alert: AlertSink | None = None,
    ) -> None:
        self.invoker = invoker
        self.settings = settings
        self.timer = timer or AsyncioTimer()
        self.store = store
        self.on_alert = on_alert
        self._session: LiveSession | None = None
        self._source: FrameSource | None = None

    # ------------------------------------------------------------------
    # Public interface
    # ------------------------------------------------------------------

    @property
    def session(self) -> LiveSession | None:
        return self._session

    @property
    def source(self) -> FrameSource | None:
        return self._source

    @property
    def state(self) -> LiveState:
        return self._session.state if self._session else LiveState.STOPPED

    def status(self) -> dict[str, Any]:
        if self._session is None:
            return {"state": LiveState.STOPPED.value, "running": False}
        return self._session.snapshot()

    async def start(self, source: FrameSource) -> LiveSession:
        """
        Acquire *source* and begin sampling immediately.

        Raises:
            SessionActiveError        A session is already live.
            ResourceUnavailableError  The source could not be acquired.
        """
        if self._session is not None:
            raise SessionActiveError(f"live session {self._session.session_id} is already active")

        session = LiveSession(session_id=uuid.uuid4().hex[:8], source_kind=source.kind)
        self._session = session
        self._source = source

        with log_context(session_id=session.session_id):
            try:
                await source.acquire()
            except Exception as exc:
                if self._session is session:
                    self._session = None
                    self._source = None
                session.state = LiveState.STOPPED
                logger.warning("Could not acquire %s frame source: %s", source.kind, exc)
                if isinstance(exc, ResourceUnavailableError):
                    raise
                raise ResourceUnavailableError(f"could not acquire {source.kind} source: {exc}") from exc

            if self._session is not session:
                # stop() ran while the source was being acquired
                source.release()
                return session

            session.state = LiveState.RUNNING
            session.running = True
            logger.info("Live %s session started", source.kind)
            self._arm(session, 0.0)
        return session

    def stop(self) -> None:
        """Cancel the pending cycle, release the source and end the session. Idempotent."""
        session = self._session
        if session is None:
            return

        session.running = False
        session.state = LiveState.STOPPED
        session.cooldown_active = False
        session.cooldown_ends_at = None
        if session.timer is not None:
            session.timer.cancel()
            session.timer = None

        source = self._source
        self._session = None
        self._source = None
        if source is not None:
            try:
                source.release()
            except Exception:
                logger.exception("Frame source release failed")

        with log_context(session_id=session.session_id):
            logger.info("Live session stopped after %d scans", session.scan_count)

    # ------------------------------------------------------------------
    # Cycle
    # ------------------------------------------------------------------

    def _is_current(self, session: LiveSession) -> bool:
        return session is self._session and session.running

    def _arm(self, session: LiveSession, delay: float) -> None:
        session.timer = self.timer.call_later(delay, lambda: self._cycle(session))

    def _next_delay(self, session: LiveSession) -> float:
        if session.last_safe:
            return self.settings.live_interval_s
        return self.settings.alert_interval_s

    async def _cycle(self, session: LiveSession) -> None:
        session.timer = None
        if not self._is_current(session) or session.state is not LiveState.RUNNING:
            return

        with log_context(session_id=session.session_id):
            try:
                frame = self._source.snapshot()
            except FrameNotReadyError:
                self._arm(session, self.settings.not_ready_delay_s)
                return
            except FrameSourceLostError as exc:
                logger.warning("Frame source lost: %s", exc)
                self.stop()
                return
            except Exception as exc:
                self._record_error(session, exc)
                logger.warning("Frame snapshot failed: %s", exc)
                self._arm(session, self._next_delay(session))
                return

            metadata = await asyncio.to_thread(
                describe_image, frame, sniff_image_mime(frame) or "image/jpeg"
            )
            if not self._is_current(session):
                return

            request = AnalysisRequest(
                payload=frame,
                media_kind=MediaKind.VIDEO_FRAME,
                file_name=f"Live_{session.source_kind}_Tap_{int(time.time() * 1000)}.jpg",
                is_live=True,
                metadata=metadata,
            )
            session.in_flight = True
            try:
                verdict = await self.invoker.invoke(request)
            except QuotaExceededError as exc:
                if self._is_current(session):
                    session.in_flight = False
                    self._record_error(session, exc)
                    self._enter_cooldown(session)
                return
            except ForensicError as exc:
                if self._is_current(session):
                    session.in_flight = False
                    self._record_error(session, exc)
                    logger.warning("Live sample skipped: %s", exc)
                    self._arm(session, self._next_delay(session))
                return
            except Exception as exc:
                if self._is_current(session):
                    session.in_flight = False
                    self._record_error(session, exc)
                    logger.exception("Live sample raised unexpectedly")
                    self._arm(session, self._next_delay(session))
                return

            if not self._is_current(session):
                logger.debug("Discarding verdict that arrived after stop()")
                return

            session.in_flight = False
            await self._apply(session, verdict)
            if self._is_current(session):
                self._arm(session, self._next_delay(session))

    async def _apply(self, session: LiveSession, verdict: AnalysisVerdict) -> None:
        prior = PriorState(safe=session.last_safe, threat_score=session.last_threat_score)
        decision = decide(prior, verdict)

        session.last_threat_score = decision.threat_score
        session.last_safe = decision.safe
        session.trend = decision.trend
        session.scan_count += 1
        session.last_scan_at = int(time.time() * 1000)
        session.last_error = None
        session.last_error_kind = None

        if decision.alert:
            session.alert = verdict
            logger.warning(
                "Live alert: %s (authenticity %d, threat %d)",
                verdict.classification.value, verdict.authenticity_score, decision.threat_score,
            )
            if self.store is not None:
                try:
                    await self.store.save(verdict)
                except Exception as exc:
                    self._record_error(session, exc)
                    logger.exception("Could not persist live alert")
            self._notify(verdict, decision)
        elif decision.safe:
            session.alert = None

    def _enter_cooldown(self, session: LiveSession) -> None:
        if session.cooldown_active:
            return
        cooldown = self.settings.cooldown_s
        session.cooldown_active = True
        session.state = LiveState.COOLDOWN
        session.cooldown_ends_at = int((time.time() + cooldown) * 1000)
        if session.timer is not None:
            session.timer.cancel()
        logger.warning("Forensic quota exceeded; pausing live sampling for %.0fs", cooldown)
        session.timer = self.timer.call_later(cooldown, lambda: self._end_cooldown(session))

    async def _end_cooldown(self, session: LiveSession) -> None:
        session.timer = None
        if not self._is_current(session):
            return
        session.cooldown_active = False
        session.cooldown_ends_at = None
        session.state = LiveState.RUNNING
        logger.info("Cooldown elapsed; resuming live sampling")
        self._arm(session, 0.0)

    @staticmethod
    def _record_error(session: LiveSession, exc: BaseException) -> None:
        session.last_error = str(exc) or type(exc).__name__
        session.last_error_kind = classify_error(exc)

    def _notify(self, verdict: AnalysisVerdict, decision: Decision) -> None:
        if self.on_alert is None:
            return
        try:
            self.on_alert(verdict, decision)
        except Exception:
            logger.exception("Alert sink raised")
