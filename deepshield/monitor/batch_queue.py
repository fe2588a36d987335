"""
deepshield.monitor.batch_queue – sequential verification of uploaded artifacts.

Task lifecycle::

    IDLE ──▶ ANALYZING ──▶ COMPLETED
                  │
                  └──────▶ FAILED ──(next run_batch)──▶ ANALYZING

A batch run visits IDLE and FAILED tasks in queue order and never starts a
task before the previous one is terminal.  One task failing never aborts the
run, and a second ``run_batch`` while one is in progress is a no-op.
"""
from __future__ import annotations

import logging
import time
import uuid
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from deepshield.ai.invoker import AnalysisInvoker
from deepshield.ai.models import AnalysisRequest, AnalysisVerdict, ContentMetadata, MediaKind
from deepshield.db.database import ReportStore
from deepshield.errors import ForensicError, classify_error
from deepshield.forensic.policy import Decision, PriorState, decide
from deepshield.utils.logging import log_context

from .content_discovery import UploadKind, classify_upload
from .extraction import ArtifactExtractor

logger = logging.getLogger(__name__)

AlertSink = Callable[[AnalysisVerdict, Decision], None]


class TaskStatus(str, Enum):
    IDLE = "IDLE"
    ANALYZING = "ANALYZING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


@dataclass
class VerificationTask:
    id: str
    file_name: str
    data: bytes = field(repr=False)
    upload_kind: UploadKind
    content_type: str | None = None
    status: TaskStatus = TaskStatus.IDLE
    progress_msg: str = "Pending Audit"
    metadata: ContentMetadata | None = None
    result: AnalysisVerdict | None = None
    report_id: str | None = None
    error: str | None = None
    error_kind: str | None = None
    created_at: int = field(default_factory=lambda: int(time.time() * 1000))

    @property
    def media_kind(self) -> MediaKind:
        return MediaKind.VIDEO_FRAME if self.upload_kind == "VIDEO" else MediaKind.IMAGE

    def snapshot(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "file_name": self.file_name,
            "upload_kind": self.upload_kind,
            "content_type": self.content_type,
            "size_bytes": len(self.data),
            "status": self.status.value,
            "progress_msg": self.progress_msg,
            "metadata": self.metadata.model_dump(mode="json") if self.metadata else None,
            "result": self.result.model_dump(mode="json") if self.result else None,
            "report_id": self.report_id,
            "error": self.error,
            "error_kind": self.error_kind,
            "created_at": self.created_at,
        }


class BatchQueueProcessor:
    """
    Owns the upload queue and processes it one task at a time.

    Usage::

        processor = BatchQueueProcessor(invoker, MediaFrameExtractor(), store)
        processor.enqueue("clip.mp4", data, "video/mp4")
        await processor.run_batch()
    """

    def __init__(
        self,
        invoker: AnalysisInvoker,
        extractor: ArtifactExtractor,
        store: ReportStore | None = None,
        *,
        on_alert: AlertSink | None = None,
    ) -> None:
        self.invoker = invoker
        self.extractor = extractor
        self.store = store
        self.on_alert = on_alert
        self._tasks: list[VerificationTask] = []
        self._running = False

    # ------------------------------------------------------------------
    # Queue management
    # ------------------------------------------------------------------

    @property
    def tasks(self) -> list[VerificationTask]:
        return list(self._tasks)

    @property
    def running(self) -> bool:
        return self._running

    def enqueue(self, file_name: str, data: bytes, content_type: str | None = None) -> VerificationTask:
        task = VerificationTask(
            id=uuid.uuid4().hex[:9].upper(),
            file_name=file_name,
            data=data,
            upload_kind=classify_upload(file_name, content_type),
            content_type=content_type,
        )
        self._tasks.append(task)
        logger.info("Queued %s as %s (%d bytes)", file_name, task.upload_kind, len(data))
        return task

    def get(self, task_id: str) -> VerificationTask | None:
        return next((t for t in self._tasks if t.id == task_id), None)

    def remove(self, task_id: str) -> bool:
        """Drop a task from the queue. An in-flight analysis still completes on the detached task."""
        task = self.get(task_id)
        if task is None:
            return False
        self._tasks.remove(task)
        return True

    # ------------------------------------------------------------------
    # Processing
    # ------------------------------------------------------------------

    async def run_batch(self, tasks: Sequence[VerificationTask] | None = None) -> int:
        """
        Process every IDLE or FAILED task in order.

        Args:
            tasks  Explicit ordered tasks; defaults to this processor's queue,
                   in which case tasks removed before their turn are skipped.

        Returns:
            Number of tasks that reached a terminal state in this run
            (0 when another run was already in progress).
        """
        if self._running:
            logger.info("Batch already running; ignoring re-entrant request")
            return 0

        self._running = True
        processed = 0
        own_queue = tasks is None
        try:
            for task in list(self._tasks if own_queue else tasks):
                if task.status not in (TaskStatus.IDLE, TaskStatus.FAILED):
                    continue
                if own_queue and not any(t is task for t in self._tasks):
                    continue
                await self._process(task)
                processed += 1
        finally:
            self._running = False
        logger.info("Batch finished: %d task(s) processed", processed)
        return processed

    async def _process(self, task: VerificationTask) -> None:
        with log_context(task_id=task.id):
            task.status = TaskStatus.ANALYZING
            task.error = None
            task.error_kind = None
            task.progress_msg = "Establishing Neural Context..."

            try:
                if task.upload_kind == "VIDEO":
                    task.progress_msg = "Extracting Forensic Frame..."
                artifact = await self.extractor.extract(task)
                task.metadata = artifact.metadata

                task.progress_msg = "AI Neural Analysis in Progress..."
                verdict = await self.invoker.invoke(
                    AnalysisRequest(
                        payload=artifact.payload,
                        media_kind=task.media_kind,
                        file_name=task.file_name,
                        is_live=False,
                        on_progress=self._progress_sink(task),
                        metadata=artifact.metadata,
                    )
                )
            except ForensicError as exc:
                self._fail(task, exc)
                logger.warning("Task %s failed: %s", task.file_name, exc)
                return
            except Exception as exc:
                self._fail(task, exc)
                logger.exception("Task %s raised unexpectedly", task.file_name)
                return

            decision = decide(PriorState(), verdict)
            task.result = verdict
            task.status = TaskStatus.COMPLETED
            task.progress_msg = "Audit Complete"
            logger.info(
                "Task %s completed: %s (authenticity %d)",
                task.file_name, verdict.classification.value, verdict.authenticity_score,
            )

            if self.store is not None:
                try:
                    task.report_id = await self.store.save(verdict)
                except Exception as exc:
                    # verdict stands; only the report is missing
                    task.error = f"report not saved: {exc}"
                    task.error_kind = classify_error(exc)
                    logger.exception("Could not persist report for %s", task.file_name)
            if decision.alert:
                self._notify(verdict, decision)

    @staticmethod
    def _fail(task: VerificationTask, exc: BaseException) -> None:
        task.status = TaskStatus.FAILED
        task.error = str(exc) or type(exc).__name__
        task.error_kind = classify_error(exc)
        task.progress_msg = "Audit Failed"

    @staticmethod
    def _progress_sink(task: VerificationTask) -> Callable[[str], None]:
        def sink(message: str) -> None:
            task.progress_msg = message

        return sink

    def _notify(self, verdict: AnalysisVerdict, decision: Decision) -> None:
        if self.on_alert is None:
            return
        try:
            self.on_alert(verdict, decision)
        except Exception:
            logger.exception("Alert sink raised")
