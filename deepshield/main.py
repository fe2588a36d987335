"""
deepshield.main – FastAPI application entry point.

``create_app`` wires one invoker, report store, live scheduler and batch
processor per application instance and registers all API routes.

Start the server:
    uvicorn deepshield.main:app --reload --port 8000
"""
from __future__ import annotations

import asyncio
import base64
import binascii
import logging
from contextlib import asynccontextmanager
from typing import Literal

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field

from deepshield.ai.gemini_client import GeminiForensicClassifier
from deepshield.ai.invoker import AnalysisInvoker
from deepshield.ai.models import ForensicClassifier
from deepshield.config import Settings, get_settings
from deepshield.db.database import ReportStore
from deepshield.errors import FrameSourceLostError, ResourceUnavailableError
from deepshield.monitor.batch_queue import BatchQueueProcessor, TaskStatus
from deepshield.monitor.extraction import ArtifactExtractor, MediaFrameExtractor
from deepshield.monitor.frame_source import PushFrameSource
from deepshield.monitor.live_scheduler import SamplingScheduler, SessionActiveError
from deepshield.utils.logging import configure_logging

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Pydantic request / response models
# ---------------------------------------------------------------------------

class UploadRequest(BaseModel):
    file_name: str = Field(min_length=1, description="File name of the upload")
    content_type: str | None = Field(default=None, description="Declared MIME type")
    data_base64: str = Field(description="Base64 file contents (data: URLs accepted)")


class LiveStartRequest(BaseModel):
    source: Literal["CAMERA", "DISPLAY"] = Field(default="CAMERA")


class LiveFrameRequest(BaseModel):
    frame_base64: str = Field(description="Base64 JPEG/PNG frame (data: URLs accepted)")


class BatchRunResponse(BaseModel):
    started: bool
    pending: int


def _decode_base64(value: str, max_bytes: int) -> bytes:
    content = value.split("base64,", 1)[1] if "base64," in value else value
    try:
        data = base64.b64decode(content, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise HTTPException(status_code=422, detail="Payload is not valid base64") from exc
    if not data:
        raise HTTPException(status_code=422, detail="Payload is empty")
    if len(data) > max_bytes:
        raise HTTPException(status_code=413, detail="Payload exceeds maximum allowed size")
    return data


# ---------------------------------------------------------------------------
# Application
# ---------------------------------------------------------------------------

def create_app(
    settings: Settings | None = None,
    classifier: ForensicClassifier | None = None,
    extractor: ArtifactExtractor | None = None,
) -> FastAPI:
    settings = settings or get_settings()
    classifier = classifier or GeminiForensicClassifier(settings)

    store = ReportStore(max_reports=settings.max_reports)
    invoker = AnalysisInvoker(classifier, settings)
    scheduler = SamplingScheduler(invoker, settings, store=store)
    processor = BatchQueueProcessor(invoker, extractor or MediaFrameExtractor(), store)
    batch_runs: set[asyncio.Task] = set()

    @asynccontextmanager
    async def lifespan(_: FastAPI):
        configure_logging(settings)
        if not settings.gemini_api_key and isinstance(classifier, GeminiForensicClassifier):
            logger.warning("DEEPSHIELD_GEMINI_API_KEY is not set; forensic calls will be rejected")
        yield
        scheduler.stop()
        for run in list(batch_runs):
            run.cancel()

    app = FastAPI(
        title="DeepShield – Forensic Verification API",
        version="1.0.0",
        description=(
            "Live-tap sampling and batch verification of images and video "
            "against a remote deepfake forensic classifier."
        ),
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.store = store
    app.state.invoker = invoker
    app.state.scheduler = scheduler
    app.state.processor = processor

    # -----------------------------------------------------------------------
    # Health
    # -----------------------------------------------------------------------

    @app.get("/api/health")
    async def health() -> dict[str, str]:
        """Liveness check: returns {"status": "ok"} when the server is up."""
        return {"status": "ok"}

    # -----------------------------------------------------------------------
    # Reports
    # -----------------------------------------------------------------------

    @app.get("/api/reports")
    async def list_reports(q: str = "", limit: int = 500) -> dict:
        """
        Return saved reports newest-first.

        Query params:
            q      Match on file name, report id or fingerprint
            limit  Max records (default 500, max 2 000)
        """
        reports = await store.search(q, limit=limit)
        return {
            "records": [r.model_dump(mode="json") for r in reports],
            "total": await store.count(),
        }

    @app.get("/api/reports/stats")
    async def report_stats() -> dict:
        return await store.stats()

    @app.delete("/api/reports/{report_id}")
    async def delete_report(report_id: str) -> dict:
        if not await store.delete(report_id):
            raise HTTPException(status_code=404, detail="Report not found")
        return {"deleted": report_id}

    @app.delete("/api/reports")
    async def purge_reports() -> dict:
        return {"deleted": await store.clear()}

    # -----------------------------------------------------------------------
    # Batch verification
    # -----------------------------------------------------------------------

    @app.post("/api/batch/tasks")
    async def enqueue_task(payload: UploadRequest) -> dict:
        data = _decode_base64(payload.data_base64, settings.max_upload_bytes)
        task = processor.enqueue(payload.file_name, data, payload.content_type)
        if task.upload_kind == "UNKNOWN":
            processor.remove(task.id)
            raise HTTPException(status_code=415, detail="Upload is not a supported image or video")
        return task.snapshot()

    @app.get("/api/batch/tasks")
    async def list_tasks() -> dict:
        return {
            "running": processor.running,
            "tasks": [task.snapshot() for task in processor.tasks],
        }

    @app.delete("/api/batch/tasks/{task_id}")
    async def remove_task(task_id: str) -> dict:
        if not processor.remove(task_id):
            raise HTTPException(status_code=404, detail="Task not found")
        return {"removed": task_id}

    @app.post("/api/batch/run", response_model=BatchRunResponse)
    async def run_batch() -> BatchRunResponse:
        """Start a background pass over IDLE and FAILED tasks."""
        pending = sum(1 for t in processor.tasks if t.status in (TaskStatus.IDLE, TaskStatus.FAILED))
        if processor.running:
            return BatchRunResponse(started=False, pending=pending)
        run = asyncio.create_task(processor.run_batch())
        batch_runs.add(run)
        run.add_done_callback(batch_runs.discard)
        return BatchRunResponse(started=True, pending=pending)

    # -----------------------------------------------------------------------
    # Live monitoring
    # -----------------------------------------------------------------------

    @app.post("/api/live/start")
    async def live_start(payload: LiveStartRequest) -> dict:
        try:
            await scheduler.start(PushFrameSource(payload.source))
        except SessionActiveError as exc:
            raise HTTPException(status_code=409, detail=str(exc)) from exc
        except ResourceUnavailableError as exc:
            raise HTTPException(status_code=503, detail=str(exc)) from exc
        return scheduler.status()

    @app.post("/api/live/frame")
    async def live_frame(payload: LiveFrameRequest) -> dict:
        source = scheduler.source
        if not isinstance(source, PushFrameSource):
            raise HTTPException(status_code=409, detail="No live session is running")
        frame = _decode_base64(payload.frame_base64, settings.max_upload_bytes)
        try:
            source.push(frame)
        except FrameSourceLostError as exc:
            raise HTTPException(status_code=409, detail=str(exc)) from exc
        return {"accepted": True, "state": scheduler.state.value}

    @app.post("/api/live/stop")
    async def live_stop() -> dict:
        scheduler.stop()
        return scheduler.status()

    @app.get("/api/live/status")
    async def live_status() -> dict:
        return scheduler.status()

    return app


app = create_app()
