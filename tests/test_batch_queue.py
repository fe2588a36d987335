"""
Tests for sequential batch verification (monitor.batch_queue.BatchQueueProcessor).
"""

from __future__ import annotations

import asyncio

from deepshield.ai.models import Classification, MediaKind
from deepshield.db.database import ReportStore
from deepshield.errors import ResourceUnavailableError, ServiceUnavailableError
from deepshield.monitor.batch_queue import BatchQueueProcessor, TaskStatus
from tests.fakes import (
    JPEG_BYTES,
    FailingStore,
    GatedInvoker,
    ScriptedInvoker,
    StubExtractor,
    make_verdict,
)


def test_enqueue_classifies_uploads():
    processor = BatchQueueProcessor(ScriptedInvoker(make_verdict()), StubExtractor())
    image = processor.enqueue("face.png", JPEG_BYTES)
    video = processor.enqueue("clip.bin", b"....", "video/mp4")
    other = processor.enqueue("notes.txt", b"hello")

    assert image.upload_kind == "IMAGE"
    assert image.media_kind is MediaKind.IMAGE
    assert video.upload_kind == "VIDEO"
    assert video.media_kind is MediaKind.VIDEO_FRAME
    assert other.upload_kind == "UNKNOWN"
    assert all(t.status is TaskStatus.IDLE for t in processor.tasks)
    assert image.progress_msg == "Pending Audit"
    assert len({t.id for t in processor.tasks}) == 3


def test_extraction_failure_does_not_abort_batch():
    """Three tasks, the second one's extraction fails: it is FAILED, the others COMPLETED."""
    async def _run():
        store = ReportStore()
        extractor = StubExtractor({"b.mp4": ResourceUnavailableError("corrupt video")})
        invoker = ScriptedInvoker(make_verdict(Classification.AUTHENTIC, 91))
        processor = BatchQueueProcessor(invoker, extractor, store)
        a = processor.enqueue("a.jpg", JPEG_BYTES)
        b = processor.enqueue("b.mp4", b"\x00\x00\x00\x18ftypmp42")
        c = processor.enqueue("c.jpg", JPEG_BYTES)

        processed = await processor.run_batch()

        assert processed == 3
        assert extractor.calls == ["a.jpg", "b.mp4", "c.jpg"]
        assert a.status is TaskStatus.COMPLETED
        assert b.status is TaskStatus.FAILED
        assert b.error_kind == "resource"
        assert "corrupt video" in b.error
        assert c.status is TaskStatus.COMPLETED
        assert c.progress_msg == "Audit Complete"
        assert [r.file_name for r in invoker.requests] == ["a.jpg", "c.jpg"]
        assert await store.count() == 2
        assert invoker.max_active == 1

    asyncio.run(_run())


def test_completed_task_saved_exactly_once():
    async def _run():
        store = ReportStore()
        processor = BatchQueueProcessor(ScriptedInvoker(make_verdict()), StubExtractor(), store)
        task = processor.enqueue("a.jpg", JPEG_BYTES)

        await processor.run_batch()
        await processor.run_batch()

        assert await store.count() == 1
        report = await store.get(task.report_id)
        assert report is not None
        assert report.verdict.file_name == "a.jpg"

    asyncio.run(_run())


def test_failed_task_is_retried_on_next_run():
    async def _run():
        invoker = ScriptedInvoker(ServiceUnavailableError("down"), make_verdict())
        processor = BatchQueueProcessor(invoker, StubExtractor())
        task = processor.enqueue("a.jpg", JPEG_BYTES)

        await processor.run_batch()
        assert task.status is TaskStatus.FAILED
        assert task.error_kind == "unavailable"

        await processor.run_batch()
        assert task.status is TaskStatus.COMPLETED
        assert task.error is None
        assert task.result is not None

    asyncio.run(_run())


def test_reentrant_run_is_a_noop():
    async def _run():
        invoker = GatedInvoker(make_verdict())
        processor = BatchQueueProcessor(invoker, StubExtractor())
        processor.enqueue("a.jpg", JPEG_BYTES)
        processor.enqueue("b.jpg", JPEG_BYTES)

        first = asyncio.ensure_future(processor.run_batch())
        await invoker.started.wait()
        assert processor.running is True
        assert processor.tasks[0].status is TaskStatus.ANALYZING
        assert processor.tasks[0].progress_msg == "AI Neural Analysis in Progress..."

        assert await processor.run_batch() == 0
        assert len(invoker.requests) == 1

        invoker.release()
        assert await first == 2
        assert processor.running is False
        assert len(invoker.requests) == 2

    asyncio.run(_run())


def test_removed_task_is_skipped():
    async def _run():
        invoker = GatedInvoker(make_verdict())
        processor = BatchQueueProcessor(invoker, StubExtractor())
        first = processor.enqueue("a.jpg", JPEG_BYTES)
        second = processor.enqueue("b.jpg", JPEG_BYTES)

        run = asyncio.ensure_future(processor.run_batch())
        await invoker.started.wait()
        assert processor.remove(second.id) is True
        invoker.release()

        assert await run == 1
        assert first.status is TaskStatus.COMPLETED
        assert second.status is TaskStatus.IDLE
        assert processor.get(second.id) is None
        assert processor.remove("missing") is False

    asyncio.run(_run())


def test_explicit_task_list_is_processed_in_order():
    async def _run():
        invoker = ScriptedInvoker(make_verdict())
        processor = BatchQueueProcessor(invoker, StubExtractor())
        a = processor.enqueue("a.jpg", JPEG_BYTES)
        b = processor.enqueue("b.jpg", JPEG_BYTES)

        assert await processor.run_batch([b, a]) == 2
        assert [r.file_name for r in invoker.requests] == ["b.jpg", "a.jpg"]

    asyncio.run(_run())


def test_alert_sink_receives_fake_verdicts():
    async def _run():
        alerts = []
        invoker = ScriptedInvoker(
            make_verdict(Classification.FAKE, 10), make_verdict(Classification.AUTHENTIC, 90)
        )
        processor = BatchQueueProcessor(
            invoker, StubExtractor(), on_alert=lambda v, d: alerts.append((v.file_name, d.threat_score))
        )
        processor.enqueue("fake.jpg", JPEG_BYTES)
        processor.enqueue("real.jpg", JPEG_BYTES)

        await processor.run_batch()
        assert alerts == [("fake.jpg", 90)]

    asyncio.run(_run())


def test_batch_requests_are_not_live():
    async def _run():
        invoker = ScriptedInvoker(make_verdict())
        processor = BatchQueueProcessor(invoker, StubExtractor())
        processor.enqueue("clip.mp4", b"\x00\x00\x00\x18ftypmp42")

        await processor.run_batch()
        request = invoker.requests[0]
        assert request.is_live is False
        assert request.media_kind is MediaKind.VIDEO_FRAME
        assert request.on_progress is not None

    asyncio.run(_run())


def test_snapshot_omits_payload():
    processor = BatchQueueProcessor(ScriptedInvoker(make_verdict()), StubExtractor())
    snapshot = processor.enqueue("a.jpg", JPEG_BYTES).snapshot()
    assert "data" not in snapshot
    assert snapshot["size_bytes"] == len(JPEG_BYTES)
    assert snapshot["status"] == "IDLE"


def test_store_failure_keeps_verdicts_and_finishes_batch():
    """A report store that cannot write must not fail tasks or stop the batch."""
    async def _run():
        store = FailingStore()
        alerts = []
        invoker = ScriptedInvoker(make_verdict(Classification.FAKE, 10))
        processor = BatchQueueProcessor(
            invoker, StubExtractor(), store, on_alert=lambda v, d: alerts.append(v.file_name)
        )
        tasks = [processor.enqueue(name, JPEG_BYTES) for name in ("a.jpg", "b.jpg", "c.jpg")]

        processed = await processor.run_batch()

        assert processed == 3
        assert store.attempts == 3
        assert alerts == ["a.jpg", "b.jpg", "c.jpg"]
        for task in tasks:
            assert task.status is TaskStatus.COMPLETED
            assert task.result is not None
            assert task.report_id is None
            assert task.error.startswith("report not saved")

    asyncio.run(_run())


def test_content_metadata_flows_to_request_and_task():
    async def _run():
        invoker = ScriptedInvoker(make_verdict())
        processor = BatchQueueProcessor(invoker, StubExtractor())
        task = processor.enqueue("face.png", JPEG_BYTES, "image/png")

        await processor.run_batch()
        metadata = invoker.requests[0].metadata
        assert metadata.type == "IMAGE"
        assert metadata.format == "image/png"
        assert metadata.resolution == "640x480"
        assert task.metadata == metadata
        assert task.snapshot()["metadata"]["resolution"] == "640x480"

    asyncio.run(_run())
