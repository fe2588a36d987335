"""
deepshield.db.database – in-memory forensic report store.

Completed verdicts are appended as :class:`Report` records.  Saved reports are
never updated; they can only be listed, searched, deleted or purged.  The
oldest report is dropped once the store exceeds its capacity.
"""
from __future__ import annotations

import asyncio
import time
import uuid

from pydantic import BaseModel

from deepshield.ai.models import AnalysisVerdict, Classification

MAX_REPORTS = 10_000  # cap to prevent unbounded growth


class Report(BaseModel):
    id: str
    saved_at: int  # ms epoch
    verdict: AnalysisVerdict


def _new_report_id() -> str:
    return f"DS-{uuid.uuid4().hex[:6].upper()}"


class ReportStore:
    """
    Append-only report history guarded by an asyncio.Lock.

    Usage::

        store = ReportStore()
        report_id = await store.save(verdict)
        recent = await store.list_all(limit=20)
    """

    def __init__(self, max_reports: int = MAX_REPORTS) -> None:
        self.max_reports = max_reports
        self._reports: list[Report] = []
        self._lock = asyncio.Lock()

    async def save(self, verdict: AnalysisVerdict) -> str:
        """Append *verdict* and return its report id."""
        report = Report(
            id=_new_report_id(),
            saved_at=int(time.time() * 1000),
            verdict=verdict,
        )
        async with self._lock:
            self._reports.append(report)
            if len(self._reports) > self.max_reports:
                del self._reports[0]
        return report.id

    async def list_all(self, limit: int | None = None) -> list[Report]:
        """Return reports newest-first."""
        async with self._lock:
            reports = list(reversed(self._reports))
        return reports if limit is None else reports[: max(0, limit)]

    async def get(self, report_id: str) -> Report | None:
        async with self._lock:
            return next((r for r in self._reports if r.id == report_id), None)

    async def delete(self, report_id: str) -> bool:
        """Remove one report; returns False when the id is unknown."""
        async with self._lock:
            for index, report in enumerate(self._reports):
                if report.id == report_id:
                    del self._reports[index]
                    return True
        return False

    async def clear(self) -> int:
        """Purge every report and return how many were removed."""
        async with self._lock:
            removed = len(self._reports)
            self._reports.clear()
        return removed

    async def count(self) -> int:
        async with self._lock:
            return len(self._reports)

    async def search(self, query: str, limit: int = 500) -> list[Report]:
        """
        Case-insensitive match on file name, report id or fingerprint,
        newest-first.
        """
        needle = query.strip().lower()
        reports = await self.list_all()
        if needle:
            reports = [
                r for r in reports
                if needle in r.verdict.file_name.lower()
                or needle in r.id.lower()
                or needle in r.verdict.fingerprint
            ]
        return reports[: max(1, min(limit, 2000))]

    async def stats(self) -> dict:
        """
        Aggregate counts for the dashboard.

        Returns::

            {
                "total":                int,
                "fake":                 int,
                "suspicious":           int,
                "authentic":            int,
                "mean_authenticity":    float | None,
                "recent_scores":        list[int],   # last 10, oldest-first
            }
        """
        async with self._lock:
            reports = list(self._reports)

        by_class = {c: 0 for c in Classification}
        for report in reports:
            by_class[report.verdict.classification] += 1

        scores = [r.verdict.authenticity_score for r in reports]
        return {
            "total": len(reports),
            "fake": by_class[Classification.FAKE],
            "suspicious": by_class[Classification.SUSPICIOUS],
            "authentic": by_class[Classification.AUTHENTIC],
            "mean_authenticity": round(sum(scores) / len(scores), 2) if scores else None,
            "recent_scores": scores[-10:],
        }
