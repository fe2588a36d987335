"""deepshield.db – in-memory forensic report store."""
from .database import MAX_REPORTS, Report, ReportStore

__all__ = ["MAX_REPORTS", "Report", "ReportStore"]
