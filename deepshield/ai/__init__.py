"""deepshield.ai – forensic classification sub-package."""
from .models import (
    AnalysisRequest,
    AnalysisVerdict,
    Anomaly,
    Classification,
    ContentMetadata,
    ForensicClassifier,
    ForensicMetrics,
    ForensicScores,
    MediaKind,
)
from .verdict_parser import ParsedVerdict, ParseFailure, parse_verdict
from .invoker import AnalysisInvoker, content_fingerprint
from .gemini_client import GeminiForensicClassifier

__all__ = [
    "AnalysisInvoker",
    "AnalysisRequest",
    "AnalysisVerdict",
    "Anomaly",
    "Classification",
    "ContentMetadata",
    "ForensicClassifier",
    "ForensicMetrics",
    "ForensicScores",
    "GeminiForensicClassifier",
    "MediaKind",
    "ParseFailure",
    "ParsedVerdict",
    "content_fingerprint",
    "parse_verdict",
]
