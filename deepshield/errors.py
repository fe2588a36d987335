"""
deepshield.errors – failure taxonomy shared by the invoker and both drivers.

    TransientError            network / service hiccup, retried by the invoker
    QuotaExceededError        rate limit, retried then surfaced (live: cooldown)
    ServiceUnavailableError   transient failures outlasted the retry budget
    MalformedError            unusable request or response, never retried
    ResourceUnavailableError  frame source or artifact extraction failed

FrameNotReadyError is a readiness signal rather than a failure: the live
scheduler simply polls again later.
"""
from __future__ import annotations


class ForensicError(Exception):
    """Base class for every orchestration failure surfaced to callers."""


class TransientError(ForensicError):
    """A retryable failure of the remote forensic service."""


class QuotaExceededError(ForensicError):
    """
    The remote service rejected the call because of its request quota.

    Attributes:
        retry_after  Server-suggested wait in seconds, when one was sent.
        hint         Caller-facing advice for the presentation layer.
    """

    DEFAULT_HINT = "Forensic quota exhausted. Try again later or reduce the sampling rate."

    def __init__(
        self,
        message: str | None = None,
        *,
        retry_after: float | None = None,
        hint: str | None = None,
    ) -> None:
        super().__init__(message or "forensic service quota exceeded")
        self.retry_after = max(0.0, float(retry_after)) if retry_after is not None else None
        self.hint = hint or self.DEFAULT_HINT


class ServiceUnavailableError(ForensicError):
    """Transient failures persisted beyond the retry budget."""


class MalformedError(ForensicError):
    """The request was rejected or the response could not be parsed."""


class ResourceUnavailableError(ForensicError):
    """A frame or artifact payload could not be produced."""


class FrameSourceLostError(ResourceUnavailableError):
    """The live frame source ended and will not produce more frames."""


class FrameNotReadyError(Exception):
    """The live frame source has no decodable frame yet."""


ERROR_CATEGORIES: tuple[tuple[type[BaseException], str], ...] = (
    (QuotaExceededError, "quota"),
    (ServiceUnavailableError, "unavailable"),
    (TransientError, "transient"),
    (MalformedError, "malformed"),
    (ResourceUnavailableError, "resource"),
    (TimeoutError, "timeout"),
    (ConnectionError, "connection"),
)


def classify_error(exc: BaseException) -> str:
    """Map an exception to a short category label for status payloads and logs."""
    for cls, label in ERROR_CATEGORIES:
        if isinstance(exc, cls):
            return label
    return "unknown"


__all__ = [
    "ERROR_CATEGORIES",
    "ForensicError",
    "FrameNotReadyError",
    "FrameSourceLostError",
    "MalformedError",
    "QuotaExceededError",
    "ResourceUnavailableError",
    "ServiceUnavailableError",
    "TransientError",
    "classify_error",
]
