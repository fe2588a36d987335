"""
deepshield.monitor.frame_source – live frame sources for the sampling loop.

A frame source distinguishes "no decodable frame yet" (FrameNotReadyError,
poll again shortly) from "the tap is gone" (FrameSourceLostError, end the
session).
"""
from __future__ import annotations

import time
from typing import Literal, Protocol

from deepshield.errors import FrameNotReadyError, FrameSourceLostError, ResourceUnavailableError

SourceKind = Literal["CAMERA", "DISPLAY"]


class FrameSource(Protocol):
    kind: SourceKind

    async def acquire(self) -> None: ...

    def snapshot(self) -> bytes: ...

    def release(self) -> None: ...


class PushFrameSource:
    """
    Frame source fed by the client: each pushed JPEG/PNG replaces the
    previous one and ``snapshot`` returns the most recent frame.

    Frames older than ``max_frame_age_s`` are treated as not ready, so a
    stalled capture does not get re-analysed forever.
    """

    def __init__(self, kind: SourceKind = "CAMERA", max_frame_age_s: float = 10.0) -> None:
        self.kind = kind
        self.max_frame_age_s = max_frame_age_s
        self._frame: bytes | None = None
        self._frame_at = 0.0
        self._acquired = False
        self._lost = False

    async def acquire(self) -> None:
        if self._lost:
            raise ResourceUnavailableError(f"{self.kind} source already ended")
        self._acquired = True

    def push(self, frame: bytes) -> None:
        if self._lost:
            raise FrameSourceLostError(f"{self.kind} source has ended")
        if not frame:
            return
        self._frame = bytes(frame)
        self._frame_at = time.monotonic()

    def end(self) -> None:
        """Signal that the capture track ended on the client side."""
        self._lost = True
        self._frame = None

    def snapshot(self) -> bytes:
        if self._lost or not self._acquired:
            raise FrameSourceLostError(f"{self.kind} source is not available")
        if self._frame is None:
            raise FrameNotReadyError(f"{self.kind} source has not produced a frame yet")
        if time.monotonic() - self._frame_at > self.max_frame_age_s:
            raise FrameNotReadyError(f"{self.kind} source frame is stale")
        return self._frame

    def release(self) -> None:
        self._acquired = False
        self._frame = None
