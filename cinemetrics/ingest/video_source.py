from __future__ import annotations

import asyncio
import logging
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator, Protocol

from cinemetrics.errors import ErrorKind, PipelineError

logger = logging.getLogger(__name__)


class VideoSource(Protocol):
    """Decodable media handle with a single playhead."""

    @property
    def duration_seconds(self) -> float | None: ...

    @property
    def width(self) -> int: ...

    @property
    def height(self) -> int: ...

    @property
    def released(self) -> bool: ...

    async def seek(self, time_seconds: float) -> None:
        """Move the playhead; resolves once the frame at ``time_seconds`` is ready."""
        ...

    def current_frame(self) -> Any:
        """Return the decoded frame under the playhead (BGR ndarray)."""
        ...

    def release(self) -> None:
        """Free the decoder. Idempotent and never blocks on an in-flight seek."""
        ...


class OpenCvVideoSource:
    """``cv2.VideoCapture`` adapter. Seeks run on a worker thread."""

    def __init__(self, video_path: str | Path, *, duration_seconds: float | None = None) -> None:
        import cv2

        self._cv2 = cv2
        self.video_path = Path(video_path).expanduser().resolve()
        self._capture = cv2.VideoCapture(str(self.video_path))
        if not self._capture.isOpened():
            self._capture.release()
            raise PipelineError(
                ErrorKind.DECODE_ERROR,
                f"Unable to open video for decoding: {self.video_path}",
            )

        self._lock = threading.Lock()
        self._frame: Any = None
        self._release_requested = False
        self._closed = False
        self._width = int(self._capture.get(cv2.CAP_PROP_FRAME_WIDTH) or 0)
        self._height = int(self._capture.get(cv2.CAP_PROP_FRAME_HEIGHT) or 0)
        self._duration_seconds = duration_seconds or self._container_duration()

    @property
    def duration_seconds(self) -> float | None:
        return self._duration_seconds

    @property
    def width(self) -> int:
        return self._width

    @property
    def height(self) -> int:
        return self._height

    @property
    def released(self) -> bool:
        return self._release_requested

    async def seek(self, time_seconds: float) -> None:
        await asyncio.to_thread(self._seek_and_decode, time_seconds)

    def current_frame(self) -> Any:
        if self._frame is None:
            raise PipelineError(ErrorKind.DECODE_ERROR, "No decoded frame is available at the playhead.")
        return self._frame

    def release(self) -> None:
        """Mark the handle released without blocking the caller.

        If a seek is mid-read on the worker thread, that worker closes the
        capture as soon as its read returns.
        """

        self._release_requested = True
        if not self._lock.acquire(blocking=False):
            logger.debug("Read in flight for %s; capture closes when it returns", self.video_path)
            return
        try:
            self._close_capture()
        finally:
            self._lock.release()

    def _seek_and_decode(self, time_seconds: float) -> None:
        try:
            with self._lock:
                if self._release_requested:
                    raise PipelineError(ErrorKind.CANCELLED, "Video source was released before the seek settled.")
                self._capture.set(self._cv2.CAP_PROP_POS_MSEC, time_seconds * 1000.0)
                ok, frame = self._capture.read()
                self._frame = frame if ok else None
        finally:
            # release() may have given up on the lock while the read was running.
            if self._release_requested:
                with self._lock:
                    self._close_capture()

    def _close_capture(self) -> None:
        if self._closed:
            return
        self._capture.release()
        self._closed = True
        self._frame = None
        logger.debug("Released video capture for %s", self.video_path)

    def _container_duration(self) -> float | None:
        frame_count = float(self._capture.get(self._cv2.CAP_PROP_FRAME_COUNT) or 0.0)
        fps = float(self._capture.get(self._cv2.CAP_PROP_FPS) or 0.0)
        if frame_count <= 0 or fps <= 0:
            return None
        return frame_count / fps


@contextmanager
def open_video_source(video_path: str | Path, *, duration_seconds: float | None = None) -> Iterator[OpenCvVideoSource]:
    """Scoped acquisition of a decoding handle; released on every exit path."""

    source = OpenCvVideoSource(video_path, duration_seconds=duration_seconds)
    try:
        yield source
    finally:
        source.release()
