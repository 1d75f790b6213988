from __future__ import annotations

import asyncio
import logging
import math
from typing import Any, Callable, Protocol

from cinemetrics.errors import ErrorKind, PipelineError
from cinemetrics.ingest.video_source import VideoSource
from cinemetrics.models import FrameSample

logger = logging.getLogger(__name__)

DEFAULT_JPEG_QUALITY = 70
DEFAULT_SEEK_TIMEOUT_SECONDS = 10.0

ProgressCallback = Callable[[int, int], None]


class Rasterizer(Protocol):
    def rasterize(self, frame: Any) -> bytes: ...


class CancellationToken:
    """Cooperative cancellation flag checked at each suspension point."""

    def __init__(self) -> None:
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        self._cancelled = True

    def raise_if_cancelled(self) -> None:
        if self._cancelled:
            raise PipelineError(ErrorKind.CANCELLED, "Analysis was cancelled.")


class JpegRasterizer:
    """Encode BGR frames as JPEG, downscaling wide frames to bound payload size."""

    def __init__(
        self,
        quality: int = DEFAULT_JPEG_QUALITY,
        max_width: int = 1280,
        cv2_module: Any | None = None,
    ) -> None:
        if cv2_module is None:
            import cv2 as cv2_module

        self.quality = quality
        self.max_width = max_width
        self._cv2 = cv2_module

    def rasterize(self, frame: Any) -> bytes:
        if frame is None or getattr(frame, "size", 0) == 0:
            raise PipelineError(ErrorKind.DECODE_ERROR, "Decoded frame is empty.")

        try:
            frame = _resize_for_payload(frame, self.max_width, self._cv2)
            ok, buffer = self._cv2.imencode(".jpg", frame, [self._cv2.IMWRITE_JPEG_QUALITY, self.quality])
        except self._cv2.error as exc:
            raise PipelineError(ErrorKind.DECODE_ERROR, f"Frame could not be encoded as JPEG: {exc}") from exc
        if not ok:
            raise PipelineError(ErrorKind.DECODE_ERROR, "Frame could not be encoded as JPEG.")
        return bytes(buffer)


def _resize_for_payload(frame: Any, max_width: int, cv2_module: Any) -> Any:
    if max_width <= 0:
        return frame

    height, width = frame.shape[:2]
    if width <= max_width:
        return frame

    target_height = max(int(round(height * (max_width / width))), 1)
    return cv2_module.resize(frame, (max_width, target_height), interpolation=cv2_module.INTER_AREA)


def sample_timestamps(duration_seconds: float | None, count: int) -> list[float]:
    """Interior boundaries of ``count + 1`` equal segments of ``(0, duration)``.

    ``t_i = i * D / (count + 1)`` for ``i = 1..count``; never 0 and never ``D``.
    """

    if duration_seconds is None or not math.isfinite(duration_seconds) or duration_seconds <= 0:
        raise PipelineError(
            ErrorKind.INVALID_DURATION,
            f"Video duration is unavailable or not positive: {duration_seconds!r}",
        )
    if count < 1:
        raise PipelineError(ErrorKind.EMPTY_SAMPLE_SET, "At least one frame must be requested.")

    timestamps = [i * duration_seconds / (count + 1) for i in range(1, count + 1)]

    bounds = [0.0, *timestamps, duration_seconds]
    if any(later <= earlier for earlier, later in zip(bounds, bounds[1:])):
        raise PipelineError(
            ErrorKind.INVALID_DURATION,
            f"Video duration {duration_seconds!r}s is too short for {count} distinct frames.",
        )
    return timestamps


class FrameSampler:
    """Sequential seek-and-capture over a single playhead."""

    def __init__(
        self,
        rasterizer: Rasterizer,
        *,
        seek_timeout_seconds: float = DEFAULT_SEEK_TIMEOUT_SECONDS,
    ) -> None:
        self.rasterizer = rasterizer
        self.seek_timeout_seconds = seek_timeout_seconds

    async def sample(
        self,
        video: VideoSource,
        count: int,
        *,
        on_progress: ProgressCallback | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> tuple[FrameSample, ...]:
        """Capture ``count`` frames in increasing timestamp order, then release ``video``."""

        token = cancel_token or CancellationToken()
        try:
            timestamps = sample_timestamps(video.duration_seconds, count)
            samples: list[FrameSample] = []

            for index, timestamp in enumerate(timestamps, start=1):
                token.raise_if_cancelled()
                await self._seek(video, timestamp)
                token.raise_if_cancelled()

                encoded = self.rasterizer.rasterize(video.current_frame())
                samples.append(FrameSample(encoded_image=encoded, timestamp_seconds=timestamp))
                logger.debug("Captured frame %d/%d at %.3fs (%d bytes)", index, count, timestamp, len(encoded))

                if on_progress is not None:
                    on_progress(index, count)

            return tuple(samples)
        finally:
            video.release()

    async def _seek(self, video: VideoSource, timestamp: float) -> None:
        try:
            await asyncio.wait_for(video.seek(timestamp), timeout=self.seek_timeout_seconds)
        except asyncio.TimeoutError as exc:
            raise PipelineError(
                ErrorKind.SEEK_TIMEOUT,
                f"Seek to {timestamp:.3f}s did not settle within {self.seek_timeout_seconds:g}s.",
            ) from exc
