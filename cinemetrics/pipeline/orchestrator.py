from __future__ import annotations

import asyncio
import logging
from typing import Callable

from cinemetrics.analysis.client import AnalysisClient, create_analysis_client
from cinemetrics.analysis.request_builder import build_analysis_request
from cinemetrics.analysis.schema import build_analysis_result, parse_analysis_payload
from cinemetrics.config import Settings
from cinemetrics.errors import ErrorKind, PipelineError
from cinemetrics.ingest.video_source import VideoSource
from cinemetrics.models import AnalysisResult
from cinemetrics.pipeline.state import PipelineStage, PipelineState, can_transition
from cinemetrics.sampling.frame_sampler import CancellationToken, FrameSampler, JpegRasterizer

logger = logging.getLogger(__name__)

# Share of the 0-100 progress budget credited at the end of each stage.
PROGRESS_VALIDATED = 5
PROGRESS_SAMPLED = 60
PROGRESS_REQUEST_BUILT = 65
PROGRESS_RESPONSE_RECEIVED = 90
PROGRESS_COMPLETE = 100

DEFAULT_MAX_UPLOAD_BYTES = 100 * 1024 * 1024
DEFAULT_RUN_TIMEOUT_SECONDS = 180.0

StateObserver = Callable[[PipelineState], None]

# Kind reported when something other than a PipelineError escapes a stage.
_UNEXPECTED_ERROR_KINDS = {
    PipelineStage.SAMPLING: ErrorKind.DECODE_ERROR,
    PipelineStage.REQUESTING: ErrorKind.ANALYSIS_SERVICE_ERROR,
    PipelineStage.ASSEMBLING: ErrorKind.MALFORMED_RESPONSE,
}


class PipelineOrchestrator:
    """Runs validate -> sample -> request -> assemble for one video at a time.

    ``start`` never raises for a classified failure; it returns the terminal
    state (``Complete`` or ``Failed``). Observers registered with ``subscribe``
    receive every state change, including each progress step.
    """

    def __init__(
        self,
        sampler: FrameSampler,
        client: AnalysisClient,
        *,
        max_upload_bytes: int = DEFAULT_MAX_UPLOAD_BYTES,
        run_timeout_seconds: float = DEFAULT_RUN_TIMEOUT_SECONDS,
    ) -> None:
        self.sampler = sampler
        self.client = client
        self.max_upload_bytes = max_upload_bytes
        self.run_timeout_seconds = run_timeout_seconds

        self._state = PipelineState()
        self._observers: list[StateObserver] = []
        self._running = False
        self._task: asyncio.Task[AnalysisResult] | None = None
        self._token: CancellationToken | None = None
        self._video: VideoSource | None = None

    @classmethod
    def from_settings(cls, settings: Settings, client: AnalysisClient | None = None) -> PipelineOrchestrator:
        pipeline = settings.pipeline
        rasterizer = JpegRasterizer(quality=pipeline.jpeg_quality, max_width=pipeline.max_frame_width)
        return cls(
            FrameSampler(rasterizer, seek_timeout_seconds=pipeline.seek_timeout_seconds),
            client or create_analysis_client(settings.llm),
            max_upload_bytes=pipeline.max_upload_bytes,
            run_timeout_seconds=pipeline.run_timeout_seconds,
        )

    @property
    def state(self) -> PipelineState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._running

    def subscribe(self, observer: StateObserver) -> Callable[[], None]:
        """Register ``observer``; returns a callable that unsubscribes it."""

        self._observers.append(observer)

        def _unsubscribe() -> None:
            if observer in self._observers:
                self._observers.remove(observer)

        return _unsubscribe

    async def start(
        self,
        video: VideoSource,
        requested_frame_count: int,
        size_bytes: int,
        *,
        source_label: str = "Untitled",
    ) -> PipelineState:
        if self._running:
            raise PipelineError(ErrorKind.ALREADY_RUNNING, "An analysis run is already in progress.")

        self._running = True
        token = self._token = CancellationToken()
        self._video = video
        self._state = PipelineState()
        self._notify()
        logger.info("Starting analysis of %r with %d frames", source_label, requested_frame_count)

        self._task = asyncio.create_task(
            self._run(video, requested_frame_count, size_bytes, source_label, token)
        )
        try:
            result = await asyncio.wait_for(self._task, timeout=self.run_timeout_seconds)
        except PipelineError as exc:
            self._fail(exc.kind, exc.message)
        except asyncio.TimeoutError:
            self._fail(
                ErrorKind.RUN_TIMEOUT,
                f"Analysis did not finish within {self.run_timeout_seconds:g}s.",
            )
        except asyncio.CancelledError:
            self._fail(ErrorKind.CANCELLED, "Analysis was cancelled.")
            if not token.cancelled:
                raise
        except Exception as exc:
            logger.exception("Unexpected error during %s", self._state.stage.value)
            kind = _UNEXPECTED_ERROR_KINDS.get(self._state.stage, ErrorKind.DECODE_ERROR)
            self._fail(kind, f"{type(exc).__name__}: {exc}")
        else:
            self._transition(PipelineStage.COMPLETE, PROGRESS_COMPLETE, result=result)
            logger.info("Analysis of %r complete: %d shots", source_label, len(result.shots))
        finally:
            self._release_video()
            self._running = False
            self._task = None

        return self._state

    def cancel(self) -> bool:
        """Request cooperative cancellation; returns False when no run is active."""

        if not self._running or self._token is None or self._state.is_terminal:
            return False

        logger.info("Cancellation requested during %s", self._state.stage.value)
        self._token.cancel()
        if self._state.stage is PipelineStage.SAMPLING:
            self._release_video()

        task = self._task
        if task is not None and not task.done() and task is not _current_task():
            task.cancel()
        return True

    async def _run(
        self,
        video: VideoSource,
        requested_frame_count: int,
        size_bytes: int,
        source_label: str,
        token: CancellationToken,
    ) -> AnalysisResult:
        self._transition(PipelineStage.VALIDATING, 0)
        self._validate(requested_frame_count, size_bytes)

        self._transition(PipelineStage.SAMPLING, PROGRESS_VALIDATED)
        samples = await self.sampler.sample(
            video,
            requested_frame_count,
            on_progress=self._on_sample_progress,
            cancel_token=token,
        )
        if len(samples) != requested_frame_count:
            raise PipelineError(
                ErrorKind.DECODE_ERROR,
                f"Captured {len(samples)} of {requested_frame_count} requested frames.",
            )
        token.raise_if_cancelled()

        self._transition(PipelineStage.REQUESTING, PROGRESS_SAMPLED)
        analysis_request = build_analysis_request(samples, source_label)
        self._transition(PipelineStage.REQUESTING, PROGRESS_REQUEST_BUILT)

        try:
            raw_response = await self.client.analyze(analysis_request)
        except PipelineError:
            raise
        except Exception as exc:
            raise PipelineError(ErrorKind.ANALYSIS_SERVICE_ERROR, f"Analysis service failed: {exc}") from exc
        token.raise_if_cancelled()

        self._transition(PipelineStage.ASSEMBLING, PROGRESS_RESPONSE_RECEIVED)
        payload = parse_analysis_payload(raw_response)
        return build_analysis_result(payload, frames=samples)

    def _validate(self, requested_frame_count: int, size_bytes: int) -> None:
        check_upload_size(size_bytes, self.max_upload_bytes)
        if requested_frame_count < 1:
            raise PipelineError(ErrorKind.EMPTY_SAMPLE_SET, "At least one frame must be requested.")

    def _on_sample_progress(self, captured: int, total: int) -> None:
        span = PROGRESS_SAMPLED - PROGRESS_VALIDATED
        progress = PROGRESS_VALIDATED + (span * captured) // max(total, 1)
        self._transition(PipelineStage.SAMPLING, progress)

    def _transition(self, stage: PipelineStage, progress: int, *, result: AnalysisResult | None = None) -> None:
        current = self._state
        if not can_transition(current.stage, stage):
            return

        progress = max(progress, current.progress)
        if stage is current.stage and progress == current.progress:
            return

        if stage is not current.stage:
            logger.debug("Pipeline %s -> %s (%d%%)", current.stage.value, stage.value, progress)
        self._state = PipelineState(stage=stage, progress=progress, result=result)
        self._notify()

    def _fail(self, kind: ErrorKind, message: str) -> None:
        if self._state.is_terminal:
            return
        logger.warning("Analysis failed during %s: %s: %s", self._state.stage.value, kind.value, message)
        self._state = PipelineState(
            stage=PipelineStage.FAILED,
            progress=self._state.progress,
            error_kind=kind,
            message=message,
        )
        self._notify()

    def _notify(self) -> None:
        for observer in list(self._observers):
            observer(self._state)

    def _release_video(self) -> None:
        if self._video is not None:
            self._video.release()
            self._video = None


def check_upload_size(size_bytes: int, max_upload_bytes: int) -> None:
    """Raise ``ResourceTooLarge`` when ``size_bytes`` exceeds the ceiling."""

    if size_bytes > max_upload_bytes:
        raise PipelineError(
            ErrorKind.RESOURCE_TOO_LARGE,
            f"File too large ({size_bytes / 1_048_576:.1f} MB). "
            f"Please use a video under {max_upload_bytes / 1_048_576:.0f} MB.",
        )


def _current_task() -> asyncio.Task | None:
    try:
        return asyncio.current_task()
    except RuntimeError:
        return None
