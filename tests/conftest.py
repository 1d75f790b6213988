from __future__ import annotations

import asyncio
import copy
import json
from typing import Any, Callable

import numpy as np
import pytest

from cinemetrics.errors import ErrorKind, PipelineError
from cinemetrics.models import AnalysisRequest

VALID_PAYLOAD: dict[str, Any] = {
    "title": "T",
    "asl": 5,
    "totalShots": 4,
    "dominantColors": ["#000000"],
    "shots": [
        {
            "id": idx,
            "startTime": (idx - 1) * 7.5,
            "endTime": idx * 7.5,
            "duration": 7.5,
            "description": f"shot {idx}",
            "colors": ["#101010", "#f0f0f0"],
            "cameraMovement": "static",
            "composition": "centered",
        }
        for idx in range(1, 5)
    ],
    "audio": {
        "mood": "tense",
        "musicDescription": "low strings",
        "dynamicRange": "wide",
        "keyEvents": ["door slam"],
    },
    "visualSummary": "S",
}


class FakeVideoSource:
    """Synthetic single-playhead source; every frame is filled with its second."""

    def __init__(
        self,
        duration_seconds: float | None = 30.0,
        *,
        width: int = 64,
        height: int = 36,
        hang_on_seek: int | None = None,
        blank_on_seek: int | None = None,
    ) -> None:
        self._duration_seconds = duration_seconds
        self._width = width
        self._height = height
        self.hang_on_seek = hang_on_seek
        self.blank_on_seek = blank_on_seek
        self.seeks: list[float] = []
        self.release_count = 0
        self._position: float | None = None

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
        return self.release_count > 0

    async def seek(self, time_seconds: float) -> None:
        if self.released:
            raise AssertionError("seek issued after release")
        self.seeks.append(time_seconds)
        if self.hang_on_seek == len(self.seeks):
            await asyncio.sleep(3600)
        await asyncio.sleep(0)
        self._position = time_seconds

    def current_frame(self) -> Any:
        if self._position is None or self.blank_on_seek == len(self.seeks):
            raise PipelineError(ErrorKind.DECODE_ERROR, "No decoded frame is available at the playhead.")
        return np.full((self._height, self._width, 3), int(self._position) % 256, dtype=np.uint8)

    def release(self) -> None:
        self.release_count += 1


class StubRasterizer:
    def rasterize(self, frame: Any) -> bytes:
        return b"jpeg:" + bytes([int(frame[0, 0, 0])])


class FakeAnalysisClient:
    """Records requests; returns ``response`` or raises ``error``. Optionally waits on ``gate``."""

    def __init__(
        self,
        response: str | None = None,
        *,
        error: BaseException | None = None,
        gate: asyncio.Event | None = None,
    ) -> None:
        self.response = json.dumps(VALID_PAYLOAD) if response is None else response
        self.error = error
        self.gate = gate
        self.requests: list[AnalysisRequest] = []
        self.entered: asyncio.Event | None = None

    async def analyze(self, analysis_request: AnalysisRequest) -> str:
        self.requests.append(analysis_request)
        if self.entered is not None:
            self.entered.set()
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return self.response


@pytest.fixture
def valid_payload() -> dict[str, Any]:
    return copy.deepcopy(VALID_PAYLOAD)


@pytest.fixture
def make_video() -> Callable[..., FakeVideoSource]:
    return FakeVideoSource


@pytest.fixture
def stub_rasterizer() -> StubRasterizer:
    return StubRasterizer()


@pytest.fixture
def make_client() -> Callable[..., FakeAnalysisClient]:
    return FakeAnalysisClient
