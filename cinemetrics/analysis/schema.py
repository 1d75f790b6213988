from __future__ import annotations

import json
from typing import Annotated, Any

from pydantic import BaseModel, ConfigDict, Field, StringConstraints, ValidationError, field_validator

from cinemetrics.errors import ErrorKind, PipelineError
from cinemetrics.models import AnalysisResult, AudioProfile, FrameSample, Shot

_STRICT = ConfigDict(strict=True, allow_inf_nan=False, frozen=True, extra="ignore")

HexColor = Annotated[str, StringConstraints(pattern=r"^#[0-9A-Fa-f]{6}$")]


def _integral(value: Any) -> Any:
    # Models often emit 4.0 for a count; accept it, reject 4.5.
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return value


class ShotPayload(BaseModel):
    model_config = _STRICT

    id: int
    start_time: float = Field(alias="startTime")
    end_time: float = Field(alias="endTime")
    duration: float
    description: str
    colors: list[HexColor]
    camera_movement: str = Field(alias="cameraMovement")
    composition: str

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_id(cls, value: Any) -> Any:
        return _integral(value)


class AudioPayload(BaseModel):
    model_config = _STRICT

    mood: str
    music_description: str = Field(alias="musicDescription")
    dynamic_range: str = Field(alias="dynamicRange")
    key_events: list[str] = Field(alias="keyEvents")


class FilmAnalysisPayload(BaseModel):
    """Wire contract returned by the analysis capability."""

    model_config = _STRICT

    title: str
    asl: float
    total_shots: int = Field(alias="totalShots")
    dominant_colors: list[HexColor] = Field(alias="dominantColors", min_length=1)
    shots: list[ShotPayload] = Field(min_length=1)
    audio: AudioPayload
    visual_summary: str = Field(alias="visualSummary")

    @field_validator("total_shots", mode="before")
    @classmethod
    def _coerce_total(cls, value: Any) -> Any:
        return _integral(value)


def parse_analysis_payload(raw: str | bytes | None) -> FilmAnalysisPayload:
    """Parse and validate raw response text; any defect raises ``MalformedResponse``."""

    if isinstance(raw, bytes):
        raw = raw.decode("utf-8", errors="replace")
    if raw is None or not raw.strip():
        raise PipelineError(ErrorKind.MALFORMED_RESPONSE, "Analysis service returned an empty response.")

    try:
        decoded = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise PipelineError(
            ErrorKind.MALFORMED_RESPONSE,
            f"Analysis response is not valid JSON: {exc}",
        ) from exc

    if not isinstance(decoded, dict):
        raise PipelineError(ErrorKind.MALFORMED_RESPONSE, "Analysis response must be a JSON object.")

    try:
        return FilmAnalysisPayload.model_validate(decoded)
    except ValidationError as exc:
        problems = "; ".join(
            f"{'.'.join(str(part) for part in error['loc']) or '<root>'}: {error['msg']}"
            for error in exc.errors()
        )
        raise PipelineError(
            ErrorKind.MALFORMED_RESPONSE,
            f"Analysis response failed schema validation ({problems}).",
        ) from exc


def build_analysis_result(
    payload: FilmAnalysisPayload,
    frames: tuple[FrameSample, ...] = (),
) -> AnalysisResult:
    return AnalysisResult(
        title=payload.title,
        asl=payload.asl,
        total_shots=payload.total_shots,
        dominant_colors=tuple(payload.dominant_colors),
        shots=tuple(
            Shot(
                id=shot.id,
                start_time=shot.start_time,
                end_time=shot.end_time,
                duration=shot.duration,
                description=shot.description,
                colors=tuple(shot.colors),
                camera_movement=shot.camera_movement,
                composition=shot.composition,
            )
            for shot in payload.shots
        ),
        audio=AudioProfile(
            mood=payload.audio.mood,
            music_description=payload.audio.music_description,
            dynamic_range=payload.audio.dynamic_range,
            key_events=tuple(payload.audio.key_events),
        ),
        visual_summary=payload.visual_summary,
        frames=frames,
    )
