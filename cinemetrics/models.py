from __future__ import annotations

import base64
from dataclasses import dataclass, field


@dataclass(frozen=True, slots=True)
class FrameSample:
    """One encoded still captured at a timestamp of the source video."""

    encoded_image: bytes
    timestamp_seconds: float

    def to_base64(self) -> str:
        return base64.b64encode(self.encoded_image).decode("ascii")


@dataclass(frozen=True, slots=True)
class AnalysisRequest:
    """Ordered samples plus a label, as handed to the analysis capability."""

    samples: tuple[FrameSample, ...]
    source_label: str
    mime_type: str = "image/jpeg"

    def encoded_images(self) -> list[str]:
        return [sample.to_base64() for sample in self.samples]


@dataclass(frozen=True, slots=True)
class Shot:
    id: int
    start_time: float
    end_time: float
    duration: float
    description: str
    colors: tuple[str, ...]
    camera_movement: str
    composition: str


@dataclass(frozen=True, slots=True)
class AudioProfile:
    mood: str
    music_description: str
    dynamic_range: str
    key_events: tuple[str, ...]


@dataclass(frozen=True, slots=True)
class AnalysisResult:
    """Validated film analysis, annotated with the frames it was produced from."""

    title: str
    asl: float
    total_shots: int
    dominant_colors: tuple[str, ...]
    shots: tuple[Shot, ...]
    audio: AudioProfile
    visual_summary: str
    frames: tuple[FrameSample, ...] = field(default=(), repr=False)
