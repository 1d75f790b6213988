from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from cinemetrics.errors import ErrorKind
from cinemetrics.models import AnalysisResult


class PipelineStage(str, Enum):
    IDLE = "Idle"
    VALIDATING = "Validating"
    SAMPLING = "Sampling"
    REQUESTING = "Requesting"
    ASSEMBLING = "Assembling"
    COMPLETE = "Complete"
    FAILED = "Failed"


STAGE_ORDER = (
    PipelineStage.IDLE,
    PipelineStage.VALIDATING,
    PipelineStage.SAMPLING,
    PipelineStage.REQUESTING,
    PipelineStage.ASSEMBLING,
    PipelineStage.COMPLETE,
)
TERMINAL_STAGES = frozenset({PipelineStage.COMPLETE, PipelineStage.FAILED})


@dataclass(frozen=True, slots=True)
class PipelineState:
    """Snapshot of one run; ``result`` is set only when Complete, error fields only when Failed."""

    stage: PipelineStage = PipelineStage.IDLE
    progress: int = 0
    result: AnalysisResult | None = None
    error_kind: ErrorKind | None = None
    message: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.stage in TERMINAL_STAGES

    @property
    def is_active(self) -> bool:
        return self.stage not in TERMINAL_STAGES and self.stage is not PipelineStage.IDLE


def can_transition(current: PipelineStage, target: PipelineStage) -> bool:
    """Stages only move forward; Failed is reachable from any non-terminal stage."""

    if current in TERMINAL_STAGES:
        return False
    if target is PipelineStage.FAILED:
        return True
    if target is current:
        # Progress updates within a stage.
        return True
    return STAGE_ORDER.index(target) > STAGE_ORDER.index(current)
