from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    """Classified, terminal failure kinds surfaced by a pipeline run."""

    RESOURCE_TOO_LARGE = "ResourceTooLarge"
    INVALID_DURATION = "InvalidDuration"
    SEEK_TIMEOUT = "SeekTimeout"
    DECODE_ERROR = "DecodeError"
    EMPTY_SAMPLE_SET = "EmptySampleSet"
    ANALYSIS_SERVICE_ERROR = "AnalysisServiceError"
    MALFORMED_RESPONSE = "MalformedResponse"
    CANCELLED = "Cancelled"
    RUN_TIMEOUT = "RunTimeout"
    ALREADY_RUNNING = "AlreadyRunning"


class PipelineError(RuntimeError):
    """Failure carrying its kind and a message suitable for direct display."""

    def __init__(self, kind: ErrorKind, message: str) -> None:
        super().__init__(message)
        self.kind = kind
        self.message = message

    def __str__(self) -> str:
        return f"{self.kind.value}: {self.message}"
