from __future__ import annotations

from typing import Sequence

from cinemetrics.errors import ErrorKind, PipelineError
from cinemetrics.models import AnalysisRequest, FrameSample


def build_analysis_request(samples: Sequence[FrameSample], source_label: str) -> AnalysisRequest:
    """Package captured frames for the analysis capability; zero frames is an error."""

    if not samples:
        raise PipelineError(ErrorKind.EMPTY_SAMPLE_SET, "No frames were captured; refusing to send an empty request.")
    return AnalysisRequest(samples=tuple(samples), source_label=source_label)
