from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Any, NoReturn

import typer

from cinemetrics.analysis.client import DEFAULT_GEMINI_MODEL, create_analysis_client
from cinemetrics.config import LLMSettings, Settings, load_settings
from cinemetrics.errors import PipelineError
from cinemetrics.export import export_analysis, export_frames, result_to_payload
from cinemetrics.ingest.probe import probe_video
from cinemetrics.ingest.video_source import open_video_source
from cinemetrics.logging_config import configure_logging
from cinemetrics.pipeline.orchestrator import PipelineOrchestrator, check_upload_size
from cinemetrics.pipeline.state import PipelineStage, PipelineState
from cinemetrics.sampling.frame_sampler import FrameSampler, JpegRasterizer

app = typer.Typer(help="Sample frames from a video and run a cinematography analysis on them.")
config_app = typer.Typer(help="Configuration commands.")
ingest_app = typer.Typer(help="Ingest commands.")

app.add_typer(config_app, name="config")
app.add_typer(ingest_app, name="ingest")

logger = logging.getLogger(__name__)

CONFIG_OPTION = typer.Option(
    Path("configs/default.yaml"),
    "--config",
    "-c",
    envvar="CINEMETRICS_CONFIG",
    help="Path to YAML configuration file.",
)


def _bootstrap(config_path: Path) -> Settings:
    settings = load_settings(config_path)
    configure_logging(settings.logging)
    logger.debug("Loaded runtime settings from %s", config_path)
    return settings


def _resolve_video(video_path: str) -> Path:
    resolved = Path(video_path).expanduser().resolve()
    if not resolved.exists():
        raise ValueError(f"Video file not found: {resolved}")
    return resolved


def _probe_duration(video_path: Path) -> float | None:
    try:
        return probe_video(video_path)["duration_seconds"]
    except RuntimeError as exc:
        logger.warning("ffprobe unavailable (%s); relying on container duration from OpenCV.", exc)
        return None


def _llm_overrides(settings: Settings, *, provider: str | None, model: str | None) -> LLMSettings:
    if not provider and not model:
        return settings.llm

    overrides: dict[str, Any] = {}
    if provider:
        overrides["provider"] = provider
        if provider == "gemini" and not model:
            overrides["model"] = DEFAULT_GEMINI_MODEL
    if model:
        overrides["model"] = model
    return LLMSettings.model_validate({**settings.llm.model_dump(), **overrides})


def _fail(exc: Exception) -> NoReturn:
    logger.error("Command failed: %s", exc)
    message = exc.message if isinstance(exc, PipelineError) else str(exc)
    typer.echo(f"Error: {message}", err=True)
    raise typer.Exit(code=1) from exc


def _echo_state(state: PipelineState) -> None:
    if state.stage is PipelineStage.IDLE:
        return
    if state.stage is PipelineStage.FAILED:
        kind = state.error_kind.value if state.error_kind else "Unknown"
        typer.echo(f"[{state.stage.value}] {kind} at {state.progress}%", err=True)
        return
    typer.echo(f"[{state.stage.value}] {state.progress}%", err=True)


@config_app.command("show")
def show_config(config_path: Path = CONFIG_OPTION) -> None:
    """Print resolved runtime configuration."""

    settings = _bootstrap(config_path)
    typer.echo(json.dumps(settings.model_dump(mode="json"), indent=2))


@ingest_app.command("probe")
def probe(video_path: str, config_path: Path = CONFIG_OPTION) -> None:
    """Print ffprobe metadata (duration, dimensions, size) for a video."""

    _bootstrap(config_path)
    try:
        result = probe_video(_resolve_video(video_path))
    except (RuntimeError, ValueError) as exc:
        _fail(exc)
    typer.echo(json.dumps(result, indent=2))


@app.command("sample")
def sample(
    video_path: str,
    frames: int | None = typer.Option(None, "--frames", "-n", help="Number of frames. Defaults to pipeline.frame_count."),
    output_dir: Path | None = typer.Option(None, "--output-dir", "-o", help="Directory for frame JPEGs."),
    config_path: Path = CONFIG_OPTION,
) -> None:
    """Sample evenly spaced frames without calling the analysis service."""

    settings = _bootstrap(config_path)
    frame_count = frames if frames is not None else settings.pipeline.frame_count
    sampler = FrameSampler(
        JpegRasterizer(quality=settings.pipeline.jpeg_quality, max_width=settings.pipeline.max_frame_width),
        seek_timeout_seconds=settings.pipeline.seek_timeout_seconds,
    )

    def _on_progress(captured: int, total: int) -> None:
        typer.echo(f"[{captured}/{total}] frame captured", err=True)

    try:
        resolved = _resolve_video(video_path)
        with open_video_source(resolved, duration_seconds=_probe_duration(resolved)) as source:
            samples = asyncio.run(sampler.sample(source, frame_count, on_progress=_on_progress))
    except (PipelineError, RuntimeError, ValueError) as exc:
        _fail(exc)

    target_dir = (output_dir or settings.pipeline.output_dir) / f"{resolved.stem}_frames"
    paths = export_frames(samples, target_dir)
    index: list[dict[str, Any]] = [
        {"index": idx, "timestamp_seconds": round(item.timestamp_seconds, 3), "path": str(path)}
        for idx, (item, path) in enumerate(zip(samples, paths), start=1)
    ]
    typer.echo(json.dumps(index, indent=2))


@app.command("analyze")
def analyze(
    video_path: str,
    frames: int | None = typer.Option(None, "--frames", "-n", help="Number of frames. Defaults to pipeline.frame_count."),
    provider: str | None = typer.Option(None, help="Analysis provider override: ollama or gemini."),
    model: str | None = typer.Option(None, help="Model override for the selected provider."),
    output_dir: Path | None = typer.Option(None, "--output-dir", "-o", help="Also export JSON/CSV/frames here."),
    config_path: Path = CONFIG_OPTION,
) -> None:
    """Run the full sample -> analyze pipeline and print the result JSON."""

    settings = _bootstrap(config_path)
    frame_count = frames if frames is not None else settings.pipeline.frame_count

    try:
        llm_settings = _llm_overrides(settings, provider=provider, model=model)
        resolved = _resolve_video(video_path)
        size_bytes = resolved.stat().st_size
        # Reject oversized input before ffprobe or OpenCV touch the container.
        check_upload_size(size_bytes, settings.pipeline.max_upload_bytes)
        orchestrator = PipelineOrchestrator.from_settings(settings, client=create_analysis_client(llm_settings))
        orchestrator.subscribe(_echo_state)
        with open_video_source(resolved, duration_seconds=_probe_duration(resolved)) as source:
            final_state = asyncio.run(
                orchestrator.start(
                    source,
                    frame_count,
                    size_bytes,
                    source_label=resolved.name,
                )
            )
    except (PipelineError, RuntimeError, ValueError) as exc:
        _fail(exc)

    if final_state.result is None:
        logger.error("Pipeline failed: %s", final_state.message)
        typer.echo(f"Error: {final_state.message}", err=True)
        raise typer.Exit(code=1)

    output: dict[str, Any] = {"status": "ok", "video_path": str(resolved), "analysis": result_to_payload(final_state.result)}
    if output_dir is not None:
        exported = export_analysis(final_state.result, output_dir, basename=resolved.stem)
        output["outputs"] = {key: str(path) for key, path in exported.items()}
    typer.echo(json.dumps(output, indent=2, ensure_ascii=False))


if __name__ == "__main__":
    app()
