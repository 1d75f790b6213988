from __future__ import annotations

import csv
import json
from pathlib import Path
from typing import Any, Sequence

from cinemetrics.models import AnalysisResult, FrameSample


def result_to_payload(result: AnalysisResult, frame_paths: Sequence[str] | None = None) -> dict[str, Any]:
    """Render a result in the wire schema's camelCase, plus frame references."""

    frame_paths = list(frame_paths or [])
    return {
        "title": result.title,
        "asl": result.asl,
        "totalShots": result.total_shots,
        "dominantColors": list(result.dominant_colors),
        "shots": [
            {
                "id": shot.id,
                "startTime": shot.start_time,
                "endTime": shot.end_time,
                "duration": shot.duration,
                "description": shot.description,
                "colors": list(shot.colors),
                "cameraMovement": shot.camera_movement,
                "composition": shot.composition,
            }
            for shot in result.shots
        ],
        "audio": {
            "mood": result.audio.mood,
            "musicDescription": result.audio.music_description,
            "dynamicRange": result.audio.dynamic_range,
            "keyEvents": list(result.audio.key_events),
        },
        "visualSummary": result.visual_summary,
        "frames": [
            {
                "index": idx,
                "timestampSeconds": round(frame.timestamp_seconds, 3),
                **({"path": frame_paths[idx - 1]} if idx <= len(frame_paths) else {}),
            }
            for idx, frame in enumerate(result.frames, start=1)
        ],
    }


def export_frames(frames: Sequence[FrameSample], output_dir: str | Path) -> list[Path]:
    """Write each sample as ``frame_XX.jpg`` in capture order."""

    frames_dir = Path(output_dir)
    frames_dir.mkdir(parents=True, exist_ok=True)

    paths: list[Path] = []
    for idx, frame in enumerate(frames, start=1):
        path = frames_dir / f"frame_{idx:02d}.jpg"
        path.write_bytes(frame.encoded_image)
        paths.append(path)
    return paths


def export_analysis(
    result: AnalysisResult,
    output_dir: str | Path,
    *,
    basename: str = "analysis",
) -> dict[str, Path]:
    """Export the result JSON, a per-shot CSV and the sampled frames for a viewer."""

    resolved_output_dir = Path(output_dir)
    resolved_output_dir.mkdir(parents=True, exist_ok=True)

    frames_dir = resolved_output_dir / f"{basename}_frames"
    frame_paths = export_frames(result.frames, frames_dir)

    json_path = resolved_output_dir / f"{basename}.json"
    csv_path = resolved_output_dir / f"{basename}_shots.csv"

    payload = result_to_payload(result, [str(path.relative_to(resolved_output_dir)) for path in frame_paths])
    json_path.write_text(json.dumps(payload, indent=2, ensure_ascii=False), encoding="utf-8")
    _write_shots_csv(result, csv_path)

    return {
        "json": json_path,
        "csv": csv_path,
        "frames": frames_dir,
    }


def _write_shots_csv(result: AnalysisResult, path: Path) -> None:
    fields = [
        "id",
        "start_time",
        "end_time",
        "duration",
        "pace",
        "camera_movement",
        "composition",
        "colors",
        "description",
    ]

    with path.open("w", newline="", encoding="utf-8") as handle:
        writer = csv.DictWriter(handle, fieldnames=fields)
        writer.writeheader()
        for shot in result.shots:
            writer.writerow(
                {
                    "id": shot.id,
                    "start_time": f"{shot.start_time:.3f}",
                    "end_time": f"{shot.end_time:.3f}",
                    "duration": f"{shot.duration:.3f}",
                    "pace": _pace_label(shot.duration, result.asl),
                    "camera_movement": shot.camera_movement,
                    "composition": shot.composition,
                    "colors": "|".join(shot.colors),
                    "description": shot.description,
                }
            )


def _pace_label(duration: float, asl: float) -> str:
    if asl <= 0:
        return "unknown"
    ratio = duration / asl
    if ratio <= 0.6:
        return "fast"
    if ratio >= 1.5:
        return "slow"
    return "average"
