from __future__ import annotations

import csv
import json

from cinemetrics.export import export_analysis, export_frames, result_to_payload
from cinemetrics.models import AnalysisResult, AudioProfile, FrameSample, Shot


def _sample_result() -> AnalysisResult:
    return AnalysisResult(
        title="Heat",
        asl=4.0,
        total_shots=2,
        dominant_colors=("#1a2b3c",),
        shots=(
            Shot(
                id=1,
                start_time=0.0,
                end_time=2.0,
                duration=2.0,
                description="street wide",
                colors=("#1a2b3c", "#ffffff"),
                camera_movement="handheld",
                composition="rule of thirds",
            ),
            Shot(
                id=2,
                start_time=2.0,
                end_time=10.0,
                duration=8.0,
                description="close-up",
                colors=("#000000",),
                camera_movement="static",
                composition="centered",
            ),
        ),
        audio=AudioProfile(
            mood="tense",
            music_description="pulsing synth",
            dynamic_range="wide",
            key_events=("gunfire",),
        ),
        visual_summary="cold blue palette",
        frames=(FrameSample(b"\xff\xd8a", 3.333), FrameSample(b"\xff\xd8b", 6.6667)),
    )


def test_result_to_payload_uses_wire_field_names() -> None:
    payload = result_to_payload(_sample_result())

    assert payload["totalShots"] == 2
    assert payload["shots"][0]["cameraMovement"] == "handheld"
    assert payload["audio"]["keyEvents"] == ["gunfire"]
    assert payload["frames"] == [
        {"index": 1, "timestampSeconds": 3.333},
        {"index": 2, "timestampSeconds": 6.667},
    ]


def test_export_frames_writes_jpegs_in_capture_order(tmp_path) -> None:
    paths = export_frames(_sample_result().frames, tmp_path / "frames")

    assert [p.name for p in paths] == ["frame_01.jpg", "frame_02.jpg"]
    assert paths[1].read_bytes() == b"\xff\xd8b"


def test_export_analysis_writes_json_csv_and_frames(tmp_path) -> None:
    exported = export_analysis(_sample_result(), tmp_path, basename="heat")

    assert exported["json"].exists()
    assert exported["csv"].exists()
    assert sorted(p.name for p in exported["frames"].iterdir()) == ["frame_01.jpg", "frame_02.jpg"]

    payload = json.loads(exported["json"].read_text(encoding="utf-8"))
    assert payload["title"] == "Heat"
    assert payload["frames"][0]["path"] == "heat_frames/frame_01.jpg"

    with exported["csv"].open("r", encoding="utf-8", newline="") as handle:
        rows = list(csv.DictReader(handle))

    assert [row["pace"] for row in rows] == ["fast", "slow"]
    assert rows[0]["colors"] == "#1a2b3c|#ffffff"
    assert rows[1]["duration"] == "8.000"
