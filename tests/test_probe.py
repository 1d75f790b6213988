from __future__ import annotations

import json
import subprocess
from pathlib import Path

import pytest

from cinemetrics.ingest.probe import _run_ffprobe, probe_video


def test_run_ffprobe_wraps_missing_binary_error(tmp_path: Path) -> None:
    video_path = tmp_path / "sample.mp4"
    video_path.write_bytes(b"data")

    def _raise_missing(*args: object, **kwargs: object) -> subprocess.CompletedProcess[str]:
        raise FileNotFoundError("ffprobe")

    with pytest.MonkeyPatch.context() as mp:
        mp.setattr(subprocess, "run", _raise_missing)
        with pytest.raises(RuntimeError, match="ffprobe executable was not found"):
            _run_ffprobe(video_path)


def test_run_ffprobe_reports_shared_library_issue(tmp_path: Path) -> None:
    video_path = tmp_path / "sample.mp4"
    video_path.write_bytes(b"data")

    def _raise_process_error(*args: object, **kwargs: object) -> subprocess.CompletedProcess[str]:
        raise subprocess.CalledProcessError(
            returncode=127,
            cmd=["ffprobe", str(video_path)],
            output="",
            stderr=(
                "ffprobe: error while loading shared libraries: "
                "libSvtAv1Enc.so.4: cannot open shared object file: No such file or directory"
            ),
        )

    with pytest.MonkeyPatch.context() as mp:
        mp.setattr(subprocess, "run", _raise_process_error)
        with pytest.raises(RuntimeError, match="failed to start because required shared libraries are missing"):
            _run_ffprobe(video_path)


def test_run_ffprobe_wraps_other_called_process_error(tmp_path: Path) -> None:
    video_path = tmp_path / "sample.mp4"
    video_path.write_bytes(b"data")

    def _raise_process_error(*args: object, **kwargs: object) -> subprocess.CompletedProcess[str]:
        raise subprocess.CalledProcessError(
            returncode=1,
            cmd=["ffprobe", str(video_path)],
            output="",
            stderr="invalid data found when processing input",
        )

    with pytest.MonkeyPatch.context() as mp:
        mp.setattr(subprocess, "run", _raise_process_error)
        with pytest.raises(RuntimeError, match="ffprobe failed while probing media file"):
            _run_ffprobe(video_path)


def test_probe_video_normalizes_first_video_stream(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    video_path = tmp_path / "sample.mp4"
    video_path.write_bytes(b"0123456789")

    ffprobe_output = {
        "format": {"format_name": "mov,mp4,m4a", "duration": "30.000000", "size": "N/A"},
        "streams": [
            {
                "codec_type": "video",
                "codec_name": "h264",
                "width": 1920,
                "height": 1080,
                "avg_frame_rate": "24000/1001",
            }
        ],
    }
    monkeypatch.setattr(
        subprocess,
        "run",
        lambda *args, **kwargs: subprocess.CompletedProcess(args, 0, stdout=json.dumps(ffprobe_output), stderr=""),
    )

    metadata = probe_video(video_path)

    assert metadata["duration_seconds"] == pytest.approx(30.0)
    assert metadata["width"] == 1920
    assert metadata["height"] == 1080
    assert metadata["has_video"] is True
    assert metadata["size_bytes"] == 10


def test_probe_video_rejects_missing_file(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError):
        probe_video(tmp_path / "missing.mp4")
