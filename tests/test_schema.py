from __future__ import annotations

import json

import pytest

from cinemetrics.analysis.schema import build_analysis_result, parse_analysis_payload
from cinemetrics.errors import ErrorKind, PipelineError
from cinemetrics.models import FrameSample


def _assert_malformed(raw) -> PipelineError:
    with pytest.raises(PipelineError) as excinfo:
        parse_analysis_payload(raw)
    assert excinfo.value.kind is ErrorKind.MALFORMED_RESPONSE
    return excinfo.value


def test_parse_valid_payload(valid_payload) -> None:
    payload = parse_analysis_payload(json.dumps(valid_payload))

    assert payload.title == "T"
    assert payload.asl == pytest.approx(5.0)
    assert payload.total_shots == 4
    assert payload.shots[0].camera_movement == "static"
    assert payload.audio.key_events == ["door slam"]


def test_parse_accepts_bytes_and_integral_float_counts(valid_payload) -> None:
    valid_payload["totalShots"] = 4.0
    valid_payload["shots"][0]["id"] = 1.0

    payload = parse_analysis_payload(json.dumps(valid_payload).encode("utf-8"))

    assert payload.total_shots == 4
    assert payload.shots[0].id == 1


@pytest.mark.parametrize("raw", [None, "", "   ", b""])
def test_parse_rejects_absent_payload(raw) -> None:
    _assert_malformed(raw)


@pytest.mark.parametrize("raw", ["{not json", "```json\n{}\n```", "[1, 2, 3]", '"text"'])
def test_parse_rejects_non_object_json(raw) -> None:
    _assert_malformed(raw)


def test_missing_shots_is_malformed(valid_payload) -> None:
    del valid_payload["shots"]

    error = _assert_malformed(json.dumps(valid_payload))

    assert "shots" in error.message


@pytest.mark.parametrize("asl", ["5", None, True, [5]])
def test_non_numeric_asl_is_malformed(asl, valid_payload) -> None:
    valid_payload["asl"] = asl
    _assert_malformed(json.dumps(valid_payload))


def test_non_finite_numbers_are_malformed(valid_payload) -> None:
    valid_payload["shots"][1]["duration"] = float("inf")
    _assert_malformed(json.dumps(valid_payload))


@pytest.mark.parametrize("field", ["shots", "dominantColors"])
def test_empty_required_collections_are_malformed(field, valid_payload) -> None:
    valid_payload[field] = []
    _assert_malformed(json.dumps(valid_payload))


def test_fractional_shot_count_is_malformed(valid_payload) -> None:
    valid_payload["totalShots"] = 4.5
    _assert_malformed(json.dumps(valid_payload))


def test_missing_audio_field_is_malformed(valid_payload) -> None:
    del valid_payload["audio"]["mood"]

    error = _assert_malformed(json.dumps(valid_payload))

    assert "audio.mood" in error.message


def test_build_analysis_result_maps_payload_and_attaches_frames(valid_payload) -> None:
    frames = (FrameSample(b"a", 6.0), FrameSample(b"b", 12.0))

    result = build_analysis_result(parse_analysis_payload(json.dumps(valid_payload)), frames=frames)

    assert result.title == "T"
    assert result.dominant_colors == ("#000000",)
    assert len(result.shots) == 4
    assert result.shots[3].end_time == pytest.approx(30.0)
    assert result.shots[0].colors == ("#101010", "#f0f0f0")
    assert result.audio.music_description == "low strings"
    assert result.visual_summary == "S"
    assert result.frames is frames


@pytest.mark.parametrize("color", ["red", "#fff", "#12345G", "1a2b3c"])
def test_colors_must_be_six_digit_hex(color, valid_payload) -> None:
    valid_payload["shots"][0]["colors"] = [color]

    error = _assert_malformed(json.dumps(valid_payload))

    assert "shots.0.colors.0" in error.message


def test_dominant_colors_must_be_hex(valid_payload) -> None:
    valid_payload["dominantColors"] = ["#1A2B3C", "dark teal"]

    error = _assert_malformed(json.dumps(valid_payload))

    assert "dominantColors.1" in error.message
