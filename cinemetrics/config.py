from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, Field

DEFAULT_CONFIG_PATH = Path("configs/default.yaml")
ENV_PREFIX = "CINEMETRICS_"


class PipelineSettings(BaseModel):
    frame_count: int = Field(default=16, ge=1)
    max_upload_bytes: int = Field(default=100 * 1024 * 1024, gt=0)
    seek_timeout_seconds: float = Field(default=10.0, gt=0)
    run_timeout_seconds: float = Field(default=180.0, gt=0)
    jpeg_quality: int = Field(default=70, ge=1, le=100)
    max_frame_width: int = 1280
    output_dir: Path = Path("data/outputs")


class LLMSettings(BaseModel):
    provider: Literal["ollama", "gemini"] = "ollama"
    model: str = "qwen2.5vl:7b"
    endpoint: str = "http://localhost:11434"
    timeout_seconds: int = 120
    api_key_env: str = "GEMINI_API_KEY"


class LoggingSettings(BaseModel):
    level: str = "INFO"


class Settings(BaseModel):
    pipeline: PipelineSettings = Field(default_factory=PipelineSettings)
    llm: LLMSettings = Field(default_factory=LLMSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)


def load_settings(config_path: str | Path | None = None) -> Settings:
    """Load typed settings from YAML, then apply ``CINEMETRICS_*`` environment overrides.

    Nested keys are addressed with a double underscore, e.g.
    ``CINEMETRICS_PIPELINE__FRAME_COUNT=12``. A missing config file yields defaults.
    """

    resolved_path = Path(
        config_path
        or os.getenv(f"{ENV_PREFIX}CONFIG")
        or DEFAULT_CONFIG_PATH
    )
    raw_config: dict[str, Any] = {}
    if resolved_path.exists():
        raw_config = yaml.safe_load(resolved_path.read_text(encoding="utf-8")) or {}
    data = Settings.model_validate(raw_config).model_dump(mode="python")

    for key, raw_value in os.environ.items():
        if not key.startswith(ENV_PREFIX):
            continue

        suffix = key[len(ENV_PREFIX) :]
        if suffix == "CONFIG":
            continue

        path = [part.lower() for part in suffix.split("__")]
        _apply_override(data, path, raw_value)

    return Settings.model_validate(data)


def _apply_override(data: dict[str, Any], path: list[str], raw_value: str) -> None:
    current: Any = data
    for segment in path[:-1]:
        if not isinstance(current, dict) or segment not in current:
            return
        current = current[segment]

    if not isinstance(current, dict) or path[-1] not in current:
        return

    current[path[-1]] = _coerce_value(raw_value, current[path[-1]])


def _coerce_value(raw_value: str, existing_value: Any) -> Any:
    if isinstance(existing_value, bool):
        return raw_value.lower() in {"1", "true", "yes", "on"}
    if isinstance(existing_value, int):
        return int(raw_value)
    if isinstance(existing_value, float):
        return float(raw_value)
    if isinstance(existing_value, list | dict):
        return json.loads(raw_value)
    if isinstance(existing_value, Path):
        return Path(raw_value)
    return raw_value
