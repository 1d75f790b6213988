from __future__ import annotations

import asyncio
import json
import logging
import os
from pathlib import Path
from typing import Any, Protocol
from urllib import request
from urllib.error import HTTPError, URLError

from cinemetrics.config import LLMSettings
from cinemetrics.errors import ErrorKind, PipelineError
from cinemetrics.models import AnalysisRequest

logger = logging.getLogger(__name__)

DEFAULT_OLLAMA_MODEL = "qwen2.5vl:7b"
DEFAULT_GEMINI_MODEL = "gemini-2.5-flash"
DEFAULT_ENDPOINT = "http://localhost:11434"
DEFAULT_TIMEOUT_SECONDS = 120
PROMPT_TEMPLATE_PATH = Path(__file__).resolve().parent.parent / "prompts" / "film_analysis.txt"

_STRING = {"type": "STRING"}
_NUMBER = {"type": "NUMBER"}
_STRING_LIST = {"type": "ARRAY", "items": _STRING}

# Mirrors FilmAnalysisPayload; passed to Gemini so decoding is constrained server-side.
GEMINI_RESPONSE_SCHEMA: dict[str, Any] = {
    "type": "OBJECT",
    "properties": {
        "title": _STRING,
        "asl": _NUMBER,
        "totalShots": _NUMBER,
        "dominantColors": _STRING_LIST,
        "shots": {
            "type": "ARRAY",
            "items": {
                "type": "OBJECT",
                "properties": {
                    "id": _NUMBER,
                    "startTime": _NUMBER,
                    "endTime": _NUMBER,
                    "duration": _NUMBER,
                    "description": _STRING,
                    "colors": _STRING_LIST,
                    "cameraMovement": _STRING,
                    "composition": _STRING,
                },
            },
        },
        "audio": {
            "type": "OBJECT",
            "properties": {
                "mood": _STRING,
                "musicDescription": _STRING,
                "dynamicRange": _STRING,
                "keyEvents": _STRING_LIST,
            },
        },
        "visualSummary": _STRING,
    },
}


class AnalysisClient(Protocol):
    """External multimodal analysis capability; returns raw JSON text."""

    async def analyze(self, analysis_request: AnalysisRequest) -> str: ...


def format_prompt(analysis_request: AnalysisRequest) -> str:
    template = PROMPT_TEMPLATE_PATH.read_text(encoding="utf-8").strip()
    timestamps = ", ".join(f"{sample.timestamp_seconds:.2f}" for sample in analysis_request.samples)
    return template.format(
        title=analysis_request.source_label,
        frame_count=len(analysis_request.samples),
        timestamps=timestamps,
    )


class OllamaAnalysisClient:
    """Multimodal ``/api/generate`` call against a local Ollama server."""

    def __init__(
        self,
        *,
        endpoint: str = DEFAULT_ENDPOINT,
        model: str = DEFAULT_OLLAMA_MODEL,
        timeout_seconds: int = DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        self.endpoint = endpoint
        self.model = model
        self.timeout_seconds = timeout_seconds

    async def analyze(self, analysis_request: AnalysisRequest) -> str:
        prompt = format_prompt(analysis_request)
        images = analysis_request.encoded_images()
        return await asyncio.to_thread(self._request_ollama, prompt=prompt, images=images)

    def _request_ollama(self, *, prompt: str, images: list[str]) -> str:
        body = json.dumps(
            {
                "model": self.model,
                "prompt": prompt,
                "images": images,
                "stream": False,
                "format": "json",
            }
        ).encode("utf-8")

        req = request.Request(
            f"{self.endpoint.rstrip('/')}/api/generate",
            data=body,
            method="POST",
            headers={"Content-Type": "application/json"},
        )

        logger.info("Requesting analysis from Ollama model %s with %d frames", self.model, len(images))
        try:
            with request.urlopen(req, timeout=self.timeout_seconds) as response:
                payload = json.loads(response.read().decode("utf-8"))
        except HTTPError as exc:
            raise PipelineError(
                ErrorKind.ANALYSIS_SERVICE_ERROR,
                f"Ollama returned HTTP {exc.code} for model {self.model}.",
            ) from exc
        except (URLError, TimeoutError, OSError) as exc:
            raise PipelineError(
                ErrorKind.ANALYSIS_SERVICE_ERROR,
                f"Ollama at {self.endpoint} is unreachable: {exc}",
            ) from exc
        except json.JSONDecodeError as exc:
            raise PipelineError(ErrorKind.ANALYSIS_SERVICE_ERROR, "Ollama returned a non-JSON envelope.") from exc

        content = payload.get("response") if isinstance(payload, dict) else None
        if not isinstance(content, str):
            raise PipelineError(ErrorKind.ANALYSIS_SERVICE_ERROR, "Ollama response is missing the 'response' field.")
        return content


class GeminiAnalysisClient:
    """Google Gemini ``generate_content`` with a JSON response schema."""

    def __init__(
        self,
        *,
        api_key: str | None = None,
        model: str = DEFAULT_GEMINI_MODEL,
        timeout_seconds: int = DEFAULT_TIMEOUT_SECONDS,
        client: Any | None = None,
    ) -> None:
        self.model = model
        self.timeout_seconds = timeout_seconds
        if client is None:
            from google import genai
            from google.genai import types

            client = genai.Client(
                api_key=api_key,
                http_options=types.HttpOptions(timeout=int(timeout_seconds * 1000)),
            )
        self._client = client

    async def analyze(self, analysis_request: AnalysisRequest) -> str:
        return await asyncio.to_thread(self._generate, analysis_request)

    def _generate(self, analysis_request: AnalysisRequest) -> str:
        import httpx
        from google.genai import errors, types

        parts = [
            types.Part.from_bytes(data=sample.encoded_image, mime_type=analysis_request.mime_type)
            for sample in analysis_request.samples
        ]
        parts.append(types.Part.from_text(text=format_prompt(analysis_request)))

        logger.info("Requesting analysis from Gemini model %s with %d frames", self.model, len(analysis_request.samples))
        try:
            response = self._client.models.generate_content(
                model=self.model,
                contents=parts,
                config=types.GenerateContentConfig(
                    response_mime_type="application/json",
                    response_schema=GEMINI_RESPONSE_SCHEMA,
                ),
            )
        except errors.APIError as exc:
            raise PipelineError(
                ErrorKind.ANALYSIS_SERVICE_ERROR,
                f"Gemini request failed ({exc.code}): {exc.message}",
            ) from exc
        except (httpx.HTTPError, OSError) as exc:
            raise PipelineError(ErrorKind.ANALYSIS_SERVICE_ERROR, f"Gemini is unreachable: {exc}") from exc

        text = response.text
        if not text:
            raise PipelineError(ErrorKind.ANALYSIS_SERVICE_ERROR, "Empty response from Gemini.")
        return text


def create_analysis_client(settings: LLMSettings) -> AnalysisClient:
    """Build the configured analysis client."""

    if settings.provider == "gemini":
        api_key = os.getenv(settings.api_key_env)
        if not api_key:
            raise RuntimeError(f"Gemini provider selected but {settings.api_key_env} is not set.")
        return GeminiAnalysisClient(
            api_key=api_key,
            model=settings.model,
            timeout_seconds=settings.timeout_seconds,
        )

    return OllamaAnalysisClient(
        endpoint=settings.endpoint,
        model=settings.model,
        timeout_seconds=settings.timeout_seconds,
    )
