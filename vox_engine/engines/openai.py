"""OpenAI Whisper transcription adapter.

Uploads the audio in a single multipart request to the
/audio/transcriptions endpoint. When timestamps are requested the
verbose_json format is used and segment timings are parsed; otherwise
the response carries text only and a single untimed segment is built.
"""

from __future__ import annotations

import logging
import math
import os
import time
from typing import Any

import httpx

from vox_engine.engines.remote import RemoteEngineAdapter
from vox_engine.models import (
    ProgressPhase,
    Provider,
    Success,
    TranscriptionRequest,
    TranscriptionResult,
    TranscriptionSegment,
    overall_confidence,
    primary_language,
)
from vox_engine.progress import ProgressReporter
from vox_engine.utils.errors import EngineError, ErrorKind

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.openai.com/v1"
MODEL = "whisper-1"
MAX_UPLOAD_BYTES = 25 * 1024 * 1024
API_KEY_PREFIX = "sk-"


class OpenAIWhisperEngine(RemoteEngineAdapter):
    """OpenAI Whisper API adapter.

    Args:
        api_key: OpenAI API key; must start with "sk-".
        base_url: API base URL (default production endpoint).
        timeout: Per-request HTTP timeout in seconds.
        client: Optional pre-built httpx client.
    """

    provider = Provider.OPENAI
    DEFAULT_BASE_URL = DEFAULT_BASE_URL

    def _validate(self, request: TranscriptionRequest, api_key: str) -> None:
        if not api_key.startswith(API_KEY_PREFIX):
            raise EngineError(
                ErrorKind.AUTHENTICATION,
                "Invalid OpenAI API key format",
                engine=self.engine_id,
            )

        size = request.audio.size_bytes
        if size is None:
            try:
                size = os.path.getsize(request.audio.path)
            except OSError as exc:
                raise EngineError(
                    ErrorKind.VALIDATION_FAILURE,
                    f"Audio file not readable: {exc}",
                    engine=self.engine_id,
                ) from exc
        if size > MAX_UPLOAD_BYTES:
            raise EngineError(
                ErrorKind.VALIDATION_FAILURE,
                f"Audio file is {size} bytes; OpenAI accepts at most {MAX_UPLOAD_BYTES}",
                engine=self.engine_id,
            )

    async def _call(
        self,
        client: httpx.AsyncClient,
        request: TranscriptionRequest,
        api_key: str,
        reporter: ProgressReporter | None,
    ) -> Success:
        start = time.monotonic()
        data: dict[str, str] = {"model": MODEL}
        if request.include_timestamps:
            data["response_format"] = "verbose_json"
            data["timestamp_granularities[]"] = "segment"
        else:
            data["response_format"] = "json"
        language = primary_language(request.language)
        if language:
            data["language"] = language

        url = f"{self._base_url}/audio/transcriptions"
        headers = {"Authorization": f"Bearer {api_key}"}

        with open(request.audio.path, "rb") as audio_file:
            files = {
                "file": (
                    os.path.basename(request.audio.path),
                    audio_file,
                    f"audio/{request.audio.codec}",
                )
            }
            self._report(reporter, 0.2, ProgressPhase.TRANSCRIBING)
            response = await client.post(url, headers=headers, files=files, data=data)

        self._check_response(response)
        self._report(reporter, 0.9, ProgressPhase.FORMATTING)

        body = response.json()
        logger.info(
            "OpenAI transcription returned %d characters",
            len(body.get("text", "")),
            extra={"request_id": request.request_id, "engine": self.engine_id},
        )
        return self._convert_response(body, request, time.monotonic() - start)

    def _convert_response(
        self, body: dict[str, Any], request: TranscriptionRequest, elapsed: float
    ) -> Success:
        """Build the outcome from a json or verbose_json response body."""
        text = (body.get("text") or "").strip()
        duration = float(body.get("duration") or request.audio.duration_seconds)

        segments = [
            TranscriptionSegment(
                text=seg.get("text", "").strip(),
                start_time=float(seg.get("start", 0.0)),
                end_time=max(float(seg.get("end", 0.0)), float(seg.get("start", 0.0))),
                confidence=_logprob_confidence(seg.get("avg_logprob")),
            )
            for seg in body.get("segments") or []
            if seg.get("text", "").strip()
        ]
        timestamps_available = bool(segments)
        if not segments and text:
            segments = [
                TranscriptionSegment(
                    text=text, start_time=0.0, end_time=duration, confidence=1.0
                )
            ]

        result = TranscriptionResult(
            text=text,
            language=request.language or body.get("language") or "unknown",
            confidence=overall_confidence(segments) if segments else 0.0,
            duration=duration,
            segments=segments,
            engine=self.engine_id,
            processing_time=elapsed,
        )
        return Success(result, timestamps_available=timestamps_available)


def _logprob_confidence(avg_logprob: Any) -> float:
    if avg_logprob is None:
        return 1.0
    return min(1.0, math.exp(float(avg_logprob)))
