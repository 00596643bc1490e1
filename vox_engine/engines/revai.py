"""Rev.ai asynchronous transcription adapter.

Submits a job with the audio as multipart media, polls the job until it
is transcribed, then fetches the monologue-format transcript. Each
monologue becomes one segment carrying the speaker label.
"""

from __future__ import annotations

import asyncio
import json
import logging
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

DEFAULT_BASE_URL = "https://api.rev.ai/speechtotext/v1"
POLL_INTERVAL_SECONDS = 5.0
TRANSIENT_STATUS_CODES = {429, 503}
TRANSCRIPT_MEDIA_TYPE = "application/vnd.rev.transcript.v1.0+json"

# Failure reasons that indicate bad input rather than a provider fault
_INPUT_FAILURES = {"invalid_media", "unsupported_media", "download_failure"}


class RevAIEngine(RemoteEngineAdapter):
    """Rev.ai job API adapter.

    Args:
        api_key: Rev.ai access token.
        base_url: API base URL (default production endpoint).
        timeout: Per-request HTTP timeout and job completion limit in seconds.
        client: Optional pre-built httpx client.
    """

    provider = Provider.REVAI
    DEFAULT_BASE_URL = DEFAULT_BASE_URL

    async def _call(
        self,
        client: httpx.AsyncClient,
        request: TranscriptionRequest,
        api_key: str,
        reporter: ProgressReporter | None,
    ) -> Success:
        start = time.monotonic()
        headers = {"Authorization": f"Bearer {api_key}"}

        job_id = await self._submit_job(client, request, headers)
        self._report(reporter, 0.3, ProgressPhase.TRANSCRIBING, f"Job {job_id} submitted")
        await self._poll_until_complete(client, job_id, headers)
        self._report(reporter, 0.8, ProgressPhase.FORMATTING)
        transcript = await self._fetch_transcript(client, job_id, headers)
        return self._convert_response(transcript, request, time.monotonic() - start)

    async def _submit_job(
        self,
        client: httpx.AsyncClient,
        request: TranscriptionRequest,
        headers: dict[str, str],
    ) -> str:
        options: dict[str, Any] = {"metadata": request.request_id}
        language = primary_language(request.language)
        if language:
            options["language"] = language

        with open(request.audio.path, "rb") as audio_file:
            files = {
                "media": (
                    os.path.basename(request.audio.path),
                    audio_file,
                    f"audio/{request.audio.codec}",
                )
            }
            response = await client.post(
                f"{self._base_url}/jobs",
                headers=headers,
                files=files,
                data={"options": json.dumps(options)},
            )

        self._check_response(response, expected=(200, 201))
        job_id = response.json().get("id")
        if not job_id:
            raise EngineError(
                ErrorKind.UNKNOWN, "No job ID in submission response", engine=self.engine_id
            )
        logger.info("Submitted Rev.ai job %s", job_id, extra={"request_id": request.request_id})
        return job_id

    async def _poll_until_complete(
        self, client: httpx.AsyncClient, job_id: str, headers: dict[str, str]
    ) -> None:
        """Poll job status until transcribed, failed, or timeout.

        Raises:
            EngineError: If the job fails or does not finish in time.
        """
        url = f"{self._base_url}/jobs/{job_id}"
        deadline = time.monotonic() + self._timeout

        while time.monotonic() < deadline:
            response = await client.get(url, headers=headers)

            if response.status_code in TRANSIENT_STATUS_CODES:
                await asyncio.sleep(POLL_INTERVAL_SECONDS)
                continue

            self._check_response(response)
            body = response.json()
            status = body.get("status", "")

            if status == "transcribed":
                logger.info("Rev.ai job %s completed", job_id)
                return

            if status == "failed":
                failure = body.get("failure", "")
                kind = (
                    ErrorKind.VALIDATION_FAILURE
                    if failure in _INPUT_FAILURES
                    else ErrorKind.SERVICE_UNAVAILABLE
                )
                raise EngineError(
                    kind,
                    f"Job {job_id} failed: {body.get('failure_detail') or failure or 'no detail'}",
                    engine=self.engine_id,
                )

            await asyncio.sleep(POLL_INTERVAL_SECONDS)

        raise EngineError(
            ErrorKind.NETWORK_TIMEOUT,
            f"Job {job_id} timed out after {self._timeout}s",
            engine=self.engine_id,
        )

    async def _fetch_transcript(
        self, client: httpx.AsyncClient, job_id: str, headers: dict[str, str]
    ) -> dict[str, Any]:
        response = await client.get(
            f"{self._base_url}/jobs/{job_id}/transcript",
            headers={**headers, "Accept": TRANSCRIPT_MEDIA_TYPE},
        )
        self._check_response(response)
        return response.json()

    def _convert_response(
        self, transcript: dict[str, Any], request: TranscriptionRequest, elapsed: float
    ) -> Success:
        """Convert Rev.ai monologues into time-ordered segments.

        Text elements carry timing and confidence; punctuation elements
        are appended to the monologue text as-is.
        """
        segments: list[TranscriptionSegment] = []
        timestamps_available = True

        for monologue in transcript.get("monologues", []):
            elements = monologue.get("elements", [])
            text = "".join(e.get("value", "") for e in elements).strip()
            if not text:
                continue

            timed = [e for e in elements if e.get("type") == "text"]
            if timed and all("ts" in e and "end_ts" in e for e in timed):
                start_time = float(timed[0]["ts"])
                end_time = max(float(timed[-1]["end_ts"]), start_time)
            else:
                start_time = end_time = 0.0
                timestamps_available = False

            confidences = [e["confidence"] for e in timed if "confidence" in e]
            speaker = monologue.get("speaker")
            segments.append(
                TranscriptionSegment(
                    text=text,
                    start_time=start_time,
                    end_time=end_time,
                    confidence=sum(confidences) / len(confidences) if confidences else 1.0,
                    speaker_id=f"Speaker {int(speaker) + 1}" if speaker is not None else None,
                )
            )

        segments.sort(key=lambda s: s.start_time)
        result = TranscriptionResult(
            text=" ".join(s.text for s in segments),
            language=request.language or transcript.get("language") or "unknown",
            confidence=overall_confidence(segments),
            duration=request.audio.duration_seconds,
            segments=segments,
            engine=self.engine_id,
            processing_time=elapsed,
        )
        return Success(result, timestamps_available=timestamps_available and bool(segments))
