"""Speechmatics Batch API adapter.

Submits audio with speaker diarization, polls for completion, and
converts the json-v2 transcript into segments grouped by speaker.
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

DEFAULT_BASE_URL = "https://asr.api.speechmatics.com/v2"
DEFAULT_LANGUAGE = "en"
POLL_INTERVAL_SECONDS = 5.0
TRANSIENT_STATUS_CODES = {429, 503}


class SpeechmaticsEngine(RemoteEngineAdapter):
    """Speechmatics Batch API adapter with speaker diarization.

    Args:
        api_key: Speechmatics API key.
        base_url: API base URL (default production endpoint).
        timeout: Per-request HTTP timeout and job completion limit in seconds.
        client: Optional pre-built httpx client.
    """

    provider = Provider.SPEECHMATICS
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
        raw_response = await self._fetch_transcript(client, job_id, headers)
        return self._convert_response(raw_response, request, time.monotonic() - start)

    async def _submit_job(
        self,
        client: httpx.AsyncClient,
        request: TranscriptionRequest,
        headers: dict[str, str],
    ) -> str:
        """Submit an audio file for transcription.

        Returns:
            The Speechmatics job ID.
        """
        config = {
            "type": "transcription",
            "transcription_config": {
                "language": primary_language(request.language) or DEFAULT_LANGUAGE,
                "diarization": "speaker",
            },
        }

        with open(request.audio.path, "rb") as audio_file:
            files = {
                "data_file": (
                    os.path.basename(request.audio.path),
                    audio_file,
                    f"audio/{request.audio.codec}",
                ),
            }
            response = await client.post(
                f"{self._base_url}/jobs/",
                headers=headers,
                files=files,
                data={"config": json.dumps(config)},
            )

        self._check_response(response, expected=(201,))
        job_id = response.json().get("id")
        if not job_id:
            raise EngineError(
                ErrorKind.UNKNOWN, "No job ID in submission response", engine=self.engine_id
            )

        logger.info(
            "Submitted Speechmatics job %s", job_id, extra={"request_id": request.request_id}
        )
        return job_id

    async def _poll_until_complete(
        self, client: httpx.AsyncClient, job_id: str, headers: dict[str, str]
    ) -> None:
        """Poll job status until done, rejected, or timeout.

        Raises:
            EngineError: If the job is rejected, deleted, or times out.
        """
        url = f"{self._base_url}/jobs/{job_id}"
        deadline = time.monotonic() + self._timeout

        while time.monotonic() < deadline:
            response = await client.get(url, headers=headers)

            if response.status_code in TRANSIENT_STATUS_CODES:
                await asyncio.sleep(POLL_INTERVAL_SECONDS)
                continue

            self._check_response(response)
            status = response.json().get("job", {}).get("status", "")

            if status == "done":
                logger.info("Speechmatics job %s completed", job_id)
                return

            if status in ("rejected", "deleted"):
                raise EngineError(
                    ErrorKind.VALIDATION_FAILURE,
                    f"Job {job_id} was {status}",
                    engine=self.engine_id,
                )

            # Still running/queued, wait and poll again
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
            headers=headers,
            params={"format": "json-v2"},
        )
        self._check_response(response)
        return response.json()

    def _convert_response(
        self, raw_response: dict[str, Any], request: TranscriptionRequest, elapsed: float
    ) -> Success:
        """Group consecutive words by speaker into segments.

        Speaker labels are formatted as 'Speaker 1', 'Speaker 2', etc.
        Punctuation is attached to the preceding word.
        """
        speaker_map: dict[str, str] = {}
        groups: list[tuple[str, list[dict[str, Any]]]] = []

        for item in raw_response.get("results", []):
            alternatives = item.get("alternatives", [])
            if not alternatives:
                continue
            alt = alternatives[0]

            if item.get("type") == "punctuation":
                if groups and groups[-1][1]:
                    groups[-1][1][-1]["content"] += alt.get("content", "")
                continue
            if item.get("type") != "word":
                continue

            raw_speaker = alt.get("speaker", "UU")
            if raw_speaker not in speaker_map:
                speaker_map[raw_speaker] = f"Speaker {len(speaker_map) + 1}"
            speaker = speaker_map[raw_speaker]

            word = {
                "content": alt.get("content", ""),
                "start_time": float(item.get("start_time", 0.0)),
                "end_time": float(item.get("end_time", 0.0)),
                "confidence": float(alt.get("confidence", 0.0)),
            }
            if groups and groups[-1][0] == speaker:
                groups[-1][1].append(word)
            else:
                groups.append((speaker, [word]))

        segments = [
            TranscriptionSegment(
                text=" ".join(w["content"] for w in words),
                start_time=words[0]["start_time"],
                end_time=max(words[-1]["end_time"], words[0]["start_time"]),
                confidence=sum(w["confidence"] for w in words) / len(words),
                speaker_id=speaker,
            )
            for speaker, words in groups
        ]

        language = (
            raw_response.get("metadata", {})
            .get("transcription_config", {})
            .get("language")
        )
        result = TranscriptionResult(
            text=" ".join(s.text for s in segments),
            language=request.language or language or DEFAULT_LANGUAGE,
            confidence=overall_confidence(segments),
            duration=float(
                raw_response.get("job", {}).get("duration") or request.audio.duration_seconds
            ),
            segments=segments,
            engine=self.engine_id,
            processing_time=elapsed,
        )
        return Success(result)
