"""Result rendering: plain text, SubRip subtitles, and structured JSON.

Plain text carries [MM:SS] markers every 15 seconds and speaker labels
at turn boundaries when the result has usable timestamps; otherwise it
is the bare transcript text.
"""

from __future__ import annotations

import json
from enum import StrEnum
from typing import Any

from vox_engine.models import TIMESTAMPS_UNAVAILABLE, TranscriptionResult

MARKER_INTERVAL_SECONDS = 15


class OutputFormat(StrEnum):
    TXT = "txt"
    SRT = "srt"
    JSON = "json"


def _format_timestamp(seconds: float) -> str:
    """Format seconds as [MM:SS] timestamp marker."""
    total_seconds = int(seconds)
    minutes = total_seconds // 60
    secs = total_seconds % 60
    return f"[{minutes:02d}:{secs:02d}]"


def _format_srt_time(seconds: float) -> str:
    millis = int(round(max(seconds, 0.0) * 1000))
    hours, millis = divmod(millis, 3_600_000)
    minutes, millis = divmod(millis, 60_000)
    secs, millis = divmod(millis, 1000)
    return f"{hours:02d}:{minutes:02d}:{secs:02d},{millis:03d}"


def _has_timestamps(result: TranscriptionResult) -> bool:
    if TIMESTAMPS_UNAVAILABLE in result.metadata:
        return False
    return any(s.end_time > 0 for s in result.segments)


def render(result: TranscriptionResult, output_format: OutputFormat | str) -> str:
    """Serialize a result.

    Args:
        result: The transcription result.
        output_format: One of OutputFormat or its string value.

    Returns:
        The rendered text.

    Raises:
        ValueError: If the format is unknown.
    """
    output_format = OutputFormat(output_format)
    if output_format is OutputFormat.SRT:
        return render_srt(result)
    if output_format is OutputFormat.JSON:
        return render_json(result)
    return render_text(result)


def render_text(result: TranscriptionResult) -> str:
    """Render text with timestamp markers and speaker labels.

    Returns:
        Formatted string; the bare text when timestamps are unusable.
    """
    if not result.segments or not _has_timestamps(result):
        return result.text

    lines: list[str] = []
    next_marker_time = 0.0
    prev_speaker: str | None = None

    for segment in result.segments:
        parts: list[str] = []

        if segment.speaker_id and prev_speaker is not None and segment.speaker_id != prev_speaker:
            lines.append("")

        if segment.start_time >= next_marker_time:
            # Snap to the most recent boundary at or before this segment
            boundary = (
                int(segment.start_time // MARKER_INTERVAL_SECONDS) * MARKER_INTERVAL_SECONDS
            )
            parts.append(_format_timestamp(boundary))
            next_marker_time = boundary + MARKER_INTERVAL_SECONDS

        if segment.speaker_id and segment.speaker_id != prev_speaker:
            parts.append(f"{segment.speaker_id}:")
        prev_speaker = segment.speaker_id

        parts.append(segment.text)

        if len(parts) > 1 or not lines or not lines[-1]:
            lines.append(" ".join(parts))
        else:
            lines[-1] += f" {segment.text}"

    return "\n".join(lines)


def render_srt(result: TranscriptionResult) -> str:
    """Render SubRip cues, one per segment.

    Without usable timestamps a single cue spans the whole audio.
    """
    if not result.segments or not _has_timestamps(result):
        if not result.text:
            return ""
        cues = [(0.0, result.duration, result.text)]
    else:
        cues = [(s.start_time, s.end_time, s.text) for s in result.segments]

    blocks = []
    for index, (start, end, text) in enumerate(cues, start=1):
        blocks.append(f"{index}\n{_format_srt_time(start)} --> {_format_srt_time(end)}\n{text}\n")
    return "\n".join(blocks)


def to_dict(result: TranscriptionResult) -> dict[str, Any]:
    segments = []
    for s in result.segments:
        entry: dict[str, Any] = {
            "text": s.text,
            "start": s.start_time,
            "end": s.end_time,
            "confidence": round(s.confidence, 4),
        }
        if s.speaker_id is not None:
            entry["speaker"] = s.speaker_id
        segments.append(entry)

    return {
        "text": result.text,
        "language": result.language,
        "confidence": round(result.confidence, 4),
        "duration": result.duration,
        "engine": result.engine,
        "processing_time": round(result.processing_time, 3),
        "metadata": sorted(result.metadata),
        "segments": segments,
    }


def render_json(result: TranscriptionResult) -> str:
    return json.dumps(to_dict(result), indent=2, ensure_ascii=False)
