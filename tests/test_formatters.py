"""Tests for result rendering."""

import json

import pytest

from vox_engine.models import TIMESTAMPS_UNAVAILABLE, TranscriptionResult, TranscriptionSegment
from vox_engine.output.formatters import (
    OutputFormat,
    render,
    render_json,
    render_srt,
    render_text,
    to_dict,
)


def _result(segments, text=None, metadata=None, duration=25.0) -> TranscriptionResult:
    return TranscriptionResult(
        text=text if text is not None else " ".join(s.text for s in segments),
        language="en",
        confidence=0.87654,
        duration=duration,
        segments=segments,
        engine="speechmatics",
        processing_time=1.23456,
        metadata=metadata or set(),
    )


DIARIZED = [
    TranscriptionSegment("Hello", 0.0, 5.0, 0.9, "Speaker 1"),
    TranscriptionSegment("there", 6.0, 10.0, 0.9, "Speaker 1"),
    TranscriptionSegment("Hi", 16.0, 20.0, 0.8, "Speaker 2"),
    TranscriptionSegment("ok", 21.0, 25.0, 0.7, "Speaker 1"),
]


class TestRenderText:
    """Plain text with markers and speaker labels."""

    def test_markers_and_speaker_turns(self) -> None:
        assert render_text(_result(DIARIZED)) == (
            "[00:00] Speaker 1: Hello there\n"
            "\n"
            "[00:15] Speaker 2: Hi\n"
            "\n"
            "Speaker 1: ok"
        )

    def test_markers_without_speakers(self) -> None:
        segments = [
            TranscriptionSegment("first", 0.0, 5.0, 0.9),
            TranscriptionSegment("second", 20.0, 25.0, 0.9),
        ]
        assert render_text(_result(segments)) == "[00:00] first\n[00:15] second"

    def test_marker_snaps_to_boundary_past_one_minute(self) -> None:
        segments = [TranscriptionSegment("late", 97.0, 99.0, 0.9)]
        assert render_text(_result(segments)) == "[01:30] late"

    def test_unavailable_timestamps_give_bare_text(self) -> None:
        result = _result(DIARIZED, text="plain words", metadata={TIMESTAMPS_UNAVAILABLE})
        assert render_text(result) == "plain words"

    def test_zeroed_timestamps_give_bare_text(self) -> None:
        segments = [TranscriptionSegment("a", 0.0, 0.0, 0.9)]
        assert render_text(_result(segments, text="a")) == "a"

    def test_no_segments_gives_text(self) -> None:
        assert render_text(_result([], text="only text")) == "only text"


class TestRenderSrt:
    """SubRip output."""

    def test_one_cue_per_segment(self) -> None:
        segments = [
            TranscriptionSegment("one", 0.0, 1.5, 0.9),
            TranscriptionSegment("two", 3661.25, 3662.0, 0.9),
        ]
        assert render_srt(_result(segments)) == (
            "1\n00:00:00,000 --> 00:00:01,500\none\n"
            "\n"
            "2\n01:01:01,250 --> 01:01:02,000\ntwo\n"
        )

    def test_single_cue_without_timestamps(self) -> None:
        result = _result(DIARIZED, text="all of it", metadata={TIMESTAMPS_UNAVAILABLE})
        assert render_srt(result) == "1\n00:00:00,000 --> 00:00:25,000\nall of it\n"

    def test_empty_result_renders_nothing(self) -> None:
        assert render_srt(_result([], text="")) == ""


class TestRenderJson:
    """Structured output."""

    def test_to_dict_fields(self) -> None:
        data = to_dict(_result(DIARIZED[:1], metadata={"b", "a"}))
        assert data["confidence"] == 0.8765
        assert data["processing_time"] == 1.235
        assert data["metadata"] == ["a", "b"]
        assert data["engine"] == "speechmatics"
        assert data["segments"][0] == {
            "text": "Hello",
            "start": 0.0,
            "end": 5.0,
            "confidence": 0.9,
            "speaker": "Speaker 1",
        }

    def test_speaker_omitted_when_absent(self) -> None:
        data = to_dict(_result([TranscriptionSegment("x", 0.0, 1.0, 0.5)]))
        assert "speaker" not in data["segments"][0]

    def test_non_ascii_preserved(self) -> None:
        output = render_json(_result([], text="Grüße"))
        assert "Grüße" in output
        assert json.loads(output)["text"] == "Grüße"


class TestRender:
    """Format dispatch."""

    @pytest.mark.parametrize("fmt", ["txt", OutputFormat.SRT, "json"])
    def test_dispatch(self, fmt) -> None:
        assert render(_result(DIARIZED), fmt)

    def test_unknown_format_raises(self) -> None:
        with pytest.raises(ValueError):
            render(_result(DIARIZED), "docx")
