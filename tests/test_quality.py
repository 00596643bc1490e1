"""Tests for the quality degradation policy."""

import pytest

from vox_engine.models import (
    LOW_CONFIDENCE_ACCEPTED,
    QUALITY_DEGRADED,
    SEGMENTS_REDUCED,
    TIMESTAMPS_UNAVAILABLE,
    Failure,
    Success,
    TranscriptionResult,
    TranscriptionSegment,
)
from vox_engine.observability.resources import PressureSignals
from vox_engine.quality import DegradationPolicy, merge_adjacent
from vox_engine.utils.errors import ClassifiedError, ErrorKind


def _segments(count: int, confidence: float = 0.9) -> list[TranscriptionSegment]:
    return [
        TranscriptionSegment(
            text=f"word{i}",
            start_time=float(i),
            end_time=float(i) + 0.8,
            confidence=confidence,
            speaker_id="Speaker 1",
        )
        for i in range(count)
    ]


def _outcome(
    segments: list[TranscriptionSegment],
    confidence: float = 0.9,
    timestamps_available: bool = True,
) -> Success:
    result = TranscriptionResult(
        text=" ".join(s.text for s in segments),
        language="en",
        confidence=confidence,
        duration=10.0,
        segments=segments,
        engine="openai",
    )
    return Success(result, timestamps_available=timestamps_available)


class TestNoPressure:
    """Without pressure or missing data the result is untouched."""

    def test_no_tags_without_pressure(self) -> None:
        outcome = _outcome(_segments(4))
        result = DegradationPolicy().evaluate(outcome, PressureSignals.none(), True)
        assert result.metadata == set()
        assert len(result.segments) == 4
        assert result.confidence == 0.9

    def test_pressure_below_thresholds(self) -> None:
        outcome = _outcome(_segments(4))
        result = DegradationPolicy().evaluate(outcome, PressureSignals(0.8, 0.85))
        assert result.metadata == set()

    def test_input_not_mutated(self) -> None:
        outcome = _outcome(_segments(4))
        DegradationPolicy().evaluate(outcome, PressureSignals(memory_ratio=0.95))
        assert len(outcome.result.segments) == 4
        assert outcome.result.metadata == set()


class TestSegmentMerging:
    """Memory pressure merges adjacent segments."""

    def test_merges_under_memory_pressure(self) -> None:
        outcome = _outcome(_segments(4))
        result = DegradationPolicy().evaluate(outcome, PressureSignals(memory_ratio=0.9))
        assert len(result.segments) == 2
        assert {SEGMENTS_REDUCED, QUALITY_DEGRADED} <= result.metadata

    def test_text_is_preserved(self) -> None:
        outcome = _outcome(_segments(5))
        result = DegradationPolicy().evaluate(outcome, PressureSignals(memory_ratio=0.9))
        assert " ".join(s.text for s in result.segments) == outcome.result.text
        assert result.text == outcome.result.text

    def test_single_segment_not_tagged(self) -> None:
        outcome = _outcome(_segments(1))
        result = DegradationPolicy().evaluate(outcome, PressureSignals(memory_ratio=0.99))
        assert SEGMENTS_REDUCED not in result.metadata
        assert result.metadata == set()

    def test_merge_adjacent_spans_and_confidence(self) -> None:
        segments = [
            TranscriptionSegment("a", 0.0, 1.0, 0.8, "Speaker 1"),
            TranscriptionSegment("b", 1.0, 2.5, 0.6, "Speaker 2"),
            TranscriptionSegment("c", 3.0, 4.0, 0.9, "Speaker 1"),
        ]
        merged = merge_adjacent(segments)
        assert len(merged) == 2
        assert merged[0].text == "a b"
        assert merged[0].start_time == 0.0
        assert merged[0].end_time == 2.5
        assert merged[0].confidence == pytest.approx(0.7)
        assert merged[0].speaker_id is None
        assert merged[1] is segments[2]

    def test_shared_speaker_kept(self) -> None:
        merged = merge_adjacent(_segments(2))
        assert merged[0].speaker_id == "Speaker 1"


class TestTimestamps:
    """Missing timestamps are zeroed and tagged only when requested."""

    def test_zeroed_when_requested_and_unavailable(self) -> None:
        outcome = _outcome(_segments(2), timestamps_available=False)
        result = DegradationPolicy().evaluate(outcome, include_timestamps=True)
        assert all(s.start_time == 0.0 and s.end_time == 0.0 for s in result.segments)
        assert {TIMESTAMPS_UNAVAILABLE, QUALITY_DEGRADED} <= result.metadata
        assert result.text == outcome.result.text

    def test_not_tagged_when_not_requested(self) -> None:
        outcome = _outcome(_segments(2), timestamps_available=False)
        result = DegradationPolicy().evaluate(outcome, include_timestamps=False)
        assert result.metadata == set()

    def test_not_tagged_when_available(self) -> None:
        outcome = _outcome(_segments(2))
        result = DegradationPolicy().evaluate(outcome, include_timestamps=True)
        assert TIMESTAMPS_UNAVAILABLE not in result.metadata


class TestLowConfidence:
    """CPU pressure accepts low-confidence results with a tag."""

    def test_low_confidence_accepted_under_cpu_pressure(self) -> None:
        outcome = _outcome(_segments(2, confidence=0.3), confidence=0.3)
        result = DegradationPolicy().evaluate(outcome, PressureSignals(cpu_ratio=0.95))
        assert {LOW_CONFIDENCE_ACCEPTED, QUALITY_DEGRADED} <= result.metadata
        assert result.confidence == pytest.approx(0.3)

    def test_high_confidence_not_tagged(self) -> None:
        outcome = _outcome(_segments(2))
        result = DegradationPolicy().evaluate(outcome, PressureSignals(cpu_ratio=0.95))
        assert result.metadata == set()


class TestFailures:
    """The policy never turns a failure into a success."""

    def test_failure_rejected(self) -> None:
        failure = Failure(ClassifiedError(ErrorKind.UNKNOWN, "boom"))
        with pytest.raises(TypeError):
            DegradationPolicy().evaluate(failure)  # type: ignore[arg-type]
