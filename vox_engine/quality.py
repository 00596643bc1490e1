"""Quality degradation policy.

Adjusts an already-successful attempt when resources are under pressure
or when the engine could not deliver requested timestamps. Every
compromise adds its own metadata tag plus QUALITY_DEGRADED; a result
without tags was not compromised. Text is never dropped, and a Failure
is never turned into a success.

Thresholds:
    memory_ratio >= 0.85  merge adjacent segments pairwise
    cpu_ratio >= 0.9      accept results with confidence below 0.5
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace

from vox_engine.models import (
    LOW_CONFIDENCE_ACCEPTED,
    QUALITY_DEGRADED,
    SEGMENTS_REDUCED,
    TIMESTAMPS_UNAVAILABLE,
    Success,
    TranscriptionResult,
    TranscriptionSegment,
    overall_confidence,
)
from vox_engine.observability.resources import PressureSignals

logger = logging.getLogger(__name__)

MEMORY_PRESSURE_THRESHOLD = 0.85
CPU_PRESSURE_THRESHOLD = 0.9
LOW_CONFIDENCE_THRESHOLD = 0.5


@dataclass(frozen=True)
class DegradationPolicy:
    memory_threshold: float = MEMORY_PRESSURE_THRESHOLD
    cpu_threshold: float = CPU_PRESSURE_THRESHOLD
    low_confidence_threshold: float = LOW_CONFIDENCE_THRESHOLD

    def evaluate(
        self,
        outcome: Success,
        pressure: PressureSignals | None = None,
        include_timestamps: bool = False,
    ) -> TranscriptionResult:
        """Apply any compromises to a successful attempt.

        Args:
            outcome: The successful attempt outcome.
            pressure: Resource pressure sampled during the attempt.
            include_timestamps: Whether the caller asked for timestamps.

        Returns:
            The result, possibly with merged segments, zeroed timestamps,
            and degradation tags. The input result is not mutated.

        Raises:
            TypeError: If outcome is not a Success.
        """
        if not isinstance(outcome, Success):
            raise TypeError("Only successful outcomes can be evaluated")

        pressure = pressure or PressureSignals.none()
        result = outcome.result
        segments = list(result.segments)
        metadata = set(result.metadata)

        if pressure.memory_ratio >= self.memory_threshold and len(segments) > 1:
            merged = merge_adjacent(segments)
            if len(merged) < len(segments):
                logger.info(
                    "Memory pressure %.2f: merged %d segments into %d",
                    pressure.memory_ratio,
                    len(segments),
                    len(merged),
                )
                segments = merged
                metadata.update({SEGMENTS_REDUCED, QUALITY_DEGRADED})

        if include_timestamps and not outcome.timestamps_available:
            segments = [replace(s, start_time=0.0, end_time=0.0) for s in segments]
            metadata.update({TIMESTAMPS_UNAVAILABLE, QUALITY_DEGRADED})

        confidence = result.confidence
        if SEGMENTS_REDUCED in metadata and SEGMENTS_REDUCED not in result.metadata:
            confidence = overall_confidence(segments)
        if (
            pressure.cpu_ratio >= self.cpu_threshold
            and confidence < self.low_confidence_threshold
        ):
            logger.info(
                "CPU pressure %.2f: accepting confidence %.2f", pressure.cpu_ratio, confidence
            )
            metadata.update({LOW_CONFIDENCE_ACCEPTED, QUALITY_DEGRADED})

        return replace(result, segments=segments, confidence=confidence, metadata=metadata)


def merge_adjacent(segments: list[TranscriptionSegment]) -> list[TranscriptionSegment]:
    """Merge segments pairwise, halving the count (rounding up).

    Text is joined with a space, timing spans both, confidence is the
    mean, and the speaker is kept only when both halves share it.
    """
    merged: list[TranscriptionSegment] = []
    for i in range(0, len(segments), 2):
        pair = segments[i : i + 2]
        if len(pair) == 1:
            merged.append(pair[0])
            continue
        first, second = pair
        merged.append(
            TranscriptionSegment(
                text=f"{first.text.strip()} {second.text.strip()}".strip(),
                start_time=first.start_time,
                end_time=max(first.end_time, second.end_time),
                confidence=(first.confidence + second.confidence) / 2,
                speaker_id=first.speaker_id if first.speaker_id == second.speaker_id else None,
            )
        )
    return merged
