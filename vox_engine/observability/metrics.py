"""Run metrics collection and reporting.

Provides RunMetrics for one transcribe() call, StageTimer for timing
individual attempts, and log_run_metrics() for emitting a run summary as
a single structured JSON line (stdout unless another stream is given).
"""

from __future__ import annotations

import json
import sys
import time
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from typing import TextIO


@dataclass
class RunMetrics:
    """All metrics collected for a single orchestration run."""

    request_id: str
    status: str
    engine: str | None
    attempt_count: int
    retry_count: int
    engines_tried: list[str] = field(default_factory=list)
    processing_wall_time_seconds: float = 0.0
    audio_duration_seconds: float = 0.0
    degradation_tags: list[str] = field(default_factory=list)
    error_kind: str | None = None
    error_message: str | None = None


class StageTimer:
    """Context manager that records wall-clock duration of one stage.

    Usage:
        timer = StageTimer("attempt:openai")
        with timer:
            await do_work()
        print(timer.duration_seconds)
    """

    def __init__(self, stage_name: str) -> None:
        self.stage_name = stage_name
        self.start_time: datetime | None = None
        self.end_time: datetime | None = None
        self.duration_seconds: float = 0.0
        self._mono_start: float = 0.0

    def __enter__(self) -> StageTimer:
        self.start_time = datetime.now(UTC)
        self._mono_start = time.monotonic()
        return self

    def __exit__(self, exc_type: object, exc_val: object, exc_tb: object) -> None:
        self.duration_seconds = time.monotonic() - self._mono_start
        self.end_time = datetime.now(UTC)


def log_run_metrics(metrics: RunMetrics, stream: TextIO | None = None) -> None:
    """Emit run metrics as a single structured JSON line.

    Args:
        metrics: Populated RunMetrics dataclass.
        stream: Destination; defaults to stdout.
    """
    entry = {
        "timestamp": datetime.now(UTC).isoformat(),
        "severity": "INFO" if metrics.status == "completed" else "WARNING",
        "metric_type": "transcription_run",
        **asdict(metrics),
    }
    print(json.dumps(entry), file=stream or sys.stdout)
