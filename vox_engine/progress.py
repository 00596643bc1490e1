"""Monotonic progress stream for one orchestration run.

Adapters report progress as a fraction of their own attempt. The
reporter maps that fraction into the run-wide window left above the
point where the attempt began, so the emitted values never decrease
across retries and engine advances. Only complete() emits 1.0.
"""

from __future__ import annotations

import logging
from collections.abc import Callable

from vox_engine.models import ProgressEvent, ProgressPhase

logger = logging.getLogger(__name__)

ProgressSink = Callable[[ProgressEvent], None]

# Highest value an attempt may report before completion
ATTEMPT_CEILING = 0.95


class ProgressReporter:
    """Forwards ProgressEvents to a caller-supplied sink.

    Sink failures are logged and otherwise ignored; progress reporting
    never affects the outcome of a run.

    Args:
        sink: Callable receiving each event, or None to only record them.
    """

    def __init__(self, sink: ProgressSink | None = None) -> None:
        self._sink = sink
        self._progress = 0.0
        self._attempt_floor = 0.0
        self._engine: str | None = None
        self._completed = False
        self.events: list[ProgressEvent] = []

    @property
    def progress(self) -> float:
        return self._progress

    @property
    def completed(self) -> bool:
        return self._completed

    def begin_attempt(self, engine: str, attempt_number: int = 1) -> None:
        """Start a new attempt window; phase returns to initializing."""
        self._engine = engine
        self._attempt_floor = self._progress
        self._emit(
            self._progress,
            ProgressPhase.INITIALIZING,
            f"Attempt {attempt_number} on {engine}",
        )

    def update(self, fraction: float, phase: ProgressPhase, message: str = "") -> None:
        """Report progress within the current attempt.

        Args:
            fraction: Attempt-local progress in [0, 1]; clamped.
            phase: Current phase. COMPLETE is reserved for complete().
            message: Optional human-readable note.
        """
        if self._completed:
            return
        if phase is ProgressPhase.COMPLETE:
            phase = ProgressPhase.FORMATTING
        fraction = min(1.0, max(0.0, fraction))
        value = self._attempt_floor + fraction * (ATTEMPT_CEILING - self._attempt_floor)
        self._emit(max(value, self._progress), phase, message)

    def complete(self, message: str = "") -> None:
        """Emit the terminal 1.0/complete event. Later calls are ignored."""
        if self._completed:
            return
        self._completed = True
        self._emit(1.0, ProgressPhase.COMPLETE, message)

    def _emit(self, progress: float, phase: ProgressPhase, message: str) -> None:
        self._progress = progress
        event = ProgressEvent(
            progress=progress, phase=phase, engine=self._engine, message=message
        )
        self.events.append(event)
        if self._sink is None:
            return
        try:
            self._sink(event)
        except Exception:
            logger.warning("Progress sink raised; event dropped", exc_info=True)
