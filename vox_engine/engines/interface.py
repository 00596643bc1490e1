"""Abstract engine adapter interface.

An adapter performs one transcription attempt and reports the outcome as
a value: Success with a partial result, or Failure with a
ClassifiedError. Concrete adapters implement _transcribe() and raise
freely; attempt() classifies anything that escapes, so no raw exception
reaches the orchestrator.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod

from vox_engine.classifier import classify
from vox_engine.models import (
    AttemptOutcome,
    EngineDescriptor,
    Failure,
    ProgressPhase,
    Success,
    TranscriptionRequest,
)
from vox_engine.progress import ProgressReporter
from vox_engine.utils.errors import ClassifiedError

logger = logging.getLogger(__name__)


class EngineAdapter(ABC):
    """Base class for Local and Remote engine adapters.

    Subclasses set `descriptor` and implement _transcribe().
    """

    descriptor: EngineDescriptor

    @property
    def engine_id(self) -> str:
        return self.descriptor.engine_id

    def has_credential(self, request: TranscriptionRequest) -> bool:
        """Whether this engine can attempt the request without an auth failure."""
        return not self.descriptor.requires_credential

    async def attempt(
        self,
        request: TranscriptionRequest,
        reporter: ProgressReporter | None = None,
    ) -> AttemptOutcome:
        """Run one transcription attempt.

        Args:
            request: The immutable transcription request.
            reporter: Optional progress reporter for this run.

        Returns:
            Success or Failure. Never raises, except for task cancellation.
        """
        try:
            return await self._transcribe(request, reporter)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            error = self._classify_failure(exc)
            logger.warning(
                "Attempt on %s failed: %s",
                self.engine_id,
                error,
                extra={
                    "request_id": request.request_id,
                    "engine": self.engine_id,
                    "error_kind": error.kind,
                },
            )
            return Failure(error)

    def _classify_failure(self, exc: Exception) -> ClassifiedError:
        return classify(exc)

    @abstractmethod
    async def _transcribe(
        self,
        request: TranscriptionRequest,
        reporter: ProgressReporter | None,
    ) -> Success:
        """Perform the engine-specific work.

        Raises:
            Exception: Any failure; attempt() classifies it.
        """

    @staticmethod
    def _report(
        reporter: ProgressReporter | None,
        fraction: float,
        phase: ProgressPhase,
        message: str = "",
    ) -> None:
        if reporter is not None:
            reporter.update(fraction, phase, message)
