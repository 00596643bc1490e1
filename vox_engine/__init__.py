"""Local-first transcription with multi-provider fallback."""

from vox_engine.models import (
    AudioReference,
    Provider,
    TranscriptionRequest,
    TranscriptionResult,
    TranscriptionSegment,
)
from vox_engine.orchestrator import (
    Completed,
    Failed,
    Orchestrator,
    RunOutcome,
    TranscriptionContext,
)

__all__ = [
    "AudioReference",
    "Completed",
    "Failed",
    "Orchestrator",
    "Provider",
    "RunOutcome",
    "TranscriptionContext",
    "TranscriptionRequest",
    "TranscriptionResult",
    "TranscriptionSegment",
]
