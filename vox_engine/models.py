"""Data models shared by the orchestrator, engine adapters, and renderers.

Requests are immutable and live for a single transcribe() call. Results
are plain dataclasses returned by value to the caller.
"""

from __future__ import annotations

import uuid
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from types import MappingProxyType

from vox_engine.utils.errors import ClassifiedError, ErrorKind

LOCAL_ENGINE_ID = "local"

# Degradation metadata tags
QUALITY_DEGRADED = "quality_degraded"
SEGMENTS_REDUCED = "segments_reduced"
TIMESTAMPS_UNAVAILABLE = "timestamps_unavailable"
LOW_CONFIDENCE_ACCEPTED = "low_confidence_accepted"


class Provider(StrEnum):
    """Networked transcription providers."""

    OPENAI = "openai"
    REVAI = "revai"
    SPEECHMATICS = "speechmatics"


class EngineKind(StrEnum):
    LOCAL = "local"
    REMOTE = "remote"


class ProgressPhase(StrEnum):
    INITIALIZING = "initializing"
    EXTRACTING = "extracting"
    TRANSCRIBING = "transcribing"
    FORMATTING = "formatting"
    COMPLETE = "complete"


@dataclass(frozen=True)
class AudioReference:
    """Handle to an extracted audio track and its format metadata."""

    path: str
    duration_seconds: float
    sample_rate: int
    channels: int
    codec: str = "wav"
    size_bytes: int | None = None
    temporary_path: str | None = None


@dataclass(frozen=True)
class TranscriptionRequest:
    """Immutable description of one transcription call.

    credential applies to every remote provider unless
    provider_credentials holds a provider-specific value. Providers
    without either fall back to their environment variable.
    """

    audio: AudioReference
    language: str | None = None
    include_timestamps: bool = False
    force_remote: bool = False
    preferred_provider: Provider | None = None
    credential: str | None = None
    alternate_providers: tuple[Provider, ...] = ()
    provider_credentials: Mapping[Provider, str] = field(default_factory=dict)
    request_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])

    def __post_init__(self) -> None:
        object.__setattr__(self, "alternate_providers", tuple(self.alternate_providers))
        object.__setattr__(
            self, "provider_credentials", MappingProxyType(dict(self.provider_credentials))
        )

    def credential_for(self, provider: Provider) -> str | None:
        """Return the explicit credential for a provider, if any."""
        return self.provider_credentials.get(provider) or self.credential


@dataclass(frozen=True)
class EngineDescriptor:
    """Identity and capability flags of one engine instance.

    An engine with supports_timestamps False never yields usable segment
    timings, whatever its adapter reports.
    """

    engine_id: str
    kind: EngineKind
    provider: Provider | None = None
    supports_timestamps: bool = True
    requires_credential: bool = False

    @classmethod
    def local(cls, supports_timestamps: bool = True) -> EngineDescriptor:
        return cls(
            engine_id=LOCAL_ENGINE_ID,
            kind=EngineKind.LOCAL,
            supports_timestamps=supports_timestamps,
            requires_credential=False,
        )

    @classmethod
    def remote(
        cls, provider: Provider, supports_timestamps: bool = True
    ) -> EngineDescriptor:
        return cls(
            engine_id=provider.value,
            kind=EngineKind.REMOTE,
            provider=provider,
            supports_timestamps=supports_timestamps,
            requires_credential=True,
        )


@dataclass
class TranscriptionSegment:
    """A span of recognized text with timing and confidence."""

    text: str
    start_time: float
    end_time: float
    confidence: float
    speaker_id: str | None = None

    def __post_init__(self) -> None:
        if self.end_time < self.start_time:
            raise ValueError(
                f"Segment end_time {self.end_time} precedes start_time {self.start_time}"
            )
        self.confidence = min(1.0, max(0.0, self.confidence))

    @property
    def duration(self) -> float:
        return self.end_time - self.start_time


@dataclass
class AttemptRecord:
    """One entry of the attempted-engine trace."""

    engine: str
    attempt_number: int
    error_kind: ErrorKind | None
    detail: str = ""
    duration_seconds: float = 0.0
    network_call: bool = True

    @property
    def succeeded(self) -> bool:
        return self.error_kind is None


@dataclass
class TranscriptionResult:
    """Complete transcription returned to the caller."""

    text: str
    language: str
    confidence: float
    duration: float
    segments: list[TranscriptionSegment]
    engine: str
    processing_time: float = 0.0
    metadata: set[str] = field(default_factory=set)
    attempts: list[AttemptRecord] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.confidence = min(1.0, max(0.0, self.confidence))

    @property
    def is_degraded(self) -> bool:
        return QUALITY_DEGRADED in self.metadata


@dataclass
class ProgressEvent:
    """A point-in-time progress update for one run."""

    progress: float
    phase: ProgressPhase
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))
    engine: str | None = None
    message: str = ""


@dataclass
class Success:
    """Attempt produced text.

    timestamps_available is False when the engine could not return
    timing data for the segments it produced.
    """

    result: TranscriptionResult
    timestamps_available: bool = True


@dataclass
class Failure:
    """Attempt failed with a classified error."""

    error: ClassifiedError

    @property
    def kind(self) -> ErrorKind:
        return self.error.kind


AttemptOutcome = Success | Failure


def overall_confidence(segments: list[TranscriptionSegment]) -> float:
    """Mean segment confidence, 0.0 for an empty list."""
    if not segments:
        return 0.0
    return sum(s.confidence for s in segments) / len(segments)


def primary_language(language: str | None) -> str | None:
    """Return the primary subtag of a locale hint ("en-US" -> "en")."""
    if not language:
        return None
    return language.replace("_", "-").split("-")[0].lower()
