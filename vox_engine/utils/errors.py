"""Error taxonomy and exception hierarchy for transcription runs.

ErrorKind is the closed set of failure classes the orchestrator reasons
about. Exceptions inherit from VoxError; adapters raise EngineError
internally and the adapter boundary converts it into a ClassifiedError
value, so only configuration and caller-facing errors propagate as
exceptions.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    import httpx


class ErrorKind(StrEnum):
    """Closed taxonomy of engine failure classes."""

    AUTHENTICATION = "authentication"
    RATE_LIMITED = "rate_limited"
    QUOTA_EXCEEDED = "quota_exceeded"
    SERVICE_UNAVAILABLE = "service_unavailable"
    NETWORK_TIMEOUT = "network_timeout"
    NETWORK_UNREACHABLE = "network_unreachable"
    UNSUPPORTED_LOCALE = "unsupported_locale"
    VALIDATION_FAILURE = "validation_failure"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class ClassifiedError:
    """A failure mapped into the ErrorKind taxonomy.

    retry_after is only set for RATE_LIMITED and holds the provider's
    minimum wait in seconds.
    """

    kind: ErrorKind
    detail: str
    retry_after: float | None = None

    def __post_init__(self) -> None:
        if not self.detail:
            object.__setattr__(self, "detail", f"{self.kind.value} error")

    def __str__(self) -> str:
        if self.retry_after is not None:
            return f"{self.kind.value}: {self.detail} (retry after {self.retry_after:g}s)"
        return f"{self.kind.value}: {self.detail}"


class VoxError(Exception):
    """Base exception for all transcription errors."""

    def __init__(self, message: str, request_id: str | None = None) -> None:
        self.request_id = request_id
        super().__init__(message)

    def __str__(self) -> str:
        if self.request_id:
            return f"[request={self.request_id}] {super().__str__()}"
        return super().__str__()


class ConfigurationError(VoxError):
    """Raised when configuration values are missing or invalid."""

    def __init__(
        self, message: str, request_id: str | None = None, key: str | None = None
    ) -> None:
        self.key = key
        super().__init__(message, request_id)


class EngineError(VoxError):
    """Raised inside an engine adapter with an explicit ErrorKind.

    Never escapes an adapter: EngineAdapter.attempt() converts it into
    a Failure outcome.
    """

    def __init__(
        self,
        kind: ErrorKind,
        message: str,
        engine: str | None = None,
        retry_after: float | None = None,
    ) -> None:
        self.kind = kind
        self.engine = engine
        self.retry_after = retry_after
        super().__init__(message)


class ProviderHTTPError(VoxError):
    """Raised when a provider answers with a non-success HTTP status."""

    def __init__(
        self, message: str, response: httpx.Response, provider: str | None = None
    ) -> None:
        self.response = response
        self.provider = provider
        super().__init__(message)

    @property
    def status_code(self) -> int:
        return self.response.status_code


class AudioProbeError(VoxError):
    """Raised when audio metadata cannot be read."""

    def __init__(
        self, message: str, request_id: str | None = None, path: str | None = None
    ) -> None:
        self.path = path
        super().__init__(message, request_id)


class ScratchFileError(VoxError):
    """Raised when the scratch-file registry cannot create or remove a file."""

    def __init__(
        self, message: str, request_id: str | None = None, path: str | None = None
    ) -> None:
        self.path = path
        super().__init__(message, request_id)


class TranscriptionFailed(VoxError):
    """Raised by RunOutcome.unwrap() when every planned engine failed.

    Carries the final classified error and the (engine, ErrorKind) pairs
    in plan order.
    """

    def __init__(
        self,
        error: ClassifiedError,
        engine_errors: list[tuple[str, ErrorKind]],
        request_id: str | None = None,
    ) -> None:
        self.error = error
        self.engine_errors = engine_errors
        super().__init__(error.detail, request_id)

    @property
    def kind(self) -> ErrorKind:
        return self.error.kind
