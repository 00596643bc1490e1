"""Fallback state machine producing one result or one classified failure.

A run builds an engine plan (Local first unless forced remote, then the
preferred provider, then alternates), attempts engines one at a time,
and consults the retry controller after every failure. Engines are never
raced; the only suspension points are the attempt itself and the
backoff sleep, so concurrent runs never block each other.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from enum import StrEnum
from typing import TextIO

from vox_engine.config import NetworkDefaults, RetryPolicy
from vox_engine.engines.interface import EngineAdapter
from vox_engine.models import (
    AttemptOutcome,
    AttemptRecord,
    EngineKind,
    Failure,
    Provider,
    Success,
    TranscriptionRequest,
    TranscriptionResult,
)
from vox_engine.observability.metrics import RunMetrics, StageTimer, log_run_metrics
from vox_engine.observability.resources import ResourceMonitor
from vox_engine.progress import ProgressReporter, ProgressSink
from vox_engine.quality import DegradationPolicy
from vox_engine.storage.scratch import ScratchRegistry
from vox_engine.utils.errors import ClassifiedError, ErrorKind, TranscriptionFailed
from vox_engine.utils.retry import RetryController

logger = logging.getLogger(__name__)

# Timer callbacks may fire marginally before the deadline they were set for
DEADLINE_TOLERANCE_SECONDS = 0.005


class RunState(StrEnum):
    IDLE = "idle"
    ATTEMPTING = "attempting_engine"
    RETRYING = "engine_failed_retry"
    ADVANCING = "engine_failed_advance"
    SUCCEEDED = "engine_succeeded"
    EXHAUSTED = "all_exhausted"


@dataclass
class Completed:
    """Terminal success."""

    result: TranscriptionResult

    @property
    def attempts(self) -> list[AttemptRecord]:
        return self.result.attempts

    def unwrap(self) -> TranscriptionResult:
        return self.result


@dataclass
class Failed:
    """Terminal failure after every planned engine was exhausted.

    attempts holds every attempt in order, retries included.
    engine_errors holds one (engine, ErrorKind) pair per engine, in plan
    order, with the kind that made the run leave that engine.
    """

    error: ClassifiedError
    attempts: list[AttemptRecord] = field(default_factory=list)
    engine_errors: list[tuple[str, ErrorKind]] = field(default_factory=list)
    request_id: str | None = None

    @property
    def kind(self) -> ErrorKind:
        return self.error.kind

    @property
    def engines_attempted(self) -> list[str]:
        return [engine for engine, _ in self.engine_errors]

    def unwrap(self) -> TranscriptionResult:
        raise TranscriptionFailed(self.error, self.engine_errors, self.request_id)


RunOutcome = Completed | Failed


@dataclass
class TranscriptionContext:
    """Collaborators shared by runs, owned by the caller.

    The scratch registry is the only mutable member and is lock-protected.
    Run metrics go to metrics_stream, or stdout when it is None.
    """

    scratch: ScratchRegistry = field(default_factory=ScratchRegistry)
    network: NetworkDefaults = field(default_factory=NetworkDefaults)
    retry_policy: RetryPolicy = field(default_factory=RetryPolicy)
    degradation: DegradationPolicy = field(default_factory=DegradationPolicy)
    monitor: ResourceMonitor | None = None
    emit_metrics: bool = True
    metrics_stream: TextIO | None = None

    @classmethod
    def from_env(cls) -> TranscriptionContext:
        return cls(
            network=NetworkDefaults.from_env(),
            retry_policy=RetryPolicy.from_env(),
            monitor=ResourceMonitor(),
        )


def build_engine_plan(
    request: TranscriptionRequest,
    local: EngineAdapter | None,
    remotes: Mapping[Provider, EngineAdapter],
    default_provider: Provider | None = None,
) -> list[EngineAdapter]:
    """Order the engines a run will try.

    Local comes first unless force_remote is set; its locale check runs
    as part of its attempt. Remote providers follow: the preferred one
    (or the default), then each alternate in the order given. Duplicates
    and providers without a registered adapter are skipped.
    """
    plan: list[EngineAdapter] = []
    if local is not None and not request.force_remote:
        plan.append(local)

    preferred = request.preferred_provider or default_provider
    ordered = ([preferred] if preferred else []) + list(request.alternate_providers)

    seen: set[Provider] = set()
    for provider in ordered:
        if provider in seen:
            continue
        seen.add(provider)
        adapter = remotes.get(provider)
        if adapter is None:
            logger.debug("No adapter registered for provider %s; skipping", provider)
            continue
        plan.append(adapter)
    return plan


class Orchestrator:
    """Runs the engine fallback chain for transcription requests.

    Args:
        local: On-device adapter, or None when no local engine exists.
        remotes: Remote adapters keyed by provider.
        context: Shared collaborators; defaults to an empty context.
    """

    def __init__(
        self,
        local: EngineAdapter | None = None,
        remotes: Mapping[Provider, EngineAdapter] | None = None,
        context: TranscriptionContext | None = None,
    ) -> None:
        self.local = local
        self.remotes = dict(remotes or {})
        self.context = context or TranscriptionContext()

    def plan(
        self, request: TranscriptionRequest, context: TranscriptionContext | None = None
    ) -> list[EngineAdapter]:
        context = context or self.context
        return build_engine_plan(
            request, self.local, self.remotes, context.network.default_provider
        )

    def transcribe_sync(
        self,
        request: TranscriptionRequest,
        progress: ProgressSink | None = None,
        context: TranscriptionContext | None = None,
    ) -> RunOutcome:
        """Blocking wrapper around transcribe() for non-async callers."""
        return asyncio.run(self.transcribe(request, progress, context))

    async def transcribe(
        self,
        request: TranscriptionRequest,
        progress: ProgressSink | None = None,
        context: TranscriptionContext | None = None,
    ) -> RunOutcome:
        """Transcribe one request, falling back across engines.

        Args:
            request: Immutable transcription request.
            progress: Optional callable receiving ProgressEvents.
            context: Overrides the orchestrator's context for this run.

        Returns:
            Completed with the result of the first engine that succeeded,
            or Failed carrying the last classified error and the trace.
        """
        context = context or self.context
        reporter = ProgressReporter(progress)
        run = _Run(request, context, reporter, self.plan(request, context))

        try:
            with context.scratch.hold(request.audio.temporary_path):
                outcome = await run.execute()
        finally:
            reporter.complete()

        if context.emit_metrics:
            log_run_metrics(run.metrics(outcome), context.metrics_stream)
        return outcome


class _Run:
    """State for a single transcribe() call."""

    def __init__(
        self,
        request: TranscriptionRequest,
        context: TranscriptionContext,
        reporter: ProgressReporter,
        plan: list[EngineAdapter],
    ) -> None:
        self.request = request
        self.context = context
        self.reporter = reporter
        self.plan = plan
        self.retry = RetryController(context.retry_policy)
        self.attempts: list[AttemptRecord] = []
        self.engine_errors: list[tuple[str, ErrorKind]] = []
        self.adapter_calls = 0
        self.engines_entered = 0
        self.state = RunState.IDLE
        self.started = time.monotonic()
        deadline = context.retry_policy.run_deadline_seconds
        self.deadline = self.started + deadline if deadline else None

    def _transition(self, state: RunState, engine: str | None = None) -> None:
        logger.debug(
            "Run %s: %s -> %s",
            self.request.request_id,
            self.state,
            state,
            extra={"request_id": self.request.request_id, "engine": engine},
        )
        self.state = state

    def _remaining(self) -> float | None:
        if self.deadline is None:
            return None
        return self.deadline - time.monotonic()

    async def execute(self) -> RunOutcome:
        if not self.plan:
            self._transition(RunState.EXHAUSTED)
            return self._failed(
                ClassifiedError(
                    ErrorKind.VALIDATION_FAILURE,
                    "No transcription engine is available for this request",
                )
            )

        if all(
            adapter.descriptor.requires_credential and not adapter.has_credential(self.request)
            for adapter in self.plan
        ):
            return self._fail_missing_credentials()

        last_error: ClassifiedError | None = None
        for adapter in self.plan:
            outcome = await self._run_engine(adapter)
            if isinstance(outcome, Completed | Failed):
                return outcome
            last_error = outcome
            self.engine_errors.append((adapter.engine_id, outcome.kind))
            self._transition(RunState.ADVANCING, adapter.engine_id)

        self._transition(RunState.EXHAUSTED)
        assert last_error is not None
        return self._failed(last_error)

    async def _run_engine(self, adapter: EngineAdapter) -> RunOutcome | ClassifiedError:
        """Attempt one engine until it succeeds or the retry controller gives up.

        Returns:
            A terminal outcome, or the ClassifiedError to advance with.
        """
        engine = adapter.engine_id
        engine_started = time.monotonic()
        self.engines_entered += 1
        network_call = (
            adapter.descriptor.kind is EngineKind.REMOTE and adapter.has_credential(self.request)
        )
        attempt_number = 0

        while True:
            attempt_number += 1
            self._transition(RunState.ATTEMPTING, engine)
            self.reporter.begin_attempt(engine, attempt_number)

            timeout = self.context.retry_policy.attempt_timeout_seconds or None
            remaining = self._remaining()
            if remaining is not None and (timeout is None or remaining < timeout):
                timeout = max(remaining, 0.0)

            self.adapter_calls += 1

            with StageTimer(f"attempt:{engine}") as timer:
                outcome = await self._attempt(adapter, timeout)

            if isinstance(outcome, Success):
                self._record(engine, attempt_number, None, "", timer, network_call)
                self._transition(RunState.SUCCEEDED, engine)
                return self._completed(adapter, outcome)

            error = outcome.error
            self._record(engine, attempt_number, error.kind, error.detail, timer, network_call)

            remaining = self._remaining()
            if remaining is not None and remaining <= DEADLINE_TOLERANCE_SECONDS:
                return self._deadline_failure(engine)

            decision = self.retry.should_retry(
                engine, attempt_number, error, time.monotonic() - engine_started
            )
            if not decision.retry:
                return error

            if remaining is not None and decision.delay >= remaining:
                logger.info(
                    "Backoff of %.1fs on %s would cross the run deadline; advancing",
                    decision.delay,
                    engine,
                    extra={"request_id": self.request.request_id, "engine": engine},
                )
                return error

            self._transition(RunState.RETRYING, engine)
            await asyncio.sleep(decision.delay)

    async def _attempt(self, adapter: EngineAdapter, timeout: float | None) -> AttemptOutcome:
        try:
            return await asyncio.wait_for(adapter.attempt(self.request, self.reporter), timeout)
        except TimeoutError:
            return Failure(
                ClassifiedError(
                    ErrorKind.NETWORK_TIMEOUT,
                    f"Attempt on {adapter.engine_id} exceeded {timeout:g}s",
                )
            )

    def _record(
        self,
        engine: str,
        attempt_number: int,
        kind: ErrorKind | None,
        detail: str,
        timer: StageTimer,
        network_call: bool,
    ) -> None:
        self.attempts.append(
            AttemptRecord(
                engine=engine,
                attempt_number=attempt_number,
                error_kind=kind,
                detail=detail,
                duration_seconds=timer.duration_seconds,
                network_call=network_call,
            )
        )
        logger.info(
            "Attempt %d on %s %s",
            attempt_number,
            engine,
            "succeeded" if kind is None else f"failed: {kind}",
            extra={
                "request_id": self.request.request_id,
                "engine": engine,
                "attempt": attempt_number,
                "error_kind": kind,
                "duration_seconds": round(timer.duration_seconds, 3),
            },
        )

    def _completed(self, adapter: EngineAdapter, outcome: Success) -> Completed:
        if not adapter.descriptor.supports_timestamps:
            outcome = replace(outcome, timestamps_available=False)
        pressure = self.context.monitor.sample() if self.context.monitor else None
        result = self.context.degradation.evaluate(
            outcome, pressure, self.request.include_timestamps
        )
        result = replace(
            result,
            engine=adapter.engine_id,
            processing_time=time.monotonic() - self.started,
            attempts=list(self.attempts),
        )
        return Completed(result)

    def _fail_missing_credentials(self) -> Failed:
        engines = [adapter.engine_id for adapter in self.plan]
        for engine in engines:
            self.attempts.append(
                AttemptRecord(
                    engine=engine,
                    attempt_number=1,
                    error_kind=ErrorKind.AUTHENTICATION,
                    detail="No credential configured",
                    network_call=False,
                )
            )
            self.engine_errors.append((engine, ErrorKind.AUTHENTICATION))
        self._transition(RunState.EXHAUSTED)
        logger.warning(
            "No credential for any planned engine: %s",
            ", ".join(engines),
            extra={"request_id": self.request.request_id},
        )
        return self._failed(
            ClassifiedError(
                ErrorKind.AUTHENTICATION,
                f"A credential is required by every planned engine: {', '.join(engines)}",
            )
        )

    def _deadline_failure(self, engine: str) -> Failed:
        if not self.engine_errors or self.engine_errors[-1][0] != engine:
            self.engine_errors.append((engine, ErrorKind.NETWORK_TIMEOUT))
        self._transition(RunState.EXHAUSTED, engine)
        return self._failed(
            ClassifiedError(
                ErrorKind.NETWORK_TIMEOUT,
                f"Run deadline of {self.context.retry_policy.run_deadline_seconds:.1f}s "
                f"exceeded during {engine}",
            )
        )

    def _failed(self, error: ClassifiedError) -> Failed:
        logger.error(
            "Transcription failed: %s",
            error,
            extra={"request_id": self.request.request_id, "error_kind": error.kind},
        )
        return Failed(
            error=error,
            attempts=list(self.attempts),
            engine_errors=list(self.engine_errors),
            request_id=self.request.request_id,
        )

    def metrics(self, outcome: RunOutcome) -> RunMetrics:
        engines_tried = list(dict.fromkeys(record.engine for record in self.attempts))
        retries = self.adapter_calls - self.engines_entered
        metrics = RunMetrics(
            request_id=self.request.request_id,
            status="completed" if isinstance(outcome, Completed) else "failed",
            engine=outcome.result.engine if isinstance(outcome, Completed) else None,
            attempt_count=self.adapter_calls,
            retry_count=max(retries, 0),
            engines_tried=engines_tried,
            processing_wall_time_seconds=round(time.monotonic() - self.started, 3),
            audio_duration_seconds=self.request.audio.duration_seconds,
        )
        if isinstance(outcome, Completed):
            metrics.degradation_tags = sorted(outcome.result.metadata)
        else:
            metrics.error_kind = outcome.kind.value
            metrics.error_message = outcome.error.detail
        return metrics
