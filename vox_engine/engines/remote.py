"""Shared behavior for network-backed engine adapters.

RemoteEngineAdapter resolves the credential, owns the httpx client
lifecycle, and turns non-success statuses into ProviderHTTPError so the
classifier can map them. Providers only supply request and response
shapes.
"""

from __future__ import annotations

import logging
from abc import abstractmethod
from collections.abc import AsyncIterator, Collection
from contextlib import asynccontextmanager
from typing import ClassVar

import httpx

from vox_engine.engines.interface import EngineAdapter
from vox_engine.models import (
    EngineDescriptor,
    ProgressPhase,
    Provider,
    Success,
    TranscriptionRequest,
)
from vox_engine.progress import ProgressReporter
from vox_engine.utils.errors import EngineError, ErrorKind, ProviderHTTPError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 120.0


class RemoteEngineAdapter(EngineAdapter):
    """Base class for remote provider adapters.

    Args:
        api_key: Provider credential used when the request carries none.
        base_url: API base URL (default: the provider's production endpoint).
        timeout: Per-request HTTP timeout in seconds.
        client: Optional pre-built client, left open after each attempt.
    """

    provider: ClassVar[Provider]
    DEFAULT_BASE_URL: ClassVar[str]
    supports_timestamps: ClassVar[bool] = True

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._api_key = api_key
        self._base_url = (base_url or self.DEFAULT_BASE_URL).rstrip("/")
        self._timeout = timeout
        self._client = client
        self.descriptor = EngineDescriptor.remote(
            self.provider, supports_timestamps=self.supports_timestamps
        )

    def resolve_credential(self, request: TranscriptionRequest) -> str | None:
        """Request credential first, then the configured default."""
        return request.credential_for(self.provider) or self._api_key

    def has_credential(self, request: TranscriptionRequest) -> bool:
        return bool(self.resolve_credential(request))

    async def _transcribe(
        self,
        request: TranscriptionRequest,
        reporter: ProgressReporter | None,
    ) -> Success:
        api_key = self.resolve_credential(request)
        if not api_key:
            raise EngineError(
                ErrorKind.AUTHENTICATION,
                f"No credential configured for {self.provider.value}",
                engine=self.engine_id,
            )
        self._validate(request, api_key)

        self._report(reporter, 0.05, ProgressPhase.EXTRACTING, "Uploading audio")
        async with self._client_session() as client:
            return await self._call(client, request, api_key, reporter)

    def _validate(self, request: TranscriptionRequest, api_key: str) -> None:
        """Provider-specific checks before any network call.

        Raises:
            EngineError: If the request cannot be sent to this provider.
        """

    @abstractmethod
    async def _call(
        self,
        client: httpx.AsyncClient,
        request: TranscriptionRequest,
        api_key: str,
        reporter: ProgressReporter | None,
    ) -> Success:
        """Perform the provider round trip(s) and build the outcome."""

    @asynccontextmanager
    async def _client_session(self) -> AsyncIterator[httpx.AsyncClient]:
        if self._client is not None:
            yield self._client
            return
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            yield client

    def _check_response(
        self, response: httpx.Response, expected: Collection[int] = (200,)
    ) -> None:
        """Raise ProviderHTTPError unless the status is expected."""
        if response.status_code not in expected:
            raise ProviderHTTPError(
                f"{self.provider.value} returned HTTP {response.status_code}",
                response,
                provider=self.provider.value,
            )
