"""Deterministic mapping of raw failure signals into the ErrorKind taxonomy.

classify() accepts HTTP responses, status codes, httpx transport errors,
OS-level socket errors, and EngineError values. It never raises:
anything it cannot interpret becomes ErrorKind.UNKNOWN with a non-empty
detail string.
"""

from __future__ import annotations

import json
import logging
import socket
from datetime import UTC, datetime
from email.utils import parsedate_to_datetime
from typing import Any

import httpx

from vox_engine.utils.errors import (
    ClassifiedError,
    EngineError,
    ErrorKind,
    ProviderHTTPError,
)

logger = logging.getLogger(__name__)

DEFAULT_RETRY_AFTER_SECONDS = 1.0
MAX_DETAIL_LENGTH = 200

_AUTH_STATUS_CODES = {401, 403}
_VALIDATION_STATUS_CODES = {400, 404, 413, 415, 422}


def classify(signal: Any) -> ClassifiedError:
    """Map a raw failure signal to a ClassifiedError.

    Args:
        signal: An httpx.Response, an int status code, an exception, or a
            ClassifiedError (returned unchanged).

    Returns:
        The classified error. Never raises.
    """
    try:
        return _classify(signal)
    except Exception as exc:
        logger.warning("Failed to classify %r: %s", signal, exc)
        return ClassifiedError(ErrorKind.UNKNOWN, _describe(signal))


def _classify(signal: Any) -> ClassifiedError:
    if isinstance(signal, ClassifiedError):
        return signal
    if isinstance(signal, EngineError):
        retry_after = signal.retry_after
        if signal.kind is not ErrorKind.RATE_LIMITED:
            retry_after = None
        return ClassifiedError(signal.kind, str(signal), retry_after)
    if isinstance(signal, ProviderHTTPError):
        return classify_response(signal.response)
    if isinstance(signal, httpx.HTTPStatusError):
        return classify_response(signal.response)
    if isinstance(signal, httpx.Response):
        return classify_response(signal)
    if isinstance(signal, int) and not isinstance(signal, bool):
        return classify_status(signal)
    if isinstance(signal, BaseException):
        return _classify_exception(signal)
    return ClassifiedError(ErrorKind.UNKNOWN, _describe(signal))


def _classify_exception(exc: BaseException) -> ClassifiedError:
    detail = _describe(exc)

    # httpx.TimeoutException covers connect/read/write/pool timeouts
    if isinstance(exc, (httpx.TimeoutException, TimeoutError, socket.timeout)):
        return ClassifiedError(ErrorKind.NETWORK_TIMEOUT, detail)
    if isinstance(exc, (httpx.ConnectError, ConnectionRefusedError, socket.gaierror)):
        return ClassifiedError(ErrorKind.NETWORK_UNREACHABLE, detail)
    if isinstance(exc, httpx.NetworkError):
        return ClassifiedError(ErrorKind.NETWORK_UNREACHABLE, detail)
    if isinstance(exc, ConnectionError):
        return ClassifiedError(ErrorKind.NETWORK_UNREACHABLE, detail)
    return ClassifiedError(ErrorKind.UNKNOWN, detail)


def classify_status(status_code: int, detail: str = "") -> ClassifiedError:
    """Classify a bare HTTP status code."""
    message = detail or f"HTTP {status_code}"
    if status_code in _AUTH_STATUS_CODES:
        return ClassifiedError(ErrorKind.AUTHENTICATION, message)
    if status_code == 429:
        return ClassifiedError(
            ErrorKind.RATE_LIMITED, message, DEFAULT_RETRY_AFTER_SECONDS
        )
    if status_code == 402:
        return ClassifiedError(ErrorKind.QUOTA_EXCEEDED, message)
    if status_code == 408:
        return ClassifiedError(ErrorKind.NETWORK_TIMEOUT, message)
    if status_code in _VALIDATION_STATUS_CODES:
        return ClassifiedError(ErrorKind.VALIDATION_FAILURE, message)
    if 500 <= status_code <= 599:
        return ClassifiedError(ErrorKind.SERVICE_UNAVAILABLE, message)
    return ClassifiedError(ErrorKind.UNKNOWN, message)


def classify_response(response: httpx.Response) -> ClassifiedError:
    """Classify a provider HTTP response, reading retry hints from it."""
    status_code = response.status_code
    body = _read_json(response)
    detail = f"HTTP {status_code}: {_error_message(response, body)}"

    if status_code == 429:
        if _mentions_quota(response, body):
            return ClassifiedError(ErrorKind.QUOTA_EXCEEDED, detail)
        return ClassifiedError(
            ErrorKind.RATE_LIMITED, detail, parse_retry_after(response, body)
        )
    return classify_status(status_code, detail)


def parse_retry_after(
    response: httpx.Response, body: dict[str, Any] | None = None
) -> float:
    """Read the retry-after hint from a rate-limited response.

    Order: Retry-After header (delta-seconds or HTTP-date), then the JSON
    body field retry_after (top level or nested under "error"), then
    DEFAULT_RETRY_AFTER_SECONDS.
    """
    header = response.headers.get("retry-after")
    if header:
        seconds = _parse_retry_after_header(header.strip())
        if seconds is not None:
            return seconds

    if body is None:
        body = _read_json(response)
    if body is not None:
        for container in (body, body.get("error")):
            if isinstance(container, dict) and "retry_after" in container:
                try:
                    return max(0.0, float(container["retry_after"]))
                except (TypeError, ValueError):
                    break

    return DEFAULT_RETRY_AFTER_SECONDS


def _parse_retry_after_header(value: str) -> float | None:
    try:
        return max(0.0, float(value))
    except ValueError:
        pass
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=UTC)
    return max(0.0, (when - datetime.now(UTC)).total_seconds())


def _read_json(response: httpx.Response) -> dict[str, Any] | None:
    try:
        body = json.loads(response.content or b"null")
    except (ValueError, UnicodeDecodeError):
        return None
    return body if isinstance(body, dict) else None


def _mentions_quota(response: httpx.Response, body: dict[str, Any] | None) -> bool:
    if body is not None:
        error = body.get("error")
        if isinstance(error, dict):
            fields = [error.get("code"), error.get("type"), error.get("message")]
        else:
            fields = [error, body.get("code"), body.get("message")]
        return any(isinstance(f, str) and "quota" in f.lower() for f in fields)
    return "quota" in response.text.lower()


def _error_message(response: httpx.Response, body: dict[str, Any] | None) -> str:
    if body is not None:
        error = body.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])[:MAX_DETAIL_LENGTH]
        if body.get("message"):
            return str(body["message"])[:MAX_DETAIL_LENGTH]
        if isinstance(error, str) and error:
            return error[:MAX_DETAIL_LENGTH]
        if body.get("detail"):
            return str(body["detail"])[:MAX_DETAIL_LENGTH]
    text = response.text.strip()
    return text[:MAX_DETAIL_LENGTH] or response.reason_phrase or "no response body"


def _describe(signal: Any) -> str:
    if isinstance(signal, BaseException):
        message = str(signal).strip()
        name = type(signal).__name__
        return f"{name}: {message}" if message else name
    text = repr(signal)
    return text[:MAX_DETAIL_LENGTH] or "unclassified failure"
