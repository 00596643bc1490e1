"""Environment-driven configuration for orchestration runs.

NetworkDefaults and RetryPolicy are read-mostly values shared by
concurrent runs; request_from_env() builds a TranscriptionRequest from
the user-facing options.

Environment variables:
    VOX_DEFAULT_PROVIDER, VOX_REQUEST_TIMEOUT, VOX_OPENAI_BASE_URL,
    VOX_REVAI_BASE_URL, VOX_SPEECHMATICS_BASE_URL, OPENAI_API_KEY,
    VOX_OPENAI_API_KEY, REVAI_API_KEY, SPEECHMATICS_API_KEY,
    VOX_MAX_ATTEMPTS, VOX_BASE_DELAY, VOX_BACKOFF_MULTIPLIER, VOX_MAX_DELAY,
    VOX_ENGINE_BUDGET, VOX_ATTEMPT_TIMEOUT, VOX_RUN_DEADLINE,
    VOX_FORCE_REMOTE, VOX_LANGUAGE, VOX_PREFERRED_PROVIDER,
    VOX_ALTERNATE_PROVIDERS, VOX_API_KEY, VOX_INCLUDE_TIMESTAMPS
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, field

from vox_engine.models import AudioReference, Provider, TranscriptionRequest
from vox_engine.utils.errors import ConfigurationError

DEFAULT_PROVIDER = Provider.OPENAI
DEFAULT_REQUEST_TIMEOUT_SECONDS = 120.0

# Checked in order; first non-empty value wins
CREDENTIAL_ENV_VARS: dict[Provider, tuple[str, ...]] = {
    Provider.OPENAI: ("OPENAI_API_KEY", "VOX_OPENAI_API_KEY"),
    Provider.REVAI: ("REVAI_API_KEY", "VOX_REVAI_API_KEY"),
    Provider.SPEECHMATICS: ("SPEECHMATICS_API_KEY", "VOX_SPEECHMATICS_API_KEY"),
}

_BASE_URL_ENV_VARS: dict[Provider, str] = {
    Provider.OPENAI: "VOX_OPENAI_BASE_URL",
    Provider.REVAI: "VOX_REVAI_BASE_URL",
    Provider.SPEECHMATICS: "VOX_SPEECHMATICS_BASE_URL",
}

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off", ""}


def _env_float(env: Mapping[str, str], key: str, default: float) -> float:
    raw = env.get(key)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = float(raw)
    except ValueError as exc:
        raise ConfigurationError(f"{key} must be a number, got '{raw}'", key=key) from exc
    if value < 0:
        raise ConfigurationError(f"{key} must not be negative, got {value}", key=key)
    return value


def _env_int(env: Mapping[str, str], key: str, default: int) -> int:
    raw = env.get(key)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw)
    except ValueError as exc:
        raise ConfigurationError(f"{key} must be an integer, got '{raw}'", key=key) from exc
    if value < 1:
        raise ConfigurationError(f"{key} must be at least 1, got {value}", key=key)
    return value


def _env_bool(env: Mapping[str, str], key: str, default: bool = False) -> bool:
    raw = env.get(key)
    if raw is None:
        return default
    value = raw.strip().lower()
    if value in _TRUE_VALUES:
        return True
    if value in _FALSE_VALUES:
        return False
    raise ConfigurationError(f"{key} must be a boolean, got '{raw}'", key=key)


def parse_provider(value: str, key: str = "provider") -> Provider:
    """Parse a provider name, raising ConfigurationError when unknown."""
    try:
        return Provider(value.strip().lower())
    except ValueError as exc:
        available = ", ".join(p.value for p in Provider)
        raise ConfigurationError(
            f"Unknown provider: '{value}'. Available: {available}", key=key
        ) from exc


def parse_provider_list(value: str, key: str = "providers") -> tuple[Provider, ...]:
    """Parse a comma-separated provider list, preserving order."""
    return tuple(parse_provider(part, key) for part in value.split(",") if part.strip())


@dataclass(frozen=True)
class RetryPolicy:
    """Per-engine retry limits and backoff parameters.

    max_attempts counts the first attempt, so the default of 3 allows two
    retries. engine_budget_seconds caps the total time spent on one engine
    including backoff. run_deadline_seconds, when set, caps the whole run.
    """

    max_attempts: int = 3
    base_delay: float = 1.0
    multiplier: float = 2.0
    max_delay: float = 30.0
    engine_budget_seconds: float = 300.0
    attempt_timeout_seconds: float = 120.0
    run_deadline_seconds: float | None = None

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ConfigurationError("max_attempts must be at least 1", key="max_attempts")
        if self.multiplier < 1.0:
            raise ConfigurationError("multiplier must be >= 1.0", key="multiplier")

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> RetryPolicy:
        env = os.environ if env is None else env
        deadline = _env_float(env, "VOX_RUN_DEADLINE", 0.0)
        return cls(
            max_attempts=_env_int(env, "VOX_MAX_ATTEMPTS", 3),
            base_delay=_env_float(env, "VOX_BASE_DELAY", 1.0),
            multiplier=_env_float(env, "VOX_BACKOFF_MULTIPLIER", 2.0),
            max_delay=_env_float(env, "VOX_MAX_DELAY", 30.0),
            engine_budget_seconds=_env_float(env, "VOX_ENGINE_BUDGET", 300.0),
            attempt_timeout_seconds=_env_float(env, "VOX_ATTEMPT_TIMEOUT", 120.0),
            run_deadline_seconds=deadline or None,
        )


@dataclass(frozen=True)
class NetworkDefaults:
    """Process-wide network defaults, read once per run."""

    default_provider: Provider = DEFAULT_PROVIDER
    request_timeout_seconds: float = DEFAULT_REQUEST_TIMEOUT_SECONDS
    base_urls: Mapping[Provider, str] = field(default_factory=dict)
    credentials: Mapping[Provider, str] = field(default_factory=dict)

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> NetworkDefaults:
        env = os.environ if env is None else env

        provider_name = env.get("VOX_DEFAULT_PROVIDER", "").strip()
        default_provider = (
            parse_provider(provider_name, "VOX_DEFAULT_PROVIDER")
            if provider_name
            else DEFAULT_PROVIDER
        )

        base_urls = {
            provider: env[key].rstrip("/")
            for provider, key in _BASE_URL_ENV_VARS.items()
            if env.get(key)
        }

        credentials: dict[Provider, str] = {}
        for provider, keys in CREDENTIAL_ENV_VARS.items():
            for key in keys:
                if env.get(key):
                    credentials[provider] = env[key]
                    break

        return cls(
            default_provider=default_provider,
            request_timeout_seconds=_env_float(
                env, "VOX_REQUEST_TIMEOUT", DEFAULT_REQUEST_TIMEOUT_SECONDS
            ),
            base_urls=base_urls,
            credentials=credentials,
        )

    def base_url_for(self, provider: Provider) -> str | None:
        return self.base_urls.get(provider)

    def credential_for(self, provider: Provider) -> str | None:
        return self.credentials.get(provider)


def request_from_env(
    audio: AudioReference, env: Mapping[str, str] | None = None
) -> TranscriptionRequest:
    """Build a TranscriptionRequest from the VOX_* option variables."""
    env = os.environ if env is None else env

    preferred_name = env.get("VOX_PREFERRED_PROVIDER", "").strip()
    preferred = (
        parse_provider(preferred_name, "VOX_PREFERRED_PROVIDER") if preferred_name else None
    )

    return TranscriptionRequest(
        audio=audio,
        language=env.get("VOX_LANGUAGE") or None,
        include_timestamps=_env_bool(env, "VOX_INCLUDE_TIMESTAMPS"),
        force_remote=_env_bool(env, "VOX_FORCE_REMOTE"),
        preferred_provider=preferred,
        credential=env.get("VOX_API_KEY") or None,
        alternate_providers=parse_provider_list(
            env.get("VOX_ALTERNATE_PROVIDERS", ""), "VOX_ALTERNATE_PROVIDERS"
        ),
    )
