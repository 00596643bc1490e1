"""Remote engine registry with configuration-driven provider selection.

Maps providers to adapter classes. Use get_remote_engine() to
instantiate an adapter by name, or build_remote_engines() to create one
adapter per provider from NetworkDefaults.
"""

from __future__ import annotations

from vox_engine.config import NetworkDefaults, parse_provider
from vox_engine.engines.openai import OpenAIWhisperEngine
from vox_engine.engines.remote import RemoteEngineAdapter
from vox_engine.engines.revai import RevAIEngine
from vox_engine.engines.speechmatics import SpeechmaticsEngine
from vox_engine.models import Provider

REMOTE_ENGINES: dict[Provider, type[RemoteEngineAdapter]] = {
    Provider.OPENAI: OpenAIWhisperEngine,
    Provider.REVAI: RevAIEngine,
    Provider.SPEECHMATICS: SpeechmaticsEngine,
}


def get_remote_engine(provider: Provider | str, **kwargs: object) -> RemoteEngineAdapter:
    """Create a remote adapter by provider name.

    Args:
        provider: Provider enum or name (e.g., "openai").
        **kwargs: Adapter configuration passed to the constructor.

    Returns:
        An initialized RemoteEngineAdapter.

    Raises:
        ConfigurationError: If the provider is not registered.
    """
    if not isinstance(provider, Provider):
        provider = parse_provider(provider)
    return REMOTE_ENGINES[provider](**kwargs)


def build_remote_engines(defaults: NetworkDefaults) -> dict[Provider, RemoteEngineAdapter]:
    """Create one adapter per registered provider using the network defaults."""
    return {
        provider: get_remote_engine(
            provider,
            api_key=defaults.credential_for(provider),
            base_url=defaults.base_url_for(provider),
            timeout=defaults.request_timeout_seconds,
        )
        for provider in REMOTE_ENGINES
    }
