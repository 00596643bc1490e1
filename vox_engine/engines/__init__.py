"""Engine adapters: on-device and remote providers."""

from vox_engine.engines.registry import get_remote_engine

__all__ = ["get_remote_engine"]
