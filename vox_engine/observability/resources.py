"""Process resource sampling for the quality degradation policy."""

from __future__ import annotations

import logging
import os
import resource
import sys
from dataclasses import dataclass

logger = logging.getLogger(__name__)

DEFAULT_MEMORY_BUDGET_BYTES = 2 * 1024**3
STATM_PATH = "/proc/self/statm"


@dataclass(frozen=True)
class PressureSignals:
    """Resource pressure observed during an attempt.

    Both ratios are unbounded above; 1.0 means the budget is fully used.
    """

    memory_ratio: float = 0.0
    cpu_ratio: float = 0.0

    @classmethod
    def none(cls) -> PressureSignals:
        return cls()


class ResourceMonitor:
    """Samples process memory against a budget and system load against CPU count.

    Args:
        memory_budget_bytes: Memory considered fully used. Defaults to
            VOX_MEMORY_BUDGET_MB from the environment, or 2 GiB.
    """

    def __init__(self, memory_budget_bytes: int | None = None) -> None:
        if memory_budget_bytes is None:
            budget_mb = os.environ.get("VOX_MEMORY_BUDGET_MB")
            memory_budget_bytes = (
                int(budget_mb) * 1024**2 if budget_mb else DEFAULT_MEMORY_BUDGET_BYTES
            )
        self.memory_budget_bytes = memory_budget_bytes

    def sample(self) -> PressureSignals:
        """Take one sample. Platform calls that fail report zero pressure."""
        return PressureSignals(
            memory_ratio=self._memory_ratio(),
            cpu_ratio=self._cpu_ratio(),
        )

    def _memory_ratio(self) -> float:
        if self.memory_budget_bytes <= 0:
            return 0.0
        return _resident_bytes() / self.memory_budget_bytes

    def _cpu_ratio(self) -> float:
        try:
            load_1m, _, _ = os.getloadavg()
        except OSError:
            logger.debug("Load average unavailable on this platform")
            return 0.0
        return load_1m / (os.cpu_count() or 1)


def _resident_bytes() -> int:
    """Current resident set size of this process.

    Reads /proc/self/statm where it exists. Elsewhere only the peak RSS
    is available, which overstates pressure once memory has been freed.
    """
    try:
        with open(STATM_PATH) as statm:
            resident_pages = int(statm.read().split()[1])
        return resident_pages * os.sysconf("SC_PAGE_SIZE")
    except (OSError, ValueError, IndexError):
        pass
    peak = resource.getrusage(resource.RUSAGE_SELF).ru_maxrss
    # ru_maxrss is kilobytes on Linux and bytes on macOS
    return peak if sys.platform == "darwin" else peak * 1024
