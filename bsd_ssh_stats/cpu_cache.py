"""Cache CPU tick counters for per core usage computation."""
from __future__ import annotations

from typing import List, Optional, Sequence

CATEGORIES = ("user", "nice", "system", "interrupt", "idle")
STATES_PER_CORE = len(CATEGORIES)
_IDLE = CATEGORIES.index("idle")


class CpuStatsCache:
    """Cache the previous ``kern.cp_times`` sample to calculate usage."""

    def __init__(self) -> None:
        self._last: Optional[List[int]] = None

    @property
    def has_baseline(self) -> bool:
        return self._last is not None

    def reset(self) -> None:
        self._last = None

    def compute(self, ticks: Sequence[int], cores: int) -> List[float]:
        """Update the cache and return usage percent for each of *cores*.

        Without a previous sample of the same core count every core reports
        0.0. Counter decreases count as no progress.
        """
        sample = list(ticks[: cores * STATES_PER_CORE])
        last = self._last
        self._last = sample
        if last is None or len(last) != len(sample):
            return [0.0] * cores

        usage: List[float] = []
        for core in range(cores):
            base = core * STATES_PER_CORE
            deltas = [
                max(0, sample[base + i] - last[base + i]) for i in range(STATES_PER_CORE)
            ]
            total = sum(deltas)
            busy = total - deltas[_IDLE]
            usage.append(100.0 * busy / total if total > 0 else 0.0)
        return usage
