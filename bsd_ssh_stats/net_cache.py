"""Cache network statistics for rate computation."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Tuple

from .parsers import InterfaceCounters

_KIB = 1024
_MIB = 1024 ** 2
_GIB = 1024 ** 3


@dataclass(frozen=True)
class DerivedRate:
    """A rate scaled into a human unit."""

    value: float
    unit: str

    def __str__(self) -> str:
        if self.unit == "B/s":
            return f"{self.value:.0f} {self.unit}"
        return f"{self.value:.2f} {self.unit}"


def scale_rate(bytes_per_sec: float) -> DerivedRate:
    """Pick B/s, KB/s, MB/s or GB/s by powers of 1024."""
    if bytes_per_sec >= _GIB:
        return DerivedRate(bytes_per_sec / _GIB, "GB/s")
    if bytes_per_sec >= _MIB:
        return DerivedRate(bytes_per_sec / _MIB, "MB/s")
    if bytes_per_sec >= _KIB:
        return DerivedRate(bytes_per_sec / _KIB, "KB/s")
    return DerivedRate(bytes_per_sec, "B/s")


def format_bytes_per_second(bytes_per_sec: float) -> str:
    return str(scale_rate(bytes_per_sec))


def format_bytes(count: int) -> str:
    if count >= _GIB:
        return f"{count / _GIB:.2f} GB"
    if count >= _MIB:
        return f"{count / _MIB:.2f} MB"
    if count >= _KIB:
        return f"{count / _KIB:.2f} KB"
    return f"{count} B"


@dataclass(frozen=True)
class InterfaceRate:
    """Throughput of one interface in bytes per second."""

    name: str
    in_rate: float
    out_rate: float

    @property
    def in_display(self) -> str:
        return format_bytes_per_second(self.in_rate)

    @property
    def out_display(self) -> str:
        return format_bytes_per_second(self.out_rate)


class NetStatsCache:
    """Cache interface RX/TX counters to calculate transfer rates."""

    def __init__(self) -> None:
        self._last_net: Dict[str, Tuple[int, int]] = {}
        self._last_ts: Optional[float] = None

    def reset(self) -> None:
        self._last_net = {}
        self._last_ts = None

    def compute(self, counters: Iterable[InterfaceCounters], now: float) -> List[InterfaceRate]:
        """Update the cache and return one rate per interface in *counters*.

        Interfaces seen for the first time, and every interface on the first
        call, report a zero rate.
        """
        current = {c.name: (c.bytes_in, c.bytes_out) for c in counters}
        last = self._last_net
        elapsed = now - self._last_ts if self._last_ts is not None else 0.0
        rates: List[InterfaceRate] = []
        for name, (rx, tx) in current.items():
            previous = last.get(name)
            if previous is None or elapsed <= 0:
                rates.append(InterfaceRate(name, 0.0, 0.0))
                continue
            rates.append(
                InterfaceRate(
                    name,
                    max(0, rx - previous[0]) / elapsed,
                    max(0, tx - previous[1]) / elapsed,
                )
            )
        self._last_net = current
        self._last_ts = now
        return rates
