"""Delta telemetry: turn remote OS counters into live rates."""
from __future__ import annotations

import asyncio
import logging
import re
import time
from dataclasses import asdict, dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

from .cpu_cache import STATES_PER_CORE, CpuStatsCache
from .executor import CommandExecutor
from .net_cache import InterfaceRate, NetStatsCache, format_bytes_per_second
from .parsers import (
    normalize_disk_activity,
    parse_arc_stats,
    parse_cp_times,
    parse_int,
    parse_iostat,
    parse_load_average,
    parse_memory,
    parse_netstat_interfaces,
    parse_storage_usage,
    parse_uptime,
)

_LOGGER = logging.getLogger(__name__)

CPU_TIMES_COMMAND = "sysctl -n kern.cp_times"
CPU_COUNT_COMMAND = "sysctl -n hw.ncpu"
NETSTAT_COMMAND = "netstat -ibn"
IOSTAT_COMMAND = "iostat -x -w 1 -c 2"
UPTIME_COMMAND = "uptime"
LOADAVG_COMMAND = "sysctl -n vm.loadavg"
MEMORY_COMMAND = "sysctl -n hw.physmem hw.usermem"
ARC_COMMAND = "sysctl -n kstat.zfs.misc.arcstats.size kstat.zfs.misc.arcstats.c_max"
STORAGE_COMMAND = "df -h /"

# Passthrough devices mirror physical disks and would double count.
_PASSTHROUGH_RE = re.compile(r"^pass\d+$")


@dataclass(frozen=True)
class DiskRate:
    """Instantaneous throughput of one disk in bytes per second."""

    name: str
    read_rate: float
    write_rate: float

    @property
    def total_rate(self) -> float:
        return self.read_rate + self.write_rate

    @property
    def activity(self) -> float:
        """Logarithmic 0-100 activity level."""
        return normalize_disk_activity(self.total_rate / (1024 * 1024))


@dataclass
class SystemStatus:
    """One dashboard refresh; fields whose source failed stay ``None``."""

    cpu_cores: Optional[List[float]] = None
    memory: Optional[Tuple[float, float]] = None
    zfs_arc: Optional[Tuple[float, float]] = None
    storage: Optional[Tuple[float, float]] = None
    uptime: Optional[str] = None
    load_average: Optional[Tuple[float, float, float]] = None
    network: Optional[List[InterfaceRate]] = None
    disks: Optional[List[DiskRate]] = None
    errors: Dict[str, str] = field(default_factory=dict)

    @property
    def cpu_usage(self) -> Optional[float]:
        """Average usage over all cores."""
        if not self.cpu_cores:
            return None
        return sum(self.cpu_cores) / len(self.cpu_cores)

    @property
    def network_in(self) -> str:
        return format_bytes_per_second(sum(n.in_rate for n in self.network or []))

    @property
    def network_out(self) -> str:
        return format_bytes_per_second(sum(n.out_rate for n in self.network or []))

    def as_dict(self) -> Dict[str, Any]:
        """Return a JSON serialisable representation."""
        data = asdict(self)
        data["cpu_usage"] = self.cpu_usage
        data["network_in"] = self.network_in
        data["network_out"] = self.network_out
        if self.disks is not None:
            for entry, disk in zip(data["disks"], self.disks):
                entry["total_rate"] = disk.total_rate
        return data


class TelemetryEngine:
    """Poll counters through a :class:`CommandExecutor` and derive rates.

    The engine keeps exactly one previous sample per metric family. It owns
    no transport state; :meth:`reset` must be called after (re)connecting.
    """

    def __init__(
        self,
        executor: CommandExecutor,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._executor = executor
        self._clock = clock
        self._cpu = CpuStatsCache()
        self._net = NetStatsCache()

    def reset(self) -> None:
        """Forget the stored baselines."""
        self._cpu.reset()
        self._net.reset()

    async def poll_cpu_cores(self) -> List[float]:
        """Return usage percent per core.

        The first poll after a reset reports 0.0 for every core. An empty
        list means the counters could not be read consistently.
        """
        ticks_text, count_text = await asyncio.gather(
            self._executor.run(CPU_TIMES_COMMAND),
            self._executor.run(CPU_COUNT_COMMAND),
        )
        ticks = parse_cp_times(ticks_text)
        if not ticks:
            _LOGGER.debug("No CPU counters available")
            return []

        cores = parse_int(count_text) or len(ticks) // STATES_PER_CORE
        if cores <= 0 or len(ticks) < cores * STATES_PER_CORE:
            _LOGGER.warning(
                "cp_times holds %s values, expected %s for %s cores",
                len(ticks),
                cores * STATES_PER_CORE,
                cores,
            )
            return []

        if not self._cpu.has_baseline:
            _LOGGER.debug("Storing first CPU sample for %s cores", cores)
        return self._cpu.compute(ticks, cores)

    async def poll_network_interfaces(self) -> List[InterfaceRate]:
        """Return the throughput of every non loopback interface."""
        output = await self._executor.run(NETSTAT_COMMAND)
        counters = parse_netstat_interfaces(output)
        return self._net.compute(counters, self._clock())

    async def poll_disk_io(self) -> List[DiskRate]:
        """Return read and write rates of every physical disk."""
        output = await self._executor.run(IOSTAT_COMMAND)
        return [
            DiskRate(disk.name, disk.read_kbps * 1024, disk.write_kbps * 1024)
            for disk in parse_iostat(output)
            if not _PASSTHROUGH_RE.match(disk.name)
        ]

    async def fetch_system_status(self) -> SystemStatus:
        """Collect every status source concurrently.

        A failing source is recorded in :attr:`SystemStatus.errors` and does
        not discard the others.
        """
        self._executor.session.require_connected()
        sources = {
            "cpu_cores": self.poll_cpu_cores(),
            "network": self.poll_network_interfaces(),
            "disks": self.poll_disk_io(),
            "uptime": self._read(UPTIME_COMMAND, parse_uptime),
            "load_average": self._read(LOADAVG_COMMAND, parse_load_average),
            "memory": self._read(MEMORY_COMMAND, parse_memory),
            "zfs_arc": self._read(ARC_COMMAND, parse_arc_stats),
            "storage": self._read(STORAGE_COMMAND, parse_storage_usage),
        }
        results = await asyncio.gather(*sources.values(), return_exceptions=True)

        status = SystemStatus()
        for name, result in zip(sources, results):
            if isinstance(result, BaseException):
                _LOGGER.warning("Failed to read %s: %s", name, result)
                status.errors[name] = str(result) or type(result).__name__
                continue
            setattr(status, name, result)
        return status

    async def _read(self, command: str, parser: Callable[[str], Any]) -> Any:
        return parser(await self._executor.run(command))
