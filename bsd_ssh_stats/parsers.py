"""Parsers for the text printed by FreeBSD system commands.

Every function here is pure: the same text always gives the same records.
Lines that do not have the expected shape are dropped, never raised on,
because the remote output format is not guaranteed.
"""
from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Sequence, Tuple

_LOGGER = logging.getLogger(__name__)

GIB = 1024 ** 3

_LOOPBACK_RE = re.compile(r"^lo\d*$")
_MONTHS = {
    name: index
    for index, name in enumerate(
        ("jan", "feb", "mar", "apr", "may", "jun", "jul", "aug", "sep", "oct", "nov", "dec"),
        start=1,
    )
}
_FILE_TYPES = set("-dlcbps")


@dataclass(frozen=True)
class InterfaceCounters:
    """Cumulative byte counters of one network interface."""

    name: str
    bytes_in: int
    bytes_out: int


@dataclass(frozen=True)
class DiskActivity:
    """One device row of ``iostat -x``."""

    name: str
    reads_per_sec: float
    writes_per_sec: float
    read_kbps: float
    write_kbps: float
    busy_percent: float = 0.0


@dataclass(frozen=True)
class DirectoryEntry:
    """One entry of an ``ls -l`` listing."""

    name: str
    permissions: str
    links: int
    owner: str
    group: str
    size: int
    modified: datetime
    link_target: Optional[str] = None

    @property
    def is_directory(self) -> bool:
        return self.permissions.startswith("d")

    @property
    def is_symlink(self) -> bool:
        return self.permissions.startswith("l")


# ---------------------------------------------------------------------------
# Counters
# ---------------------------------------------------------------------------

def parse_int(text: str) -> Optional[int]:
    """Return the integer in *text* or ``None``."""
    try:
        return int(text.strip())
    except (AttributeError, ValueError):
        return None


def parse_cp_times(text: str) -> List[int]:
    """Parse ``sysctl -n kern.cp_times`` into a flat tick vector.

    The vector holds five values per core: user, nice, system, interrupt
    and idle. Malformed output gives an empty list.
    """
    try:
        return [int(token) for token in text.split()]
    except ValueError:
        _LOGGER.debug("Ignoring malformed cp_times output: %s", text[:200])
        return []


def parse_netstat_interfaces(text: str, include_loopback: bool = False) -> List[InterfaceCounters]:
    """Parse ``netstat -ibn`` into per interface byte counters.

    Only the ``<Link#n>`` row of each interface is used so that address
    rows do not count the same traffic twice. The trailing eight columns
    are ``Ipkts Ierrs Idrop Ibytes Opkts Oerrs Obytes Coll``.
    """
    counters: Dict[str, InterfaceCounters] = {}
    for line in text.splitlines():
        fields = line.split()
        if len(fields) < 11 or not fields[2].startswith("<Link#"):
            continue
        name = fields[0].rstrip("*")
        if not include_loopback and _LOOPBACK_RE.match(name):
            continue
        try:
            bytes_in = int(fields[-5])
            bytes_out = int(fields[-2])
        except ValueError:
            _LOGGER.debug("Skipping netstat line: %s", line)
            continue
        counters.setdefault(name, InterfaceCounters(name, bytes_in, bytes_out))
    return list(counters.values())


def parse_iostat(text: str) -> List[DiskActivity]:
    """Parse ``iostat -x`` output, keeping only the last report.

    ``iostat -x -w 1 -c 2`` prints a since-boot report followed by a one
    second report; the latter holds the current rates.
    """
    header: Optional[List[str]] = None
    rows: List[List[str]] = []
    for line in text.splitlines():
        fields = line.split()
        if not fields:
            continue
        if fields[0] == "device":
            header = fields
            rows = []
        elif header is not None:
            rows.append(fields)
    if header is None:
        return []

    index = {column: position for position, column in enumerate(header)}
    required = ("r/s", "w/s", "kr/s", "kw/s")
    if any(column not in index for column in required):
        _LOGGER.debug("Unexpected iostat header: %s", header)
        return []

    disks: List[DiskActivity] = []
    for fields in rows:
        if len(fields) < len(header):
            continue
        try:
            disks.append(
                DiskActivity(
                    name=fields[0],
                    reads_per_sec=float(fields[index["r/s"]]),
                    writes_per_sec=float(fields[index["w/s"]]),
                    read_kbps=float(fields[index["kr/s"]]),
                    write_kbps=float(fields[index["kw/s"]]),
                    busy_percent=float(fields[index["%b"]]) if "%b" in index else 0.0,
                )
            )
        except ValueError:
            _LOGGER.debug("Skipping iostat line: %s", fields)
    return disks


# ---------------------------------------------------------------------------
# System status
# ---------------------------------------------------------------------------

def parse_uptime(output: str) -> str:
    """Return the duration part of ``uptime`` output.

    ``"10:30AM up 5 days, 3:24, 2 users, load averages: ..."`` gives
    ``"5 days"``.
    """
    _, sep, rest = output.partition("up ")
    if not sep:
        return "Unknown"
    return rest.split(",")[0].strip() or "Unknown"


def parse_uptime_components(uptime: str) -> Tuple[int, int, int]:
    """Split ``"5 days, 3:42"`` into ``(days, hours, minutes)``."""
    days = hours = minutes = 0
    match = re.search(r"(\d+)\s*days?", uptime)
    if match:
        days = int(match.group(1))
    match = re.search(r"(\d+):(\d+)", uptime)
    if match:
        hours, minutes = int(match.group(1)), int(match.group(2))
    return days, hours, minutes


def parse_load_average(output: str) -> Tuple[float, float, float]:
    """Parse ``sysctl -n vm.loadavg`` (``"{ 0.52 0.58 0.59 }"``)."""
    loads = []
    for token in output.strip().strip("{}").split():
        try:
            loads.append(float(token))
        except ValueError:
            continue
    if len(loads) >= 3:
        return loads[0], loads[1], loads[2]
    return 0.0, 0.0, 0.0


def _two_numbers(output: str) -> Optional[Tuple[float, float]]:
    lines = [line for line in output.splitlines() if line.strip()]
    if len(lines) < 2:
        return None
    try:
        return float(lines[0]), float(lines[1])
    except ValueError:
        return None


def parse_memory(output: str) -> Tuple[float, float]:
    """Parse ``sysctl -n hw.physmem hw.usermem`` into ``(used, total)`` GiB."""
    values = _two_numbers(output)
    if values is None:
        return 0.0, 0.0
    physmem, usermem = values
    return (physmem - usermem) / GIB, physmem / GIB


def parse_arc_stats(output: str) -> Tuple[float, float]:
    """Parse the ZFS ARC size and maximum into ``(used, max)`` GiB."""
    values = _two_numbers(output)
    if values is None:
        return 0.0, 0.0
    return values[0] / GIB, values[1] / GIB


def parse_storage_size(size: str) -> float:
    """Convert a ``df -h`` size such as ``"1.5T"`` to GiB."""
    number = "".join(ch for ch in size if ch.isdigit() or ch == ".")
    try:
        value = float(number)
    except ValueError:
        return 0.0
    if size.endswith("T"):
        return value * 1024
    if size.endswith("M"):
        return value / 1024
    if size.endswith("K"):
        return value / (1024 * 1024)
    return value


def parse_storage_usage(output: str) -> Tuple[float, float]:
    """Parse ``df -h /`` into ``(used, total)`` GiB."""
    lines = output.splitlines()
    if len(lines) < 2:
        return 0.0, 0.0
    fields = lines[1].split()
    if len(fields) < 4:
        return 0.0, 0.0
    return parse_storage_size(fields[2]), parse_storage_size(fields[1])


# ---------------------------------------------------------------------------
# Display strings
# ---------------------------------------------------------------------------

def parse_percentage(text: str) -> float:
    """``"45.5%"`` -> ``45.5``; anything unparsable gives 0."""
    try:
        return float(text.replace("%", "").strip())
    except ValueError:
        return 0.0


def parse_usage_ratio(text: str) -> Optional[Tuple[float, float]]:
    """``"8 GB / 16 GB"`` -> ``(8.0, 16.0)``."""
    parts = text.split("/")
    if len(parts) != 2:
        return None
    values = []
    for part in parts:
        cleaned = part.strip()
        for unit in (" GB", " MB", " TB"):
            cleaned = cleaned.replace(unit, "")
        try:
            values.append(float(cleaned))
        except ValueError:
            return None
    return values[0], values[1]


def parse_usage_percentage(text: str) -> float:
    ratio = parse_usage_ratio(text)
    if ratio is None:
        return 0.0
    used, total = ratio
    return used / total * 100 if total > 0 else 0.0


_RATE_MULTIPLIERS = (("GB/s", 1_000_000_000), ("MB/s", 1_000_000), ("KB/s", 1_000), ("B/s", 1))


def parse_network_rate(text: str) -> float:
    """``"1.5 KB/s"`` -> ``1500.0`` bytes per second."""
    cleaned = text.strip()
    for suffix, multiplier in _RATE_MULTIPLIERS:
        if cleaned.endswith(suffix):
            try:
                return float(cleaned[: -len(suffix)].strip()) * multiplier
            except ValueError:
                return 0.0
    return 0.0


def normalize_disk_activity(total_mbps: float) -> float:
    """Map MB/s onto a logarithmic 0-100 activity scale."""
    if total_mbps <= 0:
        return 0.0
    return min(100.0, math.log10(total_mbps + 1) / math.log10(101) * 100)


def is_valid_host(host: str) -> bool:
    trimmed = host.strip()
    if not trimmed:
        return False
    return all(ch.isascii() and (ch.isalnum() or ch in ".-") for ch in trimmed)


def is_valid_port(port: int) -> bool:
    return 1 <= port <= 65535


# ---------------------------------------------------------------------------
# Generic line formats
# ---------------------------------------------------------------------------

def parse_key_values(text: str, separator: str = "=") -> Dict[str, str]:
    """Parse ``key=value`` lines (or ``key: value`` with ``separator=":"``)."""
    result: Dict[str, str] = {}
    for line in text.splitlines():
        key, sep, value = line.partition(separator)
        key = key.strip()
        if not sep or not key:
            continue
        result[key] = value.strip()
    return result


def parse_delimited(
    text: str,
    delimiter: str,
    fields: Sequence[str],
    min_fields: Optional[int] = None,
) -> List[Dict[str, str]]:
    """Parse pipe or tab separated lines into dicts keyed by *fields*.

    Lines with fewer than *min_fields* columns (default: all of *fields*)
    are skipped. Missing optional columns become empty strings.
    """
    required = len(fields) if min_fields is None else min_fields
    records: List[Dict[str, str]] = []
    for line in text.splitlines():
        if not line.strip():
            continue
        parts = line.split(delimiter)
        if len(parts) < required:
            _LOGGER.debug("Skipping short line: %s", line)
            continue
        records.append(
            {name: parts[i].strip() if i < len(parts) else "" for i, name in enumerate(fields)}
        )
    return records


def _listing_timestamp(month: str, day: str, time_or_year: str, now: datetime) -> datetime:
    month_no = _MONTHS[month[:3].lower()]
    day_no = int(day)
    if ":" in time_or_year:
        hour, minute = (int(part) for part in time_or_year.split(":", 1))
        stamp = datetime(now.year, month_no, day_no, hour, minute, tzinfo=now.tzinfo)
        # ls shows a time instead of a year for the last six months only.
        if stamp > now + timedelta(days=1):
            stamp = stamp.replace(year=now.year - 1)
        return stamp
    return datetime(int(time_or_year), month_no, day_no, tzinfo=now.tzinfo)


def parse_directory_listing(text: str, now: datetime) -> List[DirectoryEntry]:
    """Parse ``ls -l`` output.

    *now* supplies the year for entries that show a time of day.
    """
    entries: List[DirectoryEntry] = []
    for line in text.splitlines():
        if not line.strip() or line.startswith("total "):
            continue
        parts = line.split(None, 8)
        if len(parts) < 9:
            continue
        permissions, links, owner, group, size, month, day, time_or_year, name = parts
        if len(permissions) < 10 or permissions[0] not in _FILE_TYPES:
            continue
        try:
            modified = _listing_timestamp(month, day, time_or_year, now)
            link_count = int(links)
            size_value = int(size, 16) if size.startswith("0x") else int(size)
        except (KeyError, ValueError):
            _LOGGER.debug("Skipping listing line: %s", line)
            continue
        target = None
        if permissions[0] == "l" and " -> " in name:
            name, target = name.split(" -> ", 1)
        if name in (".", ".."):
            continue
        entries.append(
            DirectoryEntry(
                name=name,
                permissions=permissions,
                links=link_count,
                owner=owner,
                group=group,
                size=size_value,
                modified=modified,
                link_target=target,
            )
        )
    return entries
