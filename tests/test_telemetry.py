import pytest

from bsd_ssh_stats.errors import NotConnectedError, TransportError
from bsd_ssh_stats.telemetry import (
    ARC_COMMAND,
    CPU_COUNT_COMMAND,
    CPU_TIMES_COMMAND,
    IOSTAT_COMMAND,
    LOADAVG_COMMAND,
    MEMORY_COMMAND,
    NETSTAT_COMMAND,
    STORAGE_COMMAND,
    UPTIME_COMMAND,
    DiskRate,
    TelemetryEngine,
)

NETSTAT_HEADER = (
    "Name    Mtu Network       Address              Ipkts Ierrs Idrop     Ibytes    Opkts Oerrs     Obytes  Coll\n"
)


def netstat(em0_in, em0_out, lo0=(5000, 5000)):
    return (
        NETSTAT_HEADER
        + f"em0    1500 <Link#1>      00:0c:29:aa:bb:cc    1200     0     0 {em0_in}      900     0 {em0_out}     0\n"
        + "em0       - 192.168.1.0/2 192.168.1.10          800     -     -     64000      700     -     32000     -\n"
        + f"lo0   16384 <Link#2>      lo0                    10     0     0 {lo0[0]}       10     0 {lo0[1]}     0\n"
    )


IOSTAT = """\
                        extended device statistics
device       r/s     w/s     kr/s     kw/s  ms/r  ms/w  ms/o  ms/t qlen  %b
ada0         1.0     2.0     50.0     60.0     0     0     0     0    0   1
pass0        0.0     0.0      0.0      0.0     0     0     0     0    0   0
                        extended device statistics
device       r/s     w/s     kr/s     kw/s  ms/r  ms/w  ms/o  ms/t qlen  %b
ada0         4.0     8.0    100.0     20.0     0     0     0     0    0   5
nvd0         0.0     1.0      0.0      2.5     0     0     0     0    0   0
pass0        3.0     0.0     10.0      0.0     0     0     0     0    0   0
"""


@pytest.fixture
def engine(fake_executor, clock):
    return TelemetryEngine(fake_executor, clock=clock)


@pytest.mark.asyncio
async def test_first_cpu_poll_reports_zero_per_core(fake_executor, engine):
    fake_executor.responses[CPU_TIMES_COMMAND] = "100 0 50 0 850 200 0 0 0 800\n"
    fake_executor.responses[CPU_COUNT_COMMAND] = "2\n"
    assert await engine.poll_cpu_cores() == [0.0, 0.0]


@pytest.mark.asyncio
async def test_cpu_usage_from_tick_deltas(fake_executor, engine):
    fake_executor.responses[CPU_COUNT_COMMAND] = "1\n"
    fake_executor.responses[CPU_TIMES_COMMAND] = "100 0 50 0 850\n"
    await engine.poll_cpu_cores()
    fake_executor.responses[CPU_TIMES_COMMAND] = "110 0 60 0 880\n"
    usage = await engine.poll_cpu_cores()
    assert usage == [pytest.approx(40.0)]


@pytest.mark.asyncio
async def test_cpu_counter_regression_clamped(fake_executor, engine):
    fake_executor.responses[CPU_COUNT_COMMAND] = "1\n"
    fake_executor.responses[CPU_TIMES_COMMAND] = "500 0 500 0 1000\n"
    await engine.poll_cpu_cores()
    fake_executor.responses[CPU_TIMES_COMMAND] = "100 0 100 0 1100\n"
    assert await engine.poll_cpu_cores() == [0.0]


@pytest.mark.asyncio
async def test_cpu_short_vector_gives_empty(fake_executor, engine):
    fake_executor.responses[CPU_COUNT_COMMAND] = "4\n"
    fake_executor.responses[CPU_TIMES_COMMAND] = "1 2 3 4 5 6 7 8 9 10\n"
    assert await engine.poll_cpu_cores() == []


@pytest.mark.asyncio
async def test_cpu_garbage_gives_empty(fake_executor, engine):
    fake_executor.responses[CPU_COUNT_COMMAND] = "2\n"
    fake_executor.responses[CPU_TIMES_COMMAND] = "sysctl: unknown oid\n"
    assert await engine.poll_cpu_cores() == []


@pytest.mark.asyncio
async def test_cpu_core_count_falls_back_to_vector_length(fake_executor, engine):
    fake_executor.responses[CPU_COUNT_COMMAND] = ""
    fake_executor.responses[CPU_TIMES_COMMAND] = "1 0 1 0 8 1 0 1 0 8 1 0 1 0 8\n"
    assert await engine.poll_cpu_cores() == [0.0, 0.0, 0.0]


@pytest.mark.asyncio
async def test_network_first_poll_is_zero(fake_executor, engine):
    fake_executor.responses[NETSTAT_COMMAND] = netstat(1000, 2000)
    rates = await engine.poll_network_interfaces()
    assert [(r.name, r.in_rate, r.out_rate) for r in rates] == [("em0", 0.0, 0.0)]


@pytest.mark.asyncio
async def test_network_rates_and_loopback_excluded(fake_executor, engine, clock):
    fake_executor.responses[NETSTAT_COMMAND] = netstat(1000, 2000)
    await engine.poll_network_interfaces()
    clock.advance(2.0)
    fake_executor.responses[NETSTAT_COMMAND] = netstat(5000, 3000, lo0=(900000, 900000))
    rates = await engine.poll_network_interfaces()
    assert len(rates) == 1
    assert rates[0].name == "em0"
    assert rates[0].in_rate == pytest.approx(2000.0)
    assert rates[0].out_rate == pytest.approx(500.0)
    assert rates[0].in_display == "1.95 KB/s"


@pytest.mark.asyncio
async def test_network_counter_reset_clamped(fake_executor, engine, clock):
    fake_executor.responses[NETSTAT_COMMAND] = netstat(9000, 9000)
    await engine.poll_network_interfaces()
    clock.advance(1.0)
    fake_executor.responses[NETSTAT_COMMAND] = netstat(100, 9500)
    (rate,) = await engine.poll_network_interfaces()
    assert rate.in_rate == 0.0
    assert rate.out_rate == pytest.approx(500.0)


@pytest.mark.asyncio
async def test_reset_discards_baselines(fake_executor, engine, clock):
    fake_executor.responses[NETSTAT_COMMAND] = netstat(1000, 1000)
    await engine.poll_network_interfaces()
    engine.reset()
    clock.advance(1.0)
    fake_executor.responses[NETSTAT_COMMAND] = netstat(5000, 5000)
    (rate,) = await engine.poll_network_interfaces()
    assert rate.in_rate == 0.0


@pytest.mark.asyncio
async def test_disk_io_uses_last_report_without_passthrough(fake_executor, engine):
    fake_executor.responses[IOSTAT_COMMAND] = IOSTAT
    disks = await engine.poll_disk_io()
    assert disks == [
        DiskRate("ada0", 100.0 * 1024, 20.0 * 1024),
        DiskRate("nvd0", 0.0, 2.5 * 1024),
    ]
    assert disks[0].total_rate == 120.0 * 1024


@pytest.mark.asyncio
async def test_fetch_system_status(fake_executor, engine):
    fake_executor.responses.update(
        {
            CPU_COUNT_COMMAND: "1\n",
            CPU_TIMES_COMMAND: "1 0 1 0 8\n",
            NETSTAT_COMMAND: netstat(1, 1),
            IOSTAT_COMMAND: IOSTAT,
            UPTIME_COMMAND: "10:30AM  up 5 days,  3:24, 2 users, load averages: 0.52, 0.58, 0.59\n",
            LOADAVG_COMMAND: "{ 0.52 0.58 0.59 }\n",
            MEMORY_COMMAND: f"{16 * 1024 ** 3}\n{12 * 1024 ** 3}\n",
            ARC_COMMAND: TransportError("channel failed"),
            STORAGE_COMMAND: (
                "Filesystem  Size  Used Avail Capacity Mounted on\n"
                "zroot/ROOT  1.5T  512G  1.0T    33%   /\n"
            ),
        }
    )
    status = await engine.fetch_system_status()

    assert status.cpu_cores == [0.0]
    assert status.uptime == "5 days"
    assert status.load_average == (0.52, 0.58, 0.59)
    assert status.memory == (pytest.approx(4.0), pytest.approx(16.0))
    assert status.storage == (512.0, 1536.0)
    assert status.zfs_arc is None
    assert status.errors == {"zfs_arc": "channel failed"}
    assert status.network_in == "0 B/s"

    data = status.as_dict()
    assert data["cpu_usage"] == 0.0
    assert data["disks"][0]["total_rate"] == 120.0 * 1024


@pytest.mark.asyncio
async def test_fetch_system_status_requires_connection(fake_executor, engine):
    fake_executor.session.connected = False
    with pytest.raises(NotConnectedError):
        await engine.fetch_system_status()
    assert fake_executor.calls == []
