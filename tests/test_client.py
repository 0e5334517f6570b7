import asyncio

import pytest

from bsd_ssh_stats.client import RemoteClient
from bsd_ssh_stats.errors import NotConnectedError
from bsd_ssh_stats.telemetry import CPU_COUNT_COMMAND, CPU_TIMES_COMMAND


@pytest.mark.asyncio
async def test_clients_are_isolated(fake_host, make_host, credential):
    other_host = make_host()
    first = RemoteClient(client_factory=fake_host)
    second = RemoteClient(client_factory=other_host)
    await first.connect("a", 22, credential)
    await second.connect("b", 22, credential)

    await first.disconnect()
    assert not first.connected
    assert second.connected
    assert await second.run("uname -s") == "FreeBSD\n"
    await second.disconnect()


@pytest.mark.asyncio
async def test_commands_bounded_by_channel_limit(fake_host, credential):
    client = RemoteClient(client_factory=fake_host, channel_limit=2)
    await client.connect("box", 22, credential)
    fake_host.transport.responses["sleep"] = {"frames": [b"ok"]}

    results = await asyncio.gather(*(client.run("sleep") for _ in range(5)))
    assert results == ["ok"] * 5
    assert client.gate.in_use == 0
    await client.disconnect()


@pytest.mark.asyncio
async def test_reconnect_resets_cpu_baseline(fake_host, credential):
    transport = fake_host.transport
    transport.responses[CPU_COUNT_COMMAND] = "1\n"
    transport.responses[CPU_TIMES_COMMAND] = "0 0 0 0 100\n"
    client = RemoteClient(client_factory=fake_host)
    await client.connect("box", 22, credential)
    assert await client.poll_cpu_cores() == [0.0]

    transport.responses[CPU_TIMES_COMMAND] = "50 0 0 0 150\n"
    assert await client.poll_cpu_cores() == [50.0]

    await client.connect("box", 22, credential)
    transport.responses[CPU_TIMES_COMMAND] = "100 0 0 0 200\n"
    assert await client.poll_cpu_cores() == [0.0]
    await client.disconnect()


@pytest.mark.asyncio
async def test_operations_fail_fast_after_disconnect(fake_host, credential):
    client = RemoteClient(client_factory=fake_host)
    await client.connect("box", 22, credential)
    await client.disconnect()
    await client.disconnect()

    with pytest.raises(NotConnectedError):
        await client.run("uptime")
    with pytest.raises(NotConnectedError):
        await client.poll_network_interfaces()
    with pytest.raises(NotConnectedError):
        await client.fetch_system_status()
