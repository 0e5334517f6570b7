"""Periodic telemetry collector publishing to MQTT.

Run with ``python -m bsd_ssh_stats.app.collector``. Servers and MQTT
settings come from the environment (see :mod:`bsd_ssh_stats.config`).
"""
from __future__ import annotations

import asyncio
import json
import logging
import time
from typing import Any, Dict, Optional, Set

import paho.mqtt.client as mqtt

from ..client import RemoteClient
from ..config import CollectorConfig, ServerConfig, load_collector_config
from ..errors import RemoteError
from ..util import sanitize

_LOGGER = logging.getLogger(__name__)

DISCOVERY_PREFIX = "homeassistant"
STATE_TOPIC = "bsd_ssh/{name}/state"

_SENSORS = [
    ("cpu_usage", "%", None),
    ("memory_used", "GB", None),
    ("memory_total", "GB", None),
    ("arc_used", "GB", None),
    ("storage_used", "GB", None),
    ("storage_total", "GB", None),
    ("load_1", None, None),
    ("load_5", None, None),
    ("load_15", None, None),
    ("net_in", "B/s", "data_rate"),
    ("net_out", "B/s", "data_rate"),
    ("disk_io", "B/s", "data_rate"),
]


def setup_logging(level: str = "INFO") -> None:
    """Configure module wide logging."""
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(message)s",
    )


def setup_mqtt(config: CollectorConfig) -> Optional[mqtt.Client]:
    """Create and configure the MQTT client."""
    if not config.mqtt_host:
        _LOGGER.info("MQTT disabled; stats will be printed to log")
        return None

    client = mqtt.Client(callback_api_version=mqtt.CallbackAPIVersion.VERSION2)
    if config.mqtt_user:
        client.username_pw_set(config.mqtt_user, config.mqtt_pass)
    try:
        rc = client.connect(config.mqtt_host, config.mqtt_port, 60)
    except OSError as exc:
        _LOGGER.error("MQTT connection failed: %s", exc)
        return None

    if rc == mqtt.MQTT_ERR_SUCCESS:
        _LOGGER.info("Connected to MQTT broker at %s:%s", config.mqtt_host, config.mqtt_port)
        client.loop_start()
        return client

    _LOGGER.error("Failed to connect to MQTT broker: %s", mqtt.error_string(rc))
    return None


def publish_discovery(client: mqtt.Client, name: str, key: str, unit: Optional[str], device_class: Optional[str]) -> None:
    """Publish the MQTT discovery config for a single sensor."""
    uid = f"{sanitize(name)}_{key}"
    payload: Dict[str, Any] = {
        "name": f"{name} {key}",
        "state_topic": STATE_TOPIC.format(name=sanitize(name)),
        "value_template": f"{{{{ value_json.{key} | default(0) }}}}",
        "unique_id": uid,
        "device": {"identifiers": [f"bsd_ssh_{sanitize(name)}"], "name": name},
    }
    if unit:
        payload["unit_of_measurement"] = unit
    if device_class:
        payload["device_class"] = device_class
    client.publish(f"{DISCOVERY_PREFIX}/sensor/{uid}/config", json.dumps(payload), retain=True)


def flatten_status(status: Dict[str, Any]) -> Dict[str, Any]:
    """Turn a :meth:`SystemStatus.as_dict` result into flat sensor values."""
    flat: Dict[str, Any] = {
        "cpu_usage": _round(status.get("cpu_usage")),
        "cpu_cores": [_round(v) for v in status.get("cpu_cores") or []],
        "uptime": status.get("uptime"),
        "network_in": status.get("network_in"),
        "network_out": status.get("network_out"),
        "errors": status.get("errors", {}),
    }
    for key, pair in (("memory", status.get("memory")), ("storage", status.get("storage"))):
        if pair:
            flat[f"{key}_used"], flat[f"{key}_total"] = _round(pair[0]), _round(pair[1])
    if status.get("zfs_arc"):
        flat["arc_used"], flat["arc_max"] = (_round(v) for v in status["zfs_arc"])
    if status.get("load_average"):
        flat["load_1"], flat["load_5"], flat["load_15"] = status["load_average"]

    network = status.get("network") or []
    flat["net_in"] = _round(sum(n["in_rate"] for n in network))
    flat["net_out"] = _round(sum(n["out_rate"] for n in network))
    for iface in network:
        iname = sanitize(iface["name"])
        flat[f"net_{iname}_in"] = _round(iface["in_rate"])
        flat[f"net_{iname}_out"] = _round(iface["out_rate"])

    disks = status.get("disks") or []
    flat["disk_io"] = _round(sum(d["total_rate"] for d in disks))
    for disk in disks:
        dname = sanitize(disk["name"])
        flat[f"disk_{dname}_read"] = _round(disk["read_rate"])
        flat[f"disk_{dname}_write"] = _round(disk["write_rate"])
    return flat


def _round(value: Optional[float]) -> Optional[float]:
    return None if value is None else round(value, 2)


class ServerPoller:
    """Keep one :class:`RemoteClient` per server and reconnect on demand."""

    def __init__(self, server: ServerConfig, max_channels: int) -> None:
        self.server = server
        self.client = RemoteClient(channel_limit=max_channels)

    async def ensure_connected(self) -> None:
        if self.client.connected:
            return
        credential = await asyncio.to_thread(self.server.credential)
        await self.client.connect(self.server.host, self.server.port, credential)
        # First poll stores the baselines so rates are valid from the next tick.
        await self.client.fetch_system_status()

    async def sample(self) -> Dict[str, Any]:
        await self.ensure_connected()
        status = await self.client.fetch_system_status()
        return flatten_status(status.as_dict())


async def run(config: CollectorConfig) -> None:
    """Collect forever."""
    if not config.servers:
        _LOGGER.warning("No servers configured; exiting")
        return
    _LOGGER.info("Configured servers: %s", [s.name for s in config.servers])

    client = setup_mqtt(config)
    discovered: Set[str] = set()
    pollers = [ServerPoller(server, config.max_channels) for server in config.servers]

    try:
        while True:
            start = time.monotonic()
            if client and not client.is_connected():
                _LOGGER.warning("MQTT client disconnected; switching to log output")
                client.loop_stop()
                client = None

            results = await asyncio.gather(*(p.sample() for p in pollers), return_exceptions=True)
            for poller, result in zip(pollers, results):
                name = poller.server.name
                if isinstance(result, RemoteError):
                    _LOGGER.warning("Failed to collect stats for %s: %s", name, result)
                    await poller.client.disconnect()
                    continue
                if isinstance(result, BaseException):
                    raise result
                if client:
                    if name not in discovered:
                        for key, unit, device_class in _SENSORS:
                            publish_discovery(client, name, key, unit, device_class)
                        discovered.add(name)
                    info = client.publish(
                        STATE_TOPIC.format(name=sanitize(name)), json.dumps(result), retain=False
                    )
                    if info.rc == mqtt.MQTT_ERR_SUCCESS:
                        _LOGGER.debug("Published stats for %s", name)
                    else:
                        _LOGGER.error("Failed to publish stats for %s: %s", name, mqtt.error_string(info.rc))
                else:
                    _LOGGER.info("Stats for %s: %s", name, result)

            sleep_for = config.interval - (time.monotonic() - start)
            if sleep_for > 0:
                await asyncio.sleep(sleep_for)
    finally:
        for poller in pollers:
            await poller.client.disconnect()
        if client:
            client.loop_stop()
            client.disconnect()


def main() -> None:
    config = load_collector_config()
    setup_logging(config.log_level)
    asyncio.run(run(config))


if __name__ == "__main__":
    main()
