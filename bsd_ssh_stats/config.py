"""Configuration schemas for BSD SSH Stats."""
from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

import voluptuous as vol

from .errors import ConfigError
from .gate import DEFAULT_CHANNEL_LIMIT
from .parsers import is_valid_host
from .session import DEFAULT_PORT, Credential
from .util import resolve_private_key_path

DEFAULT_INTERVAL = 30
MIN_INTERVAL = 5
DEFAULT_MQTT_PORT = 1883


def _host(value: Any) -> str:
    host = str(value).strip()
    if not is_valid_host(host):
        raise vol.Invalid(f"invalid host name: {value!r}")
    return host


SERVER_SCHEMA = vol.Schema(
    {
        vol.Optional("name"): str,
        vol.Required("host"): _host,
        vol.Optional("port", default=DEFAULT_PORT): vol.All(
            vol.Coerce(int), vol.Range(min=1, max=65535)
        ),
        vol.Required("username"): vol.All(str, vol.Length(min=1)),
        vol.Required("key"): vol.All(str, vol.Length(min=1)),
        vol.Optional("passphrase"): str,
    },
    extra=vol.REMOVE_EXTRA,
)

ENV_SCHEMA = vol.Schema(
    {
        vol.Optional("SERVERS_JSON", default="[]"): str,
        vol.Optional("INTERVAL", default=DEFAULT_INTERVAL): vol.All(
            vol.Coerce(int), vol.Clamp(min=MIN_INTERVAL)
        ),
        vol.Optional("MAX_CHANNELS", default=DEFAULT_CHANNEL_LIMIT): vol.All(
            vol.Coerce(int), vol.Range(min=1)
        ),
        vol.Optional("MQTT_HOST"): vol.Any(None, str),
        vol.Optional("MQTT_PORT", default=DEFAULT_MQTT_PORT): vol.Coerce(int),
        vol.Optional("MQTT_USER"): vol.Any(None, str),
        vol.Optional("MQTT_PASS"): vol.Any(None, str),
        vol.Optional("LOG_LEVEL", default="INFO"): vol.All(
            str, vol.Upper, vol.In(["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"])
        ),
    },
    extra=vol.REMOVE_EXTRA,
)


@dataclass(frozen=True)
class ServerConfig:
    """A validated connection profile."""

    name: str
    host: str
    username: str
    key: str
    port: int = DEFAULT_PORT
    passphrase: Optional[str] = field(default=None, repr=False)

    def credential(self) -> Credential:
        """Load the profile's private key."""
        return Credential.from_file(self.username, self.key, self.passphrase)


@dataclass(frozen=True)
class CollectorConfig:
    """Settings of the telemetry collector service."""

    servers: List[ServerConfig]
    interval: int = DEFAULT_INTERVAL
    max_channels: int = DEFAULT_CHANNEL_LIMIT
    mqtt_host: Optional[str] = None
    mqtt_port: int = DEFAULT_MQTT_PORT
    mqtt_user: Optional[str] = None
    mqtt_pass: Optional[str] = field(default=None, repr=False)
    log_level: str = "INFO"


def parse_server(data: Mapping[str, Any], base_dir: Optional[str] = None) -> ServerConfig:
    """Validate one server profile."""
    try:
        server = SERVER_SCHEMA(dict(data))
    except vol.Invalid as err:
        raise ConfigError(f"Invalid server configuration: {err}") from err
    return ServerConfig(
        name=server.get("name") or server["host"],
        host=server["host"],
        port=server["port"],
        username=server["username"],
        key=resolve_private_key_path(server["key"], base_dir),
        passphrase=server.get("passphrase"),
    )


def parse_servers(raw: str, base_dir: Optional[str] = None) -> List[ServerConfig]:
    """Validate a JSON list of server profiles."""
    try:
        items = json.loads(raw or "[]")
    except ValueError as err:
        raise ConfigError(f"SERVERS_JSON is not valid JSON: {err}") from err
    if not isinstance(items, list):
        raise ConfigError("SERVERS_JSON must be a JSON list")
    return [parse_server(item, base_dir) for item in items]


def load_collector_config(env: Optional[Mapping[str, str]] = None) -> CollectorConfig:
    """Read collector settings from *env* (default: the process environment)."""
    source: Dict[str, Any] = {
        key: value for key, value in (os.environ if env is None else env).items() if value != ""
    }
    try:
        settings = ENV_SCHEMA(source)
    except vol.Invalid as err:
        raise ConfigError(f"Invalid environment: {err}") from err
    return CollectorConfig(
        servers=parse_servers(settings["SERVERS_JSON"]),
        interval=settings["INTERVAL"],
        max_channels=settings["MAX_CHANNELS"],
        mqtt_host=settings.get("MQTT_HOST"),
        mqtt_port=settings["MQTT_PORT"],
        mqtt_user=settings.get("MQTT_USER"),
        mqtt_pass=settings.get("MQTT_PASS"),
        log_level=settings["LOG_LEVEL"],
    )
