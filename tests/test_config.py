import json
import os

import pytest

from bsd_ssh_stats.config import (
    DEFAULT_INTERVAL,
    MIN_INTERVAL,
    load_collector_config,
    parse_server,
    parse_servers,
)
from bsd_ssh_stats.errors import ConfigError, KeyFormatError


def test_parse_server_defaults(tmp_path):
    server = parse_server({"host": " nas.local ", "username": "root", "key": "id_rsa"}, str(tmp_path))
    assert server.name == "nas.local"
    assert server.host == "nas.local"
    assert server.port == 22
    assert server.key == os.path.join(str(tmp_path), "id_rsa")
    assert server.passphrase is None


def test_parse_server_expands_home():
    server = parse_server({"host": "h", "username": "u", "key": "~/.ssh/id_ed25519", "port": "2222"})
    assert server.key == os.path.expanduser("~/.ssh/id_ed25519")
    assert server.port == 2222


@pytest.mark.parametrize(
    "data",
    [
        {"username": "root", "key": "k"},
        {"host": "bad host", "username": "root", "key": "k"},
        {"host": "h", "username": "", "key": "k"},
        {"host": "h", "username": "root", "key": "k", "port": 70000},
    ],
)
def test_parse_server_rejects(data):
    with pytest.raises(ConfigError):
        parse_server(data)


def test_parse_servers_requires_list():
    with pytest.raises(ConfigError):
        parse_servers('{"host": "h"}')
    with pytest.raises(ConfigError):
        parse_servers("not json")
    assert parse_servers("") == []


def test_load_collector_config():
    env = {
        "SERVERS_JSON": json.dumps(
            [{"name": "NAS", "host": "10.0.0.2", "username": "root", "key": "/keys/nas"}]
        ),
        "INTERVAL": "2",
        "MQTT_HOST": "broker",
        "MQTT_PASS": "",
        "LOG_LEVEL": "debug",
        "UNRELATED": "ignored",
    }
    config = load_collector_config(env)
    assert config.interval == MIN_INTERVAL
    assert config.max_channels == 8
    assert config.mqtt_host == "broker"
    assert config.mqtt_port == 1883
    assert config.mqtt_pass is None
    assert config.log_level == "DEBUG"
    assert [s.name for s in config.servers] == ["NAS"]


def test_load_collector_config_defaults():
    config = load_collector_config({})
    assert config.servers == []
    assert config.interval == DEFAULT_INTERVAL
    assert config.mqtt_host is None


def test_load_collector_config_bad_level():
    with pytest.raises(ConfigError):
        load_collector_config({"LOG_LEVEL": "chatty"})


def test_server_credential_reads_key_file(tmp_path, rsa_key_text):
    key_file = tmp_path / "id_rsa"
    key_file.write_text(rsa_key_text)
    server = parse_server({"host": "h", "username": "root", "key": str(key_file)})
    credential = server.credential()
    assert credential.username == "root"
    assert credential.key_path == str(key_file)
    assert "BEGIN RSA PRIVATE KEY" in credential.key_text


def test_server_credential_missing_file(tmp_path):
    server = parse_server({"host": "h", "username": "root", "key": str(tmp_path / "missing")})
    with pytest.raises(KeyFormatError):
        server.credential()
