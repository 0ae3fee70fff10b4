"""Configuration resolution tests."""

import argparse
import json

import pytest

from pathprobe import client, server
from pathprobe.config import (
    CLIENT_DEFAULTS,
    SERVER_DEFAULTS,
    RunConfig,
    ServerConfig,
    build_run_config,
    build_server_config,
    load_config_file,
    resolve,
)
from pathprobe.errors import ConfigError
from pathprobe.protocol import MAX_PROBE_PAYLOAD


def client_args(*argv):
    return client.setup_argparse(list(argv))


def test_client_defaults():
    config = build_run_config(resolve(CLIENT_DEFAULTS, client_args("--serverip", "10.0.0.108"), environ={}))
    assert config.packet_count == 100
    assert config.server_port == 4981
    assert config.udp_port == 4981
    assert config.payload_size == 100
    assert config.inter_packet_delay_ms == 50
    assert config.server_address == "10.0.0.108"


def test_server_defaults():
    config = build_server_config(resolve(SERVER_DEFAULTS, server.setup_argparse([]), environ={}))
    assert config.port == 4981
    assert config.udp_port == 4981
    assert config.expected_count == 100
    assert config.report_path == "output.txt"


def test_precedence_file_env_cli(tmp_path):
    path = tmp_path / "probe.json"
    path.write_text(json.dumps({"packets": 10, "size": 20, "delay": 30, "serverip": "192.0.2.1"}))
    environ = {"PATHPROBE_SIZE": "21", "PATHPROBE_DELAY": "31"}
    args = client_args("--config", str(path), "--delay", "32")

    config = build_run_config(resolve(CLIENT_DEFAULTS, args, environ=environ))

    assert config.packet_count == 10      # file
    assert config.payload_size == 21      # env beats file
    assert config.inter_packet_delay_ms == 32  # CLI beats env
    assert config.server_address == "192.0.2.1"


def test_unknown_file_key(tmp_path):
    path = tmp_path / "probe.json"
    path.write_text(json.dumps({"pakets": 10}))
    with pytest.raises(ConfigError, match="pakets"):
        resolve(CLIENT_DEFAULTS, argparse.Namespace(config=str(path)), environ={})


def test_unreadable_file(tmp_path):
    with pytest.raises(ConfigError):
        resolve(CLIENT_DEFAULTS, argparse.Namespace(config=str(tmp_path / "missing.json")), environ={})


def test_file_must_be_object(tmp_path):
    path = tmp_path / "probe.json"
    path.write_text("[1, 2]")
    with pytest.raises(ConfigError):
        resolve(CLIENT_DEFAULTS, argparse.Namespace(config=str(path)), environ={})


def test_bad_env_value():
    settings = resolve(CLIENT_DEFAULTS, client_args("--serverip", "h"), environ={"PATHPROBE_PACKETS": "lots"})
    with pytest.raises(ConfigError, match="packets"):
        build_run_config(settings)


def test_missing_server_address():
    with pytest.raises(ConfigError, match="serverip"):
        build_run_config(resolve(CLIENT_DEFAULTS, client_args(), environ={}))


@pytest.mark.parametrize("field,value", [
    ("packet_count", 0),
    ("packet_count", 65536),
    ("server_port", 0),
    ("payload_size", -1),
    ("payload_size", MAX_PROBE_PAYLOAD + 1),
    ("inter_packet_delay_ms", -5),
])
def test_run_config_validation(field, value):
    settings = dict(start_message="go", packet_count=5, server_address="h", server_port=1,
                    payload_size=0, inter_packet_delay_ms=0)
    settings[field] = value
    with pytest.raises(ConfigError):
        RunConfig(**settings)


def test_run_config_is_immutable():
    config = RunConfig("go", 5, "h", 1, 0, 0)
    with pytest.raises(AttributeError):
        config.packet_count = 6


def test_server_config_validation():
    with pytest.raises(ConfigError):
        ServerConfig(port=70000)
    with pytest.raises(ConfigError):
        ServerConfig(expected_count=0)
    assert ServerConfig(port=5000, probe_port=5001).udp_port == 5001


def test_client_main_reports_config_error():
    assert client.main(["--packets", "0", "--serverip", "127.0.0.1"]) == 1


def test_server_main_reports_config_error():
    assert server.main(["--port", "70000"]) == 1


def test_serverip_may_carry_port():
    config = build_run_config(resolve(CLIENT_DEFAULTS, client_args("--serverip", "10.0.0.108:5000"), environ={}))
    assert config.server_address == "10.0.0.108"
    assert config.server_port == 5000


def test_serverip_with_bad_port():
    with pytest.raises(ConfigError, match="serverip"):
        build_run_config(resolve(CLIENT_DEFAULTS, client_args("--serverip", "host:http"), environ={}))


def test_yaml_config_file(tmp_path):
    path = tmp_path / "probe.yaml"
    path.write_text("packets: 12\nserverip: 10.0.0.108\nconnect-timeout: 2.5\n")
    config = build_run_config(resolve(CLIENT_DEFAULTS, client_args("--config", str(path)), environ={}))
    assert config.packet_count == 12
    assert config.server_address == "10.0.0.108"
    assert config.connect_timeout == 2.5


def test_empty_config_file_is_no_settings(tmp_path):
    path = tmp_path / "probe.yaml"
    path.write_text("")
    assert load_config_file(str(path)) == {}


def test_malformed_config_file(tmp_path):
    path = tmp_path / "probe.yaml"
    path.write_text("packets: [12\n")
    with pytest.raises(ConfigError, match="error parsing"):
        load_config_file(str(path))
