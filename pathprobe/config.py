#!/usr/bin/env python3
"""
Run configuration for the probe client and server.

Settings are resolved from, lowest to highest priority:
    1. Built-in defaults
    2. YAML config file (--config); JSON is valid YAML, so .json files work too
    3. Environment variables (PATHPROBE_<KEY>, e.g. PATHPROBE_PACKETS=500)
    4. Command-line flags

Keys in the config file and environment use the long flag names:

    packets: 200
    serverip: 10.0.0.108
    delay: 20
"""

import argparse
import logging
import os
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

import yaml

from .errors import ConfigError
from .network import parse_address
from .protocol import MAX_PROBE_PAYLOAD, MAX_SEQUENCE_ID


logger = logging.getLogger(__name__)

ENV_PREFIX = "PATHPROBE_"

DEFAULT_PORT = 4981
DEFAULT_PACKETS = 100
DEFAULT_PAYLOAD_SIZE = 100
DEFAULT_DELAY_MS = 50
DEFAULT_START_MESSAGE = "START"
DEFAULT_END_MESSAGE = "END"
DEFAULT_REPORT_PATH = "output.txt"
DEFAULT_DRAIN_TIMEOUT = 0.2
DEFAULT_CONNECT_TIMEOUT = 5.0

CLIENT_DEFAULTS: Dict[str, Any] = {
    'start': DEFAULT_START_MESSAGE,
    'end': DEFAULT_END_MESSAGE,
    'packets': DEFAULT_PACKETS,
    'serverip': None,
    'serverport': DEFAULT_PORT,
    'probeport': None,
    'size': DEFAULT_PAYLOAD_SIZE,
    'delay': DEFAULT_DELAY_MS,
    'echo_timeout': 0,
    'connect_timeout': DEFAULT_CONNECT_TIMEOUT,
}

SERVER_DEFAULTS: Dict[str, Any] = {
    'host': '0.0.0.0',
    'port': DEFAULT_PORT,
    'probeport': None,
    'packets': DEFAULT_PACKETS,
    'report': DEFAULT_REPORT_PATH,
    'drain_timeout': DEFAULT_DRAIN_TIMEOUT,
}


@dataclass(frozen=True)
class RunConfig:
    """Fully resolved client settings for one run."""
    start_message: str
    packet_count: int
    server_address: str
    server_port: int
    payload_size: int
    inter_packet_delay_ms: int
    probe_port: Optional[int] = None
    end_message: str = DEFAULT_END_MESSAGE
    echo_timeout_ms: int = 0
    connect_timeout: Optional[float] = DEFAULT_CONNECT_TIMEOUT

    def __post_init__(self):
        if not self.server_address:
            raise ConfigError("serverip: server address is required")
        _check_range("packets", self.packet_count, 1, MAX_SEQUENCE_ID)
        _check_range("serverport", self.server_port, 1, 65535)
        if self.probe_port is not None:
            _check_range("probeport", self.probe_port, 1, 65535)
        _check_range("size", self.payload_size, 0, MAX_PROBE_PAYLOAD)
        _check_range("delay", self.inter_packet_delay_ms, 0, None)
        _check_range("echo_timeout", self.echo_timeout_ms, 0, None)
        if self.connect_timeout is not None and self.connect_timeout <= 0:
            raise ConfigError(f"connect_timeout: must be positive, got {self.connect_timeout}")

    @property
    def udp_port(self) -> int:
        """Port the probe stream is sent to."""
        return self.probe_port if self.probe_port is not None else self.server_port


@dataclass(frozen=True)
class ServerConfig:
    """Fully resolved server settings."""
    port: int = DEFAULT_PORT
    host: str = '0.0.0.0'
    probe_port: Optional[int] = None
    expected_count: int = DEFAULT_PACKETS
    report_path: str = DEFAULT_REPORT_PATH
    drain_timeout: float = DEFAULT_DRAIN_TIMEOUT

    def __post_init__(self):
        _check_range("port", self.port, 0, 65535)
        if self.probe_port is not None:
            _check_range("probeport", self.probe_port, 0, 65535)
        _check_range("packets", self.expected_count, 1, MAX_SEQUENCE_ID)
        if not self.report_path:
            raise ConfigError("report: report path is required")
        if self.drain_timeout < 0:
            raise ConfigError(f"drain_timeout: must not be negative, got {self.drain_timeout}")

    @property
    def udp_port(self) -> int:
        """Port the probe receiver binds."""
        return self.probe_port if self.probe_port is not None else self.port


def _check_range(name: str, value: Any, low: int, high: Optional[int]) -> None:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigError(f"{name}: expected an integer, got {value!r}")
    if value < low or (high is not None and value > high):
        bound = f"{low}-{high}" if high is not None else f">= {low}"
        raise ConfigError(f"{name}: {value} is out of range ({bound})")


def load_config_file(path: Optional[str]) -> Dict[str, Any]:
    """
    Load settings from a YAML (or JSON) config file.

    Args:
        path: File path (None = no file)

    Returns:
        Dict of settings keyed by long flag name

    Raises:
        ConfigError: If the file cannot be read or is not a mapping
    """
    if not path:
        return {}
    try:
        with open(path, 'r', encoding='utf-8') as f:
            data = yaml.safe_load(f)
    except OSError as e:
        raise ConfigError(f"config: cannot read {path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"config: error parsing {path}: {e}") from e

    if data is None:
        # Empty file
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"config: {path} must contain a mapping of settings")
    logger.debug(f"Loaded config: {path}")
    return {str(k).replace('-', '_'): v for k, v in data.items()}


def env_overrides(keys, environ: Optional[Mapping[str, str]] = None) -> Dict[str, str]:
    """
    Collect PATHPROBE_* environment overrides for the given keys.

    Args:
        keys: Setting names to look up
        environ: Environment mapping (default os.environ)
    """
    if environ is None:
        environ = os.environ
    found = {}
    for key in keys:
        name = ENV_PREFIX + key.upper()
        if name in environ:
            found[key] = environ[name]
    return found


def resolve(
    defaults: Mapping[str, Any],
    args: Optional[argparse.Namespace] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> Dict[str, Any]:
    """
    Merge defaults, config file, environment and CLI flags.

    CLI flags left at None are treated as unset.
    """
    settings = dict(defaults)
    config_path = getattr(args, 'config', None) if args is not None else None

    file_settings = load_config_file(config_path)
    unknown = set(file_settings) - set(defaults)
    if unknown:
        raise ConfigError(f"config: unknown setting(s) {', '.join(sorted(unknown))}")
    settings.update(file_settings)
    settings.update(env_overrides(defaults.keys(), environ))

    if args is not None:
        for key in defaults:
            value = getattr(args, key, None)
            if value is not None:
                settings[key] = value
    return settings


def _as_int(name: str, value: Any) -> Optional[int]:
    if value is None:
        return None
    if isinstance(value, bool):
        raise ConfigError(f"{name}: expected an integer, got {value!r}")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ConfigError(f"{name}: expected an integer, got {value!r}") from None


def _as_float(name: str, value: Any) -> Optional[float]:
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        raise ConfigError(f"{name}: expected a number, got {value!r}") from None


def build_run_config(settings: Mapping[str, Any]) -> RunConfig:
    """
    Build a RunConfig from merged client settings.

    serverip may carry the control port as "host:port", which takes
    precedence over serverport.
    """
    server_address = str(settings['serverip'] or '')
    server_port = _as_int('serverport', settings['serverport'])
    if ':' in server_address:
        try:
            server_address, server_port = parse_address(server_address, server_port)
        except ValueError:
            raise ConfigError(f"serverip: bad port in {server_address!r}") from None

    return RunConfig(
        start_message=str(settings['start']),
        packet_count=_as_int('packets', settings['packets']),
        server_address=server_address,
        server_port=server_port,
        payload_size=_as_int('size', settings['size']),
        inter_packet_delay_ms=_as_int('delay', settings['delay']),
        probe_port=_as_int('probeport', settings.get('probeport')),
        end_message=str(settings.get('end', DEFAULT_END_MESSAGE)),
        echo_timeout_ms=_as_int('echo_timeout', settings.get('echo_timeout', 0)),
        connect_timeout=_as_float('connect_timeout', settings.get('connect_timeout')),
    )


def build_server_config(settings: Mapping[str, Any]) -> ServerConfig:
    """Build a ServerConfig from merged server settings."""
    return ServerConfig(
        port=_as_int('port', settings['port']),
        host=str(settings['host']),
        probe_port=_as_int('probeport', settings.get('probeport')),
        expected_count=_as_int('packets', settings['packets']),
        report_path=str(settings['report']),
        drain_timeout=_as_float('drain_timeout', settings['drain_timeout']),
    )
