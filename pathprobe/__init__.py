"""
pathprobe - network path-quality probe

A client announces a run over a TCP control connection and streams numbered
UDP probes; the server counts what arrived and reports loss and reordering.
"""

from .errors import (
    ConfigError,
    DecodeError,
    EncodeError,
    InterruptedWait,
    ProbeError,
    StateError,
    StatisticsWarning,
    TransportError,
)
from .protocol import ProbePacket, encode, decode
from .statistics import RunStatistics, compute
from .config import RunConfig, ServerConfig
from .cancel import CancellationToken
from .logging_utils import setup_logging

__version__ = "0.1.0"

__all__ = [
    'ConfigError',
    'DecodeError',
    'EncodeError',
    'InterruptedWait',
    'ProbeError',
    'StateError',
    'StatisticsWarning',
    'TransportError',
    'ProbePacket',
    'encode',
    'decode',
    'RunStatistics',
    'compute',
    'RunConfig',
    'ServerConfig',
    'CancellationToken',
    'setup_logging',
]
