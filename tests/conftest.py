import socket
import sys
import threading
from dataclasses import dataclass, field
from pathlib import Path

# Ensure package import for tests
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

import pytest

from pathprobe.cancel import CancellationToken
from pathprobe.config import RunConfig, ServerConfig
from pathprobe.report import ReportSink
from pathprobe.server import ServerRunController


LOOPBACK = '127.0.0.1'


@dataclass
class ServerHandle:
    """A server running serve() on a background thread."""
    server: ServerRunController
    token: CancellationToken
    thread: threading.Thread
    report_path: Path
    result: dict = field(default_factory=dict)

    @property
    def control_port(self) -> int:
        return self.server.control_address[1]

    @property
    def probe_port(self) -> int:
        return self.server.probe_address[1]

    def client_config(self, **overrides) -> RunConfig:
        settings = dict(
            start_message="START",
            packet_count=10,
            server_address=LOOPBACK,
            server_port=self.control_port,
            payload_size=32,
            inter_packet_delay_ms=0,
            probe_port=self.probe_port,
        )
        settings.update(overrides)
        return RunConfig(**settings)

    def wait(self, timeout: float = 10.0) -> bool:
        """Join the serve thread; True if it finished in time."""
        self.thread.join(timeout)
        return not self.thread.is_alive()


@pytest.fixture
def make_server(tmp_path):
    """Factory for loopback servers on ephemeral ports."""
    handles = []

    def _make(expected_count: int = 10, max_runs=None, drain_timeout: float = 0.2) -> ServerHandle:
        report_path = tmp_path / "report.txt"
        config = ServerConfig(
            port=0,
            host=LOOPBACK,
            probe_port=0,
            expected_count=expected_count,
            report_path=str(report_path),
            drain_timeout=drain_timeout,
        )
        token = CancellationToken("test-interrupt")
        server = ServerRunController(config, ReportSink(report_path), token)
        server.open()

        result = {}

        def target():
            try:
                result['runs'] = server.serve(max_runs=max_runs)
            except Exception as e:
                result['error'] = e

        thread = threading.Thread(target=target, name="test-server", daemon=True)
        handle = ServerHandle(server, token, thread, report_path, result)
        handles.append(handle)
        thread.start()
        return handle

    yield _make

    for handle in handles:
        handle.token.cancel()
        handle.thread.join(5.0)
        handle.server.close()
        handle.token.close()


@pytest.fixture
def udp_sink():
    """A bound loopback UDP socket for sender tests."""
    sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    sock.bind((LOOPBACK, 0))
    sock.settimeout(2.0)
    yield sock
    sock.close()


@pytest.fixture
def free_port():
    """A loopback TCP port with nothing listening on it."""
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.bind((LOOPBACK, 0))
    port = sock.getsockname()[1]
    sock.close()
    return port
