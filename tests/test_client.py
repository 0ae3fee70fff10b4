"""Client run controller tests."""

import pytest

from pathprobe import client, control
from pathprobe.client import ClientEvent, ClientRunController, ClientState, transition
from pathprobe.config import RunConfig
from pathprobe.errors import StateError, TransportError


def test_happy_path_transitions():
    state = ClientState.IDLE
    for event in (ClientEvent.CONNECT, ClientEvent.CONNECTED, ClientEvent.START_SENT,
                  ClientEvent.STREAM, ClientEvent.STREAM_DONE, ClientEvent.CLOSED):
        state = transition(state, event)
    assert state is ClientState.CLOSED


@pytest.mark.parametrize("state", [
    ClientState.IDLE, ClientState.CONNECTING, ClientState.CONNECTED,
    ClientState.STREAMING, ClientState.FINISHING,
])
def test_failure_from_any_live_state(state):
    assert transition(state, ClientEvent.FAILURE) is ClientState.ERROR


@pytest.mark.parametrize("state,event", [
    (ClientState.IDLE, ClientEvent.STREAM),
    (ClientState.CONNECTING, ClientEvent.START_SENT),
    (ClientState.CLOSED, ClientEvent.FAILURE),
    (ClientState.ERROR, ClientEvent.CONNECT),
])
def test_invalid_transitions(state, event):
    with pytest.raises(StateError):
        transition(state, event)


def test_connect_failure_ends_in_error(free_port):
    config = RunConfig("START", 3, '127.0.0.1', free_port, 0, 0, connect_timeout=2.0)
    controller = ClientRunController(config)

    with pytest.raises(TransportError):
        controller.run()

    assert controller.history == [ClientState.IDLE, ClientState.CONNECTING, ClientState.ERROR]
    assert controller.conn is None


def test_controller_runs_once(free_port):
    controller = ClientRunController(RunConfig("START", 1, '127.0.0.1', free_port, 0, 0))
    with pytest.raises(TransportError):
        controller.run()
    with pytest.raises(StateError):
        controller.run()


def test_main_requires_server_address(monkeypatch):
    monkeypatch.delenv("PATHPROBE_SERVERIP", raising=False)
    assert client.main([]) == 1


def test_main_reports_refused_connection(free_port):
    assert client.main(["--serverip", "127.0.0.1", "--serverport", str(free_port),
                        "--packets", "1", "--quiet"]) == 1


class _FailingSender:
    """Stands in for ProbeSender and fails partway through the stream."""

    def run(self):
        raise TransportError("send probe 3 to 127.0.0.1:4981", ConnectionRefusedError(111, "refused"))


def test_failure_mid_stream_closes_control_connection():
    listener = control.listen('127.0.0.1', 0)
    try:
        port = listener.getsockname()[1]
        config = RunConfig("START", 5, '127.0.0.1', port, 0, 0, connect_timeout=2.0)
        controller = ClientRunController(config, sender=_FailingSender())

        with pytest.raises(TransportError, match="send probe 3"):
            controller.run()

        assert controller.history[-2:] == [ClientState.STREAMING, ClientState.ERROR]
        assert controller.conn.closed

        # The server side sees START and then EOF
        with control.accept(listener) as server_conn:
            received = b''
            while True:
                chunk = control.receive_once(server_conn)
                if not chunk:
                    break
                received += chunk
        assert received == b'START\n'
    finally:
        listener.close()


def test_main_returns_zero_after_successful_run(make_server):
    handle = make_server(expected_count=5, max_runs=1)
    argv = [
        "--serverip", "127.0.0.1",
        "--serverport", str(handle.control_port),
        "--probeport", str(handle.probe_port),
        "--packets", "5",
        "--size", "16",
        "--delay", "0",
        "--quiet",
    ]
    assert client.main(argv) == 0
    assert handle.wait()
    assert handle.result == {'runs': 1}
