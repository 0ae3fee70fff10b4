"""Cancellation token tests."""

import signal
import socket
import threading
import time

import pytest

from pathprobe.cancel import CancellationToken, install_signal_handlers, wait_readable
from pathprobe.errors import InterruptedWait


@pytest.fixture
def udp_socket():
    sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    sock.bind(('127.0.0.1', 0))
    yield sock
    sock.close()


def test_cancel_is_write_once():
    with CancellationToken("t") as token:
        assert not token.cancelled
        token.cancel()
        token.cancel()
        assert token.cancelled


def test_wait_returns_when_readable(udp_socket):
    with CancellationToken() as token:
        sender = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        sender.sendto(b'x', udp_socket.getsockname())
        sender.close()
        assert wait_readable(udp_socket, token, timeout=2.0)


def test_wait_times_out(udp_socket):
    assert wait_readable(udp_socket, timeout=0.05) is False


def test_already_cancelled_raises(udp_socket):
    with CancellationToken() as token:
        token.cancel()
        with pytest.raises(InterruptedWait):
            wait_readable(udp_socket, token)


def test_cancel_from_another_thread_unblocks_wait(udp_socket):
    with CancellationToken("interrupt") as token:
        timer = threading.Timer(0.1, token.cancel)
        timer.start()
        start = time.monotonic()
        with pytest.raises(InterruptedWait, match="interrupt"):
            wait_readable(udp_socket, token)
        assert time.monotonic() - start < 2.0
        timer.join()


def test_none_tokens_are_ignored(udp_socket):
    assert wait_readable(udp_socket, None, timeout=0.01) is False


def test_signal_handler_cancels_token():
    with CancellationToken() as token:
        restore = install_signal_handlers(token, signums=(signal.SIGUSR1,))
        try:
            signal.raise_signal(signal.SIGUSR1)
            assert token.cancelled
        finally:
            restore()
        assert signal.getsignal(signal.SIGUSR1) is not None
