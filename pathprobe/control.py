#!/usr/bin/env python3
"""
Control channel: a TCP connection that only delimits a run.

The client connects, writes a START message, streams probes over UDP,
writes an END message and closes. The server reads once to learn that a
run has started; the content is never interpreted. Each message is one
write of the message bytes followed by a newline.
"""

import logging
import socket
from typing import Optional, Tuple

from .cancel import CancellationToken, wait_readable
from .errors import TransportError
from .network import create_tcp_socket, format_address


logger = logging.getLogger(__name__)

MESSAGE_TERMINATOR = b'\n'
DEFAULT_READ_SIZE = 1024
LISTEN_BACKLOG = 5


class ControlConnection:
    """One control connection (either end)."""

    def __init__(self, sock: socket.socket, peer: Tuple[str, int]):
        self.sock = sock
        self.peer = peer
        self.closed = False

    @property
    def peer_name(self) -> str:
        return format_address(self.peer)

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        try:
            self.sock.close()
        except OSError as e:
            logger.debug(f"Error closing control connection to {self.peer_name}: {e}")

    def __enter__(self) -> 'ControlConnection':
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def __repr__(self) -> str:
        state = "closed" if self.closed else "open"
        return f"<ControlConnection {self.peer_name} {state}>"


def frame(message: str) -> bytes:
    """Encode a control message for the wire."""
    return message.encode('utf-8') + MESSAGE_TERMINATOR


# ---------------------------------------------------------------------------
# Client side
# ---------------------------------------------------------------------------

def connect(address: str, port: int, timeout: Optional[float] = None) -> ControlConnection:
    """
    Open the control connection to the server.

    Args:
        address: Server host name or IP
        port: Server control port
        timeout: Connect timeout in seconds (None = OS default)

    Raises:
        TransportError: If the socket cannot be created or connected
    """
    operation = f"connect to {address}:{port}"
    try:
        sock = create_tcp_socket(reuse_addr=False, nodelay=True, timeout=timeout)
    except OSError as e:
        raise TransportError("create control socket", e) from e

    try:
        sock.connect((address, port))
        sock.settimeout(None)
    except OSError as e:
        sock.close()
        raise TransportError(operation, e) from e

    logger.info(f"Control connection established to {address}:{port}")
    return ControlConnection(sock, (address, port))


def _send(conn: ControlConnection, message: str, what: str) -> None:
    try:
        conn.sock.sendall(frame(message))
    except OSError as e:
        raise TransportError(f"send {what} to {conn.peer_name}", e) from e
    logger.debug(f"Sent {what} ({message!r}) to {conn.peer_name}")


def send_start(conn: ControlConnection, message: str) -> None:
    """Write the START marker."""
    _send(conn, message, "START")


def send_end(conn: ControlConnection, message: str) -> None:
    """Write the END marker."""
    _send(conn, message, "END")


def close(conn: ControlConnection) -> None:
    """Close the control connection (idempotent)."""
    conn.close()


# ---------------------------------------------------------------------------
# Server side
# ---------------------------------------------------------------------------

def listen(host: str, port: int, backlog: int = LISTEN_BACKLOG) -> socket.socket:
    """
    Create the control listener.

    Raises:
        TransportError: If the socket cannot be bound
    """
    try:
        sock = create_tcp_socket()
    except OSError as e:
        raise TransportError("create control listener", e) from e

    try:
        sock.bind((host, port))
        sock.listen(backlog)
    except OSError as e:
        sock.close()
        raise TransportError(f"bind control listener on {host}:{port}", e) from e

    return sock


def accept(listener: socket.socket, token: Optional[CancellationToken] = None) -> ControlConnection:
    """
    Wait for a client control connection.

    Raises:
        InterruptedWait: If the token is cancelled while waiting
        TransportError: If accept fails
    """
    while True:
        wait_readable(listener, token)
        try:
            sock, peer = listener.accept()
        except (BlockingIOError, InterruptedError):
            continue
        except OSError as e:
            raise TransportError("accept control connection", e) from e
        sock.setblocking(True)
        return ControlConnection(sock, peer)


def receive_once(
    conn: ControlConnection,
    max_bytes: int = DEFAULT_READ_SIZE,
    *tokens: Optional[CancellationToken],
) -> bytes:
    """
    Perform one blocking read on the control connection.

    Args:
        conn: Control connection
        max_bytes: Maximum bytes to read
        tokens: Cancellation tokens that interrupt the wait

    Returns:
        The bytes read; b"" when the peer closed the connection

    Raises:
        InterruptedWait: If a token is cancelled while waiting
        TransportError: If the read fails
    """
    wait_readable(conn.sock, *tokens)
    try:
        return conn.sock.recv(max_bytes)
    except ConnectionResetError:
        logger.debug(f"Control connection reset by {conn.peer_name}")
        return b''
    except OSError as e:
        raise TransportError(f"read from {conn.peer_name}", e) from e
