#!/usr/bin/env python3
"""
Probe receiver - server side of the UDP probe stream.

Records the sequence id of every well-formed probe in arrival order and
echoes each datagram back to its sender. A run ends when the expected number
of probes has arrived, when the client announces the end of the run, or when
the process is interrupted. Receives block without a timeout; cancellation
tokens wake them up.
"""

import logging
import socket
import time
from typing import List, Optional, Tuple

from .cancel import CancellationToken, wait_readable
from .errors import DecodeError, InterruptedWait, TransportError
from .network import create_udp_socket
from .protocol import MAX_PACKET_SIZE, decode


logger = logging.getLogger(__name__)

DEFAULT_RECV_BUF = 1 << 20


class ProbeReceiver:
    """
    UDP probe sink.

    Example:
        receiver = ProbeReceiver('0.0.0.0', 4981)
        receiver.open()
        try:
            observed = receiver.run(expected_count=100, token=token)
        finally:
            receiver.close()
    """

    def __init__(self, host: str = '0.0.0.0', port: int = 0,
                 drain_timeout: float = 0.2, recv_buf: Optional[int] = DEFAULT_RECV_BUF):
        self.host = host
        self.port = port
        self.drain_timeout = drain_timeout
        self.recv_buf = recv_buf
        self.sock: Optional[socket.socket] = None
        self.decode_errors = 0
        self.echo_errors = 0

    @property
    def address(self) -> Tuple[str, int]:
        """Bound (host, port)."""
        if self.sock is None:
            return (self.host, self.port)
        return self.sock.getsockname()

    def open(self) -> None:
        """
        Bind the UDP socket.

        Raises:
            TransportError: If the socket cannot be created or bound
        """
        try:
            self.sock = create_udp_socket(recv_buf=self.recv_buf)
            self.sock.bind((self.host, self.port))
        except OSError as e:
            self.close()
            raise TransportError(f"bind probe socket on {self.host}:{self.port}", e) from e
        logger.info(f"Probe receiver listening on UDP port {self.address[1]}")

    def run(
        self,
        expected_count: int,
        token: Optional[CancellationToken] = None,
        end_token: Optional[CancellationToken] = None,
    ) -> List[int]:
        """
        Receive probes for one run.

        Args:
            expected_count: Stop after this many probes
            token: Process-wide cancellation (interrupt)
            end_token: Set when the client announced the end of the run

        Returns:
            Arrival-ordered sequence ids; shorter than expected_count if
            the run ended early

        Raises:
            TransportError: If a receive fails with an OS error
        """
        if self.sock is None:
            raise TransportError("receive probes (socket not open)")

        observed: List[int] = []
        self.decode_errors = 0
        self.echo_errors = 0

        while len(observed) < expected_count:
            try:
                wait_readable(self.sock, token, end_token)
            except InterruptedWait as e:
                logger.info(f"Probe receive stopped: {e}")
                break
            self._receive_one(observed)

        if len(observed) < expected_count and end_token is not None and end_token.cancelled:
            self._drain(observed, expected_count, token)

        logger.info(f"Received {len(observed)}/{expected_count} probes"
                    + (f", {self.decode_errors} malformed" if self.decode_errors else ""))
        return observed

    def _receive_one(self, observed: List[int]) -> bool:
        try:
            data, addr = self.sock.recvfrom(MAX_PACKET_SIZE)
        except (BlockingIOError, InterruptedError):
            return False
        except ConnectionResetError:
            # ICMP unreachable from an earlier echo; not about this datagram
            return False
        except OSError as e:
            raise TransportError("receive probe", e) from e

        try:
            packet = decode(data)
        except DecodeError as e:
            self.decode_errors += 1
            logger.warning(f"Skipping malformed datagram from {addr[0]}:{addr[1]}: {e}")
            return False

        observed.append(packet.sequence_id)
        logger.debug(f"Probe seq={packet.sequence_id} from {addr[0]}:{addr[1]}")
        self._echo(data, addr)
        return True

    def _echo(self, data: bytes, addr) -> None:
        try:
            self.sock.sendto(data, addr)
        except OSError as e:
            self.echo_errors += 1
            logger.debug(f"Echo to {addr[0]}:{addr[1]} failed: {e}")

    def _drain(self, observed: List[int], expected_count: int,
               token: Optional[CancellationToken]) -> None:
        """Collect probes still in flight when the run was ended."""
        deadline = time.monotonic() + self.drain_timeout
        before = len(observed)
        while len(observed) < expected_count:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                break
            try:
                if not wait_readable(self.sock, token, timeout=remaining):
                    break
            except InterruptedWait:
                break
            self._receive_one(observed)
        if len(observed) > before:
            logger.debug(f"Drained {len(observed) - before} late probes after end of run")

    def flush(self) -> int:
        """
        Discard every datagram still queued on the socket.

        Called between runs so probes left over from one run are never
        counted in the next.

        Returns:
            Number of datagrams discarded
        """
        if self.sock is None:
            return 0
        discarded = 0
        self.sock.setblocking(False)
        try:
            while True:
                try:
                    self.sock.recvfrom(MAX_PACKET_SIZE)
                except (BlockingIOError, InterruptedError):
                    break
                except ConnectionResetError:
                    continue
                except OSError as e:
                    raise TransportError("flush probe socket", e) from e
                discarded += 1
        finally:
            self.sock.setblocking(True)
        if discarded:
            logger.info(f"Discarded {discarded} stale datagram(s) left over from the last run")
        return discarded

    def close(self) -> None:
        """Close the UDP socket."""
        if self.sock:
            self.sock.close()
            self.sock = None


def receive_probes(
    port: int,
    expected_count: int,
    token: Optional[CancellationToken] = None,
    host: str = '0.0.0.0',
) -> List[int]:
    """
    Bind, receive one run's probes, and close.

    Args:
        port: UDP port to bind
        expected_count: Stop after this many probes
        token: Cancellation token that ends the run early
        host: Local address to bind

    Returns:
        Arrival-ordered sequence ids
    """
    receiver = ProbeReceiver(host, port)
    receiver.open()
    try:
        return receiver.run(expected_count, token)
    finally:
        receiver.close()
