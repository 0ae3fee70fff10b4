#!/usr/bin/env python3
"""
Probe sender - client side of the UDP probe stream.

Sends packet_count probes with sequence ids 1..packet_count to the server,
paced at the configured inter-packet delay. After each send it may read one
echo back from the server; echoes are best-effort and never fail the run.
"""

import logging
import socket
import time
from dataclasses import dataclass

from .config import RunConfig
from .errors import DecodeError, TransportError
from .logging_utils import format_bytes, format_duration
from .network import create_udp_socket
from .protocol import MAX_PACKET_SIZE, ProbePacket, decode, encode
from .timing import IntervalTimer


logger = logging.getLogger(__name__)


@dataclass
class RunOutcome:
    """What the sender did during one run."""
    sent: int = 0
    bytes_sent: int = 0
    echoes: int = 0
    elapsed: float = 0.0
    late_ticks: int = 0

    @property
    def packets_per_second(self) -> float:
        return self.sent / self.elapsed if self.elapsed > 0 else 0.0


class ProbeSender:
    """
    UDP probe generator.

    Example:
        sender = ProbeSender(config)
        outcome = sender.run()
        print(f"sent {outcome.sent} probes")
    """

    def __init__(self, config: RunConfig):
        self.config = config
        self.sock = None
        self.dest = (config.server_address, config.udp_port)
        self.echo_timeout = config.echo_timeout_ms / 1000.0

    def setup(self) -> None:
        """Create the UDP socket on an ephemeral local port."""
        try:
            self.sock = create_udp_socket(reuse_addr=False)
            self.sock.bind(('0.0.0.0', 0))
        except OSError as e:
            self.cleanup()
            raise TransportError("create probe socket", e) from e

        local = self.sock.getsockname()
        logger.info(f"Sending {self.config.packet_count} probes of {self.config.payload_size} bytes "
                    f"to {self.dest[0]}:{self.dest[1]} from port {local[1]}, "
                    f"every {self.config.inter_packet_delay_ms}ms")

    def run(self) -> RunOutcome:
        """
        Send the whole probe stream.

        Returns:
            RunOutcome with counts and timing

        Raises:
            TransportError: If the socket cannot be created or a send fails
        """
        self.setup()
        outcome = RunOutcome()
        timer = IntervalTimer(self.config.inter_packet_delay_ms)
        start = time.monotonic()

        try:
            for seq in range(1, self.config.packet_count + 1):
                packet = ProbePacket.build(seq, self.config.payload_size)
                data = encode(packet)

                self.send(data, seq)
                outcome.sent += 1
                outcome.bytes_sent += len(data)

                outcome.echoes += self.read_echo()

                if seq < self.config.packet_count:
                    outcome.late_ticks += timer.wait()
        finally:
            outcome.elapsed = time.monotonic() - start
            self.cleanup()

        logger.info(f"Sent {outcome.sent} probes ({format_bytes(outcome.bytes_sent)}) "
                    f"in {format_duration(outcome.elapsed)}, {outcome.echoes} echoes")
        if outcome.late_ticks:
            logger.warning(f"Pacing fell behind schedule {outcome.late_ticks} time(s)")
        return outcome

    def send(self, data: bytes, seq: int) -> None:
        """Send one datagram; any OS error fails the run."""
        # sendto() already retries EINTR itself (PEP 475)
        try:
            self.sock.sendto(data, self.dest)
        except OSError as e:
            raise TransportError(f"send probe {seq} to {self.dest[0]}:{self.dest[1]}", e) from e
        logger.debug(f"Sent probe seq={seq} ({len(data)} bytes)")

    def read_echo(self) -> int:
        """
        Read echoes without failing the run.

        With a positive echo timeout, waits that long for one echo. With a
        zero timeout, drains whatever echoes are already queued.

        Returns:
            Number of well-formed echoes read
        """
        if self.echo_timeout > 0:
            self.sock.settimeout(self.echo_timeout)
            try:
                data, addr = self.sock.recvfrom(MAX_PACKET_SIZE)
            except socket.timeout:
                logger.debug("No echo within timeout")
                return 0
            except OSError as e:
                logger.debug(f"Echo receive failed: {e}")
                return 0
            return int(self._check_echo(data))

        self.sock.setblocking(False)
        echoes = 0
        try:
            while True:
                try:
                    data, addr = self.sock.recvfrom(MAX_PACKET_SIZE)
                except (BlockingIOError, InterruptedError):
                    break
                except OSError as e:
                    logger.debug(f"Echo receive failed: {e}")
                    break
                echoes += int(self._check_echo(data))
        finally:
            self.sock.setblocking(True)
        return echoes

    def _check_echo(self, data: bytes) -> bool:
        try:
            packet = decode(data)
        except DecodeError as e:
            logger.debug(f"Malformed echo ignored: {e}")
            return False
        logger.debug(f"Echo for seq={packet.sequence_id}")
        return True

    def cleanup(self) -> None:
        """Close the UDP socket."""
        if self.sock:
            self.sock.close()
            self.sock = None
