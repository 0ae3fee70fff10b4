#!/usr/bin/env python3
"""
Probe client - drives one measurement run.

Sequence: connect the control channel, send START, stream UDP probes,
send END, close. Any transport failure moves the run to ERROR and the
control connection is closed on the way out.

State machine:
    IDLE --connect--> CONNECTING --connected--> CONNECTED
    CONNECTED --start_sent--> CONNECTED --stream--> STREAMING
    STREAMING --stream_done--> FINISHING --closed--> CLOSED
    any non-terminal state --failure--> ERROR
"""

import argparse
import logging
import sys
from enum import Enum
from typing import List, Optional

from . import control
from .config import CLIENT_DEFAULTS, RunConfig, build_run_config, resolve
from .errors import ConfigError, ProbeError, StateError, TransportError
from .logging_utils import add_logging_arguments, setup_logging
from .sender import ProbeSender, RunOutcome


logger = logging.getLogger(__name__)


class ClientState(Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    STREAMING = "streaming"
    FINISHING = "finishing"
    CLOSED = "closed"
    ERROR = "error"


class ClientEvent(Enum):
    CONNECT = "connect"
    CONNECTED = "connected"
    START_SENT = "start_sent"
    STREAM = "stream"
    STREAM_DONE = "stream_done"
    CLOSED = "closed"
    FAILURE = "failure"


TERMINAL_STATES = frozenset({ClientState.CLOSED, ClientState.ERROR})

TRANSITIONS = {
    (ClientState.IDLE, ClientEvent.CONNECT): ClientState.CONNECTING,
    (ClientState.CONNECTING, ClientEvent.CONNECTED): ClientState.CONNECTED,
    (ClientState.CONNECTED, ClientEvent.START_SENT): ClientState.CONNECTED,
    (ClientState.CONNECTED, ClientEvent.STREAM): ClientState.STREAMING,
    (ClientState.STREAMING, ClientEvent.STREAM_DONE): ClientState.FINISHING,
    (ClientState.FINISHING, ClientEvent.CLOSED): ClientState.CLOSED,
}


def transition(state: ClientState, event: ClientEvent) -> ClientState:
    """
    Next client state for an event.

    Raises:
        StateError: If the event is not valid in this state
    """
    if event is ClientEvent.FAILURE and state not in TERMINAL_STATES:
        return ClientState.ERROR
    try:
        return TRANSITIONS[(state, event)]
    except KeyError:
        raise StateError(f"No client transition from {state.name} on {event.name}") from None


class ClientRunController:
    """
    Runs the client side of one measurement.

    Example:
        controller = ClientRunController(config)
        outcome = controller.run()
        assert controller.state is ClientState.CLOSED
    """

    def __init__(self, config: RunConfig, sender: Optional[ProbeSender] = None):
        self.config = config
        self.sender = sender or ProbeSender(config)
        self.state = ClientState.IDLE
        self.history: List[ClientState] = [self.state]
        self.conn: Optional[control.ControlConnection] = None

    def fire(self, event: ClientEvent) -> ClientState:
        """Apply an event and record the resulting state."""
        new_state = transition(self.state, event)
        if new_state is not self.state:
            logger.debug(f"Client {self.state.name} -> {new_state.name} ({event.name})")
        self.state = new_state
        self.history.append(new_state)
        return new_state

    def run(self) -> RunOutcome:
        """
        Execute the whole run.

        Returns:
            RunOutcome from the probe sender

        Raises:
            TransportError: On any fatal socket failure (state is ERROR)
            StateError: If run() is called on a controller that already ran
        """
        if self.state is not ClientState.IDLE:
            raise StateError(f"Client run already executed (state {self.state.name})")

        cfg = self.config
        try:
            self.fire(ClientEvent.CONNECT)
            self.conn = control.connect(cfg.server_address, cfg.server_port, timeout=cfg.connect_timeout)
            self.fire(ClientEvent.CONNECTED)

            control.send_start(self.conn, cfg.start_message)
            self.fire(ClientEvent.START_SENT)

            self.fire(ClientEvent.STREAM)
            outcome = self.sender.run()
            self.fire(ClientEvent.STREAM_DONE)

            control.send_end(self.conn, cfg.end_message)
            control.close(self.conn)
            self.fire(ClientEvent.CLOSED)
            return outcome
        except BaseException:
            if self.state not in TERMINAL_STATES:
                self.fire(ClientEvent.FAILURE)
            raise
        finally:
            if self.conn is not None:
                control.close(self.conn)


def setup_argparse(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        description="Path probe client - streams numbered UDP probes to a probe server",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # 100 probes of 100 bytes, 50ms apart (defaults)
    pathprobe-client --serverip 10.0.0.108

    # Fast run of 1000 small probes
    pathprobe-client --serverip 10.0.0.108 --packets 1000 --size 16 --delay 1

    # Settings from a file, overridden by the environment
    PATHPROBE_PACKETS=500 pathprobe-client --config probe.yaml

Server output (appended to its report file):
    # of packets RECEIVED = 100
    # of packets LOST = 0
    # of packets received OUT OF ORDER = 0
        """
    )
    parser.add_argument("--config", "-c", default=None,
                        help="YAML or JSON config file")
    parser.add_argument("--start", "-m", default=None,
                        help=f"Start-of-run message (default: {CLIENT_DEFAULTS['start']})")
    parser.add_argument("--end", default=None,
                        help=f"End-of-run message (default: {CLIENT_DEFAULTS['end']})")
    parser.add_argument("--packets", "-n", type=int, default=None,
                        help=f"Number of probes (default: {CLIENT_DEFAULTS['packets']})")
    parser.add_argument("--serverip", "-H", default=None,
                        help="Server address (required)")
    parser.add_argument("--serverport", "-p", type=int, default=None,
                        help=f"Server control port (default: {CLIENT_DEFAULTS['serverport']})")
    parser.add_argument("--probeport", type=int, default=None,
                        help="Server UDP probe port (default: same as --serverport)")
    parser.add_argument("--size", "-s", type=int, default=None,
                        help=f"Probe payload size in bytes (default: {CLIENT_DEFAULTS['size']})")
    parser.add_argument("--delay", "-d", type=int, default=None,
                        help=f"Inter-packet delay in ms (default: {CLIENT_DEFAULTS['delay']})")
    parser.add_argument("--echo-timeout", dest="echo_timeout", type=int, default=None,
                        help="Wait this many ms for each echo (default: 0, drain only)")
    parser.add_argument("--connect-timeout", dest="connect_timeout", type=float, default=None,
                        help=f"Control connect timeout in seconds (default: {CLIENT_DEFAULTS['connect_timeout']})")
    add_logging_arguments(parser)
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = setup_argparse(argv)
    setup_logging(verbose=args.verbose, debug=args.debug, quiet=args.quiet, log_file=args.log_file)

    try:
        config = build_run_config(resolve(CLIENT_DEFAULTS, args))
    except ConfigError as e:
        logging.error(f"Configuration error: {e}")
        return 1

    controller = ClientRunController(config)
    try:
        outcome = controller.run()
    except TransportError as e:
        logging.error(f"Run failed in state {controller.history[-2].name}: {e}")
        return 1
    except ProbeError as e:
        logging.error(f"Run failed: {e}")
        return 1
    except KeyboardInterrupt:
        logging.info("Interrupted by user")
        return 130

    logging.info(f"Run complete: {outcome.sent} probes sent, "
                 f"{outcome.packets_per_second:.1f} packets/s")
    return 0


if __name__ == "__main__":
    sys.exit(main())
