#!/usr/bin/env python3
"""
Probe server - accepts control connections and measures probe runs.

Two tasks run concurrently and are joined before the server exits:

    control task: accept -> read START -> hand run to probe task ->
                  watch for END/EOF -> compute statistics -> report
    probe task:   receive UDP probes for the current run until the expected
                  count, END, or interrupt

State machine (owned by the control task):
    LISTENING --accept--> ACCEPTED --trigger--> PROBING
    ACCEPTED --abandon--> LISTENING        (client left before START)
    PROBING --probe_done--> REPORTING --reported--> LISTENING
    any state --failure--> ERROR

An interrupt (SIGINT/SIGTERM) cancels the process token: a blocked accept
returns at once, an in-flight run stops receiving, and its report over the
partial data is still written before the server shuts down.
"""

import argparse
import logging
import queue
import sys
import threading
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Deque, List, Optional, Tuple

from . import control
from . import statistics
from .cancel import CancellationToken, install_signal_handlers, wait_readable
from .config import SERVER_DEFAULTS, ServerConfig, build_server_config, resolve
from .errors import ConfigError, InterruptedWait, ProbeError, StateError, TransportError
from .logging_utils import add_logging_arguments, setup_logging
from .receiver import ProbeReceiver
from .report import ReportSink
from .statistics import RunStatistics


logger = logging.getLogger(__name__)

CONTROL_READ_SIZE = 1024
JOIN_POLL_INTERVAL = 0.5
END_GRACE_PERIOD = 1.0
RECENT_RUNS = 100


class ServerState(Enum):
    LISTENING = "listening"
    ACCEPTED = "accepted"
    PROBING = "probing"
    REPORTING = "reporting"
    ERROR = "error"


class ServerEvent(Enum):
    ACCEPT = "accept"
    ABANDON = "abandon"
    TRIGGER = "trigger"
    PROBE_DONE = "probe_done"
    REPORTED = "reported"
    FAILURE = "failure"


TRANSITIONS = {
    (ServerState.LISTENING, ServerEvent.ACCEPT): ServerState.ACCEPTED,
    (ServerState.ACCEPTED, ServerEvent.ABANDON): ServerState.LISTENING,
    (ServerState.ACCEPTED, ServerEvent.TRIGGER): ServerState.PROBING,
    (ServerState.PROBING, ServerEvent.PROBE_DONE): ServerState.REPORTING,
    (ServerState.REPORTING, ServerEvent.REPORTED): ServerState.LISTENING,
}


def transition(state: ServerState, event: ServerEvent) -> ServerState:
    """
    Next server state for an event.

    Raises:
        StateError: If the event is not valid in this state
    """
    if event is ServerEvent.FAILURE and state is not ServerState.ERROR:
        return ServerState.ERROR
    try:
        return TRANSITIONS[(state, event)]
    except KeyError:
        raise StateError(f"No server transition from {state.name} on {event.name}") from None


@dataclass
class ProbeRun:
    """Hand-off record between the control task and the probe task."""
    number: int
    peer: str
    end: CancellationToken
    finished: CancellationToken
    done: threading.Event = field(default_factory=threading.Event)
    observed: List[int] = field(default_factory=list)
    error: Optional[BaseException] = None

    def close(self) -> None:
        self.end.close()
        self.finished.close()


class ServerRunController:
    """
    Serves probe runs one at a time until interrupted.

    Example:
        token = CancellationToken("interrupt")
        server = ServerRunController(ServerConfig(port=4981), token=token)
        server.open()
        try:
            server.serve()
        finally:
            server.close()
    """

    def __init__(
        self,
        config: ServerConfig,
        sink: Optional[ReportSink] = None,
        token: Optional[CancellationToken] = None,
    ):
        self.config = config
        self.sink = sink or ReportSink(config.report_path)
        self._owns_token = token is None
        self.token = token or CancellationToken("interrupt")
        self.receiver = ProbeReceiver(config.host, config.udp_port, drain_timeout=config.drain_timeout)
        self.listener = None
        self.state = ServerState.LISTENING
        self.history: List[ServerState] = [self.state]
        # Most recent runs only; the report file holds the full history
        self.runs: Deque[RunStatistics] = deque(maxlen=RECENT_RUNS)
        self.run_count = 0
        self.error: Optional[BaseException] = None
        self._queue: "queue.Queue[Optional[ProbeRun]]" = queue.Queue()

    @property
    def control_address(self) -> Tuple[str, int]:
        return self.listener.getsockname()

    @property
    def probe_address(self) -> Tuple[str, int]:
        return self.receiver.address

    def fire(self, event: ServerEvent) -> ServerState:
        """Apply an event and record the resulting state."""
        new_state = transition(self.state, event)
        logger.debug(f"Server {self.state.name} -> {new_state.name} ({event.name})")
        self.state = new_state
        self.history.append(new_state)
        return new_state

    def open(self) -> None:
        """
        Bind the UDP probe socket and the control listener.

        Raises:
            TransportError: If either bind fails (state becomes ERROR)
        """
        try:
            self.receiver.open()
            self.listener = control.listen(self.config.host, self.config.port)
        except TransportError:
            self.fire(ServerEvent.FAILURE)
            self.close()
            raise
        host, port = self.control_address
        logger.info(f"Server listening for control connections on {host}:{port}")
        logger.info(f"Expecting {self.config.expected_count} probes per run, "
                    f"reports appended to {self.sink.path}")

    def serve(self, max_runs: Optional[int] = None) -> int:
        """
        Run the control and probe tasks until interrupted.

        Args:
            max_runs: Stop after this many reported runs (None = forever)

        Returns:
            Number of runs reported

        Raises:
            TransportError: If the control or probe task failed fatally
        """
        if self.listener is None:
            self.open()

        tasks = [
            threading.Thread(target=self._probe_task, name="probe-task", daemon=True),
            threading.Thread(target=self._control_task, args=(max_runs,), name="control-task", daemon=True),
        ]
        for task in tasks:
            task.start()
        for task in tasks:
            while task.is_alive():
                task.join(JOIN_POLL_INTERVAL)

        if self.error is not None:
            raise self.error
        return self.run_count

    def stop(self) -> None:
        """Request shutdown (same effect as an interrupt)."""
        self.token.cancel()

    # -----------------------------------------------------------------
    # Control task
    # -----------------------------------------------------------------

    def _control_task(self, max_runs: Optional[int]) -> None:
        try:
            while not self.token.cancelled:
                if max_runs is not None and self.run_count >= max_runs:
                    break
                logger.info("Waiting for client connection...")
                try:
                    conn = control.accept(self.listener, self.token)
                except InterruptedWait:
                    break
                self.fire(ServerEvent.ACCEPT)
                with conn:
                    self._handle_connection(conn)
        except Exception as e:
            logger.error(f"Control task failed in state {self.state.name}: {e}")
            self.error = e
            if self.state is not ServerState.ERROR:
                self.fire(ServerEvent.FAILURE)
        finally:
            self._queue.put(None)

    def _handle_connection(self, conn: control.ControlConnection) -> None:
        logger.info(f"Client connected from {conn.peer_name}")
        try:
            trigger = control.receive_once(conn, CONTROL_READ_SIZE, self.token)
        except InterruptedWait:
            logger.info("Interrupted before the run started")
            self.fire(ServerEvent.ABANDON)
            return
        except TransportError as e:
            logger.warning(f"Client {conn.peer_name} dropped before starting a run: {e}")
            self.fire(ServerEvent.ABANDON)
            return

        if not trigger:
            logger.warning(f"Client {conn.peer_name} closed the connection without starting a run")
            self.fire(ServerEvent.ABANDON)
            return

        number = self.run_count + 1
        logger.info(f"Run {number} started by {conn.peer_name} ({trigger!r})")
        run = ProbeRun(
            number=number,
            peer=conn.peer_name,
            end=CancellationToken(f"end-of-run-{number}"),
            finished=CancellationToken(f"run-{number}-finished"),
        )
        try:
            self.fire(ServerEvent.TRIGGER)
            self._queue.put(run)
            self._watch_for_end(conn, run)
            run.done.wait()
            if run.error is not None:
                raise run.error
            self.fire(ServerEvent.PROBE_DONE)
            self._report(run)
            self.receiver.flush()
            self.fire(ServerEvent.REPORTED)
        finally:
            run.close()

    def _watch_for_end(self, conn: control.ControlConnection, run: ProbeRun) -> None:
        """Wait for END or EOF on the control connection while probes arrive."""
        try:
            data = control.receive_once(conn, CONTROL_READ_SIZE, self.token, run.finished)
        except InterruptedWait:
            if run.finished.cancelled and not self.token.cancelled:
                self._linger_for_end(conn, run)
            return
        except TransportError as e:
            logger.warning(f"Control connection to {run.peer} failed during run {run.number}: {e}")
            run.end.cancel()
            return

        if data:
            logger.info(f"Run {run.number} ended by client ({data!r})")
        else:
            logger.info(f"Run {run.number}: client closed the control connection")
        run.end.cancel()

    def _linger_for_end(self, conn: control.ControlConnection, run: ProbeRun) -> None:
        """All probes arrived before END; give the client a moment to send it."""
        try:
            if wait_readable(conn.sock, self.token, timeout=END_GRACE_PERIOD):
                data = conn.sock.recv(CONTROL_READ_SIZE)
                logger.debug(f"Run {run.number}: END after last probe ({data!r})")
            else:
                logger.debug(f"Run {run.number}: no END within {END_GRACE_PERIOD}s of last probe")
        except InterruptedWait:
            pass
        except OSError as e:
            logger.debug(f"Run {run.number}: control read after last probe failed: {e}")

    def _report(self, run: ProbeRun) -> None:
        stats = statistics.compute(run.observed, self.config.expected_count)
        logger.info(f"Run {run.number} from {run.peer}: "
                    f"{stats.received}/{stats.expected} received, "
                    f"{stats.loss_ratio * 100:.1f}% loss, {stats.out_of_order} out of order")
        self.sink.emit(stats)
        self.runs.append(stats)
        self.run_count += 1

    # -----------------------------------------------------------------
    # Probe task
    # -----------------------------------------------------------------

    def _probe_task(self) -> None:
        while True:
            run = self._queue.get()
            if run is None:
                return
            try:
                run.observed = self.receiver.run(self.config.expected_count, self.token, run.end)
            except Exception as e:
                logger.error(f"Probe task failed during run {run.number}: {e}")
                run.error = e
            finally:
                run.finished.cancel()
                run.done.set()

    def close(self) -> None:
        """Release the listener, the probe socket and an owned token."""
        if self.listener is not None:
            self.listener.close()
            self.listener = None
        self.receiver.close()
        if self._owns_token:
            self.token.close()


def setup_argparse(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        description="Path probe server - counts UDP probes and reports loss and reordering",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # Default port 4981, expect 100 probes per run
    pathprobe-server

    # Match a client sending 1000 probes, custom report file
    pathprobe-server --port 5000 --packets 1000 --report runs.txt

    # Serve a single run then exit
    pathprobe-server --runs 1

Report (appended per run, also logged):
    # of packets RECEIVED = 98
    # of packets LOST = 2
    # of packets received OUT OF ORDER = 1
        """
    )
    parser.add_argument("--config", "-c", default=None,
                        help="YAML or JSON config file")
    parser.add_argument("--port", "-p", type=int, default=None,
                        help=f"Listen port (default: {SERVER_DEFAULTS['port']})")
    parser.add_argument("--host", default=None,
                        help=f"Listen address (default: {SERVER_DEFAULTS['host']})")
    parser.add_argument("--probeport", type=int, default=None,
                        help="UDP probe port (default: same as --port)")
    parser.add_argument("--packets", "-n", type=int, default=None,
                        help=f"Probes expected per run (default: {SERVER_DEFAULTS['packets']})")
    parser.add_argument("--report", "-o", default=None,
                        help=f"Report file (default: {SERVER_DEFAULTS['report']})")
    parser.add_argument("--drain-timeout", dest="drain_timeout", type=float, default=None,
                        help=f"Seconds to keep reading late probes after END "
                             f"(default: {SERVER_DEFAULTS['drain_timeout']})")
    parser.add_argument("--runs", type=int, default=None,
                        help="Exit after this many runs (default: run until interrupted)")
    add_logging_arguments(parser)
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = setup_argparse(argv)
    setup_logging(verbose=args.verbose, debug=args.debug, quiet=args.quiet, log_file=args.log_file)

    try:
        config = build_server_config(resolve(SERVER_DEFAULTS, args))
        if args.runs is not None and args.runs < 1:
            raise ConfigError(f"runs: must be at least 1, got {args.runs}")
    except ConfigError as e:
        logging.error(f"Configuration error: {e}")
        return 1

    token = CancellationToken("interrupt")
    restore = install_signal_handlers(token)
    server = ServerRunController(config, ReportSink(config.report_path), token)
    try:
        server.open()
        runs = server.serve(max_runs=args.runs)
    except (ProbeError, OSError) as e:
        logging.error(f"Server failed: {e}")
        return 1
    finally:
        restore()
        server.close()
        token.close()

    logging.info(f"Server shutdown complete after {runs} run(s)")
    return 0


if __name__ == "__main__":
    sys.exit(main())
