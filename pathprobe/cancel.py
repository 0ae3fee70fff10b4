#!/usr/bin/env python3
"""
Cancellation tokens for blocking socket waits.

A token is a write-once flag paired with a socketpair. Cancelling writes one
byte into the pair, so any selector waiting on the token's fileno() wakes up
immediately. This lets the server block on accept/recvfrom without a timeout
and still exit promptly when a signal arrives.

Example:
    token = CancellationToken()
    restore = install_signal_handlers(token)
    try:
        wait_readable(sock, token)      # raises InterruptedWait on Ctrl-C
        data, addr = sock.recvfrom(MAX_PACKET_SIZE)
    finally:
        restore()
        token.close()
"""

import logging
import selectors
import signal
import socket
from typing import Callable, Iterable, Optional

from .errors import InterruptedWait


logger = logging.getLogger(__name__)


class CancellationToken:
    """Write-once cancellation flag with a selectable wake-up handle."""

    def __init__(self, name: str = "token"):
        self.name = name
        self._cancelled = False
        self._reader, self._writer = socket.socketpair()
        self._reader.setblocking(False)
        self._writer.setblocking(False)

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        """
        Set the flag and wake any waiter.

        Safe to call from a signal handler and from any thread; calling it
        more than once has no further effect.
        """
        if self._cancelled:
            return
        self._cancelled = True
        try:
            self._writer.send(b'\x00')
        except OSError:
            # Wake-up pipe full or already closed; the flag alone is enough.
            pass

    def fileno(self) -> int:
        return self._reader.fileno()

    def close(self) -> None:
        self._reader.close()
        self._writer.close()

    def __enter__(self) -> 'CancellationToken':
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def __repr__(self) -> str:
        state = "cancelled" if self._cancelled else "active"
        return f"<CancellationToken {self.name} {state}>"


def first_cancelled(tokens: Iterable[Optional[CancellationToken]]) -> Optional[CancellationToken]:
    """Return the first cancelled token, or None."""
    for token in tokens:
        if token is not None and token.cancelled:
            return token
    return None


def wait_readable(
    sock: socket.socket,
    *tokens: Optional[CancellationToken],
    timeout: Optional[float] = None,
) -> bool:
    """
    Block until a socket is readable or a token is cancelled.

    Args:
        sock: Socket to wait on
        tokens: Cancellation tokens (None entries are ignored)
        timeout: Seconds to wait (None = no timeout)

    Returns:
        True if the socket is readable, False on timeout

    Raises:
        InterruptedWait: If any token is (or becomes) cancelled
    """
    active = [t for t in tokens if t is not None]

    cancelled = first_cancelled(active)
    if cancelled is not None:
        raise InterruptedWait(f"wait cancelled by {cancelled.name}")

    with selectors.DefaultSelector() as selector:
        selector.register(sock, selectors.EVENT_READ, data=None)
        for token in active:
            selector.register(token, selectors.EVENT_READ, data=token)

        events = selector.select(timeout)

    cancelled = first_cancelled(active)
    if cancelled is not None:
        raise InterruptedWait(f"wait cancelled by {cancelled.name}")

    return any(key.data is None for key, _ in events)


def install_signal_handlers(
    token: CancellationToken,
    signums: Iterable[int] = (signal.SIGINT, signal.SIGTERM),
) -> Callable[[], None]:
    """
    Cancel a token when the process receives a signal.

    Must be called from the main thread.

    Args:
        token: Token to cancel
        signums: Signals to handle (default SIGINT, SIGTERM)

    Returns:
        Callable that restores the previous handlers
    """
    previous = {}

    def handler(signum, frame):
        logger.info("Received %s, shutting down", signal.Signals(signum).name)
        token.cancel()

    for signum in signums:
        previous[signum] = signal.signal(signum, handler)

    def restore() -> None:
        for signum, old in previous.items():
            signal.signal(signum, old)

    return restore
