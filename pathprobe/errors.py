#!/usr/bin/env python3
"""
Error taxonomy for pathprobe.

Fatal conditions (ConfigError, TransportError) propagate to the owning
controller. Recoverable ones (DecodeError, InterruptedWait) are absorbed at
the component that sees them. StatisticsWarning is issued, never raised.
"""

from typing import Optional


class ProbeError(Exception):
    """Base class for all pathprobe errors."""


class ConfigError(ProbeError):
    """Malformed or missing configuration."""


class TransportError(ProbeError):
    """
    Socket-level failure not caused by an interrupt.

    Args:
        operation: What was being attempted, e.g. "connect to 10.0.0.1:4981"
        cause: Underlying OS error, if any
    """

    def __init__(self, operation: str, cause: Optional[OSError] = None):
        self.operation = operation
        self.cause = cause
        self.errno = cause.errno if cause is not None else None
        if cause is not None:
            message = f"{operation} failed: {cause}"
        else:
            message = f"{operation} failed"
        super().__init__(message)


class EncodeError(ProbeError, ValueError):
    """Probe packet fields are inconsistent or out of range."""


class DecodeError(ProbeError, ValueError):
    """Datagram is not a well-formed probe packet."""


class InterruptedWait(ProbeError):
    """A blocking wait was cancelled from outside."""


class StateError(ProbeError):
    """A state machine received an event it has no transition for."""


class StatisticsWarning(UserWarning):
    """A statistics invariant had to be clamped to stay valid."""
