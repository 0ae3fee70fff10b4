#!/usr/bin/env python3
"""
Run statistics over the sequence ids observed at the receiver.

The observed sequence is in arrival order. A gap sentinel (0 or None) marks
a slot that was never filled; everything from the first sentinel onwards is
treated as not received.
"""

import logging
import warnings
from dataclasses import dataclass
from typing import List, Optional, Sequence

from .errors import StatisticsWarning


logger = logging.getLogger(__name__)

GAP = 0

# Arrival-ordered sequence ids for one run
ObservedSequence = List[int]

REPORT_RECEIVED = "# of packets RECEIVED = {}"
REPORT_LOST = "# of packets LOST = {}"
REPORT_OUT_OF_ORDER = "# of packets received OUT OF ORDER = {}"


@dataclass(frozen=True)
class RunStatistics:
    """Summary of one run."""
    received: int
    lost: int
    out_of_order: int
    expected: int
    clamped: bool = False

    @property
    def loss_ratio(self) -> float:
        """Lost packets as a fraction of the expected count."""
        if self.expected <= 0:
            return 0.0
        return self.lost / self.expected

    def report_lines(self) -> List[str]:
        """The three human-readable report lines for this run."""
        return [
            REPORT_RECEIVED.format(self.received),
            REPORT_LOST.format(self.lost),
            REPORT_OUT_OF_ORDER.format(self.out_of_order),
        ]


def _is_gap(value: Optional[int]) -> bool:
    return value is None or value == GAP


def count_received(observed: Sequence[Optional[int]]) -> int:
    """
    Count entries before the first gap sentinel.

    Args:
        observed: Arrival-ordered sequence ids, possibly padded with sentinels

    Returns:
        Number of packets captured before the stream is considered ended
    """
    for index, value in enumerate(observed):
        if _is_gap(value):
            return index
    return len(observed)


def count_out_of_order(observed: Sequence[int], received: Optional[int] = None) -> int:
    """
    Count direct inversions between consecutive arrivals.

    Only adjacent pairs are compared, so [3, 1, 2] counts one inversion
    even though two packets arrived ahead of their predecessors.

    Args:
        observed: Arrival-ordered sequence ids
        received: Length of the valid prefix (default: whole sequence)
    """
    if received is None:
        received = len(observed)
    inversions = 0
    for i in range(1, received):
        if observed[i] < observed[i - 1]:
            inversions += 1
    return inversions


def compute(observed: Sequence[Optional[int]], expected_count: int) -> RunStatistics:
    """
    Compute received, lost and out-of-order counts for a run.

    Args:
        observed: Arrival-ordered sequence ids (gap sentinels allowed)
        expected_count: Number of probes the sender was configured to send

    Returns:
        RunStatistics for the run

    Example:
        >>> compute([1, 2, 4, 3, 5], 5)
        RunStatistics(received=5, lost=0, out_of_order=1, expected=5, clamped=False)
    """
    received = count_received(observed)
    out_of_order = count_out_of_order(observed, received)

    lost = expected_count - received
    clamped = False
    if lost < 0:
        message = (f"Received {received} packets but only {expected_count} were expected; "
                   f"clamping lost count to 0")
        logger.warning(message)
        warnings.warn(message, StatisticsWarning, stacklevel=2)
        lost = 0
        clamped = True

    return RunStatistics(
        received=received,
        lost=lost,
        out_of_order=out_of_order,
        expected=expected_count,
        clamped=clamped,
    )
