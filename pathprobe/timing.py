#!/usr/bin/env python3
"""
Timing utilities for probe pacing.
"""

import time


def sleep_until(target_ns: int) -> None:
    """
    Sleep until a specific monotonic time.

    Args:
        target_ns: Target time in nanoseconds (from time.monotonic_ns())

    Note:
        If target_ns is in the past, returns immediately.
    """
    now = time.monotonic_ns()
    if target_ns > now:
        time.sleep((target_ns - now) / 1_000_000_000)


class IntervalTimer:
    """
    Timer that fires at regular intervals.

    Work done between ticks (sending, waiting for an echo) is absorbed
    into the interval. When a tick is missed the schedule restarts from
    now, so consecutive ticks are never closer than the interval.

    Example:
        timer = IntervalTimer(interval_ms=50)
        for seq in range(1, count + 1):
            send(seq)
            timer.wait()
    """

    def __init__(self, interval_ms: float):
        """
        Initialize interval timer.

        Args:
            interval_ms: Interval between ticks in milliseconds
        """
        self.interval_ns = int(interval_ms * 1_000_000)
        self.next_tick = time.monotonic_ns()
        self.missed = 0

    def wait(self) -> int:
        """
        Wait until next interval tick.

        Returns:
            Number of missed ticks (0 if on time)
        """
        if self.interval_ns <= 0:
            return 0

        self.next_tick += self.interval_ns
        now = time.monotonic_ns()

        if now >= self.next_tick:
            missed = (now - self.next_tick) // self.interval_ns + 1
            self.missed += missed
            self.next_tick = now
            return missed

        sleep_until(self.next_tick)
        return 0

