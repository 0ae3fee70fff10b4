"""Statistics engine tests."""

import warnings

import pytest

from pathprobe.errors import StatisticsWarning
from pathprobe.statistics import GAP, RunStatistics, compute, count_out_of_order, count_received


def test_all_received_in_order():
    stats = compute(list(range(1, 101)), 100)
    assert (stats.received, stats.lost, stats.out_of_order) == (100, 0, 0)
    assert not stats.clamped


def test_trailing_loss_with_gap_sentinels():
    observed = list(range(1, 81)) + [GAP] * 20
    stats = compute(observed, 100)
    assert (stats.received, stats.lost, stats.out_of_order) == (80, 20, 0)


def test_short_sequence_counts_as_trailing_loss():
    stats = compute(list(range(1, 81)), 100)
    assert (stats.received, stats.lost) == (80, 20)


def test_none_is_a_gap_sentinel():
    assert count_received([1, 2, None, 4]) == 2


def test_local_reorder():
    stats = compute([1, 2, 4, 3, 5], 5)
    assert stats == RunStatistics(received=5, lost=0, out_of_order=1, expected=5)


def test_out_of_order_is_adjacent_only():
    # 3 arrives first but only the 3 -> 1 step is an inversion
    assert count_out_of_order([3, 1, 2]) == 1
    assert count_out_of_order([5, 4, 3, 2, 1]) == 4


def test_out_of_order_ignores_slots_after_gap():
    stats = compute([2, 1, GAP, 0, 0], 5)
    assert stats.received == 2
    assert stats.out_of_order == 1


def test_empty_run():
    stats = compute([], 10)
    assert (stats.received, stats.lost, stats.out_of_order) == (0, 10, 0)


def test_lost_never_negative():
    with pytest.warns(StatisticsWarning):
        stats = compute([1, 2, 3, 3, 4], 4)
    assert stats.received == 5
    assert stats.lost == 0
    assert stats.clamped


def test_clamp_warning_is_not_an_exception():
    with warnings.catch_warnings():
        warnings.simplefilter("ignore", StatisticsWarning)
        stats = compute([1, 2, 3], 1)
    assert stats.lost == 0


def test_report_lines():
    stats = RunStatistics(received=98, lost=2, out_of_order=1, expected=100)
    assert stats.report_lines() == [
        "# of packets RECEIVED = 98",
        "# of packets LOST = 2",
        "# of packets received OUT OF ORDER = 1",
    ]
    assert stats.loss_ratio == pytest.approx(0.02)
