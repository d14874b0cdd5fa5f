"""Flakiness and performance-trend signals derived from test history.

Given the outcomes a test had *before* the current run and its duration in
the current run, :func:`compute_signal` produces:

- a flakiness score (fraction of past runs that failed) and its band;
- a performance trend comparing the current duration to the historical
  mean, bucketed by a threshold fraction.

Everything here is a pure function of its inputs.
"""

from __future__ import annotations

import enum
import math
from collections.abc import Sequence
from dataclasses import dataclass

from smart_report.history import HistoryEntry

UNSTABLE_SCORE = 0.1
FLAKY_SCORE = 0.3


class FlakinessIndicator(enum.Enum):
    """Flakiness band of a test, from its failure rate in past runs."""

    NEW = "New"
    STABLE = "Stable"
    UNSTABLE = "Unstable"
    FLAKY = "Flaky"

    @property
    def symbol(self) -> str:
        symbols = {
            FlakinessIndicator.NEW: "\u26aa",
            FlakinessIndicator.STABLE: "\U0001f7e2",
            FlakinessIndicator.UNSTABLE: "\U0001f7e1",
            FlakinessIndicator.FLAKY: "\U0001f534",
        }
        return symbols[self]

    @property
    def label(self) -> str:
        return f"{self.symbol} {self.value}"


class PerformanceTrend(enum.Enum):
    """How the current duration compares with the historical average."""

    BASELINE = "Baseline"
    STABLE = "Stable"
    SLOWER = "slower"
    FASTER = "faster"

    @property
    def arrow(self) -> str:
        arrows = {
            PerformanceTrend.BASELINE: "\u2192",
            PerformanceTrend.STABLE: "\u2192",
            PerformanceTrend.SLOWER: "\u2191",
            PerformanceTrend.FASTER: "\u2193",
        }
        return arrows[self]


@dataclass(frozen=True)
class Signal:
    """Signals for one test in one run.  Derived, never persisted."""

    flakiness: FlakinessIndicator
    trend: PerformanceTrend
    flakiness_score: float | None = None
    trend_percent: int | None = None
    average_duration: float | None = None

    @property
    def is_flaky(self) -> bool:
        return self.flakiness is FlakinessIndicator.FLAKY

    @property
    def is_slower(self) -> bool:
        return self.trend is PerformanceTrend.SLOWER

    @property
    def trend_label(self) -> str:
        """Display form, e.g. ``'↑ 35% slower'`` or ``'→ Stable'``."""
        if self.trend_percent is None:
            return f"{self.trend.arrow} {self.trend.value}"
        return f"{self.trend.arrow} {self.trend_percent}% {self.trend.value}"


NEW_TEST_SIGNAL = Signal(flakiness=FlakinessIndicator.NEW, trend=PerformanceTrend.BASELINE)


def flakiness_score(entries: Sequence[HistoryEntry]) -> float | None:
    """Fraction of *entries* that failed, ``None`` without history."""
    if not entries:
        return None
    return sum(1 for e in entries if not e.passed) / len(entries)


def average_duration(entries: Sequence[HistoryEntry]) -> float | None:
    """Mean duration of *entries*, ``None`` without history."""
    if not entries:
        return None
    return sum(e.duration for e in entries) / len(entries)


def flakiness_for_score(score: float) -> FlakinessIndicator:
    """Band a flakiness score; each band includes its lower bound."""
    if score < UNSTABLE_SCORE:
        return FlakinessIndicator.STABLE
    if score < FLAKY_SCORE:
        return FlakinessIndicator.UNSTABLE
    return FlakinessIndicator.FLAKY


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def classify_trend(
    current: float,
    average: float,
    threshold: float,
) -> tuple[PerformanceTrend, int | None]:
    """Compare *current* against *average* and return ``(trend, percent)``.

    Durations inside ``[average * (1 - threshold), average * (1 + threshold)]``
    are stable, edges included.  Outside the band the relative change is
    reported with its rounded magnitude in percent.  A zero average has
    no meaningful relative change and is reported as stable.
    """
    if average == 0:
        return PerformanceTrend.STABLE, None
    # Compare against the band limits, not the ratio: the ratio of two
    # edge values can round to just past the threshold.
    diff = (current - average) / average
    if current > average * (1 + threshold):
        return PerformanceTrend.SLOWER, _round_half_up(diff * 100)
    if current < average * (1 - threshold):
        return PerformanceTrend.FASTER, _round_half_up(abs(diff) * 100)
    return PerformanceTrend.STABLE, None


def compute_signal(
    prior_entries: Sequence[HistoryEntry],
    current_duration: float,
    *,
    performance_threshold: float = 0.2,
) -> Signal:
    """Compute the flakiness and performance signal for one test.

    Args:
        prior_entries: The test's history before this run, oldest first.
        current_duration: Duration of the test in this run (ms).
        performance_threshold: Relative change (e.g. ``0.2`` = 20%) beyond
            which the test is reported slower or faster.

    Returns:
        A :class:`Signal`.  Tests without history are ``New`` with a
        ``Baseline`` trend and carry no score or average.
    """
    score = flakiness_score(prior_entries)
    average = average_duration(prior_entries)
    if score is None or average is None:
        return NEW_TEST_SIGNAL

    trend, percent = classify_trend(current_duration, average, performance_threshold)

    return Signal(
        flakiness=flakiness_for_score(score),
        trend=trend,
        flakiness_score=score,
        trend_percent=percent,
        average_duration=average,
    )
