"""Result dataclasses for one reporting run.

Three levels:
- TestOutcome: a raw per-test completion event from the test engine.
- RunResult: one test's outcome annotated with its history signal and,
  for failures, an optional remediation suggestion.
- RunSummary: run-level aggregates shown at the top of the report.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any

from smart_report.signals import FlakinessIndicator, PerformanceTrend, Signal


class TestStatus(enum.Enum):
    """Final status of a test in one run."""

    __test__ = False

    PASSED = "passed"
    FAILED = "failed"
    SKIPPED = "skipped"
    TIMED_OUT = "timed_out"
    INTERRUPTED = "interrupted"

    @property
    def is_failure(self) -> bool:
        """True for outcomes that get error details and enrichment."""
        return self in (TestStatus.FAILED, TestStatus.TIMED_OUT)

    @property
    def icon(self) -> str:
        icons = {
            TestStatus.PASSED: "\u2705",
            TestStatus.FAILED: "\u274c",
            TestStatus.TIMED_OUT: "\u23f1\ufe0f",
            TestStatus.SKIPPED: "\u23ed\ufe0f",
            TestStatus.INTERRUPTED: "\u26a0\ufe0f",
        }
        return icons[self]


@dataclass(frozen=True)
class ErrorDescriptor:
    """One error reported for a test: a message and an optional trace."""

    message: str
    trace: str | None = None


@dataclass
class TestOutcome:
    """A test-completion event as reported by the test engine.

    *file* and *title* identify the test; either may be empty when the
    engine cannot locate it, in which case no signal is computed.
    """

    __test__ = False

    file: str
    title: str
    status: TestStatus
    duration: float  # milliseconds
    retry: int = 0
    errors: list[ErrorDescriptor] = field(default_factory=list)


@dataclass
class RunResult:
    """One test's annotated outcome in the current run."""

    test_id: str | None
    title: str
    file: str
    status: TestStatus
    duration: float
    retry: int = 0
    error: str | None = None
    error_trace: str | None = None
    signal: Signal | None = None
    suggestion: str | None = None

    @property
    def flakiness_score(self) -> float | None:
        return self.signal.flakiness_score if self.signal else None

    @property
    def flakiness(self) -> FlakinessIndicator | None:
        return self.signal.flakiness if self.signal else None

    @property
    def trend(self) -> PerformanceTrend | None:
        return self.signal.trend if self.signal else None

    @property
    def average_duration(self) -> float | None:
        return self.signal.average_duration if self.signal else None

    @property
    def is_flaky(self) -> bool:
        return self.signal is not None and self.signal.is_flaky

    @property
    def is_slower(self) -> bool:
        return self.signal is not None and self.signal.is_slower

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a JSON-compatible dict."""
        sig = self.signal
        return {
            "test_id": self.test_id,
            "title": self.title,
            "file": self.file,
            "status": self.status.value,
            "duration": self.duration,
            "retry": self.retry,
            "error": self.error,
            "error_trace": self.error_trace,
            "flakiness_score": sig.flakiness_score if sig else None,
            "flakiness_indicator": sig.flakiness.value if sig else None,
            "performance_trend": sig.trend_label if sig else None,
            "average_duration": sig.average_duration if sig else None,
            "suggestion": self.suggestion,
        }


@dataclass
class RunSummary:
    """Aggregate figures for one run."""

    status_counts: dict[str, int] = field(default_factory=dict)
    total: int = 0
    flaky: int = 0
    slower: int = 0
    duration: float = 0.0  # wall clock, milliseconds
    generated_at: str = ""

    def count(self, status: TestStatus) -> int:
        return self.status_counts.get(status.value, 0)

    @property
    def failures(self) -> int:
        """Failed plus timed-out tests."""
        return self.count(TestStatus.FAILED) + self.count(TestStatus.TIMED_OUT)

    @classmethod
    def from_results(
        cls,
        results: list[RunResult],
        *,
        duration: float,
        generated_at: str = "",
    ) -> RunSummary:
        counts = {status.value: 0 for status in TestStatus}
        for r in results:
            counts[r.status.value] += 1
        return cls(
            status_counts=counts,
            total=len(results),
            flaky=sum(1 for r in results if r.is_flaky),
            slower=sum(1 for r in results if r.is_slower),
            duration=duration,
            generated_at=generated_at,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "status_counts": dict(self.status_counts),
            "total": self.total,
            "flaky": self.flaky,
            "slower": self.slower,
            "duration": round(self.duration, 3),
            "generated_at": self.generated_at,
        }
