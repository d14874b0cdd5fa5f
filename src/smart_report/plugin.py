"""smart-report pytest plugin, auto-loaded via the ``pytest11`` entry point.

Registers:
  - CLI options: --smart-report, --smart-report-file, --smart-report-history,
    --smart-report-max-runs, --smart-report-threshold, --smart-report-config
  - ini keys:    smart_report, smart_report_file, smart_report_history,
    smart_report_max_runs, smart_report_threshold, smart_report_config
  - Hooks:       pytest_sessionstart, pytest_runtest_logreport,
    pytest_sessionfinish, pytest_terminal_summary (on the reporter object)

The report is a side channel: nothing here changes the session's exit
status, even when the report or history cannot be written.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import pytest

from smart_report.aggregator import ReportingError, RunAggregator
from smart_report.config import ReporterConfig, build_config
from smart_report.formatting import format_duration_ms
from smart_report.logging import get_logger
from smart_report.results import ErrorDescriptor, RunSummary, TestOutcome, TestStatus

log = get_logger("plugin")

_PLUGIN_NAME = "smart-report-reporter"

# (cli option dest, ini key, ReporterConfig field)
_SETTINGS = [
    ("smart_report_file", "smart_report_file", "output_file"),
    ("smart_report_history", "smart_report_history", "history_file"),
    ("smart_report_max_runs", "smart_report_max_runs", "max_history_runs"),
    ("smart_report_threshold", "smart_report_threshold", "performance_threshold"),
]
_CONVERTERS: dict[str, Any] = {
    "output_file": Path,
    "history_file": Path,
    "max_history_runs": int,
    "performance_threshold": float,
}


def pytest_addoption(parser: pytest.Parser) -> None:
    group = parser.getgroup("smart-report", "flakiness and performance-trend report")
    group.addoption(
        "--smart-report",
        action="store_true",
        default=None,
        help="Write a smart HTML report with flakiness and performance trends.",
    )
    group.addoption("--smart-report-file", default=None, help="Report path (smart-report.html).")
    group.addoption(
        "--smart-report-history", default=None, help="History path (test-history.json)."
    )
    group.addoption(
        "--smart-report-max-runs",
        type=int,
        default=None,
        help="Past runs kept per test (10).",
    )
    group.addoption(
        "--smart-report-threshold",
        type=float,
        default=None,
        help="Relative duration change flagged as slower/faster (0.2).",
    )
    group.addoption("--smart-report-config", default=None, help="YAML file with report settings.")

    parser.addini("smart_report", "Enable the smart report.", type="bool", default=False)
    parser.addini("smart_report_file", "Report path.", default="")
    parser.addini("smart_report_history", "History path.", default="")
    parser.addini("smart_report_max_runs", "Past runs kept per test.", default="")
    parser.addini("smart_report_threshold", "Performance threshold fraction.", default="")
    parser.addini("smart_report_config", "YAML file with report settings.", default="")


def _enabled(config: pytest.Config) -> bool:
    flag = config.getoption("smart_report")
    if flag is not None:
        return bool(flag)
    return bool(config.getini("smart_report"))


def reporter_config_from_pytest(config: pytest.Config) -> ReporterConfig:
    """Resolve settings: defaults < YAML file < ini keys < command line.

    Raises:
        pytest.UsageError: If the resulting configuration is invalid.
    """
    overrides: dict[str, Any] = {}
    for dest, ini_key, field_name in _SETTINGS:
        value = config.getoption(dest)
        if value is None:
            value = config.getini(ini_key) or None
        if value is not None:
            try:
                overrides[field_name] = _CONVERTERS[field_name](value)
            except ValueError as exc:
                raise pytest.UsageError(
                    f"smart-report: bad value for {ini_key}: {value!r}"
                ) from exc

    config_file = config.getoption("smart_report_config") or config.getini("smart_report_config")
    path = Path(config_file) if config_file else None
    if path is not None and not path.is_absolute():
        path = config.rootpath / path
    try:
        return build_config(path, **overrides)
    except (ValueError, TypeError, OSError) as exc:
        raise pytest.UsageError(f"smart-report: {exc}") from exc


def pytest_configure(config: pytest.Config) -> None:
    if not _enabled(config):
        return
    # Only the controlling process reports when running under xdist.
    if hasattr(config, "workerinput"):
        return
    reporter = SmartReporter(RunAggregator.from_environment(reporter_config_from_pytest(config)))
    config.pluginmanager.register(reporter, _PLUGIN_NAME)


def pytest_unconfigure(config: pytest.Config) -> None:
    reporter = config.pluginmanager.get_plugin(_PLUGIN_NAME)
    if reporter is not None:
        config.pluginmanager.unregister(reporter, _PLUGIN_NAME)


# ---------------------------------------------------------------------------
# Report → outcome mapping
# ---------------------------------------------------------------------------


def _longrepr_text(report: pytest.TestReport) -> str:
    return getattr(report, "longreprtext", "") or ""


def status_from_report(report: pytest.TestReport) -> TestStatus:
    """Map a pytest report to a test status."""
    if report.passed:
        return TestStatus.PASSED
    if report.skipped:
        return TestStatus.SKIPPED
    message = _crash_message(report)
    if "KeyboardInterrupt" in message:
        return TestStatus.INTERRUPTED
    # pytest-timeout fails the test with "Failed: Timeout >1.0s".
    if "Timeout" in message:
        return TestStatus.TIMED_OUT
    return TestStatus.FAILED


def _crash_message(report: pytest.TestReport) -> str:
    crash = getattr(report.longrepr, "reprcrash", None)
    message = getattr(crash, "message", None)
    if message:
        return str(message)
    text = _longrepr_text(report).strip()
    return text.splitlines()[-1] if text else ""


def outcome_from_report(report: pytest.TestReport) -> TestOutcome | None:
    """Turn a pytest report into a :class:`TestOutcome`, or ``None`` to ignore it.

    The call phase carries the outcome of a test.  A failing or skipping
    setup phase is reported instead, since the call phase never runs.
    Reports of attempts retried by pytest-rerunfailures count as failures.
    """
    if report.outcome == "rerun":
        status = TestStatus.FAILED
    elif report.when == "call" or (report.when == "setup" and not report.passed):
        status = status_from_report(report)
    else:
        return None

    file, _, title = report.nodeid.partition("::")
    errors: list[ErrorDescriptor] = []
    if status.is_failure or status is TestStatus.INTERRUPTED:
        errors.append(
            ErrorDescriptor(
                message=_crash_message(report),
                trace=_longrepr_text(report) or None,
            )
        )
    return TestOutcome(
        file=file,
        title=title,
        status=status,
        duration=report.duration * 1000,
        retry=int(getattr(report, "rerun", 0) or 0),
        errors=errors,
    )


# ---------------------------------------------------------------------------
# Reporter
# ---------------------------------------------------------------------------


class SmartReporter:
    """Feeds one pytest session's reports into a :class:`RunAggregator`."""

    def __init__(self, aggregator: RunAggregator) -> None:
        self.aggregator = aggregator
        self.summary: RunSummary | None = None
        self.error: ReportingError | None = None

    def pytest_sessionstart(self, session: pytest.Session) -> None:
        self.aggregator.begin(session.config.rootpath)

    def pytest_runtest_logreport(self, report: pytest.TestReport) -> None:
        outcome = outcome_from_report(report)
        if outcome is not None:
            self.aggregator.record(outcome)

    @pytest.hookimpl(trylast=True)
    def pytest_sessionfinish(self, session: pytest.Session, exitstatus: int) -> None:
        try:
            self.summary = self.aggregator.finish()
        except ReportingError as exc:
            self.error = exc
            self.summary = self.aggregator.summary()

    def pytest_terminal_summary(self, terminalreporter: Any) -> None:
        tr = terminalreporter
        tr.section("smart report")
        if self.summary is not None:
            tr.write_line(
                f"{self.summary.total} tests, {self.summary.flaky} flaky, "
                f"{self.summary.slower} slower, {format_duration_ms(self.summary.duration)}"
            )
        if self.aggregator.enrichment_notice:
            tr.write_line(self.aggregator.enrichment_notice)
        if self.error is not None:
            for what, exc in self.error.failures:
                tr.write_line(f"smart-report: could not write {what}: {exc}", red=True, bold=True)
        else:
            tr.write_line(f"\U0001f4ca Smart Report: {self.aggregator.config.output_file}")
