"""Collect one run's test outcomes, annotate them and finalise the run.

A :class:`RunAggregator` lives for exactly one run::

    IDLE --begin()--> COLLECTING --record()*--> finish():
        ENRICHING -> FINALIZING -> DONE

Signals are always computed against the history snapshot taken in
:meth:`RunAggregator.begin`; the snapshot is never reloaded or updated
mid-run.  At the end the report is rendered first, then this run's
outcomes are appended to the snapshot and the history is persisted once.
"""

from __future__ import annotations

import enum
import os
from collections.abc import Callable, Mapping
from concurrent.futures import ThreadPoolExecutor, as_completed
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from smart_report.config import ReporterConfig, check_config
from smart_report.enrich import RemediationProvider, RemediationRequest, select_provider
from smart_report.history import HistoryEntry, HistoryStore, make_test_id, relative_file
from smart_report.logging import get_logger
from smart_report.report import HtmlReportRenderer, ReportRenderer
from smart_report.results import RunResult, RunSummary, TestOutcome, TestStatus
from smart_report.signals import compute_signal

log = get_logger("aggregator")

NO_PROVIDER_TIP = "Tip: set ANTHROPIC_API_KEY or OPENAI_API_KEY for AI failure analysis"


class RunState(enum.Enum):
    IDLE = "idle"
    COLLECTING = "collecting"
    ENRICHING = "enriching"
    FINALIZING = "finalizing"
    DONE = "done"


class ReportingError(Exception):
    """The report or the history could not be written at the end of a run.

    Raised only after every finalisation step has been attempted.
    """

    def __init__(self, failures: list[tuple[str, Exception]]) -> None:
        self.failures = failures
        details = "; ".join(f"{what}: {exc}" for what, exc in failures)
        super().__init__(f"smart-report finalisation failed: {details}")


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class RunAggregator:
    """Aggregates and annotates the results of one test run.

    Args:
        config: Reporter settings.  Relative paths are resolved against the
            project root passed to :meth:`begin`.
        provider: Remediation provider for failures, or ``None`` to skip
            enrichment.
        renderer: Report renderer; defaults to the HTML renderer.
        history_store: Overrides the store built from *config*.
        clock: Returns the current time; injectable for tests.
    """

    def __init__(
        self,
        config: ReporterConfig | None = None,
        *,
        provider: RemediationProvider | None = None,
        renderer: ReportRenderer | None = None,
        history_store: HistoryStore | None = None,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self.config = check_config(config or ReporterConfig())
        self.provider = provider
        self.renderer = renderer or HtmlReportRenderer()
        self.clock = clock
        self.state = RunState.IDLE
        self.root: Path = Path.cwd()
        self.results: list[RunResult] = []
        self._store = history_store
        self._snapshot: dict[str, list[HistoryEntry]] = {}
        self._started: datetime | None = None
        self._summary: RunSummary | None = None
        # One-line enrichment summary for the terminal, set by finish().
        self.enrichment_notice: str | None = None

    @classmethod
    def from_environment(
        cls,
        config: ReporterConfig | None = None,
        environ: Mapping[str, str] | None = None,
        **kwargs: Any,
    ) -> RunAggregator:
        """Build an aggregator whose provider is chosen from *environ*."""
        config = config or ReporterConfig()
        provider = select_provider(
            os.environ if environ is None else environ,
            timeout=config.enrichment_timeout,
        )
        return cls(config, provider=provider, **kwargs)

    # -- state helpers ------------------------------------------------------

    def _expect(self, *states: RunState) -> None:
        if self.state not in states:
            expected = " or ".join(s.value for s in states)
            raise RuntimeError(f"aggregator is {self.state.value}, expected {expected}")

    @property
    def history_store(self) -> HistoryStore:
        if self._store is None:
            raise RuntimeError("history store is available only after begin()")
        return self._store

    @property
    def snapshot(self) -> dict[str, list[HistoryEntry]]:
        """The history loaded at run start."""
        return self._snapshot

    # -- events -------------------------------------------------------------

    def begin(self, root: Path) -> None:
        """Start the run: resolve paths under *root* and load history."""
        self._expect(RunState.IDLE)
        self.root = root
        self.config = self.config.resolve_paths(root)
        if self._store is None:
            self._store = HistoryStore(self.config.history_file, self.config.max_history_runs)
        self._snapshot = self._store.load()
        self._started = self.clock()
        self.state = RunState.COLLECTING

    def record(self, outcome: TestOutcome) -> RunResult:
        """Annotate one completed test and append it to the run."""
        self._expect(RunState.COLLECTING)

        test_id = None
        file = outcome.file
        if outcome.file:
            file = relative_file(self.root, outcome.file)
            if outcome.title:
                test_id = make_test_id(self.root, outcome.file, outcome.title)
        result = RunResult(
            test_id=test_id,
            title=outcome.title,
            file=file,
            status=outcome.status,
            duration=outcome.duration,
            retry=outcome.retry,
        )

        if outcome.status.is_failure and outcome.errors:
            first = outcome.errors[0]
            result.error = first.message or "Unknown error"
            result.error_trace = first.trace

        if test_id is not None:
            result.signal = compute_signal(
                self._snapshot.get(test_id, []),
                outcome.duration,
                performance_threshold=self.config.performance_threshold,
            )
        else:
            log.debug("No location for test %r, skipping signal", outcome.title)

        self.results.append(result)
        return result

    def finish(self) -> RunSummary:
        """Enrich failures, render the report and persist history.

        Raises:
            ReportingError: If the report or the history file could not be
                written.  Both are always attempted.
        """
        self._expect(RunState.COLLECTING)

        self.state = RunState.ENRICHING
        self._enrich_failures()

        self.state = RunState.FINALIZING
        ended = self.clock()
        started = self._started or ended
        summary = RunSummary.from_results(
            self.results,
            duration=(ended - started).total_seconds() * 1000,
            generated_at=ended.isoformat(),
        )
        self._summary = summary

        failures: list[tuple[str, Exception]] = []
        try:
            self.renderer.render(self.results, summary, self.config.output_file)
            log.info("Smart Report: %s", self.config.output_file)
        except OSError as exc:
            log.error("Could not write report %s: %s", self.config.output_file, exc)
            failures.append(("report", exc))

        try:
            self.history_store.persist(self._updated_history(ended))
        except OSError as exc:
            log.error("Could not write history %s: %s", self.history_store.path, exc)
            failures.append(("history", exc))

        self.state = RunState.DONE
        if failures:
            raise ReportingError(failures)
        return summary

    def summary(self) -> RunSummary:
        if self._summary is None:
            raise RuntimeError("summary is available only after finish()")
        return self._summary

    # -- internals ----------------------------------------------------------

    def _updated_history(self, ended: datetime) -> dict[str, list[HistoryEntry]]:
        timestamp = ended.isoformat()
        history = self._snapshot
        for r in self.results:
            if r.test_id is None:
                continue
            entry = HistoryEntry(
                passed=r.status is TestStatus.PASSED,
                duration=r.duration,
                timestamp=timestamp,
            )
            history = self.history_store.append(history, r.test_id, entry)
        return history

    def _enrich_failures(self) -> None:
        failed = [r for r in self.results if r.status.is_failure]
        if not failed:
            return
        provider = self.provider
        if provider is None:
            self.enrichment_notice = NO_PROVIDER_TIP
            log.info(NO_PROVIDER_TIP)
            return

        log.info("Analyzing %d failure(s) with %s...", len(failed), provider.name)
        workers = max(1, self.config.enrichment_workers)
        if workers == 1:
            for r in failed:
                self._enrich_one(provider, r)
        else:
            with ThreadPoolExecutor(max_workers=workers) as pool:
                futures = {pool.submit(_fetch_suggestion, provider, r): r for r in failed}
                for future in as_completed(futures):
                    r = futures[future]
                    try:
                        r.suggestion = future.result()
                    except Exception as exc:
                        log.error("Failed to get AI suggestion for %r: %s", r.title, exc)

        answered = sum(1 for r in failed if r.suggestion is not None)
        self.enrichment_notice = (
            f"AI suggestions from {provider.name}: {answered} of {len(failed)} failure(s)"
        )

    def _enrich_one(self, provider: RemediationProvider, result: RunResult) -> None:
        try:
            result.suggestion = _fetch_suggestion(provider, result)
        except Exception as exc:
            log.error("Failed to get AI suggestion for %r: %s", result.title, exc)


def _fetch_suggestion(provider: RemediationProvider, result: RunResult) -> str:
    request = RemediationRequest(
        title=result.title,
        file=result.file,
        error=result.error,
        trace=result.error_trace,
    )
    return provider.suggest(request)
