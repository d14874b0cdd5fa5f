"""Command-line interface for smart-report.

Provides ``history show`` and ``history prune`` for inspecting and trimming
a history file outside of a test run, and ``config check`` for validating
a YAML settings file.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path

import click

from smart_report import __version__
from smart_report.config import (
    ReporterConfig,
    config_from_mapping,
    load_config_file,
    validate_config,
)
from smart_report.formatting import format_duration_ms, format_score, format_table
from smart_report.history import (
    HistoryEntry,
    TestHistory,
    persist_history,
    prune_history,
    read_history,
)
from smart_report.logging import setup_logging
from smart_report.signals import (
    FlakinessIndicator,
    average_duration,
    flakiness_for_score,
    flakiness_score,
)


@click.group()
@click.version_option(version=__version__)
@click.option("-v", "--verbose", is_flag=True, help="Show detailed output.")
@click.option("-q", "--quiet", is_flag=True, help="Only show warnings and errors.")
@click.option(
    "--log-file",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Also write a DEBUG log to this file.",
)
def main(verbose: bool, quiet: bool, log_file: Path | None) -> None:
    """smart-report: flakiness and performance trends for pytest runs."""
    setup_logging(verbose=verbose, quiet=quiet, log_file=log_file)


_history_file_option = click.option(
    "--history-file",
    type=click.Path(path_type=Path),
    default=Path("test-history.json"),
    show_default=True,
)


@main.group()
def history() -> None:
    """Inspect and maintain the per-test history file."""


def _read_history_file(history_file: Path) -> TestHistory:
    """Read *history_file* strictly; a missing file is an empty history."""
    if not history_file.exists():
        return {}
    try:
        return read_history(history_file)
    except (OSError, ValueError) as exc:
        raise click.ClickException(f"Cannot read {history_file}: {exc}") from exc


@dataclass
class HistoryRow:
    """Flakiness and timing figures for one test in the history file."""

    test_id: str
    runs: int
    failures: int
    flakiness_score: float | None
    flakiness: FlakinessIndicator
    average_duration: float | None

    @classmethod
    def from_entries(cls, test_id: str, entries: list[HistoryEntry]) -> HistoryRow:
        score = flakiness_score(entries)
        return cls(
            test_id=test_id,
            runs=len(entries),
            failures=sum(1 for e in entries if not e.passed),
            flakiness_score=score,
            flakiness=FlakinessIndicator.NEW if score is None else flakiness_for_score(score),
            average_duration=average_duration(entries),
        )

    def to_dict(self) -> dict[str, object]:
        return {
            "test_id": self.test_id,
            "runs": self.runs,
            "failures": self.failures,
            "flakiness_score": self.flakiness_score,
            "flakiness_indicator": self.flakiness.value,
            "average_duration": self.average_duration,
        }


@history.command("show")
@_history_file_option
@click.option("--flaky-only", is_flag=True, help="Only list tests banded Unstable or Flaky.")
@click.option(
    "--sort",
    "sort_by",
    type=click.Choice(["score", "name", "duration"]),
    default="score",
    show_default=True,
)
@click.option(
    "--format",
    "fmt",
    type=click.Choice(["table", "json"]),
    default="table",
    show_default=True,
)
def history_show(history_file: Path, flaky_only: bool, sort_by: str, fmt: str) -> None:
    """List every test in the history with its flakiness and average duration."""
    data = _read_history_file(history_file)
    rows = [HistoryRow.from_entries(test_id, entries) for test_id, entries in data.items()]
    if flaky_only:
        watched = (FlakinessIndicator.UNSTABLE, FlakinessIndicator.FLAKY)
        rows = [r for r in rows if r.flakiness in watched]

    if sort_by == "name":
        rows.sort(key=lambda r: r.test_id)
    elif sort_by == "duration":
        rows.sort(key=lambda r: (-(r.average_duration or 0.0), r.test_id))
    else:
        rows.sort(key=lambda r: (-(r.flakiness_score or 0.0), r.test_id))

    if fmt == "json":
        click.echo(json.dumps([r.to_dict() for r in rows], indent=2))
        return

    if not rows:
        click.echo(f"No tests in {history_file}.")
        return

    table_rows = [
        [
            r.test_id,
            str(r.runs),
            format_score(r.flakiness_score),
            r.flakiness.value,
            format_duration_ms(r.average_duration or 0.0),
        ]
        for r in rows
    ]

    click.echo(
        format_table(
            ["Test", "Runs", "Score", "Flakiness", "Avg duration"],
            table_rows,
            alignments=["l", "r", "r", "l", "r"],
            max_col_width={0: 80},
        )
    )
    click.echo("")
    click.echo(f"{len(rows)} test(s) from {history_file}")


@history.command("prune")
@_history_file_option
@click.option("--max-runs", type=int, required=True, help="Past runs to keep per test.")
@click.option("--dry-run", is_flag=True, help="Show what would be removed without writing.")
def history_prune(history_file: Path, max_runs: int, dry_run: bool) -> None:
    """Drop the oldest entries of every test beyond --max-runs."""
    if max_runs < 1:
        raise click.UsageError("--max-runs must be at least 1")
    if not history_file.exists():
        raise click.ClickException(f"History file not found: {history_file}")

    # Never rewrite a file that could not be parsed.
    data = _read_history_file(history_file)
    pruned = prune_history(data, max_runs)
    removed = sum(len(entries) for entries in data.values()) - sum(
        len(entries) for entries in pruned.values()
    )
    if dry_run:
        click.echo(f"Would remove {removed} entr{'y' if removed == 1 else 'ies'}.")
        return
    try:
        persist_history(pruned, history_file)
    except OSError as exc:
        raise click.ClickException(f"Could not write {history_file}: {exc}") from exc
    click.echo(f"Removed {removed} entr{'y' if removed == 1 else 'ies'} from {history_file}.")


@main.group()
def config() -> None:
    """Validate reporter settings."""


@config.command("check")
@click.argument("config_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
def config_check(config_file: Path) -> None:
    """Validate a YAML settings file and print the resolved configuration."""
    try:
        resolved = config_from_mapping(load_config_file(config_file))
    except (ValueError, TypeError, OSError) as exc:
        raise click.ClickException(str(exc)) from exc

    errors = validate_config(resolved)
    if errors:
        for e in errors:
            click.echo(f"  {e.field}: {e.message}", err=True)
        raise click.ClickException(f"{len(errors)} configuration error(s) in {config_file}")

    _echo_config(resolved)
    click.echo("Configuration OK.")


def _echo_config(resolved: ReporterConfig) -> None:
    click.echo(f"Output file:           {resolved.output_file}")
    click.echo(f"History file:          {resolved.history_file}")
    click.echo(f"Max history runs:      {resolved.max_history_runs}")
    click.echo(f"Performance threshold: {resolved.performance_threshold:g}")
    click.echo(f"Enrichment workers:    {resolved.enrichment_workers}")
    click.echo(f"Enrichment timeout:    {resolved.enrichment_timeout:g}s")
