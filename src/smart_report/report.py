"""Render a run's annotated results as a self-contained HTML page.

The page shows the run summary, filter buttons (all, passed, failed,
skipped, flaky, slow) and one expandable card per test with its error,
trace, remediation suggestion and duration compared with its history.
The results are also embedded as JSON for scripting.
"""

from __future__ import annotations

import abc
import html
import json
from pathlib import Path

from smart_report.formatting import format_duration_ms, sanitize_id
from smart_report.history import atomic_write_text
from smart_report.logging import get_logger
from smart_report.results import RunResult, RunSummary, TestStatus

log = get_logger("report")

_STATUS_CLASSES: dict[TestStatus, str] = {
    TestStatus.PASSED: "passed",
    TestStatus.FAILED: "failed",
    TestStatus.TIMED_OUT: "failed",
    TestStatus.SKIPPED: "skipped",
    TestStatus.INTERRUPTED: "interrupted",
}

_STYLE = """
  body { font-family: system-ui, sans-serif; background: #f9fafb; margin: 0; color: #1f2937; }
  .page { max-width: 72rem; margin: 0 auto; padding: 1.5rem; }
  .panel { background: #fff; border-radius: .75rem; box-shadow: 0 1px 2px #0001;
           padding: 1.25rem; margin-bottom: 1.5rem; }
  .header { display: flex; justify-content: space-between; align-items: center; }
  .stats { display: grid; grid-template-columns: repeat(6, 1fr); gap: 1rem; margin-top: 1rem; }
  .stat { border-radius: .5rem; padding: 1rem; text-align: center; background: #f3f4f6; }
  .stat .value { font-size: 1.5rem; font-weight: 700; }
  .filter-btn { border: 0; border-radius: .5rem; padding: .5rem 1rem;
                background: #f3f4f6; cursor: pointer; }
  .filter-btn.active { background: #1f2937; color: #fff; }
  .test-card { background: #fff; border-radius: .75rem; border-left: 4px solid #9ca3af;
               margin-bottom: .75rem; }
  .test-card.passed { border-left-color: #22c55e; }
  .test-card.failed { border-left-color: #ef4444; }
  .test-card.interrupted { border-left-color: #eab308; }
  .summary-row { display: flex; justify-content: space-between; padding: 1rem; cursor: pointer; }
  .meta { display: flex; gap: 1rem; font-size: .875rem; color: #4b5563; align-items: center; }
  .badge { background: #f3f4f6; border-radius: 9999px; padding: .125rem .5rem; font-size: .75rem; }
  .file { font-size: .875rem; color: #6b7280; }
  .details { padding: .5rem 1rem 1rem; border-top: 1px solid #f3f4f6; }
  .hidden { display: none; }
  pre { background: #1f2937; color: #f3f4f6; padding: .75rem; border-radius: .5rem;
        overflow-x: auto; font-size: .75rem; }
  pre.error { background: #7f1d1d; color: #fee2e2; }
  .suggestion { background: #eff6ff; border: 1px solid #bfdbfe; padding: .75rem;
                border-radius: .5rem; }
"""

_SCRIPT = """
function filterTests(filter) {
  document.querySelectorAll('.filter-btn').forEach(function (btn) {
    btn.classList.toggle('active', btn.dataset.filter === filter);
  });
  document.querySelectorAll('.test-card').forEach(function (card) {
    var status = card.dataset.status;
    var show = filter === 'all'
      || (filter === 'passed' && status === 'passed')
      || (filter === 'failed' && (status === 'failed' || status === 'timed_out'))
      || (filter === 'skipped' && status === 'skipped')
      || (filter === 'flaky' && card.dataset.flaky === 'true')
      || (filter === 'slow' && card.dataset.slow === 'true');
    card.style.display = show ? 'block' : 'none';
  });
}

function toggleDetails(id) {
  var details = document.getElementById('details-' + id);
  var icon = document.getElementById('icon-' + id);
  var hidden = details.classList.toggle('hidden');
  icon.textContent = hidden ? '\\u25b6' : '\\u25bc';
}
"""


def _esc(text: str) -> str:
    return html.escape(text, quote=True)


def _embed_json(data: object) -> str:
    """Serialize *data* for a ``<script>`` block without closing it early."""
    return json.dumps(data).replace("</", "<\\/")


# ---------------------------------------------------------------------------
# Fragments
# ---------------------------------------------------------------------------


def _stat(value: str, label: str) -> str:
    return f'<div class="stat"><div class="value">{value}</div><div>{label}</div></div>'


def _filter_button(key: str, label: str, count: int, active: bool = False) -> str:
    cls = "filter-btn active" if active else "filter-btn"
    return (
        f'<button class="{cls}" data-filter="{key}" '
        f"onclick=\"filterTests('{key}')\">{label} ({count})</button>"
    )


def render_details(result: RunResult, card_id: str) -> str:
    """Render the expandable details block of one test card."""
    parts: list[str] = []
    if result.error:
        parts.append(f'<div>Error</div><pre class="error">{_esc(result.error)}</pre>')
    if result.error_trace:
        parts.append(f"<div>Stack Trace</div><pre>{_esc(result.error_trace)}</pre>")
    if result.suggestion:
        parts.append(
            "<div>\U0001f916 AI Suggestion</div>"
            f'<div class="suggestion">{_esc(result.suggestion)}</div>'
        )
    if result.average_duration is not None:
        parts.append(
            '<div class="file">'
            f"Average duration: {format_duration_ms(result.average_duration)} "
            f"(current: {format_duration_ms(result.duration)})</div>"
        )
    return f'<div id="details-{card_id}" class="details hidden">{"".join(parts)}</div>'


def render_card(result: RunResult, index: int) -> str:
    """Render one test as a card.

    *index* keeps card ids unique when two results share a test id
    (for example a test and its retry).
    """
    card_id = f"{sanitize_id(result.test_id or result.title)}_{index}"
    has_details = bool(result.error or result.suggestion or result.status is not TestStatus.PASSED)
    status_class = _STATUS_CLASSES.get(result.status, "skipped")

    badges: list[str] = [f"<span>{format_duration_ms(result.duration)}</span>"]
    if result.signal is not None:
        badges.append(f'<span class="badge">{_esc(result.signal.flakiness.label)}</span>')
        badges.append(f"<span>{_esc(result.signal.trend_label)}</span>")
    if result.retry:
        badges.append(f'<span class="badge">retry {result.retry}</span>')
    if has_details:
        badges.append(f'<span id="icon-{card_id}">\u25b6</span>')

    onclick = f" onclick=\"toggleDetails('{card_id}')\"" if has_details else ""
    return (
        f'<div class="test-card {status_class}" data-status="{result.status.value}" '
        f'data-flaky="{str(result.is_flaky).lower()}" data-slow="{str(result.is_slower).lower()}">'
        f'<div class="summary-row"{onclick}>'
        f"<div><span>{result.status.icon}</span> <strong>{_esc(result.title)}</strong>"
        f'<div class="file">{_esc(result.file)}</div></div>'
        f'<div class="meta">{"".join(badges)}</div>'
        "</div>"
        f"{render_details(result, card_id) if has_details else ''}"
        "</div>"
    )


def render_report(results: list[RunResult], summary: RunSummary) -> str:
    """Render the complete HTML report for one run."""
    passed = summary.count(TestStatus.PASSED)
    failed = summary.failures
    skipped = summary.count(TestStatus.SKIPPED)

    stats = "".join(
        [
            _stat(str(passed), "Passed"),
            _stat(str(failed), "Failed"),
            _stat(str(skipped), "Skipped"),
            _stat(str(summary.flaky), "Flaky"),
            _stat(str(summary.slower), "Slow"),
            _stat(format_duration_ms(summary.duration), "Duration"),
        ]
    )
    filters = "".join(
        [
            _filter_button("all", "All", summary.total, active=True),
            _filter_button("passed", "\u2705 Passed", passed),
            _filter_button("failed", "\u274c Failed", failed),
            _filter_button("skipped", "\u23ed\ufe0f Skipped", skipped),
            _filter_button("flaky", "\U0001f534 Flaky", summary.flaky),
            _filter_button("slow", "\U0001f422 Slow", summary.slower),
        ]
    )
    cards = "\n".join(render_card(r, i) for i, r in enumerate(results))
    payload = _embed_json(
        {"summary": summary.to_dict(), "tests": [r.to_dict() for r in results]}
    )

    return f"""<!DOCTYPE html>
<html lang="en">
<head>
<meta charset="UTF-8">
<meta name="viewport" content="width=device-width, initial-scale=1.0">
<title>Smart Test Report</title>
<style>{_STYLE}</style>
</head>
<body>
<div class="page">
  <div class="panel">
    <div class="header">
      <h1>\U0001f9ea Smart Test Report</h1>
      <span class="file">{_esc(summary.generated_at)}</span>
    </div>
    <div class="stats">{stats}</div>
  </div>
  <div class="panel">{filters}</div>
  <div id="test-list">
{cards}
  </div>
</div>
<script id="smart-report-data" type="application/json">{payload}</script>
<script>{_SCRIPT}</script>
</body>
</html>
"""


def write_report(content: str, path: Path) -> None:
    """Write the report to *path* atomically, creating parent directories.

    Raises:
        OSError: If the file cannot be written.
    """
    atomic_write_text(path, content)


# ---------------------------------------------------------------------------
# Renderers
# ---------------------------------------------------------------------------


class ReportRenderer(abc.ABC):
    """Turns a run's results into an artifact at a given path."""

    @abc.abstractmethod
    def render(self, results: list[RunResult], summary: RunSummary, path: Path) -> None:
        """Render and write the artifact.

        Raises:
            OSError: If the artifact cannot be written.
        """


class HtmlReportRenderer(ReportRenderer):
    def render(self, results: list[RunResult], summary: RunSummary, path: Path) -> None:
        write_report(render_report(results, summary), path)
        log.debug("Rendered %d result(s) to %s", len(results), path)
