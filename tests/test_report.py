"""Tests for smart_report.report."""

from __future__ import annotations

import json
import re
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

from report_test_helpers import make_entries, make_result, make_summary

from smart_report.report import (
    HtmlReportRenderer,
    render_card,
    render_details,
    render_report,
    write_report,
)
from smart_report.results import RunResult, TestStatus


def _embedded_data(page: str) -> dict:
    match = re.search(
        r'<script id="smart-report-data" type="application/json">(.*?)</script>', page, re.S
    )
    assert match is not None
    return json.loads(match.group(1))


class TestRenderCard(unittest.TestCase):
    def test_passed_card_has_no_details(self) -> None:
        card = render_card(make_result("test_ok"), 0)
        self.assertIn('data-status="passed"', card)
        self.assertIn('class="test-card passed"', card)
        self.assertNotIn("toggleDetails", card)
        self.assertNotIn("details-", card)

    def test_failed_card_is_expandable(self) -> None:
        result = make_result("test_bad", TestStatus.FAILED, error="boom", error_trace="tb")
        card = render_card(result, 3)
        self.assertIn("toggleDetails('tests_test_sample_py__test_bad_3')", card)
        self.assertIn('id="details-tests_test_sample_py__test_bad_3"', card)
        self.assertIn("boom", card)

    def test_timed_out_uses_failed_style(self) -> None:
        card = render_card(make_result("test_slow", TestStatus.TIMED_OUT), 0)
        self.assertIn('class="test-card failed"', card)
        self.assertIn('data-status="timed_out"', card)

    def test_flaky_and_slow_flags(self) -> None:
        result = make_result("test_f", duration=1000.0, history=make_entries("PFPF", 500.0))
        card = render_card(result, 0)
        self.assertIn('data-flaky="true"', card)
        self.assertIn('data-slow="true"', card)
        self.assertIn("100% slower", card)
        self.assertIn("Flaky", card)

    def test_new_test_labels(self) -> None:
        card = render_card(make_result("test_new"), 0)
        self.assertIn('data-flaky="false"', card)
        self.assertIn("New", card)
        self.assertIn("Baseline", card)

    def test_retry_badge(self) -> None:
        self.assertIn("retry 2", render_card(make_result("test_r", retry=2), 0))
        self.assertNotIn("retry", render_card(make_result("test_r"), 0))

    def test_title_and_file_escaped(self) -> None:
        result = RunResult(
            test_id=None,
            title="test_<b>[x&y]",
            file='a"b.py',
            status=TestStatus.PASSED,
            duration=1.0,
        )
        card = render_card(result, 0)
        self.assertIn("test_&lt;b&gt;[x&amp;y]", card)
        self.assertIn("a&quot;b.py", card)
        self.assertNotIn("<b>", card)


class TestRenderDetails(unittest.TestCase):
    def test_error_trace_and_suggestion_escaped(self) -> None:
        result = make_result(
            "t",
            TestStatus.FAILED,
            error="<script>alert(1)</script>",
            error_trace="x < y",
            suggestion="Use <fixture>",
        )
        details = render_details(result, "t_0")
        self.assertIn("&lt;script&gt;alert(1)&lt;/script&gt;", details)
        self.assertIn("x &lt; y", details)
        self.assertIn("Use &lt;fixture&gt;", details)
        self.assertIn("AI Suggestion", details)

    def test_average_duration_shown_with_history(self) -> None:
        history = make_entries("PP", 250.0)
        result = make_result("t", TestStatus.FAILED, duration=1500.0, history=history)
        details = render_details(result, "t_0")
        self.assertIn("Average duration: 250ms (current: 1.5s)", details)

    def test_no_suggestion_block_without_suggestion(self) -> None:
        details = render_details(make_result("t", TestStatus.FAILED, error="e"), "t_0")
        self.assertNotIn("AI Suggestion", details)


class TestRenderReport(unittest.TestCase):
    def setUp(self) -> None:
        self.results = [
            make_result("test_a"),
            make_result("test_b", TestStatus.FAILED, error="boom"),
            make_result("test_c", TestStatus.SKIPPED),
            make_result("test_d", duration=900.0, history=make_entries("PFFP", 300.0)),
        ]
        self.summary = make_summary(self.results, duration=1500.0)

    def test_page_structure(self) -> None:
        page = render_report(self.results, self.summary)
        self.assertTrue(page.startswith("<!DOCTYPE html>"))
        self.assertIn("<title>Smart Test Report</title>", page)
        self.assertEqual(page.count('class="test-card'), 4)
        for key in ("all", "passed", "failed", "skipped", "flaky", "slow"):
            self.assertIn(f"filterTests('{key}')", page)
        self.assertIn("All (4)", page)
        self.assertIn("1.5s", page)

    def test_cards_in_result_order(self) -> None:
        page = render_report(self.results, self.summary)
        positions = [page.index(f"<strong>test_{c}</strong>") for c in "abcd"]
        self.assertEqual(positions, sorted(positions))

    def test_embedded_json(self) -> None:
        data = _embedded_data(render_report(self.results, self.summary))
        self.assertEqual(data["summary"]["total"], 4)
        self.assertEqual(data["summary"]["flaky"], 1)
        self.assertEqual(data["summary"]["slower"], 1)
        self.assertEqual(
            [t["title"] for t in data["tests"]], ["test_a", "test_b", "test_c", "test_d"]
        )
        self.assertEqual(data["tests"][3]["flakiness_score"], 0.5)
        self.assertEqual(data["tests"][3]["flakiness_indicator"], "Flaky")

    def test_embedded_json_cannot_close_script(self) -> None:
        results = [make_result("t", TestStatus.FAILED, error="</script><b>")]
        page = render_report(results, make_summary(results))
        self.assertNotIn("</script><b>", page)
        self.assertEqual(_embedded_data(page)["tests"][0]["error"], "</script><b>")

    def test_empty_run(self) -> None:
        page = render_report([], make_summary([], duration=0.0))
        self.assertIn("All (0)", page)
        self.assertEqual(_embedded_data(page)["tests"], [])


class TestWriteReport(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self._tmp.cleanup)
        self.tmpdir = Path(self._tmp.name)

    def test_creates_parent_directories(self) -> None:
        path = self.tmpdir / "reports" / "nested" / "smart-report.html"
        write_report("<html></html>", path)
        self.assertEqual(path.read_text(encoding="utf-8"), "<html></html>")

    def test_overwrites_previous_report(self) -> None:
        path = self.tmpdir / "r.html"
        write_report("old", path)
        write_report("new", path)
        self.assertEqual(path.read_text(encoding="utf-8"), "new")

    def test_failed_replace_keeps_previous_report(self) -> None:
        path = self.tmpdir / "r.html"
        write_report("old", path)
        with patch("smart_report.history.os.replace", side_effect=OSError("disk full")):
            with self.assertRaises(OSError):
                write_report("new", path)
        self.assertEqual(path.read_text(encoding="utf-8"), "old")
        self.assertEqual(sorted(p.name for p in self.tmpdir.iterdir()), ["r.html"])

    def test_html_renderer(self) -> None:
        results = [make_result("test_a")]
        path = self.tmpdir / "smart-report.html"
        HtmlReportRenderer().render(results, make_summary(results), path)
        self.assertIn("test_a", path.read_text(encoding="utf-8"))
