"""Tests for the smart-report command-line interface."""

from __future__ import annotations

import json
import logging
import tempfile
import unittest
from pathlib import Path

from click.testing import CliRunner

from report_test_helpers import write_text

from smart_report import __version__
from smart_report.cli import main
from smart_report.history import load_history


def _reset_logging() -> None:
    # setup_logging binds a handler to the runner's captured stderr.
    logger = logging.getLogger("smart_report")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()


def _entries(pattern: str, duration: float) -> list[dict[str, object]]:
    return [
        {"passed": c == "P", "duration": duration, "timestamp": f"t{i}"}
        for i, c in enumerate(pattern)
    ]


class _FixtureMixin:
    def _setup_fixtures(self) -> None:
        self.tmpdir = tempfile.TemporaryDirectory()
        self.root = Path(self.tmpdir.name)
        self.history_file = self.root / "test-history.json"
        write_text(
            self.history_file,
            json.dumps(
                {
                    "tests/test_a.py::test_stable": _entries("PPPPPPPPPP", 100.0),
                    "tests/test_a.py::test_flaky": _entries("PFPFPFPFPP", 500.0),
                    "tests/test_b.py::test_wobbly": _entries("PPPPPPPPPF", 2000.0),
                }
            ),
        )
        self.runner = CliRunner()

    def _cleanup_fixtures(self) -> None:
        self.tmpdir.cleanup()
        _reset_logging()


# ---------------------------------------------------------------------------
# Tests
# ---------------------------------------------------------------------------


class TestMain(unittest.TestCase):
    def tearDown(self) -> None:
        _reset_logging()

    def test_version(self) -> None:
        result = CliRunner().invoke(main, ["--version"])
        self.assertEqual(result.exit_code, 0, result.output)
        self.assertIn(__version__, result.output)

    def test_help_lists_groups(self) -> None:
        result = CliRunner().invoke(main, ["--help"])
        self.assertEqual(result.exit_code, 0, result.output)
        self.assertIn("history", result.output)
        self.assertIn("config", result.output)


class TestHistoryShow(_FixtureMixin, unittest.TestCase):
    def setUp(self) -> None:
        self._setup_fixtures()

    def tearDown(self) -> None:
        self._cleanup_fixtures()

    def _show(self, *args: str) -> str:
        result = self.runner.invoke(
            main, ["history", "show", "--history-file", str(self.history_file), *args]
        )
        self.assertEqual(result.exit_code, 0, result.output)
        return result.output

    def test_table_output(self) -> None:
        output = self._show()
        self.assertIn("Flakiness", output)
        self.assertIn("tests/test_a.py::test_flaky", output)
        self.assertIn("40%", output)
        self.assertIn("2.0s", output)
        self.assertIn("3 test(s) from", output)

    def test_sorted_by_score(self) -> None:
        output = self._show()
        flaky = output.index("test_flaky")
        wobbly = output.index("test_wobbly")
        stable = output.index("test_stable")
        self.assertLess(flaky, wobbly)
        self.assertLess(wobbly, stable)

    def test_sorted_by_duration(self) -> None:
        output = self._show("--sort", "duration")
        self.assertLess(output.index("test_wobbly"), output.index("test_flaky"))
        self.assertLess(output.index("test_flaky"), output.index("test_stable"))

    def test_flaky_only(self) -> None:
        output = self._show("--flaky-only")
        self.assertIn("test_flaky", output)
        self.assertIn("test_wobbly", output)
        self.assertNotIn("test_stable", output)

    def test_json_output(self) -> None:
        rows = json.loads(self._show("--format", "json", "--sort", "name"))
        self.assertEqual(
            [r["test_id"] for r in rows],
            [
                "tests/test_a.py::test_flaky",
                "tests/test_a.py::test_stable",
                "tests/test_b.py::test_wobbly",
            ],
        )
        self.assertEqual(rows[0]["runs"], 10)
        self.assertEqual(rows[0]["failures"], 4)
        self.assertEqual(rows[0]["flakiness_score"], 0.4)
        self.assertEqual(rows[0]["flakiness_indicator"], "Flaky")
        self.assertEqual(rows[2]["flakiness_indicator"], "Unstable")
        self.assertEqual(rows[1]["average_duration"], 100.0)

    def test_log_file_records_debug(self) -> None:
        log_file = self.root / "logs" / "smart-report.log"
        result = self.runner.invoke(
            main,
            [
                "--quiet",
                "--log-file",
                str(log_file),
                "history",
                "show",
                "--history-file",
                str(self.history_file),
            ],
        )
        self.assertEqual(result.exit_code, 0, result.output)
        self.assertIn("Loaded history for 3 test(s)", log_file.read_text(encoding="utf-8"))

    def test_missing_file(self) -> None:
        result = self.runner.invoke(
            main, ["history", "show", "--history-file", str(self.root / "nope.json")]
        )
        self.assertEqual(result.exit_code, 0, result.output)
        self.assertIn("No tests in", result.output)

    def test_malformed_file_fails(self) -> None:
        write_text(self.history_file, "{not json")
        result = self.runner.invoke(
            main, ["history", "show", "--history-file", str(self.history_file)]
        )
        self.assertEqual(result.exit_code, 1)
        self.assertIn("Cannot read", result.output)


class TestHistoryPrune(_FixtureMixin, unittest.TestCase):
    def setUp(self) -> None:
        self._setup_fixtures()

    def tearDown(self) -> None:
        self._cleanup_fixtures()

    def test_prune(self) -> None:
        result = self.runner.invoke(
            main,
            ["history", "prune", "--history-file", str(self.history_file), "--max-runs", "3"],
        )
        self.assertEqual(result.exit_code, 0, result.output)
        self.assertIn("Removed 21 entries", result.output)
        history = load_history(self.history_file)
        self.assertTrue(all(len(entries) == 3 for entries in history.values()))
        # Newest entries are kept.
        self.assertEqual(history["tests/test_a.py::test_flaky"][-1].timestamp, "t9")

    def test_malformed_entry_leaves_file_untouched(self) -> None:
        data = {
            "tests/test_a.py::test_ok": _entries("PPPPP", 100.0),
            "tests/test_a.py::test_odd": [{"passed": True, "duration": "12ms", "timestamp": "t"}],
        }
        write_text(self.history_file, json.dumps(data))
        before = self.history_file.read_text(encoding="utf-8")
        result = self.runner.invoke(
            main,
            ["history", "prune", "--history-file", str(self.history_file), "--max-runs", "3"],
        )
        self.assertEqual(result.exit_code, 1)
        self.assertIn("Cannot read", result.output)
        self.assertNotIn("Removed", result.output)
        self.assertEqual(self.history_file.read_text(encoding="utf-8"), before)

    def test_dry_run_leaves_file(self) -> None:
        before = self.history_file.read_text(encoding="utf-8")
        result = self.runner.invoke(
            main,
            [
                "history",
                "prune",
                "--history-file",
                str(self.history_file),
                "--max-runs",
                "9",
                "--dry-run",
            ],
        )
        self.assertEqual(result.exit_code, 0, result.output)
        self.assertIn("Would remove 3 entries.", result.output)
        self.assertEqual(self.history_file.read_text(encoding="utf-8"), before)

    def test_invalid_max_runs(self) -> None:
        result = self.runner.invoke(
            main,
            ["history", "prune", "--history-file", str(self.history_file), "--max-runs", "0"],
        )
        self.assertNotEqual(result.exit_code, 0)
        self.assertIn("at least 1", result.output)

    def test_missing_file(self) -> None:
        result = self.runner.invoke(
            main,
            ["history", "prune", "--history-file", str(self.root / "nope.json"), "--max-runs", "3"],
        )
        self.assertEqual(result.exit_code, 1)
        self.assertIn("History file not found", result.output)


class TestConfigCheck(unittest.TestCase):
    def setUp(self) -> None:
        self.tmpdir = tempfile.TemporaryDirectory()
        self.addCleanup(self.tmpdir.cleanup)
        self.addCleanup(_reset_logging)
        self.root = Path(self.tmpdir.name)
        self.runner = CliRunner()

    def test_valid(self) -> None:
        path = write_text(self.root / "c.yaml", "maxHistoryRuns: 20\noutputFile: out.html\n")
        result = self.runner.invoke(main, ["config", "check", str(path)])
        self.assertEqual(result.exit_code, 0, result.output)
        self.assertIn("Max history runs:      20", result.output)
        self.assertIn("out.html", result.output)
        self.assertIn("Configuration OK.", result.output)

    def test_invalid_values(self) -> None:
        path = write_text(self.root / "c.yaml", "maxHistoryRuns: 0\nperformanceThreshold: -1\n")
        result = self.runner.invoke(main, ["config", "check", str(path)])
        self.assertEqual(result.exit_code, 1)
        self.assertIn("max_history_runs", result.output)
        self.assertIn("2 configuration error(s)", result.output)

    def test_malformed_yaml(self) -> None:
        path = write_text(self.root / "c.yaml", "maxHistoryRuns: [1\n")
        result = self.runner.invoke(main, ["config", "check", str(path)])
        self.assertEqual(result.exit_code, 1)
        self.assertIn("Invalid YAML", result.output)
        self.assertIsInstance(result.exception, SystemExit)

    def test_non_string_path(self) -> None:
        path = write_text(self.root / "c.yaml", "outputFile: 5\n")
        result = self.runner.invoke(main, ["config", "check", str(path)])
        self.assertEqual(result.exit_code, 1)
        self.assertIn("outputFile must be a path", result.output)

    def test_not_a_mapping(self) -> None:
        path = write_text(self.root / "c.yaml", "just a string\n")
        result = self.runner.invoke(main, ["config", "check", str(path)])
        self.assertEqual(result.exit_code, 1)
        self.assertIn("YAML mapping", result.output)

    def test_missing_file(self) -> None:
        result = self.runner.invoke(main, ["config", "check", str(self.root / "nope.yaml")])
        self.assertEqual(result.exit_code, 2)
