"""Rolling per-test outcome history.

The history file is a single JSON object mapping test ids to their past
outcomes, oldest first::

    {
      "tests/test_login.py::test_valid_user": [
        {"passed": true, "duration": 512.0, "timestamp": "2026-10-17T08:00:00+00:00"},
        ...
      ]
    }

It is loaded once when a run starts and rewritten in full once when it
ends.  A missing or unreadable file simply means "no history yet".
"""

from __future__ import annotations

import json
import math
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path, PurePath
from typing import Any

from smart_report.logging import get_logger

log = get_logger("history")

TEST_ID_SEPARATOR = "::"


@dataclass(frozen=True)
class HistoryEntry:
    """One past outcome of a test."""

    passed: bool
    duration: float  # milliseconds
    timestamp: str  # ISO-8601

    def to_dict(self) -> dict[str, Any]:
        return {"passed": self.passed, "duration": self.duration, "timestamp": self.timestamp}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> HistoryEntry:
        """Deserialize one entry, rejecting anything that is not well-formed."""
        passed = data["passed"]
        duration = data["duration"]
        timestamp = data.get("timestamp", "")
        if not isinstance(passed, bool):
            raise ValueError(f"'passed' must be a boolean, got {passed!r}")
        if isinstance(duration, bool) or not isinstance(duration, (int, float)):
            raise ValueError(f"'duration' must be a number, got {duration!r}")
        try:
            value = float(duration)
        except OverflowError as exc:
            raise ValueError(f"'duration' is out of range: {duration!r}") from exc
        if not math.isfinite(value) or value < 0:
            raise ValueError(f"'duration' must be finite and non-negative, got {duration!r}")
        return cls(passed=passed, duration=value, timestamp=str(timestamp))


TestHistory = dict[str, list[HistoryEntry]]


def relative_file(root: Path | str, file: Path | str) -> str:
    """Return *file* relative to *root* (when beneath it), with ``/`` separators."""
    path = PurePath(file)
    try:
        path = path.relative_to(root)
    except ValueError:
        pass
    return path.as_posix()


def make_test_id(root: Path | str, file: Path | str, title: str) -> str:
    """Derive the stable identity of a test from its file and title.

    Retry count and timing never enter the id, so every attempt of a
    test shares one history.
    """
    return f"{relative_file(root, file)}{TEST_ID_SEPARATOR}{title}"


def atomic_write_text(path: Path, content: str) -> None:
    """Write *content* to *path* through a temp file and :func:`os.replace`.

    Parent directories are created as needed.  On failure the temp file
    is removed and the error re-raised.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(dir=path.parent, suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(content)
        os.replace(tmp_path, path)
    except BaseException:
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise


# ---------------------------------------------------------------------------
# Load / append / persist
# ---------------------------------------------------------------------------


def _parse_history(data: Any) -> TestHistory:
    if not isinstance(data, dict):
        raise ValueError(f"history must be a JSON object, got {type(data).__name__}")
    history: TestHistory = {}
    for test_id, entries in data.items():
        if not isinstance(entries, list):
            raise ValueError(f"history for {test_id!r} must be a list")
        history[test_id] = [HistoryEntry.from_dict(e) for e in entries]
    return history


def read_history(path: Path) -> TestHistory:
    """Read and validate the history file at *path*.

    Raises:
        OSError: If the file cannot be read.
        ValueError: If the content is not valid history.
    """
    raw = json.loads(path.read_text(encoding="utf-8"))
    try:
        history = _parse_history(raw)
    except (KeyError, TypeError, AttributeError) as exc:
        raise ValueError(f"malformed history entry: {exc!r}") from exc
    log.debug("Loaded history for %d test(s) from %s", len(history), path)
    return history


def load_history(path: Path) -> TestHistory:
    """Read the history file at *path*, tolerating any problem with it.

    Returns an empty mapping when the file is missing or its content
    cannot be parsed; such problems are logged at DEBUG and never raised.
    Use :func:`read_history` where bad content must not be ignored.
    """
    if not path.exists():
        log.debug("No history file at %s, starting fresh", path)
        return {}
    try:
        history = read_history(path)
    except (OSError, ValueError) as exc:
        log.debug("Ignoring unreadable history file %s: %s", path, exc)
        return {}
    return history


def append_entry(
    history: TestHistory,
    test_id: str,
    entry: HistoryEntry,
    max_runs: int,
) -> TestHistory:
    """Return a copy of *history* with *entry* appended for *test_id*.

    The test's sequence keeps only its *max_runs* most recent entries;
    the oldest are dropped first.  *history* itself is not modified.
    """
    if max_runs < 1:
        raise ValueError(f"max_runs must be at least 1, got {max_runs}")
    updated = dict(history)
    entries = [*history.get(test_id, []), entry]
    updated[test_id] = entries[-max_runs:]
    return updated


def prune_history(history: TestHistory, max_runs: int) -> TestHistory:
    """Apply the retention bound to every test's sequence."""
    if max_runs < 1:
        raise ValueError(f"max_runs must be at least 1, got {max_runs}")
    return {test_id: entries[-max_runs:] for test_id, entries in history.items()}


def history_to_dict(history: TestHistory) -> dict[str, list[dict[str, Any]]]:
    """Serialize to a JSON-compatible dict."""
    return {test_id: [e.to_dict() for e in entries] for test_id, entries in history.items()}


def persist_history(history: TestHistory, path: Path) -> None:
    """Write the full history to *path*, replacing any previous content.

    The file is written to a temporary sibling first and moved into place
    with :func:`os.replace`, so readers never see a half-written file.

    Raises:
        OSError: If the file cannot be written.
    """
    content = json.dumps(history_to_dict(history), indent=2) + "\n"
    atomic_write_text(path, content)
    log.debug("Wrote history for %d test(s) to %s", len(history), path)


# ---------------------------------------------------------------------------
# HistoryStore
# ---------------------------------------------------------------------------


class HistoryStore:
    """The durable history of one project: a file plus its retention bound."""

    def __init__(self, path: Path, max_runs: int = 10) -> None:
        if max_runs < 1:
            raise ValueError(f"max_runs must be at least 1, got {max_runs}")
        self.path = path
        self.max_runs = max_runs

    def load(self) -> TestHistory:
        return load_history(self.path)

    def append(self, history: TestHistory, test_id: str, entry: HistoryEntry) -> TestHistory:
        return append_entry(history, test_id, entry, self.max_runs)

    def persist(self, history: TestHistory) -> None:
        persist_history(history, self.path)
