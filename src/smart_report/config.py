"""Reporter configuration loading and validation.

Handles:
- The resolved :class:`ReporterConfig` with its defaults.
- Loading settings from a YAML file (camelCase or snake_case keys).
- Merging command-line overrides on top of file values.
- Validating the final configuration before a run starts.
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any

from smart_report.logging import get_logger

log = get_logger("config")

_CAMEL_RE = re.compile(r"(?<!^)(?=[A-Z])")


# ---------------------------------------------------------------------------
# ReporterConfig
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ReporterConfig:
    """Resolved configuration for one reporting run."""

    output_file: Path = Path("smart-report.html")
    history_file: Path = Path("test-history.json")
    max_history_runs: int = 10
    performance_threshold: float = 0.2  # fraction of the historical average

    # Enrichment
    enrichment_workers: int = 1
    enrichment_timeout: float = 30.0  # seconds per provider request

    def resolve_paths(self, root: Path) -> ReporterConfig:
        """Return a copy whose relative paths are anchored at *root*."""
        return replace(
            self,
            output_file=_anchor(self.output_file, root),
            history_file=_anchor(self.history_file, root),
        )


def _anchor(path: Path, root: Path) -> Path:
    return path if path.is_absolute() else root / path


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


@dataclass
class ValidationError:
    """A single configuration validation error."""

    field: str
    message: str


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def validate_config(config: ReporterConfig) -> list[ValidationError]:
    """Validate a reporter configuration.

    Returns a list of validation errors.  Empty list means valid.
    """
    errors: list[ValidationError] = []

    if not _is_int(config.max_history_runs):
        errors.append(ValidationError("max_history_runs", "must be an integer"))
    elif config.max_history_runs < 1:
        errors.append(ValidationError("max_history_runs", "must be at least 1"))

    if not _is_number(config.performance_threshold):
        errors.append(ValidationError("performance_threshold", "must be a number"))
    elif config.performance_threshold < 0:
        errors.append(ValidationError("performance_threshold", "must not be negative"))

    if not _is_int(config.enrichment_workers):
        errors.append(ValidationError("enrichment_workers", "must be an integer"))
    elif config.enrichment_workers < 1:
        errors.append(ValidationError("enrichment_workers", "must be at least 1"))

    if not _is_number(config.enrichment_timeout):
        errors.append(ValidationError("enrichment_timeout", "must be a number"))
    elif config.enrichment_timeout <= 0:
        errors.append(ValidationError("enrichment_timeout", "must be positive"))

    if not str(config.output_file):
        errors.append(ValidationError("output_file", "must not be empty"))
    if not str(config.history_file):
        errors.append(ValidationError("history_file", "must not be empty"))

    return errors


def check_config(config: ReporterConfig) -> ReporterConfig:
    """Raise ``ValueError`` if *config* is invalid, else return it."""
    errors = validate_config(config)
    if errors:
        details = "; ".join(f"{e.field}: {e.message}" for e in errors)
        raise ValueError(f"Invalid smart-report configuration: {details}")
    return config


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------

_PATH_FIELDS = {"output_file", "history_file"}


def _normalize_key(key: str) -> str:
    """Map ``maxHistoryRuns`` / ``max-history-runs`` to ``max_history_runs``."""
    return _CAMEL_RE.sub("_", key).replace("-", "_").lower()


def config_from_mapping(data: dict[str, Any], base: ReporterConfig | None = None) -> ReporterConfig:
    """Build a config from a mapping of settings, ignoring unknown keys.

    Values are layered on top of *base* (or the defaults).
    """
    known = {f.name for f in fields(ReporterConfig)}
    updates: dict[str, Any] = {}
    for raw_key, value in data.items():
        key = _normalize_key(str(raw_key))
        if key not in known:
            log.warning("Ignoring unknown smart-report setting: %s", raw_key)
            continue
        if value is None:
            continue
        if key in _PATH_FIELDS:
            if not isinstance(value, (str, os.PathLike)):
                raise ValueError(f"{raw_key} must be a path, got {value!r}")
            value = Path(value)
        updates[key] = value
    return replace(base or ReporterConfig(), **updates)


def load_config_file(path: Path) -> dict[str, Any]:
    """Load reporter settings from a YAML file.

    File format::

        outputFile: reports/smart-report.html
        historyFile: reports/test-history.json
        maxHistoryRuns: 20
        performanceThreshold: 0.25

    An optional top-level ``smart_report`` key may wrap the settings.

    Raises:
        FileNotFoundError: If *path* does not exist.
        ValueError: If the file is not valid YAML or not a YAML mapping.
    """
    import yaml

    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        raise ValueError(f"Invalid YAML in {path}: {exc}") from exc
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"Config must be a YAML mapping, got {type(data).__name__}")
    nested = data.get("smart_report")
    if isinstance(nested, dict):
        return nested
    return data


def merge_overrides(config: ReporterConfig, **overrides: Any) -> ReporterConfig:
    """Apply command-line overrides; ``None`` values leave settings alone."""
    return config_from_mapping({k: v for k, v in overrides.items() if v is not None}, config)


def build_config(config_file: Path | None = None, **overrides: Any) -> ReporterConfig:
    """Resolve the final configuration: defaults < file < overrides.

    Raises:
        FileNotFoundError: If *config_file* does not exist.
        ValueError: If the file cannot be parsed or the resulting
            configuration is invalid.
    """
    config = ReporterConfig()
    if config_file is not None:
        config = config_from_mapping(load_config_file(config_file), config)
    config = merge_overrides(config, **overrides)
    return check_config(config)
