"""smart-report: flakiness and performance-trend reporting for pytest runs."""

__version__ = "0.1.0"
