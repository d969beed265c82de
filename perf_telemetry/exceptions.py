"""
Telemetry Errors

Only configuration and export failures are raised to callers. Everything
else in the engine is logged and absorbed.
"""

from __future__ import annotations


class TelemetryError(Exception):
    """Base class for telemetry engine errors."""


class ConfigurationError(TelemetryError, ValueError):
    """Raised when a configuration value is out of range."""


class ReportExportError(TelemetryError):
    """Raised when a performance report cannot be written."""

    def __init__(self, path: str, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"Failed to export report to {path}: {reason}")
