"""
Telemetry Configuration

Defines sampling parameters, bottleneck thresholds and leak-detection
settings. Every field can be changed at runtime through
`TelemetryEngine.update_config`.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields, replace
from pathlib import Path
from typing import Any

from pydantic_settings import BaseSettings, SettingsConfigDict

from .exceptions import ConfigurationError


@dataclass(frozen=True)
class ThresholdPair:
    """Warning/critical pair for one bottleneck dimension."""
    warning: float
    critical: float


@dataclass(frozen=True)
class PerformanceThresholds:
    """Bottleneck thresholds per tracked dimension."""
    fps: ThresholdPair = ThresholdPair(warning=45, critical=30)  # lower is worse
    memory: ThresholdPair = ThresholdPair(warning=70, critical=90)  # percent
    cpu: ThresholdPair = ThresholdPair(warning=70, critical=90)  # percent
    ipc_latency: ThresholdPair = ThresholdPair(warning=50, critical=100)  # ms
    frame_time: ThresholdPair = ThresholdPair(warning=22, critical=33)  # ms

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PerformanceThresholds":
        """Build thresholds from nested dicts, keeping defaults for gaps."""
        defaults = cls()
        values = {}
        for f in fields(cls):
            raw = data.get(f.name)
            if raw is None:
                values[f.name] = getattr(defaults, f.name)
            elif isinstance(raw, ThresholdPair):
                values[f.name] = raw
            else:
                values[f.name] = ThresholdPair(
                    warning=float(raw["warning"]),
                    critical=float(raw["critical"]),
                )
        return cls(**values)

    def to_dict(self) -> dict[str, dict[str, float]]:
        """Convert to dictionary."""
        return asdict(self)


def _default_metrics_dir() -> str:
    return str(Path.home() / ".perf_telemetry" / "performance")


@dataclass
class TelemetryConfig:
    """Main configuration for the telemetry engine."""
    enabled: bool = True

    # Sampling
    sample_interval_s: float = 1.0
    history_size: int = 300  # 5 minutes at 1 sample/second

    # Bottleneck detection
    thresholds: PerformanceThresholds = field(default_factory=PerformanceThresholds)

    # Report export
    metrics_dir: str = field(default_factory=_default_metrics_dir)
    auto_export: bool = False
    export_interval_s: float = 300.0

    # Auxiliary surface collection
    collect_auxiliary: bool = True
    collection_timeout_s: float | None = None  # None: bounded by sample_interval_s

    # Memory thresholds and leak detection
    memory_warning_mb: float = 400.0
    memory_critical_mb: float = 500.0
    oom_risk_percent: float = 90.0
    leak_growth_rate_mb_per_min: float = 1.0
    analysis_window_minutes: float = 5.0
    auto_detect_leaks: bool = True

    # Alert log
    alert_capacity: int = 100
    alert_cooldown_s: float = 0.0  # 0 disables suppression

    def __post_init__(self):
        if isinstance(self.thresholds, dict):
            self.thresholds = PerformanceThresholds.from_dict(self.thresholds)
        self.validate()

    def validate(self) -> None:
        """Raise ConfigurationError for out-of-range values."""
        if self.sample_interval_s <= 0:
            raise ConfigurationError("sample_interval_s must be positive")
        if self.history_size < 1:
            raise ConfigurationError("history_size must be at least 1")
        if self.export_interval_s <= 0:
            raise ConfigurationError("export_interval_s must be positive")
        if self.collection_timeout_s is not None and self.collection_timeout_s <= 0:
            raise ConfigurationError("collection_timeout_s must be positive")
        if self.analysis_window_minutes <= 0:
            raise ConfigurationError("analysis_window_minutes must be positive")
        if self.alert_capacity < 1:
            raise ConfigurationError("alert_capacity must be at least 1")
        if self.alert_cooldown_s < 0:
            raise ConfigurationError("alert_cooldown_s cannot be negative")
        if self.memory_warning_mb > self.memory_critical_mb:
            raise ConfigurationError("memory_warning_mb cannot exceed memory_critical_mb")

    @property
    def effective_collection_timeout_s(self) -> float:
        """Per-surface timeout for auxiliary heap evaluation."""
        if self.collection_timeout_s is not None:
            return self.collection_timeout_s
        return self.sample_interval_s

    def merged(self, **changes: Any) -> "TelemetryConfig":
        """Return a copy with `changes` applied (validated)."""
        unknown = set(changes) - {f.name for f in fields(self)}
        if unknown:
            raise ConfigurationError(f"Unknown config fields: {', '.join(sorted(unknown))}")
        if isinstance(changes.get("thresholds"), dict):
            current = self.thresholds.to_dict()
            current.update(changes["thresholds"])
            changes["thresholds"] = PerformanceThresholds.from_dict(current)
        return replace(self, **changes)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TelemetryConfig":
        """Create from dictionary (nested thresholds accepted)."""
        return cls().merged(**data)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        data = asdict(self)
        data["thresholds"] = self.thresholds.to_dict()
        return data


class TelemetrySettings(BaseSettings):
    """Environment-based settings (PERF_TELEMETRY_* variables or .env)."""

    model_config = SettingsConfigDict(
        env_prefix="PERF_TELEMETRY_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    enabled: bool = True
    sample_interval_s: float = 1.0
    history_size: int = 300
    metrics_dir: str = ""
    auto_export: bool = False
    export_interval_s: float = 300.0
    collect_auxiliary: bool = True
    collection_timeout_s: float | None = None
    memory_warning_mb: float = 400.0
    memory_critical_mb: float = 500.0
    oom_risk_percent: float = 90.0
    leak_growth_rate_mb_per_min: float = 1.0
    analysis_window_minutes: float = 5.0
    auto_detect_leaks: bool = True
    alert_capacity: int = 100
    alert_cooldown_s: float = 0.0

    def to_config(self) -> TelemetryConfig:
        """Build a validated TelemetryConfig."""
        data = self.model_dump()
        if not data["metrics_dir"]:
            data.pop("metrics_dir")
        return TelemetryConfig.from_dict(data)


def load_config(**overrides: Any) -> TelemetryConfig:
    """Load configuration from the environment, then apply overrides."""
    return TelemetrySettings().to_config().merged(**overrides)

