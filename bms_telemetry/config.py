"""Configuration management for the telemetry engine."""

import json
import os
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Optional

from bms_telemetry.errors import InvalidConfiguration
from bms_telemetry.models import Site
from bms_telemetry.storage import BACKENDS, InfluxDBConfig, SupabaseConfig

REALTIME_INTERVALS = (1, 5)


@dataclass
class WeatherConfig:
    """Weather fetching and caching configuration.

    Supports environment variable overrides:
    - WEATHER_CACHE_DIR: Directory for the on-disk cache mirror
    """

    cache_ttl_hours: float = 24.0
    cache_dir: Optional[str] = None
    timeout_seconds: float = 30.0
    forecast_past_days: int = 5
    lookback_hours: int = 24
    lookahead_hours: int = 1
    refresh_minutes: int = 60

    def __post_init__(self) -> None:
        if self.cache_dir is None:
            self.cache_dir = os.environ.get("WEATHER_CACHE_DIR") or None
        if self.cache_ttl_hours <= 0:
            raise InvalidConfiguration("cache_ttl_hours must be positive")


@dataclass
class BatteryConfig:
    """Battery behavior shared by every site (capacity comes from the site)."""

    reserve_soc: float = 0.15
    max_soc: float = 1.0
    max_charge_rate_c: float = 0.5
    max_discharge_rate_c: float = 1.0
    charging_efficiency: float = 0.95
    discharging_efficiency: float = 0.95
    self_discharge_per_minute: float = 0.00001
    min_health_pct: float = 70.0
    initial_soc: float = 0.85
    initial_health_pct: float = 98.0

    def simulator_kwargs(self) -> dict:
        """Keyword arguments for BatterySimulator."""
        kwargs = asdict(self)
        kwargs.pop("initial_health_pct")
        return kwargs


@dataclass
class BackfillConfig:
    """Historical backfill configuration."""

    days: int = 30
    interval_minutes: int = 5
    batch_size: int = 500
    max_retries: int = 3
    retry_delay_seconds: float = 5.0

    def __post_init__(self) -> None:
        if self.days <= 0:
            raise InvalidConfiguration("days must be a positive integer")
        if self.interval_minutes <= 0:
            raise InvalidConfiguration("interval_minutes must be positive")
        if self.batch_size <= 0:
            raise InvalidConfiguration("batch_size must be positive")
        if self.max_retries < 1:
            raise InvalidConfiguration("max_retries must be at least 1")


@dataclass
class RealtimeConfig:
    """Continuous generation configuration."""

    interval_minutes: int = 5

    def __post_init__(self) -> None:
        if self.interval_minutes not in REALTIME_INTERVALS:
            raise InvalidConfiguration(
                f"interval_minutes must be one of {REALTIME_INTERVALS}, "
                f"got {self.interval_minutes}"
            )


@dataclass
class TelemetryConfig:
    """Main configuration."""

    storage: str = "supabase"
    seed: Optional[int] = None
    solar_noise_percent: float = 5.0
    load_noise_percent: float = 10.0
    site_ids: list[int] = field(default_factory=list)
    sites: list[Site] = field(default_factory=list)

    weather: WeatherConfig = field(default_factory=WeatherConfig)
    battery: BatteryConfig = field(default_factory=BatteryConfig)
    backfill: BackfillConfig = field(default_factory=BackfillConfig)
    realtime: RealtimeConfig = field(default_factory=RealtimeConfig)
    supabase: SupabaseConfig = field(default_factory=SupabaseConfig)
    influxdb: InfluxDBConfig = field(default_factory=InfluxDBConfig)

    def __post_init__(self) -> None:
        if self.storage not in BACKENDS:
            raise InvalidConfiguration(
                f"storage must be one of {BACKENDS}, got {self.storage!r}"
            )

    @classmethod
    def from_dict(cls, data: dict) -> "TelemetryConfig":
        """Create config from dictionary."""
        try:
            return cls(
                storage=data.get("storage", "supabase"),
                seed=data.get("seed"),
                solar_noise_percent=data.get("solar_noise_percent", 5.0),
                load_noise_percent=data.get("load_noise_percent", 10.0),
                site_ids=[int(i) for i in data.get("site_ids", [])],
                sites=[Site.from_dict(s) for s in data.get("sites", [])],
                weather=WeatherConfig(**data.get("weather", {})),
                battery=BatteryConfig(**data.get("battery", {})),
                backfill=BackfillConfig(**data.get("backfill", {})),
                realtime=RealtimeConfig(**data.get("realtime", {})),
                supabase=SupabaseConfig(**data.get("supabase", {})),
                influxdb=InfluxDBConfig(**data.get("influxdb", {})),
            )
        except TypeError as e:
            raise InvalidConfiguration(f"Invalid configuration format: {e}") from e

    @classmethod
    def from_file(cls, path: Path) -> "TelemetryConfig":
        """Load config from JSON file."""
        try:
            with open(path) as f:
                data = json.load(f)
        except FileNotFoundError as exc:
            raise FileNotFoundError(
                f"Configuration file not found: {path}",
            ) from exc
        except json.JSONDecodeError as exc:
            raise InvalidConfiguration(
                f"Invalid JSON in configuration file {path}: {exc}"
            ) from exc
        except OSError as exc:
            raise RuntimeError(
                f"Failed to load configuration from {path}: {exc}",
            ) from exc
        return cls.from_dict(data)

    def to_dict(self) -> dict:
        """Convert config to dictionary, leaving secrets out."""
        data = asdict(self)
        data["supabase"].pop("key", None)
        data["influxdb"].pop("token", None)
        return data

    def to_file(self, path: Path) -> None:
        """Save config to JSON file."""
        try:
            with open(path, "w") as f:
                json.dump(self.to_dict(), f, indent=2)
        except OSError as exc:
            raise RuntimeError(
                f"Failed to save configuration to {path}: {exc}",
            ) from exc


# Default configuration template
DEFAULT_CONFIG = TelemetryConfig()
