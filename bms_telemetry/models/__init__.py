"""Data models for weather, sites and telemetry."""

from .weather import WeatherCondition, WeatherLocation, WeatherSample
from .site import Site
from .telemetry import (
    BatteryState,
    DailyAggregate,
    HourlyAggregate,
    PowerMode,
    SimulationResult,
    TelemetryReading,
)

__all__ = [
    "BatteryState",
    "DailyAggregate",
    "HourlyAggregate",
    "PowerMode",
    "SimulationResult",
    "Site",
    "TelemetryReading",
    "WeatherCondition",
    "WeatherLocation",
    "WeatherSample",
]
