"""Data models for battery state, simulation results and telemetry records."""

from dataclasses import asdict, dataclass, field, fields
from datetime import date, datetime
from enum import Enum
from typing import Optional
import json


def _parse_timestamp(value) -> datetime:
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))


def _round(value: Optional[float], digits: int) -> Optional[float]:
    return None if value is None else round(value, digits)


class PowerMode(str, Enum):
    """Power-balance mode of a tick, derived from net power and SoC."""

    CHARGING = "charging"  # generation >= demand
    DISCHARGING = "discharging"  # deficit covered from the battery
    GRID_ASSISTED = "grid_assisted"  # deficit with SoC at/below the reserve floor


@dataclass
class BatteryState:
    """Physical state of one battery."""

    soc_fraction: float  # State of charge (0-1)
    voltage_v: float
    current_a: float  # Positive = charging, negative = discharging
    temperature_c: float
    health_pct: float  # State of health (0-100%)
    cycle_count: float = 0.0

    def copy(self) -> "BatteryState":
        return BatteryState(**asdict(self))

    def to_dict(self) -> dict:
        return {
            "soc_fraction": round(self.soc_fraction, 5),
            "voltage_v": round(self.voltage_v, 2),
            "current_a": round(self.current_a, 2),
            "temperature_c": round(self.temperature_c, 2),
            "health_pct": round(self.health_pct, 4),
            "cycle_count": round(self.cycle_count, 3),
        }

    @classmethod
    def from_reading(cls, reading: "TelemetryReading") -> "BatteryState":
        """Rebuild battery state from the last persisted reading.

        This is the restoration contract used by continuous mode: SoC comes
        from ``battery_soc_pct``, voltage/current/temperature/health are taken
        as recorded. Cycle count is not persisted and restarts at zero.
        """
        return cls(
            soc_fraction=min(1.0, max(0.0, reading.battery_soc_pct / 100)),
            voltage_v=reading.battery_voltage_v,
            current_a=reading.battery_current_a,
            temperature_c=reading.battery_temperature_c,
            health_pct=min(100.0, max(0.0, reading.battery_health_pct)),
        )


@dataclass(frozen=True)
class SimulationResult:
    """Outcome of advancing a battery by one tick.

    ``battery_power_kw`` is the battery's net draw from the site bus
    (positive = charging). Per tick:
    solar + grid_import + unmet_load = load + grid_export + battery_power + curtailed
    """

    state: BatteryState
    mode: PowerMode
    battery_power_kw: float
    grid_import_kw: float
    grid_export_kw: float
    unmet_load_kw: float = 0.0
    curtailed_kw: float = 0.0


@dataclass(frozen=True)
class TelemetryReading:
    """One flat telemetry record for a site at a timestamp."""

    site_id: int
    timestamp: datetime

    # Battery
    battery_voltage_v: float
    battery_current_a: float
    battery_soc_pct: float
    battery_temperature_c: float
    battery_health_pct: float
    battery_power_kw: float  # Positive = charging
    battery_mode: str

    # Solar
    solar_power_kw: float
    solar_energy_kwh: float
    solar_efficiency_pct: Optional[float]
    solar_voltage_v: float
    solar_current_a: float

    # Inverters (solar output split across two units)
    inverter1_power_kw: float
    inverter1_efficiency_pct: Optional[float]
    inverter1_temperature_c: float
    inverter1_status: str
    inverter2_power_kw: float
    inverter2_efficiency_pct: Optional[float]
    inverter2_temperature_c: float
    inverter2_status: str

    # Grid
    grid_voltage_v: float
    grid_frequency_hz: float
    grid_power_kw: float  # Positive = importing, negative = exporting
    grid_import_kw: float
    grid_export_kw: float
    grid_energy_kwh: float
    grid_available: bool

    # Load
    load_power_kw: float
    load_energy_kwh: float
    unmet_load_kw: float

    # Context
    ambient_temperature_c: float
    weather_condition: str
    system_status: str
    data_quality: str = "good"

    def to_dict(self) -> dict:
        return {
            "site_id": self.site_id,
            "timestamp": self.timestamp.isoformat(),
            "battery_voltage_v": round(self.battery_voltage_v, 2),
            "battery_current_a": round(self.battery_current_a, 2),
            "battery_soc_pct": round(self.battery_soc_pct, 2),
            "battery_temperature_c": round(self.battery_temperature_c, 2),
            "battery_health_pct": round(self.battery_health_pct, 4),
            "battery_power_kw": round(self.battery_power_kw, 3),
            "battery_mode": self.battery_mode,
            "solar_power_kw": round(self.solar_power_kw, 3),
            "solar_energy_kwh": round(self.solar_energy_kwh, 4),
            "solar_efficiency_pct": _round(self.solar_efficiency_pct, 2),
            "solar_voltage_v": round(self.solar_voltage_v, 2),
            "solar_current_a": round(self.solar_current_a, 2),
            "inverter1_power_kw": round(self.inverter1_power_kw, 3),
            "inverter1_efficiency_pct": _round(self.inverter1_efficiency_pct, 2),
            "inverter1_temperature_c": round(self.inverter1_temperature_c, 2),
            "inverter1_status": self.inverter1_status,
            "inverter2_power_kw": round(self.inverter2_power_kw, 3),
            "inverter2_efficiency_pct": _round(self.inverter2_efficiency_pct, 2),
            "inverter2_temperature_c": round(self.inverter2_temperature_c, 2),
            "inverter2_status": self.inverter2_status,
            "grid_voltage_v": round(self.grid_voltage_v, 2),
            "grid_frequency_hz": round(self.grid_frequency_hz, 3),
            "grid_power_kw": round(self.grid_power_kw, 3),
            "grid_import_kw": round(self.grid_import_kw, 3),
            "grid_export_kw": round(self.grid_export_kw, 3),
            "grid_energy_kwh": round(self.grid_energy_kwh, 4),
            "grid_available": self.grid_available,
            "load_power_kw": round(self.load_power_kw, 3),
            "load_energy_kwh": round(self.load_energy_kwh, 4),
            "unmet_load_kw": round(self.unmet_load_kw, 3),
            "ambient_temperature_c": round(self.ambient_temperature_c, 2),
            "weather_condition": self.weather_condition,
            "system_status": self.system_status,
            "data_quality": self.data_quality,
        }

    def to_json(self, indent: Optional[int] = 2) -> str:
        """Convert to JSON string."""
        return json.dumps(self.to_dict(), indent=indent)

    @classmethod
    def from_dict(cls, data: dict) -> "TelemetryReading":
        """Create a TelemetryReading from a persisted row.

        Unknown keys (row ids, created_at, ...) are ignored.
        """
        known = {f.name for f in fields(cls)}
        values = {k: v for k, v in data.items() if k in known}
        values["site_id"] = int(values["site_id"])
        values["timestamp"] = _parse_timestamp(values["timestamp"])
        return cls(**values)


@dataclass(frozen=True)
class HourlyAggregate:
    """Rollup of one site's readings over a local calendar hour."""

    site_id: int
    timestamp: datetime  # Start of hour
    avg_battery_voltage_v: float
    avg_battery_current_a: float
    avg_battery_soc_pct: float
    avg_battery_temperature_c: float
    min_battery_soc_pct: float
    max_battery_soc_pct: float
    max_battery_temperature_c: float
    total_solar_energy_kwh: float
    avg_solar_power_kw: float
    avg_solar_efficiency_pct: Optional[float]
    total_grid_energy_kwh: float
    avg_grid_power_kw: float
    total_load_energy_kwh: float
    avg_load_power_kw: float
    reading_count: int

    def to_dict(self) -> dict:
        data = {
            k: (round(v, 4) if isinstance(v, float) else v)
            for k, v in asdict(self).items()
        }
        data["timestamp"] = self.timestamp.isoformat()
        return data


@dataclass(frozen=True)
class DailyAggregate:
    """Rollup of one site's hourly aggregates over a local calendar day."""

    site_id: int
    date: date
    total_solar_energy_kwh: float
    total_grid_energy_kwh: float
    total_load_energy_kwh: float
    avg_battery_soc_pct: float
    min_battery_soc_pct: float
    max_battery_soc_pct: float
    avg_battery_temperature_c: float
    max_battery_temperature_c: float
    avg_solar_efficiency_pct: Optional[float]
    uptime_minutes: int
    hour_count: int = field(default=0)

    def to_dict(self) -> dict:
        data = {
            k: (round(v, 4) if isinstance(v, float) else v)
            for k, v in asdict(self).items()
        }
        data["date"] = self.date.isoformat()
        return data
