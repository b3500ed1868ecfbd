"""Shared fixtures: weather samples, readings, sites and an in-memory store."""

from datetime import datetime, timedelta, timezone

import pytest

from bms_telemetry.errors import PersistenceError
from bms_telemetry.models import (
    Site,
    TelemetryReading,
    WeatherCondition,
    WeatherSample,
)
from bms_telemetry.storage import TelemetryStore


def build_sample(instant: datetime, **overrides) -> WeatherSample:
    """A clear, warm midsummer sample with a 06:00-18:00 daylight window."""
    values = {
        "instant": instant,
        "temperature_c": 28.0,
        "humidity_pct": 40.0,
        "cloud_cover_pct": 10.0,
        "solar_irradiance_w_m2": 900.0,
        "wind_speed_ms": 3.0,
        "precipitation_mm": 0.0,
        "uv_index": 8.0,
        "sunrise": instant.replace(hour=6, minute=0, second=0, microsecond=0),
        "sunset": instant.replace(hour=18, minute=0, second=0, microsecond=0),
        "condition": WeatherCondition.CLEAR,
    }
    values.update(overrides)
    return WeatherSample(**values)


def build_hourly_samples(start: datetime, end: datetime) -> list[WeatherSample]:
    """Hourly samples from one hour before start to one hour after end."""
    current = start.replace(minute=0, second=0, microsecond=0) - timedelta(hours=1)
    samples = []
    while current <= end + timedelta(hours=1):
        daylight = 6 <= current.hour <= 18
        samples.append(
            build_sample(
                current,
                solar_irradiance_w_m2=800.0 if daylight else 0.0,
                temperature_c=26.0 if daylight else 16.0,
            )
        )
        current += timedelta(hours=1)
    return samples


def build_reading(timestamp: datetime, site_id: int = 1, **overrides) -> TelemetryReading:
    values = {
        "site_id": site_id,
        "timestamp": timestamp,
        "battery_voltage_v": 505.0,
        "battery_current_a": 10.0,
        "battery_soc_pct": 80.0,
        "battery_temperature_c": 27.0,
        "battery_health_pct": 98.0,
        "battery_power_kw": 5.0,
        "battery_mode": "charging",
        "solar_power_kw": 20.0,
        "solar_energy_kwh": 20.0 / 12,
        "solar_efficiency_pct": 80.0,
        "solar_voltage_v": 505.0,
        "solar_current_a": 39.6,
        "inverter1_power_kw": 10.0,
        "inverter1_efficiency_pct": 97.0,
        "inverter1_temperature_c": 40.0,
        "inverter1_status": "online",
        "inverter2_power_kw": 10.0,
        "inverter2_efficiency_pct": 97.0,
        "inverter2_temperature_c": 40.0,
        "inverter2_status": "online",
        "grid_voltage_v": 230.0,
        "grid_frequency_hz": 50.0,
        "grid_power_kw": -3.0,
        "grid_import_kw": 0.0,
        "grid_export_kw": 3.0,
        "grid_energy_kwh": -3.0 / 12,
        "grid_available": True,
        "load_power_kw": 12.0,
        "load_energy_kwh": 1.0,
        "unmet_load_kw": 0.0,
        "ambient_temperature_c": 28.0,
        "weather_condition": "clear",
        "system_status": "normal",
    }
    values.update(overrides)
    return TelemetryReading(**values)


class FakeTelemetryStore(TelemetryStore):
    """In-memory store that can fail a number of writes on demand."""

    def __init__(self, sites, latest=None):
        self.sites = list(sites)
        self.latest = dict(latest or {})
        self.readings = []
        self.aggregates = {"hourly": [], "daily": []}
        self.deleted = []
        self.calls = []
        self.fail_inserts = 0
        self.fail_site_ids = set()
        self.closed = False

    def list_active_sites(self, site_ids=None):
        return [s for s in self.sites if not site_ids or s.id in site_ids]

    def insert_readings(self, readings):
        self.calls.append(("readings", len(readings)))
        if self.fail_inserts > 0:
            self.fail_inserts -= 1
            raise PersistenceError("connection reset")
        if any(r.site_id in self.fail_site_ids for r in readings):
            raise PersistenceError("duplicate timestamp")
        self.readings.extend(readings)
        return len(readings)

    def find_latest_reading(self, site_id):
        return self.latest.get(site_id)

    def insert_aggregates(self, kind, records):
        records = list(records)
        self.calls.append((kind, len(records)))
        self.aggregates[kind].extend(records)
        return len(records)

    def delete_site_telemetry(self, site_id, start, end):
        self.calls.append(("delete", site_id))
        self.deleted.append((site_id, start, end))

    def close(self):
        self.closed = True


@pytest.fixture
def site():
    return Site(
        id=1,
        name="Test Site",
        latitude=-26.2,
        longitude=28.0,
        timezone="UTC",
        solar_capacity_kw=50.0,
        battery_capacity_kwh=40.0,
        daily_consumption_kwh=100.0,
        nominal_voltage=500.0,
    )


@pytest.fixture
def second_site():
    return Site(
        id=2,
        name="Second Site",
        latitude=-33.9,
        longitude=18.4,
        timezone="UTC",
        solar_capacity_kw=20.0,
        battery_capacity_kwh=30.0,
        daily_consumption_kwh=40.0,
    )


@pytest.fixture
def noon():
    return datetime(2024, 6, 12, 12, 0, tzinfo=timezone.utc)  # Wednesday
