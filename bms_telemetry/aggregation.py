"""Hourly and daily rollups of telemetry readings.

Buckets are local calendar hours and days of the site. Hour buckets are
keyed by the UTC instant of their local start so repeated wall-clock hours
around DST changes stay distinct.
"""

from datetime import date, datetime, timezone, tzinfo
from statistics import fmean
from typing import Optional, Sequence

from bms_telemetry.models import DailyAggregate, HourlyAggregate, TelemetryReading


def _mean_or_none(values: list) -> Optional[float]:
    present = [v for v in values if v is not None]
    return fmean(present) if present else None


def hourly_aggregate(
    site_id: int,
    hour_start: datetime,
    readings: Sequence[TelemetryReading],
) -> HourlyAggregate:
    """Roll one hour of readings into an HourlyAggregate."""
    if not readings:
        raise ValueError("Cannot aggregate an hour without readings")

    soc = [r.battery_soc_pct for r in readings]
    temperature = [r.battery_temperature_c for r in readings]
    return HourlyAggregate(
        site_id=site_id,
        timestamp=hour_start,
        avg_battery_voltage_v=fmean(r.battery_voltage_v for r in readings),
        avg_battery_current_a=fmean(r.battery_current_a for r in readings),
        avg_battery_soc_pct=fmean(soc),
        avg_battery_temperature_c=fmean(temperature),
        min_battery_soc_pct=min(soc),
        max_battery_soc_pct=max(soc),
        max_battery_temperature_c=max(temperature),
        total_solar_energy_kwh=sum(r.solar_energy_kwh for r in readings),
        avg_solar_power_kw=fmean(r.solar_power_kw for r in readings),
        avg_solar_efficiency_pct=_mean_or_none([r.solar_efficiency_pct for r in readings]),
        total_grid_energy_kwh=sum(r.grid_energy_kwh for r in readings),
        avg_grid_power_kw=fmean(r.grid_power_kw for r in readings),
        total_load_energy_kwh=sum(r.load_energy_kwh for r in readings),
        avg_load_power_kw=fmean(r.load_power_kw for r in readings),
        reading_count=len(readings),
    )


def daily_aggregate(
    site_id: int,
    day: date,
    hours: Sequence[HourlyAggregate],
    interval_minutes: float,
) -> DailyAggregate:
    """Roll one local day of hourly aggregates into a DailyAggregate.

    Uptime counts the minutes covered by readings (reading count times the
    tick length).
    """
    if not hours:
        raise ValueError("Cannot aggregate a day without hourly aggregates")

    return DailyAggregate(
        site_id=site_id,
        date=day,
        total_solar_energy_kwh=sum(h.total_solar_energy_kwh for h in hours),
        total_grid_energy_kwh=sum(h.total_grid_energy_kwh for h in hours),
        total_load_energy_kwh=sum(h.total_load_energy_kwh for h in hours),
        avg_battery_soc_pct=fmean(h.avg_battery_soc_pct for h in hours),
        min_battery_soc_pct=min(h.min_battery_soc_pct for h in hours),
        max_battery_soc_pct=max(h.max_battery_soc_pct for h in hours),
        avg_battery_temperature_c=fmean(h.avg_battery_temperature_c for h in hours),
        max_battery_temperature_c=max(h.max_battery_temperature_c for h in hours),
        avg_solar_efficiency_pct=_mean_or_none([h.avg_solar_efficiency_pct for h in hours]),
        uptime_minutes=int(round(sum(h.reading_count for h in hours) * interval_minutes)),
        hour_count=len(hours),
    )


class RollupAccumulator:
    """
    Accumulates one site's readings in timestamp order and emits an hourly
    aggregate whenever a local hour completes and a daily aggregate whenever
    a local day completes.
    """

    def __init__(self, site_id: int, tz: tzinfo, interval_minutes: float):
        self.site_id = site_id
        self.tz = tz
        self.interval_minutes = interval_minutes
        self._hour_key: Optional[datetime] = None
        self._hour_readings: list[TelemetryReading] = []
        self._day: Optional[date] = None
        self._day_hours: list[HourlyAggregate] = []

    def _bucket(self, reading: TelemetryReading) -> tuple[datetime, date]:
        local = reading.timestamp.astimezone(self.tz)
        hour_start = local.replace(minute=0, second=0, microsecond=0)
        return hour_start.astimezone(timezone.utc), local.date()

    def add(
        self, reading: TelemetryReading
    ) -> tuple[list[HourlyAggregate], list[DailyAggregate]]:
        """
        Add a reading.

        Returns:
            Tuple of (completed hourly aggregates, completed daily aggregates)
        """
        hour_key, day = self._bucket(reading)
        hourly: list[HourlyAggregate] = []
        daily: list[DailyAggregate] = []

        if self._hour_key is not None and hour_key != self._hour_key:
            hourly.append(self._close_hour())
        if self._day is not None and day != self._day:
            daily.append(self._close_day())

        self._hour_key = hour_key
        self._day = day
        self._hour_readings.append(reading)
        return hourly, daily

    def flush(self) -> tuple[list[HourlyAggregate], list[DailyAggregate]]:
        """Close the current (possibly partial) hour and day."""
        hourly: list[HourlyAggregate] = []
        daily: list[DailyAggregate] = []
        if self._hour_readings:
            hourly.append(self._close_hour())
        if self._day_hours:
            daily.append(self._close_day())
        self._hour_key = None
        self._day = None
        return hourly, daily

    def _close_hour(self) -> HourlyAggregate:
        aggregate = hourly_aggregate(self.site_id, self._hour_key, self._hour_readings)
        self._hour_readings = []
        self._day_hours.append(aggregate)
        return aggregate

    def _close_day(self) -> DailyAggregate:
        aggregate = daily_aggregate(
            self.site_id, self._day, self._day_hours, self.interval_minutes
        )
        self._day_hours = []
        return aggregate
