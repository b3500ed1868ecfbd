"""
Telemetry generator - per-site tick pipeline and historical backfill.

Each tick runs Weather -> Solar -> Load -> Battery and flattens the result
into a TelemetryReading.
"""

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional, Sequence
from zoneinfo import ZoneInfo

from bms_telemetry.aggregation import RollupAccumulator
from bms_telemetry.config import BatteryConfig, TelemetryConfig
from bms_telemetry.errors import InvalidRange, PersistenceError, UpstreamUnavailable
from bms_telemetry.models import (
    BatteryState,
    DailyAggregate,
    HourlyAggregate,
    Site,
    TelemetryReading,
    WeatherSample,
)
from bms_telemetry.simulators import (
    BatterySimulator,
    LoadDemandModel,
    LoadProfile,
    SiteSolarConfig,
    SolarProductionModel,
)
from bms_telemetry.simulators.base import BaseSimulator
from bms_telemetry.storage import TelemetryStore
from bms_telemetry.weather import WeatherProvider, interpolate

logger = logging.getLogger(__name__)

GRID_NOMINAL_VOLTAGE_V = 230.0
GRID_NOMINAL_FREQUENCY_HZ = 50.0
INVERTER_WARNING_TEMP_C = 60.0
BATTERY_WARNING_TEMP_C = 45.0


def site_seed(seed: Optional[int], site_id: int) -> Optional[int]:
    """Derive a distinct, reproducible seed for each site."""
    return None if seed is None else seed + site_id * 100


def floor_to_interval(instant: datetime, interval_minutes: int) -> datetime:
    """Round an aware datetime down to the previous interval boundary."""
    interval = interval_minutes * 60
    epoch = instant.timestamp()
    return datetime.fromtimestamp(epoch // interval * interval, tz=timezone.utc)


class SiteTelemetryGenerator(BaseSimulator):
    """
    Generates telemetry readings for one site, tick by tick.

    Owns the site's solar, load and battery models; the battery carries its
    state from one tick to the next. Grid and inverter metrics get their
    own bounded noise.
    """

    def __init__(
        self,
        site: Site,
        battery_config: Optional[BatteryConfig] = None,
        interval_minutes: int = 5,
        solar_noise_percent: float = 5.0,
        load_noise_percent: float = 10.0,
        initial_state: Optional[BatteryState] = None,
        seed: Optional[int] = None,
    ):
        """
        Initialize the site generator.

        Args:
            site: Site being simulated
            battery_config: Battery behavior (defaults if None)
            interval_minutes: Tick length in minutes
            solar_noise_percent: Solar output variation (+/-%)
            load_noise_percent: Load demand variation (+/-%)
            initial_state: Battery state to start from (config defaults if None)
            seed: Random seed for reproducibility
        """
        super().__init__(seed)
        self.site = site
        self.tz = ZoneInfo(site.timezone)
        self.interval_minutes = interval_minutes

        self.solar_config = SiteSolarConfig.from_site(site)
        self.load_profile = LoadProfile.from_site(site)

        self.solar = SolarProductionModel(
            noise_percent=solar_noise_percent,
            seed=seed + 1 if seed is not None else None,
        )
        self.load = LoadDemandModel(
            noise_percent=load_noise_percent,
            seed=seed + 2 if seed is not None else None,
        )

        battery_config = battery_config or BatteryConfig()
        if initial_state is None:
            initial_state = BatteryState(
                soc_fraction=battery_config.initial_soc,
                voltage_v=site.nominal_voltage,
                current_a=0.0,
                temperature_c=25.0,
                health_pct=battery_config.initial_health_pct,
            )
        self.battery = BatterySimulator(
            capacity_kwh=site.battery_capacity_kwh,
            nominal_voltage=site.nominal_voltage,
            interval_minutes=interval_minutes,
            initial_state=initial_state,
            **battery_config.simulator_kwargs(),
        )

    def _inverter_metrics(self, power_kw: float, ambient_c: float) -> tuple:
        """Efficiency, temperature and status for one inverter."""
        rated_kw = max(self.solar_config.panel_capacity_kw / 2, 0.001)
        loading = min(1.0, power_kw / rated_kw)
        temperature = self._add_noise(ambient_c + 5 + loading * 15, 2.0)

        if power_kw <= 0:
            return None, temperature, "standby"
        efficiency = self._clamp(
            self._add_noise(self.solar_config.inverter_efficiency * 100, 1.0), 0.0, 100.0
        )
        status = "warning" if temperature > INVERTER_WARNING_TEMP_C else "online"
        return efficiency, temperature, status

    def _system_status(
        self,
        state: BatteryState,
        unmet_load_kw: float,
        inverter_statuses: Sequence[str],
    ) -> str:
        if unmet_load_kw > 0:
            return "critical"
        if (
            state.soc_fraction <= self.battery.reserve_soc + 0.05
            or state.temperature_c > BATTERY_WARNING_TEMP_C
            or "warning" in inverter_statuses
        ):
            return "warning"
        return "normal"

    def generate(
        self,
        timestamp: datetime,
        weather: WeatherSample,
        grid_available: bool = True,
        data_quality: str = "good",
    ) -> TelemetryReading:
        """
        Generate the reading for one tick.

        Args:
            timestamp: Aware tick timestamp
            weather: Weather at the timestamp
            grid_available: Whether the grid is connected this tick
            data_quality: Quality flag stored with the reading

        Returns:
            TelemetryReading for the site at timestamp
        """
        local = timestamp.astimezone(self.tz)
        hours = self.interval_minutes / 60

        solar_kw = self.solar.produce_power_kw(weather, self.solar_config, local)
        load_kw = self.load.demand_kw(self.load_profile, weather, local)
        result = self.battery.simulate(
            solar_kw, load_kw, weather.temperature_c, grid_available=grid_available
        )
        state = result.state

        solar_voltage = self.solar.dc_voltage(solar_kw, weather.temperature_c)
        inverter_kw = solar_kw / 2
        inv1_eff, inv1_temp, inv1_status = self._inverter_metrics(inverter_kw, weather.temperature_c)
        inv2_eff, inv2_temp, inv2_status = self._inverter_metrics(inverter_kw, weather.temperature_c)

        if grid_available:
            grid_voltage = GRID_NOMINAL_VOLTAGE_V + self._random.uniform(-5, 5)
            grid_frequency = GRID_NOMINAL_FREQUENCY_HZ + self._random.uniform(-0.1, 0.1)
        else:
            grid_voltage = 0.0
            grid_frequency = 0.0
        grid_power_kw = result.grid_import_kw - result.grid_export_kw

        return TelemetryReading(
            site_id=self.site.id,
            timestamp=timestamp,
            battery_voltage_v=state.voltage_v,
            battery_current_a=state.current_a,
            battery_soc_pct=state.soc_fraction * 100,
            battery_temperature_c=state.temperature_c,
            battery_health_pct=state.health_pct,
            battery_power_kw=result.battery_power_kw,
            battery_mode=result.mode.value,
            solar_power_kw=solar_kw,
            solar_energy_kwh=solar_kw * hours,
            solar_efficiency_pct=self.solar.efficiency_percent(
                solar_kw, weather, self.solar_config
            ),
            solar_voltage_v=solar_voltage,
            solar_current_a=self.solar.dc_current(solar_kw, solar_voltage),
            inverter1_power_kw=inverter_kw,
            inverter1_efficiency_pct=inv1_eff,
            inverter1_temperature_c=inv1_temp,
            inverter1_status=inv1_status,
            inverter2_power_kw=inverter_kw,
            inverter2_efficiency_pct=inv2_eff,
            inverter2_temperature_c=inv2_temp,
            inverter2_status=inv2_status,
            grid_voltage_v=grid_voltage,
            grid_frequency_hz=grid_frequency,
            grid_power_kw=grid_power_kw,
            grid_import_kw=result.grid_import_kw,
            grid_export_kw=result.grid_export_kw,
            grid_energy_kwh=grid_power_kw * hours,
            grid_available=grid_available,
            load_power_kw=load_kw,
            load_energy_kwh=load_kw * hours,
            unmet_load_kw=result.unmet_load_kw,
            ambient_temperature_c=weather.temperature_c,
            weather_condition=weather.condition.value,
            system_status=self._system_status(
                state, result.unmet_load_kw, (inv1_status, inv2_status)
            ),
            data_quality=data_quality,
        )


@dataclass
class BackfillSummary:
    """What a backfill run completed before finishing or aborting."""

    start: datetime
    end: datetime
    sites_completed: list[int] = field(default_factory=list)
    sites_skipped: list[int] = field(default_factory=list)
    readings_written: int = 0
    hourly_written: int = 0
    daily_written: int = 0
    failed_site: Optional[int] = None
    error: Optional[str] = None

    @property
    def aborted(self) -> bool:
        return self.error is not None

    def to_dict(self) -> dict:
        return {
            "start": self.start.isoformat(),
            "end": self.end.isoformat(),
            "sites_completed": self.sites_completed,
            "sites_skipped": self.sites_skipped,
            "readings_written": self.readings_written,
            "hourly_written": self.hourly_written,
            "daily_written": self.daily_written,
            "aborted": self.aborted,
            "failed_site": self.failed_site,
            "error": self.error,
        }


class BackfillRunner:
    """
    Regenerates historical telemetry for every active site.

    For each site: delete the existing range, fetch weather, simulate every
    tick in order, write readings in batches and write hourly/daily
    aggregates once the readings they cover are stored. Persistence failures
    are retried a bounded number of times, then the whole run aborts.
    """

    def __init__(
        self,
        store: TelemetryStore,
        weather: WeatherProvider,
        config: Optional[TelemetryConfig] = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Initialize the runner.

        Args:
            store: Telemetry store (sites in, readings and aggregates out)
            weather: Weather provider
            config: Engine configuration (defaults if None)
            clock: Returns the current aware time (injectable for tests)
            sleep: Sleep function used between retries (injectable for tests)
        """
        self.store = store
        self.weather = weather
        self.config = config or TelemetryConfig()
        self._clock = clock
        self._sleep = sleep

    def _with_retry(self, action: str, func: Callable, *args):
        """Call func, retrying PersistenceError up to max_retries attempts."""
        max_retries = self.config.backfill.max_retries
        for attempt in range(1, max_retries + 1):
            try:
                return func(*args)
            except PersistenceError as e:
                logger.warning(
                    "%s failed (attempt %d/%d): %s", action, attempt, max_retries, e
                )
                if attempt == max_retries:
                    logger.error("%s failed after %d attempts", action, max_retries)
                    raise
                self._sleep(self.config.backfill.retry_delay_seconds)

    def run(self, days: Optional[int] = None) -> BackfillSummary:
        """
        Backfill the last ``days`` days for all active sites.

        Args:
            days: Number of days to regenerate (config default if None)

        Returns:
            BackfillSummary of completed work; ``aborted`` is set when a
            persistence failure outlived its retries

        Raises:
            InvalidRange: If days is not a positive integer
        """
        days = self.config.backfill.days if days is None else days
        if not isinstance(days, int) or days <= 0:
            raise InvalidRange(f"days must be a positive integer, got {days!r}")

        interval = self.config.backfill.interval_minutes
        end = floor_to_interval(self._clock(), interval)
        start = end - timedelta(days=days)
        summary = BackfillSummary(start=start, end=end)

        logger.info("Starting backfill of %d days (%s to %s)", days, start, end)

        try:
            sites = self._with_retry(
                "List active sites",
                self.store.list_active_sites,
                self.config.site_ids or None,
            )
        except PersistenceError as e:
            summary.error = str(e)
            return summary

        logger.info("Backfilling %d sites", len(sites))

        for site in sites:
            try:
                self._backfill_site(site, start, end, summary)
            except UpstreamUnavailable as e:
                logger.error("Skipping site %s, weather unavailable: %s", site.id, e)
                summary.sites_skipped.append(site.id)
                continue
            except PersistenceError as e:
                logger.error("Aborting backfill at site %s: %s", site.id, e)
                summary.failed_site = site.id
                summary.error = str(e)
                break
            summary.sites_completed.append(site.id)

        logger.info(
            "Backfill %s: %d sites, %d readings, %d hourly, %d daily aggregates",
            "aborted" if summary.aborted else "completed",
            len(summary.sites_completed),
            summary.readings_written,
            summary.hourly_written,
            summary.daily_written,
        )
        return summary

    def _backfill_site(
        self,
        site: Site,
        start: datetime,
        end: datetime,
        summary: BackfillSummary,
    ) -> None:
        backfill = self.config.backfill
        logger.info("Backfilling site %s (%s)", site.id, site.name)

        samples = self.weather.fetch(start, end, site.location)
        self._with_retry(
            f"Delete telemetry for site {site.id}",
            self.store.delete_site_telemetry,
            site.id,
            start,
            end,
        )

        generator = SiteTelemetryGenerator(
            site,
            battery_config=self.config.battery,
            interval_minutes=backfill.interval_minutes,
            solar_noise_percent=self.config.solar_noise_percent,
            load_noise_percent=self.config.load_noise_percent,
            seed=site_seed(self.config.seed, site.id),
        )
        rollup = RollupAccumulator(site.id, generator.tz, backfill.interval_minutes)

        batch: list[TelemetryReading] = []
        pending_hourly: list[HourlyAggregate] = []
        pending_daily: list[DailyAggregate] = []

        def flush() -> None:
            if batch:
                summary.readings_written += self._with_retry(
                    f"Insert {len(batch)} readings for site {site.id}",
                    self.store.insert_readings,
                    list(batch),
                )
                batch.clear()
            if pending_hourly:
                summary.hourly_written += self._with_retry(
                    f"Insert hourly aggregates for site {site.id}",
                    self.store.insert_aggregates,
                    "hourly",
                    list(pending_hourly),
                )
                pending_hourly.clear()
            if pending_daily:
                summary.daily_written += self._with_retry(
                    f"Insert daily aggregates for site {site.id}",
                    self.store.insert_aggregates,
                    "daily",
                    list(pending_daily),
                )
                pending_daily.clear()

        step = timedelta(minutes=backfill.interval_minutes)
        current = start
        while current <= end:
            reading = generator.generate(current, interpolate(samples, current))
            batch.append(reading)
            hourly, daily = rollup.add(reading)
            pending_hourly.extend(hourly)
            pending_daily.extend(daily)
            if len(batch) >= backfill.batch_size:
                flush()
            current += step

        hourly, daily = rollup.flush()
        pending_hourly.extend(hourly)
        pending_daily.extend(daily)
        flush()

        logger.info(
            "Site %s done, final SoC %.1f%%",
            site.id,
            generator.battery.state.soc_fraction * 100,
        )
