"""
Continuous telemetry generation aligned to clock intervals.

One round per interval writes a reading for every target site. Rounds
never overlap: a round that overruns pushes the next one to the following
boundary.
"""

import logging
import signal
import threading
import time
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from bms_telemetry.config import REALTIME_INTERVALS, TelemetryConfig
from bms_telemetry.errors import InvalidConfiguration, PersistenceError, UpstreamUnavailable
from bms_telemetry.generator import SiteTelemetryGenerator, floor_to_interval, site_seed
from bms_telemetry.models import BatteryState, WeatherLocation, WeatherSample
from bms_telemetry.storage import TelemetryStore
from bms_telemetry.weather import WeatherProvider, interpolate

logger = logging.getLogger(__name__)


class IntervalScheduler:
    """
    Calls a function on clock-aligned interval boundaries until stopped.

    For example, with a 5 minute interval rounds fire at :00, :05, :10, etc.
    Waiting happens on a ``threading.Event`` so stop() wakes the loop
    immediately.
    """

    def __init__(self, interval_minutes: int, clock: Callable[[], float] = time.time):
        if interval_minutes <= 0:
            raise InvalidConfiguration("interval_minutes must be positive")
        self.interval_seconds = interval_minutes * 60
        self._clock = clock
        self._stop_event = threading.Event()

    @property
    def stopped(self) -> bool:
        return self._stop_event.is_set()

    def seconds_until_next(self) -> float:
        """Time until the next interval boundary."""
        now = self._clock()
        next_interval = (now // self.interval_seconds + 1) * self.interval_seconds
        return next_interval - now

    def run(self, round_fn: Callable[[], object], run_immediately: bool = True) -> None:
        """
        Run round_fn now (optionally) and then at every boundary.

        Returns once stop() has been called; a round in progress finishes first.
        """
        if run_immediately and not self.stopped:
            round_fn()
        while not self.stopped:
            if self._stop_event.wait(self.seconds_until_next()):
                break
            round_fn()

    def stop(self) -> None:
        self._stop_event.set()


class RealtimeRunner:
    """Runner for continuous generation across all target sites."""

    def __init__(
        self,
        store: TelemetryStore,
        weather: WeatherProvider,
        config: Optional[TelemetryConfig] = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
        scheduler: Optional[IntervalScheduler] = None,
    ) -> None:
        """Initialize the runner.

        Args:
            store: Telemetry store (sites in, readings out)
            weather: Weather provider
            config: Engine configuration (defaults if None)
            clock: Returns the current aware time (injectable for tests)
            scheduler: Round scheduler (built from the interval if None)
        """
        self.config = config or TelemetryConfig()
        self.interval_minutes = self.config.realtime.interval_minutes
        if self.interval_minutes not in REALTIME_INTERVALS:
            raise InvalidConfiguration(
                f"interval_minutes must be one of {REALTIME_INTERVALS}, "
                f"got {self.interval_minutes}"
            )
        self.store = store
        self.weather = weather
        self._clock = clock
        self.scheduler = scheduler or IntervalScheduler(self.interval_minutes)
        self.generators: dict[int, SiteTelemetryGenerator] = {}
        self._windows: dict[str, tuple[datetime, list[WeatherSample]]] = {}
        self._previous_excepthook = None
        self._previous_signal_handlers: dict = {}
        self._last_round: Optional[datetime] = None

    def _setup_signal_handlers(self) -> None:
        """Set up signal handlers for graceful shutdown."""
        if threading.current_thread() is not threading.main_thread():
            return
        for signum in (signal.SIGINT, signal.SIGTERM):
            self._previous_signal_handlers[signum] = signal.signal(signum, self._handle_signal)
        self._previous_excepthook = threading.excepthook
        threading.excepthook = self._handle_thread_exception

    def _restore_handlers(self) -> None:
        for signum, handler in self._previous_signal_handlers.items():
            if handler is not None:
                signal.signal(signum, handler)
        self._previous_signal_handlers.clear()
        if self._previous_excepthook is not None:
            threading.excepthook = self._previous_excepthook
            self._previous_excepthook = None

    def _handle_signal(self, signum: int, frame) -> None:
        """Handle shutdown signals."""
        logger.info("Received signal %d, finishing current round", signum)
        self.stop()

    def _handle_thread_exception(self, args) -> None:
        logger.error(
            "Uncaught exception in thread %s, shutting down",
            args.thread.name if args.thread else "?",
            exc_info=(args.exc_type, args.exc_value, args.exc_traceback),
        )
        self.stop()

    def start(self) -> int:
        """
        Load target sites and restore each battery from its latest reading.

        Returns:
            Number of sites prepared

        Raises:
            InvalidConfiguration: If no active site matches
        """
        sites = self.store.list_active_sites(self.config.site_ids or None)
        for site in sites:
            initial_state = None
            try:
                latest = self.store.find_latest_reading(site.id)
            except PersistenceError as e:
                logger.warning(
                    "Could not load latest reading for site %s, using defaults: %s",
                    site.id,
                    e,
                )
                latest = None
            if latest is not None:
                initial_state = BatteryState.from_reading(latest)
                logger.info(
                    "Restored site %s from %s (SoC %.1f%%)",
                    site.id,
                    latest.timestamp.isoformat(),
                    latest.battery_soc_pct,
                )
            else:
                logger.info(
                    "No previous reading for site %s, starting at SoC %.0f%%",
                    site.id,
                    self.config.battery.initial_soc * 100,
                )

            self.generators[site.id] = SiteTelemetryGenerator(
                site,
                battery_config=self.config.battery,
                interval_minutes=self.interval_minutes,
                solar_noise_percent=self.config.solar_noise_percent,
                load_noise_percent=self.config.load_noise_percent,
                initial_state=initial_state,
                seed=site_seed(self.config.seed, site.id),
            )

        if not self.generators:
            raise InvalidConfiguration("No active sites found")

        logger.info("Prepared %d sites for continuous generation", len(self.generators))
        return len(self.generators)

    def _weather_window(
        self, location: WeatherLocation, now: datetime
    ) -> tuple[list[WeatherSample], bool]:
        """
        Weather window around now for a location, refreshed at most hourly.

        Returns:
            Tuple of (samples, stale); stale is True when a refresh failed
            and the previous window is reused

        Raises:
            UpstreamUnavailable: If the first fetch for the location fails
        """
        weather_config = self.config.weather
        key = location.cache_key
        entry = self._windows.get(key)
        if entry is not None and now - entry[0] < timedelta(minutes=weather_config.refresh_minutes):
            return entry[1], False

        try:
            samples = self.weather.fetch(
                now - timedelta(hours=weather_config.lookback_hours),
                now + timedelta(hours=weather_config.lookahead_hours),
                location,
            )
        except UpstreamUnavailable as e:
            if entry is None:
                raise
            logger.warning(
                "Weather refresh for %s failed, reusing previous window: %s", key, e
            )
            return entry[1], True

        self._windows[key] = (now, samples)
        return samples, False

    def run_round(self) -> int:
        """
        Generate and store one reading per site.

        A failing site is logged and skipped; the others still get their
        reading. A round whose boundary is not after the previous round's
        (wall clock stepped back) writes nothing.

        Returns:
            Number of readings written
        """
        now = floor_to_interval(self._clock(), self.interval_minutes)
        if self._last_round is not None and now <= self._last_round:
            # Wall clock stepped back; this boundary was already generated
            logger.warning(
                "Skipping round at %s, not after previous round at %s",
                now.isoformat(),
                self._last_round.isoformat(),
            )
            return 0
        self._last_round = now
        written = 0

        for site_id, generator in self.generators.items():
            try:
                samples, stale = self._weather_window(generator.site.location, now)
                reading = generator.generate(
                    now,
                    interpolate(samples, now),
                    data_quality="estimated" if stale else "good",
                )
                self.store.insert_reading(reading)
                written += 1
                logger.debug(
                    "Site %s: SoC=%.1f%%, Solar=%.2fkW, Load=%.2fkW, Grid=%.2fkW",
                    site_id,
                    reading.battery_soc_pct,
                    reading.solar_power_kw,
                    reading.load_power_kw,
                    reading.grid_power_kw,
                )
            except (PersistenceError, UpstreamUnavailable) as e:
                logger.error("Site %s skipped this round: %s", site_id, e)
            except Exception as e:
                logger.exception("Unexpected error generating site %s: %s", site_id, e)

        logger.info(
            "Round at %s wrote %d/%d readings",
            now.isoformat(),
            written,
            len(self.generators),
        )
        return written

    def run(self) -> int:
        """
        Prepare sites and generate until stopped.

        Returns:
            Exit code (0 for a clean stop, 1 after an unexpected error)
        """
        self._setup_signal_handlers()
        logger.info("Starting continuous generation every %d minutes", self.interval_minutes)

        try:
            self.start()
            self.scheduler.run(self.run_round)
        except Exception as e:
            logger.exception("Continuous generation failed, shutting down: %s", e)
            return 1
        finally:
            self.stop()
            self._restore_handlers()

        logger.info("Continuous generation stopped")
        return 0

    def stop(self) -> None:
        """Request a graceful stop; the current round finishes first."""
        self.scheduler.stop()
