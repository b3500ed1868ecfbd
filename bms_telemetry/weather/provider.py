"""Weather provider combining the upstream client with the cache."""

import logging
from datetime import datetime, timezone
from typing import Optional
from zoneinfo import ZoneInfo

from bms_telemetry.errors import InvalidRange, UpstreamUnavailable
from bms_telemetry.models import WeatherLocation, WeatherSample
from .cache import WeatherCache
from .client import OpenMeteoClient
from .interpolation import interpolate

logger = logging.getLogger(__name__)


def _aware(instant: datetime) -> datetime:
    """Treat naive datetimes as UTC."""
    if instant.tzinfo is None:
        return instant.replace(tzinfo=timezone.utc)
    return instant


class WeatherProvider:
    """
    Supplies hourly weather for a location and time window.

    Windows are fetched as whole local days and cached per
    (location, start day, end day); the returned samples are trimmed to the
    requested range plus one bracketing sample on each side.
    """

    def __init__(
        self,
        client: Optional[OpenMeteoClient] = None,
        cache: Optional[WeatherCache] = None,
        default_location: Optional[WeatherLocation] = None,
    ):
        self.client = client or OpenMeteoClient()
        self.cache = cache or WeatherCache()
        self.default_location = default_location

    @staticmethod
    def cache_key(location: WeatherLocation, start: datetime, end: datetime) -> str:
        return f"{location.cache_key}_{start.date().isoformat()}_{end.date().isoformat()}"

    def fetch(
        self,
        start: datetime,
        end: datetime,
        location: Optional[WeatherLocation] = None,
    ) -> list[WeatherSample]:
        """
        Fetch hourly samples covering [start, end].

        Args:
            start: Window start (naive values are taken as UTC)
            end: Window end, strictly after start
            location: Location to fetch for (defaults to default_location)

        Returns:
            Samples ordered by instant

        Raises:
            InvalidRange: If start >= end or no location is known
            UpstreamUnavailable: If the upstream fails on a cache miss
        """
        start, end = _aware(start), _aware(end)
        if start >= end:
            raise InvalidRange(f"Weather window start {start} must be before end {end}")

        location = location or self.default_location
        if location is None:
            raise InvalidRange("No weather location given and no default configured")

        tz = ZoneInfo(location.timezone)
        local_start, local_end = start.astimezone(tz), end.astimezone(tz)
        key = self.cache_key(location, local_start, local_end)

        samples = self.cache.get(key)
        if samples is None:
            logger.info(
                "Fetching weather for %s from %s to %s",
                location.cache_key,
                local_start.date(),
                local_end.date(),
            )
            samples = sorted(
                self.client.fetch_hourly(location, local_start.date(), local_end.date()),
                key=lambda s: s.instant,
            )
            if not samples:
                raise UpstreamUnavailable(f"No weather samples returned for {key}")
            self.cache.put(key, samples)

        return self._trim(samples, start, end)

    @staticmethod
    def _trim(samples: list[WeatherSample], start: datetime, end: datetime) -> list[WeatherSample]:
        """Keep samples inside [start, end] plus the neighbours bracketing it."""
        first = 0
        while first + 1 < len(samples) and samples[first + 1].instant <= start:
            first += 1
        last = len(samples) - 1
        while last - 1 >= 0 and samples[last - 1].instant >= end:
            last -= 1
        return samples[first:last + 1]

    def sample_at(self, samples: list[WeatherSample], instant: datetime) -> WeatherSample:
        """Weather at an instant within a fetched window."""
        return interpolate(samples, _aware(instant))
