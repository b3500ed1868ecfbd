"""
Open-Meteo client for hourly historical and recent weather.

The archive endpoint lags real time by a few days, so windows touching the
recent past are served from the forecast endpoint instead.
"""

import logging
from datetime import date, datetime, timedelta
from typing import Optional
from zoneinfo import ZoneInfo

import requests

from bms_telemetry.errors import UpstreamUnavailable
from bms_telemetry.models import WeatherCondition, WeatherLocation, WeatherSample
from .sun import sun_times

logger = logging.getLogger(__name__)

ARCHIVE_URL = "https://archive-api.open-meteo.com/v1/archive"
FORECAST_URL = "https://api.open-meteo.com/v1/forecast"

HOURLY_FIELDS = (
    "temperature_2m",
    "relative_humidity_2m",
    "cloud_cover",
    "wind_speed_10m",
    "precipitation",
    "shortwave_radiation",
    "uv_index",
)

# Substituted for gaps (null values) in the upstream series
FIELD_DEFAULTS = {
    "temperature_2m": 20.0,
    "relative_humidity_2m": 50.0,
    "cloud_cover": 0.0,
    "wind_speed_10m": 0.0,
    "precipitation": 0.0,
    "shortwave_radiation": 0.0,
    "uv_index": 0.0,
}


class OpenMeteoClient:
    """Fetches hourly weather samples for a location and date range."""

    def __init__(
        self,
        timeout: float = 30.0,
        forecast_past_days: int = 5,
        session: Optional[requests.Session] = None,
    ):
        """
        Initialize the client.

        Args:
            timeout: Request timeout in seconds
            forecast_past_days: Days before today served by the forecast endpoint
            session: Optional requests session (a new one is created if None)
        """
        self.timeout = timeout
        self.forecast_past_days = forecast_past_days
        self._session = session or requests.Session()

    def fetch_hourly(
        self,
        location: WeatherLocation,
        start_date: date,
        end_date: date,
        today: Optional[date] = None,
    ) -> list[WeatherSample]:
        """
        Fetch hourly samples for whole local days from start_date to end_date.

        Args:
            location: Location to fetch weather for
            start_date: First local day (inclusive)
            end_date: Last local day (inclusive)
            today: Reference day for endpoint selection (defaults to today)

        Returns:
            Samples ordered by instant, with timezone-aware local instants

        Raises:
            UpstreamUnavailable: On network error, non-2xx status or a
                malformed payload
        """
        today = today or date.today()
        cutoff = today - timedelta(days=self.forecast_past_days)

        samples: list[WeatherSample] = []
        if start_date < cutoff:
            archive_end = min(end_date, cutoff - timedelta(days=1))
            samples.extend(self._request(ARCHIVE_URL, location, start_date, archive_end))
        if end_date >= cutoff:
            forecast_start = max(start_date, cutoff)
            samples.extend(self._request(FORECAST_URL, location, forecast_start, end_date))
        return samples

    def _request(
        self,
        url: str,
        location: WeatherLocation,
        start_date: date,
        end_date: date,
    ) -> list[WeatherSample]:
        params = {
            "latitude": location.latitude,
            "longitude": location.longitude,
            "start_date": start_date.isoformat(),
            "end_date": end_date.isoformat(),
            "hourly": ",".join(HOURLY_FIELDS),
            "timezone": location.timezone,
            "wind_speed_unit": "ms",
        }
        logger.debug("Requesting weather from %s for %s to %s", url, start_date, end_date)

        try:
            response = self._session.get(url, params=params, timeout=self.timeout)
            response.raise_for_status()
            payload = response.json()
        except requests.RequestException as e:
            raise UpstreamUnavailable(f"Weather request failed: {e}") from e
        except ValueError as e:
            raise UpstreamUnavailable(f"Weather response is not valid JSON: {e}") from e

        return self._parse(payload, location)

    def _parse(self, payload: dict, location: WeatherLocation) -> list[WeatherSample]:
        """Convert an Open-Meteo hourly payload into weather samples."""
        try:
            hourly = payload["hourly"]
            times = hourly["time"]
            series = {name: hourly[name] for name in HOURLY_FIELDS}
        except (KeyError, TypeError) as e:
            raise UpstreamUnavailable(f"Malformed weather payload: missing {e}") from e

        try:
            lengths_match = all(len(values) == len(times) for values in series.values())
        except TypeError as e:
            raise UpstreamUnavailable(f"Malformed weather payload: {e}") from e
        if not lengths_match:
            raise UpstreamUnavailable("Malformed weather payload: series lengths differ")

        tz = ZoneInfo(location.timezone)
        sun_by_day = {}
        samples = []

        for i, raw_time in enumerate(times):
            try:
                instant = datetime.fromisoformat(raw_time).replace(tzinfo=tz)
            except (TypeError, ValueError) as e:
                raise UpstreamUnavailable(f"Malformed weather timestamp {raw_time!r}") from e

            values = {}
            for name, column in series.items():
                value = column[i]
                try:
                    values[name] = FIELD_DEFAULTS[name] if value is None else float(value)
                except (TypeError, ValueError) as e:
                    raise UpstreamUnavailable(
                        f"Malformed weather value {name}={value!r} at {raw_time}"
                    ) from e

            day = instant.date()
            if day not in sun_by_day:
                sun_by_day[day] = sun_times(location.latitude, day, tz)
            sunrise, sunset = sun_by_day[day]

            samples.append(
                WeatherSample(
                    instant=instant,
                    temperature_c=values["temperature_2m"],
                    humidity_pct=values["relative_humidity_2m"],
                    cloud_cover_pct=values["cloud_cover"],
                    solar_irradiance_w_m2=max(0.0, values["shortwave_radiation"]),
                    wind_speed_ms=values["wind_speed_10m"],
                    precipitation_mm=values["precipitation"],
                    uv_index=values["uv_index"],
                    sunrise=sunrise,
                    sunset=sunset,
                    condition=WeatherCondition.classify(
                        values["cloud_cover"], values["precipitation"]
                    ),
                )
            )

        return samples
