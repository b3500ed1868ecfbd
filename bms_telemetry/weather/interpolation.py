"""Point-in-time weather from an ordered hourly window."""

from bisect import bisect_right
from datetime import datetime
from typing import Sequence

from bms_telemetry.errors import InvalidRange
from bms_telemetry.models import WeatherSample


def _lerp(a: float, b: float, fraction: float) -> float:
    return a + (b - a) * fraction


def interpolate(samples: Sequence[WeatherSample], instant: datetime) -> WeatherSample:
    """
    Weather at an instant from samples ordered by time.

    Numeric fields are linearly interpolated between the bracketing samples.
    Condition, precipitation, sunrise and sunset are carried from the
    earlier sample. Instants outside the window clamp to the first or last
    sample, and an instant matching a sample returns that sample unchanged.

    Raises:
        InvalidRange: If samples is empty
    """
    if not samples:
        raise InvalidRange("Cannot interpolate weather from an empty window")

    if instant <= samples[0].instant:
        return samples[0]
    if instant >= samples[-1].instant:
        return samples[-1]

    index = bisect_right([s.instant for s in samples], instant)
    before = samples[index - 1]
    if before.instant == instant:
        return before
    after = samples[index]

    span = (after.instant - before.instant).total_seconds()
    fraction = (instant - before.instant).total_seconds() / span if span > 0 else 0.0

    return WeatherSample(
        instant=instant,
        temperature_c=_lerp(before.temperature_c, after.temperature_c, fraction),
        humidity_pct=_lerp(before.humidity_pct, after.humidity_pct, fraction),
        cloud_cover_pct=_lerp(before.cloud_cover_pct, after.cloud_cover_pct, fraction),
        solar_irradiance_w_m2=_lerp(
            before.solar_irradiance_w_m2, after.solar_irradiance_w_m2, fraction
        ),
        wind_speed_ms=_lerp(before.wind_speed_ms, after.wind_speed_ms, fraction),
        precipitation_mm=before.precipitation_mm,
        uv_index=_lerp(before.uv_index, after.uv_index, fraction),
        sunrise=before.sunrise,
        sunset=before.sunset,
        condition=before.condition,
    )
