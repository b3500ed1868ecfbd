"""Approximate sunrise and sunset times from latitude and day of year."""

import math
from datetime import date, datetime, time, timedelta, tzinfo


def day_length_hours(latitude: float, day_of_year: int) -> tuple[float, float]:
    """
    Calculate sunrise and sunset hours for the given day.

    Solar noon is taken as 12:00 local time; polar day and night clamp the
    hour angle so the day length stays within 0-24 hours.

    Returns:
        Tuple of (sunrise_hour, sunset_hour) in decimal hours
    """
    lat_rad = math.radians(latitude)

    # Solar declination angle
    declination = 23.45 * math.sin(math.radians((360 / 365) * (day_of_year - 81)))
    decl_rad = math.radians(declination)

    # Hour angle at sunrise/sunset
    cos_hour_angle = -math.tan(lat_rad) * math.tan(decl_rad)
    cos_hour_angle = max(-1.0, min(1.0, cos_hour_angle))
    hour_angle = math.degrees(math.acos(cos_hour_angle))

    day_length = 2 * hour_angle / 15
    return 12 - day_length / 2, 12 + day_length / 2


def sun_times(latitude: float, day: date, tz: tzinfo) -> tuple[datetime, datetime]:
    """Sunrise and sunset for a local calendar day as aware datetimes."""
    sunrise_hour, sunset_hour = day_length_hours(latitude, day.timetuple().tm_yday)
    midnight = datetime.combine(day, time.min, tzinfo=tz)
    return (
        midnight + timedelta(hours=sunrise_hour),
        midnight + timedelta(hours=sunset_hour),
    )
