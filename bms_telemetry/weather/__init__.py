"""Weather acquisition, caching and interpolation."""

from .cache import WeatherCache
from .client import OpenMeteoClient
from .interpolation import interpolate
from .provider import WeatherProvider
from .sun import day_length_hours, sun_times

__all__ = [
    "OpenMeteoClient",
    "WeatherCache",
    "WeatherProvider",
    "day_length_hours",
    "interpolate",
    "sun_times",
]
