"""Weather data models."""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class WeatherCondition(str, Enum):
    """Coarse weather classification derived from cloud cover and rain."""

    CLEAR = "clear"
    PARTLY_CLOUDY = "partly_cloudy"
    CLOUDY = "cloudy"
    RAINY = "rainy"
    STORMY = "stormy"

    @classmethod
    def classify(cls, cloud_cover_pct: float, precipitation_mm: float) -> "WeatherCondition":
        """Classify a sample from its cloud cover (%) and precipitation (mm)."""
        if precipitation_mm > 5:
            return cls.STORMY
        if precipitation_mm > 0:
            return cls.RAINY
        if cloud_cover_pct < 20:
            return cls.CLEAR
        if cloud_cover_pct < 60:
            return cls.PARTLY_CLOUDY
        return cls.CLOUDY


@dataclass(frozen=True)
class WeatherLocation:
    """Geographic location weather is fetched for."""

    latitude: float
    longitude: float
    timezone: str = "UTC"

    @property
    def cache_key(self) -> str:
        return f"{self.latitude:.4f}_{self.longitude:.4f}"


@dataclass(frozen=True)
class WeatherSample:
    """Ambient weather at one instant."""

    instant: datetime
    temperature_c: float
    humidity_pct: float
    cloud_cover_pct: float
    solar_irradiance_w_m2: float
    wind_speed_ms: float
    precipitation_mm: float
    uv_index: float
    sunrise: datetime
    sunset: datetime
    condition: WeatherCondition

    def to_dict(self) -> dict:
        return {
            "instant": self.instant.isoformat(),
            "temperature_c": self.temperature_c,
            "humidity_pct": self.humidity_pct,
            "cloud_cover_pct": self.cloud_cover_pct,
            "solar_irradiance_w_m2": self.solar_irradiance_w_m2,
            "wind_speed_ms": self.wind_speed_ms,
            "precipitation_mm": self.precipitation_mm,
            "uv_index": self.uv_index,
            "sunrise": self.sunrise.isoformat(),
            "sunset": self.sunset.isoformat(),
            "condition": self.condition.value,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "WeatherSample":
        """Create a WeatherSample from a dictionary produced by to_dict."""
        return cls(
            instant=datetime.fromisoformat(data["instant"]),
            temperature_c=float(data["temperature_c"]),
            humidity_pct=float(data["humidity_pct"]),
            cloud_cover_pct=float(data["cloud_cover_pct"]),
            solar_irradiance_w_m2=float(data["solar_irradiance_w_m2"]),
            wind_speed_ms=float(data["wind_speed_ms"]),
            precipitation_mm=float(data["precipitation_mm"]),
            uv_index=float(data["uv_index"]),
            sunrise=datetime.fromisoformat(data["sunrise"]),
            sunset=datetime.fromisoformat(data["sunset"]),
            condition=WeatherCondition(data["condition"]),
        )
