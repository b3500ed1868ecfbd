"""Site description supplied by the external site registry."""

from dataclasses import asdict, dataclass
from typing import Optional

from .weather import WeatherLocation


@dataclass(frozen=True)
class Site:
    """A power site with solar, battery and a consumption profile."""

    id: int
    name: str
    latitude: float
    longitude: float
    timezone: str = "Africa/Johannesburg"
    solar_capacity_kw: float = 0.0
    battery_capacity_kwh: float = 50.0
    daily_consumption_kwh: float = 65.0
    nominal_voltage: float = 500.0
    status: str = "active"

    @property
    def location(self) -> WeatherLocation:
        return WeatherLocation(self.latitude, self.longitude, self.timezone)

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "Site":
        """Create a Site from a registry row or config entry.

        Missing or null capacities fall back to the registry defaults
        (50 kWh battery, 65 kWh/day consumption, 500 V nominal).
        """

        def _value(key: str, default: Optional[float]) -> Optional[float]:
            value = data.get(key)
            return default if value is None else float(value)

        try:
            return cls(
                id=int(data["id"]),
                name=str(data.get("name") or f"site-{data['id']}"),
                latitude=float(data["latitude"]),
                longitude=float(data["longitude"]),
                timezone=data.get("timezone") or "Africa/Johannesburg",
                solar_capacity_kw=_value("solar_capacity_kw", 0.0),
                battery_capacity_kwh=_value("battery_capacity_kwh", 50.0),
                daily_consumption_kwh=_value("daily_consumption_kwh", 65.0),
                nominal_voltage=_value("nominal_voltage", 500.0),
                status=data.get("status") or "active",
            )
        except (KeyError, TypeError) as e:
            raise ValueError(f"Invalid site definition: {e}") from e
