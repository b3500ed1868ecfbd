"""Site load demand model with time-of-use and temperature patterns."""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional

from bms_telemetry.errors import InvalidConfiguration
from bms_telemetry.models import Site, WeatherSample
from .base import BaseSimulator

AC_THRESHOLD_C = 25.0

PEAK_FACTOR = 1.0
SHOULDER_FACTOR = 0.7
OFF_PEAK_FACTOR = 0.4


class SiteType(str, Enum):
    RESIDENTIAL = "residential"
    COMMERCIAL = "commercial"
    INDUSTRIAL = "industrial"

    @classmethod
    def infer(cls, daily_consumption_kwh: float) -> "SiteType":
        """Infer the site type from its declared daily consumption."""
        if daily_consumption_kwh < 70:
            return cls.RESIDENTIAL
        if daily_consumption_kwh < 120:
            return cls.COMMERCIAL
        return cls.INDUSTRIAL


# Hour buckets, weekend factor, temperature sensitivity (kW per C above 25)
# and base/peak multipliers of average load, per site type.
_PROFILE_TEMPLATES = {
    SiteType.RESIDENTIAL: {
        "peak_hours": frozenset({7, 8, 18, 19, 20, 21}),
        "shoulder_hours": frozenset({6, 9, 17, 22}),
        "weekend_factor": 1.2,
        "temperature_sensitivity_kw_per_c": 0.15,
        "base_factor": 0.3,
        "peak_factor": 3.0,
    },
    SiteType.COMMERCIAL: {
        "peak_hours": frozenset(range(9, 17)),
        "shoulder_hours": frozenset({8, 17}),
        "weekend_factor": 0.3,
        "temperature_sensitivity_kw_per_c": 0.25,
        "base_factor": 0.2,
        "peak_factor": 2.5,
    },
    SiteType.INDUSTRIAL: {
        "peak_hours": frozenset(range(8, 17)),
        "shoulder_hours": frozenset({7, 17, 18}),
        "weekend_factor": 0.5,
        "temperature_sensitivity_kw_per_c": 0.05,
        "base_factor": 0.7,
        "peak_factor": 1.5,
    },
}


@dataclass(frozen=True)
class LoadProfile:
    """Consumption profile of a site, constant for a run."""

    base_load_kw: float
    peak_load_kw: float
    peak_hours: frozenset
    shoulder_hours: frozenset
    off_peak_hours: frozenset
    weekend_factor: float
    temperature_sensitivity_kw_per_c: float

    def __post_init__(self) -> None:
        if self.base_load_kw < 0 or self.peak_load_kw < self.base_load_kw:
            raise InvalidConfiguration(
                "Load bounds must satisfy 0 <= base_load_kw <= peak_load_kw"
            )
        for hours in (self.peak_hours, self.shoulder_hours, self.off_peak_hours):
            if any(not 0 <= h <= 23 for h in hours):
                raise InvalidConfiguration("Profile hours must be in the range 0-23")

    @classmethod
    def from_daily_consumption(
        cls,
        daily_consumption_kwh: float,
        site_type: Optional[SiteType] = None,
    ) -> "LoadProfile":
        """
        Build a profile from declared daily consumption.

        Args:
            daily_consumption_kwh: Declared consumption per day
            site_type: Explicit site type (inferred from consumption if None)
        """
        daily = daily_consumption_kwh or 65.0
        avg_load_kw = daily / 24
        template = _PROFILE_TEMPLATES[site_type or SiteType.infer(daily)]
        peak_hours = template["peak_hours"]
        shoulder_hours = template["shoulder_hours"]
        return cls(
            base_load_kw=avg_load_kw * template["base_factor"],
            peak_load_kw=avg_load_kw * template["peak_factor"],
            peak_hours=peak_hours,
            shoulder_hours=shoulder_hours,
            off_peak_hours=frozenset(range(24)) - peak_hours - shoulder_hours,
            weekend_factor=template["weekend_factor"],
            temperature_sensitivity_kw_per_c=template["temperature_sensitivity_kw_per_c"],
        )

    @classmethod
    def from_site(cls, site: Site, site_type: Optional[SiteType] = None) -> "LoadProfile":
        return cls.from_daily_consumption(site.daily_consumption_kwh, site_type)

    def time_of_day_factor(self, hour: int) -> float:
        if hour in self.peak_hours:
            return PEAK_FACTOR
        if hour in self.shoulder_hours:
            return SHOULDER_FACTOR
        return OFF_PEAK_FACTOR


class LoadDemandModel(BaseSimulator):
    """
    Simulates site electrical demand.

    Models:
    - Peak / shoulder / off-peak hour buckets
    - Weekend vs weekday differences
    - Air-conditioning load above 25C
    - Bounded random variation
    """

    def __init__(self, noise_percent: float = 10.0, seed: Optional[int] = None):
        """
        Initialize load model.

        Args:
            noise_percent: Bounded random variation applied to demand (+/-%)
            seed: Random seed for reproducibility
        """
        super().__init__(seed)
        self.noise_percent = noise_percent

    @staticmethod
    def _is_weekend(instant: datetime) -> bool:
        return instant.weekday() >= 5

    def demand_kw(
        self,
        profile: LoadProfile,
        sample: WeatherSample,
        instant: datetime,
    ) -> float:
        """
        Calculate load demand for an instant.

        The hour and weekday are read from ``instant`` as given, so callers
        pass it in the site's local time.

        Args:
            profile: Site load profile
            sample: Weather at the instant (temperature drives AC load)
            instant: Local timestamp being simulated

        Returns:
            Demand in kW (>= 0)
        """
        tod_factor = profile.time_of_day_factor(instant.hour)
        base_load = (
            profile.base_load_kw
            + (profile.peak_load_kw - profile.base_load_kw) * tod_factor
        )

        temp_excess = max(0.0, sample.temperature_c - AC_THRESHOLD_C)
        temp_load = profile.temperature_sensitivity_kw_per_c * temp_excess

        weekend_factor = profile.weekend_factor if self._is_weekend(instant) else 1.0
        total = (base_load + temp_load) * weekend_factor

        return max(0.0, self._add_noise(total, self.noise_percent))
