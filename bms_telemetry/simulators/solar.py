"""Solar production model driven by real weather samples."""

import math
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from bms_telemetry.errors import InvalidConfiguration
from bms_telemetry.models import Site, WeatherSample
from .base import BaseSimulator

REFERENCE_IRRADIANCE_W_M2 = 1000.0  # Standard Test Conditions
REFERENCE_TEMP_C = 25.0


@dataclass(frozen=True)
class SiteSolarConfig:
    """Solar array configuration, constant for a run."""

    panel_capacity_kw: float
    inverter_efficiency: float = 0.97
    tilt_orientation_factor: float = 1.0
    temperature_coefficient: float = -0.005  # -0.5% per degree C above 25
    system_losses: float = 0.14  # Wiring, soiling, shading

    def __post_init__(self) -> None:
        if self.panel_capacity_kw < 0:
            raise InvalidConfiguration("panel_capacity_kw must not be negative")
        if not 0 < self.inverter_efficiency <= 1:
            raise InvalidConfiguration("inverter_efficiency must be in the range (0, 1]")
        if not 0 <= self.system_losses < 1:
            raise InvalidConfiguration("system_losses must be in the range [0, 1)")
        if self.tilt_orientation_factor <= 0:
            raise InvalidConfiguration("tilt_orientation_factor must be positive")

    @classmethod
    def from_site(cls, site: Site) -> "SiteSolarConfig":
        """Derive the array configuration from a site's declared capacity."""
        return cls(panel_capacity_kw=site.solar_capacity_kw or 0.0)


class SolarProductionModel(BaseSimulator):
    """
    Converts a weather sample into expected AC solar power.

    Models:
    - Daylight window (no output outside sunrise to sunset)
    - Sun arc between sunrise and sunset
    - Irradiance relative to Standard Test Conditions
    - Panel temperature derating
    - Additional cloud cover losses
    - Inverter efficiency and system losses
    """

    def __init__(self, noise_percent: float = 5.0, seed: Optional[int] = None):
        """
        Initialize solar model.

        Args:
            noise_percent: Bounded random variation applied to output (+/-%)
            seed: Random seed for reproducibility
        """
        super().__init__(seed)
        self.noise_percent = noise_percent

    @staticmethod
    def sun_angle_factor(instant: datetime, sunrise: datetime, sunset: datetime) -> float:
        """
        Sun elevation factor (0-1) from the fraction of daylight elapsed.

        0 at sunrise and sunset, 1 at solar noon.
        """
        day_length = (sunset - sunrise).total_seconds()
        if day_length <= 0:
            return 0.0
        day_fraction = (instant - sunrise).total_seconds() / day_length
        return max(0.0, min(1.0, math.sin(math.pi * day_fraction)))

    @staticmethod
    def temperature_factor(temperature_c: float, coefficient: float) -> float:
        """Panel efficiency multiplier; panels lose output above 25C."""
        factor = 1 + coefficient * (temperature_c - REFERENCE_TEMP_C)
        return max(0.5, min(1.2, factor))

    @staticmethod
    def cloud_factor(cloud_cover_pct: float) -> float:
        """Up to 30% loss beyond the irradiance reduction clouds already cause."""
        return 1 - (max(0.0, min(100.0, cloud_cover_pct)) / 100) * 0.3

    def produce_power_kw(
        self,
        sample: WeatherSample,
        config: SiteSolarConfig,
        instant: datetime,
    ) -> float:
        """
        Calculate solar output for an instant.

        Args:
            sample: Weather at (or interpolated to) the instant
            config: Solar array configuration
            instant: The timestamp being simulated

        Returns:
            AC power in kW, within [0, panel_capacity_kw]
        """
        if instant < sample.sunrise or instant > sample.sunset:
            return 0.0
        if sample.solar_irradiance_w_m2 <= 0 or config.panel_capacity_kw <= 0:
            return 0.0

        capacity_factor = (
            (sample.solar_irradiance_w_m2 / REFERENCE_IRRADIANCE_W_M2)
            * self.sun_angle_factor(instant, sample.sunrise, sample.sunset)
            * self.temperature_factor(sample.temperature_c, config.temperature_coefficient)
            * self.cloud_factor(sample.cloud_cover_pct)
            * config.tilt_orientation_factor
        )
        power = (
            config.panel_capacity_kw
            * capacity_factor
            * config.inverter_efficiency
            * (1 - config.system_losses)
        )
        power = self._add_noise(power, self.noise_percent)
        return self._clamp(power, 0.0, config.panel_capacity_kw)

    @staticmethod
    def efficiency_percent(
        power_kw: float,
        sample: WeatherSample,
        config: SiteSolarConfig,
    ) -> Optional[float]:
        """
        Actual output as a percentage of the theoretical maximum for the
        current irradiance. None when the array is not producing.
        """
        if power_kw <= 0 or sample.solar_irradiance_w_m2 <= 0:
            return None
        theoretical_max = config.panel_capacity_kw * (
            sample.solar_irradiance_w_m2 / REFERENCE_IRRADIANCE_W_M2
        )
        if theoretical_max <= 0:
            return None
        return max(0.0, min(100.0, power_kw / theoretical_max * 100))

    def dc_voltage(self, power_kw: float, temperature_c: float) -> float:
        """
        Simplified string DC voltage.

        Voltage falls about 0.3% per degree C and sags slightly under load.
        """
        base_voltage = 520.0
        temp_factor = 1 - 0.003 * (temperature_c - REFERENCE_TEMP_C)
        load_factor = 0.98 if power_kw > 0 else 1.0
        return self._add_noise(base_voltage * temp_factor * load_factor, 1.0)

    @staticmethod
    def dc_current(power_kw: float, voltage_v: float) -> float:
        """I = P / V, in amps."""
        if voltage_v <= 0:
            return 0.0
        return power_kw * 1000 / voltage_v
