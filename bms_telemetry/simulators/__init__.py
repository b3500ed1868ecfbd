"""Physical models for site solar, load and battery."""

from .battery import BatterySimulator
from .load import LoadDemandModel, LoadProfile, SiteType
from .solar import SiteSolarConfig, SolarProductionModel

__all__ = [
    "BatterySimulator",
    "LoadDemandModel",
    "LoadProfile",
    "SiteSolarConfig",
    "SiteType",
    "SolarProductionModel",
]
