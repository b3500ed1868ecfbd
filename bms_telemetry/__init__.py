"""
BMS Telemetry - Weather-driven telemetry simulation for battery power sites

This package provides realistic simulation of:
- Battery state of charge, voltage, current, temperature and health
- Solar production from real hourly weather
- Site load demand from consumption profiles
- Grid import/export needed to balance each site

Readings are produced either as a historical backfill or by a continuous
real-time generator, and persisted to Supabase or InfluxDB.
"""

__all__ = ["__version__"]
__version__ = "0.3.0"
