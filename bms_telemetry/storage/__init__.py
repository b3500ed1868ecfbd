"""Storage backends for telemetry readings and aggregates."""

from typing import Sequence

from bms_telemetry.errors import InvalidConfiguration
from bms_telemetry.models import Site
from .base import AGGREGATE_KINDS, TelemetryStore
from .influxdb_store import INFLUXDB_AVAILABLE, InfluxDBConfig, InfluxDBTelemetryStore
from .supabase_store import SUPABASE_AVAILABLE, SupabaseConfig, SupabaseTelemetryStore

BACKENDS = ("supabase", "influxdb")


def create_store(
    backend: str,
    supabase: SupabaseConfig,
    influxdb: InfluxDBConfig,
    sites: Sequence[Site] = (),
) -> TelemetryStore:
    """Build the configured telemetry store."""
    if backend == "supabase":
        return SupabaseTelemetryStore(supabase)
    if backend == "influxdb":
        return InfluxDBTelemetryStore(influxdb, sites)
    raise InvalidConfiguration(f"Unknown storage backend {backend!r}, expected one of {BACKENDS}")


__all__ = [
    "AGGREGATE_KINDS",
    "BACKENDS",
    "INFLUXDB_AVAILABLE",
    "InfluxDBConfig",
    "InfluxDBTelemetryStore",
    "SUPABASE_AVAILABLE",
    "SupabaseConfig",
    "SupabaseTelemetryStore",
    "TelemetryStore",
    "create_store",
]
