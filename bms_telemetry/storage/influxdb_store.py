"""InfluxDB persistence for telemetry readings and aggregates.

Sites have no registry in InfluxDB, so this store serves the sites listed
in the configuration file. Readings are written to the ``telemetry``
measurement tagged by ``site_id``; rollups go to ``telemetry_hourly`` and
``telemetry_daily``.
"""

import logging
import os
from dataclasses import dataclass
from datetime import datetime, time, timezone
from typing import Iterable, Optional, Sequence

from bms_telemetry.errors import InvalidConfiguration, PersistenceError
from bms_telemetry.models import DailyAggregate, Site, TelemetryReading
from .base import AGGREGATE_KINDS, Aggregate, TelemetryStore

logger = logging.getLogger(__name__)

# InfluxDB client imports - these are optional dependencies
try:
    from influxdb_client import InfluxDBClient, Point
    from influxdb_client.client.write_api import SYNCHRONOUS

    INFLUXDB_AVAILABLE = True
except ImportError:
    INFLUXDB_AVAILABLE = False
    InfluxDBClient = None  # type: ignore
    Point = None  # type: ignore
    SYNCHRONOUS = None  # type: ignore


@dataclass
class InfluxDBConfig:
    """Configuration for InfluxDB connection.

    Supports environment variable overrides:
    - INFLUXDB_URL: Server URL
    - INFLUXDB_TOKEN: Authentication token
    - INFLUXDB_ORG: Organization name
    - INFLUXDB_BUCKET: Bucket name

    Attributes:
        url: InfluxDB server URL (e.g., "http://localhost:8086")
        token: Authentication token for InfluxDB
        org: Organization name in InfluxDB
        bucket: Bucket name for storing telemetry
        batch_size: Number of points to batch before writing (default: 1)
        flush_interval_ms: Milliseconds between batch flushes (default: 1000)
    """

    url: str = "http://localhost:8086"
    token: str = ""
    org: str = "bms-telemetry"
    bucket: str = "telemetry"
    batch_size: int = 1
    flush_interval_ms: int = 1000

    def __post_init__(self) -> None:
        """Apply environment variable overrides only when values are at defaults.

        Precedence: explicit args > env vars > defaults
        """
        if self.url == "http://localhost:8086":
            self.url = os.environ.get("INFLUXDB_URL", self.url)
        if self.token == "":
            self.token = os.environ.get("INFLUXDB_TOKEN", self.token)
        if self.org == "bms-telemetry":
            self.org = os.environ.get("INFLUXDB_ORG", self.org)
        if self.bucket == "telemetry":
            self.bucket = os.environ.get("INFLUXDB_BUCKET", self.bucket)


def _field_value(value):
    """Keep field types stable across writes (ints stored as floats)."""
    if isinstance(value, int) and not isinstance(value, bool):
        return float(value)
    return value


class InfluxDBTelemetryStore(TelemetryStore):
    """InfluxDB storage for site telemetry.

    Example:
        >>> config = InfluxDBConfig(
        ...     url="http://localhost:8086",
        ...     token="my-token",
        ...     org="my-org",
        ...     bucket="telemetry",
        ... )
        >>> store = InfluxDBTelemetryStore(config, sites)
        >>> store.insert_readings(readings)
    """

    MEASUREMENT_READINGS = "telemetry"
    MEASUREMENT_AGGREGATES = {
        "hourly": "telemetry_hourly",
        "daily": "telemetry_daily",
    }
    OPTIONAL_FIELDS = (
        "solar_efficiency_pct",
        "inverter1_efficiency_pct",
        "inverter2_efficiency_pct",
    )

    def __init__(
        self,
        config: InfluxDBConfig,
        sites: Sequence[Site] = (),
        client: Optional["InfluxDBClient"] = None,
    ) -> None:
        """Initialize InfluxDB storage.

        Args:
            config: InfluxDB configuration
            sites: Site registry served by list_active_sites
            client: Pre-built InfluxDB client (created from config if None)

        Raises:
            ImportError: If influxdb-client is not installed
            InvalidConfiguration: If the token is missing
        """
        self.config = config
        self.sites = list(sites)
        self._client = client
        self._write_api = None

        if self._client is None:
            if not INFLUXDB_AVAILABLE:
                raise ImportError(
                    "influxdb-client is not installed. "
                    "Install it with: pip install influxdb-client"
                )
            if not config.token:
                raise InvalidConfiguration("InfluxDB token is required (set INFLUXDB_TOKEN)")
            self._client = InfluxDBClient(url=config.url, token=config.token, org=config.org)

        self._connect_write_api()

    def _connect_write_api(self) -> None:
        """Create the write API (synchronous unless batching is configured)."""
        if self.config.batch_size > 1:
            from influxdb_client.client.write_api import WriteOptions

            self._write_api = self._client.write_api(
                write_options=WriteOptions(
                    batch_size=self.config.batch_size,
                    flush_interval=self.config.flush_interval_ms,
                )
            )
        else:
            self._write_api = self._client.write_api(write_options=SYNCHRONOUS)

        logger.info(
            "Connected to InfluxDB at %s (org=%s, bucket=%s)",
            self.config.url,
            self.config.org,
            self.config.bucket,
        )

    def _write(self, action: str, points: list) -> None:
        try:
            self._write_api.write(
                bucket=self.config.bucket,
                org=self.config.org,
                record=points,
            )
        except Exception as e:
            raise PersistenceError(f"Failed to {action}: {e}") from e

    def list_active_sites(self, site_ids: Optional[Sequence[int]] = None) -> list[Site]:
        wanted = set(site_ids) if site_ids else None
        return [
            site
            for site in self.sites
            if site.status == "active" and (wanted is None or site.id in wanted)
        ]

    def _reading_to_point(self, reading: TelemetryReading):
        point = Point(self.MEASUREMENT_READINGS).tag("site_id", str(reading.site_id))
        for name, value in reading.to_dict().items():
            if name in ("site_id", "timestamp") or value is None:
                continue
            point = point.field(name, _field_value(value))
        return point.time(reading.timestamp)

    def _aggregate_to_point(self, kind: str, record: Aggregate):
        if isinstance(record, DailyAggregate):
            instant = datetime.combine(record.date, time.min, tzinfo=timezone.utc)
        else:
            instant = record.timestamp
        point = Point(self.MEASUREMENT_AGGREGATES[kind]).tag("site_id", str(record.site_id))
        for name, value in record.to_dict().items():
            if name in ("site_id", "timestamp") or value is None:
                continue
            point = point.field(name, value)
        return point.time(instant)

    def insert_readings(self, readings: Sequence[TelemetryReading]) -> int:
        if not readings:
            return 0
        points = [self._reading_to_point(reading) for reading in readings]
        self._write(f"write {len(points)} readings", points)
        logger.debug("Wrote %d readings to InfluxDB", len(points))
        return len(points)

    def insert_aggregates(self, kind: str, records: Iterable[Aggregate]) -> int:
        if kind not in AGGREGATE_KINDS:
            raise ValueError(f"Unknown aggregate kind {kind!r}, expected one of {AGGREGATE_KINDS}")
        points = [self._aggregate_to_point(kind, record) for record in records]
        if not points:
            return 0
        self._write(f"write {len(points)} {kind} aggregates", points)
        return len(points)

    def find_latest_reading(self, site_id: int) -> Optional[TelemetryReading]:
        flux_query = f'''
from(bucket: "{self.config.bucket}")
  |> range(start: 0)
  |> filter(fn: (r) => r._measurement == "{self.MEASUREMENT_READINGS}")
  |> filter(fn: (r) => r.site_id == "{site_id}")
  |> last()
  |> pivot(rowKey: ["_time"], columnKey: ["_field"], valueColumn: "_value")
  |> sort(columns: ["_time"], desc: true)
  |> limit(n: 1)
'''
        try:
            tables = self._client.query_api().query(flux_query, org=self.config.org)
        except Exception as e:
            raise PersistenceError(f"Failed to query latest reading for site {site_id}: {e}") from e

        for table in tables:
            for record in table.records:
                values = {
                    k: v for k, v in record.values.items() if not k.startswith("_")
                }
                values["timestamp"] = record.get_time()
                values["site_id"] = site_id
                for name in self.OPTIONAL_FIELDS:
                    values.setdefault(name, None)
                try:
                    return TelemetryReading.from_dict(values)
                except (KeyError, TypeError, ValueError) as e:
                    raise PersistenceError(
                        f"Latest reading for site {site_id} is malformed: {e}"
                    ) from e
        return None

    def delete_site_telemetry(self, site_id: int, start: datetime, end: datetime) -> None:
        measurements = [self.MEASUREMENT_READINGS, *self.MEASUREMENT_AGGREGATES.values()]
        delete_api = self._client.delete_api()
        for measurement in measurements:
            try:
                delete_api.delete(
                    start,
                    end,
                    f'_measurement="{measurement}" AND site_id="{site_id}"',
                    bucket=self.config.bucket,
                    org=self.config.org,
                )
            except Exception as e:
                raise PersistenceError(
                    f"Failed to delete {measurement} for site {site_id}: {e}"
                ) from e
        logger.info("Deleted telemetry for site %s from %s to %s", site_id, start, end)

    def close(self) -> None:
        """Close the InfluxDB connection."""
        if self._write_api:
            try:
                self._write_api.close()
            except Exception as e:
                logger.debug("Error closing InfluxDB write API: %s", e)
            self._write_api = None

        if self._client:
            try:
                self._client.close()
            except Exception as e:
                logger.debug("Error closing InfluxDB client: %s", e)
            self._client = None

        logger.info("Closed InfluxDB connection")
