"""Supabase persistence for sites, telemetry readings and aggregates.

Tables:
- sites: site registry (read only)
- telemetry_readings: one row per site and tick
- telemetry_hourly: hourly rollups, unique on (site_id, timestamp)
- telemetry_daily: daily rollups, unique on (site_id, date)
"""

import logging
import os
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Iterable, Optional, Sequence

from bms_telemetry.errors import InvalidConfiguration, PersistenceError
from bms_telemetry.models import Site, TelemetryReading
from .base import AGGREGATE_KINDS, Aggregate, TelemetryStore

logger = logging.getLogger(__name__)

try:
    from supabase import Client, create_client

    SUPABASE_AVAILABLE = True
except ImportError:
    SUPABASE_AVAILABLE = False
    Client = None  # type: ignore
    create_client = None  # type: ignore


@dataclass
class SupabaseConfig:
    """Configuration for the Supabase connection.

    Supports environment variable overrides:
    - SUPABASE_URL: Supabase project URL
    - SUPABASE_KEY: Supabase API key (service role for writes)

    Attributes:
        url: Supabase project URL
        key: Supabase API key
    """

    url: str = ""
    key: str = ""

    def __post_init__(self) -> None:
        """Apply environment variable overrides only when values are at defaults.

        Precedence: explicit args > env vars > defaults
        """
        if self.url == "":
            self.url = os.environ.get("SUPABASE_URL", self.url)
        if self.key == "":
            self.key = os.environ.get("SUPABASE_KEY", self.key)


class SupabaseTelemetryStore(TelemetryStore):
    """Telemetry store backed by Supabase tables.

    Example:
        >>> store = SupabaseTelemetryStore(SupabaseConfig(url=..., key=...))
        >>> sites = store.list_active_sites()
        >>> store.insert_readings(readings)
    """

    SITES_TABLE = "sites"
    READINGS_TABLE = "telemetry_readings"
    AGGREGATE_TABLES = {
        "hourly": ("telemetry_hourly", "timestamp"),
        "daily": ("telemetry_daily", "date"),
    }

    def __init__(self, config: SupabaseConfig, client: Optional[Any] = None) -> None:
        """Initialize the store.

        Args:
            config: Supabase configuration
            client: Pre-built Supabase client (created from config if None)

        Raises:
            ImportError: If supabase is not installed
            InvalidConfiguration: If URL or key is missing
            PersistenceError: If the client cannot be created
        """
        self.config = config
        self._client = client
        if self._client is None:
            self._connect()

    def _connect(self) -> None:
        if not SUPABASE_AVAILABLE:
            raise ImportError(
                "supabase is not installed. Install it with: pip install supabase"
            )
        if not self.config.url:
            raise InvalidConfiguration("Supabase URL is required (set SUPABASE_URL)")
        if not self.config.key:
            raise InvalidConfiguration("Supabase key is required (set SUPABASE_KEY)")

        try:
            self._client = create_client(self.config.url, self.config.key)
        except Exception as e:
            logger.exception("Failed to connect to Supabase: %s", e)
            raise PersistenceError(f"Failed to connect to Supabase: {e}") from e
        logger.info("Connected to Supabase at %s", self.config.url)

    def _execute(self, action: str, query) -> Any:
        """Run a query builder, wrapping client errors in PersistenceError."""
        try:
            return query.execute()
        except Exception as e:
            raise PersistenceError(f"Failed to {action}: {e}") from e

    def list_active_sites(self, site_ids: Optional[Sequence[int]] = None) -> list[Site]:
        query = self._client.table(self.SITES_TABLE).select("*").eq("status", "active")
        if site_ids:
            query = query.in_("id", list(site_ids))
        response = self._execute("list active sites", query.order("id"))

        sites = []
        for row in response.data or []:
            try:
                sites.append(Site.from_dict(row))
            except ValueError as e:
                logger.warning("Skipping invalid site row %s: %s", row.get("id"), e)
        logger.info("Loaded %d active sites from Supabase", len(sites))
        return sites

    def insert_readings(self, readings: Sequence[TelemetryReading]) -> int:
        if not readings:
            return 0
        rows = [reading.to_dict() for reading in readings]
        self._execute(
            f"insert {len(rows)} readings",
            self._client.table(self.READINGS_TABLE).insert(rows),
        )
        logger.debug("Inserted %d readings into %s", len(rows), self.READINGS_TABLE)
        return len(rows)

    def find_latest_reading(self, site_id: int) -> Optional[TelemetryReading]:
        query = (
            self._client.table(self.READINGS_TABLE)
            .select("*")
            .eq("site_id", site_id)
            .order("timestamp", desc=True)
            .limit(1)
        )
        response = self._execute(f"find latest reading for site {site_id}", query)
        if not response.data:
            return None
        try:
            return TelemetryReading.from_dict(response.data[0])
        except (KeyError, TypeError, ValueError) as e:
            raise PersistenceError(
                f"Latest reading for site {site_id} is malformed: {e}"
            ) from e

    def insert_aggregates(self, kind: str, records: Iterable[Aggregate]) -> int:
        if kind not in AGGREGATE_KINDS:
            raise ValueError(f"Unknown aggregate kind {kind!r}, expected one of {AGGREGATE_KINDS}")
        rows = [record.to_dict() for record in records]
        if not rows:
            return 0
        table, time_column = self.AGGREGATE_TABLES[kind]
        self._execute(
            f"upsert {len(rows)} {kind} aggregates",
            self._client.table(table).upsert(rows, on_conflict=f"site_id,{time_column}"),
        )
        logger.debug("Upserted %d rows into %s", len(rows), table)
        return len(rows)

    def delete_site_telemetry(self, site_id: int, start: datetime, end: datetime) -> None:
        self._execute(
            f"delete readings for site {site_id}",
            self._client.table(self.READINGS_TABLE)
            .delete()
            .eq("site_id", site_id)
            .gte("timestamp", start.isoformat())
            .lte("timestamp", end.isoformat()),
        )
        table, column = self.AGGREGATE_TABLES["hourly"]
        self._execute(
            f"delete hourly aggregates for site {site_id}",
            self._client.table(table)
            .delete()
            .eq("site_id", site_id)
            .gte(column, start.isoformat())
            .lte(column, end.isoformat()),
        )
        table, column = self.AGGREGATE_TABLES["daily"]
        self._execute(
            f"delete daily aggregates for site {site_id}",
            self._client.table(table)
            .delete()
            .eq("site_id", site_id)
            .gte(column, start.date().isoformat())
            .lte(column, end.date().isoformat()),
        )
        logger.info("Deleted telemetry for site %s from %s to %s", site_id, start, end)

    def close(self) -> None:
        self._client = None
        logger.info("Closed Supabase connection")
