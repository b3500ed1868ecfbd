"""Persistence sink interface shared by the storage backends."""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Iterable, Optional, Sequence, Union

from bms_telemetry.models import DailyAggregate, HourlyAggregate, Site, TelemetryReading

AGGREGATE_KINDS = ("hourly", "daily")

Aggregate = Union[HourlyAggregate, DailyAggregate]


class TelemetryStore(ABC):
    """
    Where sites come from and where readings and aggregates go.

    Readings are append-only. Every write raises ``PersistenceError`` on
    failure so the runners can decide whether to retry, skip or abort.
    """

    @abstractmethod
    def list_active_sites(self, site_ids: Optional[Sequence[int]] = None) -> list[Site]:
        """Active sites, optionally restricted to the given ids."""

    @abstractmethod
    def insert_readings(self, readings: Sequence[TelemetryReading]) -> int:
        """Insert readings in one batch; returns the number written."""

    def insert_reading(self, reading: TelemetryReading) -> None:
        self.insert_readings([reading])

    @abstractmethod
    def find_latest_reading(self, site_id: int) -> Optional[TelemetryReading]:
        """Most recent reading for a site, or None if it has none."""

    @abstractmethod
    def insert_aggregates(self, kind: str, records: Iterable[Aggregate]) -> int:
        """Insert hourly or daily aggregates; returns the number written."""

    @abstractmethod
    def delete_site_telemetry(self, site_id: int, start: datetime, end: datetime) -> None:
        """Delete a site's readings and aggregates in [start, end]."""

    def close(self) -> None:
        """Release backend resources."""

    def __enter__(self) -> "TelemetryStore":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
