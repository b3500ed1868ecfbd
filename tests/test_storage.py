"""Tests for the Supabase and InfluxDB telemetry stores."""

from dataclasses import replace
from datetime import date, datetime, timezone
from unittest.mock import Mock, patch

import pytest

from bms_telemetry.aggregation import daily_aggregate, hourly_aggregate
from bms_telemetry.errors import InvalidConfiguration, PersistenceError
from bms_telemetry.storage import (
    INFLUXDB_AVAILABLE,
    SUPABASE_AVAILABLE,
    InfluxDBConfig,
    InfluxDBTelemetryStore,
    SupabaseConfig,
    SupabaseTelemetryStore,
    create_store,
)

from conftest import build_reading

QUERY_METHODS = ("select", "eq", "in_", "order", "limit", "insert", "upsert", "delete", "gte", "lte")


def mock_supabase_client(data=None):
    """A client whose query builder chains back to itself."""
    query = Mock()
    for name in QUERY_METHODS:
        getattr(query, name).return_value = query
    query.execute.return_value = Mock(data=data if data is not None else [])
    client = Mock()
    client.table.return_value = query
    return client, query


def site_row(site_id, **overrides):
    row = {
        "id": site_id,
        "name": f"Site {site_id}",
        "latitude": -26.2,
        "longitude": 28.0,
        "timezone": "UTC",
        "solar_capacity_kw": 30.0,
        "battery_capacity_kwh": 40.0,
        "daily_consumption_kwh": 60.0,
        "status": "active",
    }
    row.update(overrides)
    return row


class TestSupabaseTelemetryStore:
    """Tests for SupabaseTelemetryStore."""

    def test_list_active_sites(self):
        """Test active sites are loaded and invalid rows skipped."""
        client, query = mock_supabase_client([site_row(1), site_row(2, latitude=None)])
        store = SupabaseTelemetryStore(SupabaseConfig(url="u", key="k"), client=client)

        sites = store.list_active_sites([1, 2])

        assert [s.id for s in sites] == [1]
        client.table.assert_called_with("sites")
        query.eq.assert_called_with("status", "active")
        query.in_.assert_called_once_with("id", [1, 2])
        query.order.assert_called_once_with("id")

    def test_list_without_filter(self):
        """Test no id filter is applied without site ids."""
        client, query = mock_supabase_client([site_row(1)])
        store = SupabaseTelemetryStore(SupabaseConfig(url="u", key="k"), client=client)

        store.list_active_sites()

        query.in_.assert_not_called()

    def test_insert_readings(self, noon):
        """Test readings are inserted as serialized rows."""
        client, query = mock_supabase_client()
        store = SupabaseTelemetryStore(SupabaseConfig(url="u", key="k"), client=client)

        assert store.insert_readings([build_reading(noon), build_reading(noon, site_id=2)]) == 2

        client.table.assert_called_with("telemetry_readings")
        rows = query.insert.call_args[0][0]
        assert rows[0]["timestamp"] == "2024-06-12T12:00:00+00:00"
        assert rows[1]["site_id"] == 2

    def test_insert_empty(self):
        """Test an empty batch makes no request."""
        client, _ = mock_supabase_client()
        store = SupabaseTelemetryStore(SupabaseConfig(url="u", key="k"), client=client)
        assert store.insert_readings([]) == 0
        client.table.assert_not_called()

    def test_insert_failure(self, noon):
        """Test client errors surface as PersistenceError."""
        client, query = mock_supabase_client()
        query.execute.side_effect = RuntimeError("409 conflict")
        store = SupabaseTelemetryStore(SupabaseConfig(url="u", key="k"), client=client)

        with pytest.raises(PersistenceError):
            store.insert_readings([build_reading(noon)])

    def test_find_latest_reading(self, noon):
        """Test the newest row is converted back to a reading."""
        row = build_reading(noon, battery_soc_pct=61.0).to_dict()
        row["id"] = 7
        client, query = mock_supabase_client([row])
        store = SupabaseTelemetryStore(SupabaseConfig(url="u", key="k"), client=client)

        reading = store.find_latest_reading(1)

        assert reading.battery_soc_pct == 61.0
        assert reading.timestamp == noon
        query.order.assert_called_once_with("timestamp", desc=True)
        query.limit.assert_called_once_with(1)

    def test_find_latest_none(self):
        """Test a site without readings returns None."""
        client, _ = mock_supabase_client([])
        store = SupabaseTelemetryStore(SupabaseConfig(url="u", key="k"), client=client)
        assert store.find_latest_reading(1) is None

    def test_upsert_aggregates(self, noon):
        """Test rollups upsert on their natural key."""
        client, query = mock_supabase_client()
        store = SupabaseTelemetryStore(SupabaseConfig(url="u", key="k"), client=client)
        hourly = hourly_aggregate(1, noon, [build_reading(noon)])
        daily = daily_aggregate(1, date(2024, 6, 12), [hourly], 5)

        assert store.insert_aggregates("hourly", [hourly]) == 1
        query.upsert.assert_called_with([hourly.to_dict()], on_conflict="site_id,timestamp")
        client.table.assert_called_with("telemetry_hourly")

        assert store.insert_aggregates("daily", [daily]) == 1
        query.upsert.assert_called_with([daily.to_dict()], on_conflict="site_id,date")
        client.table.assert_called_with("telemetry_daily")

    def test_unknown_aggregate_kind(self):
        """Test only hourly and daily rollups are accepted."""
        client, _ = mock_supabase_client()
        store = SupabaseTelemetryStore(SupabaseConfig(url="u", key="k"), client=client)
        with pytest.raises(ValueError):
            store.insert_aggregates("weekly", [])

    def test_delete_site_telemetry(self):
        """Test readings and both rollup tables are cleared for the range."""
        client, query = mock_supabase_client()
        store = SupabaseTelemetryStore(SupabaseConfig(url="u", key="k"), client=client)
        start = datetime(2024, 6, 1, tzinfo=timezone.utc)
        end = datetime(2024, 6, 3, 12, tzinfo=timezone.utc)

        store.delete_site_telemetry(5, start, end)

        tables = [c[0][0] for c in client.table.call_args_list]
        assert tables == ["telemetry_readings", "telemetry_hourly", "telemetry_daily"]
        assert query.delete.call_count == 3
        query.gte.assert_called_with("date", "2024-06-01")
        query.lte.assert_called_with("date", "2024-06-03")

    def test_missing_url(self, monkeypatch):
        """Test a missing URL is a configuration error."""
        monkeypatch.delenv("SUPABASE_URL", raising=False)
        if not SUPABASE_AVAILABLE:
            pytest.skip("supabase not installed")
        with pytest.raises(InvalidConfiguration):
            SupabaseTelemetryStore(SupabaseConfig(url="", key="k"))

    @pytest.mark.skipif(not SUPABASE_AVAILABLE, reason="supabase not installed")
    @patch("bms_telemetry.storage.supabase_store.create_client")
    def test_connect_creates_client(self, mock_create):
        """Test the client is created from the configuration."""
        store = SupabaseTelemetryStore(SupabaseConfig(url="https://x.supabase.co", key="k"))

        mock_create.assert_called_once_with("https://x.supabase.co", "k")
        assert store._client is mock_create.return_value

    @pytest.mark.skipif(not SUPABASE_AVAILABLE, reason="supabase not installed")
    @patch("bms_telemetry.storage.supabase_store.create_client")
    def test_connect_failure(self, mock_create):
        """Test client creation errors surface as PersistenceError."""
        mock_create.side_effect = RuntimeError("invalid key")
        with pytest.raises(PersistenceError):
            SupabaseTelemetryStore(SupabaseConfig(url="https://x.supabase.co", key="k"))


class TestInfluxDBTelemetryStore:
    """Tests for InfluxDBTelemetryStore."""

    def _store(self, sites=()):
        client = Mock()
        config = InfluxDBConfig(token="token", org="org", bucket="bucket")
        return InfluxDBTelemetryStore(config, sites, client=client), client

    def test_list_active_sites(self, site, second_site):
        """Test configured sites are served, filtered by id and status."""
        store, _ = self._store([site, replace(second_site, status="inactive")])

        assert [s.id for s in store.list_active_sites()] == [1]
        assert store.list_active_sites([2]) == []

    @pytest.mark.skipif(not INFLUXDB_AVAILABLE, reason="influxdb-client not installed")
    def test_insert_readings(self, noon):
        """Test readings are written as tagged points."""
        store, client = self._store()
        write_api = client.write_api.return_value

        assert store.insert_readings([build_reading(noon, solar_efficiency_pct=None)]) == 1

        kwargs = write_api.write.call_args[1]
        assert kwargs["bucket"] == "bucket"
        point = kwargs["record"][0]
        line = point.to_line_protocol()
        assert line.startswith("telemetry,site_id=1 ")
        assert "solar_efficiency_pct" not in line
        assert "battery_mode=\"charging\"" in line

    @pytest.mark.skipif(not INFLUXDB_AVAILABLE, reason="influxdb-client not installed")
    def test_write_failure(self, noon):
        """Test write errors surface as PersistenceError."""
        store, client = self._store()
        client.write_api.return_value.write.side_effect = RuntimeError("503")

        with pytest.raises(PersistenceError):
            store.insert_readings([build_reading(noon)])

    @pytest.mark.skipif(not INFLUXDB_AVAILABLE, reason="influxdb-client not installed")
    def test_insert_daily_aggregate(self, noon):
        """Test daily rollups are written at local midnight of their date."""
        store, client = self._store()
        hourly = hourly_aggregate(1, noon, [build_reading(noon)])
        daily = daily_aggregate(1, date(2024, 6, 12), [hourly], 5)

        assert store.insert_aggregates("daily", [daily]) == 1

        line = client.write_api.return_value.write.call_args[1]["record"][0].to_line_protocol()
        assert line.startswith("telemetry_daily,site_id=1 ")

    def test_find_latest_reading(self, noon):
        """Test the pivoted last record converts to a reading."""
        store, client = self._store()
        values = {
            k: v
            for k, v in build_reading(noon).to_dict().items()
            if k not in ("timestamp", "site_id") and v is not None
        }
        values.pop("solar_efficiency_pct")
        values.update({"_measurement": "telemetry", "_time": noon, "result": "_result",
                       "table": 0, "site_id": "1"})
        record = Mock(values=values)
        record.get_time.return_value = noon
        client.query_api.return_value.query.return_value = [Mock(records=[record])]

        reading = store.find_latest_reading(1)

        assert reading.site_id == 1
        assert reading.timestamp == noon
        assert reading.solar_efficiency_pct is None

    def test_find_latest_none(self):
        """Test an empty result returns None."""
        store, client = self._store()
        client.query_api.return_value.query.return_value = []
        assert store.find_latest_reading(1) is None

    def test_delete_all_measurements(self, noon):
        """Test deletion covers readings and both rollups."""
        store, client = self._store()
        delete_api = client.delete_api.return_value

        store.delete_site_telemetry(3, noon, noon)

        predicates = [c[0][2] for c in delete_api.delete.call_args_list]
        assert predicates == [
            '_measurement="telemetry" AND site_id="3"',
            '_measurement="telemetry_hourly" AND site_id="3"',
            '_measurement="telemetry_daily" AND site_id="3"',
        ]

    def test_close(self):
        """Test close releases the write API and client."""
        store, client = self._store()
        write_api = client.write_api.return_value

        store.close()

        write_api.close.assert_called_once()
        client.close.assert_called_once()

    def test_missing_token(self, monkeypatch):
        """Test a token is required to connect."""
        monkeypatch.delenv("INFLUXDB_TOKEN", raising=False)
        if not INFLUXDB_AVAILABLE:
            pytest.skip("influxdb-client not installed")
        with pytest.raises(InvalidConfiguration):
            InfluxDBTelemetryStore(InfluxDBConfig(token=""))


class TestCreateStore:
    """Tests for create_store."""

    def test_unknown_backend(self):
        """Test unknown backends are rejected."""
        with pytest.raises(InvalidConfiguration):
            create_store("sqlite", SupabaseConfig(), InfluxDBConfig())

    @patch("bms_telemetry.storage.InfluxDBTelemetryStore")
    def test_influxdb_receives_sites(self, mock_store, site):
        """Test the InfluxDB store is given the configured sites."""
        influxdb = InfluxDBConfig(token="t")
        create_store("influxdb", SupabaseConfig(), influxdb, [site])
        mock_store.assert_called_once_with(influxdb, [site])
