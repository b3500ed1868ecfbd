"""Tests for configuration management."""

import json

import pytest

from bms_telemetry.config import (
    BackfillConfig,
    BatteryConfig,
    RealtimeConfig,
    TelemetryConfig,
    WeatherConfig,
)
from bms_telemetry.errors import InvalidConfiguration
from bms_telemetry.storage import InfluxDBConfig, SupabaseConfig


class TestDefaults:
    """Tests for default configuration values."""

    def test_default_values(self, monkeypatch):
        """Test defaults of the main configuration."""
        monkeypatch.delenv("WEATHER_CACHE_DIR", raising=False)
        config = TelemetryConfig()

        assert config.storage == "supabase"
        assert config.seed is None
        assert config.sites == []
        assert config.weather.cache_ttl_hours == 24.0
        assert config.weather.cache_dir is None
        assert config.battery.initial_soc == 0.85
        assert config.battery.reserve_soc == 0.15
        assert config.backfill.days == 30
        assert config.backfill.batch_size == 500
        assert config.backfill.max_retries == 3
        assert config.realtime.interval_minutes == 5

    def test_battery_simulator_kwargs(self):
        """Test battery settings map onto simulator arguments."""
        kwargs = BatteryConfig().simulator_kwargs()
        assert kwargs["initial_soc"] == 0.85
        assert "initial_health_pct" not in kwargs


class TestValidation:
    """Tests for configuration validation."""

    def test_realtime_interval_choices(self):
        """Test only 1 and 5 minute intervals are accepted."""
        assert RealtimeConfig(1).interval_minutes == 1
        with pytest.raises(InvalidConfiguration):
            RealtimeConfig(3)

    def test_backfill_days_positive(self):
        """Test backfill days must be positive."""
        with pytest.raises(InvalidConfiguration):
            BackfillConfig(days=0)

    def test_backfill_retries(self):
        """Test at least one attempt is required."""
        with pytest.raises(InvalidConfiguration):
            BackfillConfig(max_retries=0)

    def test_unknown_storage(self):
        """Test the storage backend must be known."""
        with pytest.raises(InvalidConfiguration):
            TelemetryConfig(storage="sqlite")

    def test_unknown_key(self):
        """Test unknown nested keys are reported."""
        with pytest.raises(InvalidConfiguration):
            TelemetryConfig.from_dict({"backfill": {"dayz": 3}})


class TestEnvironmentOverrides:
    """Tests for environment variable overrides."""

    def test_supabase_env(self, monkeypatch):
        """Test Supabase credentials come from the environment."""
        monkeypatch.setenv("SUPABASE_URL", "https://env.supabase.co")
        monkeypatch.setenv("SUPABASE_KEY", "env-key")

        config = SupabaseConfig()
        assert config.url == "https://env.supabase.co"
        assert config.key == "env-key"

    def test_explicit_values_win(self, monkeypatch):
        """Test explicit arguments take precedence over environment."""
        monkeypatch.setenv("INFLUXDB_BUCKET", "env-bucket")
        assert InfluxDBConfig(bucket="explicit").bucket == "explicit"
        assert InfluxDBConfig().bucket == "env-bucket"

    def test_weather_cache_dir_env(self, monkeypatch):
        """Test the cache directory comes from the environment."""
        monkeypatch.setenv("WEATHER_CACHE_DIR", "/var/cache/weather")
        assert WeatherConfig().cache_dir == "/var/cache/weather"


class TestFileRoundTrip:
    """Tests for loading and saving configuration files."""

    def test_to_file_and_back(self, tmp_path, monkeypatch):
        """Test a saved configuration loads back equal."""
        monkeypatch.delenv("SUPABASE_KEY", raising=False)
        path = tmp_path / "config.json"
        config = TelemetryConfig.from_dict(
            {
                "storage": "influxdb",
                "seed": 42,
                "site_ids": [3],
                "sites": [{"id": 3, "name": "Farm", "latitude": -29.1, "longitude": 26.2}],
                "realtime": {"interval_minutes": 1},
            }
        )
        config.to_file(path)

        loaded = TelemetryConfig.from_file(path)
        assert loaded.storage == "influxdb"
        assert loaded.seed == 42
        assert loaded.sites[0].name == "Farm"
        assert loaded.realtime.interval_minutes == 1

    def test_secrets_not_written(self, tmp_path):
        """Test keys and tokens stay out of saved files."""
        path = tmp_path / "config.json"
        TelemetryConfig(
            supabase=SupabaseConfig(url="https://x.supabase.co", key="secret"),
            influxdb=InfluxDBConfig(token="token"),
        ).to_file(path)

        data = json.loads(path.read_text())
        assert "key" not in data["supabase"]
        assert "token" not in data["influxdb"]

    def test_missing_file(self, tmp_path):
        """Test a missing file raises FileNotFoundError."""
        with pytest.raises(FileNotFoundError):
            TelemetryConfig.from_file(tmp_path / "absent.json")

    def test_invalid_json(self, tmp_path):
        """Test invalid JSON is reported as invalid configuration."""
        path = tmp_path / "config.json"
        path.write_text("{not json")
        with pytest.raises(InvalidConfiguration):
            TelemetryConfig.from_file(path)
