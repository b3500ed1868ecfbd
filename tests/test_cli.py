"""Tests for the run_telemetry command line interface."""

import json
from unittest.mock import MagicMock, patch

import pytest

import run_telemetry
from bms_telemetry.errors import PersistenceError


@pytest.fixture
def store():
    context = MagicMock()
    context.__enter__.return_value = context
    context.__exit__.return_value = False
    return context


class TestArguments:
    """Tests for argument parsing."""

    @patch("run_telemetry.RealtimeRunner")
    @patch("run_telemetry.build_weather_provider")
    def test_unsupported_interval(self, mock_weather, mock_runner):
        """Test intervals other than 1 and 5 are rejected before any work."""
        with pytest.raises(SystemExit) as exc:
            run_telemetry.main(["run", "3"])

        assert exc.value.code != 0
        mock_runner.assert_not_called()
        mock_weather.assert_not_called()

    @pytest.mark.parametrize("days", ["0", "-2", "abc"])
    def test_invalid_days(self, days):
        """Test days must be a positive integer."""
        with pytest.raises(SystemExit) as exc:
            run_telemetry.main(["generate", days])
        assert exc.value.code != 0

    def test_command_required(self):
        """Test running without a command is an error."""
        with pytest.raises(SystemExit) as exc:
            run_telemetry.main([])
        assert exc.value.code != 0

    def test_quiet_and_debug_exclusive(self):
        """Test --quiet and --debug cannot be combined."""
        with pytest.raises(SystemExit):
            run_telemetry.main(["--quiet", "--debug", "run"])

    def test_defaults(self):
        """Test default days and interval."""
        parser = run_telemetry.build_parser()
        assert parser.parse_args(["generate"]).days == 30
        assert parser.parse_args(["run"]).interval == 5


class TestMain:
    """Tests for main()."""

    def test_generate_config(self, tmp_path):
        """Test writing a sample configuration file."""
        path = tmp_path / "config.json"

        assert run_telemetry.main(["--generate-config", str(path)]) == 0

        data = json.loads(path.read_text())
        assert data["storage"] == "supabase"
        assert data["realtime"]["interval_minutes"] == 5

    @patch("run_telemetry.BackfillRunner")
    @patch("run_telemetry.build_weather_provider")
    @patch("run_telemetry.create_store")
    def test_generate(self, mock_create, mock_weather, mock_runner, store, capsys):
        """Test generate runs a backfill with the command line overrides."""
        mock_create.return_value = store
        mock_runner.return_value.run.return_value.aborted = False
        mock_runner.return_value.run.return_value.to_dict.return_value = {"readings_written": 12}

        assert run_telemetry.main(["--sites", "3", "7", "--seed", "9", "generate", "2"]) == 0

        config = mock_runner.call_args[0][2]
        assert config.site_ids == [3, 7]
        assert config.seed == 9
        mock_runner.return_value.run.assert_called_once_with(2)
        store.__exit__.assert_called_once()
        assert json.loads(capsys.readouterr().out) == {"readings_written": 12}

    @patch("run_telemetry.BackfillRunner")
    @patch("run_telemetry.build_weather_provider")
    @patch("run_telemetry.create_store")
    def test_generate_aborted(self, mock_create, mock_weather, mock_runner, store):
        """Test an aborted backfill exits non-zero."""
        mock_create.return_value = store
        summary = mock_runner.return_value.run.return_value
        summary.aborted = True
        summary.to_dict.return_value = {"aborted": True}

        assert run_telemetry.main(["generate"]) == 1

    @patch("run_telemetry.RealtimeRunner")
    @patch("run_telemetry.build_weather_provider")
    @patch("run_telemetry.create_store")
    def test_run_interval(self, mock_create, mock_weather, mock_runner, store):
        """Test run passes the chosen interval to the runner."""
        mock_create.return_value = store
        mock_runner.return_value.run.return_value = 0

        assert run_telemetry.main(["run", "1"]) == 0

        config = mock_runner.call_args[0][2]
        assert config.realtime.interval_minutes == 1

    @patch("run_telemetry.RealtimeRunner")
    @patch("run_telemetry.build_weather_provider")
    @patch("run_telemetry.create_store")
    def test_run_default_interval(self, mock_create, mock_weather, mock_runner, store):
        """Test run defaults to five minute intervals."""
        mock_create.return_value = store
        mock_runner.return_value.run.return_value = 0

        run_telemetry.main(["run"])

        assert mock_runner.call_args[0][2].realtime.interval_minutes == 5

    def test_missing_config_file(self, tmp_path):
        """Test a missing configuration file exits with an error."""
        assert run_telemetry.main(["--config", str(tmp_path / "absent.json"), "run"]) == 1

    @patch("run_telemetry.create_store")
    def test_store_unavailable(self, mock_create):
        """Test a store connection failure exits with an error."""
        mock_create.side_effect = PersistenceError("connection refused")
        assert run_telemetry.main(["generate", "1"]) == 1
