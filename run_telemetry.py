#!/usr/bin/env python3
"""BMS telemetry generator.

Simulates weather-driven battery, solar, load and grid telemetry for every
active site and writes it to the configured store.

Usage:
    # Regenerate the last 30 days (historical backfill)
    python run_telemetry.py generate

    # Regenerate the last 7 days for two sites only
    python run_telemetry.py --sites 3 7 generate 7

    # Generate live readings every 5 minutes until stopped
    python run_telemetry.py run

    # Generate live readings every minute
    python run_telemetry.py run 1

    # Write a sample configuration file
    python run_telemetry.py --generate-config config.json

Environment variables:
    SUPABASE_URL        Supabase project URL
    SUPABASE_KEY        Supabase API key
    INFLUXDB_URL        InfluxDB server URL
    INFLUXDB_TOKEN      InfluxDB authentication token
    INFLUXDB_ORG        InfluxDB organization
    INFLUXDB_BUCKET     InfluxDB bucket name
    WEATHER_CACHE_DIR   Directory for the on-disk weather cache
"""

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Optional, Sequence

from dotenv import load_dotenv

# Load environment variables from .env file
# Must happen before importing modules that use env vars
load_dotenv()

from bms_telemetry.config import (  # noqa: E402
    DEFAULT_CONFIG,
    REALTIME_INTERVALS,
    RealtimeConfig,
    TelemetryConfig,
)
from bms_telemetry.errors import InvalidConfiguration, PersistenceError  # noqa: E402
from bms_telemetry.generator import BackfillRunner  # noqa: E402
from bms_telemetry.realtime import RealtimeRunner  # noqa: E402
from bms_telemetry.storage import create_store  # noqa: E402
from bms_telemetry.weather import OpenMeteoClient, WeatherCache, WeatherProvider  # noqa: E402

logger = logging.getLogger(__name__)


def setup_logging(quiet: bool = False, debug: bool = False) -> None:
    """Configure logging for the application.

    Args:
        quiet: If True, only show warnings and errors
        debug: If True, show debug messages
    """
    if debug:
        level = logging.DEBUG
    elif quiet:
        level = logging.WARNING
    else:
        level = logging.INFO

    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )


def positive_int(value: str) -> int:
    """argparse type for a strictly positive integer."""
    try:
        number = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"{value!r} is not an integer") from None
    if number <= 0:
        raise argparse.ArgumentTypeError(f"{value!r} must be a positive integer")
    return number


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="BMS telemetry generator - weather-driven site telemetry",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )

    parser.add_argument(
        "--config",
        type=Path,
        help="Path to JSON configuration file",
    )
    parser.add_argument(
        "--sites",
        type=int,
        nargs="+",
        metavar="ID",
        help="Only generate for these site ids (default: all active sites)",
    )
    parser.add_argument(
        "--seed",
        type=int,
        help="Random seed for reproducibility",
    )
    parser.add_argument(
        "--generate-config",
        type=Path,
        metavar="FILE",
        help="Write a sample configuration file and exit",
    )

    logging_group = parser.add_mutually_exclusive_group()
    logging_group.add_argument(
        "--quiet",
        action="store_true",
        help="Reduce logging verbosity",
    )
    logging_group.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging",
    )

    commands = parser.add_subparsers(dest="command", metavar="COMMAND")

    generate = commands.add_parser(
        "generate",
        help="Regenerate historical telemetry for the last N days",
    )
    generate.add_argument(
        "days",
        type=positive_int,
        nargs="?",
        default=30,
        help="Number of days to regenerate (default: 30)",
    )

    run = commands.add_parser(
        "run",
        help="Generate live telemetry on clock-aligned intervals",
    )
    run.add_argument(
        "interval",
        type=int,
        nargs="?",
        choices=REALTIME_INTERVALS,
        default=5,
        help="Minutes between readings, 1 or 5 (default: 5)",
    )

    return parser


def build_weather_provider(config: TelemetryConfig) -> WeatherProvider:
    """Create the weather provider described by the configuration."""
    cache = WeatherCache(
        ttl_hours=config.weather.cache_ttl_hours,
        cache_dir=Path(config.weather.cache_dir) if config.weather.cache_dir else None,
    )
    client = OpenMeteoClient(
        timeout=config.weather.timeout_seconds,
        forecast_past_days=config.weather.forecast_past_days,
    )
    return WeatherProvider(client=client, cache=cache)


def run_generate(config: TelemetryConfig, days: int) -> int:
    """Run a historical backfill and print its summary."""
    with create_store(config.storage, config.supabase, config.influxdb, config.sites) as store:
        runner = BackfillRunner(store, build_weather_provider(config), config)
        summary = runner.run(days)

    print(json.dumps(summary.to_dict(), indent=2))
    if summary.aborted:
        logger.error("Backfill aborted at site %s: %s", summary.failed_site, summary.error)
        return 1
    return 0


def run_realtime(config: TelemetryConfig) -> int:
    """Run continuous generation until stopped."""
    with create_store(config.storage, config.supabase, config.influxdb, config.sites) as store:
        runner = RealtimeRunner(store, build_weather_provider(config), config)
        return runner.run()


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Main entry point.

    Returns:
        Exit code (0 for success, non-zero for errors)
    """
    parser = build_parser()
    args = parser.parse_args(argv)

    setup_logging(quiet=args.quiet, debug=args.debug)

    if args.generate_config:
        DEFAULT_CONFIG.to_file(args.generate_config)
        logger.info("Sample config written to %s", args.generate_config)
        return 0

    if args.command is None:
        parser.error("a command is required: generate [days] or run [interval]")

    try:
        if args.config:
            config = TelemetryConfig.from_file(args.config)
            logger.info("Loaded configuration from %s", args.config)
        else:
            config = TelemetryConfig()

        # Apply command line overrides (only if explicitly provided)
        if args.sites:
            config.site_ids = list(args.sites)
        if args.seed is not None:
            config.seed = args.seed

        if args.command == "generate":
            return run_generate(config, args.days)

        config.realtime = RealtimeConfig(interval_minutes=args.interval)
        return run_realtime(config)

    except (InvalidConfiguration, FileNotFoundError, RuntimeError) as e:
        logger.error("Invalid configuration: %s", e)
        return 1
    except ImportError as e:
        logger.error("Missing storage dependency: %s", e)
        return 1
    except PersistenceError as e:
        logger.error("Storage unavailable: %s", e)
        return 1


if __name__ == "__main__":
    sys.exit(main())
