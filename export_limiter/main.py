#!/usr/bin/env python3
"""
Export Limiter - Main Entry Point

Loads the configuration and starts the control loop.

Usage:
    export-limiter                    # Use default config.yaml
    export-limiter --config my.yaml   # Use custom config file
    export-limiter --dry-run          # Print config and exit

The limiter will:
1. Load configuration from YAML file
2. Connect to the inverter via Modbus TCP and read its rated power
3. Join the energy meter multicast group
4. Cap inverter output whenever grid export exceeds the threshold
"""

import argparse
import asyncio
import os
import sys
from pathlib import Path

import yaml

from export_limiter.common.config import LimiterConfig, load_config, validate_config
from export_limiter.common.exceptions import ConfigError
from export_limiter.common.logging_setup import configure_service_loggers, get_service_logger
from export_limiter.services.control.service import LimiterService

logger = get_service_logger("main")

DEFAULT_CONFIG_PATHS = [
    "/etc/export-limiter/config.yaml",
    "/opt/export-limiter/config.yaml",
    "config.yaml",
]


def find_config_path() -> str:
    """Find configuration file"""
    for path in DEFAULT_CONFIG_PATHS:
        if Path(path).exists():
            return path
    return DEFAULT_CONFIG_PATHS[-1]


def read_config_file(config_path: str) -> dict:
    """
    Load configuration from YAML file.

    Args:
        config_path: Path to configuration file

    Returns:
        Configuration dictionary
    """
    path = Path(config_path)
    if not path.exists():
        raise ConfigError(f"configuration file not found: {config_path}")

    try:
        with open(path, "r") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"cannot parse {config_path}: {e}")

    logger.info(f"Loaded configuration from {config_path}")
    return data or {}


def print_config_summary(config: LimiterConfig) -> None:
    """Print a summary of the configuration."""
    print("\n" + "=" * 60)
    print("  EXPORT LIMITER")
    print("=" * 60)

    meter = config.meter
    print(f"\n  Meter: id {meter.meter_id} on {meter.multicast_group}:{meter.port}")

    inverter = config.inverter
    print(f"\n  Inverter: {inverter.host}:{inverter.port} (unit {inverter.unit_id})")
    print(f"    - Timeout: {inverter.timeout_s}s")
    if inverter.capacity_w:
        print(f"    - Capacity: {inverter.capacity_w:.0f} W (configured)")
    else:
        print("    - Capacity: read from inverter")

    control = config.control
    print("\n  Control Settings:")
    print(f"    - Max export: {control.max_export_w:.0f} W")
    print(f"    - Control band: below {control.control_reset_w:.0f} W / above {control.control_start_w:.0f} W")
    print(f"    - Deadband: {control.deadband_pct}%")
    print(f"    - Gate signal: {control.gate_signal.value}")
    print(f"    - Filter: {config.filter.variant.value}")

    print("=" * 60 + "\n")


async def main_async(config: LimiterConfig) -> None:
    service = LimiterService(config)

    try:
        await service.start()
    finally:
        await service.stop()


def main() -> None:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Export power limiter for grid-tied solar inverters"
    )
    parser.add_argument(
        "--config", "-c",
        type=str,
        default=None,
        help="Path to configuration file (default: first of "
             + ", ".join(DEFAULT_CONFIG_PATHS) + ")"
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Print configuration and exit without starting the limiter"
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose (debug) logging"
    )

    args = parser.parse_args()

    try:
        config = load_config(read_config_file(args.config or find_config_path()))
    except ConfigError as e:
        logger.error(e.message)
        sys.exit(1)

    # Environment overrides the file, --verbose overrides both
    log_level = os.environ.get("EXPORT_LIMITER_LOG_LEVEL", config.service.log_level)
    log_format = os.environ.get("EXPORT_LIMITER_LOG_FORMAT", config.service.log_format)
    if args.verbose:
        log_level = "DEBUG"
    configure_service_loggers(log_level, log_format.lower() == "json")

    errors = validate_config(config)
    if errors:
        for error in errors:
            logger.error(f"Configuration error: {error}")
        sys.exit(1)

    print_config_summary(config)

    if args.dry_run:
        print("Dry run mode - exiting without starting the limiter")
        sys.exit(0)

    logger.info("Starting export limiter...")

    try:
        asyncio.run(main_async(config))
    except KeyboardInterrupt:
        print("\nStopped by user")


if __name__ == "__main__":
    main()
