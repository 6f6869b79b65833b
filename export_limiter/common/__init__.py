"""
Common Utilities

Shared modules used across all services:
- config.py - Configuration dataclasses
- exceptions.py - Custom exception classes
- logging_setup.py - Structured logging setup
"""

from .config import (
    LimiterConfig,
    MeterSettings,
    InverterSettings,
    ControlSettings,
    FilterSettings,
    ServiceSettings,
    GateSignal,
    FilterVariant,
    load_config,
    validate_config,
)
from .exceptions import (
    LimiterError,
    ConfigError,
    DecodeError,
    DeviceError,
    WriteError,
    DeviceConnectionError,
    ControlError,
    ControlEngineError,
)
from .logging_setup import (
    setup_logging,
    get_service_logger,
    configure_service_loggers,
    log_device_read,
    log_device_write,
    log_frame,
)

__all__ = [
    # Config
    "LimiterConfig",
    "MeterSettings",
    "InverterSettings",
    "ControlSettings",
    "FilterSettings",
    "ServiceSettings",
    "GateSignal",
    "FilterVariant",
    "load_config",
    "validate_config",
    # Exceptions
    "LimiterError",
    "ConfigError",
    "DecodeError",
    "DeviceError",
    "WriteError",
    "DeviceConnectionError",
    "ControlError",
    "ControlEngineError",
    # Logging
    "setup_logging",
    "get_service_logger",
    "configure_service_loggers",
    "log_device_read",
    "log_device_write",
    "log_frame",
]
