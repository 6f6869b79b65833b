"""
Configuration Dataclasses

Type-safe configuration structures for the export limiter.
Loaded from a YAML file by the entry point and passed down to services.
"""

import math
from dataclasses import dataclass, field
from enum import Enum

from .exceptions import ConfigError


class GateSignal(str, Enum):
    """Which export signal opens the control band"""
    RAW = "raw"
    FILTERED = "filtered"


class FilterVariant(str, Enum):
    """Available signal filter strategies"""
    MOVING_AVERAGE = "moving_average"
    BUTTERWORTH = "butterworth"
    BESSEL = "bessel"
    CUSTOM = "custom"


@dataclass
class MeterSettings:
    """Energy meter multicast telemetry"""
    multicast_group: str = "239.12.255.254"
    port: int = 9522
    interface: str = "0.0.0.0"
    meter_id: int = 66560
    frame_length: int = 608


@dataclass
class InverterSettings:
    """Inverter Modbus TCP session"""
    host: str = ""
    port: int = 1502
    unit_id: int = 1
    timeout_s: float = 2.0
    capacity_w: float | None = None  # Overrides the rated power register
    enable_control_on_connect: bool = False
    commit_after_limit: bool = False


@dataclass
class ControlSettings:
    """Export limiting thresholds"""
    max_export_w: float = 6600.0
    control_start_w: float = 5000.0
    control_reset_w: float = 0.0
    deadband_pct: int = 2
    gate_signal: GateSignal = GateSignal.RAW
    reconnect_delay_s: float = 1.0


@dataclass
class FilterSettings:
    """Signal filter selection"""
    variant: FilterVariant = FilterVariant.MOVING_AVERAGE
    b: list[float] = field(default_factory=list)  # feed-forward, custom only
    a: list[float] = field(default_factory=list)  # feedback, custom only


@dataclass
class ServiceSettings:
    """Service runtime configuration"""
    log_level: str = "INFO"
    log_format: str = "json"
    health_port: int = 0  # 0 disables the health server


@dataclass
class LimiterConfig:
    """Complete export limiter configuration"""
    meter: MeterSettings = field(default_factory=MeterSettings)
    inverter: InverterSettings = field(default_factory=InverterSettings)
    control: ControlSettings = field(default_factory=ControlSettings)
    filter: FilterSettings = field(default_factory=FilterSettings)
    service: ServiceSettings = field(default_factory=ServiceSettings)


def _enum(enum_cls, value, key: str):
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(e.value for e in enum_cls)
        raise ConfigError(f"{key}: '{value}' is not one of {allowed}")


_TRUE = ("true", "yes", "on", "1")
_FALSE = ("false", "no", "off", "0")


def _bool(value, key: str) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    if isinstance(value, str):
        text = value.strip().lower()
        if text in _TRUE:
            return True
        if text in _FALSE:
            return False
    raise ConfigError(f"{key}: '{value}' is not a boolean")


def load_config(data: dict | None) -> LimiterConfig:
    """Load LimiterConfig from dictionary (e.g., from a YAML file)"""
    try:
        return _load_config(data or {})
    except (TypeError, ValueError, AttributeError) as e:
        raise ConfigError(f"invalid value: {e}")


def _load_config(data: dict) -> LimiterConfig:
    meter_data = data.get("meter", {}) or {}
    meter = MeterSettings(
        multicast_group=meter_data.get("multicast_group", "239.12.255.254"),
        port=int(meter_data.get("port", 9522)),
        interface=meter_data.get("interface", "0.0.0.0"),
        meter_id=int(meter_data.get("meter_id", 66560)),
        frame_length=int(meter_data.get("frame_length", 608)),
    )

    inverter_data = data.get("inverter", {}) or {}
    capacity = inverter_data.get("capacity_w")
    inverter = InverterSettings(
        host=inverter_data.get("host", ""),
        port=int(inverter_data.get("port", 1502)),
        unit_id=int(inverter_data.get("unit_id", 1)),
        timeout_s=float(inverter_data.get("timeout_s", 2.0)),
        capacity_w=float(capacity) if capacity is not None else None,
        enable_control_on_connect=_bool(
            inverter_data.get("enable_control_on_connect", False),
            "inverter.enable_control_on_connect",
        ),
        commit_after_limit=_bool(
            inverter_data.get("commit_after_limit", False),
            "inverter.commit_after_limit",
        ),
    )

    control_data = data.get("control", {}) or {}
    control = ControlSettings(
        max_export_w=float(control_data.get("max_export_w", 6600.0)),
        control_start_w=float(control_data.get("control_start_w", 5000.0)),
        control_reset_w=float(control_data.get("control_reset_w", 0.0)),
        deadband_pct=int(control_data.get("deadband_pct", 2)),
        gate_signal=_enum(GateSignal, control_data.get("gate_signal", "raw"), "control.gate_signal"),
        reconnect_delay_s=float(control_data.get("reconnect_delay_s", 1.0)),
    )

    filter_data = data.get("filter", {}) or {}
    filter_settings = FilterSettings(
        variant=_enum(
            FilterVariant,
            filter_data.get("variant", "moving_average"),
            "filter.variant",
        ),
        b=[float(c) for c in filter_data.get("b", [])],
        a=[float(c) for c in filter_data.get("a", [])],
    )

    service_data = data.get("service", {}) or {}
    service = ServiceSettings(
        log_level=str(service_data.get("log_level", "INFO")).upper(),
        log_format=str(service_data.get("log_format", "json")).lower(),
        health_port=int(service_data.get("health_port", 0)),
    )

    return LimiterConfig(
        meter=meter,
        inverter=inverter,
        control=control,
        filter=filter_settings,
        service=service,
    )


def validate_config(config: LimiterConfig) -> list[str]:
    """
    Validate the configuration.

    Returns:
        List of error messages, empty when the configuration is usable
    """
    errors = []

    if not config.inverter.host:
        errors.append("inverter.host is required")

    for name, port in (
        ("meter.port", config.meter.port),
        ("inverter.port", config.inverter.port),
    ):
        if not 0 < port < 65536:
            errors.append(f"{name} must be between 1 and 65535")

    if not 0 <= config.service.health_port < 65536:
        errors.append("service.health_port must be between 0 and 65535")

    if not 0 <= config.inverter.unit_id <= 247:
        errors.append("inverter.unit_id must be between 0 and 247")

    if config.inverter.timeout_s <= 0:
        errors.append("inverter.timeout_s must be positive")

    capacity = config.inverter.capacity_w
    if capacity is not None and (math.isnan(capacity) or capacity <= 0):
        errors.append("inverter.capacity_w must be positive")

    if config.meter.frame_length < 56:
        errors.append("meter.frame_length is too short for the frame layout")

    control = config.control
    if control.max_export_w < 0:
        errors.append("control.max_export_w cannot be negative")
    if control.deadband_pct < 0:
        errors.append("control.deadband_pct cannot be negative")
    if control.control_reset_w >= control.control_start_w:
        errors.append("control.control_reset_w must be below control.control_start_w")
    if control.reconnect_delay_s < 0:
        errors.append("control.reconnect_delay_s cannot be negative")

    if config.filter.variant == FilterVariant.CUSTOM:
        if len(config.filter.b) != 4:
            errors.append("filter.b needs exactly 4 feed-forward coefficients")
        if len(config.filter.a) != 3:
            errors.append("filter.a needs exactly 3 feedback coefficients")

    if config.service.log_format not in ("json", "text"):
        errors.append("service.log_format must be 'json' or 'text'")

    return errors
