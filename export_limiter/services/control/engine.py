"""
Control Engine - Export Limiting Decision

Pure decision function, no I/O and no state of its own.

Algorithm:
    over_production = filtered_export - max_export
    desired_power   = inverter_power - over_production
    target_pct      = clamp(round(desired_power / capacity * 100), 0, 100)

Actuation needs both:
- the gating export signal outside the band (above control start or
  below control reset)
- a change worth sending: any decrease, or an increase larger than the
  deadband. Decreases go out immediately to stop export overshoot;
  increases wait for a clear step to avoid command chatter.
"""

import math
from dataclasses import dataclass

from export_limiter.common.config import GateSignal
from export_limiter.common.exceptions import ControlEngineError
from export_limiter.common.logging_setup import get_service_logger

logger = get_service_logger("control.engine")


@dataclass
class ControlDecision:
    """Output of the control engine for one frame"""
    target_pct: int
    should_actuate: bool
    computed_pct: int | None = None
    over_production_w: float = 0.0
    desired_power_w: float = math.nan
    reason: str = ""


def _clamp_pct(value: float) -> int:
    return max(0, min(100, int(value)))


def _check_inputs(capacity: float, *signals: float) -> None:
    if math.isnan(capacity) or math.isinf(capacity) or capacity <= 0:
        raise ControlEngineError(f"inverter capacity {capacity} W is not usable", capacity=capacity)
    for value in signals:
        if math.isnan(value) or math.isinf(value):
            raise ControlEngineError(f"non-finite input {value}")


def decide(
    exported_power_filtered: float,
    max_export_threshold: float,
    current_inverter_power: float,
    inverter_capacity: float,
    exported_power_raw: float,
    control_start_threshold: float,
    control_reset_threshold: float,
    last_percentage: int,
    deadband: int,
    gate_signal: GateSignal = GateSignal.RAW,
) -> ControlDecision:
    """
    Decide whether to write a new power limit.

    When no write is warranted the previous percentage stands as
    target_pct; computed_pct always carries the clamped calculation.
    """
    last_percentage = _clamp_pct(last_percentage)
    over_production = exported_power_filtered - max_export_threshold

    try:
        _check_inputs(
            inverter_capacity,
            exported_power_filtered,
            exported_power_raw,
            current_inverter_power,
        )
    except ControlEngineError as e:
        logger.debug(f"Decision suppressed: {e.message}")
        reason = "invalid_capacity" if e.capacity is not None else "invalid_input"
        return ControlDecision(
            target_pct=last_percentage,
            should_actuate=False,
            over_production_w=over_production,
            reason=reason,
        )

    desired_power = current_inverter_power - over_production
    # Half-up rounding, 90.5% becomes 91%
    desired_pct = math.floor(desired_power / inverter_capacity * 100 + 0.5)
    computed_pct = _clamp_pct(desired_pct)

    gate = exported_power_raw if gate_signal == GateSignal.RAW else exported_power_filtered
    in_control_band = gate > control_start_threshold or gate < control_reset_threshold

    decrease = computed_pct < last_percentage
    increase = computed_pct - last_percentage > deadband

    if not in_control_band:
        reason = "inside_band"
    elif decrease or increase:
        reason = "decrease" if decrease else "increase"
    elif computed_pct == last_percentage:
        reason = "unchanged"
    else:
        reason = "deadband"

    should_actuate = in_control_band and (decrease or increase)

    return ControlDecision(
        target_pct=computed_pct if should_actuate else last_percentage,
        should_actuate=should_actuate,
        computed_pct=computed_pct,
        over_production_w=over_production,
        desired_power_w=desired_power,
        reason=reason,
    )
