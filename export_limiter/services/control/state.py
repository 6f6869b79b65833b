"""
Control State Dataclasses

Data structures for control loop state.
"""

import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any


@dataclass
class ControlState:
    """State carried from one frame to the next"""
    last_commanded_pct: int = 0
    # Last known value of the advanced power control flag
    control_enabled: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "last_commanded_pct": self.last_commanded_pct,
            "control_enabled": self.control_enabled,
        }


@dataclass
class FrameRecord:
    """Everything observed and done while processing one meter frame"""
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    # Inputs
    import_w: float = 0.0
    export_w: float = 0.0
    export_sample_w: float = 0.0
    filtered_export_w: float = 0.0
    inverter_power_w: float = math.nan
    capacity_w: float = math.nan

    # Decision
    over_production_w: float = 0.0
    computed_pct: int | None = None
    decision_reason: str = ""

    # Output
    limit_pct: int | None = None  # None when nothing was written
    control_enabled_now: bool = False
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging"""
        def number(value: float) -> float | None:
            return None if math.isnan(value) else value

        return {
            "timestamp": self.timestamp.isoformat(),
            "import_w": self.import_w,
            "export_w": self.export_w,
            "export_sample_w": self.export_sample_w,
            "filtered_export_w": self.filtered_export_w,
            "inverter_power_w": number(self.inverter_power_w),
            "capacity_w": number(self.capacity_w),
            "over_production_w": self.over_production_w,
            "computed_pct": self.computed_pct,
            "decision_reason": self.decision_reason,
            "limit_pct": self.limit_pct,
            "control_enabled_now": self.control_enabled_now,
            "error": self.error,
        }


@dataclass
class LoopStats:
    """Counters for the health endpoint"""
    frames_processed: int = 0
    actuations: int = 0
    enable_writes: int = 0
    device_errors: int = 0
    connect_failures: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "frames_processed": self.frames_processed,
            "actuations": self.actuations,
            "enable_writes": self.enable_writes,
            "device_errors": self.device_errors,
            "connect_failures": self.connect_failures,
        }
