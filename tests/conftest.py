import logging

import pytest

from export_limiter.common.config import (
    ControlSettings,
    FilterSettings,
    FilterVariant,
    InverterSettings,
    LimiterConfig,
)
from export_limiter.services.meter.frame_decoder import MeterFrame
from export_limiter.simulator.virtual_inverter import VirtualInverter


class RecordingHandler(logging.Handler):
    """Keeps every record emitted on a logger"""

    def __init__(self):
        super().__init__(level=logging.DEBUG)
        self.records: list[logging.LogRecord] = []

    def emit(self, record: logging.LogRecord) -> None:
        self.records.append(record)


def make_config(**control) -> LimiterConfig:
    """Limiter config with a pass-through filter so raw and filtered export agree"""
    settings = {
        "max_export_w": 6500.0,
        "control_start_w": 1000.0,
        "control_reset_w": 0.0,
        "deadband_pct": 2,
        "reconnect_delay_s": 0.0,
    }
    settings.update(control)
    return LimiterConfig(
        inverter=InverterSettings(host="virtual-inverter"),
        control=ControlSettings(**settings),
        filter=FilterSettings(
            variant=FilterVariant.CUSTOM,
            b=[1.0, 0.0, 0.0, 0.0],
            a=[0.0, 0.0, 0.0],
        ),
    )


def make_frame(export_w: float, import_w: float = 0.0) -> MeterFrame:
    return MeterFrame(meter_id=66560, import_w=import_w, export_w=export_w)


@pytest.fixture
def inverter() -> VirtualInverter:
    """7 kW inverter with enough sun to run at full power"""
    return VirtualInverter(rated_power_w=7000.0, available_pv_w=7000.0)


@pytest.fixture
def control_log():
    """Records emitted by the control loop logger"""
    logger = logging.getLogger("export_limiter.control")
    handler = RecordingHandler()
    old_level = logger.level
    logger.setLevel(logging.DEBUG)
    logger.addHandler(handler)
    yield handler
    logger.removeHandler(handler)
    logger.setLevel(old_level)
