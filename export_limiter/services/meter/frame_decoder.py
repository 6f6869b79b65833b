"""
Meter Frame Decoder

Parses the fixed-layout multicast datagrams broadcast by the home
energy meter. All fields are big-endian unsigned 32-bit integers in
units of 0.1 W.

Only frames whose meter identifier matches the configured id carry the
grid connection point telemetry; everything else on the group is
ignored.
"""

import struct
from dataclasses import dataclass, field
from datetime import datetime, timezone

from export_limiter.common.exceptions import DecodeError
from export_limiter.common.logging_setup import get_service_logger

logger = get_service_logger("meter.decoder")

POWER_SCALE = 0.1
_U32 = struct.Struct(">I")


@dataclass(frozen=True)
class FrameLayout:
    """Byte offsets of the fields read from a frame"""
    length: int = 608
    meter_id_offset: int = 28
    import_offset: int = 32
    export_offset: int = 52


DEFAULT_LAYOUT = FrameLayout()


@dataclass
class MeterFrame:
    """Decoded grid connection point reading"""
    meter_id: int
    import_w: float
    export_w: float
    received_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def export_sample(self) -> float:
        """Net feed-in (positive) or draw (negative) in watts"""
        return self.export_w - self.import_w


def _read_u32(data: bytes, offset: int) -> int:
    if offset < 0 or offset + _U32.size > len(data):
        raise DecodeError(
            f"field at offset {offset} outside frame of {len(data)} bytes",
            length=len(data),
        )
    return _U32.unpack_from(data, offset)[0]


def parse_frame(data: bytes, layout: FrameLayout = DEFAULT_LAYOUT) -> MeterFrame:
    """
    Parse a raw datagram.

    Raises:
        DecodeError: length differs from the layout or a field is out of bounds
    """
    if len(data) != layout.length:
        raise DecodeError(
            f"expected {layout.length} bytes, got {len(data)}",
            length=len(data),
        )

    meter_id = _read_u32(data, layout.meter_id_offset)
    import_w = _read_u32(data, layout.import_offset) * POWER_SCALE
    export_w = _read_u32(data, layout.export_offset) * POWER_SCALE

    return MeterFrame(meter_id=meter_id, import_w=import_w, export_w=export_w)


def decode_frame(
    data: bytes,
    meter_id: int,
    layout: FrameLayout = DEFAULT_LAYOUT,
) -> MeterFrame | None:
    """
    Decode a datagram for the given meter.

    Returns None for anything that is not grid telemetry from that
    meter: wrong length, truncated fields or another meter id.
    """
    try:
        frame = parse_frame(data, layout)
    except DecodeError as e:
        logger.debug(f"Dropped datagram: {e.message}")
        return None

    if frame.meter_id != meter_id:
        return None

    return frame
