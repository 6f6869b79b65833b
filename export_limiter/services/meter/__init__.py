"""
Meter Service - Energy Meter Telemetry

Responsibilities:
- Decode multicast meter frames into grid readings
- Receive datagrams and hand accepted frames to the control loop
"""

from .frame_decoder import MeterFrame, FrameLayout, decode_frame, parse_frame
from .listener import MeterListener, FrameMailbox

__all__ = [
    "MeterFrame",
    "FrameLayout",
    "decode_frame",
    "parse_frame",
    "MeterListener",
    "FrameMailbox",
]
