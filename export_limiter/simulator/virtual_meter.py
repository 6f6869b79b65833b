"""
Virtual Energy Meter (Home Manager-like)

Builds the multicast telemetry frames broadcast by a home energy meter.
Only the fields the limiter reads are filled in: meter id, import
power and export power, each a big-endian u32 in units of 0.1 W.
"""

import socket
import struct

from export_limiter.services.meter.frame_decoder import DEFAULT_LAYOUT, FrameLayout

DEFAULT_METER_ID = 66560


def build_frame(
    import_w: float,
    export_w: float,
    meter_id: int = DEFAULT_METER_ID,
    layout: FrameLayout = DEFAULT_LAYOUT,
) -> bytes:
    """Encode one frame with the given readings"""
    frame = bytearray(layout.length)
    frame[0:4] = b"SMA\x00"
    struct.pack_into(">I", frame, layout.meter_id_offset, meter_id)
    struct.pack_into(">I", frame, layout.import_offset, round(import_w * 10))
    struct.pack_into(">I", frame, layout.export_offset, round(export_w * 10))
    return bytes(frame)


class VirtualMeter:
    """
    Meter at the grid connection point.

    Positive net power is feed-in (export), negative is draw (import).
    """

    def __init__(self, meter_id: int = DEFAULT_METER_ID):
        self.meter_id = meter_id
        self.net_power_w = 0.0

    def set_net_power(self, power_w: float) -> None:
        self.net_power_w = power_w

    @property
    def import_w(self) -> float:
        return max(0.0, -self.net_power_w)

    @property
    def export_w(self) -> float:
        return max(0.0, self.net_power_w)

    def frame(self) -> bytes:
        return build_frame(self.import_w, self.export_w, self.meter_id)

    def broadcast(self, group: str = "239.12.255.254", port: int = 9522, ttl: int = 1) -> None:
        """Send the current frame to the multicast group"""
        with socket.socket(socket.AF_INET, socket.SOCK_DGRAM, socket.IPPROTO_UDP) as sock:
            sock.setsockopt(socket.IPPROTO_IP, socket.IP_MULTICAST_TTL, ttl)
            sock.sendto(self.frame(), (group, port))

    def __repr__(self) -> str:
        return f"VirtualMeter(import={self.import_w:.0f}W, export={self.export_w:.0f}W)"
