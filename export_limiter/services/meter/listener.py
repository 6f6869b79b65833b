"""
Meter Multicast Listener

Joins the meter's multicast group and hands decoded frames to the
control loop through a single-slot mailbox. Reception never waits on
the control loop: if the previous frame is still waiting when a new
one arrives, the waiting frame is replaced by the newer one.
"""

import asyncio
import socket
import struct

from export_limiter.common.config import MeterSettings
from export_limiter.common.logging_setup import get_service_logger
from .frame_decoder import FrameLayout, MeterFrame, decode_frame

logger = get_service_logger("meter.listener")


class FrameMailbox:
    """
    Single-slot hand-off between datagram reception and the worker.

    Frames are delivered in arrival order; a frame is only ever
    replaced by a newer one, never reordered.
    """

    def __init__(self):
        self._queue: asyncio.Queue[MeterFrame] = asyncio.Queue(maxsize=1)
        self.coalesced = 0

    def put(self, frame: MeterFrame) -> None:
        if self._queue.full():
            self._queue.get_nowait()
            self.coalesced += 1
            logger.debug("Control cycle busy, replaced waiting frame")
        self._queue.put_nowait(frame)

    async def get(self) -> MeterFrame:
        return await self._queue.get()

    def pending(self) -> bool:
        return not self._queue.empty()


class _MeterProtocol(asyncio.DatagramProtocol):
    """Datagram callbacks for the multicast socket"""

    def __init__(self, listener: "MeterListener"):
        self._listener = listener

    def datagram_received(self, data: bytes, addr) -> None:
        self._listener.handle_datagram(data)

    def error_received(self, exc: Exception) -> None:
        logger.warning(f"Meter socket error: {exc}")


def create_multicast_socket(settings: MeterSettings) -> socket.socket:
    """Bind a UDP socket to the meter port and join the multicast group"""
    sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM, socket.IPPROTO_UDP)
    sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
    if hasattr(socket, "SO_REUSEPORT"):
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEPORT, 1)
    sock.bind(("", settings.port))

    membership = struct.pack(
        "4s4s",
        socket.inet_aton(settings.multicast_group),
        socket.inet_aton(settings.interface),
    )
    sock.setsockopt(socket.IPPROTO_IP, socket.IP_ADD_MEMBERSHIP, membership)
    sock.setblocking(False)
    return sock


class MeterListener:
    """
    Receives meter datagrams and feeds accepted frames to a mailbox.

    Decoding happens in the receive callback so frames from other
    meters never occupy the mailbox.
    """

    def __init__(self, settings: MeterSettings, mailbox: FrameMailbox):
        self.settings = settings
        self.mailbox = mailbox
        self.layout = FrameLayout(length=settings.frame_length)
        self._transport: asyncio.DatagramTransport | None = None

        self.datagrams_received = 0
        self.frames_accepted = 0

    def handle_datagram(self, data: bytes) -> MeterFrame | None:
        self.datagrams_received += 1
        frame = decode_frame(data, self.settings.meter_id, self.layout)
        if frame is None:
            return None

        self.frames_accepted += 1
        self.mailbox.put(frame)
        return frame

    async def start(self) -> None:
        """Open the multicast socket"""
        loop = asyncio.get_running_loop()
        sock = create_multicast_socket(self.settings)
        self._transport, _ = await loop.create_datagram_endpoint(
            lambda: _MeterProtocol(self),
            sock=sock,
        )
        logger.info(
            f"Listening for meter {self.settings.meter_id} on "
            f"{self.settings.multicast_group}:{self.settings.port}",
            extra={
                "multicast_group": self.settings.multicast_group,
                "port": self.settings.port,
            },
        )

    def close(self) -> None:
        if self._transport:
            self._transport.close()
            self._transport = None
            logger.info("Meter listener closed")
