"""
Limiter Service - Export Control Loop

Responsible for:
- Receiving meter frames and running one control cycle per frame
- Filtering the export signal and asking the engine for a decision
- Writing limits to the inverter, switching on power control when needed
- Tearing down and re-establishing the inverter session after failures
- Emitting one log line per processed frame
"""

import asyncio
import math
import signal
import time
from datetime import datetime, timezone
from typing import Callable

from aiohttp import web

from export_limiter.common.config import LimiterConfig
from export_limiter.common.exceptions import DeviceConnectionError, DeviceError
from export_limiter.common.logging_setup import get_service_logger, log_frame
from export_limiter.services.device.inverter_session import InverterSession
from export_limiter.services.device.modbus_client import ModbusClient, RegisterTransport
from export_limiter.services.filter.signal_filter import create_filter
from export_limiter.services.meter.frame_decoder import MeterFrame
from export_limiter.services.meter.listener import FrameMailbox, MeterListener

from .engine import decide
from .state import ControlState, FrameRecord, LoopStats

logger = get_service_logger("control")


class LimiterService:
    """
    Export limiter control loop.

    Frames are processed strictly one at a time by a single worker;
    the inverter session is never used concurrently.
    """

    def __init__(
        self,
        config: LimiterConfig,
        transport: RegisterTransport | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config
        self._clock = clock

        if transport is None:
            transport = ModbusClient(
                host=config.inverter.host,
                port=config.inverter.port,
                timeout=config.inverter.timeout_s,
            )
        self.session = InverterSession(transport, unit_id=config.inverter.unit_id)

        self.signal_filter = create_filter(config.filter)
        self.control_state = ControlState()
        self.stats = LoopStats()

        self.mailbox = FrameMailbox()
        self.listener = MeterListener(config.meter, self.mailbox)

        override = config.inverter.capacity_w
        self.capacity_w: float = override if override else math.nan

        self._last_connect_attempt: float | None = None
        self._capacity_warned = False
        self._last_record: FrameRecord | None = None
        self._start_time = datetime.now(timezone.utc)

        # Health server
        self._health_app: web.Application | None = None
        self._health_runner: web.AppRunner | None = None

        # State
        self._running = False
        self._worker_task: asyncio.Task | None = None
        self._shutdown_event = asyncio.Event()

    async def start(self) -> None:
        """Start the service and run until shutdown is requested"""
        logger.info("Starting Limiter Service")

        self._running = True

        # A dead inverter at startup is not fatal, the first frame retries
        if await self._ensure_session() and math.isnan(self.capacity_w):
            try:
                await self._read_capacity()
            except DeviceError:
                self.stats.device_errors += 1

        await self.listener.start()

        self._worker_task = asyncio.create_task(self._worker_loop())

        if self.config.service.health_port:
            await self._start_health_server()

        logger.info(
            f"Limiter Service started (max export {self.config.control.max_export_w:.0f}W, "
            f"filter {self.signal_filter.variant})",
            extra={
                "max_export_w": self.config.control.max_export_w,
                "filter": self.signal_filter.variant,
            },
        )

        self._setup_signal_handlers()

        await self._shutdown_event.wait()

    async def stop(self) -> None:
        """Stop the service"""
        logger.info("Stopping Limiter Service")

        self._running = False

        if self._worker_task:
            self._worker_task.cancel()
            try:
                await self._worker_task
            except asyncio.CancelledError:
                pass

        self.listener.close()
        await self.session.disconnect()
        await self._stop_health_server()

        logger.info("Limiter Service stopped")

    def request_shutdown(self) -> None:
        self._shutdown_event.set()

    def _setup_signal_handlers(self) -> None:
        """Setup graceful shutdown signal handlers"""
        loop = asyncio.get_running_loop()

        for sig in (signal.SIGTERM, signal.SIGINT):
            try:
                loop.add_signal_handler(sig, self._handle_shutdown)
            except NotImplementedError:
                signal.signal(sig, lambda s, f: self._handle_shutdown())

    def _handle_shutdown(self) -> None:
        logger.info("Received shutdown signal")
        self.request_shutdown()

    async def _worker_loop(self) -> None:
        """Take frames from the mailbox one at a time"""
        while self._running:
            frame = await self.mailbox.get()
            try:
                await self.process_frame(frame)
            except Exception as e:
                # Keep the loop alive whatever happens to a single frame
                logger.exception(f"Control loop error: {e}")

    async def _ensure_session(self) -> bool:
        """
        Connect the inverter session if needed.

        Returns True when the session is usable for this cycle.
        """
        if self.session.is_connected:
            return True

        # Only a refused connect holds off the next attempt
        now = self._clock()
        if (
            self._last_connect_attempt is not None
            and now - self._last_connect_attempt < self.config.control.reconnect_delay_s
        ):
            return False

        try:
            await self.session.connect()
        except DeviceConnectionError as e:
            self._last_connect_attempt = now
            self.stats.connect_failures += 1
            logger.warning(e.message, extra={"host": e.host, "port": e.port})
            return False
        self._last_connect_attempt = None

        # Nothing is known about the device after a reconnect
        self.control_state.control_enabled = False

        if self.config.inverter.enable_control_on_connect:
            try:
                await self.session.set_control_enabled(True)
            except DeviceError:
                self.stats.device_errors += 1
                return False
            self.control_state.control_enabled = True
            logger.info("Advanced power control switched on")

        return True

    async def _read_capacity(self) -> None:
        value = await self.session.read_max_active_power()
        if math.isnan(value) or value <= 0:
            if not self._capacity_warned:
                logger.warning(
                    f"Rated active power register holds {value}, "
                    "limits are suspended until a capacity is known"
                )
                self._capacity_warned = True
            return

        self._capacity_warned = False
        self.capacity_w = value
        logger.info(f"Max Active Power: {value:.0f}W", extra={"capacity_w": value})

    async def process_frame(self, frame: MeterFrame) -> FrameRecord:
        """Run one complete control cycle for an accepted frame"""
        control = self.config.control

        record = FrameRecord(
            timestamp=frame.received_at,
            import_w=frame.import_w,
            export_w=frame.export_w,
            export_sample_w=frame.export_sample,
        )
        record.filtered_export_w = self.signal_filter.filter(frame.export_sample)
        record.over_production_w = record.filtered_export_w - control.max_export_w
        record.capacity_w = self.capacity_w
        self.stats.frames_processed += 1

        try:
            await self._run_cycle(record)
        except DeviceError as e:
            # The session is already down; this frame's decision is dropped
            self.stats.device_errors += 1
            record.error = e.message
            record.limit_pct = None
            logger.warning(f"Control decision dropped: {e.message}")

        self._last_record = record

        log_frame(
            logger,
            timestamp=record.timestamp,
            export_w=record.export_sample_w,
            inverter_power_w=record.inverter_power_w,
            over_production_w=record.over_production_w,
            limit_pct=record.limit_pct,
            control_enabled_now=record.control_enabled_now,
        )
        return record

    async def _run_cycle(self, record: FrameRecord) -> None:
        control = self.config.control

        if not await self._ensure_session():
            record.error = "inverter not connected"
            return

        if math.isnan(self.capacity_w):
            await self._read_capacity()
        record.capacity_w = self.capacity_w

        record.inverter_power_w = await self.session.read_inverter_power()

        decision = decide(
            exported_power_filtered=record.filtered_export_w,
            max_export_threshold=control.max_export_w,
            current_inverter_power=record.inverter_power_w,
            inverter_capacity=self.capacity_w,
            exported_power_raw=record.export_sample_w,
            control_start_threshold=control.control_start_w,
            control_reset_threshold=control.control_reset_w,
            last_percentage=self.control_state.last_commanded_pct,
            deadband=control.deadband_pct,
            gate_signal=control.gate_signal,
        )
        record.over_production_w = decision.over_production_w
        record.computed_pct = decision.computed_pct
        record.decision_reason = decision.reason

        if not decision.should_actuate:
            return

        enabled = await self.session.read_control_enabled()
        if not enabled:
            await self.session.set_control_enabled(True)
            record.control_enabled_now = True
            self.stats.enable_writes += 1
        self.control_state.control_enabled = True

        logger.debug(f"Setting inverter to {decision.target_pct}%")
        written = await self.session.set_power_limit_percent(decision.target_pct)

        if self.config.inverter.commit_after_limit:
            await self.session.commit_power_control()

        self.control_state.last_commanded_pct = written
        record.limit_pct = written
        self.stats.actuations += 1

    def snapshot(self) -> dict:
        """Current loop state as plain data"""
        uptime = (datetime.now(timezone.utc) - self._start_time).total_seconds()
        return {
            "uptime": int(uptime),
            "session": self.session.state.value,
            "capacity_w": None if math.isnan(self.capacity_w) else self.capacity_w,
            "filter": self.signal_filter.variant,
            "control_state": self.control_state.to_dict(),
            "stats": {
                **self.stats.to_dict(),
                "frames_coalesced": self.mailbox.coalesced,
                "datagrams_received": self.listener.datagrams_received,
            },
            "last_frame": self._last_record.to_dict() if self._last_record else None,
        }

    def build_health_app(self) -> web.Application:
        """HTTP app serving /health and /state"""
        app = web.Application()
        app.router.add_get("/health", self._health_handler)
        app.router.add_get("/state", self._state_handler)
        return app

    async def _start_health_server(self) -> None:
        """Start the health check HTTP server"""
        self._health_app = self.build_health_app()

        self._health_runner = web.AppRunner(self._health_app)
        await self._health_runner.setup()

        port = self.config.service.health_port
        site = web.TCPSite(self._health_runner, "127.0.0.1", port)
        await site.start()

        logger.info(f"Health server started on port {port}")

    async def _stop_health_server(self) -> None:
        if self._health_runner:
            await self._health_runner.cleanup()
            self._health_runner = None

    async def _health_handler(self, request: web.Request) -> web.Response:
        """Handle health check requests"""
        snapshot = self.snapshot()
        return web.json_response({
            "status": "healthy" if self._running else "unhealthy",
            "service": "export_limiter",
            "uptime": snapshot["uptime"],
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "session": snapshot["session"],
            "stats": snapshot["stats"],
        })

    async def _state_handler(self, request: web.Request) -> web.Response:
        """Return current loop state"""
        return web.json_response(self.snapshot())
