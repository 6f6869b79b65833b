"""
Inverter Session

Owns the Register Transport for one inverter and exposes the semantic
operations the control loop needs. Protocol value encoding (SunSpec
scale factors, word order of the rated power float) lives here.

State machine:
    DISCONNECTED --connect() ok--> CONNECTED
    CONNECTED --any read/write failure--> DISCONNECTED

The session never reconnects on its own; the caller decides when to
call connect() again. Nothing is sent to the device while disconnected.
"""

import math
from enum import Enum

from export_limiter.common.exceptions import DeviceConnectionError, DeviceError, WriteError
from export_limiter.common.logging_setup import get_service_logger, log_device_read, log_device_write
from .modbus_client import RegisterTransport
from .registers import WordOrder, decode_float32, decode_scaled_int16

logger = get_service_logger("device.session")

# SunSpec inverter model: I_AC_Power followed by I_AC_Power_SF
REG_AC_POWER = 40083
# SolarEdge power control block
REG_ACTIVE_POWER_LIMIT = 0xF001       # 61441, percent of rated power
REG_COMMIT_POWER_CONTROL = 0xF100     # 61696
REG_ADVANCED_POWER_CONTROL = 0xF142   # 61762, [reserved, enable]
REG_MAX_ACTIVE_POWER = 0xF304         # 62212, float32, low word first


class SessionState(str, Enum):
    """Inverter session connection state"""
    DISCONNECTED = "disconnected"
    CONNECTED = "connected"


class InverterSession:
    """
    Semantic register operations on a single inverter.

    Not safe for concurrent use: the caller serializes all operations.
    """

    def __init__(
        self,
        transport: RegisterTransport,
        unit_id: int = 1,
        name: str = "inverter",
    ):
        self.transport = transport
        self.unit_id = unit_id
        self.name = name
        self.state = SessionState.DISCONNECTED

        self.connect_count = 0
        self.failure_count = 0

    @property
    def is_connected(self) -> bool:
        return self.state == SessionState.CONNECTED

    async def connect(self) -> None:
        """
        Establish the session.

        Raises:
            DeviceConnectionError: the device refused or did not answer
        """
        # Drop whatever is left of a previous connection first
        await self.transport.disconnect()

        connected = await self.transport.connect()
        if not connected:
            self.state = SessionState.DISCONNECTED
            raise DeviceConnectionError(
                f"{self.name} unreachable at {self.transport.host}:{self.transport.port}",
                host=self.transport.host,
                port=self.transport.port,
            )

        self.state = SessionState.CONNECTED
        self.connect_count += 1
        logger.info(
            f"Session to {self.name} established (unit {self.unit_id})",
            extra={"host": self.transport.host, "port": self.transport.port},
        )

    async def disconnect(self) -> None:
        self.state = SessionState.DISCONNECTED
        await self.transport.disconnect()

    async def _fail(self, error: DeviceError) -> None:
        self.failure_count += 1
        self.state = SessionState.DISCONNECTED
        await self.transport.disconnect()
        logger.error(
            f"{error.message}; session to {self.name} closed",
            extra={"register": error.register},
        )

    def _require_connected(self, register: int) -> None:
        if not self.is_connected:
            raise DeviceError(f"{self.name} is not connected", register=register)

    async def _read(self, address: int, count: int) -> list[int]:
        self._require_connected(address)

        result = await self.transport.read_holding_registers(
            address=address,
            count=count,
            slave_id=self.unit_id,
        )

        if not result.success or result.registers is None or len(result.registers) < count:
            error = DeviceError(
                f"Read of {count} registers at {address} failed: "
                f"{result.error or 'short response'}",
                register=address,
            )
            log_device_read(logger, self.name, str(address), None, success=False)
            await self._fail(error)
            raise error

        log_device_read(logger, self.name, str(address), result.registers)
        return result.registers[:count]

    async def _write(self, address: int, values: list[int]) -> None:
        self._require_connected(address)

        try:
            if len(values) == 1:
                await self.transport.write_register(
                    address=address,
                    value=values[0],
                    slave_id=self.unit_id,
                )
            else:
                await self.transport.write_multiple_registers(
                    address=address,
                    values=values,
                    slave_id=self.unit_id,
                )
        except WriteError as e:
            log_device_write(logger, self.name, str(address), values, success=False)
            await self._fail(e)
            raise

        log_device_write(logger, self.name, str(address), values)

    async def read_inverter_power(self) -> float:
        """Current AC output in watts"""
        value, scale = await self._read(REG_AC_POWER, 2)
        return decode_scaled_int16(value, scale)

    async def read_control_enabled(self) -> bool:
        """Whether advanced power control is switched on"""
        registers = await self._read(REG_ADVANCED_POWER_CONTROL, 2)
        return registers[1] != 0

    async def set_control_enabled(self, on: bool) -> None:
        await self._write(REG_ADVANCED_POWER_CONTROL, [0, 1 if on else 0])

    async def set_power_limit_percent(self, pct: int) -> int:
        """Write the active power limit, clamped to 0-100. Returns the value written."""
        pct = max(0, min(100, int(pct)))
        await self._write(REG_ACTIVE_POWER_LIMIT, [pct])
        return pct

    async def commit_power_control(self) -> None:
        """Ask the inverter to apply pending power control settings"""
        await self._write(REG_COMMIT_POWER_CONTROL, [1])

    async def read_max_active_power(self) -> float:
        """
        Rated active power in watts.

        Returns NaN when the register holds no usable number.
        """
        registers = await self._read(REG_MAX_ACTIVE_POWER, 2)
        value = decode_float32(registers, WordOrder.LITTLE)
        if value is None:
            return math.nan
        return float(value)
