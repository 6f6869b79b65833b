"""
Virtual Solar Inverter (SolarEdge-like)

Simulates an inverter with SunSpec power readings and SolarEdge power
control registers. It implements the Register Transport interface, so
the real inverter session can talk to it without a network.

Register Map:
- 40083: AC power (int16), 40084: AC power scale factor (int16)
- 0xF001: Active power limit (0-100%)
- 0xF100: Commit power control settings
- 0xF142-0xF143: Advanced power control [reserved, enable]
- 0xF304-0xF305: Max active power (float32, low word first)
"""

from dataclasses import dataclass

from export_limiter.common.exceptions import WriteError
from export_limiter.common.logging_setup import get_service_logger
from export_limiter.services.device.inverter_session import (
    REG_AC_POWER,
    REG_ACTIVE_POWER_LIMIT,
    REG_ADVANCED_POWER_CONTROL,
    REG_COMMIT_POWER_CONTROL,
    REG_MAX_ACTIVE_POWER,
)
from export_limiter.services.device.modbus_client import ReadResult, RegisterTransport
from export_limiter.services.device.registers import WordOrder, encode_float32, encode_int16

logger = get_service_logger("simulator.inverter")


@dataclass
class InverterState:
    """
    Holds the current inverter state.
    """
    control_enabled: bool = False
    power_limit_percent: int = 100  # 0-100%
    commits: int = 0

    # Simulated environmental conditions
    available_pv_w: float = 0.0

    # Actual output (calculated from limit and available power)
    actual_output_w: float = 0.0


class VirtualInverter(RegisterTransport):
    """
    In-memory inverter reachable through the Register Transport interface.

    Fault injection:
    - refuse_connect: connect() fails while set
    - fail_next_operation: the next read or write fails, once
    """

    def __init__(
        self,
        rated_power_w: float = 7400.0,
        available_pv_w: float = 0.0,
        host: str = "virtual-inverter",
        port: int = 1502,
    ):
        self.host = host
        self.port = port
        self.rated_power_w = rated_power_w
        self.state = InverterState(available_pv_w=available_pv_w)

        self.refuse_connect = False
        self.fail_next_operation = False

        self._connected = False
        self.connect_calls = 0
        # (operation, address, values) for every register access
        self.operations: list[tuple[str, int, list[int]]] = []

        self._holding_registers: dict[int, int] = {
            REG_ACTIVE_POWER_LIMIT: 100,
            REG_ADVANCED_POWER_CONTROL: 0,
            REG_ADVANCED_POWER_CONTROL + 1: 0,
        }
        self.set_rated_power_register(rated_power_w)
        self._update_output()

        logger.debug(f"Virtual inverter initialized (rated: {rated_power_w:.0f} W)")

    def set_rated_power_register(self, value: float) -> None:
        low, high = encode_float32(value, WordOrder.LITTLE)
        self._holding_registers[REG_MAX_ACTIVE_POWER] = low
        self._holding_registers[REG_MAX_ACTIVE_POWER + 1] = high

    def set_available_pv(self, power_w: float) -> None:
        """Set how much the panels could deliver right now"""
        self.state.available_pv_w = max(0.0, power_w)
        self._update_output()

    def set_output_registers(self, value: int, scale: int) -> None:
        """Force raw AC power registers (value * 10^scale)"""
        self._holding_registers[REG_AC_POWER] = value & 0xFFFF
        self._holding_registers[REG_AC_POWER + 1] = scale & 0xFFFF

    def _update_output(self) -> None:
        """
        Output follows the panels, capped at rated power and, with
        advanced power control on, at the configured limit.
        """
        cap = self.rated_power_w
        if self.state.control_enabled:
            cap = self.rated_power_w * self.state.power_limit_percent / 100

        self.state.actual_output_w = min(self.state.available_pv_w, cap)

        # Scale factor 0 while the value fits, otherwise tens of watts
        watts = round(self.state.actual_output_w)
        if watts <= 0x7FFF:
            self.set_output_registers(encode_int16(watts), 0)
        else:
            self.set_output_registers(encode_int16(round(watts / 10)), 1)

    def get_actual_output_w(self) -> float:
        return self.state.actual_output_w

    @property
    def is_connected(self) -> bool:
        return self._connected

    async def connect(self) -> bool:
        self.connect_calls += 1
        self._connected = not self.refuse_connect
        return self._connected

    async def disconnect(self) -> None:
        self._connected = False

    def _take_fault(self) -> bool:
        if self.fail_next_operation:
            self.fail_next_operation = False
            return True
        return False

    async def read_holding_registers(
        self,
        address: int,
        count: int,
        slave_id: int = 1,
    ) -> ReadResult:
        self.operations.append(("read", address, []))

        if not self._connected:
            return ReadResult(success=False, error="Not connected")
        if self._take_fault():
            return ReadResult(success=False, error="Read timeout")

        registers = [
            self._holding_registers.get(address + offset, 0)
            for offset in range(count)
        ]
        return ReadResult(success=True, registers=registers)

    async def write_register(self, address: int, value: int, slave_id: int = 1) -> bool:
        return await self.write_multiple_registers(address, [value], slave_id)

    async def write_multiple_registers(
        self,
        address: int,
        values: list[int],
        slave_id: int = 1,
    ) -> bool:
        self.operations.append(("write", address, list(values)))

        if not self._connected:
            raise WriteError("Not connected", register=address, value=values)
        if self._take_fault():
            raise WriteError("Write timeout", register=address, value=values)

        for offset, value in enumerate(values):
            self._holding_registers[address + offset] = value & 0xFFFF

        if address == REG_ACTIVE_POWER_LIMIT:
            self.state.power_limit_percent = max(0, min(100, values[0]))
        elif address == REG_ADVANCED_POWER_CONTROL and len(values) >= 2:
            self.state.control_enabled = values[1] != 0
        elif address == REG_COMMIT_POWER_CONTROL:
            self.state.commits += 1

        self._update_output()
        return True

    def writes_to(self, address: int) -> list[list[int]]:
        """Values written to a register, in order"""
        return [values for op, addr, values in self.operations if op == "write" and addr == address]

    def __repr__(self) -> str:
        return (
            f"VirtualInverter(output={self.state.actual_output_w:.0f}W, "
            f"limit={self.state.power_limit_percent}%, "
            f"control={'on' if self.state.control_enabled else 'off'})"
        )
