"""
Async Modbus Client

Register Transport for the inverter session: a thin wrapper around the
pymodbus async TCP client exposing connect/disconnect and raw holding
register reads and writes. Reconnection policy belongs to the caller.
"""

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass

from pymodbus.client import AsyncModbusTcpClient
from pymodbus.exceptions import ModbusException

from export_limiter.common.exceptions import WriteError
from export_limiter.common.logging_setup import get_service_logger

logger = get_service_logger("device.modbus")


@dataclass
class ReadResult:
    """Result of a register read operation"""
    success: bool
    registers: list[int] | None = None
    error: str | None = None


class RegisterTransport(ABC):
    """Atomic read/write of numbered holding registers on a remote device"""

    host: str = ""
    port: int = 0

    @property
    @abstractmethod
    def is_connected(self) -> bool:
        pass

    @abstractmethod
    async def connect(self) -> bool:
        """Open the connection, True on success"""
        pass

    @abstractmethod
    async def disconnect(self) -> None:
        pass

    @abstractmethod
    async def read_holding_registers(
        self,
        address: int,
        count: int,
        slave_id: int = 1,
    ) -> ReadResult:
        pass

    @abstractmethod
    async def write_register(self, address: int, value: int, slave_id: int = 1) -> bool:
        """Write one register, raising WriteError on failure"""
        pass

    @abstractmethod
    async def write_multiple_registers(
        self,
        address: int,
        values: list[int],
        slave_id: int = 1,
    ) -> bool:
        """Write consecutive registers, raising WriteError on failure"""
        pass


class ModbusClient(RegisterTransport):
    """
    Async Modbus TCP client.

    Every call is bounded by the client timeout; a call that times out
    or fails is reported to the caller, never retried here.
    """

    def __init__(
        self,
        host: str,
        port: int = 502,
        timeout: float = 2.0,
    ):
        self.host = host
        self.port = port
        self.timeout = timeout

        self._client: AsyncModbusTcpClient | None = None
        self._lock = asyncio.Lock()
        self._connected = False

    @property
    def is_connected(self) -> bool:
        return self._connected and self._client is not None and self._client.connected

    async def connect(self) -> bool:
        """Establish connection to Modbus device"""
        async with self._lock:
            if self.is_connected:
                return True

            if self._client:
                self._client.close()

            try:
                self._client = AsyncModbusTcpClient(
                    host=self.host,
                    port=self.port,
                    timeout=self.timeout,
                    retries=0,
                    reconnect_delay=0,
                )

                await self._client.connect()
                self._connected = self._client.connected

                if self._connected:
                    logger.debug(
                        f"Connected to Modbus device at {self.host}:{self.port}"
                    )
                else:
                    logger.warning(
                        f"Failed to connect to Modbus device at {self.host}:{self.port}"
                    )

                return self._connected

            except (ModbusException, OSError, asyncio.TimeoutError) as e:
                logger.error(f"Connection error to {self.host}:{self.port}: {e}")
                self._connected = False
                return False

    async def disconnect(self) -> None:
        """Close connection"""
        async with self._lock:
            if self._client:
                self._client.close()
                self._client = None
            self._connected = False
            logger.debug(f"Disconnected from {self.host}:{self.port}")

    async def read_holding_registers(
        self,
        address: int,
        count: int,
        slave_id: int = 1,
    ) -> ReadResult:
        """
        Read holding registers.

        Args:
            address: Starting register address
            count: Number of registers to read
            slave_id: Modbus unit id

        Returns:
            ReadResult with the raw registers
        """
        if not self.is_connected:
            return ReadResult(
                success=False,
                error=f"Not connected to {self.host}:{self.port}",
            )

        try:
            response = await self._client.read_holding_registers(
                address=address,
                count=count,
                device_id=slave_id,
            )

            if response.isError():
                return ReadResult(
                    success=False,
                    error=f"Modbus error: {response}",
                )

            return ReadResult(success=True, registers=list(response.registers))

        except ModbusException as e:
            return ReadResult(success=False, error=f"Modbus exception: {e}")
        except asyncio.TimeoutError:
            return ReadResult(success=False, error="Read timeout")
        except OSError as e:
            return ReadResult(success=False, error=f"Socket error: {e}")

    async def write_register(
        self,
        address: int,
        value: int,
        slave_id: int = 1,
    ) -> bool:
        """
        Write a single holding register.

        Args:
            address: Register address
            value: Value to write (16-bit integer)
            slave_id: Modbus unit id

        Returns:
            True if write successful
        """
        if not self.is_connected:
            raise WriteError(
                f"Not connected to {self.host}:{self.port}",
                register=address,
                value=value,
            )

        try:
            response = await self._client.write_register(
                address=address,
                value=value,
                device_id=slave_id,
            )
        except (ModbusException, OSError, asyncio.TimeoutError) as e:
            raise WriteError(
                f"Modbus exception: {e}",
                register=address,
                value=value,
            ) from e

        if response.isError():
            raise WriteError(
                f"Write failed: {response}",
                register=address,
                value=value,
            )

        logger.debug(
            f"Write successful: {self.host}:{self.port} slave={slave_id} "
            f"reg={address} value={value}"
        )
        return True

    async def write_multiple_registers(
        self,
        address: int,
        values: list[int],
        slave_id: int = 1,
    ) -> bool:
        """
        Write multiple holding registers.

        Args:
            address: Starting register address
            values: List of 16-bit integer values
            slave_id: Modbus unit id

        Returns:
            True if write successful
        """
        if not self.is_connected:
            raise WriteError(
                f"Not connected to {self.host}:{self.port}",
                register=address,
                value=values,
            )

        try:
            response = await self._client.write_registers(
                address=address,
                values=values,
                device_id=slave_id,
            )
        except (ModbusException, OSError, asyncio.TimeoutError) as e:
            raise WriteError(
                f"Modbus exception: {e}",
                register=address,
                value=values,
            ) from e

        if response.isError():
            raise WriteError(
                f"Write failed: {response}",
                register=address,
                value=values,
            )

        return True
