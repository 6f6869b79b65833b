"""
Device Service - Inverter Register Access

Responsibilities:
- Modbus TCP register transport
- Register value encoding and decoding
- Inverter session lifecycle and semantic register operations
"""

from .modbus_client import ModbusClient, ReadResult, RegisterTransport
from .inverter_session import InverterSession, SessionState

__all__ = [
    "ModbusClient",
    "ReadResult",
    "RegisterTransport",
    "InverterSession",
    "SessionState",
]
