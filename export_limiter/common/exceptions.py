"""
Custom Exception Classes for the Export Limiter

Hierarchical exception structure for error handling across services.
"""


class LimiterError(Exception):
    """Base exception for all export limiter errors"""

    def __init__(self, message: str, recoverable: bool = True):
        self.message = message
        self.recoverable = recoverable
        super().__init__(message)


class ConfigError(LimiterError):
    """Configuration-related errors"""

    def __init__(self, message: str, recoverable: bool = False):
        super().__init__(f"Config Error: {message}", recoverable)


class DecodeError(LimiterError):
    """Telemetry frame could not be decoded"""

    def __init__(self, message: str, length: int | None = None):
        self.length = length
        super().__init__(f"Decode Error: {message}", recoverable=True)


class DeviceError(LimiterError):
    """Register read/write failed on an established session"""

    def __init__(
        self,
        message: str,
        register: int | None = None,
        recoverable: bool = True,
    ):
        self.register = register
        super().__init__(f"Device Error: {message}", recoverable)


class WriteError(DeviceError):
    """Register write failed errors"""

    def __init__(
        self,
        message: str,
        register: int | None = None,
        value: int | list[int] | None = None,
    ):
        self.value = value
        super().__init__(message, register, recoverable=True)


class DeviceConnectionError(LimiterError):
    """Session to the inverter could not be established"""

    def __init__(
        self,
        message: str,
        host: str | None = None,
        port: int | None = None,
    ):
        self.host = host
        self.port = port
        super().__init__(f"Connection Error: {message}", recoverable=True)


class ControlError(LimiterError):
    """Control algorithm errors"""

    def __init__(self, message: str, recoverable: bool = False):
        super().__init__(f"Control Error: {message}", recoverable)


class ControlEngineError(ControlError):
    """Engine inputs do not allow a decision (e.g. unknown capacity)"""

    def __init__(self, message: str, capacity: float | None = None):
        self.capacity = capacity
        super().__init__(message, recoverable=True)
