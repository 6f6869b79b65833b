"""
Export Limiter

Closed-loop export power limiter for a grid-tied solar inverter.
Listens to energy meter multicast telemetry and caps the inverter's
active power over Modbus TCP so grid feed-in stays below a threshold.
"""

__version__ = "1.0.0"
