"""
Export Limiter Services

- Meter Service - Multicast telemetry reception and frame decoding
- Filter Service - Export signal smoothing
- Device Service - Modbus register transport and inverter session
- Control Service - Decision engine and control loop
"""
