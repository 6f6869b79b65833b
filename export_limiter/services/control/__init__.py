"""
Control Service - Export Limiting Loop

Responsibilities:
- Decide the inverter power limit from filtered export power
- Apply limits through the inverter session
- Recover the session after device failures
- Emit one log line per processed meter frame
"""

from .engine import ControlDecision, decide
from .service import LimiterService
from .state import ControlState, FrameRecord

__all__ = ["ControlDecision", "decide", "LimiterService", "ControlState", "FrameRecord"]
