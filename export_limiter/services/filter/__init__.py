"""
Filter Service - Export Signal Smoothing

Responsibilities:
- Damp short meter fluctuations before they reach the control engine
- Provide swappable filter strategies with independently owned state
"""

from .signal_filter import (
    FilterCoefficients,
    FilterState,
    SignalFilter,
    create_filter,
    step,
)

__all__ = [
    "FilterCoefficients",
    "FilterState",
    "SignalFilter",
    "create_filter",
    "step",
]
