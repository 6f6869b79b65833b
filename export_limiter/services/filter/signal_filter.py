"""
Signal Filter - Pluggable Low-Pass Strategies

Smooths the raw export power signal before it drives the size of the
inverter command. Every strategy is a third-order direct-form IIR
section:

    y[n] = b0*x[n] + b1*x[n-1] + b2*x[n-2] + b3*x[n-3]
                   - a1*y[n-1] - a2*y[n-2] - a3*y[n-3]

The 3-tap moving average is the degenerate case with no feedback.
New strategies can be added by registering a FilterCoefficients entry
in FILTERS.
"""

import math
from dataclasses import dataclass

from export_limiter.common.config import FilterSettings, FilterVariant
from export_limiter.common.exceptions import ConfigError
from export_limiter.common.logging_setup import get_service_logger

logger = get_service_logger("filter")


@dataclass(frozen=True)
class FilterCoefficients:
    """Feed-forward (b0..b3) and feedback (a1..a3) coefficients"""
    b: tuple[float, float, float, float]
    a: tuple[float, float, float] = (0.0, 0.0, 0.0)

    def dc_gain(self) -> float:
        denominator = 1.0 + sum(self.a)
        if denominator == 0:
            return math.inf
        return sum(self.b) / denominator

    def normalized(self) -> "FilterCoefficients":
        """Scale the feed-forward side so a constant input passes unchanged"""
        gain = self.dc_gain()
        if gain == 0 or math.isinf(gain):
            return self
        return FilterCoefficients(
            b=tuple(c / gain for c in self.b),
            a=self.a,
        )


@dataclass(frozen=True)
class FilterState:
    """Last three inputs and outputs, most recent first"""
    x: tuple[float, float, float] = (0.0, 0.0, 0.0)
    y: tuple[float, float, float] = (0.0, 0.0, 0.0)


def step(
    coefficients: FilterCoefficients,
    state: FilterState,
    x: float,
) -> tuple[float, FilterState]:
    """Run one sample through the section and return (output, next state)"""
    b0, b1, b2, b3 = coefficients.b
    a1, a2, a3 = coefficients.a
    x1, x2, x3 = state.x
    y1, y2, y3 = state.y

    y = b0 * x + b1 * x1 + b2 * x2 + b3 * x3 - a1 * y1 - a2 * y2 - a3 * y3

    return y, FilterState(x=(x, x1, x2), y=(y, y1, y2))


# Strategy registry - add new variants here
FILTERS: dict[str, FilterCoefficients] = {
    # 3-sample moving average (unit gain, no overshoot)
    "moving_average": FilterCoefficients(b=(1 / 3, 1 / 3, 1 / 3, 0.0)),
    # 3rd-order Butterworth low-pass
    "butterworth": FilterCoefficients(
        b=(0.0285, 0.0855, 0.0855, 0.0285),
        a=(-1.6245, 1.1228, -0.2913),
    ).normalized(),
    # 3rd-order Bessel low-pass (0.2*pi cutoff)
    "bessel": FilterCoefficients(
        b=(0.003621, 0.010863, 0.010863, 0.003621),
        a=(-2.2997, 1.7925, -0.4403),
    ).normalized(),
}


def get_filter_coefficients(variant: str) -> FilterCoefficients:
    """Get registered coefficients by name"""
    if variant not in FILTERS:
        logger.warning(f"Unknown filter variant: {variant}, using moving_average")
        return FILTERS["moving_average"]
    return FILTERS[variant]


class SignalFilter:
    """
    Stateful single-sample-in, single-sample-out filter.

    Owns its history; switching strategy clears it so outputs of one
    variant never feed the recursion of another.
    """

    def __init__(
        self,
        variant: str = "moving_average",
        coefficients: FilterCoefficients | None = None,
    ):
        self.variant = variant
        self.coefficients = coefficients or get_filter_coefficients(variant)
        self.state = FilterState()

    def filter(self, raw: float) -> float:
        y, self.state = step(self.coefficients, self.state, raw)
        return y

    def reset(self) -> None:
        self.state = FilterState()

    def select(
        self,
        variant: str,
        coefficients: FilterCoefficients | None = None,
    ) -> None:
        """Switch to another strategy, starting from empty history"""
        self.variant = variant
        self.coefficients = coefficients or get_filter_coefficients(variant)
        self.reset()
        logger.info(f"Signal filter switched to {variant}")


def create_filter(settings: FilterSettings) -> SignalFilter:
    """Build the configured filter"""
    if settings.variant == FilterVariant.CUSTOM:
        if len(settings.b) != 4 or len(settings.a) != 3:
            raise ConfigError("custom filter needs 4 'b' and 3 'a' coefficients")
        coefficients = FilterCoefficients(b=tuple(settings.b), a=tuple(settings.a))
        return SignalFilter("custom", coefficients)

    return SignalFilter(settings.variant.value)

