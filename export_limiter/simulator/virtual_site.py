"""
Virtual Site Simulation

Combines a virtual inverter, a house load and the grid meter to
simulate a grid-tied home for testing the limiter.

Energy balance: grid_export = inverter_output - house_load
"""

from dataclasses import dataclass

from export_limiter.common.logging_setup import get_service_logger
from .virtual_inverter import VirtualInverter
from .virtual_meter import VirtualMeter

logger = get_service_logger("simulator.site")


@dataclass
class SiteConfig:
    """
    Configuration for the virtual site.
    """
    name: str = "Rooftop PV"
    rated_power_w: float = 7400.0
    house_load_w: float = 400.0
    available_pv_w: float = 7400.0


class VirtualSite:
    """
    Simulates a grid-tied home with one inverter and one grid meter.
    """

    def __init__(self, config: SiteConfig | None = None):
        self.config = config or SiteConfig()

        self.inverter = VirtualInverter(
            rated_power_w=self.config.rated_power_w,
            available_pv_w=self.config.available_pv_w,
        )
        self.meter = VirtualMeter()

        self._house_load_w = self.config.house_load_w
        self.update_energy_balance()

    def set_load(self, load_w: float) -> None:
        """Set the house consumption"""
        self._house_load_w = max(0.0, load_w)
        self.update_energy_balance()

    def set_available_solar(self, power_w: float) -> None:
        """Set the available solar power (simulates irradiance)"""
        self.inverter.set_available_pv(power_w)
        self.update_energy_balance()

    def update_energy_balance(self) -> None:
        """Recompute grid flow after the inverter output changed"""
        self.meter.set_net_power(self.inverter.get_actual_output_w() - self._house_load_w)

    @property
    def grid_export_w(self) -> float:
        return self.meter.net_power_w

    def get_status(self) -> dict:
        return {
            "house_load_w": self._house_load_w,
            "available_pv_w": self.inverter.state.available_pv_w,
            "inverter_output_w": self.inverter.get_actual_output_w(),
            "limit_pct": self.inverter.state.power_limit_percent,
            "control_enabled": self.inverter.state.control_enabled,
            "grid_export_w": self.grid_export_w,
        }

    def print_status(self) -> None:
        status = self.get_status()
        print(
            f"  load {status['house_load_w']:7.0f} W | "
            f"pv {status['available_pv_w']:7.0f} W | "
            f"inverter {status['inverter_output_w']:7.0f} W "
            f"({status['limit_pct']:3d}%) | "
            f"export {status['grid_export_w']:7.0f} W"
        )
