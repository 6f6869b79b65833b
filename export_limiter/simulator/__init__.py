"""
Simulator - Virtual Meter and Inverter

Closed-loop runs of the limiter without hardware.
"""

from .virtual_inverter import VirtualInverter
from .virtual_meter import VirtualMeter, build_frame
from .virtual_site import SiteConfig, VirtualSite

__all__ = ["VirtualInverter", "VirtualMeter", "build_frame", "SiteConfig", "VirtualSite"]
