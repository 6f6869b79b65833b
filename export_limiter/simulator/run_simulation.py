#!/usr/bin/env python3
"""
Closed-Loop Simulation

Runs the real control loop against the virtual site: every step the
site produces a meter frame, the limiter processes it and writes to the
virtual inverter, and the site balance follows the new inverter output.

Usage:
    export-limiter-sim --scenario midday
    export-limiter-sim --scenario cloud_pass --max-export 3000
"""

import argparse
import asyncio

from export_limiter.common.config import ControlSettings, InverterSettings, LimiterConfig
from export_limiter.common.logging_setup import get_service_logger
from export_limiter.services.control.service import LimiterService
from export_limiter.services.meter.frame_decoder import decode_frame
from .virtual_site import SiteConfig, VirtualSite

logger = get_service_logger("simulator")


def _midday(step: int) -> tuple[float, float]:
    return 400.0, 7400.0


def _cloud_pass(step: int) -> tuple[float, float]:
    pv = 2000.0 if 20 <= step < 35 else 7400.0
    return 400.0, pv


def _load_step(step: int) -> tuple[float, float]:
    load = 3500.0 if 20 <= step < 40 else 400.0
    return load, 7400.0


# (house load W, available PV W) per step
SCENARIOS = {
    "midday": _midday,
    "cloud_pass": _cloud_pass,
    "load_step": _load_step,
}


def build_config(max_export_w: float) -> LimiterConfig:
    return LimiterConfig(
        inverter=InverterSettings(host="virtual-inverter", capacity_w=None),
        control=ControlSettings(
            max_export_w=max_export_w,
            control_start_w=max_export_w * 0.75,
            control_reset_w=0.0,
            reconnect_delay_s=0.0,
        ),
    )


async def run_simulation(
    scenario: str = "midday",
    steps: int = 60,
    max_export_w: float = 5000.0,
    site_config: SiteConfig | None = None,
    interval_s: float = 0.0,
    broadcast: bool = False,
    verbose: bool = False,
) -> list[dict]:
    """
    Run a scenario and return the site status after every step.

    With broadcast set every frame is also sent to the meter multicast
    group, so a separately running limiter sees the same readings.
    """
    if scenario not in SCENARIOS:
        raise ValueError(
            f"Unknown scenario: {scenario} (available: {', '.join(SCENARIOS)})"
        )
    profile = SCENARIOS[scenario]

    site = VirtualSite(site_config)
    config = build_config(max_export_w)
    service = LimiterService(config, transport=site.inverter)

    history = []
    for step in range(steps):
        load_w, pv_w = profile(step)
        site.set_load(load_w)
        site.set_available_solar(pv_w)

        if broadcast:
            site.meter.broadcast()
        frame = decode_frame(site.meter.frame(), site.meter.meter_id)
        await service.process_frame(frame)
        site.update_energy_balance()

        status = site.get_status()
        history.append(status)
        if verbose:
            site.print_status()

        if interval_s:
            await asyncio.sleep(interval_s)

    await service.session.disconnect()
    return history


def main() -> None:
    """CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Run the limiter against a virtual site"
    )
    parser.add_argument(
        "--scenario", type=str, default="midday",
        help=f"Scenario to run ({', '.join(SCENARIOS)})"
    )
    parser.add_argument(
        "--steps", type=int, default=60,
        help="Number of meter frames to simulate (default: 60)"
    )
    parser.add_argument(
        "--max-export", type=float, default=5000.0,
        help="Export threshold in W (default: 5000)"
    )
    parser.add_argument(
        "--broadcast", action="store_true",
        help="Also send every frame to the meter multicast group"
    )
    parser.add_argument(
        "--interval", type=float, default=0.0,
        help="Seconds between frames (default: 0)"
    )

    args = parser.parse_args()

    try:
        history = asyncio.run(run_simulation(
            scenario=args.scenario,
            steps=args.steps,
            max_export_w=args.max_export,
            interval_s=args.interval,
            broadcast=args.broadcast,
            verbose=True,
        ))
    except KeyboardInterrupt:
        logger.info("Simulation stopped by user")
        return

    peak = max(h["grid_export_w"] for h in history)
    print(f"\nPeak export {peak:.0f} W, final export {history[-1]['grid_export_w']:.0f} W")


if __name__ == "__main__":
    main()
