import asyncio

import pytest

from export_limiter.simulator.run_simulation import SCENARIOS, run_simulation
from export_limiter.simulator.virtual_site import SiteConfig, VirtualSite


def test_site_energy_balance():
    site = VirtualSite(SiteConfig(house_load_w=600.0, available_pv_w=5000.0))

    assert site.grid_export_w == pytest.approx(4400.0)
    assert site.meter.export_w == pytest.approx(4400.0)

    site.set_load(6000.0)
    assert site.meter.import_w == pytest.approx(1000.0)
    assert site.meter.export_w == 0.0


def test_midday_export_is_brought_under_the_threshold():
    history = asyncio.run(run_simulation("midday", steps=30, max_export_w=5000.0))

    assert history[0]["grid_export_w"] > 5000.0
    assert history[-1]["grid_export_w"] <= 5000.0
    assert history[-1]["limit_pct"] < 100
    assert history[-1]["control_enabled"]


@pytest.mark.parametrize("scenario", sorted(SCENARIOS))
def test_scenarios_run(scenario):
    history = asyncio.run(run_simulation(scenario, steps=50))
    assert len(history) == 50


def test_unknown_scenario():
    with pytest.raises(ValueError):
        asyncio.run(run_simulation("eclipse"))
