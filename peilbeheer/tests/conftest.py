from __future__ import annotations

import pytest

from peilbeheer.config import get_settings
from peilbeheer.topology import PolderConfig, PumpLink, Topology, ValveLink, WeirLink

RAIN_24H = [0, 0, 5, 15, 25, 20, 10, 5, 2] + [0] * 15

PRICES_24H = [0.05] * 6 + [0.30] * 16 + [0.05] * 2


@pytest.fixture(autouse=True)
def _fresh_settings():
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def rain_24h() -> list[float]:
    return list(RAIN_24H)


@pytest.fixture
def prices_24h() -> list[float]:
    return list(PRICES_24H)


@pytest.fixture
def cascade() -> Topology:
    """North drains into middle, middle into south, both through a pump."""
    polders = [
        PolderConfig(id="N", area_m2=200_000.0, target_level_m=-0.4),
        PolderConfig(id="M", area_m2=200_000.0, target_level_m=-0.8),
        PolderConfig(id="S", area_m2=400_000.0, target_level_m=-1.2),
    ]
    links = [
        PumpLink(id="p_nm", upstream="N", downstream="M", capacity_m3_s=0.5, head_m=1.5),
        PumpLink(id="p_ms", upstream="M", downstream="S", capacity_m3_s=0.4, head_m=1.2),
    ]
    return Topology(polders, links)


@pytest.fixture
def weir_pair() -> Topology:
    polders = [
        PolderConfig(id="up", area_m2=100_000.0, target_level_m=0.0),
        PolderConfig(id="down", area_m2=100_000.0, target_level_m=-0.5),
    ]
    links = [WeirLink(id="w", upstream="up", downstream="down", crest_level_m=0.0, crest_width_m=0.5)]
    return Topology(polders, links)


@pytest.fixture
def valve_pair() -> Topology:
    polders = [
        PolderConfig(id="up", area_m2=10_000.0, target_level_m=0.0),
        PolderConfig(id="down", area_m2=10_000.0, target_level_m=0.0),
    ]
    links = [ValveLink(id="v", upstream="up", downstream="down", capacity_m3_s=0.5)]
    return Topology(polders, links)
