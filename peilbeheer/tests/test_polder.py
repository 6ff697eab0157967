import pytest

from peilbeheer.errors import ConfigInvalid
from peilbeheer.polder import SimulationParams, simulate_polder
from peilbeheer.topology import PolderConfig


def _params(**overrides) -> SimulationParams:
    values = dict(
        initial_level_m=-0.5,
        rain_intensity_mm_h=10.0,
        rain_duration_min=60,
        pump_flow_m3_s=0.0,
        target_level_m=-0.5,
        area_m2=100_000.0,
    )
    values.update(overrides)
    return SimulationParams(**values)


def test_rain_without_pump_raises_level_above_pumped_variant():
    dry_pump = simulate_polder(_params())
    pumped = simulate_polder(_params(pump_flow_m3_s=0.5))

    assert dry_pump[-1].h > -0.5
    assert dry_pump[-1].t_min == pumped[-1].t_min
    assert dry_pump[-1].h > pumped[-1].h


def test_timeline_covers_rain_and_dry_tail():
    steps = simulate_polder(_params())
    assert len(steps) == 91
    assert steps[0].t_min == 0
    assert steps[-1].t_min == 90
    assert all(s.raining for s in steps if s.t_min <= 60)
    assert not any(s.raining for s in steps if s.t_min > 60)
    assert all(s.polder_id is None for s in steps)


def test_first_record_holds_initial_level():
    steps = simulate_polder(_params(initial_level_m=-0.42))
    assert steps[0].h == -0.42


def test_constant_pump_flags_every_step():
    steps = simulate_polder(_params(pump_flow_m3_s=0.2))
    assert all(s.pump_on for s in steps)
    assert all(s.q_out == 0.2 for s in steps)


def test_level_stays_flat_without_rain_or_pump():
    steps = simulate_polder(_params(rain_intensity_mm_h=0.0))
    assert {s.h for s in steps} == {-0.5}


def test_smart_control_pumps_less_than_full_flow_and_limits_rise():
    full = simulate_polder(_params(pump_flow_m3_s=1.0))
    smart = simulate_polder(_params(pump_flow_m3_s=1.0, smart_control=True))
    no_pump = simulate_polder(_params())

    assert not smart[0].pump_on
    assert any(s.pump_on for s in smart)
    assert sum(s.q_out for s in smart) < sum(s.q_out for s in full)
    assert max(s.h for s in smart) < max(s.h for s in no_pump)


def test_smart_flag_without_pump_flow_behaves_as_no_pump():
    steps = simulate_polder(_params(smart_control=True))
    assert not any(s.pump_on for s in steps)


def test_from_polder_copies_configuration():
    polder = PolderConfig(
        id="p1",
        area_m2=250_000.0,
        target_level_m=-0.6,
        margin_m=0.05,
        ground_level_m=0.3,
        infiltration_mm_h=0.5,
        storage_fraction=0.2,
    )
    params = SimulationParams.from_polder(polder, 20.0, 60, 0.4)
    assert params.initial_level_m == -0.6
    assert params.margin_cm == pytest.approx(5.0)
    assert params.storage_fraction == 0.2
    assert params.infiltration_mm_h == 0.5
    assert params.post_rain_duration_min == 30


def test_rejects_non_positive_area():
    with pytest.raises(ConfigInvalid):
        _params(area_m2=0.0)
