import json

import pytest

from peilbeheer.drooglegging import calculate_drooglegging, find_max_level, find_minimum_flow
from peilbeheer.polder import SimulationParams, simulate_polder
from peilbeheer.records import StepRecord


def _event() -> SimulationParams:
    return SimulationParams(
        initial_level_m=-0.6,
        rain_intensity_mm_h=20.0,
        rain_duration_min=60,
        pump_flow_m3_s=0.0,
        target_level_m=-0.6,
        area_m2=100_000.0,
        margin_cm=5.0,
        ground_level_m=0.0,
    )


def test_drooglegging_values():
    result = calculate_drooglegging(0.0, -0.5, -0.6, 5.0)
    assert result.drooglegging_m == pytest.approx(0.5)
    assert result.streef_drooglegging_m == pytest.approx(0.6)
    assert result.min_allowed_m == pytest.approx(0.55)
    assert result.overschrijding_m == pytest.approx(0.05)
    assert result.overschrijding_cm == pytest.approx(5.0)
    assert result.exceeded


def test_drooglegging_within_margin():
    result = calculate_drooglegging(0.0, -0.58, -0.6, 5.0)
    assert result.overschrijding_m < 0.0
    assert not result.exceeded


def test_find_max_level():
    assert find_max_level([]) is None
    steps = [
        StepRecord(t_min=t, h=h, q_in=0.0, q_out=0.0, loss=0.0, net=0.0, raining=False, pump_on=False)
        for t, h in [(0, -0.6), (1, -0.4), (2, -0.4), (3, -0.5)]
    ]
    assert find_max_level(steps) == (-0.4, 1)


def test_minimum_flow_found_for_design_storm():
    result = find_minimum_flow(_event(), step_m3_s=0.1, max_flow_m3_s=100.0)

    assert result.found
    assert result.q_min == pytest.approx(0.5)
    assert result.max_exceedance_cm == 0.0
    assert result.steps

    below = simulate_polder(_event().with_pump_flow(result.q_min - 0.1))
    worst = max(calculate_drooglegging(0.0, s.h, -0.6, 5.0).overschrijding_m for s in below)
    assert worst > 0.0


def test_minimum_flow_reports_failure_with_last_run():
    result = find_minimum_flow(_event(), step_m3_s=0.1, max_flow_m3_s=0.2)

    assert not result.found
    assert result.q_min is None
    assert result.max_exceedance_cm > 0.0
    assert "0.2" in result.message
    assert len(result.steps) == 91
    assert all(s.q_out == pytest.approx(0.2) for s in result.steps)


def test_minimum_flow_zero_when_no_rain():
    params = SimulationParams(
        initial_level_m=-0.6,
        rain_intensity_mm_h=0.0,
        rain_duration_min=60,
        pump_flow_m3_s=0.0,
        target_level_m=-0.6,
        area_m2=100_000.0,
        margin_cm=5.0,
    )
    result = find_minimum_flow(params, step_m3_s=0.1, max_flow_m3_s=1.0)
    assert result.found
    assert result.q_min == 0.0


def test_minimum_flow_uses_settings_grid(monkeypatch):
    monkeypatch.setenv("PEILBEHEER_MIN_FLOW_STEP", "0.05")
    result = find_minimum_flow(_event())
    assert result.found
    assert result.q_min == pytest.approx(0.45)


def test_minimum_flow_result_serialises_contract_fields():
    result = find_minimum_flow(_event(), step_m3_s=0.1, max_flow_m3_s=100.0)
    payload = result.to_dict()
    assert payload == {
        "found": True,
        "q_min": pytest.approx(0.5),
        "max_exceedance_cm": 0.0,
        "message": result.message,
    }
    json.dumps(payload)

    with_steps = result.to_dict(include_steps=True)
    assert len(with_steps["steps"]) == len(result.steps)
    assert with_steps["steps"][0]["polder_id"] is None
