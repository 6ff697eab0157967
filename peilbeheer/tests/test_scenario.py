import json

import pytest

from peilbeheer.errors import ConfigInvalid, InputShape, ScenarioError
from peilbeheer.scenario import (
    LinkModel,
    RainScenarioKind,
    Scenario,
    ScenarioBuilder,
    constant_rain_scenario,
)
from peilbeheer.topology import PolderConfig, PumpLink, ValveLink, WeirLink


def _builder(rain_24h, prices_24h) -> ScenarioBuilder:
    return (
        ScenarioBuilder("cascade-storm", "Cascade under a summer storm")
        .description("Three polders in series")
        .polder(PolderConfig(id="N", area_m2=200_000.0, target_level_m=-0.4, max_outflow_m3_s=0.45))
        .polder(PolderConfig(id="M", area_m2=200_000.0, target_level_m=-0.8))
        .polder(PolderConfig(id="S", area_m2=400_000.0, target_level_m=-1.2))
        .link(PumpLink(id="p_nm", upstream="N", downstream="M", capacity_m3_s=0.5, head_m=1.5))
        .link(PumpLink(id="p_ms", upstream="M", downstream="S", capacity_m3_s=0.4, head_m=1.2))
        .link(WeirLink(id="w_ns", upstream="N", downstream="S", crest_level_m=-0.1, crest_width_m=0.8))
        .link(ValveLink(id="v_sm", upstream="S", downstream="M", capacity_m3_s=0.1))
        .rain("N", rain_24h)
        .rain("M", rain_24h)
        .prices(prices_24h)
        .initial_level("N", -0.35)
        .strategy({"type": "pid", "kp": 5.0, "ki": 0.05, "kd": 20.0})
        .author("waterschap")
        .tag("storm")
    )


def test_saved_scenario_reproduces_identical_records(tmp_path, rain_24h, prices_24h):
    scenario = _builder(rain_24h, prices_24h).build()
    path = scenario.save(tmp_path / "scenarios" / "storm.json")

    loaded = Scenario.load(path)
    first = scenario.run().result
    second = loaded.run().result

    assert loaded.id == "cascade-storm"
    assert loaded.prices == scenario.prices
    assert loaded.initial_levels == {"N": -0.35}
    assert first.steps == second.steps
    assert first.link_flows == second.link_flows
    assert first.total_cost_eur == second.total_cost_eur


def test_json_round_trip_keeps_links(rain_24h, prices_24h):
    scenario = _builder(rain_24h, prices_24h).build()
    restored = Scenario.from_json(scenario.to_json(pretty=False))
    assert restored.topology.links == scenario.topology.links
    assert restored.topology.polders == scenario.topology.polders
    payload = json.loads(scenario.to_json())
    assert {link["kind"] for link in payload["links"]} == {"pump", "weir", "valve"}
    assert payload["metadata"]["tags"] == ["storm"]


def test_run_result_has_timestamp_and_duration(rain_24h, prices_24h):
    outcome = _builder(rain_24h, prices_24h).duration(6).rain("N", [5.0] * 6).rain("M", [1.0]).build().run()
    assert outcome.result.duration_minutes == 6 * 60
    assert outcome.executed_at is not None
    assert outcome.scenario.id == "cascade-storm"


def test_timestep_setting_is_honoured(rain_24h, prices_24h):
    scenario = _builder(rain_24h, prices_24h).duration(24).timestep(5).build()
    result = scenario.run().result
    n_steps = result.steps_for("N")
    assert len(n_steps) == 24 * 12
    assert n_steps[1].t_min == 5


def test_copy_with_id_and_tags(rain_24h, prices_24h):
    scenario = _builder(rain_24h, prices_24h).build()
    copy = scenario.copy_with_id("cascade-storm-2")
    copy.add_tag("variant")
    copy.add_tag("variant")

    assert copy.id == "cascade-storm-2"
    assert copy.metadata.tags == ["storm", "variant"]
    assert scenario.metadata.tags == ["storm"]


def test_constant_rain_scenario():
    rain = constant_rain_scenario(["a", "b"], 4.0, 12)
    assert rain.kind == RainScenarioKind.constant
    assert rain.rain_mm_h == {"a": [4.0] * 12, "b": [4.0] * 12}


def test_validation_rejects_unknown_rain_polder(rain_24h, prices_24h):
    with pytest.raises(ConfigInvalid):
        _builder(rain_24h, prices_24h).rain("X", [1.0]).build()


def test_validation_rejects_rain_longer_than_run(rain_24h, prices_24h):
    with pytest.raises(InputShape):
        _builder(rain_24h, prices_24h).duration(12).build()


def test_validation_rejects_disconnected_network():
    builder = (
        ScenarioBuilder("split")
        .polder(PolderConfig(id="a", area_m2=1000.0, target_level_m=0.0))
        .polder(PolderConfig(id="b", area_m2=1000.0, target_level_m=0.0))
    )
    with pytest.raises(ConfigInvalid):
        builder.build()


def test_single_polder_scenario_is_valid():
    scenario = ScenarioBuilder("solo").polder(PolderConfig(id="a", area_m2=1000.0, target_level_m=0.0)).build()
    assert scenario.run().result.duration_minutes == 24 * 60


def test_link_model_requires_variant_fields():
    model = LinkModel(id="p", kind="pump", upstream="a", downstream="b", capacity_m3_s=1.0)
    with pytest.raises(ConfigInvalid):
        model.to_link()


def test_load_failures_raise_scenario_error(tmp_path):
    with pytest.raises(ScenarioError):
        Scenario.load(tmp_path / "missing.json")

    broken = tmp_path / "broken.json"
    broken.write_text('{"id": "x"}', encoding="utf-8")
    with pytest.raises(ScenarioError) as excinfo:
        Scenario.load(broken)
    assert excinfo.value.path == str(broken)


def test_builder_changes_after_build_do_not_leak(rain_24h, prices_24h):
    builder = _builder(rain_24h, prices_24h)
    scenario = builder.build()

    builder.tag("later").duration(12).rain("M", [9.0]).initial_level("M", -0.7).author("someone else")

    assert scenario.metadata.tags == ["storm"]
    assert scenario.metadata.author == "waterschap"
    assert scenario.settings.duration_hours == 24
    assert scenario.rain.rain_mm_h["M"] == rain_24h
    assert scenario.initial_levels == {"N": -0.35}
