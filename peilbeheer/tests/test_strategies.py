import pytest

from peilbeheer.errors import ConfigInvalid
from peilbeheer.network import NetworkState, run_network_simulation
from peilbeheer.strategies import (
    BalancedStrategy,
    CallableStrategy,
    ConstantStrategy,
    NaiveStrategy,
    PIDStrategy,
    ScheduleStrategy,
    strategy_from_spec,
)


def _state(topology, **levels):
    base = {pid: topology.polder(pid).target_level_m for pid in topology.polder_ids()}
    base.update(levels)
    return NetworkState(topology=topology, levels=base)


def test_constant_strategy_converts_flow_to_duty(cascade):
    duties = ConstantStrategy(0.2).duties(_state(cascade), 0)
    assert duties["p_nm"] == pytest.approx(0.4)
    assert duties["p_ms"] == pytest.approx(0.5)

    per_pump = ConstantStrategy({"p_nm": 5.0}).duties(_state(cascade), 0)
    assert per_pump == {"p_nm": 1.0, "p_ms": 0.0}


def test_naive_strategy_follows_upstream_level(cascade):
    duties = NaiveStrategy().duties(_state(cascade, N=-0.3, M=-0.8), 0)
    assert duties == {"p_nm": 1.0, "p_ms": 0.0}


def test_schedule_strategy_uses_hour_of_minute(cascade):
    strategy = ScheduleStrategy([0.0, 0.7])
    assert strategy.duties(_state(cascade), 59)["p_nm"] == 0.0
    assert strategy.duties(_state(cascade), 60)["p_nm"] == pytest.approx(0.7)
    assert strategy.duties(_state(cascade), 180)["p_nm"] == 0.0

    per_pump = ScheduleStrategy({"p_ms": [1.0]})
    assert per_pump.duties(_state(cascade), 0) == {"p_nm": 0.0, "p_ms": 1.0}


def test_pid_strategy_keeps_one_controller_per_pump(cascade):
    strategy = PIDStrategy(5.0, 0.05, 20.0)
    duties = strategy.duties(_state(cascade, N=-0.35), 0)
    assert duties["p_nm"] > 0.0
    assert duties["p_ms"] == 0.0
    assert set(strategy._controllers) == {"p_nm", "p_ms"}
    strategy.reset()
    assert strategy._controllers == {}


def test_pid_strategy_holds_cascade_near_target(cascade, rain_24h):
    rain = {"N": rain_24h}
    pid = run_network_simulation(cascade, rain, PIDStrategy(5.0, 0.05, 20.0))
    idle = run_network_simulation(cascade, rain, ConstantStrategy(0.0))
    assert pid.final_levels["N"] < idle.final_levels["N"]
    assert max(s.h for s in pid.steps_for("N")) < max(s.h for s in idle.steps_for("N"))


def test_callable_strategy_is_clipped(cascade):
    strategy = CallableStrategy(lambda state, minute: {"p_nm": 2.0, "p_ms": -1.0})
    assert strategy.duties(_state(cascade), 0) == {"p_nm": 1.0, "p_ms": 0.0}
    with pytest.raises(ConfigInvalid):
        strategy.to_spec()


def test_strategy_from_spec_round_trip():
    for strategy in [
        ConstantStrategy({"a": 0.3}),
        NaiveStrategy(),
        PIDStrategy(1.0, 0.1, 2.0),
        BalancedStrategy(0.3),
        ScheduleStrategy([0.0, 1.0]),
    ]:
        rebuilt = strategy_from_spec(strategy.to_spec())
        assert type(rebuilt) is type(strategy)
        assert rebuilt.to_spec() == strategy.to_spec()


def test_strategy_from_spec_uses_settings_for_pid_defaults(monkeypatch):
    monkeypatch.setenv("PEILBEHEER_PID_KP", "2.5")
    strategy = strategy_from_spec({"type": "pid", "kd": 4.0})
    assert strategy.kp == 2.5
    assert strategy.kd == 4.0


@pytest.mark.parametrize("spec", [{"type": "magic"}, {"type": "constant"}, {"type": "schedule"}, {"type": "balanced", "balance_factor": 1.5}, {}])
def test_strategy_from_spec_rejects_bad_input(spec):
    with pytest.raises(ConfigInvalid):
        strategy_from_spec(spec)


def test_balanced_strategy_scales_with_surplus_and_inflow(cascade):
    strategy = BalancedStrategy(balance_factor=0.5)

    # N is 0.1 m above target with a 0.2 m margin: half the 0.5 m3/s capacity, halved again by the blend
    state = _state(cascade, N=-0.3, M=-0.9)
    duties = strategy.duties(state, 0)
    assert duties["p_nm"] == pytest.approx(0.25)
    assert duties["p_ms"] == 0.0

    # M is above target and receives 0.2 m3/s from N
    state = _state(cascade, N=-0.4, M=-0.5)
    state.last_flows = {"p_nm": 0.2, "p_ms": 0.0}
    duties = strategy.duties(state, 0)
    assert duties["p_nm"] == 0.0
    assert duties["p_ms"] == pytest.approx((0.4 * 0.5 + 0.2 * 0.5) / 0.4)


def test_balanced_strategy_factor_limits():
    with pytest.raises(ConfigInvalid):
        BalancedStrategy(-0.1)
    assert strategy_from_spec({"type": "balanced"}).balance_factor == 0.5


def test_balanced_strategy_drains_cascade(cascade, rain_24h):
    rain = {"N": rain_24h}
    balanced = run_network_simulation(cascade, rain, BalancedStrategy())
    idle = run_network_simulation(cascade, rain, ConstantStrategy(0.0))
    assert balanced.final_levels["N"] < idle.final_levels["N"]
    assert balanced.pumps["p_ms"].pumped_volume_m3 > 0.0
