"""Pump control strategies consulted by the network simulator once per minute."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any, Callable, Mapping, Optional, Sequence, Union

from .config import Settings, get_settings
from .constants import MINUTES_PER_HOUR
from .errors import ConfigInvalid
from .pid import PIDController
from .units import clip_duty

if TYPE_CHECKING:
    from .network import NetworkState

logger = logging.getLogger(__name__)

DutyMap = dict[str, float]


class ControlStrategy(ABC):
    """Maps the current network state to a duty in [0, 1] per pump id.

    Pumps missing from the returned mapping stay off. Implementations keep
    any per-run memory on the instance and clear it in :meth:`reset`, which
    the simulator calls when a run starts.
    """

    name: str = "strategy"

    @abstractmethod
    def duties(self, state: "NetworkState", minute: int) -> DutyMap:
        """Return the duty for each pump that should run during ``minute``."""

    def reset(self) -> None:
        return None

    def to_spec(self) -> dict[str, Any]:
        return {"type": self.name}


class ConstantStrategy(ControlStrategy):
    """Fixed flow per pump, converted to a duty against the pump capacity."""

    name = "constant"

    def __init__(self, flow_m3_s: Union[float, Mapping[str, float]]) -> None:
        self.flow_m3_s = flow_m3_s

    def _flow_for(self, pump_id: str) -> float:
        if isinstance(self.flow_m3_s, Mapping):
            return float(self.flow_m3_s.get(pump_id, 0.0))
        return float(self.flow_m3_s)

    def duties(self, state: "NetworkState", minute: int) -> DutyMap:
        return {
            pump.id: clip_duty(self._flow_for(pump.id) / pump.capacity_m3_s)
            for pump in state.topology.pumps()
        }

    def to_spec(self) -> dict[str, Any]:
        flow = dict(self.flow_m3_s) if isinstance(self.flow_m3_s, Mapping) else self.flow_m3_s
        return {"type": self.name, "flow": flow}


class NaiveStrategy(ControlStrategy):
    """Full pumping whenever the upstream polder stands above its target."""

    name = "naive"

    def duties(self, state: "NetworkState", minute: int) -> DutyMap:
        out: DutyMap = {}
        for pump in state.topology.pumps():
            target = state.topology.polder(pump.upstream).target_level_m
            out[pump.id] = 1.0 if state.levels[pump.upstream] > target else 0.0
        return out


class PIDStrategy(ControlStrategy):
    """One PID controller per pump, driven by its upstream polder's level error."""

    name = "pid"

    def __init__(self, kp: float, ki: float, kd: float) -> None:
        self.kp = kp
        self.ki = ki
        self.kd = kd
        self._controllers: dict[str, PIDController] = {}

    def _controller(self, pump_id: str) -> PIDController:
        if pump_id not in self._controllers:
            self._controllers[pump_id] = PIDController(self.kp, self.ki, self.kd)
        return self._controllers[pump_id]

    def duties(self, state: "NetworkState", minute: int) -> DutyMap:
        out: DutyMap = {}
        for pump in state.topology.pumps():
            upstream = state.topology.polder(pump.upstream)
            error = state.levels[pump.upstream] - upstream.target_level_m
            out[pump.id] = self._controller(pump.id).update(error, state.dt_minutes)
        return out

    def reset(self) -> None:
        self._controllers.clear()

    def to_spec(self) -> dict[str, Any]:
        return {"type": self.name, "kp": self.kp, "ki": self.ki, "kd": self.kd}


class ScheduleStrategy(ControlStrategy):
    """Hourly duty schedule, either one vector for all pumps or one per pump id.

    Hours past the end of a schedule run at duty 0.
    """

    name = "schedule"

    def __init__(self, schedule: Union[Sequence[float], Mapping[str, Sequence[float]]]) -> None:
        if isinstance(schedule, Mapping):
            self.schedule: Union[list[float], dict[str, list[float]]] = {
                pump_id: [float(u) for u in values] for pump_id, values in schedule.items()
            }
        else:
            self.schedule = [float(u) for u in schedule]

    @staticmethod
    def _lookup(values: Sequence[float], hour: int) -> float:
        if 0 <= hour < len(values):
            return clip_duty(values[hour])
        return 0.0

    def duties(self, state: "NetworkState", minute: int) -> DutyMap:
        hour = int(minute) // MINUTES_PER_HOUR
        out: DutyMap = {}
        for pump in state.topology.pumps():
            if isinstance(self.schedule, dict):
                values = self.schedule.get(pump.id, [])
            else:
                values = self.schedule
            out[pump.id] = self._lookup(values, hour)
        return out

    def to_spec(self) -> dict[str, Any]:
        schedule = dict(self.schedule) if isinstance(self.schedule, dict) else list(self.schedule)
        return {"type": self.name, "schedule": schedule}


class BalancedStrategy(ControlStrategy):
    """Spreads the water load: pumping grows with the upstream surplus and follows the inflow.

    The base flow is the pump capacity scaled by ``min(deviation / margin, 1)``;
    it is blended with the flow that entered the upstream polder over links
    during the previous step, weighted by ``balance_factor``. Polders at or
    below target do not pump.
    """

    name = "balanced"

    def __init__(self, balance_factor: float = 0.5) -> None:
        if not (0.0 <= balance_factor <= 1.0):
            raise ConfigInvalid("balance_factor", f"must be in [0, 1], got {balance_factor}")
        self.balance_factor = balance_factor

    def duties(self, state: "NetworkState", minute: int) -> DutyMap:
        topology = state.topology
        out: DutyMap = {}
        for pump in topology.pumps():
            upstream = topology.polder(pump.upstream)
            deviation = state.levels[pump.upstream] - upstream.target_level_m
            if deviation <= 0.0:
                out[pump.id] = 0.0
                continue
            fraction = 1.0 if upstream.margin_m <= 0.0 else min(deviation / upstream.margin_m, 1.0)
            base = pump.capacity_m3_s * fraction
            inflow = sum(state.last_flows.get(link.id, 0.0) for link in topology.incoming(pump.upstream))
            flow = base * self.balance_factor + inflow * (1.0 - self.balance_factor)
            out[pump.id] = clip_duty(flow / pump.capacity_m3_s)
        return out

    def to_spec(self) -> dict[str, Any]:
        return {"type": self.name, "balance_factor": self.balance_factor}


class CallableStrategy(ControlStrategy):
    name = "callable"

    def __init__(self, fn: Callable[["NetworkState", int], Mapping[str, float]]) -> None:
        self.fn = fn

    def duties(self, state: "NetworkState", minute: int) -> DutyMap:
        return {pump_id: clip_duty(u) for pump_id, u in self.fn(state, minute).items()}

    def to_spec(self) -> dict[str, Any]:
        raise ConfigInvalid("strategy", "a callable strategy cannot be serialised")


def strategy_from_spec(spec: Mapping[str, Any], settings: Optional[Settings] = None) -> ControlStrategy:
    """Build a strategy from its tagged form, e.g. ``{"type": "pid", "kp": 5.0}``.

    PID gains that are not given come from ``settings`` (or the environment).
    """
    kind = str(spec.get("type", "")).lower()
    if kind == "constant":
        if "flow" not in spec:
            raise ConfigInvalid("strategy.flow", "constant strategy needs a flow")
        return ConstantStrategy(spec["flow"])
    if kind == "naive":
        return NaiveStrategy()
    if kind == "pid":
        if settings is None:
            settings = get_settings()
        return PIDStrategy(
            kp=float(spec.get("kp", settings.pid_kp)),
            ki=float(spec.get("ki", settings.pid_ki)),
            kd=float(spec.get("kd", settings.pid_kd)),
        )
    if kind == "balanced":
        return BalancedStrategy(float(spec.get("balance_factor", 0.5)))
    if kind == "schedule":
        if "schedule" not in spec:
            raise ConfigInvalid("strategy.schedule", "schedule strategy needs a schedule")
        return ScheduleStrategy(spec["schedule"])
    raise ConfigInvalid(
        "strategy.type",
        f"unknown strategy '{spec.get('type')}'",
        hint="use one of constant, naive, pid, schedule, balanced",
    )
