"""Minute-by-minute simulation of a network of polders joined by pumps, weirs and valves."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional, Sequence, Union

from .constants import (
    DEFAULT_TIME_STEP_MINUTES,
    MINUTES_PER_HOUR,
    PUMP_ON_THRESHOLD_M3_S,
)
from .errors import ConfigInvalid, InputShape
from .flows import ResolvedFlow, apply_outflow_caps, resolve_link_flow
from .prices import PriceVector
from .records import LinkFlow, StepRecord, to_jsonable
from .strategies import ControlStrategy
from .topology import PumpLink, Topology
from .units import flow_to_volume, hours_to_minutes, sanitize_rain
from .waterbalance import calculate_water_balance

logger = logging.getLogger(__name__)

RainProfile = Mapping[str, Sequence[float]]


def _clock(step: int, dt_minutes: float) -> int:
    """Whole minute at which ``step`` starts; rounding absorbs float drift of ``step * dt``."""
    return int(round(step * dt_minutes, 9))


@dataclass
class NetworkState:
    """What a strategy sees: the topology, start-of-minute levels and the clock."""

    topology: Topology
    levels: dict[str, float]
    minute: int = 0
    dt_minutes: float = DEFAULT_TIME_STEP_MINUTES
    prices: Optional[PriceVector] = None
    pumped_volume_m3: dict[str, float] = field(default_factory=dict)
    pump_minutes: dict[str, float] = field(default_factory=dict)
    last_flows: dict[str, float] = field(default_factory=dict)
    saturated: dict[str, bool] = field(default_factory=dict)


@dataclass
class PumpTotals:
    pumped_volume_m3: float = 0.0
    pump_minutes: float = 0.0
    energy_kwh: float = 0.0
    cost_eur: float = 0.0


@dataclass(frozen=True)
class MinuteOutcome:
    steps: list[StepRecord]
    link_flows: list[LinkFlow]
    levels_after: dict[str, float]
    energy_kwh: float
    cost_eur: float
    pumped_by_polder_m3: dict[str, float]


@dataclass(frozen=True)
class HourlyPolderSummary:
    hour: int
    polder_id: str
    end_level_m: float
    mean_level_m: float
    rain_mm_h: float
    pumped_volume_m3: float


@dataclass(frozen=True)
class HourlySummary:
    hour: int
    energy_kwh: float
    cost_eur: float
    price_eur_kwh: Optional[float]
    polders: dict[str, HourlyPolderSummary]


@dataclass
class NetworkResult:
    steps: list[StepRecord]
    link_flows: list[LinkFlow]
    hourly: list[HourlySummary]
    initial_levels: dict[str, float]
    final_levels: dict[str, float]
    pumps: dict[str, PumpTotals]
    duration_minutes: int

    @property
    def total_energy_kwh(self) -> float:
        return sum(p.energy_kwh for p in self.pumps.values())

    @property
    def total_cost_eur(self) -> float:
        return sum(p.cost_eur for p in self.pumps.values())

    @property
    def total_pumped_volume_m3(self) -> float:
        return sum(p.pumped_volume_m3 for p in self.pumps.values())

    @property
    def polder_ids(self) -> list[str]:
        return sorted(self.initial_levels)

    def steps_for(self, polder_id: str) -> list[StepRecord]:
        return [s for s in self.steps if s.polder_id == polder_id]

    def flows_for(self, link_id: str) -> list[LinkFlow]:
        return [f for f in self.link_flows if f.link_id == link_id]

    def to_dict(self) -> dict[str, Any]:
        return to_jsonable(
            {
                "duration_minutes": self.duration_minutes,
                "initial_levels": self.initial_levels,
                "final_levels": self.final_levels,
                "total_energy_kwh": self.total_energy_kwh,
                "total_cost_eur": self.total_cost_eur,
                "pumps": {k: vars(v) for k, v in self.pumps.items()},
                "hourly": [
                    {
                        "hour": h.hour,
                        "energy_kwh": h.energy_kwh,
                        "cost_eur": h.cost_eur,
                        "price_eur_kwh": h.price_eur_kwh,
                        "polders": {k: vars(v) for k, v in h.polders.items()},
                    }
                    for h in self.hourly
                ],
                "steps": [s.to_dict() for s in self.steps],
                "link_flows": [f.to_dict() for f in self.link_flows],
            }
        )


class NetworkSimulation:
    """Owns the mutable state of one run; call :meth:`step` once per minute."""

    def __init__(
        self,
        topology: Topology,
        strategy: ControlStrategy,
        initial_levels: Optional[Mapping[str, float]] = None,
        prices: Union[PriceVector, Sequence[float], None] = None,
        dt_minutes: float = DEFAULT_TIME_STEP_MINUTES,
    ) -> None:
        topology.validate()
        if dt_minutes <= 0.0:
            raise ConfigInvalid("dt_minutes", f"must be > 0, got {dt_minutes}")
        levels = {pid: topology.polder(pid).target_level_m for pid in topology.polder_ids()}
        for polder_id, level in (initial_levels or {}).items():
            if polder_id not in levels:
                raise ConfigInvalid(f"initial_levels[{polder_id}]", "unknown polder")
            levels[polder_id] = float(level)

        self.topology = topology
        self.strategy = strategy
        self.totals: dict[str, PumpTotals] = {p.id: PumpTotals() for p in topology.pumps()}
        self.state = NetworkState(
            topology=topology,
            levels=levels,
            dt_minutes=dt_minutes,
            prices=PriceVector.coerce(prices),
            pumped_volume_m3={pid: 0.0 for pid in levels},
            pump_minutes={pid: 0.0 for pid in levels},
        )
        self.strategy.reset()

    @property
    def levels(self) -> dict[str, float]:
        return dict(self.state.levels)

    @property
    def minute(self) -> int:
        return self.state.minute

    def step(self, rain_by_polder: Optional[Mapping[str, float]] = None) -> MinuteOutcome:
        """Advance every polder by one timestep.

        ``rain_by_polder`` holds the intensity (mm/h) falling during this
        step; polders without an entry stay dry.
        """
        topology = self.topology
        state = self.state
        dt = state.dt_minutes
        t = state.minute
        clock = _clock(t, dt)
        rain_by_polder = rain_by_polder or {}
        polder_ids = topology.polder_ids()

        rain = {pid: sanitize_rain(float(rain_by_polder.get(pid, 0.0))) for pid in polder_ids}

        duties = self.strategy.duties(state, clock)

        links = topology.links
        resolved: dict[str, ResolvedFlow] = {}
        for link_id in topology.link_ids():
            link = links[link_id]
            q = resolve_link_flow(
                link,
                h_up=state.levels[link.upstream],
                h_down=state.levels[link.downstream],
                duty=duties.get(link_id, 0.0),
                upstream_polder=topology.polder(link.upstream),
                dt_minutes=dt,
            )
            resolved[link_id] = ResolvedFlow(link=link, q=q)
        apply_outflow_caps(resolved, topology)

        hour = clock // MINUTES_PER_HOUR
        price = state.prices.price_at(hour) if state.prices is not None else None
        energy = 0.0
        cost = 0.0
        pumped_by_polder = {pid: 0.0 for pid in polder_ids}
        pumping: set[str] = set()
        for link_id, item in resolved.items():
            link = item.link
            if not isinstance(link, PumpLink):
                continue
            volume = flow_to_volume(item.q, dt)
            kwh = link.power_kw(item.q) * dt / MINUTES_PER_HOUR
            totals = self.totals[link_id]
            totals.pumped_volume_m3 += volume
            totals.energy_kwh += kwh
            if item.q > PUMP_ON_THRESHOLD_M3_S:
                totals.pump_minutes += dt
                pumping.add(link.upstream)
            if price is not None:
                totals.cost_eur += kwh * price
                cost += kwh * price
            energy += kwh
            pumped_by_polder[link.upstream] += volume
            state.pumped_volume_m3[link.upstream] += volume
        for pid in pumping:
            state.pump_minutes[pid] += dt

        steps: list[StepRecord] = []
        new_levels: dict[str, float] = {}
        for pid in polder_ids:
            polder = topology.polder(pid)
            outgoing = [resolved[link.id] for link in topology.outgoing(pid)]
            incoming = [resolved[link.id] for link in topology.incoming(pid)]
            q_out = sum(item.q for item in outgoing)
            q_in_links = sum(item.q for item in incoming)
            balance = calculate_water_balance(
                rain_mm_h=rain[pid],
                area_m2=polder.area_m2,
                level_m=state.levels[pid],
                outflow_m3_s=q_out - q_in_links,
                evaporation_mm_h=polder.evaporation_mm_h,
                infiltration_mm_h=polder.infiltration_mm_h,
                storage_fraction=polder.storage_fraction,
                dt_minutes=dt,
            )
            new_levels[pid] = balance.new_level_m
            steps.append(
                StepRecord(
                    t_min=t * dt,
                    h=state.levels[pid],
                    q_in=balance.inflow_m3_s + q_in_links,
                    q_out=q_out,
                    loss=balance.loss_m3_s,
                    net=balance.net_m3_s,
                    raining=rain[pid] > 0.0,
                    pump_on=any(
                        isinstance(item.link, PumpLink) and item.q > PUMP_ON_THRESHOLD_M3_S
                        for item in outgoing
                    ),
                    polder_id=pid,
                )
            )

        link_flows = [
            LinkFlow(
                t_min=t * dt,
                link_id=link_id,
                kind=item.link.kind.value,
                q=item.q,
                utilisation=item.utilisation,
                saturation=item.saturated,
            )
            for link_id, item in resolved.items()
        ]

        state.levels.update(new_levels)
        state.last_flows = {link_id: item.q for link_id, item in resolved.items()}
        state.saturated = {link_id: item.saturated for link_id, item in resolved.items()}
        state.minute = t + 1

        return MinuteOutcome(
            steps=steps,
            link_flows=link_flows,
            levels_after=dict(new_levels),
            energy_kwh=energy,
            cost_eur=cost,
            pumped_by_polder_m3=pumped_by_polder,
        )


def _rain_at(rain: RainProfile, polder_id: str, hour: int) -> float:
    values = rain.get(polder_id)
    if values is None or hour >= len(values):
        return 0.0
    return float(values[hour])


class _HourAccumulator:
    def __init__(self, hour: int, polder_ids: list[str]) -> None:
        self.hour = hour
        self.energy = 0.0
        self.cost = 0.0
        self.level_sum = {pid: 0.0 for pid in polder_ids}
        self.rain_sum = {pid: 0.0 for pid in polder_ids}
        self.pumped = {pid: 0.0 for pid in polder_ids}
        self.minutes = 0

    def add(self, outcome: MinuteOutcome, rain: Mapping[str, float]) -> None:
        self.minutes += 1
        self.energy += outcome.energy_kwh
        self.cost += outcome.cost_eur
        for step in outcome.steps:
            self.level_sum[step.polder_id] += step.h
            self.rain_sum[step.polder_id] += rain.get(step.polder_id, 0.0)
        for pid, volume in outcome.pumped_by_polder_m3.items():
            self.pumped[pid] += volume

    def close(self, end_levels: Mapping[str, float], price: Optional[float]) -> HourlySummary:
        n = max(self.minutes, 1)
        polders = {
            pid: HourlyPolderSummary(
                hour=self.hour,
                polder_id=pid,
                end_level_m=end_levels[pid],
                mean_level_m=self.level_sum[pid] / n,
                rain_mm_h=self.rain_sum[pid] / n,
                pumped_volume_m3=self.pumped[pid],
            )
            for pid in self.level_sum
        }
        return HourlySummary(
            hour=self.hour,
            energy_kwh=self.energy,
            cost_eur=self.cost,
            price_eur_kwh=price,
            polders=polders,
        )


def run_network_simulation(
    topology: Topology,
    rain: RainProfile,
    strategy: ControlStrategy,
    duration_hours: Optional[float] = None,
    initial_levels: Optional[Mapping[str, float]] = None,
    prices: Union[PriceVector, Sequence[float], None] = None,
    dt_minutes: float = DEFAULT_TIME_STEP_MINUTES,
) -> NetworkResult:
    """Simulate ``topology`` under hourly ``rain`` (mm/h per polder id) with ``strategy``.

    The run lasts ``duration_hours`` or, when omitted, as long as the longest
    rain vector (at least one hour). Identical inputs give identical results.
    """
    for polder_id in rain:
        if polder_id not in topology.polders:
            raise ConfigInvalid(f"rain[{polder_id}]", "unknown polder")

    if duration_hours is None:
        duration_hours = max([len(v) for v in rain.values()] + [1])
    if duration_hours <= 0:
        raise InputShape("duration_hours", "a positive duration", int(duration_hours))
    n_minutes = hours_to_minutes(duration_hours)

    sim = NetworkSimulation(
        topology, strategy, initial_levels=initial_levels, prices=prices, dt_minutes=dt_minutes
    )
    n_steps = int(round(n_minutes / dt_minutes))
    price_vector = sim.state.prices
    initial = sim.levels
    polder_ids = topology.polder_ids()

    logger.info(
        "Network run start: %d polders, %d links, %d minutes, dt=%g min, strategy=%s",
        len(polder_ids),
        len(topology.link_ids()),
        n_minutes,
        dt_minutes,
        strategy.name,
    )

    steps: list[StepRecord] = []
    link_flows: list[LinkFlow] = []
    hourly: list[HourlySummary] = []
    acc: Optional[_HourAccumulator] = None
    for k in range(n_steps):
        hour = _clock(k, dt_minutes) // MINUTES_PER_HOUR
        if acc is None or acc.hour != hour:
            if acc is not None:
                hourly.append(_close_hour(acc, sim.levels, price_vector))
            acc = _HourAccumulator(hour, polder_ids)
        rain_now = {pid: sanitize_rain(_rain_at(rain, pid, hour)) for pid in polder_ids}
        outcome = sim.step(rain_now)
        acc.add(outcome, rain_now)
        steps.extend(outcome.steps)
        link_flows.extend(outcome.link_flows)
    if acc is not None:
        hourly.append(_close_hour(acc, sim.levels, price_vector))

    result = NetworkResult(
        steps=steps,
        link_flows=link_flows,
        hourly=hourly,
        initial_levels=initial,
        final_levels=sim.levels,
        pumps=sim.totals,
        duration_minutes=n_minutes,
    )
    logger.info(
        "Network run end: energy %.2f kWh, cost %.2f EUR, pumped %.1f m3",
        result.total_energy_kwh,
        result.total_cost_eur,
        result.total_pumped_volume_m3,
    )
    return result


def _close_hour(
    acc: _HourAccumulator, levels: Mapping[str, float], prices: Optional[PriceVector]
) -> HourlySummary:
    price = prices.price_at(acc.hour) if prices is not None else None
    summary = acc.close(levels, price)
    logger.debug("Hour %d: energy %.2f kWh, cost %.3f EUR", summary.hour, summary.energy_kwh, summary.cost_eur)
    return summary
