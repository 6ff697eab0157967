"""Dynamic-programming pump schedule that minimises energy cost under hourly spot prices."""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from typing import Any, Callable, Optional, Sequence, Union

import numpy as np

from .constants import (
    DEFAULT_PUMP_EFFICIENCY,
    DEFAULT_STORAGE_FRACTION,
    DP_DUTY_LEVELS,
    DP_LEVEL_STEP_M,
    DP_MAX_BUFFER_M,
    DP_MIN_BUFFER_M,
    DP_PENALTY_WEIGHT,
    MINUTES_PER_HOUR,
    PUMP_ON_THRESHOLD_M3_S,
    SECONDS_PER_HOUR,
)
from .errors import ConfigInvalid, InputShape
from .prices import PriceVector
from .records import to_jsonable
from .topology import PolderConfig, PumpLink, pump_power_kw
from .units import m_to_cm, rain_to_flow, sanitize_rain
from .waterbalance import calculate_water_balance

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OptimisationParams:
    """Single-polder model the schedule is optimised for.

    ``rain_mm_h`` and ``prices`` are hourly and must have the same length,
    a whole number of days.
    """

    target_level_m: float
    max_flow_m3_s: float
    area_m2: float
    head_m: float
    rain_mm_h: Sequence[float]
    prices: Union[PriceVector, Sequence[float], None]
    margin_m: float = 0.20
    efficiency: float = DEFAULT_PUMP_EFFICIENCY
    evaporation_mm_h: float = 0.0
    infiltration_mm_h: float = 0.0
    storage_fraction: float = DEFAULT_STORAGE_FRACTION
    initial_level_m: Optional[float] = None
    level_step_m: float = DP_LEVEL_STEP_M
    duty_levels: int = DP_DUTY_LEVELS
    penalty: float = DP_PENALTY_WEIGHT

    @classmethod
    def from_polder(
        cls,
        polder: PolderConfig,
        pump: PumpLink,
        rain_mm_h: Sequence[float],
        prices: Union[PriceVector, Sequence[float], None],
        settings=None,
        **kwargs,
    ) -> "OptimisationParams":
        max_flow = pump.capacity_m3_s
        if polder.max_outflow_m3_s is not None:
            max_flow = min(max_flow, polder.max_outflow_m3_s)
        if settings is not None:
            kwargs.setdefault("level_step_m", settings.dp_level_step_m)
            kwargs.setdefault("duty_levels", settings.dp_duty_levels)
            kwargs.setdefault("penalty", settings.dp_penalty)
        return cls(
            target_level_m=polder.target_level_m,
            max_flow_m3_s=max_flow,
            area_m2=polder.area_m2,
            head_m=pump.head_m,
            rain_mm_h=list(rain_mm_h),
            prices=prices,
            margin_m=polder.margin_m,
            efficiency=pump.efficiency,
            evaporation_mm_h=polder.evaporation_mm_h,
            infiltration_mm_h=polder.infiltration_mm_h,
            storage_fraction=polder.storage_fraction,
            **kwargs,
        )

    @property
    def start_level_m(self) -> float:
        return self.target_level_m if self.initial_level_m is None else self.initial_level_m


@dataclass(frozen=True)
class HourlyOptimisation:
    """One optimised hour: price in EUR/kWh, rain in mm/h, duties in [0, 1], costs in EUR."""

    hour: int
    price: float
    rain: float
    u_opt: float
    u_naive: float
    h_end_opt: float
    h_end_naive: float
    cost_opt: float
    cost_naive: float

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class ReplayStep:
    t_min: int
    hour: int
    h: float
    q_out: float
    q_in: float
    raining: bool
    pump_on: bool
    cumulative_cost_eur: float
    price_eur_kwh: float


@dataclass
class _Replay:
    duties: list[float] = field(default_factory=list)
    h_end: list[float] = field(default_factory=list)
    cost: list[float] = field(default_factory=list)
    energy_kwh: float = 0.0
    steps: list[ReplayStep] = field(default_factory=list)
    max_deviation_m: float = 0.0


@dataclass
class OptimisationResult:
    hourly: list[HourlyOptimisation]
    total_cost_opt_eur: float
    total_cost_naive_eur: float
    energy_opt_kwh: float
    energy_naive_kwh: float
    savings_eur: float
    savings_pct: float
    max_deviation_opt_m: float
    max_deviation_naive_m: float
    feasible: bool
    message: str
    replay_opt: list[ReplayStep]
    replay_naive: list[ReplayStep]

    @property
    def schedule(self) -> list[float]:
        return [h.u_opt for h in self.hourly]

    @property
    def max_deviation_opt_cm(self) -> float:
        return m_to_cm(self.max_deviation_opt_m)

    @property
    def max_deviation_naive_cm(self) -> float:
        return m_to_cm(self.max_deviation_naive_m)

    def to_dict(self, include_replay: bool = False) -> dict[str, Any]:
        out = asdict(self)
        out["schedule"] = self.schedule
        out["max_deviation_opt_cm"] = self.max_deviation_opt_cm
        out["max_deviation_naive_cm"] = self.max_deviation_naive_cm
        if not include_replay:
            out.pop("replay_opt")
            out.pop("replay_naive")
        return to_jsonable(out)


def _validate(params: OptimisationParams) -> tuple[PriceVector, np.ndarray]:
    prices = PriceVector.coerce(params.prices)
    if prices is None:
        raise InputShape("prices", "a positive multiple of 24", 0)
    prices.require_whole_days()
    if len(params.rain_mm_h) != len(prices):
        raise InputShape("rain_mm_h", str(len(prices)), len(params.rain_mm_h))
    if not params.area_m2 > 0.0:
        raise ConfigInvalid("area_m2", f"must be > 0, got {params.area_m2}")
    if not params.max_flow_m3_s > 0.0:
        raise ConfigInvalid("max_flow_m3_s", f"must be > 0, got {params.max_flow_m3_s}")
    if not (0.0 < params.storage_fraction <= 1.0):
        raise ConfigInvalid("storage_fraction", f"must be in (0, 1], got {params.storage_fraction}")
    if params.margin_m < 0.0:
        raise ConfigInvalid("margin_m", f"must be >= 0, got {params.margin_m}")
    if params.level_step_m <= 0.0:
        raise ConfigInvalid("level_step_m", f"must be > 0, got {params.level_step_m}")
    if params.duty_levels < 2:
        raise ConfigInvalid("duty_levels", f"must be >= 2, got {params.duty_levels}")
    rain = np.array([sanitize_rain(float(r)) for r in params.rain_mm_h], dtype=float)
    return prices, rain


def _level_grid(params: OptimisationParams, rain: np.ndarray) -> np.ndarray:
    buffer = float(np.clip(rain.sum() / params.storage_fraction / 1000.0, DP_MIN_BUFFER_M, DP_MAX_BUFFER_M))
    half_width = params.margin_m + buffer
    n_levels = int(round(2.0 * half_width / params.level_step_m)) + 1
    low = params.target_level_m - half_width
    return low + params.level_step_m * np.arange(n_levels)


def _solve_dp(params: OptimisationParams, prices: np.ndarray, rain: np.ndarray, grid: np.ndarray) -> np.ndarray:
    """Backward induction; returns the policy as duty indices, shape (hours, levels)."""
    duties = np.linspace(0.0, 1.0, params.duty_levels)
    storage = params.storage_fraction * params.area_m2
    step = params.level_step_m
    margin_eff = params.margin_m - min(step, params.margin_m / 2.0)
    loss_volume = rain_to_flow(params.evaporation_mm_h + params.infiltration_mm_h, params.area_m2) * SECONDS_PER_HOUR
    pump_volume = duties * params.max_flow_m3_s * SECONDS_PER_HOUR
    power = pump_power_kw(duties * params.max_flow_m3_s, params.head_m, params.efficiency)

    n_hours = len(prices)
    n_levels = len(grid)
    policy = np.zeros((n_hours, n_levels), dtype=int)
    value = np.zeros(n_levels)
    for hour in range(n_hours - 1, -1, -1):
        rain_volume = rain_to_flow(rain[hour], params.area_m2) * SECONDS_PER_HOUR
        level_change = (rain_volume - loss_volume - pump_volume) / storage
        next_level = grid[:, None] + level_change[None, :]
        next_idx = np.clip(np.rint((next_level - grid[0]) / step).astype(int), 0, n_levels - 1)
        excess = np.maximum(0.0, np.abs(grid[next_idx] - params.target_level_m) - margin_eff)
        total = power[None, :] * prices[hour] + params.penalty * excess ** 2 + value[next_idx]
        policy[hour] = np.argmin(total, axis=1)
        value = total[np.arange(n_levels), policy[hour]]
    return policy


def _replay(
    params: OptimisationParams,
    prices: np.ndarray,
    rain: np.ndarray,
    choose_duty: Callable[[int, float], float],
) -> _Replay:
    """Run the schedule minute by minute, picking a duty at the start of every hour."""
    out = _Replay()
    level = params.start_level_m
    cumulative = 0.0
    for hour in range(len(prices)):
        duty = choose_duty(hour, level)
        q_out = duty * params.max_flow_m3_s
        kw = pump_power_kw(q_out, params.head_m, params.efficiency)
        price = float(prices[hour])
        hour_cost = 0.0
        for minute in range(MINUTES_PER_HOUR):
            balance = calculate_water_balance(
                rain_mm_h=float(rain[hour]),
                area_m2=params.area_m2,
                level_m=level,
                outflow_m3_s=q_out,
                evaporation_mm_h=params.evaporation_mm_h,
                infiltration_mm_h=params.infiltration_mm_h,
                storage_fraction=params.storage_fraction,
            )
            minute_cost = kw * price / MINUTES_PER_HOUR
            hour_cost += minute_cost
            cumulative += minute_cost
            out.energy_kwh += kw / MINUTES_PER_HOUR
            out.steps.append(
                ReplayStep(
                    t_min=hour * MINUTES_PER_HOUR + minute,
                    hour=hour,
                    h=level,
                    q_out=q_out,
                    q_in=balance.inflow_m3_s,
                    raining=rain[hour] > 0.0,
                    pump_on=q_out > PUMP_ON_THRESHOLD_M3_S,
                    cumulative_cost_eur=cumulative,
                    price_eur_kwh=price,
                )
            )
            out.max_deviation_m = max(out.max_deviation_m, abs(level - params.target_level_m))
            level = balance.new_level_m
        out.duties.append(duty)
        out.h_end.append(level)
        out.cost.append(hour_cost)
    out.max_deviation_m = max(out.max_deviation_m, abs(level - params.target_level_m))
    return out


def optimize_pump_schedule(params: OptimisationParams) -> OptimisationResult:
    """Compute the cheapest hourly duty schedule and compare it with naive on/off pumping.

    The level is discretised to ``level_step_m`` and the duty to
    ``duty_levels`` values. Leaving the band ``target +/- margin`` is
    penalised quadratically rather than forbidden, so a best-effort schedule
    is always returned; ``feasible`` tells whether the replayed schedule
    actually stayed inside the band.
    """
    prices_vec, rain = _validate(params)
    prices = prices_vec.as_array()
    grid = _level_grid(params, rain)
    duties = np.linspace(0.0, 1.0, params.duty_levels)
    logger.debug(
        "DP grid: %d levels x %d duties x %d hours (%.3f .. %.3f m)",
        len(grid),
        len(duties),
        len(prices),
        grid[0],
        grid[-1],
    )

    policy = _solve_dp(params, prices, rain, grid)

    def dp_duty(hour: int, level: float) -> float:
        idx = int(np.clip(np.rint((level - grid[0]) / params.level_step_m), 0, len(grid) - 1))
        return float(duties[policy[hour, idx]])

    def naive_duty(hour: int, level: float) -> float:
        return 1.0 if level > params.target_level_m else 0.0

    opt = _replay(params, prices, rain, dp_duty)
    naive = _replay(params, prices, rain, naive_duty)

    hourly = [
        HourlyOptimisation(
            hour=hour,
            price=float(prices[hour]),
            rain=float(rain[hour]),
            u_opt=opt.duties[hour],
            u_naive=naive.duties[hour],
            h_end_opt=opt.h_end[hour],
            h_end_naive=naive.h_end[hour],
            cost_opt=opt.cost[hour],
            cost_naive=naive.cost[hour],
        )
        for hour in range(len(prices))
    ]
    total_opt = sum(opt.cost)
    total_naive = sum(naive.cost)
    savings = total_naive - total_opt
    savings_pct = savings / total_naive * 100.0 if total_naive > 0.0 else 0.0

    feasible = opt.max_deviation_m <= params.margin_m + 1e-9
    if feasible:
        message = "Schedule keeps the level within the margin"
    else:
        message = (
            f"No schedule keeps the level within +/-{m_to_cm(params.margin_m):.1f} cm with "
            f"{params.max_flow_m3_s:.3f} m3/s; best effort deviates "
            f"{m_to_cm(opt.max_deviation_m):.1f} cm"
        )
        logger.warning(message)

    logger.info(
        "DP schedule cost %.2f EUR vs naive %.2f EUR (savings %.1f%%)",
        total_opt,
        total_naive,
        savings_pct,
    )

    return OptimisationResult(
        hourly=hourly,
        total_cost_opt_eur=total_opt,
        total_cost_naive_eur=total_naive,
        energy_opt_kwh=opt.energy_kwh,
        energy_naive_kwh=naive.energy_kwh,
        savings_eur=savings,
        savings_pct=savings_pct,
        max_deviation_opt_m=opt.max_deviation_m,
        max_deviation_naive_m=naive.max_deviation_m,
        feasible=feasible,
        message=message,
        replay_opt=opt.steps,
        replay_naive=naive.steps,
    )
