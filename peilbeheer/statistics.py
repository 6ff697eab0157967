"""Summary statistics and level trends over simulated timeseries."""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Sequence, Union

import numpy as np

from .constants import MINUTES_PER_HOUR, SECONDS_PER_MINUTE
from .network import NetworkResult
from .records import StepRecord

STABLE_SLOPE_M_PER_H = 0.001
STRONG_SLOPE_M_PER_H = 0.01

SINGLE_POLDER = "polder"


class TrendDirection(str, Enum):
    increasing = "increasing"
    decreasing = "decreasing"
    stable = "stable"


class TrendStrength(str, Enum):
    strong = "strong"
    moderate = "moderate"
    weak = "weak"


@dataclass(frozen=True)
class TrendInfo:
    slope_per_minute: float
    slope_per_hour: float
    direction: TrendDirection
    strength: TrendStrength
    r_squared: float


@dataclass(frozen=True)
class PolderStatistics:
    polder_id: str
    min_level_m: float
    max_level_m: float
    mean_level_m: float
    total_outflow_m3: float
    pump_hours: float
    mean_inflow_m3_s: float
    raining_minutes: float
    trend: Optional[TrendInfo]


@dataclass(frozen=True)
class SimulationStatistics:
    n_steps: int
    total_time_min: float
    polders: dict[str, PolderStatistics]


def compute_trend(times_min: Sequence[float], values: Sequence[float]) -> Optional[TrendInfo]:
    """Least-squares line through ``values`` against ``times_min``.

    Returns ``None`` for fewer than two points or when all times coincide.
    """
    x = np.asarray(times_min, dtype=float)
    y = np.asarray(values, dtype=float)
    if len(x) < 2 or len(x) != len(y):
        return None
    x_mean = x.mean()
    y_mean = y.mean()
    sxx = float(((x - x_mean) ** 2).sum())
    if sxx == 0.0:
        return None
    slope = float(((x - x_mean) * (y - y_mean)).sum()) / sxx
    intercept = y_mean - slope * x_mean
    ss_tot = float(((y - y_mean) ** 2).sum())
    ss_res = float(((y - (slope * x + intercept)) ** 2).sum())
    r_squared = 1.0 - ss_res / ss_tot if ss_tot > 0.0 else 0.0

    per_hour = slope * MINUTES_PER_HOUR
    if abs(per_hour) < STABLE_SLOPE_M_PER_H:
        direction = TrendDirection.stable
    elif per_hour > 0.0:
        direction = TrendDirection.increasing
    else:
        direction = TrendDirection.decreasing

    if abs(per_hour) > STRONG_SLOPE_M_PER_H:
        strength = TrendStrength.strong
    elif abs(per_hour) > STABLE_SLOPE_M_PER_H:
        strength = TrendStrength.moderate
    else:
        strength = TrendStrength.weak

    return TrendInfo(
        slope_per_minute=slope,
        slope_per_hour=per_hour,
        direction=direction,
        strength=strength,
        r_squared=r_squared,
    )


def _step_minutes(steps: Sequence[StepRecord]) -> float:
    times = sorted({s.t_min for s in steps})
    if len(times) < 2:
        return 1.0
    return float(times[1] - times[0])


def _polder_statistics(polder_id: str, steps: Sequence[StepRecord], dt: float) -> PolderStatistics:
    levels = np.array([s.h for s in steps])
    outflow = np.array([s.q_out for s in steps])
    inflow = np.array([s.q_in for s in steps])
    pumping = sum(1 for s in steps if s.pump_on)
    raining = sum(1 for s in steps if s.raining)
    return PolderStatistics(
        polder_id=polder_id,
        min_level_m=float(levels.min()),
        max_level_m=float(levels.max()),
        mean_level_m=float(levels.mean()),
        total_outflow_m3=float(outflow.sum() * dt * SECONDS_PER_MINUTE),
        pump_hours=pumping * dt / MINUTES_PER_HOUR,
        mean_inflow_m3_s=float(inflow.mean()),
        raining_minutes=raining * dt,
        trend=compute_trend([s.t_min for s in steps], levels),
    )


def compute_statistics(result: Union[NetworkResult, Sequence[StepRecord]]) -> Optional[SimulationStatistics]:
    """Per-polder level range, outflow volume, pump hours and trend.

    Single-polder records (``polder_id`` is ``None``) are grouped under
    ``"polder"``. Returns ``None`` for an empty timeseries.
    """
    steps = result.steps if isinstance(result, NetworkResult) else list(result)
    if not steps:
        return None
    grouped: dict[str, list[StepRecord]] = defaultdict(list)
    for step in steps:
        grouped[step.polder_id or SINGLE_POLDER].append(step)
    dt = _step_minutes(steps)
    polders = {pid: _polder_statistics(pid, grouped[pid], dt) for pid in sorted(grouped)}
    times = [s.t_min for s in steps]
    return SimulationStatistics(
        n_steps=len(next(iter(grouped.values()))),
        total_time_min=max(times) - min(times) + dt,
        polders=polders,
    )
