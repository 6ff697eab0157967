"""Explicit one-timestep water balance for a single polder."""

from __future__ import annotations

from dataclasses import dataclass

from .constants import DEFAULT_STORAGE_FRACTION, DEFAULT_TIME_STEP_MINUTES, SECONDS_PER_MINUTE
from .units import rain_to_flow, sanitize_rain


@dataclass(frozen=True)
class WaterBalance:
    inflow_m3_s: float
    outflow_m3_s: float
    loss_m3_s: float
    net_m3_s: float
    level_change_m: float
    new_level_m: float


def calculate_water_balance(
    rain_mm_h: float,
    area_m2: float,
    level_m: float,
    outflow_m3_s: float,
    evaporation_mm_h: float = 0.0,
    infiltration_mm_h: float = 0.0,
    storage_fraction: float = DEFAULT_STORAGE_FRACTION,
    dt_minutes: float = DEFAULT_TIME_STEP_MINUTES,
) -> WaterBalance:
    """Advance ``level_m`` by one explicit Euler step of ``dt_minutes``.

    Rain falls on the whole area but only the open-water share
    (``storage_fraction * area_m2``) stores it, so the level change is the net
    volume divided by that storage surface. Levels are never clamped; a
    negative ``outflow_m3_s`` acts as an extra inflow (net link inflow in a
    network).
    """
    inflow = rain_to_flow(sanitize_rain(rain_mm_h), area_m2)
    loss = rain_to_flow(evaporation_mm_h + infiltration_mm_h, area_m2)
    net = inflow - outflow_m3_s - loss
    level_change = net * dt_minutes * SECONDS_PER_MINUTE / (storage_fraction * area_m2)
    return WaterBalance(
        inflow_m3_s=inflow,
        outflow_m3_s=outflow_m3_s,
        loss_m3_s=loss,
        net_m3_s=net,
        level_change_m=level_change,
        new_level_m=level_m + level_change,
    )
