"""Single-polder rain event simulation with constant or PID-controlled pumping."""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Optional

from .constants import (
    DEFAULT_PID_KD,
    DEFAULT_PID_KI,
    DEFAULT_PID_KP,
    DEFAULT_POST_RAIN_MINUTES,
    DEFAULT_STORAGE_FRACTION,
    DEFAULT_TIME_STEP_MINUTES,
    PUMP_ON_THRESHOLD_M3_S,
)
from .errors import ConfigInvalid
from .pid import PIDController
from .records import StepRecord
from .topology import PolderConfig
from .units import cm_to_m
from .waterbalance import calculate_water_balance

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SimulationParams:
    """Inputs for :func:`simulate_polder`.

    Durations are in minutes, ``margin_cm`` in centimetres, levels in metres.
    """

    initial_level_m: float
    rain_intensity_mm_h: float
    rain_duration_min: float
    pump_flow_m3_s: float
    target_level_m: float
    area_m2: float
    margin_cm: float = 20.0
    ground_level_m: float = 0.0
    post_rain_duration_min: float = DEFAULT_POST_RAIN_MINUTES
    smart_control: bool = False
    evaporation_mm_h: float = 0.0
    infiltration_mm_h: float = 0.0
    storage_fraction: float = DEFAULT_STORAGE_FRACTION
    time_step_min: float = DEFAULT_TIME_STEP_MINUTES
    pid_kp: float = DEFAULT_PID_KP
    pid_ki: float = DEFAULT_PID_KI
    pid_kd: float = DEFAULT_PID_KD

    def __post_init__(self) -> None:
        if self.area_m2 <= 0.0:
            raise ConfigInvalid("area_m2", f"must be > 0, got {self.area_m2}")
        if not (0.0 < self.storage_fraction <= 1.0):
            raise ConfigInvalid("storage_fraction", f"must be in (0, 1], got {self.storage_fraction}")
        if self.time_step_min <= 0.0:
            raise ConfigInvalid("time_step_min", f"must be > 0, got {self.time_step_min}")
        if self.rain_duration_min < 0.0 or self.post_rain_duration_min < 0.0:
            raise ConfigInvalid("rain_duration_min", "durations must be >= 0")
        if self.pump_flow_m3_s < 0.0:
            raise ConfigInvalid("pump_flow_m3_s", f"must be >= 0, got {self.pump_flow_m3_s}")

    @property
    def total_duration_min(self) -> float:
        return self.rain_duration_min + self.post_rain_duration_min

    @property
    def margin_m(self) -> float:
        return cm_to_m(self.margin_cm)

    def with_pump_flow(self, pump_flow_m3_s: float) -> "SimulationParams":
        return replace(self, pump_flow_m3_s=pump_flow_m3_s)

    @classmethod
    def from_polder(
        cls,
        polder: PolderConfig,
        rain_intensity_mm_h: float,
        rain_duration_min: float,
        pump_flow_m3_s: float,
        initial_level_m: Optional[float] = None,
        **kwargs,
    ) -> "SimulationParams":
        return cls(
            initial_level_m=polder.target_level_m if initial_level_m is None else initial_level_m,
            rain_intensity_mm_h=rain_intensity_mm_h,
            rain_duration_min=rain_duration_min,
            pump_flow_m3_s=pump_flow_m3_s,
            target_level_m=polder.target_level_m,
            area_m2=polder.area_m2,
            margin_cm=polder.margin_m * 100.0,
            ground_level_m=polder.ground_level_m,
            evaporation_mm_h=polder.evaporation_mm_h,
            infiltration_mm_h=polder.infiltration_mm_h,
            storage_fraction=polder.storage_fraction,
            **kwargs,
        )


def simulate_polder(params: SimulationParams) -> list[StepRecord]:
    """Run one rain event followed by a dry tail.

    Steps cover ``t = 0, dt, ..., D_R + D_P`` inclusive. Rain falls while
    ``t <= D_R``. With ``smart_control`` the pump flow is the PID duty times
    ``pump_flow_m3_s``; otherwise the pump runs at ``pump_flow_m3_s`` the whole
    time.
    """
    dt = params.time_step_min
    n_steps = int(round(params.total_duration_min / dt))
    pid = PIDController(params.pid_kp, params.pid_ki, params.pid_kd)
    smart = params.smart_control and params.pump_flow_m3_s > 0.0

    level = params.initial_level_m
    records: list[StepRecord] = []
    for k in range(n_steps + 1):
        t = k * dt
        raining = t <= params.rain_duration_min
        rain = params.rain_intensity_mm_h if raining else 0.0

        if smart:
            duty = pid.update(level - params.target_level_m, dt)
            q_out = duty * params.pump_flow_m3_s
            pump_on = q_out > PUMP_ON_THRESHOLD_M3_S
        else:
            q_out = params.pump_flow_m3_s
            pump_on = params.pump_flow_m3_s > 0.0

        balance = calculate_water_balance(
            rain_mm_h=rain,
            area_m2=params.area_m2,
            level_m=level,
            outflow_m3_s=q_out,
            evaporation_mm_h=params.evaporation_mm_h,
            infiltration_mm_h=params.infiltration_mm_h,
            storage_fraction=params.storage_fraction,
            dt_minutes=dt,
        )
        records.append(
            StepRecord(
                t_min=t,
                h=level,
                q_in=balance.inflow_m3_s,
                q_out=q_out,
                loss=balance.loss_m3_s,
                net=balance.net_m3_s,
                raining=raining,
                pump_on=pump_on,
            )
        )
        level = balance.new_level_m

    logger.debug(
        "Polder simulation finished: %d steps, end level %.4f m (Q_n=%.3f, smart=%s)",
        len(records),
        level,
        params.pump_flow_m3_s,
        smart,
    )
    return records
