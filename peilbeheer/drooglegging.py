"""Drooglegging (freeboard) checks and the minimum pump flow search."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import Any, Optional, Sequence

from .config import get_settings
from .errors import ConfigInvalid
from .polder import SimulationParams, simulate_polder
from .records import StepRecord
from .units import cm_to_m, m_to_cm

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DroogleggingResult:
    drooglegging_m: float
    streef_drooglegging_m: float
    min_allowed_m: float
    overschrijding_m: float

    @property
    def overschrijding_cm(self) -> float:
        return m_to_cm(self.overschrijding_m)

    @property
    def exceeded(self) -> bool:
        return self.overschrijding_m > 0.0


def calculate_drooglegging(
    ground_level_m: float,
    level_m: float,
    target_level_m: float,
    margin_cm: float,
) -> DroogleggingResult:
    """Compare the actual freeboard with the smallest one the margin allows.

    A positive ``overschrijding_m`` means the water stands higher than
    ``target + margin``.
    """
    drooglegging = ground_level_m - level_m
    streef = ground_level_m - target_level_m
    min_allowed = streef - cm_to_m(margin_cm)
    return DroogleggingResult(
        drooglegging_m=drooglegging,
        streef_drooglegging_m=streef,
        min_allowed_m=min_allowed,
        overschrijding_m=min_allowed - drooglegging,
    )


def find_max_level(steps: Sequence[StepRecord]) -> Optional[tuple[float, float]]:
    """Return ``(level, t_min)`` of the highest level, first occurrence wins."""
    if not steps:
        return None
    best = max(steps, key=lambda s: s.h)
    return best.h, best.t_min


@dataclass
class MinimumFlowResult:
    found: bool
    q_min: Optional[float]
    max_exceedance_cm: float
    message: str
    steps: list[StepRecord] = field(default_factory=list)

    def to_dict(self, include_steps: bool = False) -> dict[str, Any]:
        out: dict[str, Any] = {
            "found": self.found,
            "q_min": self.q_min,
            "max_exceedance_cm": self.max_exceedance_cm,
            "message": self.message,
        }
        if include_steps:
            out["steps"] = [s.to_dict() for s in self.steps]
        return out


def _max_exceedance_cm(params: SimulationParams, steps: Sequence[StepRecord]) -> float:
    worst = max(
        calculate_drooglegging(params.ground_level_m, s.h, params.target_level_m, params.margin_cm).overschrijding_m
        for s in steps
    )
    return m_to_cm(max(worst, 0.0))


def _evaluate(params: SimulationParams, flow: float) -> tuple[float, list[StepRecord]]:
    steps = simulate_polder(params.with_pump_flow(flow))
    return _max_exceedance_cm(params, steps), steps


def find_minimum_flow(
    params: SimulationParams,
    step_m3_s: Optional[float] = None,
    max_flow_m3_s: Optional[float] = None,
    settings=None,
) -> MinimumFlowResult:
    """Smallest constant pump flow on a ``step_m3_s`` grid that never exceeds the margin.

    The exceedance only shrinks as the flow grows, so the grid is bisected
    instead of swept. ``params.pump_flow_m3_s`` and ``smart_control`` are
    ignored; every candidate pumps at a constant rate.
    """
    if settings is None and (step_m3_s is None or max_flow_m3_s is None):
        settings = get_settings()
    step = step_m3_s if step_m3_s is not None else settings.min_flow_step
    upper = max_flow_m3_s if max_flow_m3_s is not None else settings.min_flow_max
    if step <= 0.0 or upper <= 0.0:
        raise ConfigInvalid("step_m3_s", "flow step and maximum must be > 0")

    params = replace(params, smart_control=False)
    n = int(round(upper / step))

    def flow_at(k: int) -> float:
        return round(k * step, 10)

    worst, steps = _evaluate(params, flow_at(n))
    if worst > 0.0:
        message = (
            f"Even {flow_at(n):.1f} m3/s exceeds the margin by {worst:.2f} cm; "
            "no minimum flow within the search range"
        )
        logger.warning(message)
        return MinimumFlowResult(False, None, worst, message, steps)

    best_k, best_worst, best_steps = n, worst, steps
    worst, steps = _evaluate(params, 0.0)
    if worst <= 0.0:
        best_k, best_worst, best_steps = 0, worst, steps
    else:
        lo, hi = 0, n
        while hi - lo > 1:
            mid = (lo + hi) // 2
            worst, steps = _evaluate(params, flow_at(mid))
            if worst <= 0.0:
                hi, best_worst, best_steps = mid, worst, steps
            else:
                lo = mid
        best_k = hi

    q_min = flow_at(best_k)
    logger.info("Minimum pump flow %.2f m3/s", q_min)
    return MinimumFlowResult(
        found=True,
        q_min=q_min,
        max_exceedance_cm=best_worst,
        message=f"Minimum pump flow is {q_min:.1f} m3/s",
        steps=best_steps,
    )
