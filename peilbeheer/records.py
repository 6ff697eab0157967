"""Per-minute output records shared by the single-polder and network simulators."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, Optional


def to_jsonable(obj: Any) -> Any:
    """Recursively convert enums and tuples so ``json.dumps`` accepts the value."""
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, dict):
        return {str(k): to_jsonable(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [to_jsonable(v) for v in obj]
    return obj


@dataclass(frozen=True)
class StepRecord:
    """State of one polder at the start of minute ``t_min`` and the balance applied to it.

    ``h`` is the level before the update; ``q_in``, ``q_out``, ``loss`` and ``net`` are
    flows in m3/s over the minute that follows.
    """

    t_min: float
    h: float
    q_in: float
    q_out: float
    loss: float
    net: float
    raining: bool
    pump_on: bool
    polder_id: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return to_jsonable(asdict(self))


@dataclass(frozen=True)
class LinkFlow:
    """Resolved flow over one link during minute ``t_min``."""

    t_min: float
    link_id: str
    kind: str
    q: float
    utilisation: float
    saturation: bool

    def to_dict(self) -> dict[str, Any]:
        return to_jsonable(asdict(self))
