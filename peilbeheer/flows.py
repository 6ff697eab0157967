"""Flow over pumps, weirs and check valves for one timestep."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Optional

from .constants import DEFAULT_TIME_STEP_MINUTES, GRAVITY_M_S2, SECONDS_PER_MINUTE
from .errors import ConfigInvalid
from .topology import Link, PolderConfig, PumpLink, Topology, ValveLink, WeirLink
from .units import clip_duty

SQRT_2G = math.sqrt(2.0 * GRAVITY_M_S2)


@dataclass
class ResolvedFlow:
    link: Link
    q: float
    saturated: bool = False

    @property
    def utilisation(self) -> float:
        capacity = self.link.capacity
        if not capacity:
            return 0.0
        return self.q / capacity


def weir_flow(crest_width_m: float, head_over_crest_m: float) -> float:
    """Broad-crested weir discharge w * sqrt(2g) * dh^1.5."""
    if head_over_crest_m <= 0.0:
        return 0.0
    return crest_width_m * SQRT_2G * head_over_crest_m ** 1.5


def resolve_link_flow(
    link: Link,
    h_up: float,
    h_down: float,
    duty: float = 0.0,
    upstream_polder: Optional[PolderConfig] = None,
    dt_minutes: float = DEFAULT_TIME_STEP_MINUTES,
) -> float:
    """Return the flow in m3/s from ``link.upstream`` to ``link.downstream``.

    Args:
        link: pump, weir or valve.
        h_up: upstream level at the start of the step (m).
        h_down: downstream level at the start of the step (m).
        duty: pump duty, clipped to [0, 1]; ignored for passive links.
        upstream_polder: needed for weirs to bound the flow by the water stored
            above the crest.
        dt_minutes: step length used for that bound.

    Returns:
        Non-negative flow; links never run in reverse.
    """
    if isinstance(link, PumpLink):
        return clip_duty(duty) * link.capacity_m3_s

    if isinstance(link, WeirLink):
        head = h_up - link.crest_level_m
        if head <= 0.0:
            return 0.0
        q = weir_flow(link.crest_width_m, head)
        if upstream_polder is not None and dt_minutes > 0.0:
            available = head * upstream_polder.storage_area_m2 / (dt_minutes * SECONDS_PER_MINUTE)
            q = min(q, available)
        if link.capacity_m3_s is not None:
            q = min(q, link.capacity_m3_s)
        return q

    if isinstance(link, ValveLink):
        return link.capacity_m3_s if h_up > h_down else 0.0

    raise ConfigInvalid("links", f"unsupported link type {type(link).__name__}")


def apply_outflow_caps(flows: dict[str, ResolvedFlow], topology: Topology) -> dict[str, ResolvedFlow]:
    """Scale outgoing flows of every polder whose total exceeds its ``max_outflow_m3_s``.

    All outgoing links of a capped polder are scaled by the same factor and
    marked saturated. ``flows`` is updated in place and returned.
    """
    for polder_id in topology.polder_ids():
        cap = topology.polder(polder_id).max_outflow_m3_s
        if cap is None:
            continue
        outgoing = [flows[link.id] for link in topology.outgoing(polder_id) if link.id in flows]
        total = sum(item.q for item in outgoing)
        if total <= cap:
            continue
        factor = cap / total
        for item in outgoing:
            item.q *= factor
            item.saturated = True
    return flows
