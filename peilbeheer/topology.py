"""Polder and link configuration plus the validated network topology."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, Mapping, Optional, Union

from .constants import (
    DEFAULT_PUMP_EFFICIENCY,
    DEFAULT_STORAGE_FRACTION,
    GRAVITY_M_S2,
    WATER_DENSITY_KG_M3,
)
from .errors import ConfigInvalid

logger = logging.getLogger(__name__)


class LinkKind(str, Enum):
    pump = "pump"
    weir = "weir"
    valve = "valve"


def _require_positive(field_name: str, value: float) -> None:
    if not (value > 0.0) or not math.isfinite(value):
        raise ConfigInvalid(field_name, f"must be > 0, got {value}")


def _require_non_negative(field_name: str, value: float) -> None:
    if not (value >= 0.0) or not math.isfinite(value):
        raise ConfigInvalid(field_name, f"must be >= 0, got {value}")


@dataclass(frozen=True)
class PolderConfig:
    """Static description of one peilgebied.

    ``margin_m`` is the symmetric tolerance around ``target_level_m``;
    ``max_outflow_m3_s`` caps the sum of all outgoing link flows (``None`` means
    uncapped).
    """

    id: str
    area_m2: float
    target_level_m: float
    margin_m: float = 0.20
    ground_level_m: float = 0.0
    max_outflow_m3_s: Optional[float] = None
    evaporation_mm_h: float = 0.0
    infiltration_mm_h: float = 0.0
    storage_fraction: float = DEFAULT_STORAGE_FRACTION
    name: Optional[str] = None

    def __post_init__(self) -> None:
        if not self.id:
            raise ConfigInvalid("polder.id", "must be a non-empty string")
        prefix = f"polders[{self.id}]"
        _require_positive(f"{prefix}.area_m2", self.area_m2)
        _require_non_negative(f"{prefix}.margin_m", self.margin_m)
        _require_non_negative(f"{prefix}.evaporation_mm_h", self.evaporation_mm_h)
        _require_non_negative(f"{prefix}.infiltration_mm_h", self.infiltration_mm_h)
        if self.max_outflow_m3_s is not None:
            _require_non_negative(f"{prefix}.max_outflow_m3_s", self.max_outflow_m3_s)
        if not (0.0 < self.storage_fraction <= 1.0):
            raise ConfigInvalid(
                f"{prefix}.storage_fraction",
                f"must be in (0, 1], got {self.storage_fraction}",
            )

    @property
    def min_level_m(self) -> float:
        return self.target_level_m - self.margin_m

    @property
    def max_level_m(self) -> float:
        return self.target_level_m + self.margin_m

    @property
    def storage_area_m2(self) -> float:
        return self.storage_fraction * self.area_m2

    def is_level_valid(self, level_m: float) -> bool:
        return self.min_level_m <= level_m <= self.max_level_m


@dataclass(frozen=True)
class PumpLink:
    """Gemaal: actively controlled, flow = duty * capacity."""

    id: str
    upstream: str
    downstream: str
    capacity_m3_s: float
    head_m: float
    efficiency: float = DEFAULT_PUMP_EFFICIENCY
    kind: LinkKind = field(default=LinkKind.pump, init=False)

    def __post_init__(self) -> None:
        _require_positive(f"links[{self.id}].capacity_m3_s", self.capacity_m3_s)
        _require_positive(f"links[{self.id}].head_m", self.head_m)
        if not (0.0 < self.efficiency <= 1.0):
            raise ConfigInvalid(f"links[{self.id}].efficiency", f"must be in (0, 1], got {self.efficiency}")

    @property
    def capacity(self) -> Optional[float]:
        return self.capacity_m3_s

    def power_kw(self, flow_m3_s: float) -> float:
        return pump_power_kw(flow_m3_s, self.head_m, self.efficiency)


@dataclass(frozen=True)
class WeirLink:
    """Overstort: passive broad-crested weir, flows once upstream exceeds the crest."""

    id: str
    upstream: str
    downstream: str
    crest_level_m: float
    crest_width_m: float
    capacity_m3_s: Optional[float] = None
    kind: LinkKind = field(default=LinkKind.weir, init=False)

    def __post_init__(self) -> None:
        _require_positive(f"links[{self.id}].crest_width_m", self.crest_width_m)
        if self.capacity_m3_s is not None:
            _require_positive(f"links[{self.id}].capacity_m3_s", self.capacity_m3_s)

    @property
    def capacity(self) -> Optional[float]:
        return self.capacity_m3_s


@dataclass(frozen=True)
class ValveLink:
    """Keerklep: one-way, full capacity while upstream stands higher than downstream."""

    id: str
    upstream: str
    downstream: str
    capacity_m3_s: float
    kind: LinkKind = field(default=LinkKind.valve, init=False)

    def __post_init__(self) -> None:
        _require_positive(f"links[{self.id}].capacity_m3_s", self.capacity_m3_s)

    @property
    def capacity(self) -> Optional[float]:
        return self.capacity_m3_s


Link = Union[PumpLink, WeirLink, ValveLink]


def pump_power_kw(flow_m3_s: float, head_m: float, efficiency: float = DEFAULT_PUMP_EFFICIENCY) -> float:
    """Electric power P = rho * g * Q * H / eta, in kW."""
    eff = efficiency if efficiency > 0.0 else DEFAULT_PUMP_EFFICIENCY
    return WATER_DENSITY_KG_M3 * GRAVITY_M_S2 * flow_m3_s * head_m / eff / 1000.0


class Topology:
    """Polders and the links between them, keyed by id.

    Links reference polders by id only. The topology is validated on
    construction and every time a polder or link is added, so a ``Topology``
    instance is always consistent.
    """

    def __init__(
        self,
        polders: Iterable[PolderConfig] = (),
        links: Iterable[Link] = (),
    ) -> None:
        self._polders: dict[str, PolderConfig] = {}
        self._links: dict[str, Link] = {}
        for polder in polders:
            self.add_polder(polder)
        for link in links:
            self.add_link(link)

    @property
    def polders(self) -> Mapping[str, PolderConfig]:
        return dict(self._polders)

    @property
    def links(self) -> Mapping[str, Link]:
        return dict(self._links)

    def polder(self, polder_id: str) -> PolderConfig:
        try:
            return self._polders[polder_id]
        except KeyError:
            raise ConfigInvalid("polder_id", f"unknown polder '{polder_id}'") from None

    def polder_ids(self) -> list[str]:
        return sorted(self._polders)

    def link_ids(self) -> list[str]:
        return sorted(self._links)

    def add_polder(self, polder: PolderConfig) -> None:
        if polder.id in self._polders:
            raise ConfigInvalid(f"polders[{polder.id}]", "duplicate polder id")
        self._polders[polder.id] = polder

    def add_link(self, link: Link) -> None:
        if not isinstance(link, (PumpLink, WeirLink, ValveLink)):
            raise ConfigInvalid("links", f"unsupported link type {type(link).__name__}")
        prefix = f"links[{link.id}]"
        if link.id in self._links:
            raise ConfigInvalid(prefix, "duplicate link id")
        if link.upstream == link.downstream:
            raise ConfigInvalid(f"{prefix}.downstream", f"self-loop on polder '{link.upstream}'")
        if link.upstream not in self._polders:
            raise ConfigInvalid(f"{prefix}.upstream", f"unknown polder '{link.upstream}'")
        if link.downstream not in self._polders:
            raise ConfigInvalid(f"{prefix}.downstream", f"unknown polder '{link.downstream}'")
        if isinstance(link, PumpLink):
            for other in self._links.values():
                if (
                    isinstance(other, PumpLink)
                    and other.upstream == link.upstream
                    and other.downstream == link.downstream
                ):
                    raise ConfigInvalid(
                        prefix,
                        f"pump '{other.id}' already connects {link.upstream} -> {link.downstream}",
                        hint="combine both stations into one pump with the summed capacity",
                    )
        self._links[link.id] = link

    def pumps(self) -> list[PumpLink]:
        return [self._links[i] for i in self.link_ids() if isinstance(self._links[i], PumpLink)]

    def outgoing(self, polder_id: str) -> list[Link]:
        return [self._links[i] for i in self.link_ids() if self._links[i].upstream == polder_id]

    def incoming(self, polder_id: str) -> list[Link]:
        return [self._links[i] for i in self.link_ids() if self._links[i].downstream == polder_id]

    def is_connected(self) -> bool:
        """True if every polder is reachable from every other one, ignoring direction."""
        if not self._polders:
            return True
        neighbours: dict[str, set] = {pid: set() for pid in self._polders}
        for link in self._links.values():
            neighbours[link.upstream].add(link.downstream)
            neighbours[link.downstream].add(link.upstream)
        start = self.polder_ids()[0]
        seen = {start}
        stack = [start]
        while stack:
            current = stack.pop()
            for nxt in neighbours[current]:
                if nxt not in seen:
                    seen.add(nxt)
                    stack.append(nxt)
        return len(seen) == len(self._polders)

    def validate(self, require_connected: bool = False) -> None:
        if not self._polders:
            raise ConfigInvalid("polders", "topology needs at least one polder")
        if require_connected and not self.is_connected():
            raise ConfigInvalid("links", "network is not connected")

    def __len__(self) -> int:
        return len(self._polders)

    def __repr__(self) -> str:
        return f"Topology(polders={self.polder_ids()}, links={self.link_ids()})"
