"""Scenario files: a topology, its rain, prices and run settings, saved as JSON."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Optional, Union

from pydantic import BaseModel, Field, ValidationError

from .constants import DEFAULT_PUMP_EFFICIENCY, DEFAULT_STORAGE_FRACTION, DEFAULT_TIME_STEP_MINUTES
from .errors import ConfigInvalid, InputShape, ScenarioError
from .network import NetworkResult, run_network_simulation
from .prices import PriceVector
from .strategies import strategy_from_spec
from .topology import Link, LinkKind, PolderConfig, PumpLink, Topology, ValveLink, WeirLink

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RainScenarioKind(str, Enum):
    historical = "historical"
    design = "design"
    synthetic = "synthetic"
    constant = "constant"


class PolderModel(BaseModel):
    id: str = Field(min_length=1)
    name: Optional[str] = None
    area_m2: float = Field(gt=0)
    target_level_m: float
    margin_m: float = Field(default=0.20, ge=0)
    ground_level_m: float = 0.0
    max_outflow_m3_s: Optional[float] = Field(default=None, ge=0)
    evaporation_mm_h: float = Field(default=0.0, ge=0)
    infiltration_mm_h: float = Field(default=0.0, ge=0)
    storage_fraction: float = Field(default=DEFAULT_STORAGE_FRACTION, gt=0, le=1)

    def to_config(self) -> PolderConfig:
        return PolderConfig(**self.model_dump())

    @classmethod
    def from_config(cls, polder: PolderConfig) -> "PolderModel":
        return cls(
            id=polder.id,
            name=polder.name,
            area_m2=polder.area_m2,
            target_level_m=polder.target_level_m,
            margin_m=polder.margin_m,
            ground_level_m=polder.ground_level_m,
            max_outflow_m3_s=polder.max_outflow_m3_s,
            evaporation_mm_h=polder.evaporation_mm_h,
            infiltration_mm_h=polder.infiltration_mm_h,
            storage_fraction=polder.storage_fraction,
        )


class LinkModel(BaseModel):
    id: str = Field(min_length=1)
    kind: LinkKind
    upstream: str
    downstream: str
    capacity_m3_s: Optional[float] = Field(default=None, gt=0)
    head_m: Optional[float] = Field(default=None, gt=0)
    efficiency: float = Field(default=DEFAULT_PUMP_EFFICIENCY, gt=0, le=1)
    crest_level_m: Optional[float] = None
    crest_width_m: Optional[float] = Field(default=None, gt=0)

    def _require(self, name: str) -> float:
        value = getattr(self, name)
        if value is None:
            raise ConfigInvalid(f"links[{self.id}].{name}", f"required for a {self.kind.value} link")
        return value

    def to_link(self) -> Link:
        if self.kind == LinkKind.pump:
            return PumpLink(
                id=self.id,
                upstream=self.upstream,
                downstream=self.downstream,
                capacity_m3_s=self._require("capacity_m3_s"),
                head_m=self._require("head_m"),
                efficiency=self.efficiency,
            )
        if self.kind == LinkKind.weir:
            return WeirLink(
                id=self.id,
                upstream=self.upstream,
                downstream=self.downstream,
                crest_level_m=self._require("crest_level_m"),
                crest_width_m=self._require("crest_width_m"),
                capacity_m3_s=self.capacity_m3_s,
            )
        return ValveLink(
            id=self.id,
            upstream=self.upstream,
            downstream=self.downstream,
            capacity_m3_s=self._require("capacity_m3_s"),
        )

    @classmethod
    def from_link(cls, link: Link) -> "LinkModel":
        base = {"id": link.id, "kind": link.kind, "upstream": link.upstream, "downstream": link.downstream}
        if isinstance(link, PumpLink):
            return cls(**base, capacity_m3_s=link.capacity_m3_s, head_m=link.head_m, efficiency=link.efficiency)
        if isinstance(link, WeirLink):
            return cls(
                **base,
                crest_level_m=link.crest_level_m,
                crest_width_m=link.crest_width_m,
                capacity_m3_s=link.capacity_m3_s,
            )
        return cls(**base, capacity_m3_s=link.capacity_m3_s)


class RainScenarioModel(BaseModel):
    kind: RainScenarioKind = RainScenarioKind.synthetic
    rain_mm_h: dict[str, list[float]] = Field(default_factory=dict)
    description: Optional[str] = None


class SimulationSettingsModel(BaseModel):
    duration_hours: int = Field(default=24, gt=0)
    timestep_minutes: float = Field(default=DEFAULT_TIME_STEP_MINUTES, gt=0, le=60)
    strategy: dict[str, Any] = Field(default_factory=lambda: {"type": "naive"})


class ScenarioMetadata(BaseModel):
    created: datetime = Field(default_factory=_utcnow)
    modified: datetime = Field(default_factory=_utcnow)
    author: Optional[str] = None
    version: int = Field(default=1, ge=1)
    tags: list[str] = Field(default_factory=list)


class ScenarioModel(BaseModel):
    """On-disk form of a scenario."""

    id: str = Field(min_length=1)
    name: str
    description: str = ""
    polders: list[PolderModel]
    links: list[LinkModel] = Field(default_factory=list)
    rain: RainScenarioModel = Field(default_factory=RainScenarioModel)
    settings: SimulationSettingsModel = Field(default_factory=SimulationSettingsModel)
    prices: Optional[list[float]] = None
    initial_levels: Optional[dict[str, float]] = None
    metadata: ScenarioMetadata = Field(default_factory=ScenarioMetadata)


@dataclass
class ScenarioResult:
    scenario: "Scenario"
    result: NetworkResult
    executed_at: datetime = field(default_factory=_utcnow)


class Scenario:
    """A runnable scenario: validated topology plus the inputs of one network run."""

    def __init__(self, model: ScenarioModel) -> None:
        self.model = model
        self.topology = Topology(
            polders=[p.to_config() for p in model.polders],
            links=[link.to_link() for link in model.links],
        )

    @property
    def id(self) -> str:
        return self.model.id

    @property
    def name(self) -> str:
        return self.model.name

    @property
    def rain(self) -> RainScenarioModel:
        return self.model.rain

    @property
    def settings(self) -> SimulationSettingsModel:
        return self.model.settings

    @property
    def metadata(self) -> ScenarioMetadata:
        return self.model.metadata

    @property
    def prices(self) -> Optional[PriceVector]:
        return PriceVector.coerce(self.model.prices)

    @property
    def initial_levels(self) -> dict[str, float]:
        return dict(self.model.initial_levels or {})

    def validate(self) -> None:
        """Raise ``ConfigInvalid`` or ``InputShape`` if the scenario cannot run."""
        self.topology.validate(require_connected=len(self.topology) > 1)
        known = set(self.topology.polder_ids())
        for polder_id, values in self.rain.rain_mm_h.items():
            if polder_id not in known:
                raise ConfigInvalid(f"rain.rain_mm_h[{polder_id}]", "unknown polder")
            if len(values) > self.settings.duration_hours:
                raise InputShape(
                    f"rain.rain_mm_h[{polder_id}]",
                    f"at most {self.settings.duration_hours}",
                    len(values),
                )
        for polder_id in self.initial_levels:
            if polder_id not in known:
                raise ConfigInvalid(f"initial_levels[{polder_id}]", "unknown polder")
        strategy_from_spec(self.settings.strategy)

    def run(self, settings=None) -> ScenarioResult:
        self.validate()
        strategy = strategy_from_spec(self.settings.strategy, settings)
        logger.info("Running scenario %s (%s)", self.id, self.name)
        result = run_network_simulation(
            self.topology,
            self.rain.rain_mm_h,
            strategy,
            duration_hours=self.settings.duration_hours,
            initial_levels=self.initial_levels,
            prices=self.prices,
            dt_minutes=self.settings.timestep_minutes,
        )
        return ScenarioResult(scenario=self, result=result)

    def add_tag(self, tag: str) -> None:
        if tag not in self.metadata.tags:
            self.metadata.tags.append(tag)
            self.metadata.modified = _utcnow()

    def copy_with_id(self, new_id: str) -> "Scenario":
        now = _utcnow()
        metadata = self.metadata.model_copy(update={"created": now, "modified": now, "version": 1}, deep=True)
        return Scenario(self.model.model_copy(update={"id": new_id, "metadata": metadata}, deep=True))

    def to_json(self, pretty: bool = True) -> str:
        return self.model.model_dump_json(indent=2 if pretty else None)

    @classmethod
    def from_json(cls, payload: str, source: str = "<string>") -> "Scenario":
        try:
            model = ScenarioModel.model_validate_json(payload)
        except ValidationError as exc:
            raise ScenarioError(source, f"invalid scenario: {exc}") from exc
        return cls(model)

    def save(self, path: Union[str, Path]) -> Path:
        path = Path(path)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(self.to_json(), encoding="utf-8")
        except OSError as exc:
            raise ScenarioError(str(path), f"cannot write scenario: {exc}") from exc
        logger.info("Saved scenario %s to %s", self.id, path)
        return path

    @classmethod
    def load(cls, path: Union[str, Path]) -> "Scenario":
        path = Path(path)
        try:
            payload = path.read_text(encoding="utf-8")
        except OSError as exc:
            raise ScenarioError(str(path), f"cannot read scenario: {exc}") from exc
        return cls.from_json(payload, source=str(path))

    def __repr__(self) -> str:
        return f"Scenario(id={self.id!r}, polders={self.topology.polder_ids()})"


def constant_rain_scenario(polder_ids: list[str], rain_mm_h: float, hours: int) -> RainScenarioModel:
    return RainScenarioModel(
        kind=RainScenarioKind.constant,
        rain_mm_h={pid: [float(rain_mm_h)] * hours for pid in polder_ids},
        description=f"{rain_mm_h} mm/h for {hours} h",
    )


class ScenarioBuilder:
    """Fluent construction of a :class:`Scenario`; ``build()`` validates the result."""

    def __init__(self, scenario_id: str, name: Optional[str] = None) -> None:
        self._id = scenario_id
        self._name = name or scenario_id
        self._description = ""
        self._polders: list[PolderModel] = []
        self._links: list[LinkModel] = []
        self._rain = RainScenarioModel()
        self._settings = SimulationSettingsModel()
        self._prices: Optional[list[float]] = None
        self._initial_levels: dict[str, float] = {}
        self._metadata = ScenarioMetadata()

    def description(self, text: str) -> "ScenarioBuilder":
        self._description = text
        return self

    def polder(self, polder: PolderConfig) -> "ScenarioBuilder":
        self._polders.append(PolderModel.from_config(polder))
        return self

    def link(self, link: Link) -> "ScenarioBuilder":
        self._links.append(LinkModel.from_link(link))
        return self

    def rain(self, polder_id: str, values: list[float]) -> "ScenarioBuilder":
        self._rain.rain_mm_h[polder_id] = [float(v) for v in values]
        return self

    def rain_scenario(self, rain: RainScenarioModel) -> "ScenarioBuilder":
        self._rain = rain
        return self

    def duration(self, hours: int) -> "ScenarioBuilder":
        self._settings.duration_hours = hours
        return self

    def timestep(self, minutes: float) -> "ScenarioBuilder":
        self._settings.timestep_minutes = minutes
        return self

    def strategy(self, spec: dict[str, Any]) -> "ScenarioBuilder":
        self._settings.strategy = dict(spec)
        return self

    def prices(self, prices: list[float]) -> "ScenarioBuilder":
        self._prices = [float(p) for p in prices]
        return self

    def initial_level(self, polder_id: str, level_m: float) -> "ScenarioBuilder":
        self._initial_levels[polder_id] = level_m
        return self

    def author(self, author: str) -> "ScenarioBuilder":
        self._metadata.author = author
        return self

    def tag(self, tag: str) -> "ScenarioBuilder":
        self._metadata.tags.append(tag)
        return self

    def build(self) -> Scenario:
        model = ScenarioModel(
            id=self._id,
            name=self._name,
            description=self._description,
            polders=[p.model_copy() for p in self._polders],
            links=[link.model_copy() for link in self._links],
            rain=self._rain.model_copy(deep=True),
            settings=self._settings.model_copy(deep=True),
            prices=list(self._prices) if self._prices is not None else None,
            initial_levels=dict(self._initial_levels) or None,
            metadata=self._metadata.model_copy(deep=True),
        )
        scenario = Scenario(model)
        scenario.validate()
        return scenario
