"""Hourly electricity prices in EUR/kWh."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Iterable, Mapping, Optional, Sequence, Union

import numpy as np

from .constants import HOURS_PER_DAY
from .errors import ConfigInvalid, InputShape


@dataclass(frozen=True)
class PricePoint:
    hour: int
    price_eur_kwh: float


class PriceVector:
    """Contiguous hourly prices starting at hour 0."""

    def __init__(self, entries: Iterable[PricePoint]) -> None:
        points = sorted(entries, key=lambda p: p.hour)
        for expected, point in enumerate(points):
            if point.hour != expected:
                raise ConfigInvalid(
                    "prices.hour",
                    f"hours must be contiguous from 0, found {point.hour} at position {expected}",
                )
            if not math.isfinite(point.price_eur_kwh):
                raise ConfigInvalid(f"prices[{point.hour}]", "price must be finite")
        self._points = tuple(points)

    @classmethod
    def from_list(cls, prices: Sequence[float]) -> "PriceVector":
        return cls(PricePoint(hour=i, price_eur_kwh=float(p)) for i, p in enumerate(prices))

    @classmethod
    def coerce(
        cls, value: Union["PriceVector", Sequence[float], Sequence[Mapping[str, Any]], None]
    ) -> Optional["PriceVector"]:
        """Accept a vector, a list of floats or a list of ``{hour, price}`` entries."""
        if value is None or isinstance(value, PriceVector):
            return value
        items = list(value)
        if items and isinstance(items[0], Mapping):
            return cls(PricePoint(hour=int(e["hour"]), price_eur_kwh=float(e["price"])) for e in items)
        return cls.from_list(items)

    @property
    def prices(self) -> list[float]:
        return [p.price_eur_kwh for p in self._points]

    @property
    def days(self) -> float:
        return len(self) / HOURS_PER_DAY

    def as_array(self) -> np.ndarray:
        return np.asarray(self.prices, dtype=float)

    def price_at(self, hour: int) -> Optional[float]:
        if 0 <= hour < len(self._points):
            return self._points[hour].price_eur_kwh
        return None

    def require_whole_days(self) -> None:
        n = len(self)
        if n == 0 or n % HOURS_PER_DAY != 0:
            raise InputShape("prices", f"a positive multiple of {HOURS_PER_DAY}", n)

    def to_list(self) -> list[dict[str, float]]:
        return [{"hour": p.hour, "price": p.price_eur_kwh} for p in self._points]

    def __len__(self) -> int:
        return len(self._points)

    def __getitem__(self, hour: int) -> float:
        return self._points[hour].price_eur_kwh

    def __iter__(self):
        return iter(self.prices)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, PriceVector):
            return NotImplemented
        return self._points == other._points

    def __repr__(self) -> str:
        return f"PriceVector(hours={len(self)})"
