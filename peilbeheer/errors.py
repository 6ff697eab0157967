"""Exceptions raised by the kernel when inputs are rejected."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional


class PeilbeheerError(Exception):
    """Base class for all errors raised by this package."""


@dataclass
class ConfigInvalid(PeilbeheerError, ValueError):
    """A topology, polder or link configuration failed validation."""

    field: str
    message: str
    hint: Optional[str] = None

    def __str__(self) -> str:
        out = f"{self.field}: {self.message}"
        if self.hint:
            out += f" (hint: {self.hint})"
        return out


@dataclass
class InputShape(PeilbeheerError, ValueError):
    """A rain or price vector does not have the required length."""

    field: str
    expected: str
    actual: int

    def __str__(self) -> str:
        return f"{self.field}: expected {self.expected} values, got {self.actual}"


@dataclass
class ScenarioError(PeilbeheerError, RuntimeError):
    path: str
    message: str

    def __str__(self) -> str:
        return f"Scenario error at {self.path}: {self.message}"


@dataclass
class ExportError(PeilbeheerError, RuntimeError):
    message: str

    def __str__(self) -> str:
        return self.message
