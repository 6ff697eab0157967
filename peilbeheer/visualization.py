"""Level, rain and pump charts for network runs and optimised schedules.

Charts are written with matplotlib; the file suffix (``.png`` or ``.svg``)
selects the format.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

import matplotlib.pyplot as plt

from .constants import MINUTES_PER_HOUR
from .errors import ConfigInvalid, ExportError
from .network import NetworkResult
from .optimizer import OptimisationResult
from .topology import LinkKind, Topology

logger = logging.getLogger(__name__)

ChartSource = Union[NetworkResult, OptimisationResult]

SUPPORTED_SUFFIXES = (".png", ".svg")


@dataclass(frozen=True)
class ChartOptions:
    width_px: int = 1280
    height_px: int = 720
    dpi: int = 100
    title: Optional[str] = None
    show_legend: bool = True
    show_grid: bool = True


def _check_path(path: Union[str, Path]) -> Path:
    path = Path(path)
    if path.suffix.lower() not in SUPPORTED_SUFFIXES:
        raise ConfigInvalid("path", f"unsupported chart format '{path.suffix}'", hint="use .png or .svg")
    return path


def _new_axes(options: ChartOptions):
    return plt.subplots(figsize=(options.width_px / options.dpi, options.height_px / options.dpi))


def _finish(fig, ax, path: Path, options: ChartOptions, title: str, ylabel: str, xlabel: str = "Time (h)") -> Path:
    ax.set_title(options.title or title)
    ax.set_xlabel(xlabel)
    ax.set_ylabel(ylabel)
    if options.show_grid:
        ax.grid(True, alpha=0.3)
    if options.show_legend and ax.get_legend_handles_labels()[0]:
        ax.legend()
    fig.tight_layout()
    path.parent.mkdir(parents=True, exist_ok=True)
    fig.savefig(path, dpi=options.dpi)
    plt.close(fig)
    logger.info("Wrote chart %s", path)
    return path


def _require_data(result: ChartSource) -> None:
    empty = not result.steps if isinstance(result, NetworkResult) else not result.hourly
    if empty:
        raise ExportError("Nothing to plot: the result has no data")


def plot_levels(
    result: ChartSource,
    path: Union[str, Path],
    *,
    topology: Optional[Topology] = None,
    target_level_m: Optional[float] = None,
    margin_m: Optional[float] = None,
    options: Optional[ChartOptions] = None,
) -> Path:
    """Water level per polder (network) or optimised vs naive level (schedule).

    The tolerance band is drawn from ``topology`` for a network run, or from
    ``target_level_m`` and ``margin_m`` for a schedule.
    """
    path = _check_path(path)
    options = options or ChartOptions()
    _require_data(result)
    fig, ax = _new_axes(options)

    if isinstance(result, NetworkResult):
        for polder_id in result.polder_ids:
            steps = result.steps_for(polder_id)
            line = ax.plot([s.t_min / MINUTES_PER_HOUR for s in steps], [s.h for s in steps], label=polder_id)[0]
            if topology is not None and polder_id in topology.polders:
                polder = topology.polder(polder_id)
                ax.axhspan(polder.min_level_m, polder.max_level_m, color=line.get_color(), alpha=0.1)
    else:
        for label, replay in (("optimised", result.replay_opt), ("naive", result.replay_naive)):
            ax.plot([s.t_min / MINUTES_PER_HOUR for s in replay], [s.h for s in replay], label=label)
        if target_level_m is not None:
            ax.axhline(target_level_m, ls="--", color="black", label="target")
            if margin_m is not None:
                ax.axhspan(target_level_m - margin_m, target_level_m + margin_m, color="green", alpha=0.1)

    return _finish(fig, ax, path, options, "Water level", "Level (m)")


def plot_rain(result: ChartSource, path: Union[str, Path], *, options: Optional[ChartOptions] = None) -> Path:
    """Hourly rain intensity as bars, one series per polder for a network run."""
    path = _check_path(path)
    options = options or ChartOptions()
    _require_data(result)
    fig, ax = _new_axes(options)

    if isinstance(result, NetworkResult):
        polder_ids = result.polder_ids
        width = 0.8 / max(len(polder_ids), 1)
        for i, polder_id in enumerate(polder_ids):
            hours = [h.hour + i * width for h in result.hourly]
            rain = [h.polders[polder_id].rain_mm_h for h in result.hourly]
            ax.bar(hours, rain, width=width, align="edge", label=polder_id)
    else:
        ax.bar([h.hour for h in result.hourly], [h.rain for h in result.hourly], width=0.8, align="edge")

    return _finish(fig, ax, path, options, "Rain intensity", "Rain (mm/h)")


def plot_pumps(
    result: ChartSource,
    path: Union[str, Path],
    *,
    topology: Optional[Topology] = None,
    options: Optional[ChartOptions] = None,
) -> Path:
    """Pump duty over time.

    For a network run each pump's utilisation is drawn as a step line; pass
    ``topology`` to restrict the chart to pump links. For a schedule the
    optimised and naive hourly duties are drawn with the price on a second axis.
    """
    path = _check_path(path)
    options = options or ChartOptions()
    _require_data(result)
    fig, ax = _new_axes(options)

    if isinstance(result, NetworkResult):
        if topology is not None:
            link_ids = [p.id for p in topology.pumps()]
        else:
            link_ids = sorted({f.link_id for f in result.link_flows if f.kind == LinkKind.pump.value})
        for link_id in link_ids:
            flows = result.flows_for(link_id)
            times = [f.t_min / MINUTES_PER_HOUR for f in flows]
            ax.step(times, [f.utilisation for f in flows], where="post", label=link_id)
    else:
        hours = [h.hour for h in result.hourly]
        ax.step(hours, [h.u_opt for h in result.hourly], where="post", label="optimised")
        ax.step(hours, [h.u_naive for h in result.hourly], where="post", label="naive")
        price_ax = ax.twinx()
        price_ax.step(hours, [h.price for h in result.hourly], where="post", color="grey", ls=":")
        price_ax.set_ylabel("Price (EUR/kWh)")

    ax.set_ylim(-0.05, 1.05)
    return _finish(fig, ax, path, options, "Pump duty", "Duty (-)")


def plot_all(
    result: ChartSource,
    directory: Union[str, Path],
    *,
    topology: Optional[Topology] = None,
    fmt: str = "png",
    options: Optional[ChartOptions] = None,
) -> dict[str, str]:
    """Write the level, rain and pump charts into ``directory``; returns name -> path."""
    directory = Path(directory)
    written = {
        "levels": plot_levels(result, directory / f"levels.{fmt}", topology=topology, options=options),
        "rain": plot_rain(result, directory / f"rain.{fmt}", options=options),
        "pumps": plot_pumps(result, directory / f"pumps.{fmt}", topology=topology, options=options),
    }
    return {name: str(p) for name, p in written.items()}
