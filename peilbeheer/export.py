"""Tabular and JSON export of simulation and optimisation results."""

from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional, Sequence, Union

import pandas as pd

from .config import get_settings
from .errors import ExportError
from .network import NetworkResult
from .optimizer import OptimisationResult
from .records import LinkFlow, StepRecord, to_jsonable

logger = logging.getLogger(__name__)

STEP_COLUMNS = ["t_min", "polder_id", "h", "q_in", "q_out", "loss", "net", "raining", "pump_on"]
LINK_COLUMNS = ["t_min", "link_id", "kind", "q", "utilisation", "saturation"]

StepSource = Union[NetworkResult, Sequence[StepRecord]]


@dataclass(frozen=True)
class ExportOptions:
    header: bool = True
    decimals: Optional[int] = None
    separator: str = ","
    include_metadata: bool = False

    def resolved_decimals(self) -> int:
        if self.decimals is not None:
            return self.decimals
        return get_settings().export_decimals


def _steps(result: StepSource) -> list[StepRecord]:
    steps = result.steps if isinstance(result, NetworkResult) else list(result)
    if not steps:
        raise ExportError("Nothing to export: the result has no timesteps")
    return steps


def steps_to_frame(result: StepSource) -> pd.DataFrame:
    return pd.DataFrame([asdict(s) for s in _steps(result)], columns=STEP_COLUMNS)


def link_flows_to_frame(result: Union[NetworkResult, Sequence[LinkFlow]]) -> pd.DataFrame:
    flows = result.link_flows if isinstance(result, NetworkResult) else list(result)
    if not flows:
        raise ExportError("Nothing to export: the result has no link flows")
    return pd.DataFrame([asdict(f) for f in flows], columns=LINK_COLUMNS)


def hourly_to_frame(result: Union[NetworkResult, OptimisationResult]) -> pd.DataFrame:
    """One row per hour for an optimisation, one row per hour and polder for a network run."""
    if isinstance(result, OptimisationResult):
        rows = [asdict(h) for h in result.hourly]
    else:
        rows = [
            {
                **asdict(polder),
                "energy_kwh": hour.energy_kwh,
                "cost_eur": hour.cost_eur,
                "price_eur_kwh": hour.price_eur_kwh,
            }
            for hour in result.hourly
            for polder in hour.polders.values()
        ]
    if not rows:
        raise ExportError("Nothing to export: the result has no hourly rows")
    return pd.DataFrame(rows)


def _write(frame: pd.DataFrame, path: Union[str, Path], options: ExportOptions, title: str) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    frame = frame.round(options.resolved_decimals())
    with path.open("w", encoding="utf-8", newline="") as fh:
        if options.include_metadata:
            fh.write(f"# {title}\n")
            fh.write(f"# exported_at: {datetime.now(timezone.utc).isoformat()}\n")
            fh.write(f"# rows: {len(frame)}\n")
        frame.to_csv(fh, sep=options.separator, header=options.header, index=False)
    logger.info("Exported %d rows to %s", len(frame), path)
    return path


def export_csv(
    result: StepSource,
    path: Union[str, Path],
    options: Optional[ExportOptions] = None,
) -> Path:
    return _write(steps_to_frame(result), path, options or ExportOptions(), "polder timeseries")


def export_link_flows_csv(
    result: Union[NetworkResult, Sequence[LinkFlow]],
    path: Union[str, Path],
    options: Optional[ExportOptions] = None,
) -> Path:
    return _write(link_flows_to_frame(result), path, options or ExportOptions(), "link flows")


def export_per_polder(
    result: StepSource,
    directory: Union[str, Path],
    options: Optional[ExportOptions] = None,
) -> dict[str, str]:
    """Write one ``<polder_id>.csv`` per polder into ``directory``; returns the file names."""
    frame = steps_to_frame(result)
    directory = Path(directory)
    files: dict[str, str] = {}
    for polder_id, group in frame.groupby(frame["polder_id"].fillna("polder"), sort=True):
        filename = f"{polder_id}.csv"
        _write(group.drop(columns=["polder_id"]), directory / filename, options or ExportOptions(), str(polder_id))
        files[str(polder_id)] = filename
    return files


def export_json(
    result: Union[NetworkResult, OptimisationResult, Sequence[StepRecord]],
    pretty: bool = True,
    options: Optional[ExportOptions] = None,
) -> str:
    if isinstance(result, (NetworkResult, OptimisationResult)):
        if isinstance(result, NetworkResult):
            _steps(result)
        payload: Any = result.to_dict()
    else:
        payload = {"steps": [s.to_dict() for s in _steps(result)]}
    if options is not None and options.include_metadata:
        payload = {
            "metadata": {"exported_at": datetime.now(timezone.utc).isoformat()},
            **payload,
        }
    return json.dumps(to_jsonable(payload), indent=2 if pretty else None)
