import json

import pandas as pd
import pytest

from peilbeheer.errors import ExportError
from peilbeheer.export import (
    ExportOptions,
    export_csv,
    export_json,
    export_link_flows_csv,
    export_per_polder,
    hourly_to_frame,
    link_flows_to_frame,
    steps_to_frame,
)
from peilbeheer.network import run_network_simulation
from peilbeheer.optimizer import OptimisationParams, optimize_pump_schedule
from peilbeheer.strategies import NaiveStrategy


@pytest.fixture
def network_result(cascade):
    return run_network_simulation(cascade, {"N": [10.0, 5.0]}, NaiveStrategy(), prices=[0.1] * 24)


def test_steps_frame_columns(network_result):
    frame = steps_to_frame(network_result)
    assert list(frame.columns) == ["t_min", "polder_id", "h", "q_in", "q_out", "loss", "net", "raining", "pump_on"]
    assert len(frame) == 3 * 120


def test_link_flow_frame(network_result):
    frame = link_flows_to_frame(network_result)
    assert set(frame["link_id"]) == {"p_nm", "p_ms"}
    assert set(frame["kind"]) == {"pump"}


def test_export_csv_with_rounding(tmp_path, network_result):
    path = export_csv(network_result, tmp_path / "out" / "steps.csv", ExportOptions(decimals=2))
    frame = pd.read_csv(path)
    assert len(frame) == 360
    assert (frame["h"] == frame["h"].round(2)).all()


def test_export_csv_metadata_and_separator(tmp_path, network_result):
    path = export_link_flows_csv(
        network_result, tmp_path / "flows.csv", ExportOptions(separator=";", include_metadata=True, decimals=3)
    )
    lines = path.read_text(encoding="utf-8").splitlines()
    assert lines[0].startswith("# ")
    header = next(line for line in lines if not line.startswith("#"))
    assert header == "t_min;link_id;kind;q;utilisation;saturation"


def test_export_without_header(tmp_path, network_result):
    path = export_csv(network_result, tmp_path / "steps.csv", ExportOptions(header=False, decimals=3))
    assert len(path.read_text(encoding="utf-8").splitlines()) == 360


def test_export_per_polder(tmp_path, network_result):
    files = export_per_polder(network_result, tmp_path, ExportOptions(decimals=3))
    assert files == {"M": "M.csv", "N": "N.csv", "S": "S.csv"}
    frame = pd.read_csv(tmp_path / "N.csv")
    assert "polder_id" not in frame.columns
    assert len(frame) == 120


def test_export_json(network_result):
    payload = json.loads(export_json(network_result, pretty=False))
    assert payload["duration_minutes"] == 120
    assert payload["steps"][0]["polder_id"] == "M"


def test_export_json_with_metadata(network_result):
    payload = json.loads(export_json(network_result, options=ExportOptions(include_metadata=True)))
    assert "exported_at" in payload["metadata"]


def test_hourly_frames(network_result, rain_24h, prices_24h):
    frame = hourly_to_frame(network_result)
    assert len(frame) == 2 * 3
    assert {"hour", "polder_id", "end_level_m", "energy_kwh", "cost_eur"} <= set(frame.columns)

    result = optimize_pump_schedule(
        OptimisationParams(
            target_level_m=-0.5,
            max_flow_m3_s=0.5,
            area_m2=200_000.0,
            head_m=1.5,
            rain_mm_h=rain_24h,
            prices=prices_24h,
        )
    )
    opt_frame = hourly_to_frame(result)
    assert len(opt_frame) == 24
    assert "u_opt" in opt_frame.columns


def test_empty_results_rejected(tmp_path):
    with pytest.raises(ExportError):
        export_csv([], tmp_path / "empty.csv")
    with pytest.raises(ExportError):
        export_json([])
    with pytest.raises(ExportError):
        link_flows_to_frame([])
