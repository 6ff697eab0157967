from pathlib import Path

import matplotlib

matplotlib.use("Agg")

import pytest

from peilbeheer.errors import ConfigInvalid, ExportError
from peilbeheer.network import NetworkResult, run_network_simulation
from peilbeheer.optimizer import OptimisationParams, optimize_pump_schedule
from peilbeheer.strategies import NaiveStrategy
from peilbeheer.visualization import ChartOptions, plot_all, plot_levels, plot_pumps, plot_rain


def test_network_charts_are_written(tmp_path, cascade, rain_24h):
    result = run_network_simulation(cascade, {"N": rain_24h[:6]}, NaiveStrategy())

    written = plot_all(result, tmp_path / "charts", topology=cascade)

    assert set(written) == {"levels", "rain", "pumps"}
    for path in written.values():
        assert path.endswith(".png")
        assert Path(path).stat().st_size > 0


def test_svg_output_and_custom_options(tmp_path, cascade):
    result = run_network_simulation(cascade, {"N": [10.0, 0.0]}, NaiveStrategy())
    options = ChartOptions(width_px=640, height_px=480, title="Cascade", show_legend=False)

    path = plot_pumps(result, tmp_path / "pumps.svg", options=options)

    assert path.read_text(encoding="utf-8").lstrip().startswith("<?xml")


def test_schedule_charts(tmp_path, rain_24h, prices_24h):
    params = OptimisationParams(
        target_level_m=-0.5,
        max_flow_m3_s=0.5,
        area_m2=200_000.0,
        head_m=1.5,
        efficiency=0.7,
        margin_m=0.2,
        rain_mm_h=rain_24h,
        prices=prices_24h,
    )
    result = optimize_pump_schedule(params)

    levels = plot_levels(result, tmp_path / "levels.png", target_level_m=-0.5, margin_m=0.2)
    rain = plot_rain(result, tmp_path / "rain.png")
    pumps = plot_pumps(result, tmp_path / "pumps.png")

    assert all(p.stat().st_size > 0 for p in (levels, rain, pumps))


def test_chart_rejects_unknown_format(tmp_path, cascade):
    result = run_network_simulation(cascade, {}, NaiveStrategy(), duration_hours=1)
    with pytest.raises(ConfigInvalid):
        plot_levels(result, tmp_path / "levels.jpg")


def test_chart_rejects_empty_result(tmp_path):
    empty = NetworkResult(
        steps=[], link_flows=[], hourly=[], initial_levels={}, final_levels={}, pumps={}, duration_minutes=0
    )
    with pytest.raises(ExportError):
        plot_rain(empty, tmp_path / "rain.png")
