import json
import subprocess
import sys
from pathlib import Path

import matplotlib.pyplot as plt
import pytest

import plot_debug
import run_simulate
from galaxysim import load_galaxy


@pytest.fixture
def description(tmp_path, square_records):
    path = tmp_path / "galaxy.json"
    path.write_text(json.dumps({"systems": square_records}))
    return path


def test_run_simulate_writes_outputs_and_params(tmp_path, description):
    out_dir = tmp_path / "out"
    status = run_simulate.main([
        str(description),
        "--n_steps", "20",
        "--jiggle_scale", "1",
        "--pin_weight", "10",
        "--out_dir", str(out_dir),
        "--no_gexf",
    ])

    assert status == 0
    for name in ("nodes.csv", "edges.csv", "galaxy.json", "viewer.json", "graph.dot"):
        assert (out_dir / name).exists()
    params = json.loads((out_dir / "params.json").read_text())
    assert params["n_steps"] == 20
    assert params["pin_weight"] == 10.0
    assert params["write_gexf"] is False
    assert params["input"] == str(description)


def test_run_simulate_continues_from_output_directory(tmp_path, description):
    first = tmp_path / "first"
    second = tmp_path / "second"
    run_simulate.main([str(description), "--n_steps", "5", "--out_dir", str(first), "--no_gexf"])
    status = run_simulate.main([str(first), "--n_steps", "5", "--out_dir", str(second), "--no_gexf"])
    assert status == 0
    assert (second / "nodes.csv").exists()


def test_run_simulate_reports_structural_errors(tmp_path, capsys):
    bad = tmp_path / "bad.json"
    bad.write_text(json.dumps([
        {"name": "A", "position": [0, 0, 0], "neighbours": [5]},
    ]))
    status = run_simulate.main([str(bad), "--out_dir", str(tmp_path / "out")])
    assert status == 2
    assert "neighbour index 5" in capsys.readouterr().err
    assert not (tmp_path / "out").exists()


@pytest.mark.parametrize("color_by", ["system", "displacement", "depth", "constrained", "none"])
def test_draw_galaxy_colour_modes(square_records, color_by):
    g = load_galaxy(square_records)
    g.jiggle(1.0)
    g.step(0.1)
    nodes, edges = g.to_frames()
    args = plot_debug.build_parser().parse_args([
        "--color_by", color_by, "--edge_color_by", "strain",
        "--show_original", "--show_forces", "--plane", "xz",
    ])

    fig = plot_debug.draw_galaxy(args, nodes, edges)
    assert "4 systems" in fig.axes[0].get_title()
    plt.close(fig)


def test_plot_debug_main_saves_figure(tmp_path, description):
    out_dir = tmp_path / "out"
    run_simulate.main([str(description), "--n_steps", "3", "--out_dir", str(out_dir), "--no_gexf"])
    png = tmp_path / "galaxy.png"

    plot_debug.main(["--out_dir", str(out_dir), "--save", str(png), "--no_edges"])

    assert png.exists()
    plt.close("all")


def test_plot_debug_missing_output(tmp_path):
    args = plot_debug.build_parser().parse_args(["--out_dir", str(tmp_path)])
    with pytest.raises(FileNotFoundError):
        plot_debug.draw_galaxy(args)


def test_run_simulate_rejects_object_without_systems(tmp_path, capsys):
    bad = tmp_path / "bad.json"
    bad.write_text(json.dumps({"stars": [{"name": "A", "position": [0, 0, 0]}]}))
    status = run_simulate.main([str(bad), "--out_dir", str(tmp_path / "out")])
    assert status == 2
    assert "'systems' list" in capsys.readouterr().err
    assert not (tmp_path / "out").exists()


def test_galaxysim_script_prints_usage_without_arguments():
    script = Path(__file__).resolve().parent.parent / "galaxysim.py"
    result = subprocess.run(
        [sys.executable, str(script)], capture_output=True, text=True,
    )
    assert result.returncode == 2
    assert "usage: python galaxysim.py" in result.stderr
