import pickle

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
import pytest

from bcsim import Simulation
from bcsim.analysis.utils import (
    get_scenario_info,
    get_scenario_outputs,
    incremental_cost_effectiveness,
    load_pickled_dataframes,
    plot_cost_effectiveness_plane,
    plot_trace,
    summarize,
)
from bcsim.methods.breast_cancer import RefinedBreastCancer


@pytest.fixture
def results():
    return pd.DataFrame(
        {
            "draw_number": [0, 0, 1, 1, 2, 2],
            "sample_number": [0, 1, 0, 1, 0, 1],
            "tc_hat": [100.0, 120.0, 150.0, 170.0, 100.0, 120.0],
            "te_hat": [10.0, 12.0, 10.5, 12.5, 10.0, 12.0],
        }
    )


def test_summarize(results):
    summary = summarize(results)
    assert list(summary.index) == [0, 1, 2]
    assert summary.loc[1, ("tc_hat", "mean")] == pytest.approx(160.0)
    assert summary.loc[1, ("te_hat", "mean")] == pytest.approx(11.5)
    assert (summary.xs("lower", axis=1, level="stat") <= summary.xs("mean", axis=1, level="stat")).all().all()
    assert (summary.xs("upper", axis=1, level="stat") >= summary.xs("mean", axis=1, level="stat")).all().all()

    means = summarize(results, metrics=["tc_hat"], only_mean=True)
    assert list(means.columns) == ["tc_hat"]
    assert means["tc_hat"].tolist() == pytest.approx([110.0, 160.0, 110.0])


def test_incremental_cost_effectiveness(results):
    icer = incremental_cost_effectiveness(results)
    assert icer.loc[1, "delta_cost"] == pytest.approx(50.0)
    assert icer.loc[1, "delta_qaly"] == pytest.approx(0.5)
    assert icer.loc[1, "icer"] == pytest.approx(100.0)
    # no QALY difference from the reference
    assert np.isnan(icer.loc[0, "icer"])
    assert np.isnan(icer.loc[2, "icer"])

    with pytest.raises(ValueError):
        incremental_cost_effectiveness(results, reference_draw=5)


def test_scenario_output_folders(tmp_path):
    for name in ["screening_cost-2026-01-02T000000Z", "screening_cost-2026-01-01T000000Z", "other-2026"]:
        for draw in range(2):
            for run in range(3):
                (tmp_path / name / str(draw) / str(run)).mkdir(parents=True)
    frame = pd.DataFrame({"cycle": [0, 1], "NoCancer": [10, 9]})
    with open(tmp_path / "other-2026" / "1" / "2" / "bcsim.simulation.pickle", "wb") as f:
        pickle.dump({"state_counts": frame}, f)

    folders = get_scenario_outputs("screening_cost.py", tmp_path)
    assert [folder.name for folder in folders] == [
        "screening_cost-2026-01-01T000000Z",
        "screening_cost-2026-01-02T000000Z",
    ]
    assert get_scenario_info(folders[0]) == {"number_of_draws": 2, "runs_per_draw": 3}

    loaded = load_pickled_dataframes(tmp_path / "other-2026", draw=1, run=2)
    assert list(loaded) == ["bcsim.simulation"]
    assert loaded["bcsim.simulation"]["state_counts"].equals(frame)
    assert load_pickled_dataframes(tmp_path / "other-2026", draw=1, run=2, name="bcsim.scenario") == {}


def test_plot_trace(resource_file_path, seed):
    sim = Simulation(
        module=RefinedBreastCancer(resourcefilepath=resource_file_path),
        seed=seed,
        log_config={"suppress_stdout": True},
    )
    sim.make_initial_population(n=100)
    trace = sim.simulate(n_cycles=4).trace

    fig, ax = plt.subplots()
    plot_trace(ax, trace)
    assert len(ax.collections) == 8
    assert ax.get_ylim() == (0, 1)

    fig, ax = plt.subplots()
    plot_trace(ax, trace, states=["NoCancer", "DCIS"])
    assert len(ax.collections) == 2
    plt.close("all")


def test_plot_cost_effectiveness_plane(results):
    fig, ax = plt.subplots()
    plot_cost_effectiveness_plane(ax, results)
    # one scatter per non-reference draw
    assert len(ax.collections) == 2
    offsets = ax.collections[0].get_offsets()
    assert np.allclose(offsets, [[0.5, 50.0], [0.5, 50.0]])
    plt.close(fig)
