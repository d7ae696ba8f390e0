"""
General utility functions for analysing bcsim runs and scenario results
"""
import os
import pickle
from pathlib import Path
from typing import Iterable, Optional

import matplotlib.pyplot as plt
import pandas as pd


def get_scenario_outputs(scenario_filename: str, outputs_dir: Path) -> list:
    """Returns paths of folders associated with a scenario script, in chronological order."""
    stub = Path(scenario_filename).stem
    folders = [Path(f.path) for f in os.scandir(outputs_dir) if f.is_dir() and f.name.startswith(stub)]
    folders.sort()
    return folders


def get_scenario_info(scenario_output_dir: Path) -> dict:
    """Utility function to get the number of draws and the number of runs in a scenario output folder."""
    info = dict()
    draw_folders = [f for f in os.scandir(scenario_output_dir) if f.is_dir()]

    info['number_of_draws'] = len(draw_folders)

    run_folders = [f for f in os.scandir(draw_folders[0]) if f.is_dir()]
    info['runs_per_draw'] = len(run_folders)

    return info


def load_pickled_dataframes(results_folder: Path, draw=0, run=0, name=None) -> dict:
    """Utility function to create a dict containing all the logs from the specified run within a scenario"""
    folder = Path(results_folder) / str(draw) / str(run)
    pickles = [p for p in os.scandir(folder) if p.name.endswith('.pickle')]
    if name is not None:
        pickles = [p for p in pickles if p.name == f"{name}.pickle"]

    output = dict()
    for p in pickles:
        name = os.path.splitext(p.name)[0]
        with open(p.path, "rb") as f:
            output[name] = pickle.load(f)

    return output


def summarize(
    results: pd.DataFrame, metrics: Iterable[str] = ("tc_hat", "te_hat"), only_mean: bool = False
) -> pd.DataFrame:
    """Utility function to compute summary statistics

    Finds mean value and 95% interval across the runs for each draw of a scenario results table.

    :param results: results table from :py:meth:`bcsim.scenario.SampleRunner.run`
    :param metrics: columns to summarise
    :param only_mean: return only the mean of each metric, one column per metric
    :return: frame indexed by draw number with (metric, stat) columns
    """
    metrics = list(metrics)
    grouped = results.groupby("draw_number")[metrics]
    summary = pd.concat(
        {"mean": grouped.mean(), "lower": grouped.quantile(0.025), "upper": grouped.quantile(0.975)},
        axis=1,
    ).swaplevel(axis=1)
    summary = summary.reindex(
        columns=pd.MultiIndex.from_product([metrics, ["mean", "lower", "upper"]], names=["metric", "stat"])
    )

    if only_mean:
        return summary.xs("mean", axis=1, level="stat")
    return summary


def incremental_cost_effectiveness(results: pd.DataFrame, reference_draw: int = 0) -> pd.DataFrame:
    """Mean cost and QALYs of each draw, with increments and the ICER against a reference draw.

    The ICER is undefined (NaN) where the QALY increment is zero, including for the reference draw.
    """
    means = results.groupby("draw_number")[["tc_hat", "te_hat"]].mean()
    if reference_draw not in means.index:
        raise ValueError(f"Reference draw {reference_draw} not in results; draws are {list(means.index)}")

    delta = (means - means.loc[reference_draw]).rename(columns={"tc_hat": "delta_cost", "te_hat": "delta_qaly"})
    icer = delta["delta_cost"] / delta["delta_qaly"].where(delta["delta_qaly"] != 0)
    return means.join(delta).assign(icer=icer)


def plot_trace(ax: plt.Axes, trace: pd.DataFrame, states: Optional[list] = None):
    """Plot the Markov trace as a stacked area chart of the fraction of the cohort in each state.

    :param ax: Matplotlib axis to plot on.
    :param trace: trace from :py:attr:`bcsim.results.RunResult.trace`, indexed by cycle.
    :param states: states to include, in stacking order; all states if ``None``.
    """
    if states is None:
        states = list(trace.columns)
    ax.stackplot(trace.index, *(trace[state] for state in states), labels=states)
    ax.set_xlim(trace.index.min(), trace.index.max())
    ax.set_ylim(0, 1)
    ax.set_xlabel("Cycle")
    ax.set_ylabel("Fraction of cohort")
    ax.legend(loc="center left", bbox_to_anchor=(1.01, 0.5))


def plot_cost_effectiveness_plane(ax: plt.Axes, results: pd.DataFrame, reference_draw: int = 0):
    """Scatter the incremental QALYs and costs of each run against the run of the reference draw
    sharing its seed."""
    by_sample = results.pivot(index="sample_number", columns="draw_number", values=["tc_hat", "te_hat"])
    draws = [d for d in by_sample["tc_hat"].columns if d != reference_draw]
    for draw in draws:
        delta_qaly = by_sample["te_hat"][draw] - by_sample["te_hat"][reference_draw]
        delta_cost = by_sample["tc_hat"][draw] - by_sample["tc_hat"][reference_draw]
        ax.scatter(delta_qaly, delta_cost, label=f"draw {draw}", s=12)
    ax.axhline(0, color="grey", linewidth=0.5)
    ax.axvline(0, color="grey", linewidth=0.5)
    ax.set_xlabel("Incremental QALYs")
    ax.set_ylabel("Incremental cost")
    if draws:
        ax.legend()
