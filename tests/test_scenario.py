import json
import os
from pathlib import Path

import numpy as np
import pandas as pd
import pytest

from bcsim import logging
from bcsim.methods.breast_cancer import SimpleBreastCancer
from bcsim.scenario import (
    BaseScenario,
    DrawGenerator,
    SampleRunner,
    ScenarioLoader,
    make_cartesian_parameter_grid,
)


@pytest.fixture
def scenario_path():
    return Path(f'{os.path.dirname(__file__)}/resources/scenario.py')


@pytest.fixture
def loaded_scenario(scenario_path):
    return ScenarioLoader(scenario_path).get_scenario()


@pytest.fixture
def draws_path(loaded_scenario, scenario_path, tmp_path):
    generator = DrawGenerator(loaded_scenario, loaded_scenario.number_of_draws, loaded_scenario.runs_per_draw)
    config = generator.get_run_config(scenario_path)
    output_path = tmp_path / "scenario_draws.json"
    generator.save_config(config, output_path)
    return output_path


@pytest.fixture
def runner(draws_path):
    return SampleRunner(draws_path)


def test_load(loaded_scenario, scenario_path):
    """Check we can load the scenario class from a file"""
    assert isinstance(loaded_scenario, BaseScenario)
    assert loaded_scenario.scenario_path == scenario_path
    assert loaded_scenario.pop_size == 200
    assert isinstance(loaded_scenario.module(), SimpleBreastCancer)
    assert loaded_scenario.start_states() is None


def test_unknown_variant(loaded_scenario):
    loaded_scenario.variant = "detailed"
    with pytest.raises(ValueError, match="detailed"):
        loaded_scenario.module()


def test_config(loaded_scenario):
    """Create the run configuration and check we've got the right values in there."""
    config = loaded_scenario.save_draws(return_config=True, note="check")
    assert config["scenario_seed"] == loaded_scenario.seed
    assert config["runs_per_draw"] == 2
    assert config["note"] == "check"
    assert [draw["parameters"] for draw in config["draws"]] == [
        {"cost_screening": 40.0},
        {"cost_screening": 80.0},
        {"cost_screening": 120.0},
    ]


def test_log_config_defaults_filename_to_script_name(loaded_scenario, tmp_path):
    log_config = loaded_scenario.get_log_config()
    assert log_config["filename"] == "scenario"
    assert log_config["directory"] is None

    log_config = loaded_scenario.get_log_config(override_output_directory=tmp_path)
    assert log_config["directory"] == tmp_path
    assert log_config["suppress_stdout"]


def test_saved_draws(draws_path, scenario_path):
    with open(draws_path) as f:
        config = json.load(f)
    assert Path(config["scenario_script_path"]) == scenario_path
    assert len(config["draws"]) == 3


def test_sample_seeds(runner, loaded_scenario):
    draw = runner.get_draw(1)
    samples = list(runner.get_samples_for_draw(draw))
    assert [sample["sample_number"] for sample in samples] == [0, 1]
    assert samples[1]["simulation_seed"] == SampleRunner.low_bias_32(loaded_scenario.seed + 1)
    assert samples[0]["simulation_seed"] != samples[1]["simulation_seed"]
    # seeds depend on the sample, not the draw
    assert runner.get_sample(runner.get_draw(2), 1)["simulation_seed"] == samples[1]["simulation_seed"]
    with pytest.raises(AssertionError):
        runner.get_sample(draw, 2)
    with pytest.raises(AssertionError):
        runner.get_draw(3)


def test_low_bias_32():
    values = [SampleRunner.low_bias_32(x) for x in range(100)]
    assert len(set(values)) == 100
    assert all(0 <= value < 2 ** 32 for value in values)


def test_run(runner):
    results = runner.run()

    assert len(results) == 6
    assert results["draw_number"].tolist() == [0, 0, 1, 1, 2, 2]
    assert results["sample_number"].tolist() == [0, 1, 0, 1, 0, 1]
    assert {"simulation_seed", "tc_hat", "te_hat", "trace_NoCancer", "trace_OtherDeath"} <= set(results.columns)
    trace = results.filter(like="trace_")
    assert trace.shape[1] == 7
    assert np.allclose(trace.sum(axis=1), 1.0)

    # screening cost only changes costs, so runs sharing a seed share QALYs
    by_sample = results.pivot(index="sample_number", columns="draw_number")
    assert (by_sample["te_hat"].nunique(axis=1) == 1).all()
    assert (by_sample["tc_hat"].diff(axis=1).iloc[:, 1:] > 0).all().all()


def test_run_in_parallel_matches_serial(runner):
    serial = runner.run()
    parallel = runner.run(n_workers=2)
    pd.testing.assert_frame_equal(serial, parallel)


def test_run_writes_results(runner, tmp_path):
    runner.scenario.log_configuration = lambda: {
        "filename": "screening_cost",
        "directory": tmp_path,
        "custom_levels": {"*": logging.WARNING, "bcsim.simulation": logging.INFO},
    }
    results = runner.run()

    run_dirs = list(tmp_path.glob("screening_cost-*"))
    assert len(run_dirs) == 1
    saved = pd.read_csv(run_dirs[0] / "results.csv")
    assert np.allclose(saved["tc_hat"], results["tc_hat"])
    assert (run_dirs[0] / "2" / "1" / "bcsim.simulation.pickle").exists()


def test_cartesian_parameter_grid():
    grid = make_cartesian_parameter_grid({"a": [1, 2], "b": ["x", "y", "z"]})
    assert len(grid) == 6
    assert grid[0] == {"a": 1, "b": "x"}
    assert grid[-1] == {"a": 2, "b": "z"}
    assert make_cartesian_parameter_grid({"a": [1.5]}) == [{"a": 1.5}]
