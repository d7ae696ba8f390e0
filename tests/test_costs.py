import numpy as np
import pytest

from bcsim.costs import accrue_costs
from bcsim.methods.breast_cancer import SimpleBreastCancer
from bcsim.qaly import accrue_utilities
from bcsim.states import SIMPLE_STATES, SimpleState


@pytest.fixture
def parameters(resource_file_path):
    module = SimpleBreastCancer(resourcefilepath=resource_file_path)
    module.read_parameters()
    return module.parameters


def _costs(parameters, state, duration=0, death_time=0, age_time=1):
    return accrue_costs(
        parameters,
        SIMPLE_STATES,
        np.array([state], dtype=np.int64),
        np.array([duration]),
        np.array([death_time]),
        np.array([age_time]),
    )[0]


def test_diagnosis_cost_on_entry(parameters):
    assert _costs(parameters, SimpleState.DCIS, duration=0) == parameters["cost_diagnosis"][0]
    assert _costs(parameters, SimpleState.Distant, duration=0) == parameters["cost_diagnosis"][3]


@pytest.mark.parametrize("duration", [1, 3, 5])
def test_followup_cost_window(parameters, duration):
    assert parameters["followup_cycles"] == 5
    assert _costs(parameters, SimpleState.Local, duration=duration) == parameters["cost_followup"][1]
    assert _costs(parameters, SimpleState.DCIS, duration=duration) == parameters["cost_followup"][0]


@pytest.mark.parametrize("duration", [6, 7, 40])
def test_no_cost_after_followup(parameters, duration):
    assert _costs(parameters, SimpleState.Regional, duration=duration) == 0.0


def test_terminal_care_only_on_entry(parameters):
    assert _costs(parameters, SimpleState.BreastCancerDeath, death_time=0) == parameters["cost_terminal_care"]
    assert _costs(parameters, SimpleState.BreastCancerDeath, death_time=1) == 0.0
    assert _costs(parameters, SimpleState.OtherDeath, death_time=0, age_time=0) == 0.0


def test_screening_cost(parameters):
    interval = parameters["screening_interval"]
    assert _costs(parameters, SimpleState.NoCancer, age_time=0) == parameters["cost_screening"]
    assert _costs(parameters, SimpleState.NoCancer, age_time=interval) == parameters["cost_screening"]
    assert _costs(parameters, SimpleState.NoCancer, age_time=interval + 1) == 0.0


def test_vectorised_over_individuals(parameters):
    states = np.array([s for s in SimpleState], dtype=np.int64)
    zeros = np.zeros(len(states), dtype=np.int64)
    costs = accrue_costs(parameters, SIMPLE_STATES, states, zeros, zeros, zeros)
    expected = [
        parameters["cost_screening"],
        *parameters["cost_diagnosis"],
        parameters["cost_terminal_care"],
        0.0,
    ]
    assert costs.tolist() == expected


def test_utilities(parameters):
    states = np.array([s for s in SimpleState], dtype=np.int64)
    age_time = np.full(len(states), 10)
    utilities = accrue_utilities(parameters, SIMPLE_STATES, states, age_time)
    expected = [
        parameters["u_healthy"] - 10 * parameters["u_age_decrement"],
        *parameters["u_disease"],
        0.0,
        0.0,
    ]
    assert np.allclose(utilities, expected)


def test_utilities_scaled_by_cycle_length(parameters):
    states = np.array([SimpleState.NoCancer, SimpleState.Local], dtype=np.int64)
    full = accrue_utilities(parameters, SIMPLE_STATES, states, np.zeros(2))
    half = accrue_utilities({**parameters, "cycle_length": 0.5}, SIMPLE_STATES, states, np.zeros(2))
    assert np.allclose(half, full / 2)
