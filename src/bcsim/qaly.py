"""Per-cycle health utility of each individual's health state."""
from typing import Any, Mapping

import numpy as np

from bcsim.states import StateModel


def accrue_utilities(
    parameters: Mapping[str, Any],
    state_model: StateModel,
    states: np.ndarray,
    age_time: np.ndarray,
) -> np.ndarray:
    """Quality-adjusted life years accrued by each individual in one cycle.

    Cancer-free utility declines linearly with the cancer-free age covariate; DCIS and
    each invasive stage have a fixed utility; both death states contribute nothing.
    """
    p = parameters
    states = np.asarray(states)
    lookup = np.zeros(state_model.n_states, dtype=float)
    for state, value in zip((state_model.dcis, *state_model.cancer_stages), p["u_disease"]):
        lookup[int(state)] = value

    utilities = np.where(
        states == state_model.healthy,
        p["u_healthy"] - p["u_age_decrement"] * age_time,
        lookup[states],
    )
    return utilities * p["cycle_length"]
