"""Per-cycle costs of each individual's health state."""
from typing import Any, Mapping

import numpy as np

from bcsim.states import StateModel


def _disease_state_lookup(state_model: StateModel, values) -> np.ndarray:
    """Dense lookup by state value for a list given for DCIS then each invasive stage."""
    lookup = np.zeros(state_model.n_states, dtype=float)
    for state, value in zip((state_model.dcis, *state_model.cancer_stages), values):
        lookup[int(state)] = value
    return lookup


def accrue_costs(
    parameters: Mapping[str, Any],
    state_model: StateModel,
    states: np.ndarray,
    duration: np.ndarray,
    death_time: np.ndarray,
    age_time: np.ndarray,
) -> np.ndarray:
    """Cost of one cycle for each individual.

    * disease states: the diagnosis cost of the state when ``duration == 0``, its
      follow-up cost while ``1 <= duration <= followup_cycles``, nothing afterwards;
    * breast cancer death: terminal care cost when ``death_time == 0``, nothing afterwards;
    * cancer-free: screening cost every ``screening_interval`` cycles of ``age_time``;
    * other-cause death: nothing.

    :param parameters: parameters of the model variant
    :param state_model: states of the model variant
    :param states: state of each individual
    :param duration: consecutive cycles in disease, as used for this cycle
    :param death_time: cycles since breast cancer death, as used for this cycle
    :param age_time: cancer-free cycles, as used for this cycle
    :return: cost of each individual
    """
    p = parameters
    states = np.asarray(states)
    diagnosis = _disease_state_lookup(state_model, p["cost_diagnosis"])[states]
    followup = _disease_state_lookup(state_model, p["cost_followup"])[states]

    in_disease = state_model.mask(states, state_model.disease_states)
    costs = np.zeros(len(states), dtype=float)
    costs = np.where(in_disease & (duration == 0), diagnosis, costs)
    costs = np.where(
        in_disease & (duration >= 1) & (duration <= p["followup_cycles"]), followup, costs
    )
    costs = np.where(
        (states == state_model.bc_death) & (death_time == 0), p["cost_terminal_care"], costs
    )
    costs = np.where(
        (states == state_model.healthy) & (age_time % p["screening_interval"] == 0),
        p["cost_screening"],
        costs,
    )
    return costs
