"""Outputs of a cohort run: discounted totals, state trace and transition-pair log."""
from dataclasses import dataclass
from typing import Optional

import numpy as np
import pandas as pd

from bcsim.states import StateModel


def discount_weights(rate: float, n_cycles: int) -> np.ndarray:
    """Weights ``1 / (1 + rate) ** t`` for cycles ``t = 0 .. n_cycles``."""
    if rate <= -1.0:
        raise ValueError(f"Discount rate must be greater than -1, got {rate}")
    return 1.0 / (1.0 + rate) ** np.arange(n_cycles + 1)


def make_trace(trajectory: np.ndarray, state_model: StateModel) -> pd.DataFrame:
    """Fraction of the cohort in each state at each cycle.

    :param trajectory: array of shape (N, T + 1) of states
    :return: dataframe indexed by cycle with one column per state name
    """
    n_individuals, n_columns = trajectory.shape
    counts = np.stack(
        [np.bincount(trajectory[:, t], minlength=state_model.n_states) for t in range(n_columns)]
    )
    return pd.DataFrame(
        counts / n_individuals,
        index=pd.RangeIndex(n_columns, name="cycle"),
        columns=list(state_model.names),
    )


def make_transition_log(trajectory: np.ndarray, state_model: StateModel) -> np.ndarray:
    """Pairs ``"<state at t>_<state at t+1>"`` for every individual and cycle.

    :return: string array of shape (N, T)
    """
    names = np.array(state_model.names)
    before = names[trajectory[:, :-1]]
    after = names[trajectory[:, 1:]]
    return np.char.add(np.char.add(before, "_"), after)


def count_transitions(transition_log: np.ndarray, state_model: StateModel, from_state, to_state) -> pd.Series:
    """Number of ``from_state`` to ``to_state`` transitions in each cycle of a transition log."""
    pair = f"{state_model.enum(from_state).name}_{state_model.enum(to_state).name}"
    return pd.Series(
        (transition_log == pair).sum(axis=0),
        index=pd.RangeIndex(1, transition_log.shape[1] + 1, name="cycle"),
        name=pair,
    )


def cumulative_incidence(transition_log: np.ndarray, state_model: StateModel, from_state, to_state) -> pd.Series:
    """Cumulative fraction of the cohort that made a given transition, by cycle."""
    counts = count_transitions(transition_log, state_model, from_state, to_state)
    return counts.cumsum() / transition_log.shape[0]


@dataclass
class RunResult:
    """Discounted totals of a cohort run, with optional full outputs for diagnostics.

    ``tc`` and ``te`` are the discounted total cost and QALYs of each individual and
    ``tc_hat`` and ``te_hat`` their means over the cohort.
    """
    variant: str
    seed: Optional[int]
    population_size: int
    n_cycles: int
    tc: np.ndarray
    te: np.ndarray
    tc_hat: float
    te_hat: float
    trajectory: Optional[np.ndarray] = None
    costs: Optional[np.ndarray] = None
    utilities: Optional[np.ndarray] = None
    trace: Optional[pd.DataFrame] = None
    transition_log: Optional[np.ndarray] = None

    def summary(self) -> dict:
        return {
            "variant": self.variant,
            "seed": self.seed,
            "population_size": self.population_size,
            "n_cycles": self.n_cycles,
            "tc_hat": self.tc_hat,
            "te_hat": self.te_hat,
        }
