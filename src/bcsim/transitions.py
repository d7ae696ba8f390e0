"""Per-cycle transition probabilities for every individual in the cohort."""
from typing import Dict

import numpy as np

from bcsim.core import InvalidProbabilityDistribution, Module

# tolerance on row sums, shared with the sampler
PROBABILITY_TOLERANCE = 1e-5


class TransitionProbabilityEngine:
    """Computes an N x S matrix of next-state probabilities from current states and covariates.

    Individuals are partitioned by current state once per cycle. The model variant
    supplies, for each non-absorbing origin state, the probability of every reachable
    destination; the probability of staying is the residual. Absorbing states map to a
    one-hot row on themselves.
    """

    def __init__(self, module: Module, tolerance: float = PROBABILITY_TOLERANCE):
        self.module = module
        self.state_model = module.STATES
        self.tolerance = tolerance

    def partition(self, states: np.ndarray) -> Dict[int, np.ndarray]:
        """Indices of the individuals currently in each state (empty partitions omitted)."""
        partitions = {}
        for state in self.state_model.states:
            index = np.flatnonzero(states == state)
            if len(index):
                partitions[state] = index
        return partitions

    def compute(self, states: np.ndarray, covariates: Dict[str, np.ndarray]) -> np.ndarray:
        """Transition probability matrix for the whole cohort.

        :param states: current state of each individual (length N)
        :param covariates: covariate columns, each of length N
        :return: array of shape (N, S) whose rows are distributions over next states
        """
        n_states = self.state_model.n_states
        probabilities = np.zeros((len(states), n_states), dtype=float)

        for origin, index in self.partition(states).items():
            if self.state_model.is_absorbing(origin):
                probabilities[index, int(origin)] = 1.0
                continue

            subset = {name: values[index] for name, values in covariates.items()}
            outgoing = self.module.transition_probabilities(origin, subset)
            rows = np.zeros((len(index), n_states), dtype=float)
            for destination, p in outgoing.items():
                if int(destination) == int(origin):
                    raise ValueError(f"{origin.name} must not list itself as a destination")
                rows[:, int(destination)] = p
            self._check_outgoing(origin, rows)

            stay = 1.0 - rows.sum(axis=1)
            # round-off below zero within tolerance is not a real excess
            rows[:, int(origin)] = np.where(stay < 0.0, 0.0, stay)
            probabilities[index] = rows

        return probabilities

    def _check_outgoing(self, origin, rows: np.ndarray) -> None:
        if not np.isfinite(rows).all():
            raise InvalidProbabilityDistribution(f"Non-finite transition probabilities from {origin.name}")
        if (rows < 0.0).any() or (rows > 1.0).any():
            raise InvalidProbabilityDistribution(
                f"Transition probabilities from {origin.name} outside [0, 1]: "
                f"min {rows.min()}, max {rows.max()}"
            )
        leaving = rows.sum(axis=1)
        excess = leaving > 1.0 + self.tolerance
        if excess.any():
            raise InvalidProbabilityDistribution(
                f"Probabilities of leaving {origin.name} sum to more than one for "
                f"{excess.sum()} individuals (maximum {leaving.max()})"
            )
