"""Drawing one next state per individual from per-individual probability distributions."""
import numpy as np

from bcsim.core import InvalidProbabilityDistribution
from bcsim.transitions import PROBABILITY_TOLERANCE


def validate_row_stochastic(probs: np.ndarray, tolerance: float = PROBABILITY_TOLERANCE) -> None:
    """Raise if any row of ``probs`` is not a probability distribution.

    :param probs: array of shape (N, S)
    :param tolerance: allowed absolute deviation of each row sum from 1
    """
    if probs.ndim != 2:
        raise InvalidProbabilityDistribution(f"Expected a 2-d probability matrix, got shape {probs.shape}")
    if not np.isfinite(probs).all():
        raise InvalidProbabilityDistribution("Probability matrix contains non-finite values")
    if (probs < 0.0).any():
        bad_rows = np.flatnonzero((probs < 0.0).any(axis=1))
        raise InvalidProbabilityDistribution(
            f"{len(bad_rows)} rows contain negative probabilities (first row {bad_rows[0]})"
        )
    row_sums = probs.sum(axis=1)
    bad_rows = np.flatnonzero(np.abs(row_sums - 1.0) > tolerance)
    if len(bad_rows):
        raise InvalidProbabilityDistribution(
            f"{len(bad_rows)} rows do not sum to 1 within {tolerance} "
            f"(first row {bad_rows[0]} sums to {row_sums[bad_rows[0]]})"
        )


def sample_categorical(probs: np.ndarray, rng: np.random.RandomState,
                       tolerance: float = PROBABILITY_TOLERANCE) -> np.ndarray:
    """Sample one category per row of a row-stochastic matrix by the inverse-CDF method.

    One uniform deviate is drawn per row, in row order, and compared to the cumulative
    sum across the columns of that row; the first column whose cumulative sum exceeds
    the deviate is the outcome.

    :param probs: array of shape (N, S); row i is the distribution for individual i
    :param rng: random number generator of the simulation
    :param tolerance: allowed deviation of row sums from 1
    :return: integer array of length N with the sampled column of each row
    """
    validate_row_stochastic(probs, tolerance)
    cumsum = probs.cumsum(axis=1)
    draws = rng.random_sample(len(probs))
    outcome = (cumsum > draws[:, np.newaxis]).argmax(axis=1)
    # a draw above a row total just under 1 falls in the last non-zero column
    overflow = draws >= cumsum[:, -1]
    if overflow.any():
        last_nonzero = probs.shape[1] - 1 - (probs[overflow, ::-1] > 0).argmax(axis=1)
        outcome[overflow] = last_nonzero
    return outcome
