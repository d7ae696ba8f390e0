"""
Breast Cancer Natural History Models

Two variants of the same model share the formulas in this file:

* ``SimpleBreastCancer`` - 7 states, invasive disease split into Local, Regional and
  Distant.
* ``RefinedBreastCancer`` - 8 states, invasive disease split into Stage 1 to 4, with a
  second age covariate that keeps running while in DCIS and drives exits from DCIS.

Limitations to note:
* No remission: individuals never return to NoCancer once diagnosed.
* Screening is represented only by its population-average cost.
"""
from enum import Enum
from typing import Dict, Sequence

import numpy as np

from bcsim import logging
from bcsim.core import (
    ConfigurationError,
    InvalidCovariateDomain,
    Module,
    Parameter,
    Property,
    Types,
)
from bcsim.states import REFINED_STATES, SIMPLE_STATES

logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)


class AgePolicy(Enum):
    """What happens to an age covariate while an individual is outside the states it counts."""
    FREEZE_ON_EXIT = 'freeze_on_exit'
    RESET_ON_EXIT = 'reset_on_exit'
    ALWAYS_INCREMENT = 'always_increment'


AGE_POLICY_CATEGORIES = [policy.value for policy in AgePolicy]


def advance_age_covariate(values: np.ndarray, counting: np.ndarray, policy: AgePolicy) -> np.ndarray:
    """Advance an age covariate by one cycle.

    :param values: covariate values before the update
    :param counting: mask of individuals whose new state is one the covariate counts
    :param policy: what to do for everyone else
    """
    if policy is AgePolicy.ALWAYS_INCREMENT:
        return values + 1
    if policy is AgePolicy.FREEZE_ON_EXIT:
        return np.where(counting, values + 1, values)
    return np.where(counting, values + 1, 0)


def check_age(age: np.ndarray) -> np.ndarray:
    if (age <= 0).any():
        raise InvalidCovariateDomain(
            f"Age must be positive for power and log terms; minimum age was {age.min()}"
        )
    return age


def fractional_polynomial(age: np.ndarray, coefficients: Sequence[float]) -> np.ndarray:
    """Fractional polynomial with powers (-2, 0) of age in decades.

    p = b0 + b1 * x^-2 + b2 * ln(x), with x = age / 10
    """
    b0, b1, b2 = coefficients
    x = check_age(age) / 10.0
    return b0 + b1 * x ** -2.0 + b2 * np.log(x)


def gompertz_probability(age: np.ndarray, coefficients: Sequence[float]) -> np.ndarray:
    """Probability of dying within one cycle under a Gompertz hazard a * exp(b * age)."""
    a, b = coefficients
    return 1.0 - np.exp(-a * np.exp(b * age))


class BreastCancerNaturalHistory(Module):
    """Natural history of breast cancer in a cohort of women, one cycle per year"""

    PARAMETERS = {
        # Cohort
        "start_age": Parameter(Types.REAL, "age of every woman at cycle 0 (years)"),
        "cycle_length": Parameter(Types.REAL, "length of one cycle (years); scales utilities to QALYs"),
        "age_policy": Parameter(
            Types.CATEGORICAL,
            "how the cancer-free age covariate behaves once a woman leaves NoCancer",
            categories=AGE_POLICY_CATEGORIES,
        ),

        # Onset from NoCancer
        "dcis_onset_fp": Parameter(
            Types.LIST, "fractional polynomial [b0, b1, b2] for the probability of DCIS onset by age"
        ),
        "invasive_onset_fp": Parameter(
            Types.LIST, "fractional polynomial [b0, b1, b2] for the probability of invasive onset by age"
        ),
        "stage_distribution_at_onset": Parameter(
            Types.LIST, "proportion of invasive onsets presenting at each stage"
        ),
        "ocd_gompertz": Parameter(
            Types.LIST, "Gompertz [a, b] for other-cause death from NoCancer and DCIS by age"
        ),

        # DCIS
        "dcis_progression": Parameter(
            Types.LIST,
            "[c0, c1]: probability of progression from DCIS to the first invasive stage is "
            "c0 * exp(c1 * years since start age)"
        ),

        # Invasive stages
        "p_progression": Parameter(
            Types.LIST, "probability per cycle of progressing to the next stage, for every stage but the last"
        ),
        "bcd_first": Parameter(
            Types.LIST, "probability of breast cancer death in the first cycle after entry, by stage"
        ),
        "bcd_scale": Parameter(
            Types.LIST, "scale of the exponential breast cancer death curve by duration, by stage"
        ),
        "bcd_decay": Parameter(
            Types.LIST, "decay rate of the exponential breast cancer death curve by duration, by stage"
        ),
        "ocd_intercept": Parameter(
            Types.LIST, "other-cause death probability in the first cycle after entry, by stage"
        ),
        "ocd_log_slope": Parameter(
            Types.LIST, "increase of other-cause death probability per unit log duration, by stage"
        ),

        # Costs
        "cost_diagnosis": Parameter(
            Types.LIST, "one-time diagnosis and treatment cost, for DCIS then each stage"
        ),
        "cost_followup": Parameter(
            Types.LIST, "annual follow-up cost, for DCIS then each stage"
        ),
        "followup_cycles": Parameter(Types.INT, "number of cycles after diagnosis with follow-up cost"),
        "cost_terminal_care": Parameter(Types.REAL, "one-time terminal care cost on breast cancer death"),
        "cost_screening": Parameter(
            Types.REAL, "average cost per screening round per cancer-free woman, including false positives"
        ),
        "screening_interval": Parameter(Types.INT, "cycles between screening rounds"),

        # Utilities
        "u_healthy": Parameter(Types.REAL, "utility of a cancer-free woman at the start age"),
        "u_age_decrement": Parameter(Types.REAL, "annual decrement of cancer-free utility"),
        "u_disease": Parameter(Types.LIST, "utility for DCIS then each stage"),
    }

    PROPERTIES = {
        "state": Property(Types.INT, "current health state"),
        "duration_in_state": Property(Types.INT, "consecutive cycles in a disease state"),
        "time_since_death_entry": Property(Types.INT, "consecutive cycles since breast cancer death"),
        "age_time": Property(Types.INT, "cycles elapsed while cancer-free"),
    }

    # covariate used as the age of women leaving DCIS
    DCIS_AGE_COLUMN = "age_time"

    @property
    def n_stages(self) -> int:
        return len(self.STATES.cancer_stages)

    def disease_index(self, state) -> int:
        """Position of a disease state in the per-disease-state parameter lists."""
        return (self.STATES.dcis, *self.STATES.cancer_stages).index(state)

    def validate_parameters(self) -> None:
        """Check parameter values are consistent with the states of this variant."""
        p = self.parameters
        expected_lengths = {
            "dcis_onset_fp": 3,
            "invasive_onset_fp": 3,
            "ocd_gompertz": 2,
            "dcis_progression": 2,
            "stage_distribution_at_onset": self.n_stages,
            "p_progression": self.n_stages - 1,
            "bcd_first": self.n_stages,
            "bcd_scale": self.n_stages,
            "bcd_decay": self.n_stages,
            "ocd_intercept": self.n_stages,
            "ocd_log_slope": self.n_stages,
            "cost_diagnosis": self.n_stages + 1,
            "cost_followup": self.n_stages + 1,
            "u_disease": self.n_stages + 1,
        }
        for name, length in expected_lengths.items():
            if len(p[name]) != length:
                raise ConfigurationError(
                    f"Parameter {name} of {self.name} needs {length} values, got {len(p[name])}"
                )
        if not np.isclose(sum(p["stage_distribution_at_onset"]), 1.0):
            raise ConfigurationError("stage_distribution_at_onset must sum to 1")
        if p["screening_interval"] < 1:
            raise ConfigurationError("screening_interval must be at least one cycle")
        if p["followup_cycles"] < 0:
            raise ConfigurationError("followup_cycles cannot be negative")
        if p["cycle_length"] <= 0:
            raise ConfigurationError("cycle_length must be positive")

    def initialise_population(self, population, start_states: np.ndarray) -> None:
        """Set the starting state of every woman; all other covariates start at zero."""
        start_states = np.asarray(start_states)
        valid = np.isin(start_states, [int(s) for s in self.STATES.states])
        if not valid.all():
            raise ConfigurationError(
                f"Start states contain values that are not states of {self.name}: "
                f"{sorted(set(start_states[~valid].tolist()))}"
            )
        population.set_column("state", start_states)

        counts = np.bincount(start_states, minlength=self.STATES.n_states)
        logger.info(
            key="initial_states",
            data=dict(zip(self.STATES.names, counts)),
            description="number of individuals starting in each state",
        )

    def transition_probabilities(self, origin, covariates: Dict[str, np.ndarray]) -> Dict[int, np.ndarray]:
        """Probabilities of moving from ``origin`` to each reachable state other than itself.

        :param origin: the state all individuals described by ``covariates`` are in
        :param covariates: covariate columns for those individuals only
        :return: mapping from destination state to probability array
        """
        states = self.STATES
        if origin == states.healthy:
            return self._from_no_cancer(covariates)
        if origin == states.dcis:
            return self._from_dcis(covariates)
        if origin in states.cancer_stages:
            return self._from_stage(origin, covariates)
        raise ValueError(f"No outgoing transitions are defined from {origin!r}")

    def _from_no_cancer(self, covariates):
        p = self.parameters
        states = self.STATES
        age = p["start_age"] + covariates["age_time"]
        p_invasive = fractional_polynomial(age, p["invasive_onset_fp"])
        outgoing = {states.dcis: fractional_polynomial(age, p["dcis_onset_fp"])}
        for stage, proportion in zip(states.cancer_stages, p["stage_distribution_at_onset"]):
            outgoing[stage] = p_invasive * proportion
        outgoing[states.oc_death] = gompertz_probability(age, p["ocd_gompertz"])
        return outgoing

    def _from_dcis(self, covariates):
        p = self.parameters
        states = self.STATES
        years_since_start = covariates[self.DCIS_AGE_COLUMN]
        age = check_age(p["start_age"] + years_since_start)
        c0, c1 = p["dcis_progression"]
        return {
            states.cancer_stages[0]: c0 * np.exp(c1 * years_since_start),
            states.oc_death: gompertz_probability(age, p["ocd_gompertz"]),
        }

    def _from_stage(self, stage, covariates):
        p = self.parameters
        states = self.STATES
        i = states.cancer_stages.index(stage)
        duration = covariates["duration_in_state"]
        if (duration < 0).any():
            raise InvalidCovariateDomain(f"Negative duration in {stage.name}: {duration.min()}")

        # first cycle after entry has its own probabilities; log(0) is never evaluated
        first_cycle = duration == 0
        later_duration = np.where(first_cycle, 1, duration)
        p_bcd = np.where(
            first_cycle,
            p["bcd_first"][i],
            p["bcd_scale"][i] * np.exp(-p["bcd_decay"][i] * later_duration),
        )
        p_ocd = np.where(
            first_cycle,
            p["ocd_intercept"][i],
            p["ocd_intercept"][i] + p["ocd_log_slope"][i] * np.log(later_duration),
        )
        outgoing = {states.bc_death: p_bcd, states.oc_death: p_ocd}
        next_stage = states.next_stage(stage)
        if next_stage is not None:
            outgoing[next_stage] = np.full(len(duration), p["p_progression"][i])
        return outgoing

    def update_covariates(self, population, old_states: np.ndarray, new_states: np.ndarray) -> None:
        """Recompute covariates for the new states, strictly from the previous cycle's values."""
        states = self.STATES
        in_disease = states.mask(new_states, states.disease_states)
        population.set_column(
            "duration_in_state",
            np.where(in_disease, population.column("duration_in_state") + 1, 0),
        )
        population.set_column(
            "time_since_death_entry",
            np.where(new_states == states.bc_death, population.column("time_since_death_entry") + 1, 0),
        )
        population.set_column(
            "age_time",
            advance_age_covariate(
                population.column("age_time"),
                new_states == states.healthy,
                AgePolicy(self.parameters["age_policy"]),
            ),
        )


class SimpleBreastCancer(BreastCancerNaturalHistory):
    """Seven state model: NoCancer, DCIS, Local, Regional, Distant and the two deaths"""

    STATES = SIMPLE_STATES
    RESOURCE_FILE = "ResourceFile_BreastCancer_Simple.csv"


class RefinedBreastCancer(BreastCancerNaturalHistory):
    """Eight state model with Stage 1 to 4 and a DCIS age covariate"""

    STATES = REFINED_STATES
    RESOURCE_FILE = "ResourceFile_BreastCancer_Refined.csv"

    PARAMETERS = {
        **BreastCancerNaturalHistory.PARAMETERS,
        "dcis_age_policy": Parameter(
            Types.CATEGORICAL,
            "how the DCIS age covariate behaves once a woman has invasive disease or has died",
            categories=AGE_POLICY_CATEGORIES,
        ),
    }

    PROPERTIES = {
        **BreastCancerNaturalHistory.PROPERTIES,
        "dcis_age_time": Property(Types.INT, "cycles elapsed while cancer-free or in DCIS"),
    }

    DCIS_AGE_COLUMN = "dcis_age_time"

    def update_covariates(self, population, old_states, new_states):
        super().update_covariates(population, old_states, new_states)
        states = self.STATES
        population.set_column(
            "dcis_age_time",
            advance_age_covariate(
                population.column("dcis_age_time"),
                states.mask(new_states, (states.healthy, states.dcis)),
                AgePolicy(self.parameters["dcis_age_policy"]),
            ),
        )


VARIANTS = {
    "simple": SimpleBreastCancer,
    "refined": RefinedBreastCancer,
}
