import numpy as np
import pytest

from bcsim import InvalidCovariateDomain, InvalidProbabilityDistribution
from bcsim.methods.breast_cancer import (
    AgePolicy,
    RefinedBreastCancer,
    SimpleBreastCancer,
    advance_age_covariate,
    fractional_polynomial,
    gompertz_probability,
)
from bcsim.states import RefinedState, SimpleState
from bcsim.transitions import TransitionProbabilityEngine


@pytest.fixture
def simple_module(resource_file_path):
    module = SimpleBreastCancer(resourcefilepath=resource_file_path)
    module.read_parameters()
    return module


@pytest.fixture
def refined_module(resource_file_path):
    module = RefinedBreastCancer(resourcefilepath=resource_file_path)
    module.read_parameters()
    return module


def _covariates(states, **columns):
    n = len(states)
    covariates = {
        "state": np.asarray(states, dtype=np.int64),
        "duration_in_state": np.zeros(n, dtype=np.int64),
        "time_since_death_entry": np.zeros(n, dtype=np.int64),
        "age_time": np.zeros(n, dtype=np.int64),
    }
    covariates.update({name: np.asarray(values, dtype=np.int64) for name, values in columns.items()})
    return covariates


def test_fractional_polynomial():
    age = np.array([50.0, 70.0])
    p = fractional_polynomial(age, [0.0, -0.01, 0.0006])
    x = age / 10
    assert np.allclose(p, -0.01 / x ** 2 + 0.0006 * np.log(x))
    assert 0.0005 < p[0] < 0.0006
    assert 0.0009 < p[1] < 0.001


def test_fractional_polynomial_rejects_non_positive_age():
    with pytest.raises(InvalidCovariateDomain):
        fractional_polynomial(np.array([50.0, 0.0]), [0.0, -0.01, 0.0006])


def test_gompertz_probability():
    p = gompertz_probability(np.array([50.0]), [2.8e-5, 0.09])
    assert p[0] == pytest.approx(1 - np.exp(-2.8e-5 * np.exp(4.5)))
    assert gompertz_probability(np.array([60.0]), [0.0, 0.09])[0] == 0.0


def test_advance_age_covariate():
    values = np.array([3, 3, 3])
    counting = np.array([True, False, False])
    assert advance_age_covariate(values, counting, AgePolicy.FREEZE_ON_EXIT).tolist() == [4, 3, 3]
    assert advance_age_covariate(values, counting, AgePolicy.RESET_ON_EXIT).tolist() == [4, 0, 0]
    assert advance_age_covariate(values, counting, AgePolicy.ALWAYS_INCREMENT).tolist() == [4, 4, 4]


def test_rows_are_distributions(simple_module):
    states = [int(s) for s in SimpleState] * 3
    durations = [0] * 7 + [1] * 7 + [12] * 7
    covariates = _covariates(states, duration_in_state=durations, age_time=[10] * 21)

    probabilities = TransitionProbabilityEngine(simple_module).compute(covariates["state"], covariates)

    assert probabilities.shape == (21, 7)
    assert np.allclose(probabilities.sum(axis=1), 1.0, atol=1e-5)
    assert (probabilities >= 0).all()


def test_absorbing_rows_are_one_hot(refined_module):
    states = np.array([RefinedState.BreastCancerDeath, RefinedState.OtherDeath], dtype=np.int64)
    covariates = _covariates(states, dcis_age_time=[0, 0])
    probabilities = TransitionProbabilityEngine(refined_module).compute(states, covariates)
    expected = np.zeros((2, 8))
    expected[0, RefinedState.BreastCancerDeath] = 1.0
    expected[1, RefinedState.OtherDeath] = 1.0
    assert (probabilities == expected).all()


def test_reachable_destinations(simple_module):
    p = simple_module.parameters
    states = np.array([SimpleState.NoCancer, SimpleState.DCIS, SimpleState.Distant], dtype=np.int64)
    covariates = _covariates(states)
    probabilities = TransitionProbabilityEngine(simple_module).compute(states, covariates)

    # no remission and no skipping back
    assert probabilities[1, SimpleState.NoCancer] == 0.0
    assert probabilities[2, [SimpleState.NoCancer, SimpleState.DCIS, SimpleState.Local]].sum() == 0.0
    # the last stage cannot progress
    assert probabilities[2, SimpleState.Distant] == pytest.approx(
        1 - p["bcd_first"][2] - p["ocd_intercept"][2]
    )
    # invasive onset is split across stages
    onset = probabilities[0, [SimpleState.Local, SimpleState.Regional, SimpleState.Distant]]
    assert np.allclose(onset / onset.sum(), p["stage_distribution_at_onset"])


def test_first_cycle_after_entry_is_special_cased(simple_module):
    p = simple_module.parameters
    states = np.full(3, SimpleState.Regional, dtype=np.int64)
    covariates = _covariates(states, duration_in_state=[0, 1, 4])

    with np.errstate(divide="raise", invalid="raise"):
        probabilities = TransitionProbabilityEngine(simple_module).compute(states, covariates)

    bcd = probabilities[:, SimpleState.BreastCancerDeath]
    ocd = probabilities[:, SimpleState.OtherDeath]
    assert bcd[0] == pytest.approx(p["bcd_first"][1])
    assert ocd[0] == pytest.approx(p["ocd_intercept"][1])
    assert bcd[2] == pytest.approx(p["bcd_scale"][1] * np.exp(-p["bcd_decay"][1] * 4))
    assert ocd[2] == pytest.approx(p["ocd_intercept"][1] + p["ocd_log_slope"][1] * np.log(4))
    assert ocd[1] == pytest.approx(p["ocd_intercept"][1])
    assert np.allclose(probabilities[:, SimpleState.Distant], p["p_progression"][1])


def test_refined_dcis_exit_uses_dcis_age(refined_module):
    c0, c1 = refined_module.parameters["dcis_progression"]
    states = np.full(2, RefinedState.DCIS, dtype=np.int64)
    covariates = _covariates(states, age_time=[5, 5], dcis_age_time=[5, 20])
    probabilities = TransitionProbabilityEngine(refined_module).compute(states, covariates)
    assert np.allclose(probabilities[:, RefinedState.Stage1], c0 * np.exp(c1 * np.array([5, 20])))


def test_negative_probability_is_an_error(simple_module):
    # the incidence curves are negative for women in their early thirties
    simple_module.parameters["start_age"] = 30.0
    states = np.zeros(4, dtype=np.int64)
    with pytest.raises(InvalidProbabilityDistribution):
        TransitionProbabilityEngine(simple_module).compute(states, _covariates(states))


def test_excess_leaving_probability_is_not_clamped(simple_module):
    simple_module.parameters["bcd_first"] = [0.7, 0.7, 0.7]
    simple_module.parameters["ocd_intercept"] = [0.4, 0.4, 0.4]
    states = np.full(2, SimpleState.Local, dtype=np.int64)
    with pytest.raises(InvalidProbabilityDistribution):
        TransitionProbabilityEngine(simple_module).compute(states, _covariates(states))


def test_negative_duration_is_an_error(simple_module):
    states = np.full(2, SimpleState.Local, dtype=np.int64)
    covariates = _covariates(states, duration_in_state=[0, -1])
    with pytest.raises(InvalidCovariateDomain):
        TransitionProbabilityEngine(simple_module).compute(states, covariates)
