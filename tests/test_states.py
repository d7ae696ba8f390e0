import numpy as np

from bcsim.states import REFINED_STATES, SIMPLE_STATES, RefinedState, SimpleState


def test_simple_states():
    assert SIMPLE_STATES.n_states == 7
    assert SIMPLE_STATES.names == (
        'NoCancer', 'DCIS', 'Local', 'Regional', 'Distant', 'BreastCancerDeath', 'OtherDeath'
    )
    assert SIMPLE_STATES.absorbing == {SimpleState.BreastCancerDeath, SimpleState.OtherDeath}
    assert SIMPLE_STATES.disease_states == {
        SimpleState.DCIS, SimpleState.Local, SimpleState.Regional, SimpleState.Distant
    }


def test_refined_states():
    assert REFINED_STATES.n_states == 8
    assert REFINED_STATES.cancer_stages == (
        RefinedState.Stage1, RefinedState.Stage2, RefinedState.Stage3, RefinedState.Stage4
    )
    assert REFINED_STATES.state_from_name('Stage3') is RefinedState.Stage3
    assert REFINED_STATES.healthy is RefinedState.NoCancer
    assert len(REFINED_STATES.absorbing) == 2


def test_state_values_are_matrix_columns():
    for state_model in (SIMPLE_STATES, REFINED_STATES):
        assert [int(s) for s in state_model.states] == list(range(state_model.n_states))
        assert state_model.names[int(state_model.bc_death)] == 'BreastCancerDeath'


def test_next_stage():
    assert SIMPLE_STATES.next_stage(SimpleState.Local) is SimpleState.Regional
    assert SIMPLE_STATES.next_stage(SimpleState.Distant) is None
    assert REFINED_STATES.next_stage(RefinedState.Stage3) is RefinedState.Stage4
    assert REFINED_STATES.next_stage(RefinedState.Stage4) is None


def test_absorbing_and_mask():
    assert SIMPLE_STATES.is_absorbing(SimpleState.OtherDeath)
    assert not SIMPLE_STATES.is_absorbing(SimpleState.Distant)

    states = np.array([0, 1, 2, 5, 6, 4], dtype=np.int64)
    mask = SIMPLE_STATES.mask(states, SIMPLE_STATES.disease_states)
    assert mask.tolist() == [False, True, True, False, False, True]
