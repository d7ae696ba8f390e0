"""Health states of the breast cancer natural-history models.

Both model variants share the same layout: a cancer-free state, DCIS, an ordered run of
invasive stages, and the two absorbing death states. The integer value of each state is
its column in probability matrices, traces and the population ``state`` column.
"""
from dataclasses import dataclass, field
from enum import IntEnum
from typing import FrozenSet, Tuple, Type

import numpy as np


class SimpleState(IntEnum):
    NoCancer = 0
    DCIS = 1
    Local = 2
    Regional = 3
    Distant = 4
    BreastCancerDeath = 5
    OtherDeath = 6


class RefinedState(IntEnum):
    NoCancer = 0
    DCIS = 1
    Stage1 = 2
    Stage2 = 3
    Stage3 = 4
    Stage4 = 5
    BreastCancerDeath = 6
    OtherDeath = 7


@dataclass(frozen=True)
class StateModel:
    """The fixed, ordered set of mutually exclusive health states of a model variant."""

    enum: Type[IntEnum]
    cancer_stages: Tuple[IntEnum, ...]
    states: Tuple[IntEnum, ...] = field(init=False)
    disease_states: FrozenSet[IntEnum] = field(init=False)
    absorbing: FrozenSet[IntEnum] = field(init=False)

    def __post_init__(self):
        # frozen dataclass, so derived fields are set through object.__setattr__
        object.__setattr__(self, 'states', tuple(self.enum))
        object.__setattr__(self, 'disease_states', frozenset((self.dcis, *self.cancer_stages)))
        object.__setattr__(self, 'absorbing', frozenset((self.bc_death, self.oc_death)))
        assert [int(s) for s in self.states] == list(range(len(self.states))), \
            "State values must be consecutive integers starting at zero"

    @property
    def healthy(self) -> IntEnum:
        return self.enum.NoCancer

    @property
    def dcis(self) -> IntEnum:
        return self.enum.DCIS

    @property
    def bc_death(self) -> IntEnum:
        return self.enum.BreastCancerDeath

    @property
    def oc_death(self) -> IntEnum:
        return self.enum.OtherDeath

    @property
    def n_states(self) -> int:
        return len(self.states)

    @property
    def names(self) -> Tuple[str, ...]:
        return tuple(s.name for s in self.states)

    def state_from_name(self, name: str) -> IntEnum:
        return self.enum[name]

    def is_absorbing(self, state: int) -> bool:
        return state in self.absorbing

    def next_stage(self, stage: IntEnum):
        """The invasive stage following ``stage``, or ``None`` for the last stage."""
        position = self.cancer_stages.index(stage)
        if position + 1 < len(self.cancer_stages):
            return self.cancer_stages[position + 1]
        return None

    def mask(self, states: np.ndarray, members) -> np.ndarray:
        """Boolean mask of the individuals whose state is one of ``members``."""
        return np.isin(states, np.fromiter((int(s) for s in members), dtype=states.dtype))


SIMPLE_STATES = StateModel(
    enum=SimpleState,
    cancer_stages=(SimpleState.Local, SimpleState.Regional, SimpleState.Distant),
)

REFINED_STATES = StateModel(
    enum=RefinedState,
    cancer_stages=(RefinedState.Stage1, RefinedState.Stage2, RefinedState.Stage3, RefinedState.Stage4),
)
