"""Types for representing the covariates of a fixed-size cohort of individuals."""

from typing import Dict

import numpy as np
import pandas as pd

from bcsim import logging
from bcsim.core import ConfigurationError, Property

logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)


class Population:
    """A complete cohort of individuals.

    Individuals are not objects: each attribute is a column of the ``props`` dataframe,
    indexed by person 0..N-1. The cohort never grows or shrinks during a run.

    Useful properties of a population:

    `props`
        A Pandas DataFrame with the covariates of all individuals as columns.
    """

    __slots__ = ("props", "initial_size")

    def __init__(self, properties: Dict[str, Property], initial_size: int):
        """Create a new population.

        This will create the population dataframe and initialise each individual's
        properties as dataframe columns with their default values. The model variant
        will then fill in suitable starting values.

        :param properties: Dictionary defining properties (columns) to initialise
            population dataframe with, keyed by property name and with values
            :py:class:`Property` instances defining the property type.
        :param initial_size: The population size.
        """
        if initial_size <= 0:
            raise ConfigurationError(f"Population size must be positive, got {initial_size}")
        self.initial_size = initial_size
        self.props = self._create_props(initial_size, properties)
        logger.debug(key="info", data=f"Created population of {initial_size} individuals")

    @staticmethod
    def _create_props(size: int, properties: Dict[str, Property]) -> pd.DataFrame:
        return pd.DataFrame(
            data={
                property_name: property.create_series(property_name, size)
                for property_name, property in properties.items()
            },
            index=pd.RangeIndex(stop=size, name="person"),
        )

    def __len__(self) -> int:
        return len(self.props)

    def column(self, name: str) -> np.ndarray:
        """A copy of one covariate column as a numpy array."""
        return self.props[name].to_numpy(copy=True)

    def set_column(self, name: str, values: np.ndarray) -> None:
        """Replace one covariate column, keeping the declared dtype."""
        if len(values) != len(self.props):
            raise ConfigurationError(
                f"Column {name} needs {len(self.props)} values, got {len(values)}"
            )
        self.props[name] = np.asarray(values, dtype=self.props[name].dtype)

    def covariates(self) -> Dict[str, np.ndarray]:
        """All covariate columns as numpy arrays, keyed by column name."""
        return {name: self.column(name) for name in self.props.columns}
