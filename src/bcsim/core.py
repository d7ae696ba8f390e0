"""Core framework classes.

This contains things that didn't obviously go in their own file, such as
specification for parameters and properties, the errors shared across the engine, and
the base Module class for natural-history model variants.
"""
from __future__ import annotations

import json
from enum import Enum, auto
from pathlib import Path
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, Dict, List, Mapping, Optional

import numpy as np
import pandas as pd

if TYPE_CHECKING:
    from bcsim.population import Population
    from bcsim.states import StateModel


class InvalidProbabilityDistribution(ValueError):
    """A computed row of transition probabilities is not a probability distribution."""


class InvalidCovariateDomain(ValueError):
    """A covariate lies outside the domain of the function it is passed to."""


class ConfigurationError(ValueError):
    """Run configuration (sizes, start states, parameters) is inconsistent."""


class Types(Enum):
    """Possible types for parameters and properties."""
    INT = auto()
    REAL = auto()
    CATEGORICAL = auto()
    LIST = auto()


class Specifiable:
    """Base class for Parameter and Property."""

    # Property Types map to Pandas dtypes
    PANDAS_TYPE_MAP = {
        Types.INT: 'int64',
        Types.REAL: float,
        Types.CATEGORICAL: 'category',
        Types.LIST: object,
    }

    def __init__(self, type_: Types, description: str, categories: List[str] = None):
        """Create a new Specifiable.

        :param type_: an instance of Types giving the type of allowed values
        :param description: textual description of what this Specifiable represents
        :param categories: list of strings which will be the available categories
        """
        assert type_ in Types
        self.type_ = type_
        self.description = description

        if self.type_ is Types.CATEGORICAL:
            if not categories:
                raise ValueError("CATEGORICAL types require the 'categories' argument")
            self.categories = categories

    @property
    def pandas_type(self) -> type:
        """Return the Pandas type corresponding to this Specifiable."""
        return self.PANDAS_TYPE_MAP[self.type_]

    def __repr__(self) -> str:
        delimiter = " === "
        if self.type_ == Types.CATEGORICAL:
            return f'{self.type_.name}{delimiter}{self.description} (Possible values are: {self.categories})'
        return f'{self.type_.name}{delimiter}{self.description}'


class Parameter(Specifiable):
    """Used to specify parameters for model variants."""


class Property(Specifiable):
    """Used to specify per-individual columns of the population."""

    PANDAS_TYPE_DEFAULT_VALUE_MAP = {
        "int64": 0,
        float: 0.0,
        "category": float("nan"),
        object: float("nan"),
    }

    @property
    def default_value(self) -> Any:
        return self.PANDAS_TYPE_DEFAULT_VALUE_MAP[self.pandas_type]

    def create_series(self, name: str, size: int) -> pd.Series:
        """Create a Pandas Series for this property filled with its default value.

        :param name: The name for the series.
        :param size: The length of the series.
        """
        if self.type_ is Types.CATEGORICAL:
            dtype = pd.CategoricalDtype(categories=self.categories)
        else:
            dtype = self.pandas_type
        return pd.Series(
            data=[self.default_value] * size,
            name=name,
            index=range(size),
            dtype=dtype,
        )


def freeze_parameters(parameters: Mapping[str, Any]) -> Mapping[str, Any]:
    """Return a read-only view of a parameter dictionary, with lists converted to tuples."""
    return MappingProxyType({
        name: tuple(value) if isinstance(value, list) else value
        for name, value in parameters.items()
    })


class Module:
    """The base class for natural-history model variants.

    A module declares the health states it uses, the parameters it reads (and their
    types), and the per-individual covariate columns it needs. Useful attributes
    available on instances are:

    `name`
        The name of this model variant.

    `parameters`
        A dictionary of module parameters, derived from specifications in the PARAMETERS
        class attribute on a subclass. Replaced by a read-only mapping once the
        simulation is initialised.

    `sim`
        The simulation this module is part of, once registered.
    """

    # The states used by this variant; subclasses must override
    STATES: StateModel = None

    # Name of the parameter resource file in the resources folder
    RESOURCE_FILE: Optional[str] = None

    PARAMETERS: Dict[str, Parameter] = {}

    PROPERTIES: Dict[str, Property] = {}

    def __init__(self, name: Optional[str] = None, resourcefilepath: Optional[Path] = None) -> None:
        self.parameters: Dict[str, Any] = {}
        self.name = name or self.__class__.__name__
        self.resourcefilepath = resourcefilepath
        self.sim = None

    def load_parameters_from_dataframe(self, resource: pd.DataFrame) -> None:
        """Load parameters from resource dataframe, updating the module parameter dictionary

        Goes through the rows of the resource and, for each parameter declared in
        ``self.PARAMETERS``, converts the value to the declared type:

        - Integers and real numbers
        - Lists (given as JSON arrays)
        - Categorical (value must be one of the declared categories)

        :param DataFrame resource: DataFrame with a column `parameter_name` and a column `value`
        """
        resource = resource.set_index('parameter_name')
        for parameter_name in resource.index[resource.index.notnull()]:
            if parameter_name not in self.PARAMETERS:
                raise ConfigurationError(
                    f"Resource file declares '{parameter_name}' which is not a parameter of {self.name}"
                )
            parameter_definition = self.PARAMETERS[parameter_name]
            parameter_value = resource.at[parameter_name, 'value']
            error_message = (
                f"The value of '{parameter_value}' for parameter '{parameter_name}' "
                f"could not be parsed as a {parameter_definition.type_.name} data type"
            )
            if parameter_definition.type_ is Types.LIST:
                try:
                    parameter_value = json.loads(parameter_value)
                    assert isinstance(parameter_value, list)
                except (json.decoder.JSONDecodeError, TypeError, AssertionError) as exception:
                    raise ConfigurationError(error_message) from exception
            elif parameter_definition.type_ is Types.CATEGORICAL:
                categories = parameter_definition.categories
                parameter_value = str(parameter_value).strip()
                if parameter_value not in categories:
                    raise ConfigurationError(f"{error_message}\nvalid values: {categories}")
            elif parameter_definition.type_ is Types.INT:
                try:
                    parameter_value = int(str(parameter_value).strip())
                except (TypeError, ValueError) as exception:
                    raise ConfigurationError(error_message) from exception
            else:
                try:
                    parameter_value = float(parameter_value)
                except (TypeError, ValueError) as exception:
                    raise ConfigurationError(error_message) from exception

            self.parameters[parameter_name] = parameter_value

        missing = set(self.PARAMETERS) - set(self.parameters)
        if missing:
            raise ConfigurationError(f"No values given for parameters of {self.name}: {sorted(missing)}")

    def read_parameters(self, resourcefilepath: Optional[Path] = None) -> None:
        """Read parameter values from this module's resource file.

        :param resourcefilepath: path of the folder containing resource files; defaults
            to the path given when the module was created.
        """
        folder = resourcefilepath or self.resourcefilepath
        if folder is None:
            raise ConfigurationError(f"No resource file path given for {self.name}")
        self.load_parameters_from_dataframe(
            pd.read_csv(Path(folder) / self.RESOURCE_FILE, dtype={'value': str})
        )

    def initialise_population(self, population: Population, start_states: np.ndarray) -> None:
        """Set covariate values for the initial population.

        Must be implemented by subclasses.
        """
        raise NotImplementedError

    def transition_probabilities(self, origin: int, covariates: Dict[str, np.ndarray]) -> Dict[int, np.ndarray]:
        """Probabilities of leaving ``origin`` for every reachable destination.

        Must be implemented by subclasses.
        """
        raise NotImplementedError

    def update_covariates(self, population: Population, old_states: np.ndarray, new_states: np.ndarray) -> None:
        """Recompute covariates from the newly sampled states.

        Must be implemented by subclasses.
        """
        raise NotImplementedError

    def on_simulation_end(self) -> None:
        """This is called after the simulation has ended.
        Modules do not need to declare this."""
