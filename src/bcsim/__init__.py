"""
The top-level bcsim package.

We import our key classes so they're available in the main namespace.
"""
from importlib.metadata import PackageNotFoundError, version

from .core import (  # noqa
    ConfigurationError,
    InvalidCovariateDomain,
    InvalidProbabilityDistribution,
    Module,
    Parameter,
    Property,
    Types,
)
from .population import Population  # noqa
from .results import RunResult  # noqa
from .simulation import Simulation  # noqa
from .states import REFINED_STATES, SIMPLE_STATES, RefinedState, SimpleState  # noqa

try:
    __version__ = version("bcsim")
except PackageNotFoundError:
    # package is not installed
    pass
