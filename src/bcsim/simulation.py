"""The main simulation controller."""

from __future__ import annotations

import datetime
import time
from pathlib import Path
from typing import TYPE_CHECKING, Any, Dict, Optional, Sequence

import dill
import numpy as np

from bcsim import logging
from bcsim.core import ConfigurationError, Module, Types, freeze_parameters
from bcsim.costs import accrue_costs
from bcsim.population import Population
from bcsim.qaly import accrue_utilities
from bcsim.results import RunResult, discount_weights, make_trace, make_transition_log
from bcsim.sampling import sample_categorical
from bcsim.transitions import TransitionProbabilityEngine

if TYPE_CHECKING:
    from bcsim.logging.core import LogLevel

logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)


class SimulationPreviouslyInitialisedError(Exception):
    """Exception raised when trying to initialise an already initialised simulation."""


class SimulationNotInitialisedError(Exception):
    """Exception raised when trying to run simulation before initialising."""


class Simulation:
    """The main control centre for a cohort simulation.

    This class holds references to all the information required to run a complete
    simulation of one model variant: the population, the transition engine, the state
    trajectory and the cost and utility matrices.

    Key attributes include:

    :ivar cycle: The current simulation cycle; 0 is the initial condition.
    :ivar module: The natural-history model variant being simulated.
    :ivar population: The cohort being simulated.
    :ivar rng: The simulation-level random number generator, used for all sampling.
    :ivar trajectory: N x (T + 1) matrix of states, filled as the simulation runs.
    :ivar costs: N x (T + 1) matrix of undiscounted costs.
    :ivar utilities: N x (T + 1) matrix of undiscounted QALYs.
    """

    def __init__(
        self,
        *,
        module: Module,
        seed: Optional[int] = None,
        log_config: Optional[dict] = None,
        cost_discount_rate: float = 0.035,
        utility_discount_rate: float = 0.035,
        resourcefilepath: Optional[Path] = None,
    ):
        """Create a new simulation.

        :param module: The model variant to simulate; its parameters are read from its
            resource file unless they have already been loaded.
        :param seed: The seed for random number generator. class will create one if not
            supplied
        :param log_config: Dictionary specifying logging configuration for this
            simulation. Can have entries: `filename` - prefix for log file name, final
            file name will have a date time appended, if not present default is to not
            output log to a file; `directory` - path to output directory to write log
            file to, default if not specified is to output to the `outputs` folder;
            `custom_levels` - dictionary to set logging levels, '*' can be used as a key
            for all bcsim loggers; `suppress_stdout` -  if `True`, suppresses
            logging to standard output stream (default is `False`).
        :param cost_discount_rate: Discount rate per cycle applied to costs.
        :param utility_discount_rate: Discount rate per cycle applied to QALYs.
        :param resourcefilepath: Path to resource files folder, used when the module
            was not given one.
        """
        self.cycle = 0
        self.n_cycles: Optional[int] = None
        self.module = module
        module.sim = self
        self.output_file = None
        self.population: Optional[Population] = None
        self.engine = TransitionProbabilityEngine(module)
        self.cost_discount_rate = cost_discount_rate
        self.utility_discount_rate = utility_discount_rate
        self.trajectory: Optional[np.ndarray] = None
        self.costs: Optional[np.ndarray] = None
        self.utilities: Optional[np.ndarray] = None
        self._record_trace = True
        self._record_transitions = False

        # logging
        if log_config is None:
            log_config = {}
        self._log_filepath = self._configure_logging(**log_config)

        # random number generator
        seed_from = "auto" if seed is None else "user"
        self._seed = seed
        self._seed_seq = np.random.SeedSequence(seed)
        logger.info(
            key="info",
            data=f"Simulation RNG {seed_from} entropy = {self._seed_seq.entropy}",
        )
        self.rng = np.random.RandomState(np.random.MT19937(self._seed_seq))

        if not module.parameters:
            module.read_parameters(resourcefilepath)

        # Whether simulation has been initialised
        self._initialised = False

    def _configure_logging(
        self,
        filename: Optional[str] = None,
        directory: Path | str = "./outputs",
        custom_levels: Optional[dict[str, LogLevel]] = None,
        suppress_stdout: bool = False
    ):
        """Configure logging of simulation outputs.

        Can write log output to a file in addition the default of `stdout`. Minimum
        custom levels for each logger can be specified for filtering out messages.

        :param filename: Prefix for log file name, final file name will have a date time
            appended.
        :param directory: Path to output directory, default value is the outputs folder.
        :param custom_levels: Dictionary to set logging levels, '*' can be used as a key
            for all bcsim loggers, for example
            ``{'*': logging.WARNING, 'bcsim.simulation': logging.INFO}``.
        :param suppress_stdout: If `True`, suppresses logging to standard output stream
            (default is `False`).

        :return: Path of the log file if a filename has been given.
        """
        logging.initialise(
            add_stdout_handler=not suppress_stdout,
            simulation_cycle_getter=lambda: self.cycle,
        )

        if custom_levels:
            logging.set_logging_levels(custom_levels)

        if filename and directory:
            timestamp = datetime.datetime.now().strftime("%Y-%m-%dT%H%M%S")
            Path(directory).mkdir(parents=True, exist_ok=True)
            log_path = Path(directory) / f"{filename}__{timestamp}.log"
            self.output_file = logging.set_output_file(log_path)
            logger.info(key='info', data=f'Log output: {log_path}')
            return log_path

        return None

    @property
    def log_filepath(self) -> Path:
        """The path to the log file, if one has been set."""
        return self._log_filepath

    @property
    def state_model(self):
        return self.module.STATES

    def override_parameters(self, overrides: Dict[str, Any]) -> None:
        """Replace parameter values of the model variant before the simulation starts.

        :param overrides: new values keyed by parameter name; each must be a declared
            parameter and have a value of its declared type.
        """
        if self._initialised:
            raise SimulationPreviouslyInitialisedError(
                "Parameters cannot be changed once the simulation has been initialised"
            )
        for name, value in overrides.items():
            if name not in self.module.PARAMETERS:
                raise ConfigurationError(f"Unknown parameter '{name}' for {self.module.name}")
            self.module.parameters[name] = _check_parameter_value(
                name, self.module.PARAMETERS[name], value
            )
            logger.info(
                key="override_parameter",
                data={"parameter": name, "new_value": str(value)},
                description="parameter values changed before the simulation started",
            )

    def make_initial_population(self, *, n: int, start_states: Optional[Sequence[int]] = None) -> None:
        """Create the initial population to simulate.

        :param n: The number of individuals to create; must be given as
            a keyword parameter for clarity.
        :param start_states: State of each individual at cycle 0; everyone starts
            cancer-free if not given.
        """
        start = time.time()
        if start_states is None:
            start_states = np.full(n, int(self.state_model.healthy), dtype=np.int64)
        else:
            start_states = np.asarray(start_states, dtype=np.int64)
            if start_states.shape != (n,):
                raise ConfigurationError(
                    f"Start states have shape {start_states.shape}, expected ({n},)"
                )

        self.population = Population(self.module.PROPERTIES, n)
        self.module.initialise_population(self.population, start_states)

        end = time.time()
        logger.info(key="info", data=f"make_initial_population() {end - start} s")

    def initialise(self, *, n_cycles: int, record_trace: bool = True, record_transitions: bool = False) -> None:
        """Fix parameters, allocate the output matrices and accrue the cycle 0 values.

        :param n_cycles: Number of cycles to simulate - the output matrices have
            ``n_cycles + 1`` columns.
        :param record_trace: Whether the result carries the per-cycle state fractions.
        :param record_transitions: Whether the result carries the transition-pair log.
        """
        if self._initialised:
            msg = "initialise method should only be called once"
            raise SimulationPreviouslyInitialisedError(msg)
        if self.population is None:
            raise ConfigurationError("make_initial_population must be called before initialise")
        if n_cycles < 1:
            raise ConfigurationError(f"Number of cycles must be positive, got {n_cycles}")

        self.module.validate_parameters()
        self.module.parameters = freeze_parameters(self.module.parameters)

        self.n_cycles = n_cycles
        self._record_trace = record_trace
        self._record_transitions = record_transitions

        n = len(self.population)
        self.trajectory = np.zeros((n, n_cycles + 1), dtype=np.int8)
        self.costs = np.zeros((n, n_cycles + 1), dtype=np.float64)
        self.utilities = np.zeros((n, n_cycles + 1), dtype=np.float64)

        self.cycle = 0
        covariates = self.population.covariates()
        self.trajectory[:, 0] = covariates["state"]
        self.costs[:, 0], self.utilities[:, 0] = self._accrue(covariates["state"], covariates)
        # entry to a starting disease or breast cancer death state is charged in cycle 1,
        # where duration and death time are still 0
        entered = self.state_model.mask(
            covariates["state"], (*self.state_model.disease_states, self.state_model.bc_death)
        )
        self.costs[entered, 0] = 0.0
        self._log_cycle()

        self._initialised = True

    def _accrue(self, states: np.ndarray, covariates: Dict[str, np.ndarray]):
        """Costs and utilities of ``states`` against the given covariate values."""
        p = self.module.parameters
        costs = accrue_costs(
            p,
            self.state_model,
            states,
            covariates["duration_in_state"],
            covariates["time_since_death_entry"],
            covariates["age_time"],
        )
        utilities = accrue_utilities(p, self.state_model, states, covariates["age_time"])
        return costs, utilities

    def _step(self) -> None:
        """Advance the whole cohort by one cycle."""
        covariates = self.population.covariates()
        old_states = covariates["state"]

        probabilities = self.engine.compute(old_states, covariates)
        new_states = sample_categorical(probabilities, self.rng, self.engine.tolerance)

        # new states are costed against the covariates of the cycle just ended
        t = self.cycle + 1
        self.costs[:, t], self.utilities[:, t] = self._accrue(new_states, covariates)

        self.population.set_column("state", new_states)
        self.module.update_covariates(self.population, old_states, new_states)
        self.trajectory[:, t] = new_states
        self.cycle = t
        self._log_cycle()

    def _log_cycle(self) -> None:
        t = self.cycle
        counts = np.bincount(self.trajectory[:, t], minlength=self.state_model.n_states)
        logger.info(
            key="state_counts",
            data=dict(zip(self.state_model.names, counts)),
            description="number of individuals in each state",
        )
        logger.debug(
            key="cycle_summary",
            data={
                "mean_cost": self.costs[:, t].mean(),
                "mean_utility": self.utilities[:, t].mean(),
            },
            description="undiscounted mean cost and QALYs accrued in the cycle",
        )

    def run_simulation_to(self, *, to_cycle: int) -> None:
        """Run simulation up to a specified cycle.

        Unlike :py:meth:`simulate` this method does not initialise or finalise
        simulation and may be called repeatedly; running to cycle 5 and then to 10 is
        the same as running to 10 directly.

        :param to_cycle: Cycle to simulate up to and including - must be at most the
            number of cycles specified in call to :py:meth:`initialise`.
        """
        if not self._initialised:
            msg = "Simulation must be initialised before calling run_simulation_to"
            raise SimulationNotInitialisedError(msg)
        if to_cycle > self.n_cycles:
            msg = f"to_cycle {to_cycle} after simulation end cycle {self.n_cycles}"
            raise ValueError(msg)
        if to_cycle < self.cycle:
            msg = f"to_cycle {to_cycle} before current cycle {self.cycle}"
            raise ValueError(msg)
        while self.cycle < to_cycle:
            self._step()

    def finalise(self, wall_clock_time: Optional[float] = None) -> RunResult:
        """Discount the accrued values, close the logging file and return the results.

        Only cycles simulated so far are included.

        :param wall_clock_time: Optional argument specifying total time taken to
            simulate, to be written out to log before closing.
        """
        if not self._initialised:
            msg = "Simulation must be initialised before calling finalise"
            raise SimulationNotInitialisedError(msg)
        self.module.on_simulation_end()

        columns = self.cycle + 1
        trajectory = self.trajectory[:, :columns]
        costs = self.costs[:, :columns]
        utilities = self.utilities[:, :columns]
        tc = costs @ discount_weights(self.cost_discount_rate, self.cycle)
        te = utilities @ discount_weights(self.utility_discount_rate, self.cycle)

        result = RunResult(
            variant=self.module.name,
            seed=self._seed,
            population_size=len(self.population),
            n_cycles=self.cycle,
            tc=tc,
            te=te,
            tc_hat=float(tc.mean()),
            te_hat=float(te.mean()),
            trajectory=trajectory,
            costs=costs,
            utilities=utilities,
            trace=make_trace(trajectory, self.state_model) if self._record_trace else None,
            transition_log=(
                make_transition_log(trajectory, self.state_model) if self._record_transitions else None
            ),
        )
        logger.info(key="summary", data=result.summary(), description="discounted mean cost and QALYs")
        if wall_clock_time is not None:
            logger.info(key="info", data=f"simulate() {wall_clock_time} s")
        self.close_output_file()
        return result

    def close_output_file(self) -> None:
        """Close logging file if open."""
        if self.output_file:
            # From Python logging.shutdown
            try:
                self.output_file.acquire()
                self.output_file.flush()
                self.output_file.close()
            except (OSError, ValueError):
                pass
            finally:
                self.output_file.release()
                self.output_file = None

    def simulate(self, *, n_cycles: int, record_trace: bool = True, record_transitions: bool = False) -> RunResult:
        """Simulate the given number of cycles

        :param n_cycles: Number of cycles to simulate. Must be given as a keyword
            parameter for clarity.
        """
        start = time.time()
        self.initialise(n_cycles=n_cycles, record_trace=record_trace, record_transitions=record_transitions)
        self.run_simulation_to(to_cycle=n_cycles)
        return self.finalise(time.time() - start)

    def save_to_pickle(self, pickle_path: Path) -> None:
        """Save simulation state to a pickle file using :py:mod:`dill`.

        :param pickle_path: File path to save simulation state to.
        """
        with open(pickle_path, "wb") as pickle_file:
            dill.dump(self, pickle_file)

    @staticmethod
    def load_from_pickle(
        pickle_path: Path, log_config: Optional[dict] = None
    ) -> Simulation:
        """Load simulation state from a pickle file using :py:mod:`dill`.

        :param pickle_path: File path to load simulation state from.
        :param log_config: New log configuration to override previous configuration. If
            `None` previous configuration (including output file) will be retained.

        :returns: Loaded :py:class:`Simulation` object.
        """
        with open(pickle_path, "rb") as pickle_file:
            simulation = dill.load(pickle_file)
        if log_config is not None:
            simulation._log_filepath = simulation._configure_logging(**log_config)
        return simulation


def _check_parameter_value(name: str, definition, value: Any) -> Any:
    """Check an overriding value has the declared type of a parameter, converting lists."""
    type_ = definition.type_
    if type_ is Types.LIST:
        ok = isinstance(value, (list, tuple, np.ndarray))
        value = list(value) if ok else value
    elif type_ is Types.REAL:
        ok = isinstance(value, (int, float, np.number)) and not isinstance(value, (bool, np.bool_))
        value = float(value) if ok else value
    elif type_ is Types.INT:
        ok = isinstance(value, (int, np.integer)) and not isinstance(value, (bool, np.bool_))
        value = int(value) if ok else value
    else:
        ok = value in definition.categories
    if not ok:
        raise ConfigurationError(
            f"Value {value!r} for parameter '{name}' is not of type {type_.name}"
        )
    return value
