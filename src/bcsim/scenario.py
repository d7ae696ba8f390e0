"""Creating and running sensitivity analyses of the cohort model.

Scenarios are used to specify, configure and run a single or set of cohort
simulations. A scenario is created by subclassing ``BaseScenario`` and specifying the
scenario options therein. You can override parameters of the model variant for each
draw of the scenario. See the ``BaseScenario`` class for more information.

The subclass of ``BaseScenario`` is then used to create *draws*, which can be considered
a fully-specified configuration of the scenario, or a parameter draw.

Each draw is *run* one or more times - run is a single execution of the simulation. Each
run of a draw has a different seed but is otherwise identical.

A simple example of a subclass of ``BaseScenario``::

    class ScreeningCostScenario(BaseScenario):
        def __init__(self):
            super().__init__(
                seed=12,
                initial_population_size=10_000,
                n_cycles=50,
                number_of_draws=5,
                runs_per_draw=2,
                variant="refined",
            )

        def log_configuration(self):
            return {
                'filename': 'screening_cost',
                'directory': './outputs',
                'custom_levels': {'*': logging.WARNING}
            }

        def draw_parameters(self, draw_number, rng):
            return {
                'cost_screening': rng.uniform(40.0, 80.0),
            }

In summary:

* A *scenario* specifies the configuration of the simulation: model variant,
  population size, number of cycles, discount rates and logging setup.
* A *draw* is a realisation of a scenario configuration, i.e. one set of parameter
  overrides.
* A *run* is the result of running the simulation using a specific configuration. Each
  run for the same draw will have an identical configuration except the simulation seed.
"""

import abc
import datetime
import json
import pickle
from concurrent.futures import ProcessPoolExecutor
from itertools import product
from pathlib import Path, PurePosixPath
from typing import Dict, List, Optional

import numpy as np
import pandas as pd

from bcsim import logging
from bcsim.logging.encoding import NumpyEncoder
from bcsim.logging.reader import parse_log_file
from bcsim.methods.breast_cancer import VARIANTS
from bcsim.simulation import Simulation

logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)


class BaseScenario(abc.ABC):
    """An abstract base class for creating scenarios.

    A scenario is a configuration of a simulation. Users should subclass this class and
    must implement the following methods:

    * ``__init__`` - to set scenario attributes,
    * ``log_configuration`` - to configure filename, directory and logging levels for
      simulation output.

    Users may also optionally implement:

    * ``draw_parameters`` - override parameters for draws from the scenario.
    * ``start_states`` - give each individual a starting state other than NoCancer.
    """
    def __init__(
        self,
        seed: Optional[int] = None,
        initial_population_size: Optional[int] = None,
        n_cycles: Optional[int] = None,
        number_of_draws: int = 1,
        runs_per_draw: int = 1,
        variant: str = "simple",
        cost_discount_rate: float = 0.035,
        utility_discount_rate: float = 0.035,
        trace_cycle: Optional[int] = None,
        resources_path: Path = Path("./resources"),
    ):
        """
        :param seed: The top-level seed to use for generating per run simulation seeds
            for random number generators.
        :param initial_population_size: Number of individuals in the cohort.
        :param n_cycles: Number of cycles to simulate.
        :param number_of_draws: Number of draws (distinct parameter sets) over which to
            run simulation.
        :param runs_per_draw: Number of independent model runs to perform per draw.
        :param variant: Name of the model variant, ``simple`` or ``refined``.
        :param cost_discount_rate: Discount rate per cycle applied to costs.
        :param utility_discount_rate: Discount rate per cycle applied to QALYs.
        :param trace_cycle: Cycle at which state fractions are reported in the results
            table; defaults to the last cycle.
        :param resources_path: Path to the directory containing resource files.
        """
        self.seed = seed
        self.pop_size = initial_population_size
        self.n_cycles = n_cycles
        self.number_of_draws = number_of_draws
        self.runs_per_draw = runs_per_draw
        self.variant = variant
        self.cost_discount_rate = cost_discount_rate
        self.utility_discount_rate = utility_discount_rate
        self.trace_cycle = trace_cycle
        self.resources = resources_path
        self.rng = None
        self.scenario_path = None

    @abc.abstractmethod
    def log_configuration(self, **kwargs):
        """Implementation must return a dictionary configuring logging.

        Example::

            return {
                'filename': 'test_scenario',
                'directory': './outputs',
                'custom_levels': {
                    '*': logging.WARNING,
                    'bcsim.simulation': logging.INFO
                }
            }
        """

    def module(self):
        """The model variant instance to simulate."""
        if self.variant not in VARIANTS:
            raise ValueError(f"Unknown variant '{self.variant}'; choose from {sorted(VARIANTS)}")
        return VARIANTS[self.variant](resourcefilepath=self.resources)

    def start_states(self) -> Optional[np.ndarray]:
        """State of each individual at cycle 0, or ``None`` for everyone cancer-free."""
        return None

    def draw_parameters(self, draw_number, rng):
        """Implementation must return a dictionary of parameters to override for each draw.

        The argument ``draw_number`` and a random number generator are available, if
        required.

        * Change a parameter to a fixed value: ``{'cost_screening': 75.0}``
        * Sample a value from a distribution: ``{'u_healthy': rng.uniform(0.85, 0.95)}``
        * Set a value based on the draw number: ``{'screening_interval': [1, 2, 3][draw_number]}``

        Implementation of this method in a subclass is optional. If no parameters are to
        be overridden, returns ``None`` and only one draw of the scenario is required.

        :param int draw_number: the specific draw number currently being executed
        :param numpy.random.RandomState rng: the scenario's random number generator for
            sampling from distributions
        """
        return None

    def get_log_config(self, override_output_directory=None):
        """Returns the log configuration for the scenario, with some post_processing."""
        log_config = self.log_configuration()

        # If scenario doesn't have log filename specified, we used the scenario script name
        if "filename" not in log_config or log_config["filename"] is None:
            log_config["filename"] = Path(self.scenario_path).stem

        if override_output_directory is not None:
            log_config["directory"] = override_output_directory

        # If directory is specified, we always write log files - so don't print to stdout
        if "directory" in log_config and log_config["directory"] is not None:
            log_config["suppress_stdout"] = True

        return log_config

    def save_draws(self, return_config=False, **kwargs):
        generator = DrawGenerator(self, self.number_of_draws, self.runs_per_draw)
        output_path = self.scenario_path.parent / f"{self.scenario_path.stem}_draws.json"
        config = generator.get_run_config(self.scenario_path)
        for k, v in kwargs.items():
            config[k] = v
        if return_config:
            return config
        generator.save_config(config, output_path)
        return output_path


class ScenarioLoader:
    """A utility class to load a scenario class from a file path"""
    def __init__(self, scenario_path):
        scenario_module = ScenarioLoader._load_scenario_script(scenario_path)
        scenario_class = ScenarioLoader._get_scenario_class(scenario_module)
        self.scenario = scenario_class()
        self.scenario.scenario_path = Path(scenario_path)

    @staticmethod
    def _load_scenario_script(path):
        import importlib.util
        spec = importlib.util.spec_from_file_location(Path(path).stem, path)
        foo = importlib.util.module_from_spec(spec)
        spec.loader.exec_module(foo)
        return foo

    @staticmethod
    def _get_scenario_class(scenario_module):
        import inspect
        classes = inspect.getmembers(scenario_module, inspect.isclass)
        classes = [c for (n, c) in classes if BaseScenario == c.__base__]
        assert len(classes) == 1, "Exactly one subclass of BaseScenario should be defined in the scenario script"
        return classes[0]

    def get_scenario(self):
        return self.scenario


class DrawGenerator:
    """Creates and saves a JSON representation of draws from a scenario."""
    def __init__(self, scenario_class, number_of_draws, runs_per_draw):
        self.scenario = scenario_class

        assert self.scenario.seed is not None, "Must set a seed for the scenario. Add `self.seed = <integer>`"
        self.scenario.rng = np.random.RandomState(seed=self.scenario.seed)
        self.number_of_draws = number_of_draws
        self.runs_per_draw = runs_per_draw
        self.draws = self.setup_draws()

    def setup_draws(self):
        assert self.scenario.number_of_draws > 0, "Number of draws must be greater than 0"
        assert self.scenario.runs_per_draw > 0, "Number of samples/draw must be greater than 0"
        draws = [self.get_draw(d) for d in range(0, self.scenario.number_of_draws)]
        if draws[0]["parameters"] is None:
            assert self.scenario.number_of_draws == 1, "Number of draws should equal one if no variable parameters"
        return draws

    def get_draw(self, draw_number):
        return {
            "draw_number": draw_number,
            "parameters": self.scenario.draw_parameters(draw_number, self.scenario.rng),
        }

    def get_run_config(self, scenario_path):
        return {
            "scenario_script_path": str(PurePosixPath(scenario_path)),
            "scenario_seed": self.scenario.seed,
            "runs_per_draw": self.runs_per_draw,
            "draws": self.draws,
        }

    @staticmethod
    def save_config(config, output_path):
        with open(output_path, "w") as f:
            f.write(json.dumps(config, indent=2, cls=NumpyEncoder))


class SampleRunner:
    """Reads scenario draws from a JSON configuration and handles running of samples"""
    def __init__(self, run_configuration_path):
        self.run_configuration_path = run_configuration_path
        with open(run_configuration_path, "r") as f:
            self.run_config = json.load(f)
        self.scenario = ScenarioLoader(self.run_config["scenario_script_path"]).get_scenario()
        logger.info(key="message", data=f"Loaded scenario using {run_configuration_path}")
        logger.info(key="message", data=f"Found {self.number_of_draws} draws; {self.runs_per_draw} runs/draw")

    @property
    def number_of_draws(self):
        return len(self.run_config["draws"])

    @property
    def runs_per_draw(self):
        return self.run_config["runs_per_draw"]

    def get_draw(self, draw_number):
        total = self.number_of_draws
        assert draw_number < total, f"Cannot get draw {draw_number}; only {total} defined."
        return self.run_config["draws"][draw_number]

    def get_samples_for_draw(self, draw):
        for sample_number in range(0, self.run_config["runs_per_draw"]):
            yield self.get_sample(draw, sample_number)

    def get_sample(self, draw, sample_number):
        assert sample_number < self.runs_per_draw, \
            f"Cannot get sample {sample_number}; samples/draw={self.runs_per_draw}"
        sample = draw.copy()
        sample["sample_number"] = sample_number

        # Instead of using the random number generator to create a seed for the simulation, we use an integer hash
        # function to get an integer based on the sum of the scenario seed and sample_number. This means the
        # seed can be created independently and out-of-order (i.e. instead of sampling a seed for each sample in order)
        sample["simulation_seed"] = SampleRunner.low_bias_32(self.run_config["scenario_seed"] + sample_number)
        return sample

    def run_sample_by_number(self, output_directory, draw_number, sample_number) -> Dict:
        """Runs a single sample from a draw, saving any log output to the given directory

        :returns: a results row with the discounted mean cost and QALYs, and the state
            fractions at the scenario's trace cycle
        """
        draw = self.get_draw(draw_number)
        sample = self.get_sample(draw, sample_number)
        log_config = self.scenario.get_log_config(output_directory)

        logger.info(key="message", data=f"Running draw {sample['draw_number']}, sample {sample['sample_number']}")

        sim = Simulation(
            module=self.scenario.module(),
            seed=sample["simulation_seed"],
            log_config=log_config,
            cost_discount_rate=self.scenario.cost_discount_rate,
            utility_discount_rate=self.scenario.utility_discount_rate,
        )
        if sample["parameters"] is not None:
            sim.override_parameters(sample["parameters"])
        sim.make_initial_population(n=self.scenario.pop_size, start_states=self.scenario.start_states())
        result = sim.simulate(n_cycles=self.scenario.n_cycles)

        if sim.log_filepath is not None and log_config.get("directory"):
            outputs = parse_log_file(sim.log_filepath)
            for key, output in outputs.items():
                if key.startswith("bcsim."):
                    with open(Path(log_config["directory"]) / f"{key}.pickle", "wb") as f:
                        pickle.dump(output, f)

        trace_cycle = self.scenario.n_cycles if self.scenario.trace_cycle is None else self.scenario.trace_cycle
        row = {
            "draw_number": draw_number,
            "sample_number": sample_number,
            "simulation_seed": sample["simulation_seed"],
            "tc_hat": result.tc_hat,
            "te_hat": result.te_hat,
        }
        row.update({f"trace_{name}": value for name, value in result.trace.loc[trace_cycle].items()})
        return row

    def run(self, n_workers: int = 1, output_directory=None) -> pd.DataFrame:
        """Run all samples for the scenario. Used by `bcsim scenario-run` to run the scenario locally

        :param n_workers: number of worker processes; samples run one after another when 1
        :param output_directory: replaces the directory given by the scenario's log configuration
        :returns: results table with one row per sample, in draw then sample order
        """
        log_config = self.scenario.get_log_config(output_directory)

        root_dir = None
        if log_config.get("directory"):  # i.e. write output files
            timestamp = datetime.datetime.now(datetime.timezone.utc).strftime("%Y-%m-%dT%H%M%SZ")
            root_dir = Path(log_config["directory"]) / (Path(log_config["filename"]).stem + "-" + timestamp)

        jobs = []
        for draw in range(0, self.number_of_draws):
            for sample in range(0, self.runs_per_draw):
                draw_dir = None
                if root_dir is not None:
                    draw_dir = root_dir / f"{draw}/{sample}"
                    draw_dir.mkdir(parents=True, exist_ok=True)
                    draw_dir = str(draw_dir)
                jobs.append((draw_dir, draw, sample))

        if n_workers > 1:
            with ProcessPoolExecutor(max_workers=n_workers) as executor:
                futures = [
                    executor.submit(_run_sample_in_worker, self.run_configuration_path, *job) for job in jobs
                ]
                # result() re-raises the first failure
                rows = [future.result() for future in futures]
        else:
            rows = [self.run_sample_by_number(*job) for job in jobs]

        results = pd.DataFrame(rows)
        if root_dir is not None:
            results.to_csv(root_dir / "results.csv", index=False)
        return results

    @staticmethod
    def low_bias_32(x):
        """A simple integer hash function with uniform distribution. Following description taken from
        https://github.com/skeeto/hash-prospector

            The integer hash function transforms an integer hash key into an integer hash result. For a hash function,
            the distribution should be uniform. This implies when the hash result is used to calculate hash bucket
            address, all buckets are equally likely to be picked. In addition, similar hash keys should be hashed to
            very different hash results. Ideally, a single bit change in the hash key should influence all bits of the
            hash result.

        :param: x an integer
        :returns: an integer
        """
        x *= 0x7feb352d
        x ^= x >> 15
        x *= 0x846ca68b
        x ^= x >> 16
        return x % (2 ** 32)


def _run_sample_in_worker(run_configuration_path, output_directory, draw_number, sample_number):
    runner = SampleRunner(run_configuration_path)
    return runner.run_sample_by_number(output_directory, draw_number, sample_number)


def make_cartesian_parameter_grid(parameter_values_dict) -> List[dict]:
    """Make a list of dictionaries corresponding to a grid across parameter space.

    The parameters values in each parameter dictionary corresponds to an element in the
    Cartesian product of iterables describing the values taken by a collection of
    parameters.

    Intended for use in ``BaseScenario.draw_parameters`` to determine the set of
    parameters for a scenario draw.

    Example usage (in ``BaseScenario.draw_parameters``)::

        return make_cartesian_parameter_grid(
            {
                "cost_screening": np.linspace(40.0, 80.0, 5),
                "age_policy": ["freeze_on_exit", "always_increment"],
            }
        )[draw_number]

    A one-way sensitivity analysis is a grid over a single parameter.

    :param dict parameter_values_dict: A dictionary mapping from parameter names to
        iterables of the values over which parameter should take in the grid.

    :returns: A list of dictionaries mapping from parameter names to parameter values,
        with each dictionary in the list corresponding to a single point in the
        Cartesian grid across the parameter space.
    """
    names = list(parameter_values_dict)
    return [
        dict(zip(names, parameter_values))
        for parameter_values in product(*parameter_values_dict.values())
    ]
