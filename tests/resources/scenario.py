from pathlib import Path

from bcsim import logging
from bcsim.scenario import BaseScenario, make_cartesian_parameter_grid


class TestScenario(BaseScenario):
    def __init__(self):
        super().__init__(
            seed=655123742,
            initial_population_size=200,
            n_cycles=5,
            number_of_draws=3,
            runs_per_draw=2,
            resources_path=Path(__file__).parents[2] / "resources",
        )

    def log_configuration(self):
        return {
            'directory': None,
            'suppress_stdout': True,
            'custom_levels': {
                '*': logging.WARNING,
            }
        }

    def draw_parameters(self, draw_number, rng):
        return make_cartesian_parameter_grid({"cost_screening": [40.0, 80.0, 120.0]})[draw_number]
