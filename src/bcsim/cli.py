"""The bcsim command-line interface"""
import json
import tempfile
from pathlib import Path

import click
import matplotlib.pyplot as plt
import pandas as pd

from bcsim.analysis.utils import plot_trace
from bcsim.core import ConfigurationError
from bcsim.logging.encoding import NumpyEncoder
from bcsim.methods.breast_cancer import VARIANTS
from bcsim.scenario import SampleRunner, ScenarioLoader
from bcsim.simulation import Simulation


@click.group()
@click.option("--verbose", "-v", is_flag=True, default=False, help="Print structured log output to stdout")
@click.pass_context
def cli(ctx, verbose):
    """bcsim - the breast cancer cohort simulation command line utility.

    * run a single cohort of one model variant
    * run scenarios (sensitivity analyses) locally
    """
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose


@cli.command()
@click.option("--variant", type=click.Choice(sorted(VARIANTS)), default="simple", show_default=True)
@click.option("--population", "-n", type=int, default=10_000, show_default=True, help="Cohort size")
@click.option("--cycles", "-t", type=int, default=50, show_default=True, help="Number of cycles")
@click.option("--seed", type=int, default=None, help="Seed for the simulation random number generator")
@click.option("--resources", type=click.Path(exists=True, file_okay=False), default="./resources",
              show_default=True, help="Folder containing the parameter resource files")
@click.option("--cost-discount-rate", type=float, default=0.035, show_default=True)
@click.option("--utility-discount-rate", type=float, default=0.035, show_default=True)
@click.option("--output-dir", type=click.Path(file_okay=False), default=None,
              help="Write the log, results and trace to this folder")
@click.option("--trace", is_flag=True, help="Print the fraction of the cohort in each state by cycle")
@click.option("--plot", is_flag=True, help="Save a plot of the trace to the output folder")
@click.pass_context
def run(ctx, variant, population, cycles, seed, resources, cost_discount_rate, utility_discount_rate,
        output_dir, trace, plot):
    """Run one cohort of the chosen model variant and print the discounted totals."""
    if plot and output_dir is None:
        raise click.UsageError("--plot requires --output-dir")

    log_config = {"suppress_stdout": not ctx.obj["verbose"]}
    if output_dir is not None:
        log_config.update({"filename": f"bcsim_{variant}", "directory": output_dir})

    try:
        sim = Simulation(
            module=VARIANTS[variant](resourcefilepath=Path(resources)),
            seed=seed,
            log_config=log_config,
            cost_discount_rate=cost_discount_rate,
            utility_discount_rate=utility_discount_rate,
        )
        sim.make_initial_population(n=population)
        result = sim.simulate(n_cycles=cycles)
    except ConfigurationError as e:
        raise click.ClickException(str(e)) from e

    for key, value in result.summary().items():
        click.echo(f"{key}: {value}")

    if trace:
        click.echo(result.trace.to_string())

    if output_dir is not None:
        output_dir = Path(output_dir)
        pd.DataFrame([result.summary()]).to_csv(output_dir / "results.csv", index=False)
        result.trace.to_csv(output_dir / "trace.csv")
        if plot:
            fig, ax = plt.subplots(figsize=(8, 5))
            plot_trace(ax, result.trace)
            fig.savefig(output_dir / "trace.png", bbox_inches="tight")
            plt.close(fig)
        click.echo(f"Results written to {output_dir}")


@cli.command()
@click.argument("scenario_file", type=click.Path(exists=True))
@click.option("--draw-only", is_flag=True, help="Only generate draws; do not run the simulation")
@click.option("--draw", "-d", nargs=2, type=int, help="Run only this draw and sample")
@click.option("--output-dir", type=str)
@click.option("--workers", type=int, default=1, show_default=True, help="Number of worker processes")
def scenario_run(scenario_file, draw_only, draw: tuple, output_dir=None, workers=1):
    """Run the specified scenario locally.

    SCENARIO_FILE is path to file containing a scenario class
    """
    scenario = load_scenario(scenario_file)
    config = scenario.save_draws(return_config=True)
    json_string = json.dumps(config, indent=2, cls=NumpyEncoder)

    if draw_only:
        # pretty-print json
        click.echo(json_string)
        return

    with tempfile.TemporaryDirectory() as tmp:
        run_config_path = Path(tmp) / "draws.json"
        run_config_path.write_text(json_string)
        runner = SampleRunner(run_config_path)

        if draw:
            results = pd.DataFrame(
                [runner.run_sample_by_number(output_directory=output_dir, draw_number=draw[0], sample_number=draw[1])]
            )
        else:
            results = runner.run(n_workers=workers, output_directory=output_dir)

    click.echo(results.to_string(index=False))


def load_scenario(scenario_file):
    """Load the Scenario class from the specified file"""
    scenario_path = Path(scenario_file)
    scenario_class = ScenarioLoader(scenario_path.parent / scenario_path.name).get_scenario()
    click.echo(f"Found class {scenario_class.__class__.__name__} in {scenario_path}")
    return scenario_class
