# Copyright (c) Syntropy Systems
"""winnow select command."""
from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING, Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table

from winnow.config import load_config
from winnow.errors import ConfigurationError, HostDataError
from winnow.experiment_file import ExperimentFile
from winnow.models.experiment import Guarantee, ProcedureParameters
from winnow.procedures import get_procedure

if TYPE_CHECKING:
    from winnow.local import LocalExperiment
    from winnow.models.experiment import ResponseDef, SelectionOutcome

console = Console()

EXIT_CANCELED = 130

_GUARANTEE_TEXT = {
    Guarantee.SELECTED: "[green]selected with statistical guarantee[/green]",
    Guarantee.RINOTT_VOID: (
        "[yellow]best guess only: Rinott sample size exceeded the replication limit[/yellow]"
    ),
    Guarantee.REPLICATION_LIMIT: (
        "[yellow]replication limit reached with several scenarios left[/yellow]"
    ),
    Guarantee.CANCELED: "[red]canceled[/red]",
    Guarantee.TRIVIAL: "[dim]nothing to select from[/dim]",
}


def enable_verbose_logging() -> None:
    """Send winnow's log records to the console."""
    logger = logging.getLogger("winnow")
    if not any(isinstance(h, RichHandler) for h in logger.handlers):
        logger.addHandler(RichHandler(console=console, show_path=False))
    logger.setLevel(logging.DEBUG)


def build_results_table(
    experiment: LocalExperiment, response: ResponseDef, outcome: SelectionOutcome
) -> Table:
    """One row per scenario: its fate, replications and mean."""
    table = Table(title=f"{experiment.name} ({outcome.procedure.upper()})")
    table.add_column("Scenario", style="cyan")
    table.add_column("Status")
    table.add_column("Replications", justify="right")
    table.add_column(f"Mean {response.name}", justify="right")

    eliminated = set(outcome.eliminated)
    for scenario in experiment.scenarios:
        if scenario.name == outcome.best:
            status = "[green]best[/green]"
        elif scenario.name in eliminated:
            status = "[dim]eliminated[/dim]"
        elif scenario.active:
            status = "[yellow]in contention[/yellow]"
        else:
            status = "[dim]inactive[/dim]"

        mean = experiment.get_response_value(scenario, response)
        table.add_row(
            scenario.name,
            status,
            str(scenario.replications_completed),
            "-" if mean is None else f"{mean:.4g}",
        )
    return table


def select(
    experiment_path: Path = typer.Argument(..., help="Experiment YAML file"),
    procedure: Optional[str] = typer.Option(
        None,
        "--procedure",
        "-p",
        help="Selection procedure: kn or gsp",
    ),
    confidence: Optional[float] = typer.Option(
        None,
        "--confidence",
        "-c",
        help="Probability of correct selection",
    ),
    indifference_zone: Optional[float] = typer.Option(
        None,
        "--indifference-zone",
        "-d",
        help="Smallest difference in means worth detecting",
    ),
    replication_limit: Optional[int] = typer.Option(
        None,
        "--replication-limit",
        "-n",
        help="Maximum replications per scenario",
    ),
    workers: Optional[int] = typer.Option(
        None,
        "--workers",
        "-w",
        help="Replications to run at once",
    ),
    config_path: Optional[Path] = typer.Option(
        None,
        "--config",
        help="Config file (default: nearest .winnow/config.yaml)",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Log waves and screening decisions",
    ),
) -> None:
    """Select the best scenario of an experiment.

    Runs the scenarios' replications locally and screens them with the
    chosen procedure until one is left or the replication limit is hit.

    Example:
        winnow select staffing.yaml --procedure gsp --indifference-zone 0.5

    """
    if verbose:
        enable_verbose_logging()

    try:
        config = load_config(config_path)
        spec = ExperimentFile.from_yaml(experiment_path)
        options = {
            "confidence_level": confidence,
            "indifference_zone": indifference_zone,
            "replication_limit": replication_limit,
        }
        # Command line beats the experiment file, which beats config.yaml
        overrides = {**spec.parameters, **{k: v for k, v in options.items() if v is not None}}
        params = ProcedureParameters.from_config(config, **overrides)
        selector = get_procedure(
            procedure or spec.procedure or config.procedure,
            params,
            result_buffer=config.result_buffer,
        )
        experiment = spec.build_experiment(config, workers=workers)
    except ConfigurationError as e:
        console.print(f"[red]Error:[/red] {escape(str(e))}")
        raise typer.Exit(1) from e

    with experiment:
        try:
            status = f"Running {selector.name.upper()} on {len(spec.scenarios)} scenario(s)..."
            with console.status(status):
                outcome = selector.run(experiment)
        except KeyboardInterrupt as e:
            experiment.cancel()
            console.print("\n[yellow]Selection canceled[/yellow]")
            raise typer.Exit(EXIT_CANCELED) from e
        except (ConfigurationError, HostDataError) as e:
            console.print(f"[red]Error:[/red] {escape(str(e))}")
            raise typer.Exit(1) from e

        response = experiment.responses[0]
        console.print(build_results_table(experiment, response, outcome))

    console.print(f"[bold]Outcome:[/bold] {_GUARANTEE_TEXT[outcome.guarantee]}")
    if outcome.best is not None:
        console.print(f"[bold]Best:[/bold] {outcome.best}")
    elif outcome.survivors:
        console.print(f"[bold]Still in contention:[/bold] {', '.join(outcome.survivors)}")
    console.print(
        f"  [dim]waves:[/dim] {outcome.waves}  "
        f"[dim]replications:[/dim] {outcome.replications_submitted}"
    )

    if outcome.guarantee is Guarantee.CANCELED:
        raise typer.Exit(EXIT_CANCELED)
