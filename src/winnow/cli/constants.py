# Copyright (c) Syntropy Systems
"""winnow constants commands: print the procedures' critical values."""

import typer
from rich.console import Console

from winnow.critical import find_eta, kn_h_squared, rinott

console = Console()

constants_app = typer.Typer(
    name="constants",
    help="Print critical values used by the selection procedures.",
    no_args_is_help=True,
)


@constants_app.command(name="rinott")
def rinott_cmd(
    k: int = typer.Argument(..., help="Number of scenarios"),
    dof: int = typer.Argument(..., help="Degrees of freedom (first-stage size - 1)"),
    confidence: float = typer.Option(
        0.95,
        "--confidence",
        "-c",
        help="Probability of correct selection",
    ),
) -> None:
    """Rinott's constant h.

    Example:
        winnow constants rinott 10 19 --confidence 0.95

    """
    try:
        h = rinott(k, confidence, dof)
    except ValueError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from e
    console.print(f"h = {h:.6f}")


@constants_app.command(name="eta")
def eta_cmd(
    n1: int = typer.Argument(..., help="First-stage sample size"),
    k: int = typer.Argument(..., help="Number of scenarios"),
    confidence: float = typer.Option(
        0.95,
        "--confidence",
        "-c",
        help="Probability of correct selection",
    ),
) -> None:
    """GSP's screening constant eta.

    GSP spends half of the error probability on screening, so eta is
    computed for alpha = (1 - confidence) / 2.
    """
    try:
        eta = find_eta(n1, (1.0 - confidence) / 2, k)
    except ValueError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from e
    console.print(f"eta = {eta:.6f}")


@constants_app.command(name="kn")
def kn_cmd(
    k: int = typer.Argument(..., help="Number of scenarios"),
    n: int = typer.Argument(..., help="Replications per scenario"),
    confidence: float = typer.Option(
        0.95,
        "--confidence",
        "-c",
        help="Probability of correct selection",
    ),
) -> None:
    """KN's h^2 after n replications."""
    try:
        h2 = kn_h_squared(confidence, k, n)
    except ValueError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from e
    console.print(f"h^2 = {h2:.6f}")
