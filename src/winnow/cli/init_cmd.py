# Copyright (c) Syntropy Systems
"""winnow init command."""

from pathlib import Path

import typer
from rich.console import Console

from winnow.config import CONFIG_FILENAME, write_default_config

console = Console()


def init(
    path: Path = typer.Argument(
        Path(),
        help="Directory to initialize (default: current directory)",
    ),
) -> None:
    """Initialize a new winnow project.

    Creates a .winnow directory holding a config.yaml with the default
    procedure parameters.
    """
    target = path.resolve()
    winnow_dir = target / ".winnow"

    if (winnow_dir / CONFIG_FILENAME).exists():
        console.print(f"[yellow]Already initialized:[/yellow] {winnow_dir}")
        return

    config_path = write_default_config(winnow_dir)

    console.print(f"[green]Initialized winnow project:[/green] {winnow_dir}")
    console.print(f"  [dim]config:[/dim] {config_path}")
    console.print(
        "  [dim]hint:[/dim] set indifference_zone in the config "
        "or in your experiment file"
    )
