# Copyright (c) Syntropy Systems
"""Main CLI entry point for winnow."""

import typer

from winnow.cli.constants import constants_app
from winnow.cli.init_cmd import init
from winnow.cli.select_cmd import select

app = typer.Typer(
    name="winnow",
    help=(
        "Ranking and selection for simulation experiments. "
        "Run scenarios until the best one stands out."
    ),
    no_args_is_help=True,
    add_completion=False,
)

# Register commands
_ = app.command()(init)
_ = app.command()(select)

# Register constants sub-app
app.add_typer(constants_app, name="constants")


if __name__ == "__main__":
    app()
