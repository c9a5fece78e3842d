# Copyright (c) Syntropy Systems
"""Exception types raised by the selection engine."""
from __future__ import annotations


class WinnowError(Exception):
    """Base class for winnow errors."""


class ConfigurationError(WinnowError, ValueError):
    """The experiment or procedure parameters cannot be run.

    Raised before any replication is submitted.
    """


class HostDataError(WinnowError, RuntimeError):
    """The host could not supply a response value it should have."""

    def __init__(self, scenario: str, replication: int | None = None) -> None:
        self.scenario = scenario
        self.replication = replication
        if replication is None:
            msg = f"No response value available for scenario '{scenario}'"
        else:
            msg = (
                f"No response value available for scenario '{scenario}' "
                f"replication {replication}"
            )
        super().__init__(msg)
