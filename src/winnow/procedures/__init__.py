# Copyright (c) Syntropy Systems
"""Ranking-and-selection procedures."""
from __future__ import annotations

from typing import TYPE_CHECKING

from winnow.errors import ConfigurationError
from winnow.procedures.base import SelectionProcedure, SelectionRun, primary_response
from winnow.procedures.gsp import GSPProcedure
from winnow.procedures.kn import KNProcedure

if TYPE_CHECKING:
    from winnow.models.experiment import ProcedureParameters

PROCEDURES: dict[str, type[SelectionProcedure]] = {
    KNProcedure.name: KNProcedure,
    GSPProcedure.name: GSPProcedure,
}


def get_procedure(
    name: str, params: ProcedureParameters, result_buffer: int = 64
) -> SelectionProcedure:
    """Instantiate a procedure by name ("kn" or "gsp")."""
    try:
        cls = PROCEDURES[name.lower()]
    except KeyError as e:
        choices = ", ".join(sorted(PROCEDURES))
        msg = f"Unknown procedure '{name}' (choose from: {choices})"
        raise ConfigurationError(msg) from e
    return cls(params, result_buffer=result_buffer)


__all__ = [
    "PROCEDURES",
    "GSPProcedure",
    "KNProcedure",
    "SelectionProcedure",
    "SelectionRun",
    "get_procedure",
    "primary_response",
]
