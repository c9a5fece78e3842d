"""
winnow - Ranking and selection for simulation experiments.

Run scenarios until the best one stands out.
"""

from winnow.errors import ConfigurationError, HostDataError, WinnowError
from winnow.local import LocalExperiment, LocalScenario
from winnow.models.experiment import (
    Guarantee,
    Objective,
    ProcedureParameters,
    ResponseDef,
    SelectionOutcome,
)
from winnow.procedures import GSPProcedure, KNProcedure, get_procedure

__version__ = "0.1.0"
__all__ = [
    "ConfigurationError",
    "GSPProcedure",
    "Guarantee",
    "HostDataError",
    "KNProcedure",
    "LocalExperiment",
    "LocalScenario",
    "Objective",
    "ProcedureParameters",
    "ResponseDef",
    "SelectionOutcome",
    "WinnowError",
    "__version__",
    "get_procedure",
]
