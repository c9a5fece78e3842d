# Copyright (c) Syntropy Systems
"""Shared machinery for ranking-and-selection procedures."""
from __future__ import annotations

import logging
import math
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, ClassVar

from winnow.errors import ConfigurationError, HostDataError
from winnow.models.experiment import (
    Guarantee,
    Objective,
    ScenarioUpdate,
    SelectionOutcome,
)
from winnow.stats import StatsTracker
from winnow.waves import WaveScheduler

if TYPE_CHECKING:
    from collections.abc import Iterable

    from winnow.host import ExperimentContext, ScenarioRef
    from winnow.models.experiment import ProcedureParameters, ResponseDef

logger = logging.getLogger(__name__)


def primary_response(context: ExperimentContext) -> ResponseDef:
    """Return the experiment's primary response, or raise ConfigurationError."""
    responses = list(context.responses)
    if not responses:
        msg = "Selection requires the experiment to have at least one response"
        raise ConfigurationError(msg)

    primaries = [r for r in responses if r.primary]
    if not primaries:
        msg = "Selection requires a primary response to be set"
        raise ConfigurationError(msg)
    if len(primaries) > 1:
        names = ", ".join(r.name for r in primaries)
        msg = f"Only one response can be primary (found: {names})"
        raise ConfigurationError(msg)

    primary = primaries[0]
    if primary.objective is Objective.NONE:
        msg = (
            f"Primary response '{primary.name}' needs an objective of "
            "maximize or minimize"
        )
        raise ConfigurationError(msg)
    return primary


class SelectionRun:
    """State of one procedure run against a host.

    Holds the scenarios still in contention and applies every change to the
    host as an explicit ScenarioUpdate. The survivor list is only changed
    between waves.
    """

    context: ExperimentContext
    params: ProcedureParameters
    response: ResponseDef
    scheduler: WaveScheduler
    tracker: StatsTracker
    survivors: list[ScenarioRef]
    eliminated: list[str]
    initial_count: int
    procedure: str

    def __init__(
        self,
        procedure: str,
        context: ExperimentContext,
        params: ProcedureParameters,
        response: ResponseDef,
        result_buffer: int = 64,
    ) -> None:
        self.procedure = procedure
        self.context = context
        self.params = params
        self.response = response
        self.scheduler = WaveScheduler(context, result_buffer=result_buffer, tag=procedure)
        self.tracker = StatsTracker()
        self.survivors = [s for s in context.scenarios if s.active]
        self.eliminated = []
        self.initial_count = len(self.survivors)

    @property
    def objective(self) -> Objective:
        return self.response.objective

    def request(self, scenario: ScenarioRef, replications: int) -> None:
        """Ask the host to bring a scenario up to a replication count."""
        if replications != scenario.replications_required:
            self.context.update_scenario(
                scenario, ScenarioUpdate(replications_required=replications)
            )

    def request_all(self, replications: int) -> None:
        for scenario in self.survivors:
            self.request(scenario, replications)

    def run_wave(self) -> bool:
        """Run outstanding replications for the survivors. False on cancel."""
        return self.scheduler.run(self.survivors).ran_to_completion

    def eliminate(self, names: Iterable[str]) -> None:
        """Deactivate scenarios on the host and stop tracking them."""
        doomed = set(names)
        if not doomed:
            return
        keep: list[ScenarioRef] = []
        for scenario in self.survivors:
            if scenario.name in doomed:
                self.context.update_scenario(scenario, ScenarioUpdate(active=False))
                self.tracker.discard(scenario.name)
                self.eliminated.append(scenario.name)
            else:
                keep.append(scenario)
        logger.info(
            "%s screening eliminated %d scenario(s), %d remain",
            self.procedure.upper(),
            len(self.survivors) - len(keep),
            len(keep),
        )
        self.survivors = keep

    def response_mean(self, scenario: ScenarioRef) -> float:
        """The host's running mean of the primary response."""
        value = self.context.get_response_value(scenario, self.response)
        if value is None or math.isnan(value):
            raise HostDataError(scenario.name)
        return value

    def outcome(self, guarantee: Guarantee, best: str | None = None) -> SelectionOutcome:
        if best is None and len(self.survivors) == 1:
            best = self.survivors[0].name
        return SelectionOutcome(
            procedure=self.procedure,
            guarantee=guarantee,
            best=best,
            survivors=[s.name for s in self.survivors],
            eliminated=list(self.eliminated),
            waves=self.scheduler.waves_run,
            replications_submitted=self.scheduler.replications_submitted,
        )


class SelectionProcedure(ABC):
    """A ranking-and-selection procedure driven against an ExperimentContext."""

    name: ClassVar[str]

    params: ProcedureParameters
    result_buffer: int

    def __init__(self, params: ProcedureParameters, result_buffer: int = 64) -> None:
        self.params = params
        self.result_buffer = result_buffer

    def validate(self, context: ExperimentContext) -> ResponseDef:
        """Check the experiment can be run; returns the primary response."""
        return primary_response(context)

    def run(self, context: ExperimentContext) -> SelectionOutcome:
        """Select the best active scenario of the experiment.

        On return the host's active flags mark the scenarios still in
        contention; the outcome says how much those flags can be trusted.
        """
        response = self.validate(context)
        state = SelectionRun(
            self.name, context, self.params, response, result_buffer=self.result_buffer
        )
        if len(state.survivors) <= 1:
            logger.info("Nothing to select from %d active scenario(s)", len(state.survivors))
            return state.outcome(Guarantee.TRIVIAL)

        logger.info(
            "Starting %s over %d scenario(s) (confidence %.3f, indifference zone %g)",
            self.name.upper(),
            state.initial_count,
            self.params.confidence_level,
            self.params.indifference_zone,
        )
        outcome = self._select(state)
        logger.info(
            "%s finished: %s (%s) after %d wave(s), %d replication(s)",
            self.name.upper(),
            outcome.best or "no single winner",
            outcome.guarantee.value,
            outcome.waves,
            outcome.replications_submitted,
        )
        return outcome

    @abstractmethod
    def _select(self, state: SelectionRun) -> SelectionOutcome:
        """Procedure-specific stages; state has at least two survivors."""
