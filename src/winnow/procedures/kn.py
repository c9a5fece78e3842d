# Copyright (c) Syntropy Systems
"""Kim-Nelson sequential screening.

Every scenario is run to a common seed sample size. Then, until a single
scenario is left or the replication limit is reached, scenarios whose mean
trails another scenario's by more than a pairwise whisker are dropped and
the survivors are grown by a wave of extra replications.
"""
from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import numpy as np

from winnow.critical import kn_h_squared
from winnow.errors import ConfigurationError
from winnow.models.experiment import Guarantee, Objective
from winnow.stats import ScenarioStats, collect_replication_values

from .base import SelectionProcedure

if TYPE_CHECKING:
    from numpy.typing import ArrayLike, NDArray

    from winnow.host import ExperimentContext
    from winnow.models.experiment import ResponseDef, SelectionOutcome

    from .base import SelectionRun

logger = logging.getLogger(__name__)


def kn_whiskers(
    values: ArrayLike,
    pcs: float,
    k: int,
    delta: float,
) -> NDArray[np.float64]:
    """Pairwise elimination margins W[i, j] for a (scenarios, n) sample.

    S2[i, j] is the sample variance of the replication-wise differences
    between scenarios i and j; the margin shrinks as n grows.
    """
    x = np.asarray(values, dtype=float)
    _, n = x.shape
    centered = x - x.mean(axis=1, keepdims=True)
    diff = centered[:, None, :] - centered[None, :, :]
    s2 = (diff**2).sum(axis=2) / (n - 1)
    h2 = kn_h_squared(pcs, k, n)
    whiskers = np.maximum(0.0, (delta / (2 * n)) * (h2 * s2 / delta**2 - n))
    np.fill_diagonal(whiskers, 0.0)
    return whiskers


def kn_screen(
    values: ArrayLike,
    objective: Objective,
    pcs: float,
    k: int,
    delta: float,
) -> NDArray[np.bool_]:
    """Return a keep mask over the rows of a (scenarios, n) sample.

    Row i is dropped if some other row j beats its mean by more than
    W[i, j]. The row with the best mean is never dropped.
    """
    x = np.asarray(values, dtype=float)
    means = x.mean(axis=1)
    whiskers = kn_whiskers(x, pcs, k, delta)

    if objective is Objective.MAXIMIZE:
        beaten = means[:, None] < means[None, :] - whiskers
    elif objective is Objective.MINIMIZE:
        beaten = means[:, None] > means[None, :] + whiskers
    else:
        msg = "KN screening needs an objective of maximize or minimize"
        raise ValueError(msg)

    np.fill_diagonal(beaten, False)
    return ~beaten.any(axis=1)


class KNProcedure(SelectionProcedure):
    """Kim-Nelson fully sequential selection of the best scenario."""

    name = "kn"

    def validate(self, context: ExperimentContext) -> ResponseDef:
        response = super().validate(context)
        if self.params.replication_limit < self.params.min_replications:
            msg = (
                f"Replication limit must be at least the minimum replications "
                f"({self.params.min_replications})"
            )
            raise ConfigurationError(msg)
        return response

    def _select(self, state: SelectionRun) -> SelectionOutcome:
        params = self.params

        # Bring everyone to a common, statistically useful sample size
        seed = params.min_replications
        for scenario in state.survivors:
            seed = max(seed, scenario.replications_required, scenario.replications_completed)
        state.request_all(seed)
        if not state.run_wave():
            return state.outcome(Guarantee.CANCELED)

        while True:
            self.screen(state)

            if len(state.survivors) <= 1:
                return state.outcome(Guarantee.SELECTED)

            completed = min(s.replications_completed for s in state.survivors)
            if completed >= params.replication_limit:
                logger.info(
                    "Replication limit %d reached with %d scenarios left",
                    params.replication_limit,
                    len(state.survivors),
                )
                return state.outcome(Guarantee.REPLICATION_LIMIT)

            step = max(1, state.context.simultaneous_replications // len(state.survivors))
            for scenario in state.survivors:
                target = min(scenario.replications_required + step, params.replication_limit)
                state.request(scenario, max(target, scenario.replications_required))

            before = sum(s.replications_completed for s in state.survivors)
            if not state.run_wave():
                return state.outcome(Guarantee.CANCELED)

            at_limit = all(
                s.replications_required >= params.replication_limit for s in state.survivors
            )
            if at_limit and sum(s.replications_completed for s in state.survivors) == before:
                # Failing replications hold completed counts below the limit
                logger.warning(
                    "No progress at the replication limit %d; stopping with %d scenarios left",
                    params.replication_limit,
                    len(state.survivors),
                )
                return state.outcome(Guarantee.REPLICATION_LIMIT)

    def screen(self, state: SelectionRun) -> None:
        """Drop every survivor beaten by another beyond their whisker.

        Screening needs two completed replications from every survivor; until
        then the round is skipped.
        """
        survivors = state.survivors
        n = min(s.replications_completed for s in survivors)
        if n < 2:
            logger.debug("Skipping KN screening: only %d common replication(s)", n)
            return
        values = collect_replication_values(state.context, survivors, state.response, n)

        keep = kn_screen(
            values,
            state.objective,
            self.params.confidence_level,
            state.initial_count,
            self.params.indifference_zone,
        )

        for row, scenario in enumerate(survivors):
            if keep[row]:
                state.tracker.update(scenario.name, ScenarioStats.from_values(values[row]))
        state.eliminate(s.name for row, s in enumerate(survivors) if not keep[row])
