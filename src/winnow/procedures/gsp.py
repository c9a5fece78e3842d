# Copyright (c) Syntropy Systems
"""Good Selection Procedure (GSP).

A parallel ranking-and-selection procedure for large scenario sets, after
Ni, Ciocan, Henderson and Hunter, "Efficient Ranking and Selection in
Parallel Computing Environments" (arXiv:1506.04986).

Stage 0 assigns run-time weights, stage 1 runs a common first-stage sample
and sizes per-scenario batches from its variances, stage 2 grows survivors
batch by batch with grouped screening in between, and stage 3 tops the
survivors up to Rinott's sample size before picking the best mean.
"""
from __future__ import annotations

import logging
import math
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable

from winnow.critical import find_eta, rinott
from winnow.errors import ConfigurationError
from winnow.models.experiment import Guarantee, Objective
from winnow.stats import ScenarioStats, calc_batch_sizes, collect_replication_values

from .base import SelectionProcedure

if TYPE_CHECKING:
    from collections.abc import Sequence

    from winnow.host import ExperimentContext
    from winnow.models.experiment import ProcedureParameters, ResponseDef, SelectionOutcome

    from .base import SelectionRun

logger = logging.getLogger(__name__)

Candidate = tuple[str, ScenarioStats]


@dataclass(frozen=True)
class ScreeningConstants:
    """Values fixed for the whole run that the pairwise test depends on."""

    n1: int
    rbar: int
    eta: float


@dataclass(frozen=True)
class GroupScreening:
    """Result of screening one group."""

    best: str | None
    eliminated: frozenset[str]


def survives(
    first: ScenarioStats,
    second: ScenarioStats,
    objective: Objective,
    constants: ScreeningConstants,
) -> bool:
    """Whether ``first`` survives a comparison against ``second``."""
    n1_rbar = constants.n1 + constants.rbar * first.batch_size
    n2_rbar = constants.n1 + constants.rbar * second.batch_size
    spread_rbar = first.variance / n1_rbar + second.variance / n2_rbar
    spread = first.variance / first.sample_count + second.variance / second.sample_count
    diff = first.mean - second.mean

    if spread <= 0.0 or spread_rbar <= 0.0:
        # Noise-free: only the sign of the difference matters
        return not objective.better(second.mean, first.mean)

    tau_rbar = 1.0 / spread_rbar
    a = constants.eta * math.sqrt((constants.n1 - 1) * tau_rbar)
    y = diff / spread

    if objective is Objective.MAXIMIZE:
        return not y < -a
    if objective is Objective.MINIMIZE:
        return not y > a
    return True


def partition_groups(names: Sequence[str], threshold: int = 100) -> list[list[str]]:
    """Deal scenarios round-robin into floor(sqrt(k)) groups above threshold."""
    k = len(names)
    n_groups = max(1, math.isqrt(k)) if k > threshold else 1
    groups: list[list[str]] = [[] for _ in range(n_groups)]
    for index, name in enumerate(names):
        groups[index % n_groups].append(name)
    return [g for g in groups if g]


def group_best(group: Sequence[Candidate], objective: Objective) -> str | None:
    """Name of the best mean in a group; earlier entries win ties."""
    best: Candidate | None = None
    for candidate in group:
        if best is None or objective.better(candidate[1].mean, best[1].mean):
            best = candidate
    return None if best is None else best[0]


def screen_group(
    group: Sequence[Candidate],
    leaders: Sequence[Candidate],
    objective: Objective,
    constants: ScreeningConstants,
) -> GroupScreening:
    """Test each member against its group and against every group leader."""
    eliminated: set[str] = set()
    for name, stats in group:
        rivals = [c for c in group if c[0] != name]
        rivals.extend(c for c in leaders if c[0] != name)
        for _, rival in rivals:
            if not survives(stats, rival, objective, constants):
                eliminated.add(name)
                break
    return GroupScreening(best=group_best(group, objective), eliminated=frozenset(eliminated))


def grouped_screening(
    candidates: Sequence[Candidate],
    objective: Objective,
    constants: ScreeningConstants,
    threshold: int = 100,
    workers: int | None = None,
) -> frozenset[str]:
    """Names eliminated by two-tier (in-group plus group leaders) screening."""
    lookup = dict(candidates)
    groups = [
        [(name, lookup[name]) for name in names]
        for names in partition_groups([c[0] for c in candidates], threshold)
    ]
    if len(groups) == 1:
        return screen_group(groups[0], [], objective, constants).eliminated

    with ThreadPoolExecutor(max_workers=workers or len(groups)) as executor:
        leader_names = list(executor.map(lambda g: group_best(g, objective), groups))
        leaders = [(name, lookup[name]) for name in leader_names if name is not None]
        results = list(
            executor.map(lambda g: screen_group(g, leaders, objective, constants), groups)
        )

    eliminated: set[str] = set()
    for result in results:
        eliminated |= result.eliminated
    return frozenset(eliminated)


class GSPProcedure(SelectionProcedure):
    """Good Selection Procedure with batched, grouped screening."""

    name = "gsp"

    rinott_fn: Callable[[int, float, int], float]
    eta_fn: Callable[[int, float, int], float]

    def __init__(
        self,
        params: ProcedureParameters,
        result_buffer: int = 64,
        rinott_fn: Callable[[int, float, int], float] = rinott,
        eta_fn: Callable[[int, float, int], float] = find_eta,
    ) -> None:
        super().__init__(params, result_buffer=result_buffer)
        self.rinott_fn = rinott_fn
        self.eta_fn = eta_fn

    def validate(self, context: ExperimentContext) -> ResponseDef:
        response = super().validate(context)
        if self.params.replication_limit < self.params.first_stage_size:
            msg = (
                f"Replication limit must be at least the first-stage size "
                f"({self.params.first_stage_size})"
            )
            raise ConfigurationError(msg)
        return response

    def run_time_weights(self, state: SelectionRun) -> list[float]:
        """Stage 0: relative run time of each survivor (uniform by default)."""
        return [1.0] * len(state.survivors)

    def _select(self, state: SelectionRun) -> SelectionOutcome:
        params = self.params
        k = state.initial_count

        n1 = params.first_stage_size
        for scenario in state.survivors:
            n1 = max(n1, scenario.replications_required, scenario.replications_completed)
        rbar = max(params.rbar, params.replication_limit // params.batch_size // 10)
        constants = ScreeningConstants(
            n1=n1, rbar=rbar, eta=self.eta_fn(n1, params.alpha / 2, k)
        )
        h = self.rinott_fn(k, 1.0 - params.alpha / 2, n1 - 1)
        logger.debug("GSP constants: n1=%d rbar=%d eta=%.4f h=%.4f", n1, rbar, constants.eta, h)

        weights = self.run_time_weights(state)

        # Stage 1
        state.request_all(n1)
        if not state.run_wave():
            return state.outcome(Guarantee.CANCELED)
        self.calc_batch_sizes(state, n1, weights)
        self.screen(state, constants)
        if len(state.survivors) <= 1:
            return state.outcome(Guarantee.SELECTED)

        # Stage 2
        for round_index in range(rbar):
            all_at_limit = True
            for scenario in state.survivors:
                batch = state.tracker[scenario.name].batch_size
                if scenario.replications_required + batch <= params.replication_limit:
                    all_at_limit = False
                    state.request(scenario, scenario.replications_required + batch)
                else:
                    state.request(scenario, params.replication_limit)
            if all_at_limit:
                logger.debug("GSP stage 2 stopped after %d round(s): all at limit", round_index)
                break
            if not state.run_wave():
                return state.outcome(Guarantee.CANCELED)
            self.screen(state, constants)
            if len(state.survivors) <= 1:
                return state.outcome(Guarantee.SELECTED)

        # Stage 3
        rinott_valid = True
        for scenario in state.survivors:
            variance = state.tracker[scenario.name].variance
            required = math.ceil(h * h / (params.indifference_zone**2) * variance)
            if required > scenario.replications_completed:
                if required > params.replication_limit:
                    rinott_valid = False
                    state.request(scenario, params.replication_limit)
                else:
                    state.request(scenario, required)
        if not rinott_valid:
            logger.warning(
                "Rinott sample size exceeds the replication limit (%d); "
                "the selection carries no statistical guarantee",
                params.replication_limit,
            )
        if not state.run_wave():
            return state.outcome(Guarantee.CANCELED)

        best = self.select_best(state)
        if not rinott_valid:
            return state.outcome(Guarantee.RINOTT_VOID, best=best)
        state.eliminate(s.name for s in state.survivors if s.name != best)
        return state.outcome(Guarantee.SELECTED, best=best)

    def calc_batch_sizes(self, state: SelectionRun, n1: int, weights: Sequence[float]) -> None:
        """Record first-stage statistics and batch size for each survivor."""
        values = collect_replication_values(state.context, state.survivors, state.response, n1)
        first_stage = [ScenarioStats.from_values(row) for row in values]
        batches = calc_batch_sizes(
            [s.variance for s in first_stage], weights, self.params.batch_size
        )
        for scenario, stats, batch in zip(state.survivors, first_stage, batches):
            state.tracker.update(
                scenario.name,
                ScenarioStats(
                    mean=stats.mean,
                    variance=stats.variance,
                    sample_count=n1,
                    batch_size=batch,
                ),
            )

    def screen(self, state: SelectionRun, constants: ScreeningConstants) -> None:
        """Refresh means from the host and run grouped screening."""
        candidates: list[Candidate] = []
        for scenario in state.survivors:
            stats = state.tracker[scenario.name].with_mean(
                state.response_mean(scenario), scenario.replications_completed
            )
            state.tracker.update(scenario.name, stats)
            candidates.append((scenario.name, stats))

        eliminated = grouped_screening(
            candidates,
            state.objective,
            constants,
            threshold=self.params.group_threshold,
            workers=self.params.screening_workers,
        )
        state.eliminate(eliminated)

    def select_best(self, state: SelectionRun) -> str:
        """Name of the survivor with the best final mean."""
        best_name = state.survivors[0].name
        best_mean = state.response_mean(state.survivors[0])
        for scenario in state.survivors[1:]:
            mean = state.response_mean(scenario)
            if state.objective.better(mean, best_mean):
                best_name, best_mean = scenario.name, mean
        return best_name
