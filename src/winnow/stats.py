# Copyright (c) Syntropy Systems
"""Per-scenario sample statistics."""
from __future__ import annotations

import math
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING

import numpy as np

from winnow.errors import HostDataError

if TYPE_CHECKING:
    from collections.abc import Iterator, Sequence

    from numpy.typing import NDArray

    from winnow.host import ExperimentContext, ScenarioRef
    from winnow.models.experiment import ResponseDef


@dataclass(frozen=True)
class ScenarioStats:
    """Sample statistics of a scenario's primary response.

    ``sample_count`` is the number of replications the mean is taken over,
    which differs from the host's completed count once GSP batches them.
    """

    mean: float
    variance: float
    sample_count: int
    batch_size: int = 1

    def __post_init__(self) -> None:
        if self.sample_count < 1:
            msg = "sample_count must be at least 1"
            raise ValueError(msg)
        if self.variance < 0:
            msg = "variance must be non-negative"
            raise ValueError(msg)

    @classmethod
    def from_values(
        cls, values: Sequence[float] | NDArray[np.float64], batch_size: int = 1
    ) -> ScenarioStats:
        """Compute mean and unbiased sample variance of raw values."""
        data = np.asarray(values, dtype=float)
        if data.size == 0:
            msg = "Cannot compute statistics of an empty sample"
            raise ValueError(msg)
        mean = float(data.mean())
        variance = float(data.var(ddof=1)) if data.size > 1 else 0.0
        return cls(
            mean=mean,
            variance=max(variance, 0.0),
            sample_count=int(data.size),
            batch_size=batch_size,
        )

    def with_mean(self, mean: float, sample_count: int) -> ScenarioStats:
        """Copy with a refreshed mean, keeping variance and batch size."""
        return replace(self, mean=mean, sample_count=sample_count)


class StatsTracker:
    """Statistics for the scenarios still in contention.

    Entries are created when a scenario is first measured and dropped when
    it is eliminated; a dropped scenario is never tracked again.
    """

    _stats: dict[str, ScenarioStats]
    _discarded: set[str]

    def __init__(self) -> None:
        self._stats = {}
        self._discarded = set()

    def update(self, name: str, stats: ScenarioStats) -> None:
        if name in self._discarded:
            msg = f"Scenario '{name}' was eliminated and cannot be tracked again"
            raise ValueError(msg)
        self._stats[name] = stats

    def discard(self, name: str) -> None:
        _ = self._stats.pop(name, None)
        self._discarded.add(name)

    def __getitem__(self, name: str) -> ScenarioStats:
        return self._stats[name]

    def get(self, name: str) -> ScenarioStats | None:
        return self._stats.get(name)

    def __contains__(self, name: object) -> bool:
        return name in self._stats

    def __len__(self) -> int:
        return len(self._stats)

    def __iter__(self) -> Iterator[str]:
        return iter(self._stats)


def collect_replication_values(
    context: ExperimentContext,
    scenarios: Sequence[ScenarioRef],
    response: ResponseDef,
    replications: int,
) -> NDArray[np.float64]:
    """Fetch replications 1..n of a response as a (scenarios, n) array.

    Raises HostDataError if the host is missing any value.
    """
    values = np.empty((len(scenarios), replications), dtype=float)
    for row, scenario in enumerate(scenarios):
        for replication in range(1, replications + 1):
            value = context.get_response_value_for_replication(scenario, response, replication)
            if value is None or math.isnan(value):
                raise HostDataError(scenario.name, replication)
            values[row, replication - 1] = value
    return values


def calc_batch_sizes(
    variances: Sequence[float] | NDArray[np.float64],
    weights: Sequence[float] | NDArray[np.float64],
    default_batch: int,
) -> list[int]:
    """Size each scenario's batch in proportion to its noise per unit run time.

    With ``st_i = sqrt(S2_i / T_i)`` and ``avgST`` their mean, scenario i
    gets ``ceil(default_batch * st_i / avgST)`` replications per batch, so
    noisier scenarios are sampled in larger steps. Batches are at least one
    replication; if every variance is zero all scenarios get the default.
    """
    s2 = np.asarray(variances, dtype=float)
    t = np.asarray(weights, dtype=float)
    if s2.shape != t.shape:
        msg = "variances and weights must have the same length"
        raise ValueError(msg)
    if s2.size == 0:
        return []

    st = np.sqrt(s2 / t)
    avg_st = float(st.mean())
    if avg_st <= 0.0:
        return [default_batch] * int(s2.size)
    return [max(1, math.ceil(default_batch * float(x) / avg_st)) for x in st]
