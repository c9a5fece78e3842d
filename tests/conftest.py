# Copyright (c) Syntropy Systems
"""Pytest fixtures for winnow tests."""

import os
import tempfile
from collections import deque
from collections.abc import Callable, Generator
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Union

import pytest

from winnow.models.experiment import (
    Objective,
    ReplicationResult,
    ReplicationStatus,
    ResponseDef,
    ScenarioUpdate,
)

# Store original cwd at module load time
_original_cwd = Path.cwd()

ValueFn = Callable[[int], Optional[float]]


@dataclass(eq=False)
class FakeScenario:
    """Host scenario whose replication values come from a function."""

    name: str
    values: ValueFn
    active: bool = True
    replications_required: int = 0
    replications_completed: int = 0


class FakeContext:
    """Scripted, single-threaded host.

    Every submitted replication immediately queues a ``running`` and a
    terminal result. ``cancel_after`` makes the host report cancellation
    once that many terminal results have been handed out.
    """

    def __init__(
        self,
        scenarios: dict[str, Union[float, ValueFn]],
        objective: Objective = Objective.MAXIMIZE,
        responses: Optional[list[ResponseDef]] = None,
        simultaneous: int = 4,
        cancel_after: Optional[int] = None,
        statuses: Optional[dict[tuple[str, int], ReplicationStatus]] = None,
    ) -> None:
        self._scenarios = [
            FakeScenario(name, value if callable(value) else (lambda _r, v=value: v))
            for name, value in scenarios.items()
        ]
        self._responses = (
            responses
            if responses is not None
            else [ResponseDef(name="y", objective=objective, primary=True)]
        )
        self.simultaneous = simultaneous
        self.cancel_after = cancel_after
        self.statuses = statuses or {}
        self.pending: deque[ReplicationResult] = deque()
        self.delivered = 0
        self.submissions: list[tuple[str, int, object]] = []
        self.updates: list[tuple[str, ScenarioUpdate]] = []
        self.recorded: list[ReplicationResult] = []
        self.progress: list[int] = []
        self.finished: dict[str, set[int]] = {s.name: set() for s in self._scenarios}

    def __getitem__(self, name: str) -> FakeScenario:
        return next(s for s in self._scenarios if s.name == name)

    @property
    def responses(self) -> list[ResponseDef]:
        return self._responses

    @property
    def scenarios(self) -> list[FakeScenario]:
        return self._scenarios

    @property
    def simultaneous_replications(self) -> int:
        return self.simultaneous

    def update_scenario(self, scenario: FakeScenario, update: ScenarioUpdate) -> None:
        self.updates.append((scenario.name, update))
        if update.replications_required is not None:
            scenario.replications_required = update.replications_required
        if update.active is False:
            scenario.active = False

    def submit_replication(
        self, scenario: FakeScenario, replication: int, tag: object = None
    ) -> None:
        self.submissions.append((scenario.name, replication, tag))
        status = self.statuses.get((scenario.name, replication), ReplicationStatus.COMPLETED)
        self.pending.append(ReplicationResult(scenario, replication, ReplicationStatus.RUNNING))
        self.pending.append(ReplicationResult(scenario, replication, status))

    def wait_for_results(self) -> Optional[ReplicationResult]:
        if not self.pending:
            return None
        if self.cancel_after is not None and self.delivered >= self.cancel_after:
            return None
        result = self.pending.popleft()
        if result.status.is_terminal:
            self.delivered += 1
        return result

    def record_replication_results(self, result: ReplicationResult) -> None:
        self.recorded.append(result)
        if result.status is ReplicationStatus.COMPLETED:
            scenario = result.scenario
            done = self.finished[scenario.name]
            done.add(result.replication)
            while scenario.replications_completed + 1 in done:
                scenario.replications_completed += 1

    def report_progress(self, percent: int, tag: object = None) -> None:
        self.progress.append(percent)

    def get_response_value(
        self, scenario: FakeScenario, response: ResponseDef
    ) -> Optional[float]:
        n = scenario.replications_completed
        if n == 0:
            return None
        values = [scenario.values(r) for r in range(1, n + 1)]
        if any(v is None for v in values):
            return None
        return sum(values) / n

    def get_response_value_for_replication(
        self, scenario: FakeScenario, response: ResponseDef, replication: int
    ) -> Optional[float]:
        if replication > scenario.replications_completed:
            return None
        return scenario.values(replication)

    def deactivated(self) -> list[str]:
        """Names of scenarios the engine switched off, in order."""
        return [name for name, update in self.updates if update.active is False]


@pytest.fixture
def fake_context() -> type[FakeContext]:
    """The scripted host class, for building contexts inside tests."""
    return FakeContext


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for testing."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def winnow_project(temp_dir: Path) -> Generator[Path, None, None]:
    """Create a temporary winnow project directory."""
    from winnow.config import write_default_config

    write_default_config(temp_dir / ".winnow")

    # Change to temp directory
    os.chdir(temp_dir)

    yield temp_dir

    # Always return to original cwd
    os.chdir(_original_cwd)
