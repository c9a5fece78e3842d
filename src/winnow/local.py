# Copyright (c) Syntropy Systems
"""In-process host that runs replications on a pool of worker threads."""
from __future__ import annotations

import logging
import queue
from dataclasses import dataclass, field
from threading import Event, Lock, Thread
from typing import TYPE_CHECKING, Callable, Optional, Protocol

import numpy as np

from winnow.models.experiment import (
    ReplicationJob,
    ReplicationResult,
    ReplicationStatus,
)
from winnow.runner import ReplicationRunner, parse_response, substitute_templates

if TYPE_CHECKING:
    from collections.abc import Sequence
    from pathlib import Path
    from types import TracebackType

    from typing_extensions import Self

    from winnow.host import ScenarioRef
    from winnow.models.experiment import ResponseDef, ScenarioUpdate

logger = logging.getLogger(__name__)

POLL_INTERVAL = 0.1


class ReplicationCanceled(Exception):
    """A replication was abandoned because the run was canceled."""


class ReplicationSource(Protocol):
    """Produces the primary response value of one replication."""

    def sample(self, replication: int, cancel: Event) -> float: ...


@dataclass(frozen=True)
class ConstantSource:
    """Every replication returns the same value."""

    value: float

    def sample(self, replication: int, cancel: Event) -> float:
        return self.value


@dataclass(frozen=True)
class NormalSource:
    """Normally distributed responses, reproducible per replication."""

    mean: float
    sd: float
    seed: int = 0

    def sample(self, replication: int, cancel: Event) -> float:
        rng = np.random.default_rng([self.seed, replication])
        return float(rng.normal(self.mean, self.sd))


@dataclass(frozen=True)
class CommandSource:
    """Runs an external simulator once per replication."""

    command_argv: tuple[str, ...]
    response: str
    seed: int = 0
    workdir: Optional[Path] = None
    grace_period: float = 5.0

    def sample(self, replication: int, cancel: Event) -> float:
        seed = self.seed + replication
        argv = substitute_templates(list(self.command_argv), replication, seed)
        runner = ReplicationRunner(
            argv,
            workdir=self.workdir,
            env={
                "WINNOW_REPLICATION": str(replication),
                "WINNOW_SEED": str(seed),
            },
        )
        runner.start()
        while runner.poll() is None:
            if cancel.wait(timeout=POLL_INTERVAL):
                _ = runner.kill(self.grace_period)
                raise ReplicationCanceled
        if runner.exit_code != 0:
            msg = f"Simulator exited with code {runner.exit_code}"
            raise RuntimeError(msg)
        return parse_response(runner.stdout, self.response)


@dataclass(eq=False)
class LocalScenario:
    """A scenario owned by the local host."""

    name: str
    source: ReplicationSource
    active: bool = True
    replications_required: int = 0
    replications_completed: int = 0
    values: dict[int, float] = field(default_factory=dict)


class LocalExperiment:
    """An ExperimentContext that runs replications in this process.

    Submitted replications are queued for ``workers`` threads. Each
    replication reports ``running`` and then ``completed``, ``failed`` or
    ``canceled``. After ``cancel()`` the result stream ends and
    ``wait_for_results`` returns None.
    """

    name: str
    workers: int
    on_progress: Callable[[int], None] | None
    progress: list[int]
    recorded: list[ReplicationResult]
    _scenarios: list[LocalScenario]
    _responses: list[ResponseDef]
    _jobs: queue.Queue[ReplicationJob]
    _results: queue.Queue[ReplicationResult]
    _cancel: Event
    _shutdown: Event
    _lock: Lock
    _threads: list[Thread]

    def __init__(
        self,
        scenarios: Sequence[LocalScenario],
        responses: Sequence[ResponseDef],
        workers: int = 4,
        name: str = "experiment",
        on_progress: Callable[[int], None] | None = None,
    ) -> None:
        self.name = name
        self.workers = max(1, workers)
        self.on_progress = on_progress
        self.progress = []
        self.recorded = []
        self._scenarios = list(scenarios)
        self._responses = list(responses)
        self._jobs = queue.Queue()
        self._results = queue.Queue()
        self._cancel = Event()
        self._shutdown = Event()
        self._lock = Lock()
        self._threads = []

    # --- ExperimentContext ---

    @property
    def responses(self) -> list[ResponseDef]:
        return list(self._responses)

    @property
    def scenarios(self) -> list[LocalScenario]:
        return list(self._scenarios)

    @property
    def simultaneous_replications(self) -> int:
        return self.workers

    def update_scenario(self, scenario: ScenarioRef, update: ScenarioUpdate) -> None:
        local = self._own(scenario)
        with self._lock:
            if update.replications_required is not None:
                local.replications_required = update.replications_required
            if update.active is False:
                local.active = False

    def submit_replication(
        self, scenario: ScenarioRef, replication: int, tag: object | None = None
    ) -> None:
        self._start_workers()
        self._jobs.put(ReplicationJob(scenario=self._own(scenario), replication=replication))

    def wait_for_results(self) -> Optional[ReplicationResult]:
        while not self._cancel.is_set():
            try:
                return self._results.get(timeout=POLL_INTERVAL)
            except queue.Empty:
                continue
        return None

    def record_replication_results(self, result: ReplicationResult) -> None:
        with self._lock:
            self.recorded.append(result)
            if result.status is ReplicationStatus.COMPLETED:
                local = self._own(result.scenario)
                # Completed counts the unbroken run of finished replications
                completed = local.replications_completed
                while completed + 1 in local.values:
                    completed += 1
                local.replications_completed = completed

    def report_progress(self, percent: int, tag: object | None = None) -> None:
        self.progress.append(percent)
        if self.on_progress is not None:
            self.on_progress(percent)

    def get_response_value(
        self, scenario: ScenarioRef, response: ResponseDef
    ) -> Optional[float]:
        local = self._own(scenario)
        if not self._is_primary(response):
            return None
        with self._lock:
            n = local.replications_completed
            if n == 0:
                return None
            return float(np.mean([local.values[r] for r in range(1, n + 1)]))

    def get_response_value_for_replication(
        self, scenario: ScenarioRef, response: ResponseDef, replication: int
    ) -> Optional[float]:
        local = self._own(scenario)
        if not self._is_primary(response):
            return None
        with self._lock:
            return local.values.get(replication)

    # --- Lifecycle ---

    def cancel(self) -> None:
        """Cancel the run: pending replications are dropped, running ones stopped."""
        logger.info("Canceling experiment '%s'", self.name)
        self._cancel.set()

    @property
    def canceled(self) -> bool:
        return self._cancel.is_set()

    def shutdown(self) -> None:
        """Stop the worker threads."""
        self._shutdown.set()
        self._cancel.set()
        for thread in self._threads:
            thread.join(timeout=1.0)
        self._threads = []

    def __enter__(self) -> Self:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.shutdown()

    # --- Internals ---

    def _own(self, scenario: ScenarioRef) -> LocalScenario:
        for local in self._scenarios:
            if local is scenario:
                return local
        msg = f"Scenario '{scenario.name}' does not belong to experiment '{self.name}'"
        raise ValueError(msg)

    def _is_primary(self, response: ResponseDef) -> bool:
        return any(r.primary and r.name == response.name for r in self._responses)

    def _start_workers(self) -> None:
        if self._threads:
            return
        for index in range(self.workers):
            thread = Thread(
                target=self._worker_loop,
                name=f"winnow-worker-{index}",
                daemon=True,
            )
            thread.start()
            self._threads.append(thread)

    def _worker_loop(self) -> None:
        """Main loop for a replication worker thread."""
        while not self._shutdown.is_set():
            try:
                job = self._jobs.get(timeout=POLL_INTERVAL)
            except queue.Empty:
                continue
            if self._cancel.is_set():
                continue
            self._results.put(
                ReplicationResult(job.scenario, job.replication, ReplicationStatus.RUNNING)
            )
            self._results.put(self._run_job(job))

    def _run_job(self, job: ReplicationJob) -> ReplicationResult:
        local = self._own(job.scenario)
        try:
            value = local.source.sample(job.replication, self._cancel)
        except ReplicationCanceled:
            return ReplicationResult(job.scenario, job.replication, ReplicationStatus.CANCELED)
        except Exception as e:  # noqa: BLE001
            logger.warning(
                "Replication %d of '%s' failed: %s", job.replication, local.name, e
            )
            return ReplicationResult(
                job.scenario, job.replication, ReplicationStatus.FAILED, error_message=str(e)
            )
        with self._lock:
            local.values[job.replication] = value
        return ReplicationResult(job.scenario, job.replication, ReplicationStatus.COMPLETED)
