# Copyright (c) Syntropy Systems
"""Submitting replications in waves and draining their results."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from winnow.host import ResultChannel
from winnow.models.experiment import ReplicationJob, ReplicationStatus

if TYPE_CHECKING:
    from collections.abc import Sequence

    from winnow.host import ExperimentContext, ScenarioRef

logger = logging.getLogger(__name__)


def plan_wave(scenarios: Sequence[ScenarioRef]) -> list[ReplicationJob]:
    """Order the replications needed to bring every scenario to its target.

    Jobs are emitted replication-major: replication r for every scenario,
    then r + 1 for every scenario, and so on. Parallel hosts then spread a
    scenario's replications across workers instead of running them all on
    one, and each scenario's replications are still requested in order.
    """
    if not scenarios:
        return []

    lowest = min(s.replications_completed for s in scenarios)
    highest = max(s.replications_required for s in scenarios)

    jobs: list[ReplicationJob] = []
    for replication in range(lowest + 1, highest + 1):
        for scenario in scenarios:
            if scenario.replications_completed < replication <= scenario.replications_required:
                jobs.append(ReplicationJob(scenario=scenario, replication=replication))
    return jobs


@dataclass
class WaveReport:
    """What happened during one wave."""

    submitted: int = 0
    completed: int = 0
    failed: int = 0
    canceled: bool = False

    @property
    def ran_to_completion(self) -> bool:
        """True unless the wave was cut short or a replication was canceled."""
        return not self.canceled


class WaveScheduler:
    """Submits waves of replications to a host and waits for them."""

    context: ExperimentContext
    result_buffer: int
    tag: object | None
    waves_run: int
    replications_submitted: int

    def __init__(
        self,
        context: ExperimentContext,
        result_buffer: int = 64,
        tag: object | None = None,
    ) -> None:
        self.context = context
        self.result_buffer = result_buffer
        self.tag = tag
        self.waves_run = 0
        self.replications_submitted = 0

    def run(self, scenarios: Sequence[ScenarioRef]) -> WaveReport:
        """Submit every outstanding replication and drain the results.

        Returns once every submitted replication has reported a terminal
        status, or as soon as the host signals that the run was canceled.
        """
        report = WaveReport()
        jobs = plan_wave(scenarios)
        if not jobs:
            return report

        for job in jobs:
            self.context.submit_replication(job.scenario, job.replication, self.tag)
        report.submitted = len(jobs)
        self.waves_run += 1
        self.replications_submitted += len(jobs)
        logger.debug(
            "Wave %d: submitted %d replication(s) across %d scenario(s)",
            self.waves_run,
            len(jobs),
            len(scenarios),
        )

        with ResultChannel(self.context, report.submitted, self.result_buffer) as channel:
            for result in channel:
                if result.status.is_terminal:
                    report.completed += 1
                    percent = int(100 * report.completed / report.submitted)
                    self.context.report_progress(percent, self.tag)
                if result.status is ReplicationStatus.FAILED:
                    report.failed += 1
                    logger.warning(
                        "Replication %d of scenario '%s' failed: %s",
                        result.replication,
                        result.scenario.name,
                        result.error_message or "no details",
                    )
                elif result.status is ReplicationStatus.CANCELED:
                    report.canceled = True

                # The host needs every result, terminal or not
                self.context.record_replication_results(result)

                if report.completed >= report.submitted:
                    break

        if report.completed < report.submitted:
            logger.info(
                "Run canceled after %d of %d replication(s) in wave %d",
                report.completed,
                report.submitted,
                self.waves_run,
            )
            report.canceled = True
        return report


def run_wave(context: ExperimentContext, scenarios: Sequence[ScenarioRef]) -> bool:
    """Run one wave; False means the run was canceled."""
    return WaveScheduler(context).run(scenarios).ran_to_completion
