# Copyright (c) Syntropy Systems
"""Interface to the host that owns scenarios and runs replications."""
from __future__ import annotations

import logging
import queue
from threading import Event, Thread
from typing import TYPE_CHECKING, Optional, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import Iterator, Sequence
    from types import TracebackType

    from typing_extensions import Self

    from winnow.models.experiment import ReplicationResult, ResponseDef, ScenarioUpdate

logger = logging.getLogger(__name__)


@runtime_checkable
class ScenarioRef(Protocol):
    """Read-only view of a host scenario."""

    @property
    def name(self) -> str: ...

    @property
    def active(self) -> bool: ...

    @property
    def replications_required(self) -> int: ...

    @property
    def replications_completed(self) -> int: ...


class ExperimentContext(Protocol):
    """What the selection engine needs from its host."""

    @property
    def responses(self) -> Sequence[ResponseDef]: ...

    @property
    def scenarios(self) -> Sequence[ScenarioRef]: ...

    @property
    def simultaneous_replications(self) -> int: ...

    def update_scenario(self, scenario: ScenarioRef, update: ScenarioUpdate) -> None:
        """Apply the engine's desired state to a scenario."""
        ...

    def submit_replication(
        self, scenario: ScenarioRef, replication: int, tag: object | None = None
    ) -> None:
        """Queue a replication; returns without waiting for it."""
        ...

    def wait_for_results(self) -> Optional[ReplicationResult]:
        """Block until a result is available. None means the run was canceled."""
        ...

    def record_replication_results(self, result: ReplicationResult) -> None:
        """Hand a result back to the host for bookkeeping."""
        ...

    def report_progress(self, percent: int, tag: object | None = None) -> None: ...

    def get_response_value(
        self, scenario: ScenarioRef, response: ResponseDef
    ) -> Optional[float]:
        """Running mean of a response over completed replications."""
        ...

    def get_response_value_for_replication(
        self, scenario: ScenarioRef, response: ResponseDef, replication: int
    ) -> Optional[float]:
        """Value of a response for one completed replication."""
        ...


class ChannelClosed(Exception):
    """Raised by ResultChannel.receive once the host stops sending."""


_CLOSED = object()


class ResultChannel:
    """Bounded channel of replication results pulled from the host.

    A pump thread owns the blocking ``wait_for_results`` call and forwards
    results onto a bounded queue until ``expected`` terminal results have
    been seen. A ``None`` from the host closes the channel, which is how
    cancellation reaches the reader. Exceptions raised by the host in the
    pump thread are re-raised in the reader.
    """

    context: ExperimentContext
    expected: int
    _queue: queue.Queue[object]
    _stop: Event
    _thread: Thread | None
    _error: BaseException | None
    _closed: bool

    def __init__(self, context: ExperimentContext, expected: int, maxsize: int = 64) -> None:
        self.context = context
        self.expected = expected
        self._queue = queue.Queue(maxsize=max(1, maxsize))
        self._stop = Event()
        self._thread = None
        self._error = None
        self._closed = False

    def start(self) -> None:
        """Start pumping results from the host."""
        if self._thread is not None:
            return
        self._thread = Thread(target=self._pump, name="winnow-results", daemon=True)
        self._thread.start()

    def _put(self, item: object) -> bool:
        # Bounded put that gives up once the reader has gone away
        while not self._stop.is_set():
            try:
                self._queue.put(item, timeout=0.1)
            except queue.Full:
                continue
            else:
                return True
        return False

    def _pump(self) -> None:
        terminal = 0
        try:
            while terminal < self.expected and not self._stop.is_set():
                result = self.context.wait_for_results()
                if result is None:
                    logger.debug("Host returned no result; closing channel")
                    break
                if result.status.is_terminal:
                    terminal += 1
                if not self._put(result):
                    return
        except Exception as exc:  # noqa: BLE001
            self._error = exc
        _ = self._put(_CLOSED)

    def receive(self) -> ReplicationResult:
        """Return the next result, raising ChannelClosed when none will follow."""
        if self._closed:
            raise ChannelClosed
        item = self._queue.get()
        if item is _CLOSED:
            self._closed = True
            if self._error is not None:
                raise self._error
            raise ChannelClosed
        return item  # type: ignore[return-value]

    def __iter__(self) -> Iterator[ReplicationResult]:
        while True:
            try:
                yield self.receive()
            except ChannelClosed:
                return

    def close(self) -> None:
        """Stop the pump and wait for it to exit if it is not blocked in the host."""
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=0.5)

    def __enter__(self) -> Self:
        self.start()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()
