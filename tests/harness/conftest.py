# tests/harness/conftest.py
"""Scripted cluster and clock helpers for coordinator tests.

FakeCluster answers every ClusterClient call from a script, so coordinator
behaviour can be checked without threads. Ticker is the `sleep` injected
into the coordinator: it advances a MockClock instead of sleeping and can
fire a callback after a given number of polls.
"""

from collections.abc import Callable
from concurrent.futures import Future
from pathlib import Path

import pytest

from statecheck.contracts import JobStatus, SnapshotFormat, SubmissionError
from statecheck.engine.clock import MockClock
from statecheck.engine.graph import JobGraph


class FakeCluster:
    """ClusterClient whose answers are scripted per test."""

    def __init__(
        self,
        statuses: list[JobStatus] | None = None,
        *,
        reject: str | None = None,
        accept_hangs: bool = False,
        snapshot_error: BaseException | None = None,
        snapshot_hangs: bool = False,
        cancel_error: BaseException | None = None,
        cancel_hangs: bool = False,
    ) -> None:
        self._statuses = list(statuses) if statuses is not None else [JobStatus.RUNNING]
        self._reject = reject
        self._accept_hangs = accept_hangs
        self._snapshot_error = snapshot_error
        self._snapshot_hangs = snapshot_hangs
        self._cancel_error = cancel_error
        self._cancel_hangs = cancel_hangs
        self.submitted: list[str] = []
        self.snapshots: list[tuple[str, Path, SnapshotFormat]] = []
        self.pending_snapshots: list[Future[Path]] = []
        self.cancelled: list[str] = []
        self.status_polls = 0

    def submit_job(self, graph: JobGraph) -> Future[str]:
        self.submitted.append(graph.job_id)
        future: Future[str] = Future()
        if self._reject is not None:
            future.set_exception(SubmissionError(graph.job_id, self._reject))
        elif not self._accept_hangs:
            future.set_result(graph.job_id)
        return future

    def get_job_status(self, job_id: str) -> JobStatus:
        self.status_polls += 1
        # The last scripted status repeats forever
        if len(self._statuses) > 1:
            return self._statuses.pop(0)
        return self._statuses[0]

    def trigger_snapshot(self, job_id: str, directory: Path, snapshot_format: SnapshotFormat) -> Future[Path]:
        self.snapshots.append((job_id, directory, snapshot_format))
        future: Future[Path] = Future()
        if self._snapshot_error is not None:
            future.set_exception(self._snapshot_error)
        elif self._snapshot_hangs:
            # Already running on the engine side, so it cannot be cancelled
            future.set_running_or_notify_cancel()
            self.pending_snapshots.append(future)
        else:
            future.set_result(directory / f"snapshot-{len(self.snapshots)}")
        return future

    def cancel_job(self, job_id: str) -> Future[None]:
        self.cancelled.append(job_id)
        future: Future[None] = Future()
        if self._cancel_error is not None:
            future.set_exception(self._cancel_error)
        elif not self._cancel_hangs:
            future.set_result(None)
        return future


class Ticker:
    """Injected sleep: advances the clock, optionally fires from the Nth call on."""

    def __init__(self, clock: MockClock, *, after: int | None = None, action: Callable[[], None] | None = None) -> None:
        self.clock = clock
        self.after = after
        self.action = action
        self.calls: list[float] = []

    def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)
        self.clock.advance(seconds)
        if self.after is not None and self.action is not None and len(self.calls) >= self.after:
            self.action()


@pytest.fixture
def clock() -> MockClock:
    return MockClock(start=100.0)
