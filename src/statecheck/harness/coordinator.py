# src/statecheck/harness/coordinator.py
"""JobCoordinator: drives one job from submission to snapshot to teardown.

Every wait in a run draws on a single Deadline established before the job
is submitted, so the whole submit / await / snapshot sequence is bounded
by one wall-clock budget. Polling uses a fixed interval; nothing retries.

Teardown always runs once a job may exist. A cancellation failure is
logged and never replaces an error that is already propagating.
"""

from __future__ import annotations

import functools
import shutil
import time
from collections.abc import Callable, Iterator, Mapping
from concurrent.futures import Future
from contextlib import contextmanager
from pathlib import Path
from types import MappingProxyType

import structlog

from statecheck.contracts.engine import ClusterClient
from statecheck.contracts.enums import JobStatus, SnapshotFormat
from statecheck.contracts.errors import (
    DeadlineExceeded,
    SnapshotTimeout,
    StateNotReadyError,
    SubmissionError,
    TeardownError,
)
from statecheck.contracts.snapshot import JobInstance, SnapshotHandle
from statecheck.engine.clock import DEFAULT_CLOCK, Clock, Deadline
from statecheck.engine.graph import JobGraph
from statecheck.harness.source import CompletionSignal

logger = structlog.get_logger(__name__)


class JobCoordinator:
    """Submits, observes, snapshots and cancels jobs on a cluster.

    Args:
        cluster: Cluster the jobs run on
        poll_interval: Fixed sleep between status / signal polls
        cancel_timeout: How long teardown waits for cancellation
        clock: Time source for deadlines (MockClock in tests)
        sleep: Sleep function used between polls (advances a MockClock in tests)
    """

    def __init__(
        self,
        cluster: ClusterClient,
        *,
        poll_interval: float = 0.02,
        cancel_timeout: float = 30.0,
        clock: Clock | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if poll_interval <= 0:
            raise ValueError(f"poll_interval must be positive, got {poll_interval}")
        self._cluster = cluster
        self._poll_interval = poll_interval
        self._cancel_timeout = cancel_timeout
        self._clock = clock if clock is not None else DEFAULT_CLOCK
        self._sleep = sleep
        self._jobs: dict[str, JobInstance] = {}

    @property
    def jobs(self) -> Mapping[str, JobInstance]:
        """Every job this coordinator submitted, by id."""
        return MappingProxyType(self._jobs)

    # === Individual steps ===

    def run(self, graph: JobGraph, deadline: Deadline) -> str:
        """Submit a graph and wait (within the deadline) for it to be accepted.

        Raises:
            SubmissionError: If the cluster rejects the graph
            DeadlineExceeded: If the cluster does not answer in time
        """
        future = self._cluster.submit_job(graph)
        try:
            job_id = future.result(timeout=deadline.time_left())
        except TimeoutError as e:
            raise DeadlineExceeded(graph.job_id, "accepted") from e
        except SubmissionError:
            raise
        except Exception as e:
            raise SubmissionError(graph.job_id, f"{type(e).__name__}: {e}") from e

        self._jobs[job_id] = JobInstance(job_id=job_id)
        logger.info("Job accepted", job_id=job_id)
        return job_id

    def await_running(self, job_id: str, deadline: Deadline) -> JobStatus:
        """Poll until the job is running or has reached a terminal status.

        Returns:
            The status that ended the wait

        Raises:
            DeadlineExceeded: If neither happens before the deadline
        """
        while True:
            status = self._observe(job_id)
            if status == JobStatus.RUNNING or status.is_terminal:
                return status
            if not deadline.has_time_left():
                raise DeadlineExceeded(job_id, "running", last_status=status.value)
            self._pause(deadline)

    def await_deterministic_state(self, job_id: str, signal: CompletionSignal, deadline: Deadline) -> None:
        """Poll until the source reports that every element was emitted.

        A job that reaches a terminal status first can never set the
        signal, so the wait ends early with the same error.

        Raises:
            StateNotReadyError: If the signal is not set in time
        """
        started = deadline.clock.monotonic()
        while not signal.is_set():
            status = self._observe(job_id)
            if status.is_terminal or not deadline.has_time_left():
                waited = deadline.clock.monotonic() - started
                logger.warning("Source did not finish emitting", job_id=job_id, status=status.value, waited_seconds=waited)
                raise StateNotReadyError(job_id, waited)
            self._pause(deadline)

    def trigger_snapshot(
        self,
        job_id: str,
        directory: Path,
        snapshot_format: SnapshotFormat,
        deadline: Deadline,
    ) -> SnapshotHandle:
        """Trigger a snapshot and wait at most the deadline's remaining time.

        A snapshot that is already being written when the budget runs out
        cannot be cancelled; if it still materializes, its directory is
        removed.

        Raises:
            SnapshotTimeout: If the snapshot is not materialized in time
            SnapshotFailedError: If the engine could not produce it
        """
        budget = deadline.time_left()
        if budget <= 0:
            raise SnapshotTimeout(job_id, 0.0)

        future = self._cluster.trigger_snapshot(job_id, Path(directory), snapshot_format)
        try:
            path = future.result(timeout=budget)
        except TimeoutError as e:
            if not future.cancel():
                # Already running: whatever it materializes belongs to no run
                future.add_done_callback(functools.partial(_discard_late_snapshot, job_id))
            raise SnapshotTimeout(job_id, budget) from e

        handle = SnapshotHandle(path)
        instance = self._jobs.get(job_id)
        if instance is not None:
            instance.record_snapshot(handle)
        logger.info("Snapshot materialized", job_id=job_id, path=str(handle), snapshot_format=snapshot_format.value)
        return handle

    def teardown(self, job_id: str, *, reraise: bool = False) -> None:
        """Cancel a job and wait for the acknowledgement.

        A failure is always logged. It is re-raised as TeardownError only
        when `reraise` is set, which job_scope does when no other error is
        propagating.

        Raises:
            TeardownError: If `reraise` is set and cancellation failed or
                was not acknowledged within the cancel timeout
        """
        try:
            self._cluster.cancel_job(job_id).result(timeout=self._cancel_timeout)
        except Exception as e:
            logger.warning("Job cancellation failed", job_id=job_id, error=str(e), error_type=type(e).__name__)
            if reraise:
                raise TeardownError(job_id, e) from e
            return

        instance = self._jobs.get(job_id)
        if instance is not None:
            instance.status = JobStatus.CANCELED
        logger.info("Job torn down", job_id=job_id)

    # === Composite ===

    @contextmanager
    def job_scope(self, graph: JobGraph, deadline: Deadline) -> Iterator[str]:
        """Submit a job and guarantee its teardown.

        A rejected submission has nothing to cancel. A submission that timed
        out may still start later, so it is cancelled by its graph's id.
        """
        try:
            job_id = self.run(graph, deadline)
        except DeadlineExceeded:
            self.teardown(graph.job_id)
            raise

        failed = False
        try:
            yield job_id
        except BaseException:
            failed = True
            raise
        finally:
            self.teardown(job_id, reraise=not failed)

    def take_snapshot(
        self,
        graph: JobGraph,
        signal: CompletionSignal,
        directory: Path,
        *,
        snapshot_format: SnapshotFormat = SnapshotFormat.CANONICAL,
        deadline_seconds: float = 300.0,
    ) -> SnapshotHandle:
        """Run a job to its deterministic state and snapshot it.

        The signal is reset before submission, and one deadline covers
        acceptance, startup, emission and snapshot materialization.
        """
        signal.reset()
        deadline = Deadline.from_now(deadline_seconds, clock=self._clock)
        with self.job_scope(graph, deadline) as job_id:
            self.await_running(job_id, deadline)
            self.await_deterministic_state(job_id, signal, deadline)
            return self.trigger_snapshot(job_id, directory, snapshot_format, deadline)

    # === Internals ===

    def _observe(self, job_id: str) -> JobStatus:
        status = self._cluster.get_job_status(job_id)
        instance = self._jobs.get(job_id)
        if instance is not None:
            instance.status = status
        return status

    def _pause(self, deadline: Deadline) -> None:
        self._sleep(min(self._poll_interval, max(deadline.time_left(), 0.0)))


def _discard_late_snapshot(job_id: str, future: Future[Path]) -> None:
    """Done-callback for a snapshot that finished after its timeout was reported."""
    if future.cancelled() or future.exception() is not None:
        return
    path = Path(future.result())
    if not path.exists():
        return
    try:
        shutil.rmtree(path)
    except OSError as e:
        logger.warning("Late snapshot could not be removed", job_id=job_id, path=str(path), error=str(e))
        return
    logger.warning("Late snapshot discarded", job_id=job_id, path=str(path))
