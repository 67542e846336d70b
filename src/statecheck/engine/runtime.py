# src/statecheck/engine/runtime.py
"""Execution of one job inside the local cluster.

A job runs its source on a dedicated thread. Every emitted element is
delivered synchronously to the operator subtasks while the job's
checkpoint lock is held: rebalanced inputs round-robin over subtasks,
broadcast inputs to every subtask. Snapshot capture takes the same lock,
so a snapshot sees either none or all of an emission made under it.
"""

from __future__ import annotations

import copy
import itertools
import threading
from collections.abc import Iterator
from dataclasses import dataclass, field
from typing import Any

import structlog

from statecheck.contracts.enums import JobStatus, Partitioning
from statecheck.contracts.errors import SnapshotFailedError
from statecheck.contracts.snapshot import StatePartition
from statecheck.contracts.state import MapStateDescriptor
from statecheck.engine.functions import (
    BroadcastProcessFunction,
    Context,
    FunctionInitializationContext,
    FunctionSnapshotContext,
    ReadOnlyContext,
    SourceFunction,
)
from statecheck.engine.graph import JobGraph, VertexInfo
from statecheck.engine.state import OperatorStateStore

logger = structlog.get_logger(__name__)


class Subtask:
    """One parallel instance of an operator."""

    def __init__(
        self,
        function: BroadcastProcessFunction,
        *,
        index: int,
        parallelism: int,
        broadcast_descriptors: tuple[MapStateDescriptor, ...],
    ) -> None:
        self.index = index
        self.parallelism = parallelism
        self.function = function
        self.state_store = OperatorStateStore(broadcast_descriptors)

    def initialize(self) -> None:
        self.function.initialize_state(
            FunctionInitializationContext(
                operator_state_store=self.state_store,
                subtask_index=self.index,
                parallelism=self.parallelism,
            )
        )
        self.function.open()

    def process(self, value: Any) -> None:
        self.function.process_element(value, ReadOnlyContext(self.state_store, self.index))

    def process_broadcast(self, value: Any) -> None:
        self.function.process_broadcast_element(value, Context(self.state_store, self.index))

    def snapshot(self, snapshot_id: str) -> list[StatePartition]:
        self.function.snapshot_state(FunctionSnapshotContext(snapshot_id=snapshot_id, subtask_index=self.index))
        return self.state_store.snapshot()

    def close(self) -> None:
        self.function.close()


@dataclass
class OperatorRuntime:
    """Deployed subtasks of one operator vertex plus its input wiring."""

    uid: str
    subtasks: list[Subtask]
    rebalanced: bool
    broadcast: bool
    _cursor: Iterator[Subtask] = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self._cursor = itertools.cycle(self.subtasks)

    def next_subtask(self) -> Subtask:
        return next(self._cursor)


class _JobSourceContext:
    """SourceContext bound to one job."""

    def __init__(self, job: ExecutionJob) -> None:
        self._job = job

    @property
    def checkpoint_lock(self) -> threading.RLock:
        return self._job.checkpoint_lock

    def collect(self, element: Any) -> None:
        with self._job.checkpoint_lock:
            self._job.emit(element)


class ExecutionJob:
    """Runtime state of one accepted job."""

    def __init__(self, graph: JobGraph, *, cancel_join_timeout: float = 10.0) -> None:
        self.job_id = graph.job_id
        self.parallelism = max(op.parallelism for op in graph.get_operators())
        self._graph = graph
        self._cancel_join_timeout = cancel_join_timeout
        self.checkpoint_lock = threading.RLock()
        self._status_lock = threading.Lock()
        self._status = JobStatus.INITIALIZING
        self._failure: BaseException | None = None
        self._operators: list[OperatorRuntime] = []
        self._source: SourceFunction = graph.get_source().function
        self._source_thread: threading.Thread | None = None
        self._unclosed: list[OperatorRuntime] = []

    @property
    def status(self) -> JobStatus:
        with self._status_lock:
            return self._status

    @property
    def failure(self) -> BaseException | None:
        return self._failure

    @property
    def operators(self) -> list[OperatorRuntime]:
        return self._operators

    def _transition(self, status: JobStatus, *, from_status: JobStatus | None = None) -> bool:
        """Move to `status` unless already terminal (or not in `from_status`). Returns whether it moved."""
        with self._status_lock:
            if self._status.is_terminal:
                return False
            if from_status is not None and self._status != from_status:
                return False
            self._status = status
        logger.debug("Job status changed", job_id=self.job_id, status=status.value)
        return True

    # === Lifecycle ===

    def deploy(self) -> None:
        """Create and initialize every subtask, then start the source thread.

        Deployment failures fail the job; nothing is raised to the caller,
        which only observes the resulting status.
        """
        try:
            for info in self._graph.get_operators():
                op = self._deploy_operator(info)
                with self.checkpoint_lock:
                    self._operators.append(op)
                    self._unclosed.append(op)
        except Exception as e:
            self.fail(e)
            return

        if not self._transition(JobStatus.RUNNING, from_status=JobStatus.INITIALIZING):
            # Cancelled or failed while deploying; operators opened after
            # that close are still open
            self._close_subtasks()
            return
        self._source_thread = threading.Thread(
            target=self._run_source,
            name=f"statecheck-source-{self.job_id[:8]}",
            daemon=True,
        )
        self._source_thread.start()
        logger.info("Job running", job_id=self.job_id, parallelism=self.parallelism)

    def _deploy_operator(self, info: VertexInfo) -> OperatorRuntime:
        inputs = self._graph.get_inputs(info.vertex_id)
        descriptors = tuple(d for edge in inputs if edge.partitioning == Partitioning.BROADCAST for d in edge.broadcast_descriptors)
        subtasks = [
            Subtask(
                copy.deepcopy(info.function),
                index=i,
                parallelism=info.parallelism,
                broadcast_descriptors=descriptors,
            )
            for i in range(info.parallelism)
        ]
        # uid is guaranteed by JobGraph.validate()
        assert info.uid is not None
        for count, subtask in enumerate(subtasks):
            try:
                subtask.initialize()
            except Exception:
                self._close_each(info.uid, subtasks[:count])
                raise
        return OperatorRuntime(
            uid=info.uid,
            subtasks=subtasks,
            rebalanced=any(edge.partitioning == Partitioning.REBALANCE for edge in inputs),
            broadcast=bool(descriptors),
        )

    def _run_source(self) -> None:
        try:
            self._source.run(_JobSourceContext(self))
        except Exception as e:
            self.fail(e)
            return
        if self.status == JobStatus.CANCELLING:
            return
        if self._transition(JobStatus.FINISHED):
            logger.info("Job finished", job_id=self.job_id)
            self._close_subtasks()

    def emit(self, element: Any) -> None:
        """Deliver one element to every operator. Caller holds the checkpoint lock."""
        if self.status != JobStatus.RUNNING:
            return
        for op in self._operators:
            if op.rebalanced:
                op.next_subtask().process(element)
            if op.broadcast:
                for subtask in op.subtasks:
                    subtask.process_broadcast(element)

    def capture_snapshot(self, snapshot_id: str) -> dict[str, list[list[StatePartition]]]:
        """Flush every subtask and copy its state.

        Returns:
            operator uid -> per-subtask list of partitions, in subtask order

        Raises:
            SnapshotFailedError: If the job is not running or any flush fails.
                A flush failure also fails the job.
        """
        with self.checkpoint_lock:
            status = self.status
            if status != JobStatus.RUNNING:
                raise SnapshotFailedError(self.job_id, f"job is {status.value}, not running")
            captured: dict[str, list[list[StatePartition]]] = {}
            for op in self._operators:
                per_subtask: list[list[StatePartition]] = []
                for subtask in op.subtasks:
                    try:
                        per_subtask.append(subtask.snapshot(snapshot_id))
                    except Exception as e:
                        self.fail(e)
                        raise SnapshotFailedError(
                            self.job_id,
                            f"state flush of operator '{op.uid}' subtask {subtask.index} raised {type(e).__name__}: {e}",
                        ) from e
                captured[op.uid] = per_subtask
            return captured

    def cancel(self) -> None:
        """Stop the source and release the subtasks. No-op on terminal jobs."""
        if not self._transition(JobStatus.CANCELLING):
            return
        self._source.cancel()
        thread = self._source_thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(self._cancel_join_timeout)
            if thread.is_alive():
                logger.warning("Source thread did not stop within timeout", job_id=self.job_id, timeout=self._cancel_join_timeout)
        self._close_subtasks()
        with self._status_lock:
            self._status = JobStatus.CANCELED
        logger.info("Job canceled", job_id=self.job_id)

    def fail(self, cause: BaseException) -> None:
        """Fail the job with `cause`. The first failure wins."""
        if not self._transition(JobStatus.FAILED):
            return
        self._failure = cause
        logger.error("Job failed", job_id=self.job_id, error=str(cause), error_type=type(cause).__name__)
        self._source.cancel()
        self._close_subtasks()

    def _close_subtasks(self) -> None:
        if not self.checkpoint_lock.acquire(timeout=self._cancel_join_timeout):
            logger.warning("Checkpoint lock still held, leaving subtasks open", job_id=self.job_id)
            return
        try:
            # Each deployed operator is closed exactly once, however many
            # of cancel / fail / finish / deploy get here
            while self._unclosed:
                op = self._unclosed.pop(0)
                self._close_each(op.uid, op.subtasks)
        finally:
            self.checkpoint_lock.release()

    def _close_each(self, operator_uid: str, subtasks: list[Subtask]) -> None:
        for subtask in subtasks:
            try:
                subtask.close()
            except Exception as e:
                logger.warning(
                    "Subtask close failed",
                    job_id=self.job_id,
                    operator_uid=operator_uid,
                    subtask=subtask.index,
                    error=str(e),
                )
