# tests/engine/test_cluster.py
"""Tests for LocalCluster and job execution."""

import time
from pathlib import Path
from typing import Any, ClassVar

import pytest

from statecheck.contracts import (
    ClusterClient,
    JobNotFoundError,
    JobStatus,
    ListStateDescriptor,
    MapStateDescriptor,
    RedistributionMode,
    SnapshotFailedError,
    SnapshotFormat,
    SnapshotHandle,
    SourceContext,
    SubmissionError,
)
from statecheck.core.canonical import compute_topology_hash
from statecheck.core.snapshot.reader import SnapshotReader
from statecheck.engine.cluster import LocalCluster
from statecheck.engine.functions import FunctionInitializationContext, FunctionSnapshotContext, SourceFunction
from statecheck.engine.graph import JobGraph
from statecheck.engine.runtime import ExecutionJob
from statecheck.harness.operator import StatefulAccumulator
from statecheck.harness.source import CompletionSignal, DeterministicSource

UID = "stateful-operator"
LIST = ListStateDescriptor("list")
UNION = ListStateDescriptor("union")
BROADCAST = MapStateDescriptor("broadcast")


class FiniteSource(SourceFunction):
    """Emits its elements and returns, finishing the job."""

    def __init__(self, elements: tuple[int, ...]) -> None:
        self.elements = elements

    def run(self, ctx: SourceContext) -> None:
        for element in self.elements:
            ctx.collect(element)

    def cancel(self) -> None:
        pass


class ExplodingSource(SourceFunction):
    def run(self, ctx: SourceContext) -> None:
        raise RuntimeError("source broke")

    def cancel(self) -> None:
        pass


class FailingFlushOperator(StatefulAccumulator):
    def snapshot_state(self, context: FunctionSnapshotContext) -> None:
        raise RuntimeError("flush broke")


class FailingInitOperator(StatefulAccumulator):
    def initialize_state(self, context: FunctionInitializationContext) -> None:
        raise RuntimeError("init broke")


class ClosingOperator(StatefulAccumulator):
    closed: ClassVar[list[int]] = []

    def initialize_state(self, context: FunctionInitializationContext) -> None:
        super().initialize_state(context)
        self._index = context.subtask_index

    def close(self) -> None:
        ClosingOperator.closed.append(self._index)


def _operator(cls: type[StatefulAccumulator] = StatefulAccumulator) -> StatefulAccumulator:
    return cls(LIST, UNION, BROADCAST)


def _graph(source: SourceFunction, operator: Any = None, parallelism: int = 4, job_id: str | None = None) -> JobGraph:
    return JobGraph.broadcast_pipeline(
        source,
        operator if operator is not None else _operator(),
        uid=UID,
        parallelism=parallelism,
        broadcast_descriptor=BROADCAST,
        job_id=job_id,
    )


def _idle_source(signal: CompletionSignal, elements: tuple[int, ...] = (1, 2, 3)) -> DeterministicSource:
    signal.reset()
    return DeterministicSource(elements, signal, idle_seconds=0.01)


def _wait_for_status(cluster: LocalCluster, job_id: str, *statuses: JobStatus, timeout: float = 10.0) -> JobStatus:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        status = cluster.get_job_status(job_id)
        if status in statuses:
            return status
        time.sleep(0.005)
    raise AssertionError(f"job {job_id} never reached {statuses}, last status {cluster.get_job_status(job_id)}")


def _wait_for_signal(signal: CompletionSignal, timeout: float = 10.0) -> None:
    deadline = time.monotonic() + timeout
    while not signal.is_set():
        if time.monotonic() >= deadline:
            raise AssertionError("source never completed")
        time.sleep(0.005)


class TestSubmission:
    def test_implements_cluster_client(self, cluster: LocalCluster) -> None:
        assert isinstance(cluster, ClusterClient)

    def test_submitted_job_runs(self, cluster: LocalCluster) -> None:
        signal = CompletionSignal()
        graph = _graph(_idle_source(signal), job_id="job-running")

        job_id = cluster.submit_job(graph).result(timeout=10)

        assert job_id == "job-running"
        assert _wait_for_status(cluster, job_id, JobStatus.RUNNING) == JobStatus.RUNNING

    def test_invalid_graph_rejected(self, cluster: LocalCluster) -> None:
        graph = _graph(_idle_source(CompletionSignal()), parallelism=0)

        with pytest.raises(SubmissionError, match="invalid parallelism"):
            cluster.submit_job(graph).result(timeout=10)

    def test_duplicate_job_id_rejected(self, cluster: LocalCluster) -> None:
        cluster.submit_job(_graph(_idle_source(CompletionSignal()), job_id="dup")).result(timeout=10)

        with pytest.raises(SubmissionError, match="already submitted"):
            cluster.submit_job(_graph(_idle_source(CompletionSignal()), job_id="dup")).result(timeout=10)

    def test_unknown_job(self, cluster: LocalCluster) -> None:
        with pytest.raises(JobNotFoundError):
            cluster.get_job_status("missing")
        with pytest.raises(JobNotFoundError):
            cluster.cancel_job("missing").result(timeout=10)


class TestExecution:
    def test_finite_source_finishes_job(self, cluster: LocalCluster) -> None:
        job_id = cluster.submit_job(_graph(FiniteSource((1, 2)))).result(timeout=10)

        assert _wait_for_status(cluster, job_id, JobStatus.FINISHED) == JobStatus.FINISHED

    def test_source_exception_fails_job(self, cluster: LocalCluster) -> None:
        job_id = cluster.submit_job(_graph(ExplodingSource())).result(timeout=10)

        _wait_for_status(cluster, job_id, JobStatus.FAILED)
        failure = cluster.get_job_failure(job_id)
        assert isinstance(failure, RuntimeError)
        assert str(failure) == "source broke"

    def test_deploy_failure_fails_job(self, cluster: LocalCluster) -> None:
        job_id = cluster.submit_job(_graph(_idle_source(CompletionSignal()), _operator(FailingInitOperator))).result(timeout=10)

        _wait_for_status(cluster, job_id, JobStatus.FAILED)
        assert str(cluster.get_job_failure(job_id)) == "init broke"

    def test_running_job_has_no_failure(self, cluster: LocalCluster) -> None:
        job_id = cluster.submit_job(_graph(_idle_source(CompletionSignal()))).result(timeout=10)
        _wait_for_status(cluster, job_id, JobStatus.RUNNING)

        assert cluster.get_job_failure(job_id) is None


class TestSnapshots:
    def test_snapshot_captures_round_robin_and_broadcast(self, cluster: LocalCluster, tmp_path: Path) -> None:
        signal = CompletionSignal()
        graph = _graph(_idle_source(signal))
        job_id = cluster.submit_job(graph).result(timeout=10)
        _wait_for_signal(signal)

        path = cluster.trigger_snapshot(job_id, tmp_path, SnapshotFormat.CANONICAL).result(timeout=10)

        with SnapshotReader.read(SnapshotHandle(path)) as session:
            metadata = session.metadata
            # Split of 3 elements over 4 readers keeps the stored subtask layout
            assert session.restore_partitions(UID, "list", RedistributionMode.SPLIT, 4) == [[1], [2], [3], []]
            assert session.restore_partitions(UID, "union", RedistributionMode.UNION, 1) == [[1, 2, 3]]
            copies = session.restore_partitions(UID, "broadcast", RedistributionMode.BROADCAST, 4)
        assert copies == [[(1, "1"), (2, "2"), (3, "3")]] * 4
        assert metadata.job_id == job_id
        assert metadata.parallelism == 4
        assert metadata.backend == "hashmap"
        assert metadata.topology_hash == compute_topology_hash(graph)

    def test_snapshot_does_not_stop_job(self, cluster: LocalCluster, tmp_path: Path) -> None:
        signal = CompletionSignal()
        job_id = cluster.submit_job(_graph(_idle_source(signal))).result(timeout=10)
        _wait_for_signal(signal)

        first = cluster.trigger_snapshot(job_id, tmp_path, SnapshotFormat.CANONICAL).result(timeout=10)
        second = cluster.trigger_snapshot(job_id, tmp_path, SnapshotFormat.NATIVE).result(timeout=10)

        assert first != second
        assert cluster.get_job_status(job_id) == JobStatus.RUNNING

    def test_flush_failure_fails_job_and_writes_nothing(self, cluster: LocalCluster, tmp_path: Path) -> None:
        signal = CompletionSignal()
        job_id = cluster.submit_job(_graph(_idle_source(signal), _operator(FailingFlushOperator))).result(timeout=10)
        _wait_for_signal(signal)

        with pytest.raises(SnapshotFailedError, match="flush broke") as exc_info:
            cluster.trigger_snapshot(job_id, tmp_path, SnapshotFormat.CANONICAL).result(timeout=10)

        assert isinstance(exc_info.value.__cause__, RuntimeError)
        assert cluster.get_job_status(job_id) == JobStatus.FAILED
        assert list(tmp_path.iterdir()) == []

    def test_snapshot_of_cancelled_job(self, cluster: LocalCluster, tmp_path: Path) -> None:
        job_id = cluster.submit_job(_graph(_idle_source(CompletionSignal()))).result(timeout=10)
        _wait_for_status(cluster, job_id, JobStatus.RUNNING)
        cluster.cancel_job(job_id).result(timeout=10)

        with pytest.raises(SnapshotFailedError, match="canceled, not running"):
            cluster.trigger_snapshot(job_id, tmp_path, SnapshotFormat.CANONICAL).result(timeout=10)


class TestCancellation:
    def test_cancel_running_job(self, cluster: LocalCluster) -> None:
        job_id = cluster.submit_job(_graph(_idle_source(CompletionSignal()))).result(timeout=10)
        _wait_for_status(cluster, job_id, JobStatus.RUNNING)

        cluster.cancel_job(job_id).result(timeout=10)

        assert cluster.get_job_status(job_id) == JobStatus.CANCELED

    def test_cancel_is_idempotent(self, cluster: LocalCluster) -> None:
        job_id = cluster.submit_job(_graph(_idle_source(CompletionSignal()))).result(timeout=10)
        _wait_for_status(cluster, job_id, JobStatus.RUNNING)

        cluster.cancel_job(job_id).result(timeout=10)
        cluster.cancel_job(job_id).result(timeout=10)

        assert cluster.get_job_status(job_id) == JobStatus.CANCELED

    def test_cancel_finished_job_is_noop(self, cluster: LocalCluster) -> None:
        job_id = cluster.submit_job(_graph(FiniteSource((1,)))).result(timeout=10)
        _wait_for_status(cluster, job_id, JobStatus.FINISHED)

        cluster.cancel_job(job_id).result(timeout=10)

        assert cluster.get_job_status(job_id) == JobStatus.FINISHED

    def test_cancel_closes_every_subtask_once(self, cluster: LocalCluster) -> None:
        ClosingOperator.closed.clear()
        job_id = cluster.submit_job(_graph(_idle_source(CompletionSignal()), _operator(ClosingOperator), parallelism=3)).result(timeout=10)
        _wait_for_status(cluster, job_id, JobStatus.RUNNING)

        cluster.cancel_job(job_id).result(timeout=10)
        cluster.cancel_job(job_id).result(timeout=10)

        assert sorted(ClosingOperator.closed) == [0, 1, 2]

    def test_close_cancels_live_jobs(self) -> None:
        with LocalCluster() as local_cluster:
            job_id = local_cluster.submit_job(_graph(_idle_source(CompletionSignal()))).result(timeout=10)
            _wait_for_status(local_cluster, job_id, JobStatus.RUNNING)

        assert local_cluster.get_job_status(job_id) == JobStatus.CANCELED


class ThirdSubtaskInitFails(ClosingOperator):
    def initialize_state(self, context: FunctionInitializationContext) -> None:
        super().initialize_state(context)
        if context.subtask_index == 2:
            raise RuntimeError("init broke on subtask 2")


class TestExecutionJobLifecycle:
    """Subtask cleanup when cancellation races deployment."""

    def test_cancel_before_deploy_closes_deployed_subtasks(self) -> None:
        ClosingOperator.closed.clear()
        job = ExecutionJob(_graph(_idle_source(CompletionSignal()), _operator(ClosingOperator), parallelism=3), cancel_join_timeout=1.0)

        job.cancel()
        job.deploy()

        assert job.status == JobStatus.CANCELED
        assert sorted(ClosingOperator.closed) == [0, 1, 2]

    def test_repeated_close_after_race_closes_once(self) -> None:
        ClosingOperator.closed.clear()
        job = ExecutionJob(_graph(_idle_source(CompletionSignal()), _operator(ClosingOperator), parallelism=2), cancel_join_timeout=1.0)

        job.cancel()
        job.deploy()
        job.cancel()

        assert sorted(ClosingOperator.closed) == [0, 1]

    def test_partial_initialization_closes_initialized_subtasks(self) -> None:
        ClosingOperator.closed.clear()
        job = ExecutionJob(_graph(_idle_source(CompletionSignal()), _operator(ThirdSubtaskInitFails), parallelism=4), cancel_join_timeout=1.0)

        job.deploy()

        assert job.status == JobStatus.FAILED
        assert sorted(ClosingOperator.closed) == [0, 1]
