# tests/harness/test_verification.py
"""Tests for StateSnapshotHarness result handling.

Jobs here run on a scripted cluster or a LocalCluster; the read side is
replaced by StubOpener where a specific read-back is needed.
"""

from collections.abc import Iterable
from pathlib import Path
from typing import Any

import pytest

from statecheck.contracts import (
    JobStatus,
    ListStateDescriptor,
    MapStateDescriptor,
    RedistributionMode,
    SnapshotHandle,
    SnapshotMetadata,
    VertexKind,
)
from statecheck.core.config import HarnessSettings, StateBackendSettings
from statecheck.engine.clock import MockClock
from statecheck.engine.cluster import LocalCluster
from statecheck.harness.verification import StateSnapshotHarness
from tests.harness.conftest import FakeCluster, Ticker


class StubSession:
    def __init__(self, list_state: list[int], union_state: list[int], broadcast_state: list[tuple[int, str]]) -> None:
        self._list = list_state
        self._union = union_state
        self._broadcast = broadcast_state
        self.closed = False

    @property
    def metadata(self) -> SnapshotMetadata:
        raise NotImplementedError

    def read_list_state(self, operator_uid: str, descriptor: ListStateDescriptor) -> Iterable[Any]:
        return self._list

    def read_union_state(self, operator_uid: str, descriptor: ListStateDescriptor) -> Iterable[Any]:
        return self._union

    def read_broadcast_state(self, operator_uid: str, descriptor: MapStateDescriptor) -> Iterable[tuple[Any, Any]]:
        return self._broadcast

    def restore_partitions(self, operator_uid: str, state_name: str, mode: RedistributionMode, parallelism: int) -> list[list[Any]]:
        raise NotImplementedError

    def close(self) -> None:
        self.closed = True


class StubOpener:
    def __init__(self, session: StubSession | None = None, error: Exception | None = None) -> None:
        self.session = session
        self.error = error
        self.opened: list[SnapshotHandle] = []

    def open(self, handle: SnapshotHandle, backend: StateBackendSettings) -> StubSession:
        self.opened.append(handle)
        if self.error is not None:
            raise self.error
        assert self.session is not None
        return self.session


def _scripted_harness(opener: StubOpener, *, signal_after: int | None = 1, **cluster_kwargs: Any) -> StateSnapshotHarness:
    """Harness on a FakeCluster whose source 'finishes' after `signal_after` polls."""
    clock = MockClock()
    ticker = Ticker(clock)
    harness = StateSnapshotHarness(
        FakeCluster(**cluster_kwargs),
        HarnessSettings(deadline_seconds=1.0),
        opener=opener,
        clock=clock,
        sleep=ticker,
    )
    if signal_after is not None:
        ticker.after = signal_after
        ticker.action = harness.completion_signal.set
    return harness


class TestBuildJobGraph:
    def test_graph_matches_settings(self) -> None:
        harness = StateSnapshotHarness(FakeCluster(), HarnessSettings(parallelism=3, operator_uid="op"))

        graph = harness.build_job_graph()

        graph.validate()
        [operator] = graph.vertices(VertexKind.OPERATOR)
        assert (operator.uid, operator.parallelism) == ("op", 3)
        assert graph.get_source().function.elements == (1, 2, 3)

    def test_descriptors_follow_settings(self) -> None:
        harness = StateSnapshotHarness(FakeCluster(), HarnessSettings(list_state_name="a", union_state_name="b", broadcast_state_name="c"))

        assert harness.list_descriptor == ListStateDescriptor("a", element_type=int)
        assert harness.union_descriptor == ListStateDescriptor("b", element_type=int)
        assert harness.broadcast_descriptor == MapStateDescriptor("c", key_type=int, value_type=str)

    def test_each_graph_is_fresh(self) -> None:
        harness = StateSnapshotHarness(FakeCluster())

        assert harness.build_job_graph().job_id != harness.build_job_graph().job_id


class TestVerificationResults:
    def test_passing_read_back(self, tmp_path: Path) -> None:
        session = StubSession([3, 2, 1], [2, 1, 3], [(2, "2"), (1, "1"), (3, "3")])
        harness = _scripted_harness(StubOpener(session))

        list_result = harness.verify_list_state(tmp_path)
        union_result = harness.verify_union_state(tmp_path)
        broadcast_result = harness.verify_broadcast_state(tmp_path)

        assert list_result.passed, list_result.message
        assert union_result.passed, union_result.message
        assert broadcast_result.passed, broadcast_result.message
        assert "[1, 2, 3]" in list_result.message
        assert session.closed

    def test_mismatch_becomes_failed_result(self, tmp_path: Path) -> None:
        session = StubSession([1, 2], [1, 2, 3], [])
        harness = _scripted_harness(StubOpener(session))

        result = harness.verify_list_state(tmp_path)

        assert not result
        assert result.message == "Unexpected elements read from list state: expected [1, 2, 3], got [1, 2]"
        assert session.closed

    def test_union_read_from_every_reader_fails(self, tmp_path: Path) -> None:
        session = StubSession([1, 2, 3], [1, 2, 3] * 4, [])
        harness = _scripted_harness(StubOpener(session))

        result = harness.verify_union_state(tmp_path)

        assert not result.passed
        assert result.message.startswith("Unexpected elements read from union state")

    def test_broadcast_value_mismatch(self, tmp_path: Path) -> None:
        session = StubSession([], [], [(1, "1"), (2, "2"), (3, "x")])
        harness = _scripted_harness(StubOpener(session))

        result = harness.verify_broadcast_state(tmp_path)

        assert not result.passed
        assert result.message.startswith("Unexpected element in broadcast state values")

    def test_state_never_ready_becomes_failed_result(self, tmp_path: Path) -> None:
        opener = StubOpener(StubSession([], [], []))
        harness = _scripted_harness(opener, signal_after=None)

        result = harness.verify_list_state(tmp_path)

        assert not result.passed
        assert "Failed to initialize state" in result.message
        assert opener.opened == []

    def test_job_failure_before_signal_becomes_failed_result(self, tmp_path: Path) -> None:
        harness = _scripted_harness(StubOpener(StubSession([], [], [])), signal_after=None, statuses=[JobStatus.FAILED])

        result = harness.verify_union_state(tmp_path)

        assert not result.passed

    def test_unacknowledged_cancel_becomes_failed_result(self, tmp_path: Path) -> None:
        clock = MockClock()
        ticker = Ticker(clock)
        session = StubSession([1, 2, 3], [1, 2, 3], [(1, "1"), (2, "2"), (3, "3")])
        harness = StateSnapshotHarness(
            FakeCluster(cancel_hangs=True),
            HarnessSettings(deadline_seconds=1.0, cancel_timeout_seconds=0.05),
            opener=StubOpener(session),
            clock=clock,
            sleep=ticker,
        )
        ticker.after, ticker.action = 1, harness.completion_signal.set

        results = [harness.verify_list_state(tmp_path), *harness.verify_all(tmp_path).values()]

        for result in results:
            assert not result.passed
            assert "could not be cancelled" in result.message

    def test_non_harness_errors_propagate(self, tmp_path: Path) -> None:
        harness = _scripted_harness(StubOpener(error=ValueError("bug")))

        with pytest.raises(ValueError, match="bug"):
            harness.verify_list_state(tmp_path)

    def test_existing_handle_skips_job(self, tmp_path: Path) -> None:
        opener = StubOpener(StubSession([1, 2, 3], [], []))
        cluster = FakeCluster()
        harness = StateSnapshotHarness(cluster, opener=opener)
        handle = SnapshotHandle(tmp_path / "snapshot-x")

        result = harness.verify_list_state(tmp_path, handle)

        assert result.passed
        assert cluster.submitted == []
        assert opener.opened == [handle]

    def test_verify_all_shares_one_snapshot(self, tmp_path: Path) -> None:
        opener = StubOpener(StubSession([1, 2, 3], [1, 2, 3], [(1, "1"), (2, "2"), (3, "3")]))
        harness = _scripted_harness(opener)

        results = harness.verify_all(tmp_path)

        assert set(results) == {"list", "union", "broadcast"}
        assert all(results.values())
        assert len(set(opener.opened)) == 1

    def test_verify_all_snapshot_failure_fails_everything(self, tmp_path: Path) -> None:
        harness = _scripted_harness(StubOpener(StubSession([], [], [])), signal_after=None)

        results = harness.verify_all(tmp_path)

        assert not any(results.values())


class TestOnLocalCluster:
    def test_reference_scenario(self, cluster: LocalCluster, fast_settings: HarnessSettings, tmp_path: Path) -> None:
        harness = StateSnapshotHarness(cluster, fast_settings)

        for result in (
            harness.verify_list_state(tmp_path),
            harness.verify_union_state(tmp_path),
            harness.verify_broadcast_state(tmp_path),
        ):
            assert result.passed, result.message

    def test_jobs_are_cancelled_after_each_run(self, cluster: LocalCluster, fast_settings: HarnessSettings, tmp_path: Path) -> None:
        harness = StateSnapshotHarness(cluster, fast_settings)

        harness.verify_list_state(tmp_path)
        harness.verify_union_state(tmp_path)

        assert len(harness.coordinator.jobs) == 2
        for job_id, instance in harness.coordinator.jobs.items():
            assert instance.status == JobStatus.CANCELED
            assert cluster.get_job_status(job_id) == JobStatus.CANCELED
