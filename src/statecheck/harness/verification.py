# src/statecheck/harness/verification.py
"""StateSnapshotHarness: verification entry points.

Each verify_* call runs the full scenario for one state semantics:

1. Build source -> stateful operator -> sink with the configured parallelism
2. Run the job until the source has emitted the reference sequence
3. Snapshot it, cancel it
4. Open the snapshot offline and read the state container back
5. Compare the normalized read-back with the reference

Harness failures (timeouts, mismatches, unreadable snapshots) are returned
as a failed VerificationResult carrying the diagnostic. Anything else is a
bug and propagates.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from pathlib import Path

import structlog

from statecheck.contracts.engine import ClusterClient, ReaderSessionProtocol, SnapshotOpener
from statecheck.contracts.errors import HarnessError
from statecheck.contracts.snapshot import SnapshotHandle, VerificationResult
from statecheck.contracts.state import ListStateDescriptor, MapStateDescriptor
from statecheck.core.config import HarnessSettings
from statecheck.core.snapshot.reader import SnapshotReader
from statecheck.engine.clock import Clock
from statecheck.engine.graph import JobGraph
from statecheck.harness.coordinator import JobCoordinator
from statecheck.harness.operator import StatefulAccumulator
from statecheck.harness.reconciler import LIST_STATE_LABEL, UNION_STATE_LABEL, ResultReconciler
from statecheck.harness.source import CompletionSignal, DeterministicSource

logger = structlog.get_logger(__name__)


class StateSnapshotHarness:
    """Verifies that snapshots of a running job capture its operator state.

    Example:
        with LocalCluster() as cluster:
            harness = StateSnapshotHarness(cluster)
            result = harness.verify_list_state(tmp_path)
            assert result.passed, result.message
    """

    def __init__(
        self,
        cluster: ClusterClient,
        settings: HarnessSettings | None = None,
        *,
        opener: SnapshotOpener | None = None,
        clock: Clock | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._settings = settings if settings is not None else HarnessSettings()
        self._opener: SnapshotOpener = opener if opener is not None else SnapshotReader()
        self._coordinator = JobCoordinator(
            cluster,
            poll_interval=self._settings.poll_interval_seconds,
            cancel_timeout=self._settings.cancel_timeout_seconds,
            clock=clock,
            sleep=sleep,
        )
        self._signal = CompletionSignal()
        self._reconciler = ResultReconciler(self._settings.elements)
        self._list_descriptor = ListStateDescriptor(self._settings.list_state_name, element_type=int)
        self._union_descriptor = ListStateDescriptor(self._settings.union_state_name, element_type=int)
        self._broadcast_descriptor = MapStateDescriptor(self._settings.broadcast_state_name, key_type=int, value_type=str)

    @property
    def settings(self) -> HarnessSettings:
        return self._settings

    @property
    def coordinator(self) -> JobCoordinator:
        return self._coordinator

    @property
    def completion_signal(self) -> CompletionSignal:
        return self._signal

    @property
    def list_descriptor(self) -> ListStateDescriptor:
        return self._list_descriptor

    @property
    def union_descriptor(self) -> ListStateDescriptor:
        return self._union_descriptor

    @property
    def broadcast_descriptor(self) -> MapStateDescriptor:
        return self._broadcast_descriptor

    # === Job ===

    def build_job_graph(self) -> JobGraph:
        """A fresh graph wired to this harness's completion signal."""
        source = DeterministicSource(
            self._settings.elements,
            self._signal,
            idle_seconds=self._settings.source_idle_seconds,
        )
        operator = StatefulAccumulator(self._list_descriptor, self._union_descriptor, self._broadcast_descriptor)
        return JobGraph.broadcast_pipeline(
            source,
            operator,
            uid=self._settings.operator_uid,
            parallelism=self._settings.parallelism,
            broadcast_descriptor=self._broadcast_descriptor,
        )

    def take_snapshot(self, directory: Path, graph: JobGraph | None = None) -> SnapshotHandle:
        """Run a job to its deterministic state and snapshot it into `directory`."""
        return self._coordinator.take_snapshot(
            graph if graph is not None else self.build_job_graph(),
            self._signal,
            Path(directory),
            snapshot_format=self._settings.snapshot_format,
            deadline_seconds=self._settings.deadline_seconds,
        )

    # === Verification ===

    def verify_list_state(self, directory: Path, handle: SnapshotHandle | None = None) -> VerificationResult:
        """Partitioned list state: every element exactly once across subtasks."""
        uid = self._settings.operator_uid

        def check(session: ReaderSessionProtocol) -> str:
            actual = self._reconciler.reconcile_list(LIST_STATE_LABEL, session.read_list_state(uid, self._list_descriptor))
            return f"list state holds {actual!r}"

        return self._verify("list", directory, handle, check)

    def verify_union_state(self, directory: Path, handle: SnapshotHandle | None = None) -> VerificationResult:
        """Union list state: one logical copy of the merged list."""
        uid = self._settings.operator_uid

        def check(session: ReaderSessionProtocol) -> str:
            actual = self._reconciler.reconcile_list(UNION_STATE_LABEL, session.read_union_state(uid, self._union_descriptor))
            return f"union state holds {actual!r}"

        return self._verify("union", directory, handle, check)

    def verify_broadcast_state(self, directory: Path, handle: SnapshotHandle | None = None) -> VerificationResult:
        """Broadcast state: keys are the reference, values their string forms."""
        uid = self._settings.operator_uid

        def check(session: ReaderSessionProtocol) -> str:
            keys, values = self._reconciler.reconcile_broadcast(session.read_broadcast_state(uid, self._broadcast_descriptor))
            return f"broadcast state keys {keys!r}, values {values!r}"

        return self._verify("broadcast", directory, handle, check)

    def verify_all(self, directory: Path) -> dict[str, VerificationResult]:
        """Verify all three semantics against a single snapshot."""
        try:
            handle = self.take_snapshot(directory)
        except HarnessError as e:
            logger.warning("Snapshot for verification failed", error=str(e), error_type=type(e).__name__)
            failed = VerificationResult(passed=False, message=str(e))
            return {"list": failed, "union": failed, "broadcast": failed}

        return {
            "list": self.verify_list_state(directory, handle),
            "union": self.verify_union_state(directory, handle),
            "broadcast": self.verify_broadcast_state(directory, handle),
        }

    def _verify(
        self,
        semantics: str,
        directory: Path,
        handle: SnapshotHandle | None,
        check: Callable[[ReaderSessionProtocol], str],
    ) -> VerificationResult:
        with structlog.contextvars.bound_contextvars(semantics=semantics):
            try:
                if handle is None:
                    handle = self.take_snapshot(directory)
                session = self._opener.open(handle, self._settings.state_backend)
                try:
                    summary = check(session)
                finally:
                    session.close()
            except HarnessError as e:
                logger.warning("Verification failed", semantics=semantics, error=str(e), error_type=type(e).__name__)
                return VerificationResult(passed=False, message=str(e))

            logger.info("Verification passed", semantics=semantics, snapshot=str(handle))
            return VerificationResult(passed=True, message=summary)
