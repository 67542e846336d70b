# src/statecheck/contracts/engine.py
"""Protocols for the stream-execution collaborator.

The harness never reaches into an engine directly. It submits graphs,
polls status, triggers snapshots and cancels jobs through ClusterClient,
and reads snapshots back through SnapshotOpener. statecheck.engine ships
an in-process implementation of both; any engine exposing the same
surface can be verified with the same harness.

Lifecycle of one verification run:
1. submit_job(graph) - resolves with the job id once accepted
2. get_job_status(job_id) - polled until RUNNING or terminal
3. trigger_snapshot(job_id, dir, format) - resolves with the snapshot path
4. cancel_job(job_id) - always, even after failures
5. open(path, backend) - any number of times, after or during the job
"""

from collections.abc import Iterable
from concurrent.futures import Future
from pathlib import Path
from threading import RLock
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from statecheck.contracts.enums import JobStatus, RedistributionMode, SnapshotFormat

if TYPE_CHECKING:
    from statecheck.contracts.snapshot import SnapshotHandle, SnapshotMetadata
    from statecheck.contracts.state import ListStateDescriptor, MapStateDescriptor
    from statecheck.core.config import StateBackendSettings
    from statecheck.engine.graph import JobGraph


@runtime_checkable
class ClusterClient(Protocol):
    """Job submission and control surface of a cluster."""

    def submit_job(self, graph: "JobGraph") -> Future[str]:
        """Submit a graph. The future fails with SubmissionError on rejection."""
        ...

    def get_job_status(self, job_id: str) -> JobStatus:
        """Return the current status of a job."""
        ...

    def trigger_snapshot(self, job_id: str, directory: Path, snapshot_format: SnapshotFormat) -> Future[Path]:
        """Request a full snapshot; the future resolves with its directory."""
        ...

    def cancel_job(self, job_id: str) -> Future[None]:
        """Request cancellation; the future resolves once the job is down."""
        ...


class SourceContext(Protocol):
    """What a running source sees of the engine."""

    @property
    def checkpoint_lock(self) -> RLock:
        """Lock held by snapshot capture. Emissions under it are atomic."""
        ...

    def collect(self, element: Any) -> None:
        """Emit one element downstream."""
        ...


@runtime_checkable
class ReaderSessionProtocol(Protocol):
    """Read-only view over one opened snapshot."""

    @property
    def metadata(self) -> "SnapshotMetadata":
        ...

    def read_list_state(self, operator_uid: str, descriptor: "ListStateDescriptor") -> Iterable[Any]:
        ...

    def read_union_state(self, operator_uid: str, descriptor: "ListStateDescriptor") -> Iterable[Any]:
        ...

    def read_broadcast_state(self, operator_uid: str, descriptor: "MapStateDescriptor") -> Iterable[tuple[Any, Any]]:
        ...

    def restore_partitions(
        self,
        operator_uid: str,
        state_name: str,
        mode: RedistributionMode,
        parallelism: int,
    ) -> list[list[Any]]:
        ...

    def close(self) -> None:
        """Release the session's connection. The snapshot is untouched."""
        ...


class SnapshotOpener(Protocol):
    """Offline snapshot access."""

    def open(self, handle: "SnapshotHandle", backend: "StateBackendSettings") -> ReaderSessionProtocol:
        ...
