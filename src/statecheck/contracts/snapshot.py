"""Snapshot, job, and verification domain contracts."""

from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, ClassVar

from statecheck.contracts.enums import JobStatus, RedistributionMode, SnapshotFormat


@dataclass(frozen=True)
class SnapshotHandle:
    """Durable reference to one materialized snapshot.

    Immutable once created. Any number of readers may open it, during or
    after the life of the job that produced it.
    """

    path: Path

    def __post_init__(self) -> None:
        # Accept str for convenience; store a Path
        object.__setattr__(self, "path", Path(self.path))

    def __str__(self) -> str:
        return str(self.path)


@dataclass(frozen=True)
class SnapshotMetadata:
    """Header row of a snapshot.

    Format Versions:
        Version 1: per-subtask payload rows with canonical payload hashes
    """

    CURRENT_FORMAT_VERSION: ClassVar[int] = 1

    snapshot_id: str
    job_id: str
    snapshot_format: SnapshotFormat
    format_version: int
    parallelism: int
    topology_hash: str
    backend: str
    created_at: datetime

    def __post_init__(self) -> None:
        if self.parallelism < 1:
            raise ValueError(f"parallelism must be >= 1, got {self.parallelism}")
        if self.created_at.tzinfo is None:
            raise ValueError("created_at must be timezone-aware")


@dataclass
class JobInstance:
    """One submission of a job graph, as tracked by the coordinator."""

    job_id: str
    status: JobStatus = JobStatus.INITIALIZING
    snapshots: list[SnapshotHandle] | None = None

    def record_snapshot(self, handle: SnapshotHandle) -> None:
        if self.snapshots is None:
            self.snapshots = []
        self.snapshots.append(handle)


@dataclass(frozen=True)
class VerificationResult:
    """Outcome of verifying one state semantics against the reference.

    A passing result carries a short summary; a failing one carries the
    diagnostic naming the expected and actual sequences.
    """

    passed: bool
    message: str

    def __post_init__(self) -> None:
        if not self.message:
            raise ValueError("VerificationResult must carry a message")

    def __bool__(self) -> bool:
        return self.passed


@dataclass(frozen=True)
class StatePartition:
    """One subtask's share of one named state container at snapshot time.

    List state payloads are the elements in insertion order. Broadcast
    payloads are (key, value) pairs in insertion order.
    """

    state_name: str
    mode: RedistributionMode
    payload: tuple[Any, ...]
