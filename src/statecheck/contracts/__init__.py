"""Shared contracts for cross-boundary data types.

Dataclasses, enums, protocols and exceptions that cross the boundary
between the harness, the snapshot reader and the engine live here.

This package is a LEAF MODULE with no outbound dependencies to core/engine.
Settings classes are NOT re-exported here - import them from
statecheck.core.config.
"""

from statecheck.contracts.engine import ClusterClient, ReaderSessionProtocol, SnapshotOpener, SourceContext
from statecheck.contracts.enums import JobStatus, Partitioning, RedistributionMode, SnapshotFormat, VertexKind
from statecheck.contracts.errors import (
    DeadlineExceeded,
    HarnessError,
    IncompatibleSnapshotError,
    JobNotFoundError,
    SnapshotCorruptionError,
    SnapshotFailedError,
    SnapshotNotFoundError,
    SnapshotTimeout,
    StateNotReadyError,
    StateTypeMismatchError,
    SubmissionError,
    TeardownError,
    UnknownStateError,
    VerificationMismatch,
)
from statecheck.contracts.snapshot import JobInstance, SnapshotHandle, SnapshotMetadata, StatePartition, VerificationResult
from statecheck.contracts.state import ListStateDescriptor, MapStateDescriptor

__all__ = [
    "ClusterClient",
    "DeadlineExceeded",
    "HarnessError",
    "IncompatibleSnapshotError",
    "JobInstance",
    "JobNotFoundError",
    "JobStatus",
    "ListStateDescriptor",
    "MapStateDescriptor",
    "Partitioning",
    "ReaderSessionProtocol",
    "RedistributionMode",
    "SnapshotCorruptionError",
    "SnapshotFailedError",
    "SnapshotFormat",
    "SnapshotHandle",
    "SnapshotMetadata",
    "SnapshotNotFoundError",
    "SnapshotOpener",
    "SnapshotTimeout",
    "SourceContext",
    "StateNotReadyError",
    "StatePartition",
    "StateTypeMismatchError",
    "SubmissionError",
    "TeardownError",
    "UnknownStateError",
    "VerificationMismatch",
    "VerificationResult",
    "VertexKind",
]
