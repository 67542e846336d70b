"""All status codes, modes, and formats used across subsystem boundaries."""

from enum import StrEnum


class JobStatus(StrEnum):
    """Lifecycle status of a submitted job.

    INITIALIZING is reported between acceptance and the moment every
    subtask is deployed. FINISHED, FAILED and CANCELED are terminal.
    """

    INITIALIZING = "initializing"
    RUNNING = "running"
    CANCELLING = "cancelling"
    CANCELED = "canceled"
    FINISHED = "finished"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        """Whether the job can no longer change status."""
        return self in (JobStatus.CANCELED, JobStatus.FINISHED, JobStatus.FAILED)


class RedistributionMode(StrEnum):
    """How operator state is handed back to subtasks on restore.

    Stored in the snapshot (operator_states.mode).

    Values:
        SPLIT: Each element goes to exactly one restored subtask
        UNION: Every restored subtask receives the full merged list
        BROADCAST: Every restored subtask receives one identical map
    """

    SPLIT = "split"
    UNION = "union"
    BROADCAST = "broadcast"


class SnapshotFormat(StrEnum):
    """On-disk format requested when triggering a snapshot.

    CANONICAL is readable by any state backend. NATIVE records the writing
    backend and can only be opened with the same backend kind.
    """

    CANONICAL = "canonical"
    NATIVE = "native"


class Partitioning(StrEnum):
    """Edge partitioning between graph vertices."""

    REBALANCE = "rebalance"
    BROADCAST = "broadcast"
    FORWARD = "forward"


class VertexKind(StrEnum):
    """Kind of vertex in a job graph."""

    SOURCE = "source"
    OPERATOR = "operator"
    SINK = "sink"
