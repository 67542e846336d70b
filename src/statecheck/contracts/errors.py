"""Exception taxonomy for snapshot verification.

Every harness failure is terminal for a single verification run. Nothing in
this package retries; polling for a condition under a deadline is the only
repeated work, and it ends in one of these errors when the deadline passes.
"""

from collections.abc import Sequence
from typing import Any


class HarnessError(Exception):
    """Base class for all snapshot verification failures."""

    pass


# =============================================================================
# Coordinator failures
# =============================================================================


class SubmissionError(HarnessError):
    """Raised when the cluster rejects a job graph."""

    def __init__(self, job_id: str, reason: str) -> None:
        self.job_id = job_id
        self.reason = reason
        super().__init__(f"Job {job_id} was rejected: {reason}")


class DeadlineExceeded(HarnessError):
    """Raised when a job never reached a running or terminal status in time.

    Attributes:
        job_id: The job being waited on
        waited_for: Human-readable description of the awaited condition
        last_status: Last status observed before the deadline passed (if any)
    """

    def __init__(self, job_id: str, waited_for: str, last_status: str | None = None) -> None:
        self.job_id = job_id
        self.waited_for = waited_for
        self.last_status = last_status
        super().__init__(f"Deadline exceeded waiting for job {job_id} to become {waited_for} (last status: {last_status})")


class StateNotReadyError(HarnessError):
    """Raised when the source never finished emitting within the deadline.

    This is a hard failure. A snapshot of a partially fed job proves nothing.
    """

    def __init__(self, job_id: str, waited_seconds: float) -> None:
        self.job_id = job_id
        self.waited_seconds = waited_seconds
        super().__init__(f"Failed to initialize state of job {job_id} within deadline ({waited_seconds:.3f}s)")


class SnapshotTimeout(HarnessError):
    """Raised when a triggered snapshot was not materialized in time."""

    def __init__(self, job_id: str, budget_seconds: float) -> None:
        self.job_id = job_id
        self.budget_seconds = budget_seconds
        super().__init__(f"Snapshot of job {job_id} not materialized within remaining budget ({budget_seconds:.3f}s)")


class TeardownError(HarnessError):
    """Raised when a job could not be cancelled after an otherwise clean run.

    Attributes:
        job_id: The job left behind
        cause: The cancellation failure (timeout or cluster error)
    """

    def __init__(self, job_id: str, cause: BaseException) -> None:
        self.job_id = job_id
        self.cause = cause
        detail = str(cause) or type(cause).__name__
        super().__init__(f"Job {job_id} could not be cancelled: {detail}")


class VerificationMismatch(HarnessError):
    """Raised when read-back state disagrees with the reference sequence.

    Both sequences are stored already normalized (sorted) so the message
    shows exactly what was compared.
    """

    def __init__(self, label: str, expected: Sequence[Any], actual: Sequence[Any]) -> None:
        self.label = label
        self.expected = list(expected)
        self.actual = list(actual)
        super().__init__(f"{label}: expected {self.expected!r}, got {self.actual!r}")


# =============================================================================
# Engine failures
# =============================================================================


class JobNotFoundError(HarnessError):
    """Raised when an operation names a job the cluster does not know."""

    def __init__(self, job_id: str) -> None:
        self.job_id = job_id
        super().__init__(f"Unknown job {job_id}")


class SnapshotFailedError(HarnessError):
    """Raised by the engine when a snapshot could not be produced.

    Covers operator flush failures (which also fail the job) and snapshots
    requested against a job that is not running.
    """

    def __init__(self, job_id: str, reason: str) -> None:
        self.job_id = job_id
        self.reason = reason
        super().__init__(f"Snapshot of job {job_id} failed: {reason}")


# =============================================================================
# Reader failures
# =============================================================================


class SnapshotNotFoundError(HarnessError):
    """Raised when a snapshot handle does not point at a snapshot directory."""

    pass


class IncompatibleSnapshotError(HarnessError):
    """Raised when a snapshot cannot be read with the requested settings.

    Covers unknown format versions, native snapshots opened with another
    backend, and accessors that do not match the stored redistribution mode.
    """

    pass


class SnapshotCorruptionError(HarnessError):
    """Raised when stored state fails its integrity checks."""

    pass


class UnknownStateError(HarnessError):
    """Raised when the snapshot holds no state under the requested uid and name."""

    def __init__(self, operator_uid: str, state_name: str) -> None:
        self.operator_uid = operator_uid
        self.state_name = state_name
        super().__init__(f"No state named '{state_name}' for operator '{operator_uid}'")


class StateTypeMismatchError(HarnessError):
    """Raised when restored values do not match the descriptor's declared types."""

    def __init__(self, state_name: str, detail: str) -> None:
        self.state_name = state_name
        self.detail = detail
        super().__init__(f"State '{state_name}' does not match its descriptor: {detail}")
