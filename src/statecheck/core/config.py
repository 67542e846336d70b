# src/statecheck/core/config.py
"""
Configuration schema for verification runs.

Uses Pydantic for validation. Settings are frozen (immutable) after
construction and are always built in code; nothing is loaded from disk.
"""

from typing import Literal

from pydantic import BaseModel, Field, field_validator, model_validator

from statecheck.contracts.enums import SnapshotFormat


class StateBackendSettings(BaseModel):
    """State backend used to restore snapshot partitions for reading.

    reader_parallelism is the number of restored readers that state is
    redistributed to. Union state is handed to every one of them in full.

    Example:
        StateBackendSettings(kind="hashmap", reader_parallelism=4)
    """

    model_config = {"frozen": True}

    kind: Literal["hashmap"] = Field(
        default="hashmap",
        description="Backend that restored state is materialized into",
    )
    reader_parallelism: int = Field(
        default=1,
        ge=1,
        description="Number of readers state is redistributed to on restore",
    )


class HarnessSettings(BaseModel):
    """Settings for one snapshot verification run.

    The defaults reproduce the reference scenario: elements (1, 2, 3) fed to
    a stateful operator running at parallelism 4, with a five minute budget
    for the whole submit/await/snapshot sequence.
    """

    model_config = {"frozen": True}

    elements: tuple[int, ...] = Field(
        default=(1, 2, 3),
        description="Reference sequence emitted by the deterministic source",
    )
    parallelism: int = Field(default=4, ge=1, description="Parallelism of the stateful operator")
    operator_uid: str = Field(default="stateful-operator", min_length=1)
    list_state_name: str = Field(default="list", min_length=1)
    union_state_name: str = Field(default="union", min_length=1)
    broadcast_state_name: str = Field(default="broadcast", min_length=1)
    deadline_seconds: float = Field(
        default=300.0,
        gt=0,
        description="Wall-clock budget shared by every wait in one run",
    )
    poll_interval_seconds: float = Field(
        default=0.02,
        gt=0,
        description="Fixed sleep between polls of job status and completion signal",
    )
    cancel_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        description="How long teardown waits for the cluster to acknowledge cancellation",
    )
    source_idle_seconds: float = Field(
        default=0.1,
        gt=0,
        description="Sleep between cancellation checks once the source has emitted",
    )
    snapshot_format: SnapshotFormat = SnapshotFormat.CANONICAL
    state_backend: StateBackendSettings = Field(default_factory=StateBackendSettings)

    @field_validator("elements")
    @classmethod
    def validate_elements_not_empty(cls, v: tuple[int, ...]) -> tuple[int, ...]:
        if not v:
            raise ValueError("elements must contain at least one value")
        return v

    @model_validator(mode="after")
    def validate_state_names_distinct(self) -> "HarnessSettings":
        """Each state container needs its own name within the operator."""
        names = [self.list_state_name, self.union_state_name, self.broadcast_state_name]
        if len(set(names)) != len(names):
            raise ValueError(f"state names must be distinct, got {names}")
        return self

    @model_validator(mode="after")
    def validate_poll_within_deadline(self) -> "HarnessSettings":
        if self.poll_interval_seconds >= self.deadline_seconds:
            raise ValueError(
                f"poll_interval_seconds ({self.poll_interval_seconds}) must be smaller than deadline_seconds ({self.deadline_seconds})"
            )
        return self
