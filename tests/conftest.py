# tests/conftest.py
"""Shared test fixtures.

Fixtures:
- fast_settings: HarnessSettings with short polls and idle sleeps
- cluster: A LocalCluster closed after the test
- make_metadata / write_snapshot: Build snapshots directly, without a job

Hypothesis Configuration:
- "ci" (default): 100 examples, no per-example deadline
- "nightly": 1000 examples for scheduled runs
- "debug": 10 verbose examples when chasing a failing layout

Select with HYPOTHESIS_PROFILE, e.g.
    HYPOTHESIS_PROFILE=nightly pytest tests/property/
"""

import logging
import os
from collections.abc import Callable, Iterator
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import pytest
import structlog
from hypothesis import Phase, Verbosity, settings

from statecheck.contracts import RedistributionMode, SnapshotFormat, SnapshotHandle, SnapshotMetadata, StatePartition
from statecheck.core.config import HarnessSettings
from statecheck.core.snapshot.writer import SnapshotWriter
from statecheck.engine.cluster import LocalCluster

# =============================================================================
# Hypothesis Configuration
# =============================================================================

# Snapshot read-back touches disk, so example timing varies
settings.register_profile(
    "ci",
    max_examples=100,
    phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.shrink],
    deadline=None,
)

# Scheduled runs
settings.register_profile(
    "nightly",
    max_examples=1000,
    phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.shrink],
    deadline=None,
)

# Local investigation
settings.register_profile(
    "debug",
    max_examples=10,
    verbosity=Verbosity.verbose,
    phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.shrink],
    deadline=None,
)

# Profile from HYPOTHESIS_PROFILE, "ci" when unset
settings.load_profile(os.getenv("HYPOTHESIS_PROFILE", "ci"))


# =============================================================================
# Logging
# =============================================================================


@pytest.fixture(autouse=True)
def _reset_logging() -> Iterator[None]:
    """Undo configure_logging() calls made by a test."""
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    structlog.reset_defaults()
    for handler in list(root.handlers):
        if handler not in handlers:
            root.removeHandler(handler)
    root.setLevel(level)


# =============================================================================
# Harness and cluster
# =============================================================================


@pytest.fixture
def fast_settings() -> HarnessSettings:
    """Reference scenario with polling tuned for tests."""
    return HarnessSettings(
        deadline_seconds=30.0,
        poll_interval_seconds=0.005,
        cancel_timeout_seconds=10.0,
        source_idle_seconds=0.01,
    )


@pytest.fixture
def cluster() -> Iterator[LocalCluster]:
    with LocalCluster(cancel_join_timeout=5.0) as local_cluster:
        yield local_cluster


# =============================================================================
# Snapshots built without a job
# =============================================================================


@pytest.fixture
def make_metadata() -> Callable[..., SnapshotMetadata]:
    """Factory for snapshot headers with overridable fields."""

    def _make(**overrides: Any) -> SnapshotMetadata:
        fields: dict[str, Any] = {
            "snapshot_id": "snap-001",
            "job_id": "job-001",
            "snapshot_format": SnapshotFormat.CANONICAL,
            "format_version": SnapshotMetadata.CURRENT_FORMAT_VERSION,
            "parallelism": 2,
            "topology_hash": "0" * 64,
            "backend": "hashmap",
            "created_at": datetime(2026, 1, 1, tzinfo=UTC),
        }
        fields.update(overrides)
        return SnapshotMetadata(**fields)

    return _make


@pytest.fixture
def write_snapshot(
    tmp_path: Path,
    make_metadata: Callable[..., SnapshotMetadata],
) -> Callable[..., SnapshotHandle]:
    """Write a snapshot of one operator from per-subtask payloads.

    Usage:
        handle = write_snapshot(
            {"list": (RedistributionMode.SPLIT, [(1,), (2, 3)])},
            uid="op",
        )
    """

    def _write(
        containers: dict[str, tuple[RedistributionMode, list[tuple[Any, ...]]]],
        *,
        uid: str = "stateful-operator",
        destination: Path | None = None,
        **metadata_overrides: Any,
    ) -> SnapshotHandle:
        subtasks = max(len(payloads) for _, payloads in containers.values())
        per_subtask: list[list[StatePartition]] = [[] for _ in range(subtasks)]
        for name, (mode, payloads) in containers.items():
            for index, payload in enumerate(payloads):
                per_subtask[index].append(StatePartition(state_name=name, mode=mode, payload=payload))
        metadata_overrides.setdefault("parallelism", subtasks)
        path = SnapshotWriter().write(
            destination if destination is not None else tmp_path / "snapshots",
            make_metadata(**metadata_overrides),
            {uid: per_subtask},
        )
        return SnapshotHandle(path)

    return _write
