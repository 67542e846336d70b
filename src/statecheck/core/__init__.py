# src/statecheck/core/__init__.py
"""Core infrastructure: Canonical hashing, Configuration, Logging, Snapshots."""

from statecheck.core.canonical import (
    canonical_json,
    compute_topology_hash,
    stable_hash,
)
from statecheck.core.config import HarnessSettings, StateBackendSettings
from statecheck.core.logging import configure_logging
from statecheck.core.snapshot import ReaderSession, SnapshotReader, SnapshotWriter

__all__ = [
    "HarnessSettings",
    "ReaderSession",
    "SnapshotReader",
    "SnapshotWriter",
    "StateBackendSettings",
    "canonical_json",
    "compute_topology_hash",
    "configure_logging",
    "stable_hash",
]
