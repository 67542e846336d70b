"""Snapshot subsystem: on-disk format, restore semantics, and offline reading.

Provides:
- SnapshotWriter: Materialize captured operator state as a snapshot directory
- SnapshotReader / ReaderSession: Open a snapshot and read its state containers
- redistribute: Restore semantics for split, union and broadcast state
- state_dumps/state_loads: Type-preserving JSON for state payloads
"""

from statecheck.core.snapshot.reader import ReaderSession, SnapshotReader, StateRecords
from statecheck.core.snapshot.redistribution import redistribute
from statecheck.core.snapshot.serialization import state_dumps, state_loads
from statecheck.core.snapshot.writer import SnapshotWriter

__all__ = [
    "ReaderSession",
    "SnapshotReader",
    "SnapshotWriter",
    "StateRecords",
    "redistribute",
    "state_dumps",
    "state_loads",
]
