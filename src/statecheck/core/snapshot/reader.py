# src/statecheck/core/snapshot/reader.py
"""Offline, read-only access to materialized snapshots.

SnapshotReader opens a snapshot directory independently of any running
job. A ReaderSession exposes each named state container as a lazy,
restartable sequence: every iteration re-reads the stored partitions and
replays them through the container's redistribution semantics.

    list       SPLIT to the backend's reader parallelism, all readers concatenated
    union      UNION to the backend's reader parallelism, first reader only
    broadcast  one entry per key across every stored subtask copy
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Iterator
from dataclasses import dataclass
from datetime import UTC
from typing import Any, Self

import structlog
from pydantic import TypeAdapter, ValidationError
from sqlalchemy import asc, select

from statecheck.contracts.enums import RedistributionMode, SnapshotFormat
from statecheck.contracts.errors import (
    IncompatibleSnapshotError,
    SnapshotCorruptionError,
    SnapshotNotFoundError,
    StateTypeMismatchError,
    UnknownStateError,
)
from statecheck.contracts.snapshot import SnapshotHandle, SnapshotMetadata
from statecheck.contracts.state import ListStateDescriptor, MapStateDescriptor
from statecheck.core.canonical import stable_hash
from statecheck.core.config import StateBackendSettings
from statecheck.core.snapshot.database import SnapshotDB
from statecheck.core.snapshot.redistribution import redistribute
from statecheck.core.snapshot.schema import METADATA_FILENAME, operator_states_table, snapshots_table
from statecheck.core.snapshot.serialization import state_loads

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class StoredPartition:
    """One stored row of operator state, decoded and integrity-checked."""

    subtask_index: int
    mode: RedistributionMode
    payload: tuple[Any, ...]


class StateRecords(Iterable[Any]):
    """Lazy, restartable view over one read-back state container.

    Nothing is read until iteration starts; each iteration starts over
    from the stored partitions.
    """

    def __init__(self, produce: Callable[[], Iterator[Any]]) -> None:
        self._produce = produce

    def __iter__(self) -> Iterator[Any]:
        return self._produce()


class ReaderSession:
    """Read-only view over one opened snapshot."""

    def __init__(self, db: SnapshotDB, metadata: SnapshotMetadata, backend: StateBackendSettings) -> None:
        self._db = db
        self._metadata = metadata
        self._backend = backend

    @property
    def metadata(self) -> SnapshotMetadata:
        return self._metadata

    @property
    def backend(self) -> StateBackendSettings:
        return self._backend

    # === Typed accessors ===

    def read_list_state(self, operator_uid: str, descriptor: ListStateDescriptor) -> StateRecords:
        """Read partitioned list state: every element exactly once."""

        def produce() -> Iterator[Any]:
            partitions = self._load(operator_uid, descriptor.name, RedistributionMode.SPLIT)
            readers = redistribute([p.payload for p in partitions], RedistributionMode.SPLIT, self._backend.reader_parallelism)
            validate = _validator(descriptor.name, descriptor.element_type)
            for reader in readers:
                for element in reader:
                    yield validate(element)

        return StateRecords(produce)

    def read_union_state(self, operator_uid: str, descriptor: ListStateDescriptor) -> StateRecords:
        """Read union list state: the merged list as seen by one restored reader.

        Every restored reader holds the full merged list; emitting from all
        of them would multiply it by the reader parallelism, so only the
        first reader's copy is produced.
        """

        def produce() -> Iterator[Any]:
            partitions = self._load(operator_uid, descriptor.name, RedistributionMode.UNION)
            readers = redistribute([p.payload for p in partitions], RedistributionMode.UNION, self._backend.reader_parallelism)
            validate = _validator(descriptor.name, descriptor.element_type)
            for element in readers[0]:
                yield validate(element)

        return StateRecords(produce)

    def read_broadcast_state(self, operator_uid: str, descriptor: MapStateDescriptor) -> StateRecords:
        """Read broadcast state: one (key, value) pair per distinct key.

        Raises (during iteration):
            SnapshotCorruptionError: If two subtask copies disagree on a key's value
        """

        def produce() -> Iterator[tuple[Any, Any]]:
            partitions = self._load(operator_uid, descriptor.name, RedistributionMode.BROADCAST)
            validate_key = _validator(descriptor.name, descriptor.key_type)
            validate_value = _validator(descriptor.name, descriptor.value_type)
            seen: dict[Any, Any] = {}
            for partition in partitions:
                for entry in partition.payload:
                    if not isinstance(entry, tuple) or len(entry) != 2:
                        raise SnapshotCorruptionError(f"Broadcast state '{descriptor.name}' holds a malformed entry: {entry!r}")
                    key, value = validate_key(entry[0]), validate_value(entry[1])
                    if key in seen:
                        if seen[key] != value:
                            raise SnapshotCorruptionError(
                                f"Broadcast state '{descriptor.name}' differs between subtasks for key {key!r}: {seen[key]!r} != {value!r}"
                            )
                        continue
                    seen[key] = value
                    yield key, value

        return StateRecords(produce)

    # === Raw access ===

    def restore_partitions(
        self,
        operator_uid: str,
        state_name: str,
        mode: RedistributionMode,
        parallelism: int,
    ) -> list[list[Any]]:
        """Per-reader restore of a container, as a restored job would see it."""
        partitions = self._load(operator_uid, state_name, mode)
        return redistribute([p.payload for p in partitions], mode, parallelism)

    def state_names(self, operator_uid: str) -> dict[str, RedistributionMode]:
        """Names and modes of every container stored for an operator."""
        with self._db.engine.connect() as conn:
            rows = conn.execute(
                select(operator_states_table.c.state_name, operator_states_table.c.mode)
                .where(operator_states_table.c.operator_uid == operator_uid)
                .distinct()
            ).fetchall()
        return {row.state_name: RedistributionMode(row.mode) for row in rows}

    def _load(self, operator_uid: str, state_name: str, mode: RedistributionMode) -> list[StoredPartition]:
        """Load, integrity-check and decode the stored partitions of one container.

        Raises:
            UnknownStateError: If nothing is stored under (uid, name)
            IncompatibleSnapshotError: If the stored mode differs from `mode`
            SnapshotCorruptionError: If a payload hash does not match, or
                subtask indexes are not contiguous from 0
        """
        with self._db.engine.connect() as conn:
            rows = conn.execute(
                select(operator_states_table)
                .where(operator_states_table.c.snapshot_id == self._metadata.snapshot_id)
                .where(operator_states_table.c.operator_uid == operator_uid)
                .where(operator_states_table.c.state_name == state_name)
                .order_by(asc(operator_states_table.c.subtask_index))
            ).fetchall()

        if not rows:
            raise UnknownStateError(operator_uid, state_name)

        partitions: list[StoredPartition] = []
        for expected_index, row in enumerate(rows):
            if row.subtask_index != expected_index:
                raise SnapshotCorruptionError(
                    f"State '{state_name}' of operator '{operator_uid}' is missing subtask {expected_index} (found {row.subtask_index})"
                )
            stored_mode = RedistributionMode(row.mode)
            if stored_mode != mode:
                raise IncompatibleSnapshotError(
                    f"State '{state_name}' of operator '{operator_uid}' was written as {stored_mode.value} state, cannot be read as {mode.value} state"
                )
            if stable_hash(row.payload_json) != row.payload_hash:
                raise SnapshotCorruptionError(
                    f"Payload hash mismatch for state '{state_name}' of operator '{operator_uid}', subtask {row.subtask_index}"
                )
            payload = state_loads(row.payload_json)
            if not isinstance(payload, tuple):
                raise SnapshotCorruptionError(f"State '{state_name}' subtask {row.subtask_index} payload is not a sequence")
            partitions.append(StoredPartition(subtask_index=row.subtask_index, mode=stored_mode, payload=payload))
        return partitions

    def close(self) -> None:
        self._db.close()

    def __enter__(self) -> Self:
        return self

    def __exit__(self, exc_type: object, exc_val: object, exc_tb: object) -> None:
        self.close()


def _validator(state_name: str, declared: type) -> Callable[[Any], Any]:
    """Strict pydantic validation of restored values against a declared type."""
    adapter: TypeAdapter[Any] = TypeAdapter(declared)

    def validate(value: Any) -> Any:
        try:
            return adapter.validate_python(value, strict=True)
        except ValidationError as e:
            raise StateTypeMismatchError(state_name, f"{value!r} is not a valid {getattr(declared, '__name__', declared)}: {e.error_count()} error(s)") from e

    return validate


class SnapshotReader:
    """Opens snapshots for offline reading. Stateless; reusable."""

    def open(self, handle: SnapshotHandle, backend: StateBackendSettings) -> ReaderSession:
        """Open a snapshot read-only.

        Raises:
            SnapshotNotFoundError: If the handle does not point at a snapshot
            IncompatibleSnapshotError: If the format version is unknown, or a
                native snapshot is opened with a different backend kind
            SnapshotCorruptionError: If the metadata is missing or malformed
        """
        db_path = handle.path / METADATA_FILENAME
        if not db_path.is_file():
            raise SnapshotNotFoundError(f"No snapshot at {handle.path} (missing {METADATA_FILENAME})")

        db = SnapshotDB(db_path, read_only=True)
        try:
            metadata = _load_metadata(db, handle)
            _check_compatibility(metadata, backend)
        except BaseException:
            db.close()
            raise

        logger.debug(
            "Snapshot opened",
            snapshot_id=metadata.snapshot_id,
            path=str(handle.path),
            reader_parallelism=backend.reader_parallelism,
        )
        return ReaderSession(db, metadata, backend)

    @classmethod
    def read(cls, handle: SnapshotHandle, backend: StateBackendSettings | None = None) -> ReaderSession:
        """Convenience: open with a default hash-map backend if none is given."""
        return cls().open(handle, backend if backend is not None else StateBackendSettings())


def _load_metadata(db: SnapshotDB, handle: SnapshotHandle) -> SnapshotMetadata:
    with db.engine.connect() as conn:
        rows = conn.execute(select(snapshots_table)).fetchall()
    if len(rows) != 1:
        raise SnapshotCorruptionError(f"Snapshot at {handle.path} must hold exactly one header row, found {len(rows)}")
    row = rows[0]
    created_at = row.created_at
    # SQLite drops tzinfo; stored values are always UTC
    if created_at.tzinfo is None:
        created_at = created_at.replace(tzinfo=UTC)
    try:
        return SnapshotMetadata(
            snapshot_id=row.snapshot_id,
            job_id=row.job_id,
            snapshot_format=SnapshotFormat(row.snapshot_format),
            format_version=row.format_version,
            parallelism=row.parallelism,
            topology_hash=row.topology_hash,
            backend=row.backend,
            created_at=created_at,
        )
    except ValueError as e:
        raise SnapshotCorruptionError(f"Snapshot header at {handle.path} is invalid: {e}") from e


def _check_compatibility(metadata: SnapshotMetadata, backend: StateBackendSettings) -> None:
    if metadata.format_version != SnapshotMetadata.CURRENT_FORMAT_VERSION:
        raise IncompatibleSnapshotError(
            f"Snapshot '{metadata.snapshot_id}' has incompatible format version "
            f"(snapshot: v{metadata.format_version}, current: v{SnapshotMetadata.CURRENT_FORMAT_VERSION})"
        )
    if metadata.snapshot_format == SnapshotFormat.NATIVE and metadata.backend != backend.kind:
        raise IncompatibleSnapshotError(
            f"Native snapshot '{metadata.snapshot_id}' was written by the '{metadata.backend}' backend and cannot be read with '{backend.kind}'"
        )
