# src/statecheck/core/snapshot/writer.py
"""SnapshotWriter: materializes captured operator state on disk."""

import shutil
from pathlib import Path

import structlog

from statecheck.contracts.snapshot import SnapshotMetadata, StatePartition
from statecheck.core.canonical import stable_hash
from statecheck.core.snapshot.database import SnapshotDB
from statecheck.core.snapshot.schema import METADATA_FILENAME, operator_states_table, snapshots_table
from statecheck.core.snapshot.serialization import state_dumps

logger = structlog.get_logger(__name__)

_IN_PROGRESS_SUFFIX = ".inprogress"


class SnapshotWriter:
    """Writes one snapshot directory per call.

    The directory is built under a temporary name and renamed into place
    only after every row is committed, so a reader can never open a
    half-written snapshot.
    """

    def write(
        self,
        destination: Path,
        metadata: SnapshotMetadata,
        states: dict[str, list[list[StatePartition]]],
    ) -> Path:
        """Write a snapshot.

        Args:
            destination: Parent directory; created if missing
            metadata: Snapshot header
            states: operator uid -> per-subtask partitions, in subtask order

        Returns:
            Path of the materialized snapshot directory
        """
        final_dir = Path(destination) / f"snapshot-{metadata.snapshot_id}"
        staging_dir = final_dir.with_name(final_dir.name + _IN_PROGRESS_SUFFIX)
        if final_dir.exists():
            raise FileExistsError(f"Snapshot directory already exists: {final_dir}")
        staging_dir.mkdir(parents=True, exist_ok=False)

        try:
            with SnapshotDB(staging_dir / METADATA_FILENAME) as db, db.engine.begin() as conn:
                conn.execute(
                    snapshots_table.insert().values(
                        snapshot_id=metadata.snapshot_id,
                        job_id=metadata.job_id,
                        snapshot_format=metadata.snapshot_format.value,
                        format_version=metadata.format_version,
                        parallelism=metadata.parallelism,
                        topology_hash=metadata.topology_hash,
                        backend=metadata.backend,
                        created_at=metadata.created_at,
                    )
                )
                rows = []
                for operator_uid, per_subtask in states.items():
                    for subtask_index, partitions in enumerate(per_subtask):
                        for partition in partitions:
                            payload_json = state_dumps(partition.payload)
                            rows.append(
                                {
                                    "snapshot_id": metadata.snapshot_id,
                                    "operator_uid": operator_uid,
                                    "state_name": partition.state_name,
                                    "mode": partition.mode.value,
                                    "subtask_index": subtask_index,
                                    "payload_json": payload_json,
                                    "payload_hash": stable_hash(payload_json),
                                }
                            )
                if rows:
                    conn.execute(operator_states_table.insert(), rows)
                # begin() auto-commits on clean exit, auto-rollbacks on exception
            staging_dir.rename(final_dir)
        except BaseException:
            shutil.rmtree(staging_dir, ignore_errors=True)
            raise

        logger.info(
            "Snapshot written",
            snapshot_id=metadata.snapshot_id,
            job_id=metadata.job_id,
            path=str(final_dir),
            operators=sorted(states),
        )
        return final_dir
