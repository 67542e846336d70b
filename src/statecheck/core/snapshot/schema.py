# src/statecheck/core/snapshot/schema.py
"""SQLAlchemy table definitions for snapshot metadata.

Uses SQLAlchemy Core (not ORM) for explicit control over queries.
One SQLite database per snapshot directory.
"""

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    PrimaryKeyConstraint,
    String,
    Table,
    Text,
)

# Shared metadata for all tables
metadata = MetaData()

METADATA_FILENAME = "_metadata.db"

snapshots_table = Table(
    "snapshots",
    metadata,
    Column("snapshot_id", String(64), primary_key=True),
    Column("job_id", String(64), nullable=False),
    Column("snapshot_format", String(16), nullable=False),
    Column("format_version", Integer, nullable=False),
    Column("parallelism", Integer, nullable=False),
    Column("topology_hash", String(64), nullable=False),
    Column("backend", String(32), nullable=False),
    Column("created_at", DateTime(timezone=True), nullable=False),
    CheckConstraint("parallelism >= 1", name="ck_snapshots_parallelism"),
)

operator_states_table = Table(
    "operator_states",
    metadata,
    Column("snapshot_id", String(64), ForeignKey("snapshots.snapshot_id"), nullable=False),
    Column("operator_uid", String(128), nullable=False),
    Column("state_name", String(128), nullable=False),
    Column("mode", String(16), nullable=False),  # RedistributionMode value
    Column("subtask_index", Integer, nullable=False),
    Column("payload_json", Text, nullable=False),  # state_dumps() of the partition payload
    Column("payload_hash", String(64), nullable=False),  # stable_hash() of the payload
    PrimaryKeyConstraint("snapshot_id", "operator_uid", "state_name", "subtask_index"),
    CheckConstraint("mode IN ('split', 'union', 'broadcast')", name="ck_operator_states_mode"),
    CheckConstraint("subtask_index >= 0", name="ck_operator_states_subtask"),
)

Index("ix_operator_states_state", operator_states_table.c.operator_uid, operator_states_table.c.state_name)
