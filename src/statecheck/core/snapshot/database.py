# src/statecheck/core/snapshot/database.py
"""Connection management for snapshot metadata databases."""

import sqlite3
from pathlib import Path
from typing import Self

from sqlalchemy import create_engine, event, inspect
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from statecheck.contracts.errors import SnapshotCorruptionError
from statecheck.core.snapshot.schema import metadata

_REQUIRED_TABLES: tuple[str, ...] = ("snapshots", "operator_states")


class SnapshotDB:
    """SQLite database inside one snapshot directory.

    Writers open it read-write and create the schema. Readers open it
    read-only through a SQLite URI, so reading can never modify the
    snapshot (no schema creation, no journal files).
    """

    def __init__(self, db_path: Path, *, read_only: bool = False) -> None:
        self.db_path = Path(db_path)
        self.read_only = read_only
        self._engine = self._create_engine()
        if read_only:
            self._validate_schema()
        else:
            metadata.create_all(self._engine)

    def _create_engine(self) -> Engine:
        # The path never goes through a URL: '?', '#' and '%' are legal in
        # snapshot directories but are URL syntax to SQLAlchemy and SQLite.
        if self.read_only:
            file_uri = f"{self.db_path.resolve().as_uri()}?mode=ro"

            def _creator() -> sqlite3.Connection:
                return sqlite3.connect(file_uri, uri=True, check_same_thread=False)

        else:
            db_path = str(self.db_path)

            def _creator() -> sqlite3.Connection:
                return sqlite3.connect(db_path, check_same_thread=False)

        engine = create_engine("sqlite:///", creator=_creator, echo=False)
        SnapshotDB._configure_sqlite(engine)
        return engine

    @staticmethod
    def _configure_sqlite(engine: Engine) -> None:
        """Register a connection hook that enforces foreign keys."""

        @event.listens_for(engine, "connect")
        def set_sqlite_pragma(dbapi_connection: object, connection_record: object) -> None:
            cursor = dbapi_connection.cursor()  # type: ignore[attr-defined]  # DBAPI connection typed as object by SQLAlchemy
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

    def _validate_schema(self) -> None:
        """Fail fast if a read-only database lacks the snapshot tables."""
        try:
            tables = set(inspect(self._engine).get_table_names())
        except (SQLAlchemyError, sqlite3.Error) as e:
            self.close()
            raise SnapshotCorruptionError(f"Snapshot database {self.db_path} cannot be opened: {e}") from e
        missing = [name for name in _REQUIRED_TABLES if name not in tables]
        if missing:
            self.close()
            raise SnapshotCorruptionError(f"Snapshot database {self.db_path} is missing tables: {missing}")

    @property
    def engine(self) -> Engine:
        return self._engine

    def close(self) -> None:
        self._engine.dispose()

    def __enter__(self) -> Self:
        return self

    def __exit__(self, exc_type: object, exc_val: object, exc_tb: object) -> None:
        self.close()
