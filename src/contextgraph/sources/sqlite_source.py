from __future__ import annotations

import logging
import os
import sqlite3
from pathlib import Path
from typing import Any

from ..errors import BackendUnavailable
from .base import ColumnInfo, ForeignKeyInfo, Record, RelationalSource, TableKeys


log = logging.getLogger(__name__)


def _q(name: str) -> str:
    # SQLite identifier quoting.
    return '"' + name.replace('"', '""') + '"'


class SqliteSource(RelationalSource):
    """Relational source backed by a SQLite file (or an existing connection)."""

    name = "sqlite"
    supports_time_series = True
    supports_sample_filter = True

    def __init__(self, db_path: str | os.PathLike[str] | None = None, *, conn: sqlite3.Connection | None = None):
        if db_path is None and conn is None:
            raise ValueError("SqliteSource needs a db_path or a connection")
        self.db_path = str(db_path) if db_path is not None else None
        self._conn = conn
        self._owns_conn = conn is None
        if conn is not None:
            conn.row_factory = sqlite3.Row

    def connect(self) -> None:
        if self._conn is None:
            self._conn = self._open()

    def _open(self) -> sqlite3.Connection:
        # A source built from a connection always has one, so db_path is set here.
        path = str(self.db_path)
        if path != ":memory:" and not Path(path).exists():
            raise BackendUnavailable(f"SQLite database not found: {path}")
        try:
            # Read-only usage, but sqlite3 connections may be shared across builds.
            conn = sqlite3.connect(path, check_same_thread=False)
        except sqlite3.Error as e:
            raise BackendUnavailable(f"Failed to open {path}: {e}") from e
        conn.row_factory = sqlite3.Row
        log.debug("connected to sqlite source %s", path)
        return conn

    def close(self) -> None:
        if self._conn is not None and self._owns_conn:
            self._conn.close()
            self._conn = None

    @property
    def conn(self) -> sqlite3.Connection:
        conn = self._conn
        if conn is None:
            conn = self._conn = self._open()
        return conn

    def _execute(self, sql: str, params: tuple[Any, ...] = ()) -> list[sqlite3.Row]:
        try:
            return list(self.conn.execute(sql, params).fetchall())
        except sqlite3.Error as e:
            raise BackendUnavailable(f"sqlite query failed: {e}") from e

    def ping(self) -> bool:
        self._execute("SELECT 1")
        return True

    def list_entity_types(self) -> list[str]:
        rows = self._execute(
            "SELECT name FROM sqlite_master WHERE type = 'table' AND name NOT LIKE 'sqlite_%' ORDER BY name"
        )
        return [str(r["name"]) for r in rows]

    def describe_keys(self, entity_type: str) -> TableKeys:
        cols = self._execute(f"PRAGMA table_info({_q(entity_type)})")
        pk_cols = sorted((int(c["pk"]), str(c["name"])) for c in cols if int(c["pk"]) > 0)
        primary_key = tuple(name for _, name in pk_cols)

        columns = tuple(
            ColumnInfo(
                name=str(c["name"]),
                declared_type=str(c["type"] or ""),
                # PRIMARY KEY columns are implicitly NOT NULL only for INTEGER PRIMARY KEY,
                # but treat every key column as required.
                nullable=not bool(c["notnull"]) and int(c["pk"]) == 0,
            )
            for c in cols
        )

        fks: list[ForeignKeyInfo] = []
        for fk in self._execute(f"PRAGMA foreign_key_list({_q(entity_type)})"):
            ref_table = str(fk["table"])
            ref_col = fk["to"]
            if ref_col is None:
                # REFERENCES t without a column targets t's primary key.
                ref_pk = self.describe_keys(ref_table).primary_key
                ref_col = ref_pk[0] if ref_pk else "rowid"
            fks.append(ForeignKeyInfo(column=str(fk["from"]), referenced_table=ref_table, referenced_column=str(ref_col)))

        return TableKeys(columns=columns, primary_key=primary_key, foreign_keys=tuple(fks))

    def _columns(self, entity_type: str) -> set[str]:
        return {str(c["name"]) for c in self._execute(f"PRAGMA table_info({_q(entity_type)})")}

    def sample_instances(
        self, entity_type: str, limit: int, filters: dict[str, Any] | None = None
    ) -> list[Record]:
        where = ""
        params: list[Any] = []
        if filters:
            known = self._columns(entity_type)
            conditions = []
            for key, value in filters.items():
                if key not in known:
                    log.warning("ignoring sample filter on unknown column %s.%s", entity_type, key)
                    continue
                conditions.append(f"{_q(key)} = ?")
                params.append(value)
            if conditions:
                where = " WHERE " + " AND ".join(conditions)
        params.append(int(limit))
        rows = self._execute(f"SELECT * FROM {_q(entity_type)}{where} LIMIT ?", tuple(params))
        return [dict(r) for r in rows]

    def fetch_by_id(self, entity_type: str, entity_id: str, primary_key: str | None = None) -> Record | None:
        key = primary_key
        if key is None:
            pk = self.describe_keys(entity_type).primary_key
            key = pk[0] if pk else "rowid"
        rows = self._execute(f"SELECT * FROM {_q(entity_type)} WHERE {_q(key)} = ? LIMIT 1", (entity_id,))
        return dict(rows[0]) if rows else None

    def fetch_by_field(self, entity_type: str, field: str, value: Any, limit: int) -> list[Record]:
        if field not in self._columns(entity_type):
            return []
        rows = self._execute(
            f"SELECT * FROM {_q(entity_type)} WHERE {_q(field)} = ? LIMIT ?",
            (value, int(limit)),
        )
        return [dict(r) for r in rows]
