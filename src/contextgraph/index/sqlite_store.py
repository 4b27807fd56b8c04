from __future__ import annotations

import json
import os
import sqlite3
import time
from pathlib import Path
from typing import Any, Iterable


SCHEMA_VERSION = 1


def connect(db_path: str | os.PathLike[str]) -> sqlite3.Connection:
    if str(db_path) != ":memory:":
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(db_path), check_same_thread=False)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL;")
    conn.execute("PRAGMA synchronous=NORMAL;")
    return conn


def init_db(conn: sqlite3.Connection) -> None:
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS meta (
          key TEXT PRIMARY KEY,
          value TEXT NOT NULL
        );
        """
    )
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS chunks (
          chunk_id INTEGER PRIMARY KEY,
          namespace TEXT NOT NULL,
          chunk_index INTEGER NOT NULL,
          total_chunks INTEGER NOT NULL,
          entity_type TEXT NOT NULL,
          entity_id TEXT NOT NULL,
          content TEXT NOT NULL,
          relations_json TEXT NOT NULL,
          timestamp TEXT,
          source_node TEXT,
          dim INTEGER NOT NULL,
          embedding BLOB NOT NULL,
          created_at INTEGER NOT NULL,
          UNIQUE (namespace, chunk_index)
        );
        """
    )
    conn.execute("CREATE INDEX IF NOT EXISTS idx_chunks_namespace ON chunks(namespace);")
    conn.execute("CREATE INDEX IF NOT EXISTS idx_chunks_entity ON chunks(entity_type, entity_id);")

    conn.execute(
        "INSERT OR REPLACE INTO meta(key, value) VALUES(?, ?)",
        ("schema_version", str(SCHEMA_VERSION)),
    )
    conn.commit()


def replace_namespace(conn: sqlite3.Connection, namespace: str, rows: Iterable[dict[str, Any]]) -> int:
    """Swap the full chunk set of `namespace` in one transaction.

    Returns the number of rows written.
    """
    now = int(time.time())
    params = [
        (
            namespace,
            int(r["chunk_index"]),
            int(r["total_chunks"]),
            str(r["entity_type"]),
            str(r["entity_id"]),
            str(r["content"]),
            json.dumps(list(r.get("relations", [])), ensure_ascii=True),
            r.get("timestamp"),
            r.get("source_node"),
            int(r["dim"]),
            r["embedding"],
            now,
        )
        for r in rows
    ]
    with conn:
        conn.execute("DELETE FROM chunks WHERE namespace = ?", (namespace,))
        conn.executemany(
            """
            INSERT INTO chunks(
              namespace, chunk_index, total_chunks, entity_type, entity_id, content,
              relations_json, timestamp, source_node, dim, embedding, created_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            params,
        )
    return len(params)


def delete_namespace(conn: sqlite3.Connection, namespace: str) -> int:
    with conn:
        cur = conn.execute("DELETE FROM chunks WHERE namespace = ?", (namespace,))
    return int(cur.rowcount)


def has_namespace(conn: sqlite3.Connection, namespace: str) -> bool:
    row = conn.execute("SELECT 1 FROM chunks WHERE namespace = ? LIMIT 1", (namespace,)).fetchone()
    return row is not None


def list_namespaces(conn: sqlite3.Connection) -> list[str]:
    cur = conn.execute("SELECT DISTINCT namespace FROM chunks ORDER BY namespace")
    return [str(r["namespace"]) for r in cur.fetchall()]


def iter_namespace(conn: sqlite3.Connection, namespace: str) -> Iterable[sqlite3.Row]:
    cur = conn.execute(
        """
        SELECT chunk_id, namespace, chunk_index, total_chunks, entity_type, entity_id, content,
               relations_json, timestamp, source_node, dim, embedding
        FROM chunks WHERE namespace = ? ORDER BY chunk_index
        """,
        (namespace,),
    )
    yield from cur


def stats(conn: sqlite3.Connection) -> dict[str, Any]:
    row = conn.execute(
        "SELECT COUNT(*) AS n, COUNT(DISTINCT namespace) AS ns FROM chunks"
    ).fetchone()
    dims = [int(r["dim"]) for r in conn.execute("SELECT DISTINCT dim FROM chunks ORDER BY dim").fetchall()]
    return {"chunks": int(row["n"]), "namespaces": int(row["ns"]), "dimensions": dims}


def iter_all(conn: sqlite3.Connection) -> Iterable[sqlite3.Row]:
    cur = conn.execute(
        """
        SELECT chunk_id, namespace, chunk_index, total_chunks, entity_type, entity_id, content,
               relations_json, timestamp, source_node, dim, embedding
        FROM chunks ORDER BY namespace, chunk_index
        """
    )
    yield from cur
