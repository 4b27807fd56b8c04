from __future__ import annotations

import json
import logging
import sqlite3
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime

import numpy as np

from ..context.chunker import ContextChunk
from ..errors import BackendUnavailable, ConfigurationError
from . import sqlite_store


log = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetrievedChunk:
    score: float
    chunk: ContextChunk


@dataclass(frozen=True)
class StoreStats:
    namespaces: int
    chunks: int
    dimensions: tuple[int, ...]


class VectorStore(ABC):
    name: str = "vector-store"

    @abstractmethod
    def store(self, namespace: str, chunks: list[ContextChunk], vectors: np.ndarray) -> None:
        """Replace everything stored under `namespace`."""

    @abstractmethod
    def query(self, namespace: str, vector: np.ndarray, k: int = 5) -> list[RetrievedChunk]:
        pass

    @abstractmethod
    def search(self, vector: np.ndarray, namespace: str | None = None, k: int = 5) -> list[RetrievedChunk]:
        """Like `query`, across every namespace when `namespace` is None."""

    @abstractmethod
    def delete(self, namespace: str) -> None:
        pass

    @abstractmethod
    def has_namespace(self, namespace: str) -> bool:
        pass

    @abstractmethod
    def list_namespaces(self) -> list[str]:
        pass

    @abstractmethod
    def stats(self) -> StoreStats:
        pass

    def close(self) -> None:
        pass


class SqliteVectorStore(VectorStore):
    """Chunks + float32 embeddings in SQLite, ranked with numpy cosine top-k."""

    name = "sqlite"

    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn
        self.conn.row_factory = sqlite3.Row
        sqlite_store.init_db(conn)

    @classmethod
    def open(cls, db_path: str) -> "SqliteVectorStore":
        return cls(sqlite_store.connect(db_path))

    def store(self, namespace: str, chunks: list[ContextChunk], vectors: np.ndarray) -> None:
        if len(chunks) != int(vectors.shape[0]):
            raise ValueError(f"{len(chunks)} chunks but {vectors.shape[0]} vectors")
        vecs = vectors.astype(np.float32)
        dim = int(vecs.shape[1]) if vecs.ndim == 2 else 0
        rows = [
            {
                "chunk_index": c.chunk_index,
                "total_chunks": c.total_chunks,
                "entity_type": c.entity_type,
                "entity_id": c.entity_id,
                "content": c.content,
                "relations": c.related_entity_types,
                "timestamp": c.timestamp.isoformat() if c.timestamp is not None else None,
                "source_node": c.source_node,
                "dim": dim,
                "embedding": vecs[i].tobytes(),
            }
            for i, c in enumerate(chunks)
        ]
        try:
            sqlite_store.replace_namespace(self.conn, namespace, rows)
        except sqlite3.Error as e:
            raise BackendUnavailable(f"Failed to store {namespace}: {e}") from e

    def query(self, namespace: str, vector: np.ndarray, k: int = 5) -> list[RetrievedChunk]:
        return self.search(vector, namespace=namespace, k=k)

    def search(self, vector: np.ndarray, namespace: str | None = None, k: int = 5) -> list[RetrievedChunk]:
        scope = namespace if namespace is not None else "all namespaces"
        try:
            if namespace is None:
                stored = list(sqlite_store.iter_all(self.conn))
            else:
                stored = list(sqlite_store.iter_namespace(self.conn, namespace))
        except sqlite3.Error as e:
            raise BackendUnavailable(f"Failed to read {scope}: {e}") from e
        if not stored:
            return []

        q = np.asarray(vector, dtype=np.float32).reshape(-1)
        rows = [r for r in stored if int(r["dim"]) == int(q.shape[0])]
        if not rows:
            dims = sorted({int(r["dim"]) for r in stored})
            raise ConfigurationError(f"Query vector has {q.shape[0]} dimensions but {scope} stores {dims}")
        if len(rows) < len(stored):
            log.debug("skipped %d chunks with other dimensions in %s", len(stored) - len(rows), scope)

        embeddings = np.vstack([np.frombuffer(r["embedding"], dtype=np.float32) for r in rows])
        out: list[RetrievedChunk] = []
        for i, score in topk_cosine(embeddings, q, k=k):
            out.append(RetrievedChunk(score=score, chunk=_row_to_chunk(rows[i])))
        return out

    def delete(self, namespace: str) -> None:
        try:
            sqlite_store.delete_namespace(self.conn, namespace)
        except sqlite3.Error as e:
            raise BackendUnavailable(f"Failed to delete {namespace}: {e}") from e

    def has_namespace(self, namespace: str) -> bool:
        return sqlite_store.has_namespace(self.conn, namespace)

    def list_namespaces(self) -> list[str]:
        return sqlite_store.list_namespaces(self.conn)

    def stats(self) -> StoreStats:
        s = sqlite_store.stats(self.conn)
        return StoreStats(namespaces=s["namespaces"], chunks=s["chunks"], dimensions=tuple(s["dimensions"]))

    def close(self) -> None:
        self.conn.close()


def _row_to_chunk(row: sqlite3.Row) -> ContextChunk:
    ts = row["timestamp"]
    return ContextChunk(
        namespace=str(row["namespace"]),
        content=str(row["content"]),
        entity_type=str(row["entity_type"]),
        entity_id=str(row["entity_id"]),
        related_entity_types=tuple(json.loads(row["relations_json"])),
        chunk_index=int(row["chunk_index"]),
        total_chunks=int(row["total_chunks"]),
        timestamp=datetime.fromisoformat(ts) if ts else None,
        source_node=row["source_node"],
    )


def topk_cosine(embeddings: np.ndarray, query_vec: np.ndarray, k: int = 10) -> list[tuple[int, float]]:
    """Return [(row_index, cosine_sim)] sorted best-first."""
    if embeddings.size == 0:
        return []

    norms = np.maximum(np.linalg.norm(embeddings, axis=1), 1e-12)
    q = query_vec.astype(np.float32)
    q = q / max(float(np.linalg.norm(q)), 1e-12)
    sims = (embeddings @ q) / norms  # [n]

    k = int(max(1, min(k, sims.shape[0])))
    # argpartition is O(n)
    top_idx = np.argpartition(-sims, k - 1)[:k]
    top_sorted = top_idx[np.argsort(-sims[top_idx], kind="stable")]

    return [(int(i), float(sims[i])) for i in top_sorted]
