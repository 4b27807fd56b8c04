import sqlite3

import numpy as np

from contextgraph.index.embedder import Embedder, l2_normalize
from contextgraph.sources import DocumentSource, SqliteSource


class HashEmbedder(Embedder):
    """Deterministic bag-of-words vectors; no model download."""

    name = "hash"

    def __init__(self, dim=16):
        self.dim = dim
        self.batches = []

    def dimensions(self):
        return self.dim

    def embed(self, texts):
        self.batches.append(len(texts))
        out = np.zeros((len(texts), self.dim), dtype=np.float32)
        for i, t in enumerate(texts):
            for w in t.lower().split():
                out[i, sum(map(ord, w)) % self.dim] += 1.0
        return l2_normalize(out)


def shop_collections():
    return {
        "users": [
            {"id": "u1", "name": "Ada", "plan_id": "p1", "created_at": "2024-01-05T10:00:00Z"},
            {"id": "u2", "name": "Bob", "plan_id": "p2"},
        ],
        "plans": [
            {"id": "p1", "tier": "pro"},
            {"id": "p2", "tier": "free"},
        ],
        "orders": [
            {"id": "o1", "user_id": "u1", "total": 12.5},
            {"id": "o2", "user_id": "u1", "total": 3},
            {"id": "o3", "user_id": "u2", "total": 7},
        ],
    }


def shop_documents():
    return DocumentSource(shop_collections())


def shop_sqlite():
    conn = sqlite3.connect(":memory:")
    conn.executescript(
        """
        CREATE TABLE plans (id INTEGER PRIMARY KEY, tier TEXT NOT NULL);
        CREATE TABLE users (
          id INTEGER PRIMARY KEY,
          name TEXT NOT NULL,
          plan_id INTEGER REFERENCES plans(id),
          created_at TIMESTAMP
        );
        CREATE TABLE orders (
          id INTEGER PRIMARY KEY,
          user_id INTEGER NOT NULL REFERENCES users,
          total REAL
        );
        CREATE TABLE audit (id INTEGER PRIMARY KEY, note TEXT);
        INSERT INTO plans VALUES (1, 'pro'), (2, 'free');
        INSERT INTO users VALUES (1, 'Ada', 1, '2024-01-05 10:00:00'), (2, 'Bob', 2, NULL);
        INSERT INTO orders VALUES (10, 1, 12.5), (11, 1, 3.0), (12, 2, 7.0);
        """
    )
    return SqliteSource(conn=conn)


def staff_sqlite():
    """employees 1 <- 2 <- 3 through a self-referencing manager_id."""
    conn = sqlite3.connect(":memory:")
    conn.executescript(
        """
        CREATE TABLE employees (
          id INTEGER PRIMARY KEY,
          name TEXT NOT NULL,
          manager_id INTEGER REFERENCES employees(id)
        );
        INSERT INTO employees VALUES (1, 'Grace', NULL), (2, 'Linus', 1), (3, 'Ken', 2);
        """
    )
    return SqliteSource(conn=conn)
