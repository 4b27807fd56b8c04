from __future__ import annotations

import numpy as np

from ..context.chunker import ContextChunk
from .embedder import Embedder


def embed_chunks(embedder: Embedder, chunks: list[ContextChunk], batch_size: int = 64) -> np.ndarray:
    """Embed chunk contents in batches; rows line up with `chunks`."""
    texts = [c.content for c in chunks]

    embs: list[np.ndarray] = []
    for i in range(0, len(texts), batch_size):
        batch = texts[i : i + batch_size]
        vectors = np.asarray(embedder.embed(batch), dtype=np.float32)
        if vectors.shape[0] != len(batch):
            raise ValueError(f"Embedder returned {vectors.shape[0]} vectors for {len(batch)} texts")
        embs.append(vectors)

    if embs:
        return np.vstack(embs).astype(np.float32)
    return np.zeros((0, embedder.dimensions()), dtype=np.float32)
