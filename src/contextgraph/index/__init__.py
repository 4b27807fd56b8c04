from .build import embed_chunks
from .embedder import Embedder, FastEmbedEmbedder, l2_normalize
from .vector_store import RetrievedChunk, SqliteVectorStore, StoreStats, VectorStore, topk_cosine

__all__ = [
    "Embedder",
    "FastEmbedEmbedder",
    "RetrievedChunk",
    "SqliteVectorStore",
    "StoreStats",
    "VectorStore",
    "embed_chunks",
    "l2_normalize",
    "topk_cosine",
]
