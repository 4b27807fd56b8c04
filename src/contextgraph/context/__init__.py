from .chunker import ContextChunk, build_chunks, chunk_text, namespace_for, serialize_graph, split_windows

__all__ = ["ContextChunk", "build_chunks", "chunk_text", "namespace_for", "serialize_graph", "split_windows"]
