from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any

from ..errors import ConfigurationError
from ..graph.node import EntityNode


ARRAY_PREVIEW_ITEMS = 5


@dataclass(frozen=True)
class ContextChunk:
    namespace: str
    content: str
    entity_type: str
    entity_id: str
    related_entity_types: tuple[str, ...]
    chunk_index: int
    total_chunks: int
    timestamp: datetime | None = None
    # type:id of the graph node that contributed most of this chunk's text.
    source_node: str | None = None

    @property
    def chunk_id(self) -> str:
        return f"{self.namespace}:chunk:{self.chunk_index}"


@dataclass(frozen=True)
class Span:
    start: int
    end: int
    node: str


@dataclass(frozen=True)
class SerializedGraph:
    text: str
    spans: tuple[Span, ...]


def namespace_for(entity_type: str, entity_id: Any) -> str:
    return f"{entity_type}:{entity_id}"


def validate_chunking(chunk_size: int, overlap: int) -> None:
    if chunk_size <= 0:
        raise ConfigurationError(f"chunk_size must be positive (got {chunk_size})")
    if overlap < 0:
        raise ConfigurationError(f"overlap must be >= 0 (got {overlap})")
    if overlap >= chunk_size:
        raise ConfigurationError(f"overlap ({overlap}) must be smaller than chunk_size ({chunk_size})")


def serialize_graph(root: EntityNode) -> SerializedGraph:
    """Render a graph as indented text, recording which node wrote what."""
    parts: list[str] = []
    spans: list[Span] = []
    pos = 0

    def emit(level: int, line: str, node: EntityNode) -> None:
        nonlocal pos
        text = "  " * level + line + "\n"
        parts.append(text)
        key = node.key
        if spans and spans[-1].node == key and spans[-1].end == pos:
            spans[-1] = Span(spans[-1].start, pos + len(text), key)
        else:
            spans.append(Span(pos, pos + len(text), key))
        pos += len(text)

    def visit(node: EntityNode, level: int) -> None:
        header = f"Entity: {node.entity_type} (ID: {node.entity_id})"
        if node.is_stub:
            emit(level, f"{header} [not expanded: {node.provenance.truncated}]", node)
            return

        emit(level, header, node)
        if node.provenance.timestamp is not None:
            emit(level, f"Timestamp: {node.provenance.timestamp.isoformat()}", node)
        emit(level, f"Depth: {node.depth}", node)

        if node.data:
            emit(level, "Data:", node)
            for line_level, line in _format_data(node.data, level + 1):
                emit(line_level, line, node)

        if node.relationships:
            emit(level, "Relationships:", node)
            for name, children in node.relationships.items():
                emit(level + 1, f"{name}:", node)
                for child in children:
                    visit(child, level + 2)

    visit(root, 0)
    return SerializedGraph(text="".join(parts), spans=tuple(spans))


def _format_value(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, bytes):
        return f"<{len(value)} bytes>"
    if isinstance(value, (dict, list, tuple)):
        return json.dumps(value, default=str, sort_keys=True, ensure_ascii=False)
    return str(value)


def _format_data(data: dict[str, Any], level: int) -> list[tuple[int, str]]:
    out: list[tuple[int, str]] = []
    for key, value in data.items():
        if isinstance(value, dict):
            out.append((level, f"{key}:"))
            out.extend(_format_data(value, level + 1))
        elif isinstance(value, (list, tuple)):
            items = list(value)
            preview = ", ".join(_format_value(v) for v in items[:ARRAY_PREVIEW_ITEMS])
            more = ", ..." if len(items) > ARRAY_PREVIEW_ITEMS else ""
            out.append((level, f"{key}: [{len(items)} items] {preview}{more}".rstrip()))
        else:
            out.append((level, f"{key}: {_format_value(value)}"))
    return out


def split_windows(text: str, chunk_size: int, overlap: int) -> list[tuple[int, int]]:
    """Return [(start, end)] windows covering `text`.

    A window ends on a whitespace character (excluded from the window) at or
    before `start + chunk_size`; the next window starts `overlap` characters
    before that end, so `text[s0:e0] + text[s1:e1][overlap:] == text[s0:e1]`.
    A run without whitespace is cut hard at the limit.
    """
    validate_chunking(chunk_size, overlap)
    n = len(text)
    if n == 0:
        return []
    if n <= chunk_size:
        return [(0, n)]

    windows: list[tuple[int, int]] = []
    start = 0
    while True:
        limit = start + chunk_size
        if limit >= n:
            windows.append((start, n))
            break
        end = _break_at(text, lo=start + overlap + 1, hi=limit)
        windows.append((start, end))
        start = end - overlap
    return windows


def _break_at(text: str, *, lo: int, hi: int) -> int:
    # Only consider breaks past the overlap so every window advances.
    for i in range(hi, lo - 1, -1):
        if text[i].isspace():
            return i
    return hi


def chunk_text(text: str, chunk_size: int = 1000, overlap: int = 200) -> list[str]:
    return [text[s:e] for s, e in split_windows(text, chunk_size, overlap)]


def relation_names(root: EntityNode) -> tuple[str, ...]:
    """Relationship names anywhere in the graph, in first-seen order."""
    out: list[str] = []
    for node in root.walk():
        for name in node.relationships:
            if name not in out:
                out.append(name)
    return tuple(out)


def _dominant_node(spans: tuple[Span, ...], start: int, end: int) -> str | None:
    best: str | None = None
    best_len = 0
    totals: dict[str, int] = {}
    for sp in spans:
        if sp.end <= start:
            continue
        if sp.start >= end:
            break
        totals[sp.node] = totals.get(sp.node, 0) + min(sp.end, end) - max(sp.start, start)
    # dicts keep first-seen order, so ties go to the earliest node
    for node, length in totals.items():
        if length > best_len:
            best, best_len = node, length
    return best


def build_chunks(root: EntityNode, chunk_size: int = 1000, overlap: int = 200) -> list[ContextChunk]:
    """Serialize `root` and split it into overlapping, ordered chunks."""
    validate_chunking(chunk_size, overlap)
    serialized = serialize_graph(root)
    windows = split_windows(serialized.text, chunk_size, overlap)
    namespace = namespace_for(root.entity_type, root.entity_id)
    relations = relation_names(root)

    return [
        ContextChunk(
            namespace=namespace,
            content=serialized.text[s:e],
            entity_type=root.entity_type,
            entity_id=root.entity_id,
            related_entity_types=relations,
            chunk_index=idx,
            total_chunks=len(windows),
            timestamp=root.provenance.timestamp,
            source_node=_dominant_node(serialized.spans, s, e),
        )
        for idx, (s, e) in enumerate(windows)
    ]
