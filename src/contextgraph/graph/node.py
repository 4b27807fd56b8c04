from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any, Iterator


@dataclass(frozen=True)
class Provenance:
    timestamp: datetime | None = None
    source: str = "document"  # "relational" | "document"
    truncated: str | None = None  # None, "cycle" or "depth"


@dataclass(frozen=True)
class EntityNode:
    entity_type: str
    entity_id: str
    data: dict[str, Any]
    relationships: dict[str, list["EntityNode"]] = field(default_factory=dict)
    depth: int = 0
    provenance: Provenance = field(default_factory=Provenance)

    @property
    def key(self) -> str:
        return node_key(self.entity_type, self.entity_id)

    @property
    def is_stub(self) -> bool:
        return self.provenance.truncated is not None

    def walk(self) -> Iterator["EntityNode"]:
        """Pre-order traversal in relationship resolution order."""
        yield self
        for children in self.relationships.values():
            for child in children:
                yield from child.walk()


def node_key(entity_type: str, entity_id: Any) -> str:
    return f"{entity_type}:{entity_id}"


def stub_node(entity_type: str, entity_id: str, depth: int, *, reason: str, source: str) -> EntityNode:
    return EntityNode(
        entity_type=entity_type,
        entity_id=entity_id,
        data={},
        relationships={},
        depth=depth,
        provenance=Provenance(source=source, truncated=reason),
    )


def parse_timestamp(value: Any) -> datetime | None:
    """Best-effort conversion of a time-series field value."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    if isinstance(value, (int, float)):
        try:
            # Epoch milliseconds are common in document stores.
            secs = value / 1000.0 if value > 1e11 else float(value)
            return datetime.fromtimestamp(secs, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    if isinstance(value, str):
        s = value.strip()
        if s.endswith("Z"):
            s = s[:-1] + "+00:00"
        try:
            return datetime.fromisoformat(s)
        except ValueError:
            return None
    return None
