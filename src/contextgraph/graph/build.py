"""Bounded, cycle-safe materialization of an entity and its related entities.

The traversal is depth-first. Each recursive call receives the keys of its
ancestors as a frozenset, so sibling branches never see each other's visits:
a node may appear in several branches but at most once per root-to-leaf path.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Iterable, Mapping

from ..config import DEFAULT_FALLBACK_ID_FIELDS
from ..errors import ConfigurationError, ContextGraphError, NotFound, RelationshipFetchFailed
from ..schema.infer import singularize
from ..schema.types import EntitySchema, Relationship, RelationshipType
from ..sources.base import DataSource, Record
from .node import EntityNode, Provenance, node_key, parse_timestamp, stub_node


log = logging.getLogger(__name__)


@dataclass(frozen=True)
class BranchResult:
    """Outcome of resolving one relationship of one node."""

    name: str
    nodes: tuple[EntityNode, ...] = ()
    error: RelationshipFetchFailed | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


def collect_branches(results: Iterable[BranchResult]) -> dict[str, list[EntityNode]]:
    """Keep successful, non-empty branches; log and drop failed ones."""
    out: dict[str, list[EntityNode]] = {}
    for r in results:
        if not r.ok:
            log.warning("relationship branch dropped: %s", r.error)
            continue
        if r.nodes:
            out[r.name] = list(r.nodes)
    return out


class GraphBuilder:
    def __init__(
        self,
        source: DataSource,
        schemas: Mapping[str, EntitySchema] | Iterable[EntitySchema],
        *,
        max_depth: int = 3,
        fanout_limit: int = 10,
        fallback_id_fields: Iterable[str] = DEFAULT_FALLBACK_ID_FIELDS,
    ):
        if max_depth < 0:
            raise ConfigurationError(f"max_depth must be >= 0 (got {max_depth})")
        if fanout_limit < 1:
            raise ConfigurationError(f"fanout_limit must be >= 1 (got {fanout_limit})")
        self.source = source
        if isinstance(schemas, Mapping):
            self.schemas = dict(schemas)
        else:
            self.schemas = {s.name: s for s in schemas}
        self.max_depth = int(max_depth)
        self.fanout_limit = int(fanout_limit)
        self.fallback_id_fields = tuple(fallback_id_fields)

    def build(self, entity_type: str, entity_id: Any) -> EntityNode:
        """Materialize the graph rooted at `entity_type:entity_id`.

        Raises NotFound when the root type or instance does not exist;
        BackendUnavailable from the root fetch propagates. Failures below the
        root only remove the affected relationship branch.
        """
        if entity_type not in self.schemas:
            raise NotFound(f"Unknown entity type: {entity_type}")
        return self._build(entity_type, str(entity_id), depth=0, path=frozenset())

    def _build(
        self,
        entity_type: str,
        entity_id: str,
        *,
        depth: int,
        path: frozenset[str],
        record: Record | None = None,
    ) -> EntityNode:
        schema = self.schemas.get(entity_type)
        kind = schema.source_kind if schema is not None else self.source.kind
        key = node_key(entity_type, entity_id)

        if key in path:
            return stub_node(entity_type, entity_id, depth, reason="cycle", source=kind)
        # The root is always fetched so a missing root is reported.
        if depth > 0 and depth >= self.max_depth:
            return stub_node(entity_type, entity_id, depth, reason="depth", source=kind)

        data = record if record is not None else self._fetch(entity_type, entity_id, schema)
        # An instance reached through an alternate id is also on the path under its own id.
        canonical = _record_id(data, schema.primary_key if schema is not None else None)
        canonical_key = node_key(entity_type, canonical) if canonical is not None else key
        if canonical_key != key and canonical_key in path:
            return stub_node(entity_type, entity_id, depth, reason="cycle", source=kind)
        path = path | {key, canonical_key}

        results: list[BranchResult] = []
        if schema is not None and depth < self.max_depth:
            for rel in schema.relationships:
                results.append(self._resolve(entity_type, rel, data, depth=depth, path=path))

        timestamp = None
        if schema is not None and schema.time_series.enabled and schema.time_series.field:
            timestamp = parse_timestamp(data.get(schema.time_series.field))

        return EntityNode(
            entity_type=entity_type,
            entity_id=entity_id,
            data=dict(data),
            relationships=collect_branches(results),
            depth=depth,
            provenance=Provenance(timestamp=timestamp, source=kind),
        )

    def _fallback_fields(self, entity_type: str, primary_key: str | None) -> list[str]:
        base = singularize(entity_type).lower()
        out: list[str] = []
        for template in self.fallback_id_fields:
            f = template.format(entity=base)
            if f != primary_key and f not in out:
                out.append(f)
        return out

    def _fetch(self, entity_type: str, entity_id: str, schema: EntitySchema | None) -> Record:
        primary_key = schema.primary_key if schema is not None else None
        rec = self.source.fetch_by_id(entity_type, entity_id, primary_key)
        if rec is not None:
            return rec

        # First matching alternate id field wins, in configured order.
        for f in self._fallback_fields(entity_type, primary_key):
            rows = self.source.fetch_by_field(entity_type, f, entity_id, 1)
            if rows:
                log.debug("%s:%s resolved through fallback field %s", entity_type, entity_id, f)
                return rows[0]
        raise NotFound(f"No {entity_type} found with id {entity_id}")

    def _resolve(
        self,
        entity_type: str,
        rel: Relationship,
        data: Record,
        *,
        depth: int,
        path: frozenset[str],
    ) -> BranchResult:
        try:
            nodes = self._resolve_nodes(rel, data, depth=depth, path=path)
        except ContextGraphError as e:
            return BranchResult(name=rel.name, error=RelationshipFetchFailed(entity_type, rel.name, e))
        # A cycle stub would repeat an ancestor on this path; leave it out.
        return BranchResult(name=rel.name, nodes=tuple(n for n in nodes if n.provenance.truncated != "cycle"))

    def _resolve_nodes(
        self,
        rel: Relationship,
        data: Record,
        *,
        depth: int,
        path: frozenset[str],
    ) -> list[EntityNode]:
        value = data.get(rel.local_key)
        if value is None:
            return []

        if rel.type == RelationshipType.MANY_TO_ONE:
            refs = list(value)[:1] if isinstance(value, (list, tuple)) else [value]
            return self._children_by_reference(rel, refs, depth=depth, path=path)

        if rel.is_collection and isinstance(value, (list, tuple)):
            # Array of reference ids; cap before recursing.
            refs = [v for v in value if v is not None][: self.fanout_limit]
            return self._children_by_reference(rel, refs, depth=depth, path=path)

        # Reverse lookup: target records whose foreign key points at us.
        limit = 1 if rel.type == RelationshipType.ONE_TO_ONE else self.fanout_limit
        records = self.source.fetch_by_field(rel.target_entity, rel.foreign_key, value, limit)[:limit]
        target_pk = self._primary_key(rel.target_entity)

        nodes: list[EntityNode] = []
        for rec in records:
            child_id = _record_id(rec, target_pk)
            if child_id is None:
                log.debug("%s record without id field %s skipped", rel.target_entity, target_pk)
                continue
            nodes.append(
                self._build(rel.target_entity, child_id, depth=depth + 1, path=path, record=rec)
            )
        return nodes

    def _children_by_reference(
        self,
        rel: Relationship,
        refs: list[Any],
        *,
        depth: int,
        path: frozenset[str],
    ) -> list[EntityNode]:
        target_pk = self._primary_key(rel.target_entity)
        nodes: list[EntityNode] = []
        for ref in refs:
            try:
                if target_pk is None or rel.foreign_key == target_pk:
                    nodes.append(self._build(rel.target_entity, str(ref), depth=depth + 1, path=path))
                    continue
                rows = self.source.fetch_by_field(rel.target_entity, rel.foreign_key, ref, 1)
                child_id = _record_id(rows[0], target_pk) if rows else None
                if child_id is None:
                    raise NotFound(f"No {rel.target_entity} with {rel.foreign_key}={ref}")
                nodes.append(
                    self._build(rel.target_entity, child_id, depth=depth + 1, path=path, record=rows[0])
                )
            except NotFound as e:
                # Dangling reference: drop this child only.
                log.debug("skipping %s reference %s: %s", rel.name, ref, e)
        return nodes

    def _primary_key(self, entity_type: str) -> str | None:
        schema = self.schemas.get(entity_type)
        return schema.primary_key if schema is not None else None


def _record_id(rec: Record, primary_key: str | None) -> str | None:
    for k in (primary_key, "id", "_id"):
        if k and rec.get(k) is not None:
            return str(rec[k])
    return None
