"""Schema introspection for relational and document sources.

Relational sources report their declared keys, so fields and relationships are
exact. Document sources are sampled and their relationships inferred from id
shapes and field names; ambiguous candidates are dropped rather than guessed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import Any, Iterable

from ..config import MasterEntityConfig
from ..sources.base import DataSource, Record, RelationalSource
from . import infer
from .types import EntitySchema, Field, FieldType, Relationship, RelationshipType, TimeSeries, merge_types


log = logging.getLogger(__name__)


@dataclass
class _FieldObs:
    type: FieldType | None = None
    nullable: bool = False
    count: int = 0
    values: list[Any] = field(default_factory=list)


@dataclass
class _Sampled:
    name: str
    records: list[Record]
    primary_key: str | None = None
    fields: dict[str, _FieldObs] = field(default_factory=dict)


class SchemaCatalog:
    def __init__(
        self,
        source: DataSource,
        *,
        sample_limit: int = 100,
        master_entities: Iterable[MasterEntityConfig] = (),
    ):
        self.source = source
        self.sample_limit = int(sample_limit)
        self.master_entities = {m.name: m for m in master_entities}
        self._schemas: list[EntitySchema] | None = None

    def introspect(self) -> list[EntitySchema]:
        """Describe every non-empty entity type. Never writes to the source."""
        sampled = self._sample_all()
        if not sampled:
            log.info("no entity types with sampled instances; catalog is empty")
            self._schemas = []
            return []

        source = self.source
        if isinstance(source, RelationalSource):
            schemas = [self._relational_schema(source, s) for s in sampled.values()]
        else:
            schemas = self._document_schemas(sampled)

        known = {s.name for s in schemas}
        inverse = _inverse_edges(schemas)
        schemas = [self._finish(s, known, inverse.get(s.name, [])) for s in schemas]
        log.info("introspected %d entity types from %s", len(schemas), self.source.name)
        self._schemas = schemas
        return schemas

    @property
    def schemas(self) -> list[EntitySchema]:
        if self._schemas is None:
            return self.introspect()
        return self._schemas

    def get(self, name: str) -> EntitySchema | None:
        return next((s for s in self.schemas if s.name == name), None)

    def as_dict(self) -> dict[str, EntitySchema]:
        return {s.name: s for s in self.schemas}

    # -- sampling ---------------------------------------------------------

    def _sample_all(self) -> dict[str, _Sampled]:
        out: dict[str, _Sampled] = {}
        for name in self.source.list_entity_types():
            master = self.master_entities.get(name)
            filters = None
            if master is not None and master.sample_filter and self.source.supports_sample_filter:
                filters = master.sample_filter
            records = self.source.sample_instances(name, self.sample_limit, filters)
            if not records:
                log.debug("skipping empty entity type %s", name)
                continue
            out[name] = _Sampled(name=name, records=records)
        return out

    # -- relational -------------------------------------------------------

    def _relational_schema(self, source: RelationalSource, sampled: _Sampled) -> EntitySchema:
        keys = source.describe_keys(sampled.name)
        fk_by_col = {fk.column: fk for fk in keys.foreign_keys}
        pk = keys.primary_key[0] if keys.primary_key else None

        fields = tuple(
            Field(
                name=col.name,
                type=infer.map_sql_type(col.declared_type),
                nullable=col.nullable,
                is_primary_key=col.name in keys.primary_key,
                is_foreign_key=col.name in fk_by_col,
                referenced_entity=fk_by_col[col.name].referenced_table if col.name in fk_by_col else None,
                referenced_field=fk_by_col[col.name].referenced_column if col.name in fk_by_col else None,
            )
            for col in keys.columns
        )
        relationships = tuple(
            Relationship(
                type=RelationshipType.MANY_TO_ONE,
                target_entity=fk.referenced_table,
                local_key=fk.column,
                foreign_key=fk.referenced_column,
            )
            for fk in keys.foreign_keys
        )
        return EntitySchema(
            name=sampled.name,
            fields=fields,
            relationships=relationships,
            primary_key=pk,
            source_kind="relational",
        )

    # -- documents --------------------------------------------------------

    def _document_schemas(self, sampled: dict[str, _Sampled]) -> list[EntitySchema]:
        for s in sampled.values():
            s.fields = _observe(s.name, s.records)
            master = self.master_entities.get(s.name)
            if master is not None and master.primary_key:
                s.primary_key = master.primary_key
            else:
                s.primary_key = next((k for k in infer.PRIMARY_KEY_FIELDS if k in s.fields), None)

        pk_shapes: dict[str, str] = {}
        for s in sampled.values():
            if s.primary_key is None:
                continue
            shape = infer.common_shape(r.get(s.primary_key) for r in s.records)
            if shape is not None:
                pk_shapes[s.name] = shape

        known = list(sampled)
        schemas: list[EntitySchema] = []
        for s in sampled.values():
            fields: list[Field] = []
            relationships: list[Relationship] = []
            for name, obs in s.fields.items():
                ftype = obs.type or FieldType.MIXED
                is_pk = name == s.primary_key
                target = None
                is_array = ftype == FieldType.ARRAY
                if not is_pk and ftype in (FieldType.STRING, FieldType.NUMBER, FieldType.REFERENCE, FieldType.ARRAY):
                    target = _infer_reference(name, obs, is_array=is_array, known=known, pk_shapes=pk_shapes)

                if target is not None:
                    target_pk = sampled[target].primary_key or "_id"
                    relationships.append(
                        Relationship(
                            type=RelationshipType.ONE_TO_MANY if is_array else RelationshipType.MANY_TO_ONE,
                            target_entity=target,
                            local_key=name,
                            foreign_key=target_pk,
                        )
                    )
                    fields.append(
                        Field(
                            name=name,
                            type=ftype if is_array else FieldType.REFERENCE,
                            nullable=obs.nullable,
                            is_foreign_key=True,
                            referenced_entity=target,
                            referenced_field=target_pk,
                        )
                    )
                else:
                    fields.append(Field(name=name, type=ftype, nullable=obs.nullable, is_primary_key=is_pk))

            schemas.append(
                EntitySchema(
                    name=s.name,
                    fields=tuple(fields),
                    relationships=tuple(relationships),
                    primary_key=s.primary_key,
                    source_kind="document",
                )
            )
        return schemas

    # -- shared -----------------------------------------------------------

    def _finish(self, schema: EntitySchema, known: set[str], inverse: list[Relationship]) -> EntitySchema:
        if self.source.supports_time_series:
            schema = replace(schema, time_series=_detect_time_series(schema))

        master = self.master_entities.get(schema.name)
        if master is not None and master.primary_key:
            schema = replace(schema, primary_key=master.primary_key)

        if master is not None and master.relationships is not None:
            # Explicit overrides replace inference entirely.
            candidates = list(master.relationships)
        else:
            candidates = list(schema.relationships) + inverse

        rels = []
        for r in candidates:
            if r.target_entity not in known:
                log.debug("%s: dropping relationship to unknown entity type %s", schema.name, r.target_entity)
                continue
            rels.append(r)
        return replace(schema, relationships=_name_relationships(rels))


def _inverse_edges(schemas: list[EntitySchema]) -> dict[str, list[Relationship]]:
    """One-to-many edges implied by many-to-one references, keyed by referenced type.

    The side that declares the foreign key keeps many-to-one; the referenced
    side gets a reverse lookup on that key.
    """
    out: dict[str, list[Relationship]] = {}
    for owner in schemas:
        for rel in owner.relationships:
            if rel.type != RelationshipType.MANY_TO_ONE:
                continue
            out.setdefault(rel.target_entity, []).append(
                Relationship(
                    type=RelationshipType.ONE_TO_MANY,
                    target_entity=owner.name,
                    local_key=rel.foreign_key,
                    foreign_key=rel.local_key,
                )
            )
    return out


def _observe(entity: str, records: list[Record]) -> dict[str, _FieldObs]:
    fields: dict[str, _FieldObs] = {}
    for rec in records:
        for key, value in rec.items():
            obs = fields.setdefault(key, _FieldObs())
            obs.count += 1
            tag = infer.infer_type(value)
            if value is None:
                obs.nullable = True
            merged = merge_types(obs.type, tag)
            if merged == FieldType.MIXED and obs.type not in (None, FieldType.MIXED):
                log.debug("%s.%s: conflicting types %s/%s, using mixed", entity, key, obs.type.value, tag.value if tag else None)
            obs.type = merged
            if isinstance(value, (list, tuple)):
                obs.values.extend(value)
            else:
                obs.values.append(value)
    for obs in fields.values():
        if obs.count < len(records):
            obs.nullable = True
    return fields


def _infer_reference(
    name: str,
    obs: _FieldObs,
    *,
    is_array: bool,
    known: list[str],
    pk_shapes: dict[str, str],
) -> str | None:
    if any(isinstance(v, (dict, list, tuple)) for v in obs.values):
        return None
    by_name = infer.match_entity_name(infer.referenced_entity_candidates(name, is_array=is_array), known)

    shape = infer.common_shape(obs.values)
    by_shape = [e for e, s in pk_shapes.items() if shape is not None and s == shape]

    if len(by_shape) == 1:
        return by_shape[0]
    if len(by_shape) > 1:
        narrowed = [e for e in by_shape if e in by_name]
        if len(narrowed) == 1:
            return narrowed[0]
        log.debug("field %s matches several entity types by id shape %s; dropped", name, shape)
        return None
    if not by_name:
        return None
    if len(by_name) > 1:
        log.debug("field %s matches several entity names %s; dropped", name, by_name)
        return None
    # Name-only match: only trust names that look like references.
    if infer.strip_fk_suffix(name) is None and not (is_array and shape is not None):
        return None
    return by_name[0]


def _detect_time_series(schema: EntitySchema) -> TimeSeries:
    date_fields = [f.name for f in schema.fields if f.type == FieldType.DATE]
    named = [f.name for f in schema.fields if infer.is_time_series_name(f.name)]
    for name in named:
        if name in date_fields:
            return TimeSeries(enabled=True, field=name)
    if date_fields:
        return TimeSeries(enabled=True, field=date_fields[0])
    if named:
        return TimeSeries(enabled=True, field=named[0])
    return TimeSeries(enabled=False)


def _name_relationships(rels: list[Relationship]) -> tuple[Relationship, ...]:
    """Give every relationship a unique name within its entity.

    Names default to the target type. Clashing names become `<target>.<key>`;
    a reverse lookup that still clashes (self references) gets a `[]` suffix.
    """
    unique: list[Relationship] = []
    seen: set[tuple[str, str, str, str]] = set()
    for r in rels:
        sig = (r.type.value, r.target_entity, r.local_key, r.foreign_key)
        if sig not in seen:
            seen.add(sig)
            unique.append(r)

    counts: dict[str, int] = {}
    for r in unique:
        counts[r.name] = counts.get(r.name, 0) + 1

    out: list[Relationship] = []
    used: set[str] = set()
    for r in unique:
        name = r.name
        if counts[name] > 1:
            key = r.local_key if r.type == RelationshipType.MANY_TO_ONE else r.foreign_key
            name = f"{r.target_entity}.{key}"
        name = _unused_name(name, used, collection=r.is_collection)
        used.add(name)
        out.append(r if name == r.name else replace(r, name=name))
    return tuple(out)


def _unused_name(name: str, used: set[str], *, collection: bool) -> str:
    if name not in used:
        return name
    if collection and f"{name}[]" not in used:
        return f"{name}[]"
    n = 2
    while f"{name}.{n}" in used:
        n += 1
    return f"{name}.{n}"
