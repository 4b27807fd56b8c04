from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class FieldType(str, Enum):
    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"
    DATE = "date"
    ARRAY = "array"
    OBJECT = "object"
    REFERENCE = "reference"
    MIXED = "mixed"


class RelationshipType(str, Enum):
    ONE_TO_ONE = "one-to-one"
    ONE_TO_MANY = "one-to-many"
    MANY_TO_ONE = "many-to-one"
    MANY_TO_MANY = "many-to-many"


def merge_types(a: FieldType | None, b: FieldType | None) -> FieldType | None:
    """Merge two observed tags for the same field.

    `None` stands for "only nulls seen so far" and is the identity. Any
    disagreement between concrete tags collapses to MIXED.
    """
    if a is None:
        return b
    if b is None or a == b:
        return a
    return FieldType.MIXED


@dataclass(frozen=True)
class Field:
    name: str
    type: FieldType
    nullable: bool
    is_primary_key: bool = False
    is_foreign_key: bool = False
    referenced_entity: str | None = None
    referenced_field: str | None = None


@dataclass(frozen=True)
class Relationship:
    type: RelationshipType
    target_entity: str
    local_key: str  # field read on the owning entity
    foreign_key: str  # field matched on the target entity
    name: str = ""

    def __post_init__(self) -> None:
        if not self.name:
            object.__setattr__(self, "name", self.target_entity)

    @property
    def is_collection(self) -> bool:
        return self.type in (RelationshipType.ONE_TO_MANY, RelationshipType.MANY_TO_MANY)


@dataclass(frozen=True)
class TimeSeries:
    enabled: bool
    field: str | None = None


@dataclass(frozen=True)
class EntitySchema:
    name: str
    fields: tuple[Field, ...]
    relationships: tuple[Relationship, ...] = ()
    primary_key: str | None = None
    time_series: TimeSeries = field(default_factory=lambda: TimeSeries(enabled=False))
    source_kind: str = "document"

    def get_field(self, name: str) -> Field | None:
        return next((f for f in self.fields if f.name == name), None)
