from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from dotenv import load_dotenv

from .errors import ConfigurationError
from .schema.types import Relationship, RelationshipType


load_dotenv()


DEFAULT_FALLBACK_ID_FIELDS = ("id", "{entity}_id", "{entity}Id")


def _csv(value: str) -> tuple[str, ...]:
    return tuple(p.strip() for p in value.split(",") if p.strip())


@dataclass(frozen=True)
class Settings:
    # Vector store database used by `ContextGraph.from_settings`.
    db_path: str = os.getenv("CONTEXTGRAPH_DB_PATH", "./data/contextgraph.db")

    # Embeddings
    embed_model: str = os.getenv("CONTEXTGRAPH_EMBED_MODEL", "BAAI/bge-small-en-v1.5")
    embed_batch_size: int = int(os.getenv("CONTEXTGRAPH_EMBED_BATCH_SIZE", "64"))

    # Graph + chunking
    chunk_size: int = int(os.getenv("CONTEXTGRAPH_CHUNK_SIZE", "1000"))
    overlap: int = int(os.getenv("CONTEXTGRAPH_CHUNK_OVERLAP", "200"))
    max_depth: int = int(os.getenv("CONTEXTGRAPH_MAX_DEPTH", "3"))
    fanout_limit: int = int(os.getenv("CONTEXTGRAPH_FANOUT_LIMIT", "10"))
    sample_limit: int = int(os.getenv("CONTEXTGRAPH_SAMPLE_LIMIT", "100"))
    query_limit: int = int(os.getenv("CONTEXTGRAPH_QUERY_LIMIT", "5"))
    fallback_id_fields: tuple[str, ...] = _csv(
        os.getenv("CONTEXTGRAPH_FALLBACK_ID_FIELDS", ",".join(DEFAULT_FALLBACK_ID_FIELDS))
    )

    # JSON file with master entity overrides (optional).
    master_entities_path: str | None = os.getenv("CONTEXTGRAPH_MASTER_ENTITIES") or None

    log_level: str = os.getenv("CONTEXTGRAPH_LOG_LEVEL", "INFO")


@dataclass(frozen=True)
class MasterEntityConfig:
    name: str
    primary_key: str | None = None
    # None means "keep inferred relationships"; a tuple (even empty) replaces them.
    relationships: tuple[Relationship, ...] | None = None
    sample_filter: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class BuildConfig:
    chunk_size: int = 1000
    overlap: int = 200
    max_depth: int = 3
    fanout_limit: int = 10
    sample_limit: int = 100
    query_limit: int = 5
    embed_batch_size: int = 64
    fallback_id_fields: tuple[str, ...] = DEFAULT_FALLBACK_ID_FIELDS
    master_entities: tuple[MasterEntityConfig, ...] = ()

    @classmethod
    def from_settings(cls, settings: Settings) -> "BuildConfig":
        masters: tuple[MasterEntityConfig, ...] = ()
        if settings.master_entities_path:
            masters = tuple(load_master_entities(settings.master_entities_path))
        return cls(
            chunk_size=settings.chunk_size,
            overlap=settings.overlap,
            max_depth=settings.max_depth,
            fanout_limit=settings.fanout_limit,
            sample_limit=settings.sample_limit,
            query_limit=settings.query_limit,
            embed_batch_size=settings.embed_batch_size,
            fallback_id_fields=settings.fallback_id_fields or DEFAULT_FALLBACK_ID_FIELDS,
            master_entities=masters,
        )

    def validate(self) -> None:
        if self.chunk_size <= 0:
            raise ConfigurationError(f"chunk_size must be positive (got {self.chunk_size})")
        if self.overlap < 0:
            raise ConfigurationError(f"overlap must be >= 0 (got {self.overlap})")
        if self.overlap >= self.chunk_size:
            raise ConfigurationError(
                f"overlap ({self.overlap}) must be smaller than chunk_size ({self.chunk_size})"
            )
        if self.max_depth < 0:
            raise ConfigurationError(f"max_depth must be >= 0 (got {self.max_depth})")
        if self.fanout_limit < 1:
            raise ConfigurationError(f"fanout_limit must be >= 1 (got {self.fanout_limit})")
        if self.sample_limit < 1:
            raise ConfigurationError(f"sample_limit must be >= 1 (got {self.sample_limit})")
        if self.query_limit < 1:
            raise ConfigurationError(f"query_limit must be >= 1 (got {self.query_limit})")
        if self.embed_batch_size < 1:
            raise ConfigurationError(f"embed_batch_size must be >= 1 (got {self.embed_batch_size})")

    def master_for(self, entity_type: str) -> MasterEntityConfig | None:
        return next((m for m in self.master_entities if m.name == entity_type), None)


def load_master_entities(path: str | os.PathLike[str]) -> list[MasterEntityConfig]:
    """Read master entity overrides from JSON.

    Accepts either a bare list or an object with a "masterEntities" key, in the
    layout:

        {"name": "User", "primaryKey": "id",
         "relationships": {"orders": {"entity": "Order", "type": "one-to-many",
                                      "localKey": "id", "foreignKey": "user_id"}},
         "sampleFilters": {"active": true}}
    """
    p = Path(path)
    try:
        raw = json.loads(p.read_text(encoding="utf-8"))
    except FileNotFoundError as e:
        raise ConfigurationError(f"Master entities file not found: {p}") from e
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"Invalid JSON in {p}: {e}") from e

    if isinstance(raw, dict):
        raw = raw.get("masterEntities", [])
    if not isinstance(raw, list):
        raise ConfigurationError(f"{p}: expected a list of master entities")
    return [parse_master_entity(item) for item in raw]


def parse_master_entity(item: dict[str, Any]) -> MasterEntityConfig:
    if not isinstance(item, dict) or not item.get("name"):
        raise ConfigurationError(f"Master entity needs a name: {item!r}")

    rels_raw = item.get("relationships")
    relationships: tuple[Relationship, ...] | None = None
    if rels_raw is not None:
        if isinstance(rels_raw, dict):
            entries = [dict(v, name=k) for k, v in rels_raw.items()]
        else:
            entries = list(rels_raw)
        relationships = tuple(_parse_relationship(str(item["name"]), e) for e in entries)

    sample_filter = item.get("sampleFilters") or item.get("sampleFilter") or {}
    return MasterEntityConfig(
        name=str(item["name"]),
        primary_key=item.get("primaryKey"),
        relationships=relationships,
        sample_filter=dict(sample_filter),
    )


def _parse_relationship(owner: str, e: dict[str, Any]) -> Relationship:
    target = e.get("entity") or e.get("targetEntity")
    if not target:
        raise ConfigurationError(f"{owner}: relationship without target entity: {e!r}")
    try:
        rtype = RelationshipType(e.get("type", "one-to-many"))
    except ValueError as err:
        raise ConfigurationError(f"{owner}: unknown relationship type {e.get('type')!r}") from err
    local_key = e.get("localKey")
    foreign_key = e.get("foreignKey")
    if not local_key or not foreign_key:
        raise ConfigurationError(f"{owner}: relationship to {target} needs localKey and foreignKey")
    return Relationship(
        type=rtype,
        target_entity=str(target),
        local_key=str(local_key),
        foreign_key=str(foreign_key),
        name=str(e.get("name") or target),
    )
