"""Build and query per-entity context namespaces.

A namespace (`EntityType:entityId`) holds the chunks generated from one root
entity's graph. Builds always replace the namespace as a whole; a build that
fails leaves nothing behind.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from .config import BuildConfig, Settings
from .context.chunker import ContextChunk, build_chunks, namespace_for, relation_names
from .errors import ContextGraphError, NotFound
from .graph.build import GraphBuilder
from .graph.node import EntityNode
from .index.build import embed_chunks
from .index.embedder import Embedder, FastEmbedEmbedder
from .index.vector_store import RetrievedChunk, SqliteVectorStore, StoreStats, VectorStore
from .logger import configure_logging
from .schema.catalog import SchemaCatalog
from .schema.types import EntitySchema
from .sources.base import DataSource, Record


log = logging.getLogger(__name__)


class NamespaceState(str, Enum):
    UNBUILT = "unbuilt"
    BUILDING = "building"
    BUILT = "built"
    DELETED = "deleted"


@dataclass(frozen=True)
class BuildResult:
    namespace: str
    entity_type: str
    entity_id: str
    chunks_created: int
    embedding_dim: int
    relations: tuple[str, ...] = ()


@dataclass(frozen=True)
class QueryResult:
    # None for a search across every namespace.
    namespace: str | None
    query: str
    hits: list[RetrievedChunk]
    total_results: int


@dataclass(frozen=True)
class RelatedSampleData:
    """An entity's record plus the records related to it, grouped by relationship."""

    entity_type: str
    entity_id: str
    data: Record
    related: dict[str, list[Record]]
    total_records: int


@dataclass(frozen=True)
class CompatibilityReport:
    compatible: bool
    issues: list[str] = field(default_factory=list)
    entity_types: int = 0
    embedding_dim: int | None = None


class ContextGraph:
    def __init__(
        self,
        source: DataSource,
        embedder: Embedder,
        vector_store: VectorStore,
        config: BuildConfig | None = None,
    ):
        self.source = source
        self.embedder = embedder
        self.vector_store = vector_store
        self.config = config or BuildConfig()
        self.catalog = SchemaCatalog(
            source,
            sample_limit=self.config.sample_limit,
            master_entities=self.config.master_entities,
        )
        self._states: dict[str, NamespaceState] = {}

    @classmethod
    def from_settings(
        cls,
        source: DataSource,
        settings: Settings | None = None,
        *,
        embedder: Embedder | None = None,
        vector_store: VectorStore | None = None,
    ) -> "ContextGraph":
        s = settings or Settings()
        configure_logging(s.log_level)
        return cls(
            source,
            embedder or FastEmbedEmbedder(s.embed_model),
            vector_store or SqliteVectorStore.open(s.db_path),
            BuildConfig.from_settings(s),
        )

    # -- schema + graph ---------------------------------------------------

    def introspect(self, refresh: bool = False) -> list[EntitySchema]:
        if refresh:
            return self.catalog.introspect()
        return self.catalog.schemas

    def get_entity_graph(self, entity_type: str, entity_id: Any, max_depth: int | None = None) -> EntityNode:
        self.config.validate()
        builder = GraphBuilder(
            self.source,
            self._schemas_for(entity_type),
            max_depth=self.config.max_depth if max_depth is None else max_depth,
            fanout_limit=self.config.fanout_limit,
            fallback_id_fields=self.config.fallback_id_fields,
        )
        return builder.build(entity_type, entity_id)

    def generate_chunks(self, entity_type: str, entity_id: Any) -> list[ContextChunk]:
        """Chunks for an entity's graph, without embedding or storing them."""
        self.config.validate()
        root = self.get_entity_graph(entity_type, entity_id)
        return build_chunks(root, self.config.chunk_size, self.config.overlap)

    def sample_data(
        self, entity_type: str, limit: int | None = None, filters: dict[str, Any] | None = None
    ) -> list[Record]:
        if entity_type not in self._schemas_for(entity_type):
            raise NotFound(f"Unknown entity type: {entity_type}")
        if filters and not self.source.supports_sample_filter:
            log.debug("%s ignores sample filters", self.source.name)
            filters = None
        n = self.config.sample_limit if limit is None else int(limit)
        return self.source.sample_instances(entity_type, n, filters)

    def related_sample_data(
        self, entity_type: str, entity_id: Any, max_depth: int | None = None
    ) -> RelatedSampleData:
        """Records reachable from one entity, grouped by relationship name.

        Unexpanded nodes (depth or cycle stubs) carry no data and are left out.
        """
        root = self.get_entity_graph(entity_type, entity_id, max_depth=max_depth)
        related: dict[str, list[Record]] = {}
        total = 1
        for node in root.walk():
            for name, children in node.relationships.items():
                for child in children:
                    if child.is_stub:
                        continue
                    related.setdefault(name, []).append(child.data)
                    total += 1
        return RelatedSampleData(
            entity_type=entity_type,
            entity_id=str(entity_id),
            data=root.data,
            related=related,
            total_records=total,
        )

    # -- namespaces -------------------------------------------------------

    def build(self, entity_type: str, entity_id: Any) -> BuildResult:
        """Build (or replace) the namespace for one root entity.

        Raises ConfigurationError before touching the source, NotFound for a
        missing root and BackendUnavailable when a backend call fails. On any
        failure the namespace is removed from the store.
        """
        self.config.validate()
        namespace = namespace_for(entity_type, entity_id)
        self._states[namespace] = NamespaceState.BUILDING
        log.info("building namespace %s", namespace)

        try:
            root = self.get_entity_graph(entity_type, entity_id)
            chunks = build_chunks(root, self.config.chunk_size, self.config.overlap)
            vectors = embed_chunks(self.embedder, chunks, batch_size=self.config.embed_batch_size)
            self.vector_store.store(namespace, chunks, vectors)
        except Exception:
            self._discard(namespace)
            raise

        self._states[namespace] = NamespaceState.BUILT
        dim = int(vectors.shape[1]) if vectors.ndim == 2 else 0
        log.info("built namespace %s with %d chunks", namespace, len(chunks))
        return BuildResult(
            namespace=namespace,
            entity_type=entity_type,
            entity_id=str(entity_id),
            chunks_created=len(chunks),
            embedding_dim=dim,
            relations=relation_names(root),
        )

    def rebuild(self, entity_type: str, entity_id: Any) -> BuildResult:
        self.delete(namespace_for(entity_type, entity_id))
        return self.build(entity_type, entity_id)

    def delete(self, namespace: str) -> None:
        self.vector_store.delete(namespace)
        self._states[namespace] = NamespaceState.DELETED
        log.info("deleted namespace %s", namespace)

    def state(self, namespace: str) -> NamespaceState:
        current = self._states.get(namespace)
        if current == NamespaceState.BUILDING:
            return current
        if self.vector_store.has_namespace(namespace):
            return NamespaceState.BUILT
        if current == NamespaceState.DELETED:
            return current
        return NamespaceState.UNBUILT

    def list_namespaces(self) -> list[str]:
        return self.vector_store.list_namespaces()

    def query(self, namespace: str, text: str, k: int = 5) -> QueryResult:
        if k < 1:
            raise ValueError(f"k must be >= 1 (got {k})")
        if not self.vector_store.has_namespace(namespace):
            raise NotFound(f"Namespace not built: {namespace}")

        qv = self.embedder.embed_query(text)
        hits = self.vector_store.query(namespace, qv, k=k)
        return QueryResult(namespace=namespace, query=text, hits=hits, total_results=len(hits))

    def search(self, text: str, namespace: str | None = None, k: int | None = None) -> QueryResult:
        """Similarity search in one namespace, or across all of them."""
        k = self.config.query_limit if k is None else k
        if namespace is not None:
            return self.query(namespace, text, k=k)
        if k < 1:
            raise ValueError(f"k must be >= 1 (got {k})")

        hits = self.vector_store.search(self.embedder.embed_query(text), namespace=None, k=k)
        return QueryResult(namespace=None, query=text, hits=hits, total_results=len(hits))

    # -- ops --------------------------------------------------------------

    def stats(self) -> StoreStats:
        return self.vector_store.stats()

    def check_compatibility(self) -> CompatibilityReport:
        issues: list[str] = []
        n_types = 0
        dim: int | None = None

        try:
            self.source.ping()
            n_types = len(self.introspect())
            if n_types == 0:
                issues.append(f"{self.source.name}: no entity types with data")
        except ContextGraphError as e:
            issues.append(f"{self.source.name}: {e}")

        try:
            dim = int(self.embedder.dimensions())
        except ContextGraphError as e:
            issues.append(f"{self.embedder.name}: {e}")

        if dim is not None:
            stored = self.vector_store.stats().dimensions
            mismatched = [d for d in stored if d != dim]
            if mismatched:
                issues.append(f"embedder produces {dim}-d vectors but store holds {sorted(set(stored))}")

        return CompatibilityReport(
            compatible=not issues,
            issues=issues,
            entity_types=n_types,
            embedding_dim=dim,
        )

    def close(self) -> None:
        self.vector_store.close()
        self.source.close()

    def _schemas_for(self, entity_type: str) -> dict[str, EntitySchema]:
        schemas = self.catalog.as_dict()
        if entity_type not in schemas:
            # The type may have gained data since the catalog was introspected.
            log.info("%s not in schema catalog; introspecting again", entity_type)
            schemas = {s.name: s for s in self.catalog.introspect()}
        return schemas

    def _discard(self, namespace: str) -> None:
        try:
            self.vector_store.delete(namespace)
        except ContextGraphError as e:
            log.error("could not clean up namespace %s: %s", namespace, e)
        self._states.pop(namespace, None)
