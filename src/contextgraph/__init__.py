"""Entity-centric context graphs over relational and document stores.

Typical use:

    from contextgraph import ContextGraph, SqliteSource

    graph = ContextGraph.from_settings(SqliteSource("shop.db"))
    graph.build("users", 42)
    graph.query("users:42", "recent orders")
"""

from .config import BuildConfig, MasterEntityConfig, Settings, load_master_entities
from .errors import BackendUnavailable, ConfigurationError, ContextGraphError, NotFound, RelationshipFetchFailed
from .facade import BuildResult, CompatibilityReport, ContextGraph, NamespaceState, QueryResult, RelatedSampleData
from .index import Embedder, FastEmbedEmbedder, RetrievedChunk, SqliteVectorStore, VectorStore
from .sources import DataSource, DocumentSource, RelationalSource, SqliteSource

__all__ = [
    "BackendUnavailable",
    "BuildConfig",
    "BuildResult",
    "CompatibilityReport",
    "ConfigurationError",
    "ContextGraph",
    "ContextGraphError",
    "DataSource",
    "DocumentSource",
    "Embedder",
    "FastEmbedEmbedder",
    "MasterEntityConfig",
    "NamespaceState",
    "NotFound",
    "QueryResult",
    "RelatedSampleData",
    "RelationalSource",
    "RelationshipFetchFailed",
    "RetrievedChunk",
    "Settings",
    "SqliteSource",
    "SqliteVectorStore",
    "VectorStore",
    "load_master_entities",
]
