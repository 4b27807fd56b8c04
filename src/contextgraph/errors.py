from __future__ import annotations


class ContextGraphError(RuntimeError):
    pass


class ConfigurationError(ContextGraphError, ValueError):
    """Invalid build/chunking options. Raised before any fetch happens."""


class NotFound(ContextGraphError, LookupError):
    pass


class BackendUnavailable(ContextGraphError):
    """A data source, embedder or vector store call failed."""


class RelationshipFetchFailed(ContextGraphError):
    """One relationship branch could not be resolved.

    The graph builder never raises this to its caller; it is carried in a
    `BranchResult` and logged when the branch is dropped.
    """

    def __init__(self, entity_type: str, relation: str, cause: BaseException):
        super().__init__(f"{entity_type}.{relation}: {cause}")
        self.entity_type = entity_type
        self.relation = relation
        self.cause = cause
