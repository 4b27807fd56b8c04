"""Entity graph construction.

Starting from one instance, related instances are fetched through the schema
catalog's relationships until the depth bound, the fan-out bound or a path
cycle stops the recursion.
"""

from .build import BranchResult, GraphBuilder, collect_branches
from .node import EntityNode, Provenance, node_key

__all__ = ["BranchResult", "EntityNode", "GraphBuilder", "Provenance", "collect_branches", "node_key"]
