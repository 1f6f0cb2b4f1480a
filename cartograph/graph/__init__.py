"""Neo4j persistence: the graph store and import orchestration."""

from cartograph.graph.database import GraphStats, GraphStore, ImportReport, QueryResult
from cartograph.graph.ingestor import import_to_store

__all__ = ["GraphStats", "GraphStore", "ImportReport", "QueryResult", "import_to_store"]
