"""Graph ingestor: pushes an extraction run into the graph store.

Takes the merged, correlated graph produced by
:func:`cartograph.core.ingestion.extract_repository` and writes it to
Neo4j through :meth:`GraphStore.import_graph`, which serialises each
``UNWIND`` batch lazily right before committing it.
"""

from __future__ import annotations

from typing import Any

import structlog

from cartograph.core.ingestion import ExtractionRun
from cartograph.graph.database import GraphStore, ImportReport
from cartograph.models.graph import GraphNode, GraphRelationship

logger = structlog.get_logger(__name__)


def import_to_store(
    store: GraphStore,
    graph: ExtractionRun | list[GraphNode],
    relationships: list[GraphRelationship] | None = None,
    *,
    clear_existing: bool = False,
    strict: bool = False,
) -> dict[str, Any]:
    """Import an extraction run (or explicit node/relationship lists).

    It performs two phases:

    1. **Nodes** - batch-MERGE every entity under its label.
    2. **Relationships** - batch-MERGE every relationship whose endpoints
       exist; the rest are dropped and counted.

    Args:
        store: An already-connected :class:`GraphStore`.
        graph: The run to import, or a list of nodes.
        relationships: Relationships to import when *graph* is a node list.
        clear_existing: If True, wipe the graph first.
        strict: Stop at the first failing batch.

    Returns:
        A summary dict::

            {
                "status": "SUCCESS" | "PARTIAL" | "FAILED",
                "nodes_merged": int,
                "relationships_merged": int,
                "relationships_dropped": int,
                "batches_committed": int,
                "failed_batches": [{"index": int, "phase": str, ...}],
                "duration_seconds": float,
            }
    """
    if isinstance(graph, ExtractionRun):
        nodes, rels = graph.nodes, graph.relationships
    else:
        nodes, rels = list(graph), list(relationships or [])

    if clear_existing:
        logger.warning("clearing_existing_graph_data")
        store.clear()
        store.ensure_indexes()

    logger.info("import_started", nodes=len(nodes), relationships=len(rels))
    report: ImportReport = store.import_graph(nodes, rels, strict=strict)

    summary = {"status": report.status.value, **report.model_dump()}
    logger.info(
        "import_to_store_complete",
        status=summary["status"],
        nodes_merged=report.nodes_merged,
        relationships_merged=report.relationships_merged,
        relationships_dropped=report.relationships_dropped,
    )
    return summary
