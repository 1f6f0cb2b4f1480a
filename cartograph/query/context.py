"""Context lookup: an engine answer expanded with its graph neighbourhood.

Implements a "Search & Expand" strategy for coding assistants:

1. **Search** - answer the question with the
   :class:`~cartograph.query.engine.IntelligentQueryEngine` and keep the
   top-ranked nodes as entry points.
2. **Expand** - fetch the relationships touching the entry points and
   their other endpoints.
3. **Assemble** - collect related documents and, when the repository is
   on disk, lazy-load source snippets from the node file pointers within
   a character budget.
"""

from __future__ import annotations

import pathlib
from typing import Optional

import structlog
from pydantic import BaseModel, Field

from cartograph.core.content_reader import get_node_snippet
from cartograph.errors import QueryExecutionError
from cartograph.models.graph import GraphNode, GraphRelationship, NodeType
from cartograph.query.engine import IntelligentQueryEngine, QueryResponse

logger = structlog.get_logger(__name__)


class ContextBundle(BaseModel):
    """The assembled context package.

    Attributes:
        response: The engine's answer to the question.
        entry_points: Top-ranked result nodes.
        related_nodes: Neighbours of the entry points.
        related_relationships: Relationships touching the entry points.
        documents: Document nodes among entry points and neighbours.
        snippets: Source text per node id.
        relationship_lines: Human-readable ``a --[TYPE]--> b`` lines.
        total_chars: Characters of source included.
    """

    response: QueryResponse
    entry_points: list[GraphNode] = Field(default_factory=list)
    related_nodes: list[GraphNode] = Field(default_factory=list)
    related_relationships: list[GraphRelationship] = Field(default_factory=list)
    documents: list[GraphNode] = Field(default_factory=list)
    snippets: dict[str, str] = Field(default_factory=dict)
    relationship_lines: list[str] = Field(default_factory=list)
    total_chars: int = 0

    @property
    def is_empty(self) -> bool:
        return not self.entry_points


def build_context(
    engine: IntelligentQueryEngine,
    text: str,
    repo_root: Optional[str | pathlib.Path] = None,
    *,
    top_k: int = 5,
    neighbour_limit: int = 50,
    max_context_chars: int = 12_000,
) -> ContextBundle:
    """Answer *text* and gather the surrounding graph context.

    Args:
        engine: Engine bound to a connected store.
        text: Free-text question.
        repo_root: Repository on disk; snippets are skipped when ``None``.
        top_k: Entry points kept from the ranked answer.
        neighbour_limit: Cap on expanded relationships.
        max_context_chars: Character budget for source snippets.

    Returns:
        A :class:`ContextBundle`.  Expansion failures leave the bundle
        with the answer only.
    """
    response = engine.query(text)
    entry_points = [r.node for r in response.nodes[:top_k]]
    bundle = ContextBundle(response=response, entry_points=entry_points)
    if not entry_points:
        logger.info("context_no_matches", query=text[:80])
        return bundle

    entry_ids = {n.id for n in entry_points}
    try:
        expanded = engine.store.neighborhood(sorted(entry_ids), limit=neighbour_limit)
    except QueryExecutionError as exc:
        logger.warning("context_expansion_failed", error=str(exc))
        expanded = None

    if expanded is not None:
        bundle.related_nodes = [n for n in expanded.nodes if n.id not in entry_ids]
        bundle.related_relationships = expanded.relationships

    names = {n.id: n.name for n in [*entry_points, *bundle.related_nodes]}
    bundle.relationship_lines = [
        f"{names.get(r.source, r.source)} --[{r.type.value}]--> {names.get(r.target, r.target)}"
        for r in bundle.related_relationships
    ]
    bundle.documents = [n for n in [*entry_points, *bundle.related_nodes] if n.type is NodeType.DOCUMENT]

    if repo_root is not None:
        root = pathlib.Path(repo_root).resolve()
        budget = max_context_chars
        # Entry points get priority for the budget.
        for node in [*entry_points, *bundle.related_nodes]:
            if budget <= 0:
                break
            code = get_node_snippet(node, root)
            if not code:
                continue
            if len(code) > budget:
                code = code[:budget] + "\n... (truncated)"
                budget = 0
            else:
                budget -= len(code)
            bundle.snippets[node.id] = code
        bundle.total_chars = max_context_chars - budget

    logger.info(
        "context_built",
        entry_points=len(bundle.entry_points),
        related=len(bundle.related_nodes),
        relationships=len(bundle.related_relationships),
        documents=len(bundle.documents),
        total_chars=bundle.total_chars,
    )
    return bundle
