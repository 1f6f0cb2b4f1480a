"""Graph data models for nodes, relationships, and extraction results.

These Pydantic v2 models are produced by the extractors and the
correlation pass and consumed by :class:`cartograph.graph.database.GraphStore`.
Enum values double as Neo4j labels and relationship types.
"""

from __future__ import annotations

import enum
from typing import Any, Iterable, Literal, Optional

from pydantic import BaseModel, Field


class NodeType(str, enum.Enum):
    """Closed set of entity kinds stored in the knowledge graph."""

    PACKAGE = "Package"
    FILE = "File"
    CLASS = "Class"
    INTERFACE = "Interface"
    FUNCTION = "Function"
    SCHEMA = "Schema"
    COMPONENT = "Component"
    DOCUMENT = "Document"
    GENERIC_ENTITY = "GenericEntity"


class RelationType(str, enum.Enum):
    """Closed set of relationship kinds stored in the knowledge graph."""

    IMPORTS = "IMPORTS"
    IMPLEMENTS = "IMPLEMENTS"
    EXTENDS = "EXTENDS"
    USES = "USES"
    CALLS = "CALLS"
    CONTAINS = "CONTAINS"
    DEPENDS_ON = "DEPENDS_ON"


class GraphNode(BaseModel):
    """A single entity in the code knowledge graph.

    Attributes:
        id: Stable identifier from :func:`cartograph.identity.node_id`.
        type: Kind of entity.
        name: Human-readable (unqualified) name.
        path: Repo-relative path of the defining file or directory.
        properties: Flat, Neo4j-friendly attribute map.
    """

    id: str = Field(..., description="Stable identifier derived from the semantic key.")
    type: NodeType = Field(..., description="Kind of entity.")
    name: str = Field(..., description="Human-readable entity name.")
    path: Optional[str] = Field(None, description="Repo-relative path of the defining file or directory.")
    properties: dict[str, Any] = Field(default_factory=dict, description="Extra attributes.")

    def merged_with(self, other: GraphNode) -> GraphNode:
        """Return a copy with *other*'s properties shallow-merged on top."""
        return self.model_copy(
            update={
                "name": other.name or self.name,
                "path": other.path if other.path is not None else self.path,
                "properties": {**self.properties, **other.properties},
            }
        )


class GraphRelationship(BaseModel):
    """A directed relationship between two nodes.

    Attributes:
        source: Id of the originating node.
        target: Id of the destination node.
        type: Kind of relationship.
        properties: Extra attributes; inferred relationships carry
            ``confidence``.
    """

    source: str = Field(..., description="Originating node id.")
    target: str = Field(..., description="Destination node id.")
    type: RelationType = Field(..., description="Relationship type.")
    properties: dict[str, Any] = Field(default_factory=dict, description="Extra attributes.")

    @property
    def key(self) -> str:
        from cartograph.identity import relationship_key

        return relationship_key(self.source, self.target, self.type)

    @property
    def confidence(self) -> float:
        value = self.properties.get("confidence")
        return 1.0 if value is None else float(value)


class ExtractionError(BaseModel):
    """Record of one failure inside an extractor run."""

    extractor: str = Field(..., description="Extractor kind that failed.")
    kind: Literal["exception", "timeout"] = Field("exception", description="Failure class.")
    message: str = Field(..., description="Human-readable failure description.")
    path: Optional[str] = Field(None, description="File being processed, if any.")


class ExtractionResult(BaseModel):
    """Partial graph emitted by one extractor (or a merge of several)."""

    nodes: list[GraphNode] = Field(default_factory=list)
    relationships: list[GraphRelationship] = Field(default_factory=list)
    errors: list[ExtractionError] = Field(default_factory=list)

    @classmethod
    def merge(cls, results: Iterable[ExtractionResult]) -> ExtractionResult:
        """Fold *results* into one.

        Nodes are merged by id (later results override same-named
        properties); relationships by key, keeping the highest
        confidence.  Errors are concatenated.
        """
        nodes: dict[str, GraphNode] = {}
        relationships: dict[str, GraphRelationship] = {}
        errors: list[ExtractionError] = []

        for result in results:
            for node in result.nodes:
                existing = nodes.get(node.id)
                nodes[node.id] = existing.merged_with(node) if existing else node
            for rel in result.relationships:
                existing_rel = relationships.get(rel.key)
                if existing_rel is None or rel.confidence > existing_rel.confidence:
                    relationships[rel.key] = rel
            errors.extend(result.errors)

        return cls(nodes=list(nodes.values()), relationships=list(relationships.values()), errors=errors)
