"""Pydantic v2 data models for the Cartograph knowledge graph."""

from cartograph.models.graph import (
    ExtractionError,
    ExtractionResult,
    GraphNode,
    GraphRelationship,
    NodeType,
    RelationType,
)

__all__ = [
    "NodeType",
    "RelationType",
    "GraphNode",
    "GraphRelationship",
    "ExtractionError",
    "ExtractionResult",
]
