"""Extractor contract and the plain helper functions extractors share.

An extractor is any object exposing ``kind`` and ``extract()``; there is
no common base class.  The helpers below build nodes and relationships
with the identity scheme applied consistently so that independent
extractors agree on ids (a ``File`` node emitted by the package extractor
and by the import extractor is the same node).
"""

from __future__ import annotations

import enum
import pathlib
from typing import Any, Optional, Protocol, runtime_checkable

from cartograph.identity import node_id, normalize_path
from cartograph.models.graph import (
    ExtractionError,
    ExtractionResult,
    GraphNode,
    GraphRelationship,
    NodeType,
    RelationType,
)


class ExtractorKind(str, enum.Enum):
    """Closed set of built-in extractors."""

    PACKAGE = "package"
    SCHEMA = "schema"
    FUNCTION = "function"
    IMPORT = "import"
    DOCUMENT = "document"


@runtime_checkable
class Extractor(Protocol):
    """What the extraction runner needs from an extractor."""

    kind: ExtractorKind

    def extract(self) -> ExtractionResult:
        ...


# ----------------------------------------------------------------------
# Node and relationship builders
# ----------------------------------------------------------------------


def make_node(
    node_type: NodeType,
    qualified_name: str,
    path: Optional[str],
    /,
    *,
    name: Optional[str] = None,
    **properties: Any,
) -> GraphNode:
    """Build a :class:`GraphNode` whose id follows the identity scheme.

    ``None`` property values are dropped.
    """
    norm_path = normalize_path(path) or None
    return GraphNode(
        id=node_id(node_type, qualified_name, norm_path),
        type=node_type,
        name=name or qualified_name.rsplit(".", 1)[-1],
        path=norm_path,
        properties={k: v for k, v in properties.items() if v is not None},
    )


def file_node(rel_path: str, **properties: Any) -> GraphNode:
    """Build the ``File`` node for a repo-relative path."""
    norm = normalize_path(rel_path)
    return make_node(
        NodeType.FILE,
        norm,
        norm,
        name=pathlib.PurePosixPath(norm).name,
        extension=pathlib.PurePosixPath(norm).suffix.lstrip(".") or None,
        **properties,
    )


def file_node_id(rel_path: str) -> str:
    norm = normalize_path(rel_path)
    return node_id(NodeType.FILE, norm, norm)


def make_relationship(
    source: str,
    target: str,
    rel_type: RelationType,
    **properties: Any,
) -> GraphRelationship:
    return GraphRelationship(
        source=source,
        target=target,
        type=rel_type,
        properties={k: v for k, v in properties.items() if v is not None},
    )


# ----------------------------------------------------------------------
# Error recording and paths
# ----------------------------------------------------------------------


def record_error(
    result: ExtractionResult,
    kind: ExtractorKind,
    exc: BaseException,
    path: Optional[str] = None,
) -> None:
    """Append a per-file failure to *result* so the extractor can continue."""
    result.errors.append(
        ExtractionError(
            extractor=kind.value,
            kind="exception",
            message=f"{type(exc).__name__}: {exc}",
            path=path,
        )
    )


def relative_to(root: pathlib.Path, path: pathlib.Path) -> str:
    """Return *path* relative to *root* as a POSIX string (``""`` for the root itself)."""
    try:
        rel = path.resolve().relative_to(root.resolve()).as_posix()
    except ValueError:
        rel = path.as_posix()
    return "" if rel == "." else rel
