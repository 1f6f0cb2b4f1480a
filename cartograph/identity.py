"""Deterministic identifiers for graph nodes and relationships.

Ids are pure functions of their semantic key, so re-extracting unchanged
source produces the same ids on any machine and import can ``MERGE`` on
them.  A node id keeps a readable prefix, e.g.
``function:createLogger:3f2a9c01be4d``.
"""

from __future__ import annotations

import hashlib
import re
from typing import Optional

from cartograph.models.graph import NodeType, RelationType

_SEPARATOR = "\x1f"
_SLUG_MAX = 48
_SLUG_INVALID = re.compile(r"[^\w.@/-]+")


def normalize_path(path: Optional[str]) -> str:
    """Return *path* as a POSIX string without ``./`` prefix or trailing ``/``."""
    if not path:
        return ""
    text = path.replace("\\", "/").strip()
    while text.startswith("./"):
        text = text[2:]
    text = re.sub(r"/{2,}", "/", text)
    if len(text) > 1:
        text = text.rstrip("/")
    return "" if text == "." else text


def _slug(name: str) -> str:
    slug = _SLUG_INVALID.sub("-", name.strip()).strip("-")
    return slug[:_SLUG_MAX] or "_"


def _digest(parts: tuple[str, ...], length: int) -> str:
    joined = _SEPARATOR.join(parts)
    return hashlib.sha1(joined.encode("utf-8")).hexdigest()[:length]


def node_id(node_type: NodeType | str, qualified_name: str, path: Optional[str] = None) -> str:
    """Derive the stable id of a node.

    Args:
        node_type: The node's :class:`NodeType`.
        qualified_name: Name unique within *path* (e.g. ``Logger.info``).
        path: Repo-relative path of the defining file or directory.

    Returns:
        ``"<type>:<slug>:<12 hex chars>"``.
    """
    type_value = NodeType(node_type).value
    key = (type_value, qualified_name.strip(), normalize_path(path))
    return f"{type_value.lower()}:{_slug(qualified_name)}:{_digest(key, 12)}"


def relationship_key(source_id: str, target_id: str, rel_type: RelationType | str) -> str:
    """Derive the stable key of a relationship from its endpoints and type."""
    type_value = RelationType(rel_type).value
    return f"{type_value}:{_digest((source_id, target_id, type_value), 16)}"
