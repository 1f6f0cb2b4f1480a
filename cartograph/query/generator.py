"""Cypher generation from a classified question.

Every intent maps to one fixed, parameterised template.  User text only
ever reaches the database as a bound parameter; the single literal that
is interpolated, the ``shortestPath`` hop bound (Cypher does not accept
a parameter there), is validated as an integer first.
"""

from __future__ import annotations

import dataclasses
import re
from typing import Any, Optional

from cartograph.graph.database import BASE_LABEL
from cartograph.query.intent import Intent, IntentClassification

MAX_PATH_LENGTH: int = 15
_MIN_TERM_LENGTH = 3


@dataclasses.dataclass(frozen=True)
class GeneratedQuery:
    """A ready-to-run query.

    Attributes:
        cypher: Template text.
        parameters: Bound parameters.
        intent: Intent the query answers.
        description: One-line, human-readable summary.
    """

    cypher: str
    parameters: dict[str, Any]
    intent: Intent
    description: str


_FIND_ENTITY = f"""
MATCH (n:{BASE_LABEL})
WHERE ($type IS NULL OR n.type = $type)
  AND ($name IS NULL OR n.name = $name OR toLower(n.name) CONTAINS toLower($name))
RETURN n
ORDER BY CASE WHEN n.name = $name THEN 0 ELSE 1 END, n.name
LIMIT $limit
"""

_FIND_USAGES = f"""
MATCH (target:{BASE_LABEL})<-[r:CALLS|USES]-(user:{BASE_LABEL})
WHERE ($name IS NULL OR target.name = $name)
  AND ($type IS NULL OR target.type = $type)
RETURN target, r, user
LIMIT $limit
"""

_FIND_DEPENDENCIES = f"""
MATCH (source:{BASE_LABEL})-[r:DEPENDS_ON|IMPORTS]->(dependency:{BASE_LABEL})
WHERE ($name IS NULL OR source.name = $name OR source.path = $name)
  AND ($type IS NULL OR source.type = $type)
RETURN source, r, dependency
LIMIT $limit
"""

_FIND_PATH = f"""
MATCH (a:{BASE_LABEL} {{name: $source}}), (b:{BASE_LABEL} {{name: $target}})
WHERE a.id <> b.id
MATCH p = shortestPath((a)-[*..{{max_length}}]-(b))
RETURN p
LIMIT $limit
"""

_NEIGHBOURHOOD = f"""
MATCH p = (a:{BASE_LABEL} {{name: $source}})-[*1..2]-(:{BASE_LABEL})
RETURN p
LIMIT $limit
"""

_EXPLAIN_CONCEPT = f"""
MATCH (n:{BASE_LABEL})
WHERE toLower(n.name) CONTAINS toLower($term)
   OR toLower(coalesce(n.path, '')) CONTAINS toLower($term)
   OR toLower(coalesce(n.description, '')) CONTAINS toLower($term)
   OR toLower(coalesce(n.docstring, '')) CONTAINS toLower($term)
   OR toLower(coalesce(n.title, '')) CONTAINS toLower($term)
RETURN n
ORDER BY CASE WHEN toLower(n.name) = toLower($term) THEN 0 ELSE 1 END, n.type, n.name
LIMIT $limit
"""

_BROAD_SEARCH = f"""
MATCH (n:{BASE_LABEL})
WHERE ($type IS NULL OR n.type = $type)
  AND (toLower(n.name) CONTAINS toLower($term)
       OR toLower(coalesce(n.path, '')) CONTAINS toLower($term))
RETURN n
ORDER BY n.name
LIMIT $limit
"""

_RELAXED = f"""
MATCH (n:{BASE_LABEL})
WHERE any(term IN $terms WHERE toLower(n.name) CONTAINS term
                           OR toLower(coalesce(n.path, '')) CONTAINS term)
RETURN n
ORDER BY size(n.name), n.name
LIMIT $limit
"""


def _path_bound(max_length: int) -> int:
    bound = int(max_length)
    if not 1 <= bound <= MAX_PATH_LENGTH:
        raise ValueError(f"path max length must be between 1 and {MAX_PATH_LENGTH}, got {max_length!r}")
    return bound


def _type_value(classification: IntentClassification) -> Optional[str]:
    return classification.type_hint.value if classification.type_hint else None


def generate(
    classification: IntentClassification,
    limit: int = 20,
    *,
    path_max_length: int = 6,
) -> Optional[GeneratedQuery]:
    """Build the primary query for *classification*.

    Args:
        classification: Classifier output.
        limit: Maximum rows to return.
        path_max_length: Upper bound on ``shortestPath`` hops.

    Returns:
        A :class:`GeneratedQuery`, or ``None`` for an ``UNKNOWN`` question
        without any entity to search for.

    Raises:
        ValueError: If *path_max_length* is out of range.
    """
    intent = classification.intent
    name = classification.entity_name
    node_type = _type_value(classification)
    limit = max(1, int(limit))

    if intent is Intent.FIND_ENTITY:
        what = node_type or "entity"
        return GeneratedQuery(
            cypher=_FIND_ENTITY,
            parameters={"name": name, "type": node_type, "limit": limit},
            intent=intent,
            description=f"Find {what} named '{name}'" if name else f"List {what} nodes",
        )

    if intent is Intent.FIND_USAGES:
        return GeneratedQuery(
            cypher=_FIND_USAGES,
            parameters={"name": name, "type": node_type, "limit": limit},
            intent=intent,
            description=f"Find callers and users of '{name}'" if name else "List CALLS and USES relationships",
        )

    if intent is Intent.FIND_DEPENDENCIES:
        return GeneratedQuery(
            cypher=_FIND_DEPENDENCIES,
            parameters={"name": name, "type": node_type, "limit": limit},
            intent=intent,
            description=f"Find what '{name}' depends on or imports" if name else "List dependency relationships",
        )

    if intent is Intent.FIND_PATH:
        bound = _path_bound(path_max_length)
        if name and classification.secondary_entity:
            return GeneratedQuery(
                cypher=_FIND_PATH.replace("{max_length}", str(bound)),
                parameters={"source": name, "target": classification.secondary_entity, "limit": limit},
                intent=intent,
                description=f"Shortest path from '{name}' to '{classification.secondary_entity}' (max {bound} hops)",
            )
        if name:
            return GeneratedQuery(
                cypher=_NEIGHBOURHOOD,
                parameters={"source": name, "limit": limit},
                intent=intent,
                description=f"Paths of up to 2 hops around '{name}'",
            )
        return None

    if intent is Intent.EXPLAIN_CONCEPT:
        if not name:
            return None
        return GeneratedQuery(
            cypher=_EXPLAIN_CONCEPT,
            parameters={"term": name, "limit": limit},
            intent=intent,
            description=f"Entities mentioning '{name}'",
        )

    if name:
        return GeneratedQuery(
            cypher=_BROAD_SEARCH,
            parameters={"term": name, "type": node_type, "limit": limit},
            intent=intent,
            description=f"Broad search for '{name}'",
        )
    return None


def search_terms(*values: Optional[str]) -> list[str]:
    """Split names into lowercase search terms.

    ``"createLogger"`` yields ``["createlogger", "create", "logger"]``;
    very short fragments are dropped.
    """
    terms: list[str] = []
    for value in values:
        if not value:
            continue
        for word in re.split(r"[^\w$]+|_", value):
            if not word:
                continue
            pieces = [word, *re.findall(r"[A-Z]+(?=[A-Z][a-z])|[A-Z]?[a-z]+|[A-Z]+|\d+", word)]
            for piece in pieces:
                lowered = piece.lower()
                if len(lowered) >= _MIN_TERM_LENGTH and lowered not in terms:
                    terms.append(lowered)
    return terms


def relaxed(classification: IntentClassification, limit: int = 20) -> Optional[GeneratedQuery]:
    """Build the fuzzy fallback query: any term contained in name or path.

    The type filter is dropped.  Terms come from the entity names or, when
    there are none, from the question itself.  Returns ``None`` when
    nothing usable remains.
    """
    terms = search_terms(classification.entity_name, classification.secondary_entity)
    if not terms:
        terms = search_terms(classification.text)
    if not terms:
        return None
    return GeneratedQuery(
        cypher=_RELAXED,
        parameters={"terms": terms, "limit": max(1, int(limit))},
        intent=classification.intent,
        description=f"Relaxed search for any of {', '.join(repr(t) for t in terms)}",
    )
