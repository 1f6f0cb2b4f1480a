"""Ranking, explanation and suggestions for query results."""

from __future__ import annotations

import dataclasses
import difflib
from typing import Iterable, Optional

from pydantic import BaseModel, Field

from cartograph.models.graph import GraphNode, GraphRelationship
from cartograph.query.intent import Intent, IntentClassification


@dataclasses.dataclass(frozen=True)
class RankingWeights:
    """Weights of the relevance score.

    The raw score is ``similarity + exact + type + degree`` where
    similarity is the :class:`difflib.SequenceMatcher` ratio between the
    node name and the entity name.  It is divided by the maximum
    attainable sum so scores stay in [0, 1].
    """

    similarity: float = 1.0
    exact_match_bonus: float = 0.25
    type_match_bonus: float = 0.1
    degree_bonus: float = 0.05
    degree_cap: int = 20
    spelling_cutoff: float = 0.6
    max_spelling_suggestions: int = 3

    @property
    def maximum(self) -> float:
        return self.similarity + self.exact_match_bonus + self.type_match_bonus + self.degree_bonus


DEFAULT_RANKING = RankingWeights()


class RankedNode(BaseModel):
    """A result node with its relevance score."""

    node: GraphNode
    score: float = Field(..., ge=0.0, le=1.0)


# ----------------------------------------------------------------------
# Ranking
# ----------------------------------------------------------------------


def similarity(a: str, b: str) -> float:
    return difflib.SequenceMatcher(None, a.lower(), b.lower()).ratio()


def score_node(
    node: GraphNode,
    classification: IntentClassification,
    degree: int = 0,
    weights: RankingWeights = DEFAULT_RANKING,
) -> float:
    entity = classification.entity_name
    raw = 0.0
    if entity:
        raw += weights.similarity * similarity(node.name, entity)
        if node.name.lower() == entity.lower() or node.id == entity:
            raw += weights.exact_match_bonus
    if classification.type_hint is not None and node.type is classification.type_hint:
        raw += weights.type_match_bonus
    if weights.degree_cap > 0:
        raw += weights.degree_bonus * min(max(degree, 0), weights.degree_cap) / weights.degree_cap
    return round(raw / weights.maximum, 4) if weights.maximum else 0.0


def rank_nodes(
    nodes: Iterable[GraphNode],
    classification: IntentClassification,
    degrees: Optional[dict[str, int]] = None,
    weights: RankingWeights = DEFAULT_RANKING,
) -> list[RankedNode]:
    """Score and sort *nodes*, best first (ties broken by name, then id)."""
    degrees = degrees or {}
    ranked = [
        RankedNode(node=node, score=score_node(node, classification, degrees.get(node.id, 0), weights))
        for node in nodes
    ]
    ranked.sort(key=lambda r: (-r.score, r.node.name.lower(), r.node.id))
    return ranked


# ----------------------------------------------------------------------
# Explanation
# ----------------------------------------------------------------------


def _plural(count: int, word: str) -> str:
    if count == 1:
        return f"{count} {word}"
    return f"{count} {word[:-1]}ies" if word.endswith("y") else f"{count} {word}s"


def explain(
    classification: IntentClassification,
    ranked: list[RankedNode],
    relationships: list[GraphRelationship],
    *,
    used_fallback: bool = False,
) -> str:
    """Write a one-paragraph, human-readable account of the results."""
    entity = classification.entity_name
    intent = classification.intent
    n_nodes, n_rels = len(ranked), len(relationships)
    subject = f"'{entity}'" if entity else "any entity"

    if not ranked and not relationships:
        if entity:
            text = f"No results for '{entity}'."
        else:
            text = "Could not find anything to search for in the question."
        return text + (" A relaxed search was tried as well." if used_fallback else "")

    if intent is Intent.FIND_ENTITY:
        what = classification.type_hint.value if classification.type_hint else "entity"
        text = f"Found {_plural(n_nodes, what)} matching '{entity}'." if entity else f"Found {_plural(n_nodes, what)}."
    elif intent is Intent.FIND_USAGES:
        text = f"Found {_plural(n_rels, 'usage')} of {subject} across {_plural(n_nodes, 'node')}."
    elif intent is Intent.FIND_DEPENDENCIES:
        text = f"{subject[0].upper()}{subject[1:]} has {_plural(n_rels, 'outgoing dependency relationship')}."
    elif intent is Intent.FIND_PATH:
        target = classification.secondary_entity
        if target:
            text = f"Shortest path from '{entity}' to '{target}' spans {_plural(n_rels, 'relationship')}."
        else:
            text = f"Found {_plural(n_rels, 'relationship')} within 2 hops of {subject}."
    elif intent is Intent.EXPLAIN_CONCEPT:
        text = f"Found {_plural(n_nodes, 'entity')} related to {subject}."
        top = ranked[0].node if ranked else None
        summary = top and (top.properties.get("description") or top.properties.get("docstring") or top.properties.get("summary"))
        if summary:
            text += f" {top.name}: {str(summary).strip().splitlines()[0]}"
    else:
        text = f"Broad search for {subject} found {_plural(n_nodes, 'entity')}."

    if ranked and intent not in (Intent.FIND_USAGES, Intent.FIND_DEPENDENCIES, Intent.FIND_PATH):
        best = ranked[0].node
        text += f" Best match: {best.type.value} '{best.name}'" + (f" in {best.path}." if best.path else ".")
    if used_fallback:
        text = "The exact query returned nothing; showing relaxed matches. " + text
    return text


# ----------------------------------------------------------------------
# Suggestions
# ----------------------------------------------------------------------

GENERIC_SUGGESTION = 'Quote an exact identifier and name its kind, for example: find "createLogger" function'


def suggest(
    classification: IntentClassification,
    ranked: list[RankedNode],
    *,
    known_names: Iterable[str] = (),
    threshold: float = 0.3,
    limit: Optional[int] = None,
    weights: RankingWeights = DEFAULT_RANKING,
) -> list[str]:
    """Propose follow-up questions.

    Suggestions are produced when there are no results or the best score
    is below *threshold*: a broader intent, spelling corrections drawn
    from *known_names*, and, for empty results, a generic hint.  A
    truncated result set gets a narrowing hint instead.
    """
    suggestions: list[str] = []
    entity = classification.entity_name
    top_score = ranked[0].score if ranked else 0.0

    if ranked and top_score >= threshold:
        if limit is not None and len(ranked) >= limit:
            suggestions.append("Results were truncated; add a kind such as 'function' or 'class' to narrow the search.")
        return suggestions

    intent = classification.intent
    if entity:
        if intent in (Intent.FIND_USAGES, Intent.FIND_DEPENDENCIES, Intent.FIND_PATH):
            suggestions.append(f"Try a broader search: find {entity}")
        elif intent is Intent.FIND_ENTITY and classification.type_hint is not None:
            suggestions.append(f"Try without the kind filter: find {entity}")
        elif intent is Intent.FIND_ENTITY:
            suggestions.append(f"Try explaining the concept instead: explain {entity}")
        elif intent is Intent.UNKNOWN:
            suggestions.append(f"Start with an action, for example: find {entity} or who uses {entity}")

        names = sorted({n for n in known_names if n and n != entity})
        for match in difflib.get_close_matches(
            entity, names, n=weights.max_spelling_suggestions, cutoff=weights.spelling_cutoff
        ):
            suggestions.append(f"Did you mean '{match}'?")
    else:
        suggestions.append("Name the entity you are looking for, for example: who calls createLogger")

    if not ranked:
        suggestions.append(GENERIC_SUGGESTION)
    return suggestions
