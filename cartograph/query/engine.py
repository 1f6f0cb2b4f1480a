"""Intelligent query engine: classify, generate, execute, rank, explain.

All methods are **synchronous**; FastAPI endpoints dispatch them via
``asyncio.to_thread``.  The engine holds no state between questions
beyond the store handle it was given.
"""

from __future__ import annotations

import time
from typing import Any, Optional

import structlog
from pydantic import BaseModel, Field

from cartograph.config import Settings, settings as default_settings
from cartograph.errors import OutcomeStatus, QueryExecutionError, QueryTimeoutError
from cartograph.graph.database import BASE_LABEL, GraphStore, QueryResult
from cartograph.models.graph import GraphRelationship
from cartograph.query.formatter import (
    DEFAULT_RANKING,
    RankedNode,
    RankingWeights,
    explain,
    rank_nodes,
    suggest,
)
from cartograph.query.generator import GeneratedQuery, generate, relaxed
from cartograph.query.intent import DEFAULT_VOCABULARY, Intent, IntentVocabulary, classify

logger = structlog.get_logger(__name__)

_KNOWN_NAMES_LIMIT = 500


class QueryResponse(BaseModel):
    """Everything the engine knows about one answered question."""

    query: str
    intent: Intent
    confidence: float = Field(..., ge=0.0, le=1.0)
    entity_name: Optional[str] = None
    secondary_entity: Optional[str] = None
    type_hint: Optional[str] = None
    nodes: list[RankedNode] = Field(default_factory=list)
    relationships: list[GraphRelationship] = Field(default_factory=list)
    explanation: str = ""
    suggestions: list[str] = Field(default_factory=list)
    cypher: Optional[str] = None
    parameters: dict[str, Any] = Field(default_factory=dict)
    used_fallback: bool = False
    attempts: int = 0
    error: Optional[str] = None
    execution_time_ms: float = 0.0
    status: OutcomeStatus = OutcomeStatus.NO_RESULTS


class IntelligentQueryEngine:
    """Answers free-text questions from the stored graph.

    Args:
        store: A connected :class:`GraphStore`.
        app_settings: Provides the result limit, path bound, query
            timeout and relevance threshold.
        vocabulary: Intent trigger table.
        ranking: Ranking weight table.
    """

    def __init__(
        self,
        store: GraphStore,
        app_settings: Settings | None = None,
        *,
        vocabulary: IntentVocabulary = DEFAULT_VOCABULARY,
        ranking: RankingWeights = DEFAULT_RANKING,
    ) -> None:
        self.store = store
        self.settings = app_settings or default_settings
        self.vocabulary = vocabulary
        self.ranking = ranking

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def query(self, text: str) -> QueryResponse:
        """Answer *text*.

        The primary query runs once.  If it returns nothing or fails at
        the database, exactly one relaxed query follows.  Database errors
        end up in ``error`` and ``status``; they are never raised.
        """
        started = time.monotonic()
        classification = classify(text, self.vocabulary)
        limit = self.settings.query_limit
        logger.info(
            "query_started",
            query=classification.text[:120],
            intent=classification.intent.value,
            confidence=classification.confidence,
            entity=classification.entity_name,
        )

        try:
            primary = generate(classification, limit, path_max_length=self.settings.path_max_length)
        except ValueError as exc:
            logger.warning("query_generation_failed", error=str(exc))
            primary = None

        executed: Optional[GeneratedQuery] = primary
        result: Optional[QueryResult] = None
        errors: list[str] = []
        attempts = 0
        used_fallback = False

        if primary is not None:
            attempts += 1
            result = self._execute(primary, errors)

        if result is None or not result.nodes:
            fallback = relaxed(classification, limit)
            if fallback is not None:
                attempts += 1
                used_fallback = True
                if primary is None:
                    reason = "no_primary_query"
                else:
                    reason = "error" if result is None else "empty"
                logger.info("query_fallback", reason=reason)
                fallback_result = self._execute(fallback, errors)
                if fallback_result is not None:
                    executed, result = fallback, fallback_result

        nodes = result.nodes if result else []
        relationships = result.relationships if result else []
        ranked = rank_nodes(nodes, classification, self._degrees([n.id for n in nodes]), self.ranking)

        known_names: list[str] = []
        top_score = ranked[0].score if ranked else 0.0
        if classification.entity_name and top_score < self.settings.relevance_threshold:
            known_names = self._known_names(classification.entity_name)

        if ranked or relationships:
            status = OutcomeStatus.SUCCESS
        elif errors and len(errors) == attempts:
            status = OutcomeStatus.FAILED
        else:
            status = OutcomeStatus.NO_RESULTS

        response = QueryResponse(
            query=classification.text,
            intent=classification.intent,
            confidence=classification.confidence,
            entity_name=classification.entity_name,
            secondary_entity=classification.secondary_entity,
            type_hint=classification.type_hint.value if classification.type_hint else None,
            nodes=ranked,
            relationships=relationships,
            explanation=explain(classification, ranked, relationships, used_fallback=used_fallback),
            suggestions=suggest(
                classification,
                ranked,
                known_names=known_names,
                threshold=self.settings.relevance_threshold,
                limit=limit,
                weights=self.ranking,
            ),
            cypher=executed.cypher.strip() if executed else None,
            parameters=dict(executed.parameters) if executed else {},
            used_fallback=used_fallback,
            attempts=attempts,
            error="; ".join(errors) or None,
            execution_time_ms=round((time.monotonic() - started) * 1000, 2),
            status=status,
        )
        logger.info(
            "query_finished",
            intent=response.intent.value,
            status=response.status.value,
            nodes=len(response.nodes),
            relationships=len(response.relationships),
            attempts=attempts,
            used_fallback=used_fallback,
            execution_time_ms=response.execution_time_ms,
        )
        return response

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _execute(self, generated: GeneratedQuery, errors: list[str]) -> Optional[QueryResult]:
        try:
            return self.store.query(
                generated.cypher,
                generated.parameters,
                timeout=self.settings.query_timeout_seconds,
            )
        except QueryTimeoutError as exc:
            logger.warning("query_timed_out", description=generated.description, error=str(exc))
            errors.append(f"timeout: {exc}")
        except QueryExecutionError as exc:
            logger.warning("query_failed", description=generated.description, error=str(exc))
            errors.append(str(exc))
        return None

    def _degrees(self, ids: list[str]) -> dict[str, int]:
        if not ids:
            return {}
        try:
            return self.store.node_degrees(ids)
        except QueryExecutionError as exc:
            logger.debug("degree_lookup_failed", error=str(exc))
            return {}

    def _known_names(self, entity: str) -> list[str]:
        """Names sharing the entity's first letter, for spelling suggestions."""
        try:
            result = self.store.query(
                f"MATCH (n:{BASE_LABEL}) WHERE toLower(left(n.name, 1)) = $first "
                "RETURN DISTINCT n.name AS name LIMIT $limit",
                {"first": entity[:1].lower(), "limit": _KNOWN_NAMES_LIMIT},
                timeout=self.settings.query_timeout_seconds,
            )
        except QueryExecutionError as exc:
            logger.debug("known_names_lookup_failed", error=str(exc))
            return []
        return [str(r["name"]) for r in result.records if r.get("name")]
