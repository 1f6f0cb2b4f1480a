"""Intelligent query engine over the stored knowledge graph."""

from cartograph.query.context import ContextBundle, build_context
from cartograph.query.engine import IntelligentQueryEngine, QueryResponse
from cartograph.query.formatter import DEFAULT_RANKING, RankedNode, RankingWeights
from cartograph.query.generator import GeneratedQuery, generate, relaxed
from cartograph.query.intent import (
    DEFAULT_VOCABULARY,
    Intent,
    IntentClassification,
    IntentVocabulary,
    classify,
)

__all__ = [
    "ContextBundle",
    "DEFAULT_RANKING",
    "DEFAULT_VOCABULARY",
    "GeneratedQuery",
    "IntelligentQueryEngine",
    "Intent",
    "IntentClassification",
    "IntentVocabulary",
    "QueryResponse",
    "RankedNode",
    "RankingWeights",
    "build_context",
    "classify",
    "generate",
    "relaxed",
]
