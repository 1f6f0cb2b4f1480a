"""Rule-based intent classifier for free-text graph questions.

A question such as ``"find createLogger function"`` is matched against a
weighted trigger vocabulary.  The best-scoring intent wins; its
confidence grows with the number of triggers matched and with how
specific the question is (a recognised type keyword, a concrete entity
name).  A question that matches no trigger is ``UNKNOWN`` with
confidence 0.
"""

from __future__ import annotations

import dataclasses
import enum
import re
from types import MappingProxyType
from typing import Mapping, Optional

import structlog

from cartograph.models.graph import NodeType

logger = structlog.get_logger(__name__)


class Intent(str, enum.Enum):
    """What the user wants out of the graph."""

    FIND_ENTITY = "find_entity"
    FIND_USAGES = "find_usages"
    FIND_DEPENDENCIES = "find_dependencies"
    FIND_PATH = "find_path"
    EXPLAIN_CONCEPT = "explain_concept"
    UNKNOWN = "unknown"


# Tie-break order: the more specific intent wins an equal score.
_PRIORITY: tuple[Intent, ...] = (
    Intent.FIND_PATH,
    Intent.FIND_USAGES,
    Intent.FIND_DEPENDENCIES,
    Intent.EXPLAIN_CONCEPT,
    Intent.FIND_ENTITY,
)


def _frozen(mapping: dict) -> Mapping:
    return MappingProxyType(mapping)


@dataclasses.dataclass(frozen=True)
class IntentVocabulary:
    """Trigger phrases, type keywords and scoring weights.

    Attributes:
        triggers: Per intent, lowercase phrase -> weight in (0, 1].
        type_keywords: Lowercase keyword -> node type it hints at.
        stop_words: Words never taken as an entity name.
        secondary_factor: Share of each additional trigger's weight added
            to the best one.
        type_bonus: Confidence added when a type keyword is present.
        entity_bonus: Confidence added when an entity name was found.
        path_pattern_weight: Weight of a ``from A to B`` /
            ``between A and B`` match.
    """

    triggers: Mapping[Intent, Mapping[str, float]]
    type_keywords: Mapping[str, NodeType]
    stop_words: frozenset[str]
    secondary_factor: float = 0.5
    type_bonus: float = 0.15
    entity_bonus: float = 0.15
    path_pattern_weight: float = 0.8


DEFAULT_VOCABULARY = IntentVocabulary(
    triggers=_frozen(
        {
            Intent.FIND_ENTITY: _frozen(
                {
                    "find": 0.55,
                    "where is": 0.6,
                    "locate": 0.6,
                    "look up": 0.5,
                    "lookup": 0.5,
                    "search": 0.5,
                    "show": 0.45,
                    "list": 0.45,
                    "get": 0.4,
                }
            ),
            Intent.FIND_USAGES: _frozen(
                {
                    "usages": 0.9,
                    "usage": 0.85,
                    "used by": 0.9,
                    "who uses": 0.9,
                    "who calls": 0.9,
                    "callers": 0.9,
                    "called by": 0.9,
                    "uses of": 0.85,
                    "where used": 0.85,
                    "references": 0.7,
                }
            ),
            Intent.FIND_DEPENDENCIES: _frozen(
                {
                    "dependencies": 0.9,
                    "dependency": 0.85,
                    "depends on": 0.9,
                    "deps": 0.8,
                    "imports": 0.75,
                    "requires": 0.6,
                }
            ),
            Intent.FIND_PATH: _frozen(
                {
                    "path from": 0.9,
                    "path between": 0.9,
                    "path": 0.7,
                    "connected": 0.6,
                    "connection": 0.6,
                    "route": 0.5,
                }
            ),
            Intent.EXPLAIN_CONCEPT: _frozen(
                {
                    "explain": 0.85,
                    "tell me about": 0.7,
                    "describe": 0.75,
                    "what is": 0.7,
                    "what are": 0.65,
                    "how does": 0.6,
                    "how do": 0.55,
                    "overview": 0.6,
                }
            ),
        }
    ),
    type_keywords=_frozen(
        {
            "function": NodeType.FUNCTION,
            "functions": NodeType.FUNCTION,
            "func": NodeType.FUNCTION,
            "method": NodeType.FUNCTION,
            "methods": NodeType.FUNCTION,
            "class": NodeType.CLASS,
            "classes": NodeType.CLASS,
            "interface": NodeType.INTERFACE,
            "interfaces": NodeType.INTERFACE,
            "schema": NodeType.SCHEMA,
            "schemas": NodeType.SCHEMA,
            "model": NodeType.SCHEMA,
            "models": NodeType.SCHEMA,
            "package": NodeType.PACKAGE,
            "packages": NodeType.PACKAGE,
            "file": NodeType.FILE,
            "files": NodeType.FILE,
            "component": NodeType.COMPONENT,
            "components": NodeType.COMPONENT,
            "document": NodeType.DOCUMENT,
            "documents": NodeType.DOCUMENT,
            "doc": NodeType.DOCUMENT,
            "docs": NodeType.DOCUMENT,
            "documentation": NodeType.DOCUMENT,
        }
    ),
    stop_words=frozenset(
        {
            "a", "an", "the", "of", "for", "to", "in", "on", "at", "by", "is", "are",
            "was", "be", "and", "or", "with", "from", "between", "into", "that", "this",
            "these", "those", "it", "its", "what", "which", "who", "whom", "where", "how",
            "does", "do", "did", "me", "my", "our", "i", "we", "you", "can", "could",
            "please", "all", "any", "some", "there", "about", "tell", "uses", "use",
            "used", "call", "calls", "called", "defined", "definition",
        }
    ),
)


@dataclasses.dataclass(frozen=True)
class IntentClassification:
    """Classifier output.

    Attributes:
        text: The original question.
        intent: Winning intent.
        confidence: In [0, 1]; 0 for ``UNKNOWN``.
        entity_name: Primary entity mentioned, if any.
        type_hint: Node type named in the question, if any.
        secondary_entity: Second endpoint for ``FIND_PATH``.
        matched_triggers: Trigger phrases that matched, in text order.
    """

    text: str
    intent: Intent
    confidence: float
    entity_name: Optional[str] = None
    type_hint: Optional[NodeType] = None
    secondary_entity: Optional[str] = None
    matched_triggers: tuple[str, ...] = ()


# ----------------------------------------------------------------------
# Extraction helpers
# ----------------------------------------------------------------------

_QUOTED = re.compile(r"""["'`]([^"'`]+)["'`]""")
_TOKEN = re.compile(r"[A-Za-z_$@][\w$.@/-]*")
_ENTITY = r"""["'`]?(?P<{name}>[A-Za-z_$@][\w$.@/-]*)["'`]?"""
_PATH_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"\bfrom\s+" + _ENTITY.format(name="a") + r"\s+to\s+" + _ENTITY.format(name="b"), re.I),
    re.compile(r"\bbetween\s+" + _ENTITY.format(name="a") + r"\s+and\s+" + _ENTITY.format(name="b"), re.I),
)


def _phrase_pattern(phrase: str) -> re.Pattern[str]:
    return re.compile(r"(?<![\w$])" + r"\s+".join(map(re.escape, phrase.split())) + r"(?![\w$])", re.I)


def _looks_like_code(token: str) -> bool:
    """True for camelCase, PascalCase, snake_case, dotted or scoped names."""
    return (
        any(ch in token for ch in "_.$@/")
        or bool(re.search(r"[a-z][A-Z]", token))
        or (token[:1].isupper() and len(token) > 1)
    )


def _names_identifier(match: re.Match[str]) -> bool:
    """True when a one-word trigger match is written as a code name.

    A capital letter at the start of the question does not count.
    """
    word = match.group(0)
    if not word.isalpha() or word.islower():
        return False
    return bool(re.search(r"[a-z][A-Z]", word)) or match.start() > 0


def _score(weights: list[float], factor: float) -> float:
    if not weights:
        return 0.0
    ordered = sorted(weights, reverse=True)
    return min(1.0, ordered[0] + factor * sum(ordered[1:]))


def _entity_from(text: str, vocabulary: IntentVocabulary, spans: list[tuple[int, int]]) -> Optional[str]:
    quoted = _QUOTED.search(text)
    if quoted:
        return quoted.group(1).strip() or None

    trigger_words = {w for phrases in vocabulary.triggers.values() for p in phrases for w in p.split()}
    words: list[str] = []
    for match in _TOKEN.finditer(text):
        if any(start <= match.start() < end for start, end in spans):
            continue
        token = match.group(0).rstrip(".-/")
        lowered = token.lower()
        if (
            not token
            or lowered in vocabulary.stop_words
            or lowered in vocabulary.type_keywords
            or (lowered in trigger_words and not _looks_like_code(token))
        ):
            continue
        words.append(token)

    for token in words:
        if _looks_like_code(token):
            return token
    return " ".join(words) or None


# ----------------------------------------------------------------------
# Public API
# ----------------------------------------------------------------------


def classify(text: str, vocabulary: IntentVocabulary = DEFAULT_VOCABULARY) -> IntentClassification:
    """Classify *text* into an :class:`Intent` with a confidence.

    Args:
        text: Free-text question.
        vocabulary: Trigger and weight table.

    Returns:
        An :class:`IntentClassification`.  Empty or whitespace-only
        input yields ``UNKNOWN`` with confidence 0 and no entity.
    """
    text = (text or "").strip()
    if not text:
        return IntentClassification(text="", intent=Intent.UNKNOWN, confidence=0.0)

    scores: dict[Intent, list[float]] = {intent: [] for intent in vocabulary.triggers}
    matched: list[tuple[int, str]] = []
    spans: list[tuple[int, int]] = []

    hits: list[tuple[Intent, str, re.Match[str]]] = []
    claimed: list[tuple[int, int]] = []
    for intent, phrases in vocabulary.triggers.items():
        # Longest phrases first so "path from" claims its span before "path".
        for phrase in sorted(phrases, key=len, reverse=True):
            for m in _phrase_pattern(phrase).finditer(text):
                if any(s <= m.start() < e for s, e in claimed):
                    continue
                hits.append((intent, phrase, m))
                claimed.append(m.span())

    # "find Connection class": a capitalised trigger word is the entity,
    # unless it is the only trigger in the question.
    plain = [hit for hit in hits if not _names_identifier(hit[2])]
    if plain:
        hits = plain
    for intent, phrase, m in hits:
        scores[intent].append(vocabulary.triggers[intent][phrase])
        matched.append((m.start(), phrase))
        spans.append(m.span())

    entity: Optional[str] = None
    secondary: Optional[str] = None
    for pattern in _PATH_PATTERNS:
        m = pattern.search(text)
        if m:
            entity, secondary = m.group("a"), m.group("b")
            scores.setdefault(Intent.FIND_PATH, []).append(vocabulary.path_pattern_weight)
            matched.append((m.start(), m.group(0).split()[0].lower()))
            break

    type_hint: Optional[NodeType] = None
    for m in _TOKEN.finditer(text):
        hint = vocabulary.type_keywords.get(m.group(0).lower())
        if hint is not None:
            type_hint = hint
            break

    if entity is None:
        entity = _entity_from(text, vocabulary, spans)

    intent_scores = {intent: _score(w, vocabulary.secondary_factor) for intent, w in scores.items()}
    best = max(_PRIORITY, key=lambda i: (intent_scores.get(i, 0.0), -_PRIORITY.index(i)))
    triggers = tuple(phrase for _, phrase in sorted(matched))

    if intent_scores.get(best, 0.0) <= 0.0:
        result = IntentClassification(
            text=text,
            intent=Intent.UNKNOWN,
            confidence=0.0,
            entity_name=entity,
            type_hint=type_hint,
        )
    else:
        confidence = intent_scores[best]
        if type_hint is not None:
            confidence += vocabulary.type_bonus
        if entity:
            confidence += vocabulary.entity_bonus
        result = IntentClassification(
            text=text,
            intent=best,
            confidence=round(min(1.0, confidence), 3),
            entity_name=entity,
            type_hint=type_hint,
            secondary_entity=secondary if best is Intent.FIND_PATH else None,
            matched_triggers=triggers,
        )

    logger.debug(
        "intent_classified",
        intent=result.intent.value,
        confidence=result.confidence,
        entity=result.entity_name,
        type_hint=result.type_hint.value if result.type_hint else None,
        triggers=list(result.matched_triggers),
    )
    return result
