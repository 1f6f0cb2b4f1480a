"""Correlation pass: infers cross-cutting relationships from merged nodes.

Extractors only see one concern each.  Once their results are merged,
:func:`correlate` links entities across concerns by matching names and
paths:

========================  ==========================================
Rule                      Emits
========================  ==========================================
``schema_field_type``     ``Schema|Interface -USES-> Schema``
``signature_type``        ``Function -USES-> Schema``
``class_base``            ``Class|Interface -EXTENDS-> Class|Interface``
``class_implements``      ``Class -IMPLEMENTS-> Interface``
``cross_file_call``       ``Function -CALLS-> Function``
``external_import``       ``File -IMPORTS-> Package``
``package_containment``   ``Package -CONTAINS-> File|Document``
========================  ==========================================

Every emitted relationship carries ``confidence`` (from
:class:`CorrelationWeights`), ``inferred=True``, ``rule`` and ``match``.
The pass is pure: the same input always yields the same relationships
in the same order.
"""

from __future__ import annotations

import collections
import dataclasses
import re
from typing import Iterable, Optional

import structlog

from cartograph.models.graph import GraphNode, GraphRelationship, NodeType, RelationType

logger = structlog.get_logger(__name__)


@dataclasses.dataclass(frozen=True)
class CorrelationWeights:
    """Confidence assigned to each kind of match.

    Attributes:
        exact: Same name and same file (or qualified name) match.
        imported: Name match where the source's file imports the target's.
        path_containment: Entity located under a package directory.
        normalized_name: Package name equal after normalisation
            (case, ``-``/``_``/``.``, npm scope).
        name_only: Same name, different and unrelated path.
        case_insensitive: Names equal ignoring case only.
        ambiguity_decay: Subtracted per additional candidate when a
            name matches several targets.
        max_candidates: Names matching more targets than this are skipped.
    """

    exact: float = 1.0
    imported: float = 0.9
    path_containment: float = 0.9
    normalized_name: float = 0.8
    name_only: float = 0.6
    case_insensitive: float = 0.4
    ambiguity_decay: float = 0.1
    max_candidates: int = 5


DEFAULT_WEIGHTS = CorrelationWeights()

_MIN_CONFIDENCE = 0.05
_IDENTIFIER = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")

# Type-expression words that never name a schema.
_TYPE_NOISE = frozenset(
    {
        "str", "int", "float", "bool", "bytes", "None", "Any", "Optional", "Union", "List", "Dict",
        "Set", "Tuple", "list", "dict", "set", "tuple", "Literal", "Sequence", "Mapping", "Iterable",
        "string", "number", "boolean", "object", "array", "null", "any", "unknown", "void", "never",
        "Promise", "Array", "Record", "Partial", "Readonly", "Map", "Date", "integer", "self", "cls",
        "def", "async", "function", "const", "return", "await", "export", "default",
    }
)

# Callee names too generic to link across files.
_GENERIC_CALLS = frozenset(
    {
        "print", "len", "str", "int", "float", "bool", "list", "dict", "set", "tuple", "isinstance",
        "super", "range", "enumerate", "zip", "sorted", "open", "map", "filter", "get", "push",
        "pop", "append", "extend", "update", "keys", "values", "items", "join", "split", "format",
        "then", "catch", "log", "error", "warn", "info", "debug", "toString", "forEach", "require",
        "Error", "Object", "Array", "String", "Number", "Promise", "JSON", "parse", "stringify",
    }
)


@dataclasses.dataclass
class _Index:
    by_id: dict[str, GraphNode]
    by_type_name: dict[tuple[NodeType, str], list[GraphNode]]
    by_type_lower: dict[tuple[NodeType, str], list[GraphNode]]
    file_imports: dict[str, set[str]]

    @classmethod
    def build(cls, nodes: list[GraphNode], relationships: Iterable[GraphRelationship]) -> _Index:
        by_id = {n.id: n for n in nodes}
        by_type_name: dict[tuple[NodeType, str], list[GraphNode]] = collections.defaultdict(list)
        by_type_lower: dict[tuple[NodeType, str], list[GraphNode]] = collections.defaultdict(list)
        for node in nodes:
            by_type_name[(node.type, node.name)].append(node)
            by_type_lower[(node.type, node.name.lower())].append(node)

        file_imports: dict[str, set[str]] = collections.defaultdict(set)
        for rel in relationships:
            if rel.type != RelationType.IMPORTS:
                continue
            source, target = by_id.get(rel.source), by_id.get(rel.target)
            if source is not None and target is not None and source.path and target.path:
                file_imports[source.path].add(target.path)
        return cls(by_id, by_type_name, by_type_lower, file_imports)


class _Collector:
    """Accumulates inferred relationships, keeping the best match per key."""

    def __init__(self, existing: set[str]) -> None:
        self._existing = existing
        self.found: dict[str, GraphRelationship] = {}
        self.by_rule: collections.Counter[str] = collections.Counter()

    def add(
        self,
        source: str,
        target: str,
        rel_type: RelationType,
        confidence: float,
        rule: str,
        match: str,
    ) -> None:
        if source == target or confidence < _MIN_CONFIDENCE:
            return
        rel = GraphRelationship(
            source=source,
            target=target,
            type=rel_type,
            properties={
                "confidence": round(min(confidence, 1.0), 3),
                "inferred": True,
                "rule": rule,
                "match": match,
            },
        )
        key = rel.key
        if key in self._existing:
            return
        current = self.found.get(key)
        if current is None:
            self.by_rule[rule] += 1
        if current is None or rel.confidence > current.confidence:
            self.found[key] = rel


def _type_tokens(values: Iterable[str]) -> list[str]:
    tokens: list[str] = []
    for value in values:
        for token in _IDENTIFIER.findall(value or ""):
            if token not in _TYPE_NOISE and len(token) > 2 and token not in tokens:
                tokens.append(token)
    return tokens


def _as_list(value: object) -> list[str]:
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return [str(v) for v in value]
    return [str(value)]


def _normalize_package(name: str) -> str:
    return re.sub(r"[-_.]+", "-", name).lower()


def _unscoped(name: str) -> str:
    return name.split("/", 1)[1] if name.startswith("@") and "/" in name else name


class CorrelationAnalyzer:
    """Applies every correlation rule over one merged graph."""

    def __init__(
        self,
        nodes: list[GraphNode],
        relationships: list[GraphRelationship],
        weights: CorrelationWeights = DEFAULT_WEIGHTS,
    ) -> None:
        self.nodes = sorted(nodes, key=lambda n: n.id)
        self.weights = weights
        self.index = _Index.build(self.nodes, relationships)
        self.collector = _Collector({r.key for r in relationships})

    def run(self) -> list[GraphRelationship]:
        self._schema_field_types()
        self._signature_types()
        self._inheritance()
        self._cross_file_calls()
        self._external_imports()
        self._package_containment()
        found = [self.collector.found[k] for k in sorted(self.collector.found)]
        logger.info("correlation_finished", inferred=len(found), by_rule=dict(sorted(self.collector.by_rule.items())))
        return found

    # ------------------------------------------------------------------
    # Matching
    # ------------------------------------------------------------------

    def _candidates(
        self,
        name: str,
        types: tuple[NodeType, ...],
        source: GraphNode,
        *,
        allow_case_insensitive: bool = True,
        exclude_same_path: bool = False,
    ) -> list[tuple[GraphNode, float, str]]:
        """Return ``(target, confidence, match)`` for every node *name* may refer to."""
        short = name.rsplit(".", 1)[-1]
        exact = [n for t in types for n in self.index.by_type_name.get((t, short), [])]
        if exclude_same_path:
            exact = [n for n in exact if n.path != source.path]

        if exact:
            imported = self.index.file_imports.get(source.path or "", set())
            same_path = [n for n in exact if n.path == source.path]
            qualified = [n for n in exact if n.properties.get("qualified_name") == name and "." in name]
            if same_path or qualified:
                unique = {n.id: n for n in [*same_path, *qualified]}
                return [(unique[i], self.weights.exact, "exact") for i in sorted(unique)]
            via_import = [n for n in exact if n.path in imported]
            if via_import:
                return self._decayed(via_import, self.weights.imported, "imported")
            return self._decayed(exact, self.weights.name_only, "name_only")

        if not allow_case_insensitive:
            return []
        loose = [n for t in types for n in self.index.by_type_lower.get((t, short.lower()), [])]
        if exclude_same_path:
            loose = [n for n in loose if n.path != source.path]
        return self._decayed(loose, self.weights.case_insensitive, "case_insensitive")

    def _decayed(self, targets: list[GraphNode], base: float, match: str) -> list[tuple[GraphNode, float, str]]:
        if not targets or len(targets) > self.weights.max_candidates:
            return []
        confidence = base - self.weights.ambiguity_decay * (len(targets) - 1)
        return [(n, confidence, match) for n in sorted(targets, key=_node_key)]

    # ------------------------------------------------------------------
    # Rules
    # ------------------------------------------------------------------

    def _schema_field_types(self) -> None:
        for node in self.nodes:
            if node.type not in (NodeType.SCHEMA, NodeType.INTERFACE):
                continue
            for token in _type_tokens(_as_list(node.properties.get("field_types"))):
                for target, confidence, match in self._candidates(
                    token, (NodeType.SCHEMA,), node, allow_case_insensitive=False
                ):
                    self.collector.add(node.id, target.id, RelationType.USES, confidence, "schema_field_type", match)

    def _signature_types(self) -> None:
        for node in self.nodes:
            if node.type not in (NodeType.FUNCTION, NodeType.COMPONENT):
                continue
            texts = [str(node.properties.get("signature") or ""), str(node.properties.get("return_type") or "")]
            for token in _type_tokens(texts):
                if token == node.name:
                    continue
                for target, confidence, match in self._candidates(
                    token, (NodeType.SCHEMA,), node, allow_case_insensitive=False
                ):
                    self.collector.add(node.id, target.id, RelationType.USES, confidence, "signature_type", match)

    def _inheritance(self) -> None:
        for node in self.nodes:
            if node.type not in (NodeType.CLASS, NodeType.INTERFACE, NodeType.COMPONENT):
                continue
            for base in _as_list(node.properties.get("bases")):
                targets = (NodeType.INTERFACE,) if node.type == NodeType.INTERFACE else (NodeType.CLASS, NodeType.INTERFACE)
                for target, confidence, match in self._candidates(base, targets, node):
                    self.collector.add(node.id, target.id, RelationType.EXTENDS, confidence, "class_base", match)
            for iface in _as_list(node.properties.get("implements")):
                for target, confidence, match in self._candidates(iface, (NodeType.INTERFACE,), node):
                    self.collector.add(node.id, target.id, RelationType.IMPLEMENTS, confidence, "class_implements", match)

    def _cross_file_calls(self) -> None:
        for node in self.nodes:
            if node.type not in (NodeType.FUNCTION, NodeType.COMPONENT):
                continue
            for callee in _as_list(node.properties.get("calls")):
                if callee in _GENERIC_CALLS:
                    continue
                for target, confidence, match in self._candidates(
                    callee,
                    (NodeType.FUNCTION, NodeType.COMPONENT),
                    node,
                    allow_case_insensitive=False,
                    exclude_same_path=True,
                ):
                    self.collector.add(node.id, target.id, RelationType.CALLS, confidence, "cross_file_call", match)

    def _external_imports(self) -> None:
        packages = [n for n in self.nodes if n.type == NodeType.PACKAGE]
        if not packages:
            return
        exact = {p.name: p for p in packages}
        normalized: dict[str, list[GraphNode]] = collections.defaultdict(list)
        for package in packages:
            normalized[_normalize_package(package.name)].append(package)
            unscoped = _normalize_package(_unscoped(package.name))
            if unscoped != _normalize_package(package.name):
                normalized[unscoped].append(package)

        for node in self.nodes:
            if node.type != NodeType.FILE:
                continue
            for spec in _as_list(node.properties.get("external_imports")):
                if spec in exact:
                    self.collector.add(node.id, exact[spec].id, RelationType.IMPORTS, self.weights.exact, "external_import", "exact")
                    continue
                for target, confidence, match in self._decayed(
                    normalized.get(_normalize_package(spec), []), self.weights.normalized_name, "normalized_name"
                ):
                    self.collector.add(node.id, target.id, RelationType.IMPORTS, confidence, "external_import", match)

    def _package_containment(self) -> None:
        roots = sorted(
            ((n.path, n) for n in self.nodes if n.type == NodeType.PACKAGE and n.path),
            key=lambda item: -len(item[0]),
        )
        if not roots:
            return
        for node in self.nodes:
            if node.type not in (NodeType.FILE, NodeType.DOCUMENT) or not node.path:
                continue
            owner = self._deepest_package(node.path, roots)
            if owner is not None:
                self.collector.add(
                    owner.id, node.id, RelationType.CONTAINS, self.weights.path_containment, "package_containment", "path"
                )

    @staticmethod
    def _deepest_package(path: str, roots: list[tuple[str, GraphNode]]) -> Optional[GraphNode]:
        for root, package in roots:
            if path.startswith(root + "/"):
                return package
        return None


def _node_key(node: GraphNode) -> str:
    return node.id


def correlate(
    nodes: list[GraphNode],
    relationships: list[GraphRelationship],
    weights: CorrelationWeights = DEFAULT_WEIGHTS,
) -> list[GraphRelationship]:
    """Infer relationships not already present in *relationships*.

    Args:
        nodes: Merged nodes of every extractor.
        relationships: Relationships already known; never re-emitted.
        weights: Confidence table.

    Returns:
        New relationships, sorted by key, each carrying ``confidence``.
    """
    return CorrelationAnalyzer(nodes, relationships, weights).run()


def deduplicate_relationships(relationships: Iterable[GraphRelationship]) -> list[GraphRelationship]:
    """Collapse relationships sharing ``(source, target, type)``.

    Properties are merged in order of appearance; ``confidence`` keeps the
    maximum seen.  The first occurrence's position is preserved.
    """
    merged: dict[str, GraphRelationship] = {}
    for rel in relationships:
        key = rel.key
        existing = merged.get(key)
        if existing is None:
            merged[key] = rel
            continue
        properties = {**existing.properties, **rel.properties}
        if "confidence" in existing.properties or "confidence" in rel.properties:
            properties["confidence"] = max(existing.confidence, rel.confidence)
        merged[key] = existing.model_copy(update={"properties": properties})
    return list(merged.values())
