"""Schema extractor: declarative data models.

Three sources are recognised:

- JSON Schema documents (``*.schema.json``), including their
  ``definitions`` / ``$defs`` sections;
- Python model classes (pydantic ``BaseModel``, ``@dataclass``,
  ``TypedDict``) found with tree-sitter;
- Zod schemas (``export const UserSchema = z.object({...})``) in
  JavaScript and TypeScript files, matched textually.

Each becomes a ``Schema`` node with ``fields``, ``field_types`` and
``required_fields`` properties.  References between schemas are left to
the correlation pass.
"""

from __future__ import annotations

import json
import pathlib
import re
from typing import Any, Optional

import structlog

from cartograph.core.content_reader import read_text
from cartograph.core.crawler import FileCrawler, get_language_for_file
from cartograph.extractors.base import ExtractorKind, make_node, record_error, relative_to
from cartograph.models.graph import ExtractionResult, GraphNode, NodeType
from cartograph.parsers.base import Definition
from cartograph.parsers.factory import ParserFactory

logger = structlog.get_logger(__name__)

JSON_SCHEMA_SUFFIX = ".schema.json"
_SCRIPT_SUFFIXES = (".js", ".jsx", ".mjs", ".cjs", ".ts", ".tsx", ".mts", ".cts")

MODEL_BASES: frozenset[str] = frozenset({"BaseModel", "BaseSettings", "SQLModel", "TypedDict", "Schema"})
MODEL_DECORATORS: frozenset[str] = frozenset({"dataclass", "dataclasses.dataclass", "attrs.define", "attr.s", "define"})

_ZOD_SCHEMA = re.compile(r"export\s+(?:const|let|var)\s+(\w+)\s*=\s*z\s*\.\s*(\w+)")
_ZOD_OBJECT_BODY = re.compile(r"\s*\(\s*\{(?P<body>.*?)\}\s*\)", re.S)
_ZOD_FIELD = re.compile(r"(\w+)\s*:\s*(z\s*\.[^,\n}]+|[A-Z]\w*)")


def _ref_name(ref: str) -> str:
    """Return the schema name a ``$ref`` points at."""
    tail = ref.rstrip("/").rsplit("/", 1)[-1]
    for suffix in (JSON_SCHEMA_SUFFIX, ".json"):
        if tail.endswith(suffix):
            return tail[: -len(suffix)]
    return tail.lstrip("#")


def _json_type(spec: Any) -> str:
    """Best-effort readable type of a JSON Schema property."""
    if not isinstance(spec, dict):
        return "any"
    if "$ref" in spec:
        return _ref_name(str(spec["$ref"]))
    kind = spec.get("type")
    if kind == "array":
        return f"array<{_json_type(spec.get('items'))}>"
    if isinstance(kind, list):
        return "|".join(str(k) for k in kind)
    for combinator in ("oneOf", "anyOf", "allOf"):
        if isinstance(spec.get(combinator), list):
            return "|".join(_json_type(s) for s in spec[combinator])
    return str(kind or "any")


class SchemaExtractor:
    """Extracts ``Schema`` nodes from JSON Schema, Python and Zod sources.

    Args:
        repo_root: Repository root to scan.
        blacklist: Optional crawl blacklist override.
    """

    kind = ExtractorKind.SCHEMA

    def __init__(self, repo_root: pathlib.Path, blacklist: list[str] | None = None) -> None:
        self.repo_root = repo_root.resolve()
        self._crawler = FileCrawler(
            self.repo_root,
            suffixes=(JSON_SCHEMA_SUFFIX, ".py", *_SCRIPT_SUFFIXES),
            blacklist=blacklist,
        )
        self._parsers = ParserFactory(self.repo_root)

    def extract(self) -> ExtractionResult:
        result = ExtractionResult()
        counts = {"json": 0, "python": 0, "zod": 0}

        for path in self._crawler.crawl():
            rel = relative_to(self.repo_root, path)
            try:
                if path.name.lower().endswith(JSON_SCHEMA_SUFFIX):
                    nodes = self._from_json_schema(path, rel)
                    counts["json"] += len(nodes)
                elif path.suffix == ".py":
                    nodes = self._from_python(path, rel)
                    counts["python"] += len(nodes)
                else:
                    nodes = self._from_zod(path, rel)
                    counts["zod"] += len(nodes)
            except Exception as exc:
                record_error(result, self.kind, exc, rel)
                logger.warning("schema_parse_failed", path=rel, error=str(exc))
                continue
            result.nodes.extend(nodes)

        logger.info("schemas_extracted", **counts)
        return result

    # ------------------------------------------------------------------
    # JSON Schema
    # ------------------------------------------------------------------

    def _from_json_schema(self, path: pathlib.Path, rel: str) -> list[GraphNode]:
        document = json.loads(read_text(path))
        if not isinstance(document, dict):
            raise ValueError("JSON Schema document must be an object")

        root_name = str(document.get("title") or path.name[: -len(JSON_SCHEMA_SUFFIX)])
        nodes = [self._json_schema_node(root_name, root_name, document, rel, pointer="#")]

        for section in ("definitions", "$defs"):
            defs = document.get(section)
            if not isinstance(defs, dict):
                continue
            for def_name, spec in defs.items():
                if isinstance(spec, dict):
                    pointer = f"#/{section}/{def_name}"
                    nodes.append(self._json_schema_node(def_name, pointer, spec, rel, pointer=pointer))
        return nodes

    @staticmethod
    def _json_schema_node(name: str, qualified: str, spec: dict[str, Any], rel: str, pointer: str) -> GraphNode:
        properties = spec.get("properties") if isinstance(spec.get("properties"), dict) else {}
        required = spec.get("required") if isinstance(spec.get("required"), list) else []
        return make_node(
            NodeType.SCHEMA,
            qualified,
            rel,
            name=name,
            schema_kind="json-schema",
            pointer=pointer,
            description=spec.get("description"),
            fields=list(properties),
            field_types=[_json_type(p) for p in properties.values()],
            required_fields=[str(r) for r in required if r in properties],
        )

    # ------------------------------------------------------------------
    # Python model classes
    # ------------------------------------------------------------------

    def _from_python(self, path: pathlib.Path, rel: str) -> list[GraphNode]:
        parser = self._parsers.get("python")
        if parser is None:
            return []
        module = parser.parse_file(path, path.read_bytes())

        models: dict[str, str] = {}
        nodes: list[GraphNode] = []
        for definition in module.definitions:
            if definition.kind != "class":
                continue
            schema_kind = self._model_kind(definition, models)
            if schema_kind is None:
                continue
            models[definition.name] = schema_kind
            nodes.append(
                make_node(
                    NodeType.SCHEMA,
                    definition.qualified,
                    rel,
                    name=definition.name,
                    schema_kind=schema_kind,
                    description=definition.docstring,
                    bases=definition.bases,
                    fields=[f.name for f in definition.fields],
                    field_types=[f.type or "any" for f in definition.fields],
                    required_fields=[f.name for f in definition.fields if f.required],
                    start_line=definition.start_line,
                    end_line=definition.end_line,
                )
            )
        return nodes

    @staticmethod
    def _model_kind(definition: Definition, known: dict[str, str]) -> Optional[str]:
        for decorator in definition.decorators:
            if decorator.split("(", 1)[0] in MODEL_DECORATORS:
                return "dataclass"
        for base in definition.bases:
            short = base.rsplit(".", 1)[-1]
            if short == "TypedDict":
                return "typed-dict"
            if short in MODEL_BASES:
                return "pydantic"
            if short in known:
                return known[short]
        return None

    # ------------------------------------------------------------------
    # Zod
    # ------------------------------------------------------------------

    def _from_zod(self, path: pathlib.Path, rel: str) -> list[GraphNode]:
        if get_language_for_file(path) is None:
            return []
        content = read_text(path)
        if "z." not in content:
            return []

        nodes: list[GraphNode] = []
        for match in _ZOD_SCHEMA.finditer(content):
            name, zod_type = match.group(1), match.group(2)
            fields: list[str] = []
            field_types: list[str] = []
            required: list[str] = []
            if zod_type == "object":
                body = _ZOD_OBJECT_BODY.match(content, match.end())
                if body is not None:
                    for field_match in _ZOD_FIELD.finditer(body.group("body")):
                        field_name, expr = field_match.group(1), field_match.group(2).strip()
                        fields.append(field_name)
                        field_types.append(self._zod_field_type(expr))
                        if not re.search(r"\.(optional|nullish)\s*\(", expr):
                            required.append(field_name)

            line = content.count("\n", 0, match.start()) + 1
            nodes.append(
                make_node(
                    NodeType.SCHEMA,
                    name,
                    rel,
                    name=name,
                    schema_kind="zod",
                    zod_type=zod_type,
                    fields=fields,
                    field_types=field_types,
                    required_fields=required,
                    start_line=line,
                    end_line=line,
                )
            )
        return nodes

    @staticmethod
    def _zod_field_type(expr: str) -> str:
        if not expr.startswith("z"):
            return expr
        head = re.match(r"z\s*\.\s*(\w+)\s*(?:\(\s*([A-Z]\w*))?", expr)
        if head is None:
            return "any"
        kind, inner = head.group(1), head.group(2)
        if kind == "array" and inner:
            return f"array<{inner}>"
        return inner or kind
