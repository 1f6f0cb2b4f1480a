"""Function extractor: classes, interfaces, functions and same-file calls.

Walks Python, JavaScript and TypeScript files with the tree-sitter
parsers.  Capitalised functions and ``React.Component`` subclasses in
``.jsx`` / ``.tsx`` files are emitted as ``Component`` nodes.
Calls that resolve inside the same file become ``CALLS``
relationships; cross-file calls are left to the correlation pass via
the ``calls`` property.
"""

from __future__ import annotations

import pathlib
from typing import Optional

import structlog

from cartograph.core.crawler import FileCrawler
from cartograph.extractors.base import (
    ExtractorKind,
    file_node,
    make_node,
    make_relationship,
    record_error,
    relative_to,
)
from cartograph.models.graph import ExtractionResult, GraphNode, NodeType, RelationType
from cartograph.parsers.base import Definition, ParsedModule
from cartograph.parsers.factory import ParserFactory

logger = structlog.get_logger(__name__)

_JSX_SUFFIXES = (".jsx", ".tsx")
_COMPONENT_BASES = frozenset({"Component", "PureComponent", "React.Component", "React.PureComponent"})


class FunctionExtractor:
    """Extracts code definitions from every parseable source file.

    Args:
        repo_root: Repository root to scan.
        blacklist: Optional crawl blacklist override.
    """

    kind = ExtractorKind.FUNCTION

    def __init__(self, repo_root: pathlib.Path, blacklist: list[str] | None = None) -> None:
        self.repo_root = repo_root.resolve()
        self._crawler = FileCrawler(self.repo_root, blacklist=blacklist)
        self._parsers = ParserFactory(self.repo_root)

    def extract(self) -> ExtractionResult:
        result = ExtractionResult()
        files_parsed = 0

        for path in self._crawler.crawl():
            parser = self._parsers.for_path(path)
            if parser is None:
                continue
            rel = relative_to(self.repo_root, path)
            try:
                module = parser.parse_file(path, path.read_bytes())
                self._emit_module(module, path, result)
            except Exception as exc:
                record_error(result, self.kind, exc, rel)
                logger.warning("parse_failed", path=rel, language=parser.language, error=str(exc))
                continue
            files_parsed += 1

        logger.info(
            "functions_extracted",
            files=files_parsed,
            nodes=len(result.nodes),
            relationships=len(result.relationships),
        )
        return result

    # ------------------------------------------------------------------
    # Graph construction
    # ------------------------------------------------------------------

    def _emit_module(self, module: ParsedModule, path: pathlib.Path, result: ExtractionResult) -> None:
        file = file_node(module.path, language=module.language, line_count=module.line_count)
        result.nodes.append(file)

        jsx = path.suffix.lower() in _JSX_SUFFIXES
        ids: dict[str, str] = {}
        functions: list[tuple[Definition, GraphNode]] = []

        for definition in module.definitions:
            node = self._definition_node(definition, module, jsx)
            ids[definition.qualified] = node.id
            result.nodes.append(node)
            if node.type in (NodeType.FUNCTION, NodeType.COMPONENT) and definition.kind == "function":
                functions.append((definition, node))

        for definition in module.definitions:
            parent_id = ids.get(definition.parent) if definition.parent else file.id
            if parent_id is None:
                parent_id = file.id
            result.relationships.append(
                make_relationship(parent_id, ids[definition.qualified], RelationType.CONTAINS)
            )

        for definition, node in functions:
            for callee in definition.calls:
                target = self._resolve_local_call(callee, definition, functions)
                if target is not None and target.id != node.id:
                    result.relationships.append(
                        make_relationship(node.id, target.id, RelationType.CALLS, scope="file")
                    )

    def _definition_node(self, definition: Definition, module: ParsedModule, jsx: bool) -> GraphNode:
        common = {
            "qualified_name": definition.qualified,
            "language": module.language,
            "start_line": definition.start_line,
            "end_line": definition.end_line,
            "docstring": definition.docstring,
            "signature": definition.signature or None,
            "decorators": definition.decorators or None,
        }

        if definition.kind == "interface":
            return make_node(
                NodeType.INTERFACE,
                definition.qualified,
                module.path,
                name=definition.name,
                bases=definition.bases,
                fields=[f.name for f in definition.fields],
                field_types=[f.type or "any" for f in definition.fields],
                **common,
            )

        if definition.kind == "class":
            is_component = jsx and any(b in _COMPONENT_BASES for b in definition.bases)
            methods = [d.name for d in module.definitions if d.parent == definition.qualified and d.kind == "function"]
            return make_node(
                NodeType.COMPONENT if is_component else NodeType.CLASS,
                definition.qualified,
                module.path,
                name=definition.name,
                bases=definition.bases,
                implements=definition.implements,
                methods=methods,
                fields=[f.name for f in definition.fields] or None,
                **common,
            )

        is_component = jsx and definition.parent is None and definition.name[:1].isupper()
        return make_node(
            NodeType.COMPONENT if is_component else NodeType.FUNCTION,
            definition.qualified,
            module.path,
            name=definition.name,
            parameters=definition.parameters,
            return_type=definition.return_type,
            is_async=definition.is_async,
            is_method=definition.is_method,
            parent=definition.parent,
            calls=definition.calls,
            **common,
        )

    @staticmethod
    def _resolve_local_call(
        callee: str,
        caller: Definition,
        functions: list[tuple[Definition, GraphNode]],
    ) -> Optional[GraphNode]:
        """Pick the same-file function a call refers to.

        Preference: a sibling method of the caller's class, then a
        top-level function, then the only candidate.
        """
        candidates = [(d, n) for d, n in functions if d.name == callee]
        if not candidates:
            return None
        for definition, node in candidates:
            if caller.parent is not None and definition.parent == caller.parent:
                return node
        for definition, node in candidates:
            if definition.parent is None:
                return node
        return candidates[0][1] if len(candidates) == 1 else None
