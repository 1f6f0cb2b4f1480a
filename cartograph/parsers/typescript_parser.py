"""Tree-sitter based parser for TypeScript and TSX source files.

Reuses the JavaScript walker (the grammars share node types for
functions, classes, and imports) and adds ``interface`` declarations,
``implements`` clauses and return type annotations.
"""

from __future__ import annotations

import pathlib
from typing import Optional

import tree_sitter_typescript as tstypescript
from tree_sitter import Language, Node, Parser

from cartograph.parsers.base import Definition, FieldInfo
from cartograph.parsers.javascript_parser import JavaScriptParser

TS_LANGUAGE = Language(tstypescript.language_typescript())
TSX_LANGUAGE = Language(tstypescript.language_tsx())


class TypeScriptParser(JavaScriptParser):
    """Walks ``.ts`` files with the TypeScript grammar and ``.tsx`` files with TSX."""

    language = "typescript"

    def __init__(self, repo_root: pathlib.Path) -> None:
        super().__init__(repo_root)
        self._parser = Parser(TS_LANGUAGE)
        self._tsx_parser = Parser(TSX_LANGUAGE)

    def _parser_for(self, file_path: pathlib.Path) -> Parser:
        return self._tsx_parser if file_path.suffix.lower() == ".tsx" else self._parser

    def _handle_other(
        self,
        node: Node,
        source: bytes,
        out: list[Definition],
        parent: Optional[str],
    ) -> None:
        if node.type == "interface_declaration":
            self._handle_interface(node, source, out, parent)

    def _handle_interface(
        self,
        node: Node,
        source: bytes,
        out: list[Definition],
        parent: Optional[str],
    ) -> None:
        name = self._child_text_by_field(node, "name")
        if not name:
            return

        bases: list[str] = []
        for child in node.named_children:
            if child.type == "extends_type_clause":
                for value in child.named_children:
                    self._append_unique(bases, self._type_name(value))

        fields: list[FieldInfo] = []
        body = node.child_by_field_name("body")
        if body is not None:
            for member in body.named_children:
                if member.type not in ("property_signature", "method_signature"):
                    continue
                member_name = self._child_text_by_field(member, "name")
                if not member_name:
                    continue
                annotation = self._child_text_by_field(member, "type")
                if annotation is None and member.type == "method_signature":
                    annotation = "function"
                optional = any(c.type == "?" for c in member.children)
                fields.append(
                    FieldInfo(
                        name=member_name,
                        type=annotation.lstrip(":").strip() if annotation else None,
                        required=not optional,
                    )
                )

        out.append(
            Definition(
                kind="interface",
                name=name,
                qualified=f"{parent}.{name}" if parent else name,
                parent=parent,
                start_line=node.start_point[0] + 1,
                end_line=node.end_point[0] + 1,
                signature=self._header(node, source),
                docstring=self._extract_jsdoc(node),
                bases=bases,
                fields=fields,
            )
        )
