"""Tree-sitter based parser for JavaScript source files.

Extracts functions, classes, call sites, and import statements from the
JavaScript syntax tree.  :class:`~cartograph.parsers.typescript_parser.TypeScriptParser`
reuses this walker with the TypeScript grammars.
"""

from __future__ import annotations

import pathlib
import re
from typing import Optional

import structlog
import tree_sitter_javascript as tsjavascript
from tree_sitter import Language, Node, Parser

from cartograph.parsers.base import (
    BaseLanguageParser,
    Definition,
    ImportRef,
    ParsedModule,
)

logger = structlog.get_logger(__name__)

JS_LANGUAGE = Language(tsjavascript.language())

_FUNCTION_VALUES = frozenset({"arrow_function", "function_expression", "function", "generator_function"})
_CLASS_NODES = frozenset({"class_declaration", "abstract_class_declaration", "class"})
_GENERIC_ARGS = re.compile(r"<.*>$")


class JavaScriptParser(BaseLanguageParser):
    """Walks JavaScript files with the ``tree-sitter-javascript`` grammar.

    Handles:

    - Function declarations and arrow / function-expression variables.
    - Class declarations with ``extends`` and method definitions.
    - ES ``import``, ``export ... from``, dynamic ``import()`` and
      CommonJS ``require``.
    - Call sites inside every function body.

    Args:
        repo_root: Repository root for relative path computation.
    """

    language = "javascript"

    def __init__(self, repo_root: pathlib.Path) -> None:
        super().__init__(repo_root)
        self._parser = Parser(JS_LANGUAGE)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def parse_file(self, file_path: pathlib.Path, source: bytes) -> ParsedModule:
        """Parse a JavaScript file.

        Args:
            file_path: Absolute path to the file.
            source: Raw bytes of the file.

        Returns:
            :class:`ParsedModule` with definitions and imports.
        """
        tree = self._parser_for(file_path).parse(source)
        root = tree.root_node

        module = ParsedModule(
            path=self._relative_path(file_path),
            language=self.language,
            line_count=source.count(b"\n") + 1,
        )
        self._extract_definitions(root, source, module.definitions)
        self._extract_imports(root, module.imports)
        return module

    def _parser_for(self, file_path: pathlib.Path) -> Parser:
        return self._parser

    # ------------------------------------------------------------------
    # Definition extraction
    # ------------------------------------------------------------------

    def _extract_definitions(
        self,
        node: Node,
        source: bytes,
        out: list[Definition],
        parent: Optional[str] = None,
    ) -> None:
        """Collect definitions directly under *node*, unwrapping exports."""
        for child in node.children:
            if child.type in ("function_declaration", "generator_function_declaration"):
                self._handle_function(child, source, out, parent)
            elif child.type in _CLASS_NODES:
                self._handle_class(child, source, out, parent)
            elif child.type in ("lexical_declaration", "variable_declaration"):
                self._handle_variable_declaration(child, source, out, parent)
            elif child.type == "export_statement":
                self._extract_definitions(child, source, out, parent)
            else:
                self._handle_other(child, source, out, parent)

    def _handle_other(
        self,
        node: Node,
        source: bytes,
        out: list[Definition],
        parent: Optional[str],
    ) -> None:
        """Hook for grammar-specific declarations."""

    def _handle_function(
        self,
        node: Node,
        source: bytes,
        out: list[Definition],
        parent: Optional[str],
        name: Optional[str] = None,
        outer: Optional[Node] = None,
    ) -> None:
        """Record a function-like node.

        Args:
            node: Function declaration, method or function-valued expression.
            source: Full file bytes.
            out: Definition accumulator.
            parent: Enclosing class name.
            name: Explicit name for anonymous function values.
            outer: Declaration node spanning the whole definition (used for
                line range, signature and JSDoc lookup).
        """
        name = name or self._child_text_by_field(node, "name")
        if not name:
            return
        outer = outer or node
        qualified = f"{parent}.{name}" if parent else name

        calls: list[str] = []
        body = node.child_by_field_name("body")
        if body is not None:
            self._extract_calls(body, calls)

        return_type = self._child_text_by_field(node, "return_type")
        if return_type:
            return_type = return_type.lstrip(":").strip()

        out.append(
            Definition(
                kind="function",
                name=name,
                qualified=qualified,
                parent=parent,
                start_line=outer.start_point[0] + 1,
                end_line=outer.end_point[0] + 1,
                signature=self._signature(node, outer, source),
                parameters=self._parameters(node),
                return_type=return_type,
                is_async=any(c.type == "async" for c in node.children),
                docstring=self._extract_jsdoc(outer),
                calls=calls,
            )
        )

    def _handle_class(
        self,
        node: Node,
        source: bytes,
        out: list[Definition],
        parent: Optional[str],
        name: Optional[str] = None,
    ) -> None:
        name = name or self._child_text_by_field(node, "name")
        if not name:
            return
        qualified = f"{parent}.{name}" if parent else name

        bases: list[str] = []
        implements: list[str] = []
        for child in node.children:
            if child.type == "class_heritage":
                self._collect_heritage(child, bases, implements)

        out.append(
            Definition(
                kind="class",
                name=name,
                qualified=qualified,
                parent=parent,
                start_line=node.start_point[0] + 1,
                end_line=node.end_point[0] + 1,
                signature=self._header(node, source),
                docstring=self._extract_jsdoc(node),
                bases=bases,
                implements=implements,
            )
        )

        body = node.child_by_field_name("body")
        if body is None:
            return
        for member in body.named_children:
            if member.type == "method_definition":
                self._handle_function(member, source, out, qualified)
            elif member.type in ("field_definition", "public_field_definition"):
                value = member.child_by_field_name("value")
                if value is not None and value.type in _FUNCTION_VALUES:
                    field_name = self._child_text_by_field(member, "property") or self._child_text_by_field(
                        member, "name"
                    )
                    self._handle_function(value, source, out, qualified, name=field_name, outer=member)

    def _collect_heritage(self, heritage: Node, bases: list[str], implements: list[str]) -> None:
        for child in heritage.named_children:
            if child.type == "extends_clause":
                for value in child.children_by_field_name("value"):
                    self._append_unique(bases, self._type_name(value))
            elif child.type == "implements_clause":
                for value in child.named_children:
                    self._append_unique(implements, self._type_name(value))
            else:
                # Plain JavaScript: ``class A extends B`` puts B directly here.
                self._append_unique(bases, self._type_name(child))

    def _handle_variable_declaration(
        self,
        node: Node,
        source: bytes,
        out: list[Definition],
        parent: Optional[str],
    ) -> None:
        """Detect functions and classes assigned to ``const``/``let``/``var``."""
        for child in node.named_children:
            if child.type != "variable_declarator":
                continue
            name_node = child.child_by_field_name("name")
            value_node = child.child_by_field_name("value")
            if name_node is None or value_node is None or name_node.type != "identifier":
                continue
            name = self._node_text(name_node)
            if value_node.type in _FUNCTION_VALUES:
                outer = node if len(node.named_children) == 1 else child
                self._handle_function(value_node, source, out, parent, name=name, outer=outer)
            elif value_node.type in _CLASS_NODES:
                self._handle_class(value_node, source, out, parent, name=name)

    def _parameters(self, node: Node) -> list[str]:
        params_node = node.child_by_field_name("parameters")
        if params_node is None:
            single = node.child_by_field_name("parameter")
            return [self._node_text(single)] if single is not None else []
        names: list[str] = []
        for param in params_node.named_children:
            if param.type == "comment":
                continue
            pattern = param.child_by_field_name("pattern") or param.child_by_field_name("left") or param
            text = self._node_text(pattern)
            if param.type == "rest_pattern" or text.startswith("..."):
                text = "..." + text.lstrip(".")
            names.append(text)
        return names

    def _signature(self, node: Node, outer: Node, source: bytes) -> str:
        if outer is node:
            return self._header(node, source)
        body = node.child_by_field_name("body")
        end = body.start_byte if body is not None else node.end_byte
        start = outer.start_byte
        if outer.type in ("lexical_declaration", "variable_declaration"):
            declarator = outer.named_children[0]
            start = declarator.start_byte
        text = " ".join(source[start:end].decode("utf-8", errors="replace").split())
        if text.endswith("=>"):
            text = text[:-2].rstrip()
        return text

    def _type_name(self, node: Node) -> str:
        """Return a referenced type without generic arguments."""
        text = self._node_text(node).strip()
        return _GENERIC_ARGS.sub("", text).strip()

    # ------------------------------------------------------------------
    # Call-site extraction
    # ------------------------------------------------------------------

    def _extract_calls(self, node: Node, calls: list[str]) -> None:
        """Recursively record callee names of ``call_expression`` / ``new`` nodes."""
        if node.type in ("call_expression", "new_expression"):
            func = node.child_by_field_name("function") or node.child_by_field_name("constructor")
            if func is not None:
                if func.type == "identifier":
                    self._append_unique(calls, self._node_text(func))
                elif func.type == "member_expression":
                    self._append_unique(calls, self._child_text_by_field(func, "property"))

        for child in node.children:
            self._extract_calls(child, calls)

    # ------------------------------------------------------------------
    # Import extraction
    # ------------------------------------------------------------------

    def _extract_imports(self, root: Node, out: list[ImportRef]) -> None:
        """Extract ES module imports, re-exports and CommonJS ``require``."""
        for child in root.children:
            if child.type not in ("import_statement", "export_statement"):
                continue
            source_node = child.child_by_field_name("source")
            if source_node is None:
                continue
            module = self._strip_quotes(self._node_text(source_node))
            if module:
                out.append(
                    ImportRef(source=module, names=self._imported_names(child), line=child.start_point[0] + 1)
                )

        self._extract_dynamic_imports(root, out)

    def _imported_names(self, statement: Node) -> list[str]:
        names: list[str] = []
        for child in statement.named_children:
            if child.type == "import_clause":
                for part in child.named_children:
                    if part.type == "identifier":
                        names.append(self._node_text(part))
                    elif part.type == "namespace_import":
                        names.append("*")
                    elif part.type == "named_imports":
                        for spec in part.named_children:
                            if spec.type == "import_specifier":
                                self._append_unique(names, self._child_text_by_field(spec, "name"))
            elif child.type == "export_clause":
                for spec in child.named_children:
                    if spec.type == "export_specifier":
                        self._append_unique(names, self._child_text_by_field(spec, "name"))
        return names

    def _extract_dynamic_imports(self, node: Node, out: list[ImportRef]) -> None:
        """Find ``require('module')`` and ``import('module')`` calls anywhere in the file."""
        if node.type == "call_expression":
            func = node.child_by_field_name("function")
            if func is not None and (func.type == "import" or self._node_text(func) == "require"):
                args = node.child_by_field_name("arguments")
                if args is not None:
                    for arg_child in args.named_children:
                        if arg_child.type == "string":
                            module = self._strip_quotes(self._node_text(arg_child))
                            if module:
                                out.append(ImportRef(source=module, line=node.start_point[0] + 1))
                        break
        for child in node.children:
            self._extract_dynamic_imports(child, out)

    # ------------------------------------------------------------------
    # JSDoc helper
    # ------------------------------------------------------------------

    def _extract_jsdoc(self, node: Node) -> Optional[str]:
        """Return the cleaned JSDoc comment immediately preceding *node*."""
        anchor = node
        if anchor.parent is not None and anchor.parent.type == "export_statement":
            anchor = anchor.parent
        prev = anchor.prev_named_sibling
        if prev is None or prev.type != "comment":
            return None
        text = self._node_text(prev)
        if not text.startswith("/**"):
            return None
        lines = [line.strip().lstrip("*").strip() for line in text[3:-2].splitlines()]
        return "\n".join(line for line in lines if line) or None
