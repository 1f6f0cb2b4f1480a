"""Tree-sitter based parser for Python source files.

Extracts classes, functions, call sites, class-body fields, and import
statements from the Python syntax tree.
"""

from __future__ import annotations

import pathlib
from typing import Optional

import structlog
import tree_sitter_python as tspython
from tree_sitter import Language, Node, Parser

from cartograph.parsers.base import (
    BaseLanguageParser,
    Definition,
    FieldInfo,
    ImportRef,
    ParsedModule,
)

logger = structlog.get_logger(__name__)

PY_LANGUAGE = Language(tspython.language())

_PARAMETER_NODES = frozenset(
    {
        "identifier",
        "typed_parameter",
        "default_parameter",
        "typed_default_parameter",
        "list_splat_pattern",
        "dictionary_splat_pattern",
    }
)


class PythonParser(BaseLanguageParser):
    """Walks Python files with the ``tree-sitter-python`` grammar.

    Collects:

    - **Definitions**: classes (with bases, decorators and annotated
      fields) and functions / methods (with signature, parameters,
      return annotation, ``async`` flag, docstring and callees).
    - **Imports**: ``import x`` and ``from x import y`` statements,
      including relative ones (``from ..models import Node``).

    Args:
        repo_root: Repository root used for relative path computation.
    """

    language = "python"

    def __init__(self, repo_root: pathlib.Path) -> None:
        super().__init__(repo_root)
        self._parser = Parser(PY_LANGUAGE)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def parse_file(self, file_path: pathlib.Path, source: bytes) -> ParsedModule:
        """Parse a Python file.

        Args:
            file_path: Absolute path to the ``.py`` file.
            source: Raw bytes of the file.

        Returns:
            :class:`ParsedModule` with definitions and imports.
        """
        tree = self._parser.parse(source)
        root = tree.root_node

        module = ParsedModule(
            path=self._relative_path(file_path),
            language=self.language,
            line_count=source.count(b"\n") + 1,
            docstring=self._leading_docstring(root),
        )
        self._extract_definitions(root, source, module.definitions)
        self._extract_imports(root, module.imports)
        return module

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
        """Collect class and function definitions directly under *node*.

        Args:
            node: Module root or class body.
            source: Full file source bytes.
            out: Accumulator for discovered definitions.
            parent: Qualified name of the enclosing class, if any.
        """
        for child in node.children:
            decorators: list[str] = []
            target = child
            if child.type == "decorated_definition":
                decorators = [
                    self._node_text(d).lstrip("@").strip()
                    for d in child.children
                    if d.type == "decorator"
                ]
                target = child.child_by_field_name("definition") or child.children[-1]

            if target.type == "class_definition":
                self._handle_class(target, source, out, parent, decorators)
            elif target.type == "function_definition":
                self._handle_function(target, source, out, parent, decorators)

    def _handle_class(
        self,
        node: Node,
        source: bytes,
        out: list[Definition],
        parent: Optional[str],
        decorators: list[str],
    ) -> None:
        name = self._child_text_by_field(node, "name")
        if not name:
            return
        qualified = f"{parent}.{name}" if parent else name

        bases: list[str] = []
        superclasses = node.child_by_field_name("superclasses")
        if superclasses is not None:
            for arg in superclasses.named_children:
                if arg.type in ("identifier", "attribute"):
                    self._append_unique(bases, self._node_text(arg))
                elif arg.type == "subscript":
                    # Generic[T], TypedDict[...]
                    self._append_unique(bases, self._child_text_by_field(arg, "value"))

        definition = Definition(
            kind="class",
            name=name,
            qualified=qualified,
            parent=parent,
            start_line=node.start_point[0] + 1,
            end_line=node.end_point[0] + 1,
            signature=self._header(node, source),
            docstring=self._body_docstring(node),
            bases=bases,
            decorators=decorators,
        )
        out.append(definition)

        body = node.child_by_field_name("body")
        if body is not None:
            definition.fields = self._class_fields(body)
            self._extract_definitions(body, source, out, parent=qualified)

    def _handle_function(
        self,
        node: Node,
        source: bytes,
        out: list[Definition],
        parent: Optional[str],
        decorators: list[str],
    ) -> None:
        name = self._child_text_by_field(node, "name")
        if not name:
            return
        qualified = f"{parent}.{name}" if parent else name

        parameters: list[str] = []
        params_node = node.child_by_field_name("parameters")
        if params_node is not None:
            for param in params_node.named_children:
                param_name = self._parameter_name(param)
                if param_name:
                    parameters.append(param_name)

        calls: list[str] = []
        body = node.child_by_field_name("body")
        if body is not None:
            self._extract_calls(body, calls)

        out.append(
            Definition(
                kind="function",
                name=name,
                qualified=qualified,
                parent=parent,
                start_line=node.start_point[0] + 1,
                end_line=node.end_point[0] + 1,
                signature=self._header(node, source),
                parameters=parameters,
                return_type=self._child_text_by_field(node, "return_type"),
                is_async=any(c.type == "async" for c in node.children),
                docstring=self._body_docstring(node),
                decorators=decorators,
                calls=calls,
            )
        )

    def _parameter_name(self, param: Node) -> Optional[str]:
        if param.type not in _PARAMETER_NODES:
            return None
        if param.type == "identifier":
            return self._node_text(param)
        named = param.child_by_field_name("name")
        if named is not None:
            return self._node_text(named)
        # typed_parameter and splat patterns keep the name as first child.
        for child in param.named_children:
            if child.type in ("identifier", "list_splat_pattern", "dictionary_splat_pattern"):
                return self._node_text(child)
        return None

    def _class_fields(self, body: Node) -> list[FieldInfo]:
        """Return annotated attributes declared directly in a class body."""
        fields: list[FieldInfo] = []
        for stmt in body.named_children:
            if stmt.type != "expression_statement" or not stmt.named_children:
                continue
            assignment = stmt.named_children[0]
            if assignment.type != "assignment":
                continue
            left = assignment.child_by_field_name("left")
            annotation = assignment.child_by_field_name("type")
            if left is None or left.type != "identifier" or annotation is None:
                continue
            right = assignment.child_by_field_name("right")
            right_text = self._node_text(right) if right is not None else ""
            required = right is None or right_text.replace(" ", "").startswith(("Field(...", "Field()"))
            if self._node_text(annotation).startswith(("ClassVar", "typing.ClassVar")):
                continue
            fields.append(
                FieldInfo(name=self._node_text(left), type=self._node_text(annotation), required=required)
            )
        return fields

    # ------------------------------------------------------------------
    # Call-site extraction
    # ------------------------------------------------------------------

    def _extract_calls(self, node: Node, calls: list[str]) -> None:
        """Walk *node* and record the callee name of every ``call``."""
        if node.type == "call":
            func = node.child_by_field_name("function")
            if func is not None:
                if func.type == "identifier":
                    self._append_unique(calls, self._node_text(func))
                elif func.type == "attribute":
                    self._append_unique(calls, self._child_text_by_field(func, "attribute"))

        for child in node.children:
            self._extract_calls(child, calls)

    # ------------------------------------------------------------------
    # Import extraction
    # ------------------------------------------------------------------

    def _extract_imports(self, root: Node, out: list[ImportRef]) -> None:
        """Extract module-level ``import`` and ``from ... import`` statements."""
        for child in root.children:
            line = child.start_point[0] + 1
            if child.type == "import_statement":
                for name_node in child.children_by_field_name("name"):
                    module = self._import_target(name_node)
                    if module:
                        out.append(ImportRef(source=module, line=line))
            elif child.type == "import_from_statement":
                module_node = child.child_by_field_name("module_name")
                if module_node is None:
                    continue
                names = [
                    self._import_target(n)
                    for n in child.children_by_field_name("name")
                ]
                if any(c.type == "wildcard_import" for c in child.children):
                    names.append("*")
                out.append(
                    ImportRef(
                        source=self._node_text(module_node),
                        names=[n for n in names if n],
                        line=line,
                    )
                )

    def _import_target(self, node: Node) -> str:
        if node.type == "aliased_import":
            inner = node.child_by_field_name("name")
            return self._node_text(inner) if inner is not None else ""
        return self._node_text(node)

    # ------------------------------------------------------------------
    # Docstring helpers
    # ------------------------------------------------------------------

    def _leading_docstring(self, block: Node) -> Optional[str]:
        """Return the string literal opening *block*, if any."""
        for child in block.children:
            if child.type == "expression_statement":
                expr = child.children[0] if child.children else None
                if expr is not None and expr.type == "string":
                    return self._strip_quotes(self._node_text(expr)).strip()
                return None
            if child.type != "comment":
                return None
        return None

    def _body_docstring(self, def_node: Node) -> Optional[str]:
        body = def_node.child_by_field_name("body")
        return self._leading_docstring(body) if body is not None else None
