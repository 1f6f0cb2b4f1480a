"""Abstract base class for all language-specific tree-sitter parsers.

Every new language grammar must subclass :class:`BaseLanguageParser` and
implement :meth:`BaseLanguageParser.parse_file`.  Parsers are purely
syntactic: they report what is written in one file and never resolve
names across files.  Resolution is left to the extractors and the
correlation pass.
"""

from __future__ import annotations

import abc
import dataclasses
import pathlib
from typing import Optional


@dataclasses.dataclass
class FieldInfo:
    """A declared attribute of a class body (``name: type = default``)."""

    name: str
    type: Optional[str] = None
    required: bool = True


@dataclasses.dataclass
class Definition:
    """A class, interface, or function found in a source file.

    Attributes:
        kind: ``"class"``, ``"interface"`` or ``"function"``.
        name: Unqualified name.
        qualified: Dotted name within the file (``Logger.info``).
        parent: Qualified name of the enclosing class, if any.
        start_line: 1-indexed first line.
        end_line: 1-indexed last line.
        signature: Declaration header as written, without the body.
        parameters: Parameter names in order.
        return_type: Annotated return type, if any.
        is_async: Whether the function is declared ``async``.
        docstring: Docstring or cleaned JSDoc comment.
        bases: Names listed as superclasses / ``extends``.
        implements: Names listed in ``implements`` clauses.
        decorators: Decorator expressions without the ``@``.
        calls: Unqualified callee names, in first-seen order.
        fields: Declared attributes (class bodies and interfaces).
    """

    kind: str
    name: str
    qualified: str
    parent: Optional[str] = None
    start_line: int = 1
    end_line: int = 1
    signature: str = ""
    parameters: list[str] = dataclasses.field(default_factory=list)
    return_type: Optional[str] = None
    is_async: bool = False
    docstring: Optional[str] = None
    bases: list[str] = dataclasses.field(default_factory=list)
    implements: list[str] = dataclasses.field(default_factory=list)
    decorators: list[str] = dataclasses.field(default_factory=list)
    calls: list[str] = dataclasses.field(default_factory=list)
    fields: list[FieldInfo] = dataclasses.field(default_factory=list)

    @property
    def is_method(self) -> bool:
        return self.kind == "function" and self.parent is not None


@dataclasses.dataclass
class ImportRef:
    """One import statement as written.

    ``source`` is the module specifier (``./util``, ``..models``,
    ``os.path``, ``@scope/core``); ``names`` are the imported bindings.
    """

    source: str
    names: list[str] = dataclasses.field(default_factory=list)
    line: int = 1


@dataclasses.dataclass
class ParsedModule:
    """Everything a parser reports about a single file."""

    path: str
    language: str
    line_count: int = 0
    docstring: Optional[str] = None
    definitions: list[Definition] = dataclasses.field(default_factory=list)
    imports: list[ImportRef] = dataclasses.field(default_factory=list)


class BaseLanguageParser(abc.ABC):
    """Contract that every language parser must fulfil.

    Subclasses are responsible for:

    1. Initialising the appropriate ``tree-sitter`` ``Language`` and ``Parser``.
    2. Walking the concrete syntax tree into a :class:`ParsedModule`.

    Args:
        repo_root: The root of the repository being scanned, used to
            compute repo-relative file paths.
    """

    language: str = ""

    def __init__(self, repo_root: pathlib.Path) -> None:
        self.repo_root = repo_root.resolve()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @abc.abstractmethod
    def parse_file(self, file_path: pathlib.Path, source: bytes) -> ParsedModule:
        """Parse *source* and return the definitions and imports found.

        Args:
            file_path: Absolute path to the source file.
            source: Raw bytes of the source file.

        Returns:
            A :class:`ParsedModule` describing the file.
        """

    # ------------------------------------------------------------------
    # Helpers available to all subclasses
    # ------------------------------------------------------------------

    def _relative_path(self, file_path: pathlib.Path) -> str:
        """Return a POSIX-style repo-relative path string."""
        try:
            return file_path.resolve().relative_to(self.repo_root).as_posix()
        except ValueError:
            return file_path.as_posix()

    @staticmethod
    def _node_text(node: object) -> str:
        """Decode the UTF-8 text of a tree-sitter node."""
        # tree_sitter.Node exposes ``text`` as ``bytes | None``.
        text: bytes | None = getattr(node, "text", None)
        if text is None:
            return ""
        return text.decode("utf-8", errors="replace")

    @classmethod
    def _child_text_by_field(cls, node: object, field: str) -> Optional[str]:
        """Return the decoded text of a named field child, or ``None``."""
        child = node.child_by_field_name(field)  # type: ignore[attr-defined]
        if child is None:
            return None
        return cls._node_text(child) or None

    @staticmethod
    def _strip_quotes(text: str) -> str:
        """Remove surrounding quotes from a string literal."""
        for q in ('"""', "'''", '"', "'", "`"):
            if len(text) >= 2 * len(q) and text.startswith(q) and text.endswith(q):
                return text[len(q) : -len(q)]
        return text

    @staticmethod
    def _header(node: object, source: bytes) -> str:
        """Return the declaration text of *node* up to its body, collapsed to one line."""
        body = node.child_by_field_name("body")  # type: ignore[attr-defined]
        end = body.start_byte if body is not None else node.end_byte  # type: ignore[attr-defined]
        text = source[node.start_byte : end].decode("utf-8", errors="replace")  # type: ignore[attr-defined]
        header = " ".join(text.split())
        for suffix in ("=>", ":"):
            if header.endswith(suffix):
                header = header[: -len(suffix)].rstrip()
        return header

    @staticmethod
    def _append_unique(items: list[str], value: Optional[str]) -> None:
        if value and value not in items:
            items.append(value)
