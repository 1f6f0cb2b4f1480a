"""Language -> parser lookup.

Each extractor owns one :class:`ParserFactory`; tree-sitter ``Parser``
objects are not thread-safe, and extractors run on separate threads.
"""

from __future__ import annotations

import pathlib
from typing import Optional, Type

import structlog

from cartograph.core.crawler import get_language_for_file
from cartograph.parsers.base import BaseLanguageParser
from cartograph.parsers.javascript_parser import JavaScriptParser
from cartograph.parsers.python_parser import PythonParser
from cartograph.parsers.typescript_parser import TypeScriptParser

logger = structlog.get_logger(__name__)

DEFAULT_PARSERS: dict[str, Type[BaseLanguageParser]] = {
    parser_cls.language: parser_cls for parser_cls in (PythonParser, JavaScriptParser, TypeScriptParser)
}


class ParserFactory:
    """Builds parsers lazily and keeps one instance per language.

    Args:
        repo_root: Root that parsed paths are made relative to.
        parsers: Language -> parser class table.  Defaults to
            :data:`DEFAULT_PARSERS`.
    """

    def __init__(
        self,
        repo_root: pathlib.Path,
        parsers: Optional[dict[str, Type[BaseLanguageParser]]] = None,
    ) -> None:
        self._repo_root = repo_root.resolve()
        self._classes = dict(DEFAULT_PARSERS if parsers is None else parsers)
        self._instances: dict[str, BaseLanguageParser] = {}

    def get(self, language: str) -> Optional[BaseLanguageParser]:
        """Parser for *language*, or ``None`` when none is registered."""
        parser = self._instances.get(language)
        if parser is None:
            parser_cls = self._classes.get(language)
            if parser_cls is None:
                return None
            parser = self._instances[language] = parser_cls(self._repo_root)
            logger.debug("parser_created", language=language)
        return parser

    def for_path(self, path: pathlib.Path) -> Optional[BaseLanguageParser]:
        """Parser for the language of *path* by its suffix."""
        language = get_language_for_file(path)
        return self.get(language) if language else None
