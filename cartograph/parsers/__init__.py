"""Language-specific tree-sitter parsers and the parser factory."""

from cartograph.parsers.base import Definition, FieldInfo, ImportRef, ParsedModule
from cartograph.parsers.factory import ParserFactory

__all__ = ["ParserFactory", "ParsedModule", "Definition", "FieldInfo", "ImportRef"]
