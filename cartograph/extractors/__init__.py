"""Extractors turning a source tree into partial knowledge graphs.

The set of extractors is closed; :data:`EXTRACTOR_REGISTRY` maps every
:class:`ExtractorKind` to its implementation.
"""

from __future__ import annotations

import pathlib
from typing import Callable

from cartograph.extractors.base import Extractor, ExtractorKind
from cartograph.extractors.document import DocumentExtractor
from cartograph.extractors.function import FunctionExtractor
from cartograph.extractors.imports import ImportExtractor
from cartograph.extractors.package import PackageExtractor
from cartograph.extractors.schema import SchemaExtractor

EXTRACTOR_REGISTRY: dict[ExtractorKind, Callable[..., Extractor]] = {
    ExtractorKind.PACKAGE: PackageExtractor,
    ExtractorKind.SCHEMA: SchemaExtractor,
    ExtractorKind.FUNCTION: FunctionExtractor,
    ExtractorKind.IMPORT: ImportExtractor,
    ExtractorKind.DOCUMENT: DocumentExtractor,
}


def create_extractor(
    kind: ExtractorKind | str,
    repo_root: pathlib.Path,
    blacklist: list[str] | None = None,
) -> Extractor:
    """Instantiate the registered extractor for *kind*.

    Raises:
        ValueError: If *kind* is not a known extractor name.
    """
    return EXTRACTOR_REGISTRY[ExtractorKind(kind)](repo_root, blacklist=blacklist)


__all__ = [
    "EXTRACTOR_REGISTRY",
    "Extractor",
    "ExtractorKind",
    "create_extractor",
    "PackageExtractor",
    "SchemaExtractor",
    "FunctionExtractor",
    "ImportExtractor",
    "DocumentExtractor",
]
