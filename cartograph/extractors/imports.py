"""Import extractor: file-level import graph.

Emits a ``File`` node per source file and ``File -IMPORTS-> File`` for
imports that resolve inside the repository:

- Python relative imports (``from ..models import Node``) and absolute
  imports of in-repo modules (``import cartograph.models``);
- ES ``import`` / ``export ... from`` / dynamic ``import()`` and
  CommonJS ``require`` with relative specifiers, trying the usual
  extensions and ``index`` files.

Bare specifiers (``react``, ``@scope/core``, ``requests``) are stored on
the file node as ``external_imports`` (package names) so the
correlation pass can link files to workspace packages.
"""

from __future__ import annotations

import collections
import pathlib
import posixpath
from typing import Optional

import structlog

from cartograph.core.crawler import FileCrawler
from cartograph.extractors.base import (
    ExtractorKind,
    file_node,
    file_node_id,
    make_relationship,
    record_error,
    relative_to,
)
from cartograph.models.graph import ExtractionResult, RelationType
from cartograph.parsers.base import ImportRef
from cartograph.parsers.factory import ParserFactory

logger = structlog.get_logger(__name__)

SCRIPT_EXTENSIONS: tuple[str, ...] = (".ts", ".tsx", ".js", ".jsx", ".mjs", ".cjs", ".mts", ".cts")
# Path aliases configured in bundlers; never resolvable without their config.
ALIAS_PREFIXES: tuple[str, ...] = ("@/", "~/", "#")


def package_name_of(specifier: str) -> str:
    """Return the package a bare specifier belongs to (``@scope/pkg/sub`` -> ``@scope/pkg``)."""
    if specifier.startswith("node:"):
        return specifier
    parts = specifier.split("/")
    if specifier.startswith("@") and len(parts) > 1:
        return "/".join(parts[:2])
    return parts[0]


class ImportExtractor:
    """Extracts ``File`` nodes and in-repo ``IMPORTS`` relationships.

    Args:
        repo_root: Repository root to scan.
        blacklist: Optional crawl blacklist override.
    """

    kind = ExtractorKind.IMPORT

    def __init__(self, repo_root: pathlib.Path, blacklist: list[str] | None = None) -> None:
        self.repo_root = repo_root.resolve()
        self._crawler = FileCrawler(self.repo_root, blacklist=blacklist)
        self._parsers = ParserFactory(self.repo_root)

    def extract(self) -> ExtractionResult:
        result = ExtractionResult()
        paths = list(self._crawler.crawl())
        files = {relative_to(self.repo_root, p): p for p in paths}
        module_index = self._python_module_index(files)
        internal = external = 0

        for rel, path in files.items():
            parser = self._parsers.for_path(path)
            if parser is None:
                continue
            language = parser.language
            try:
                module = parser.parse_file(path, path.read_bytes())
            except Exception as exc:
                record_error(result, self.kind, exc, rel)
                logger.warning("parse_failed", path=rel, language=parser.language, error=str(exc))
                continue

            targets: dict[str, list[str]] = {}
            lines: dict[str, int] = {}
            external_names: set[str] = set()
            unresolved: set[str] = set()

            for ref in module.imports:
                if language == "python":
                    resolved = self._resolve_python(rel, ref, files, module_index)
                else:
                    resolved = self._resolve_script(rel, ref.source, files)

                if resolved:
                    for target in resolved:
                        if target == rel:
                            continue
                        names = targets.setdefault(target, [])
                        names.extend(n for n in ref.names if n not in names)
                        lines.setdefault(target, ref.line)
                elif self._is_relative(ref.source, language) or ref.source.startswith(ALIAS_PREFIXES):
                    unresolved.add(ref.source)
                else:
                    external_names.add(
                        ref.source.split(".")[0] if language == "python" else package_name_of(ref.source)
                    )

            node = file_node(
                rel,
                language=language,
                line_count=module.line_count,
                import_count=len(module.imports),
                external_imports=sorted(external_names),
                unresolved_imports=sorted(unresolved) or None,
            )
            result.nodes.append(node)
            for target, names in sorted(targets.items()):
                result.relationships.append(
                    make_relationship(
                        node.id,
                        file_node_id(target),
                        RelationType.IMPORTS,
                        imported_names=names,
                        line=lines[target],
                    )
                )
            internal += len(targets)
            external += len(external_names)

        logger.info("imports_extracted", files=len(files), internal_imports=internal, external_packages=external)
        return result

    # ------------------------------------------------------------------
    # Python resolution
    # ------------------------------------------------------------------

    @staticmethod
    def _python_module_index(files: dict[str, pathlib.Path]) -> dict[str, list[str]]:
        """Map the importable dotted names of each ``.py`` path to the files they name.

        A name may start at any directory whose parent is not itself a
        package: ``src/pkg/util.py`` (with ``src/pkg/__init__.py``) is
        reachable as ``pkg.util`` and ``src.pkg.util`` but not as ``util``.
        """
        index: dict[str, list[str]] = collections.defaultdict(list)
        for rel in files:
            if not rel.endswith(".py"):
                continue
            parts = rel[: -len(".py")].split("/")
            if parts[-1] == "__init__":
                parts = parts[:-1]
            for start in range(len(parts)):
                if start and "/".join(parts[:start]) + "/__init__.py" in files:
                    continue
                index[".".join(parts[start:])].append(rel)
        return index

    def _resolve_python(
        self,
        rel: str,
        ref: ImportRef,
        files: dict[str, pathlib.Path],
        index: dict[str, list[str]],
    ) -> list[str]:
        source = ref.source
        if source.startswith("."):
            level = len(source) - len(source.lstrip("."))
            remainder = source[level:]
            base = posixpath.dirname(rel)
            for _ in range(level - 1):
                base = posixpath.dirname(base)
            if remainder:
                found = self._python_file(posixpath.join(base, *remainder.split(".")), files)
                if found:
                    submodules = [
                        self._python_file(posixpath.join(base, *remainder.split("."), n), files)
                        for n in ref.names
                    ]
                    return [found, *[s for s in submodules if s]]
                return []
            hits = [self._python_file(posixpath.join(base, n), files) for n in ref.names if n != "*"]
            siblings = [h for h in hits if h]
            if not siblings:
                init = self._python_file(base, files)
                return [init] if init else []
            return siblings

        candidates = [f"{source}.{n}" for n in ref.names if n != "*"] + [source]
        resolved: list[str] = []
        for dotted in candidates:
            target = self._unique(index.get(dotted, []), dotted)
            if target and target not in resolved:
                resolved.append(target)
                if dotted == source:
                    break
        return resolved

    @staticmethod
    def _python_file(base: str, files: dict[str, pathlib.Path]) -> Optional[str]:
        base = base.lstrip("/")
        for candidate in (f"{base}.py", posixpath.join(base, "__init__.py")):
            if candidate in files:
                return candidate
        return None

    @staticmethod
    def _unique(matches: list[str], dotted: str) -> Optional[str]:
        if len(matches) == 1:
            return matches[0]
        if len(matches) > 1:
            # Prefer the shallowest path; identical depth is ambiguous.
            ranked = sorted(matches, key=lambda m: (m.count("/"), m))
            if ranked[0].count("/") < ranked[1].count("/"):
                return ranked[0]
            logger.debug("ambiguous_module", module=dotted, candidates=ranked[:5])
        return None

    # ------------------------------------------------------------------
    # JavaScript / TypeScript resolution
    # ------------------------------------------------------------------

    @staticmethod
    def _is_relative(source: str, language: Optional[str]) -> bool:
        if language == "python":
            return source.startswith(".")
        return source.startswith((".", "/"))

    def _resolve_script(self, rel: str, specifier: str, files: dict[str, pathlib.Path]) -> list[str]:
        if not specifier.startswith((".", "/")):
            return []
        if specifier.startswith("/"):
            base = specifier.lstrip("/")
        else:
            base = posixpath.normpath(posixpath.join(posixpath.dirname(rel), specifier))
        if base.startswith(".."):
            return []

        stem, ext = posixpath.splitext(base)
        candidates = [base]
        # ESM TypeScript imports "./util.js" for a "./util.ts" source.
        if ext in (".js", ".jsx", ".mjs", ".cjs"):
            candidates += [stem + e for e in (".ts", ".tsx", ".mts", ".cts")]
        candidates += [base + e for e in SCRIPT_EXTENSIONS]
        candidates += [posixpath.join(base, "index" + e) for e in SCRIPT_EXTENSIONS]

        for candidate in candidates:
            if candidate in files:
                return [candidate]
        return []
