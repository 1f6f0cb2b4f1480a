"""Package extractor: workspace manifests and their internal dependencies.

Reads every ``package.json`` and ``pyproject.toml`` below the repository
root, emits one ``Package`` node per named manifest, ``DEPENDS_ON``
relationships between workspace packages, and ``File`` nodes for each
package's key files.  Dependencies on packages outside the workspace are
kept as node properties only.
"""

from __future__ import annotations

import dataclasses
import json
import pathlib
import re
import tomllib
from typing import Any, Optional

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

logger = structlog.get_logger(__name__)

MANIFEST_NAMES: tuple[str, ...] = ("package.json", "pyproject.toml")

# Files worth a node of their own, relative to the package directory.
KEY_FILES: tuple[str, ...] = (
    "README.md",
    "CHANGELOG.md",
    "DESIGN.md",
    "src/index.ts",
    "src/index.js",
    "index.ts",
    "index.js",
    "package.json",
    "pyproject.toml",
)

# Order matters: a name declared in several sections keeps the first kind.
DEPENDENCY_KINDS: tuple[str, ...] = ("runtime", "peer", "optional", "dev")

_PEP508_NAME = re.compile(r"^\s*([A-Za-z0-9][A-Za-z0-9._-]*)")


def normalize_python_name(name: str) -> str:
    """PEP 503 normalisation (``My_Pkg`` and ``my-pkg`` are the same project)."""
    return re.sub(r"[-_.]+", "-", name).lower()


@dataclasses.dataclass
class PackageManifest:
    """Normalised view of one manifest file."""

    name: str
    directory: str
    manifest_path: str
    ecosystem: str
    version: Optional[str] = None
    description: Optional[str] = None
    private: bool = False
    keywords: list[str] = dataclasses.field(default_factory=list)
    entry_point: Optional[str] = None
    # kind -> {dependency name: version spec}
    dependencies: dict[str, dict[str, str]] = dataclasses.field(default_factory=dict)

    @property
    def match_name(self) -> str:
        return normalize_python_name(self.name) if self.ecosystem == "python" else self.name


class PackageExtractor:
    """Extracts ``Package`` nodes and internal ``DEPENDS_ON`` relationships.

    Args:
        repo_root: Repository root to scan.
        blacklist: Optional crawl blacklist override.
    """

    kind = ExtractorKind.PACKAGE

    def __init__(self, repo_root: pathlib.Path, blacklist: list[str] | None = None) -> None:
        self.repo_root = repo_root.resolve()
        self._crawler = FileCrawler(self.repo_root, suffixes=(), file_names=MANIFEST_NAMES, blacklist=blacklist)

    def extract(self) -> ExtractionResult:
        result = ExtractionResult()
        manifests = self._load_manifests(result)

        by_name: dict[str, PackageManifest] = {}
        for manifest in manifests:
            if manifest.match_name in by_name:
                logger.warning(
                    "duplicate_package_name",
                    package=manifest.name,
                    manifest=manifest.manifest_path,
                    kept=by_name[manifest.match_name].manifest_path,
                )
                continue
            by_name[manifest.match_name] = manifest

        internal = self._internal_dependencies(by_name)
        build_order = calculate_build_order(internal)

        nodes: dict[str, GraphNode] = {}
        for key, manifest in by_name.items():
            node = self._package_node(manifest, build_order.get(key))
            nodes[key] = node
            result.nodes.append(node)
            self._key_files(manifest, node, result)

        for key, deps in internal.items():
            for dep_key, (kind, spec) in sorted(deps.items()):
                result.relationships.append(
                    make_relationship(
                        nodes[key].id,
                        nodes[dep_key].id,
                        RelationType.DEPENDS_ON,
                        dependency_type=kind,
                        version_spec=spec,
                        is_internal=True,
                    )
                )

        logger.info(
            "packages_extracted",
            packages=len(by_name),
            internal_dependencies=sum(len(d) for d in internal.values()),
        )
        return result

    # ------------------------------------------------------------------
    # Manifest loading
    # ------------------------------------------------------------------

    def _load_manifests(self, result: ExtractionResult) -> list[PackageManifest]:
        manifests: list[PackageManifest] = []
        for path in self._crawler.crawl():
            rel = relative_to(self.repo_root, path)
            try:
                if path.name == "package.json":
                    manifest = self._read_package_json(path, rel)
                else:
                    manifest = self._read_pyproject(path, rel)
            except (OSError, ValueError, tomllib.TOMLDecodeError) as exc:
                record_error(result, self.kind, exc, rel)
                logger.warning("manifest_unreadable", path=rel, error=str(exc))
                continue
            if manifest is not None:
                manifests.append(manifest)
        return manifests

    def _read_package_json(self, path: pathlib.Path, rel: str) -> Optional[PackageManifest]:
        data = json.loads(path.read_text(encoding="utf-8"))
        if not isinstance(data, dict) or not data.get("name"):
            return None

        sections = {
            "runtime": data.get("dependencies"),
            "dev": data.get("devDependencies"),
            "peer": data.get("peerDependencies"),
            "optional": data.get("optionalDependencies"),
        }
        keywords = data.get("keywords")
        return PackageManifest(
            name=str(data["name"]),
            directory=relative_to(self.repo_root, path.parent),
            manifest_path=rel,
            ecosystem="npm",
            version=data.get("version"),
            description=data.get("description"),
            private=bool(data.get("private", False)),
            keywords=[str(k) for k in keywords] if isinstance(keywords, list) else [],
            entry_point=data.get("main") or data.get("module"),
            dependencies={
                kind: {str(k): str(v) for k, v in section.items()}
                for kind, section in sections.items()
                if isinstance(section, dict)
            },
        )

    def _read_pyproject(self, path: pathlib.Path, rel: str) -> Optional[PackageManifest]:
        with path.open("rb") as fh:
            data = tomllib.load(fh)

        project: dict[str, Any] = data.get("project") or {}
        poetry: dict[str, Any] = (data.get("tool") or {}).get("poetry") or {}
        name = project.get("name") or poetry.get("name")
        if not name:
            return None

        dependencies: dict[str, dict[str, str]] = {"runtime": {}, "optional": {}, "dev": {}}
        for requirement in project.get("dependencies") or []:
            self._add_requirement(dependencies["runtime"], requirement)
        for group in (project.get("optional-dependencies") or {}).values():
            for requirement in group:
                self._add_requirement(dependencies["optional"], requirement)
        for group in (data.get("dependency-groups") or {}).values():
            for requirement in group:
                if isinstance(requirement, str):
                    self._add_requirement(dependencies["dev"], requirement)

        for dep_name, spec in (poetry.get("dependencies") or {}).items():
            if dep_name.lower() != "python":
                dependencies["runtime"][normalize_python_name(dep_name)] = self._poetry_spec(spec)
        dev_sections = [poetry.get("dev-dependencies") or {}]
        dev_sections += [g.get("dependencies") or {} for g in (poetry.get("group") or {}).values()]
        for section in dev_sections:
            for dep_name, spec in section.items():
                dependencies["dev"][normalize_python_name(dep_name)] = self._poetry_spec(spec)

        keywords = project.get("keywords") or poetry.get("keywords") or []
        return PackageManifest(
            name=str(name),
            directory=relative_to(self.repo_root, path.parent),
            manifest_path=rel,
            ecosystem="python",
            version=project.get("version") or poetry.get("version"),
            description=project.get("description") or poetry.get("description"),
            keywords=[str(k) for k in keywords],
            dependencies={kind: deps for kind, deps in dependencies.items() if deps},
        )

    @staticmethod
    def _add_requirement(target: dict[str, str], requirement: str) -> None:
        match = _PEP508_NAME.match(requirement)
        if match:
            target[normalize_python_name(match.group(1))] = requirement[match.end() :].strip() or "*"

    @staticmethod
    def _poetry_spec(spec: Any) -> str:
        if isinstance(spec, dict):
            return str(spec.get("version") or spec.get("path") or spec.get("git") or "*")
        return str(spec)

    # ------------------------------------------------------------------
    # Graph construction
    # ------------------------------------------------------------------

    @staticmethod
    def _internal_dependencies(
        by_name: dict[str, PackageManifest],
    ) -> dict[str, dict[str, tuple[str, str]]]:
        """Map each package to the workspace packages it declares, with kind and spec."""
        internal: dict[str, dict[str, tuple[str, str]]] = {key: {} for key in by_name}
        for key, manifest in by_name.items():
            for kind in DEPENDENCY_KINDS:
                for dep_name, spec in manifest.dependencies.get(kind, {}).items():
                    dep_key = normalize_python_name(dep_name) if manifest.ecosystem == "python" else dep_name
                    if dep_key == key or dep_key not in by_name:
                        continue
                    internal[key].setdefault(dep_key, (kind, spec))
        return internal

    def _package_node(self, manifest: PackageManifest, build_order: Optional[int]) -> GraphNode:
        return make_node(
            NodeType.PACKAGE,
            manifest.name,
            manifest.directory,
            name=manifest.name,
            version=manifest.version,
            description=manifest.description,
            ecosystem=manifest.ecosystem,
            manifest=manifest.manifest_path,
            private=manifest.private,
            keywords=manifest.keywords,
            entry_point=manifest.entry_point,
            dependencies=sorted(manifest.dependencies.get("runtime", {})),
            dev_dependencies=sorted(manifest.dependencies.get("dev", {})),
            peer_dependencies=sorted(manifest.dependencies.get("peer", {})),
            optional_dependencies=sorted(manifest.dependencies.get("optional", {})),
            build_order=build_order,
        )

    def _key_files(self, manifest: PackageManifest, package: GraphNode, result: ExtractionResult) -> None:
        package_dir = self.repo_root / manifest.directory
        candidates = list(KEY_FILES)
        if manifest.ecosystem == "python":
            module = manifest.name.replace("-", "_").replace(".", "_").lower()
            candidates += [f"{module}/__init__.py", f"src/{module}/__init__.py"]

        for candidate in candidates:
            path = package_dir / candidate
            if not path.is_file():
                continue
            rel = relative_to(self.repo_root, path)
            try:
                size = path.stat().st_size
            except OSError as exc:
                record_error(result, self.kind, exc, rel)
                continue
            node = file_node(rel, size=size, is_key_file=True, package=manifest.name)
            result.nodes.append(node)
            is_entry = "index." in candidate or candidate.endswith(("__init__.py", "package.json", "pyproject.toml"))
            result.relationships.append(
                make_relationship(package.id, node.id, RelationType.CONTAINS, is_entry_point=is_entry)
            )


def calculate_build_order(dependencies: dict[str, dict[str, Any]]) -> dict[str, int]:
    """Topologically order packages so dependencies build first.

    Ties are broken alphabetically.  Packages caught in a cycle are
    appended in alphabetical order after everything else and logged.

    Args:
        dependencies: Package key to the keys it depends on.

    Returns:
        Package key to its 0-based build position.
    """
    remaining = {key: set(deps) & dependencies.keys() for key, deps in dependencies.items()}
    order: list[str] = []

    while True:
        ready = sorted(key for key, deps in remaining.items() if not deps)
        if not ready:
            break
        for key in ready:
            order.append(key)
            del remaining[key]
        for deps in remaining.values():
            deps.difference_update(ready)

    if remaining:
        cyclic = sorted(remaining)
        logger.warning("dependency_cycle", packages=cyclic)
        order.extend(cyclic)

    return {key: index for index, key in enumerate(order)}
