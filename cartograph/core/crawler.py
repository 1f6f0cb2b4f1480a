"""Repository walker shared by every extractor.

Excluded paths come from two sources compiled into one ``pathspec``
matcher: the configured blacklist and the repository's root
``.gitignore``.  Excluded directories are pruned, so nothing below them
is ever listed.
"""

from __future__ import annotations

import pathlib
from typing import Iterable, Iterator

import pathspec
import structlog

from cartograph.config import settings

logger = structlog.get_logger(__name__)

# Suffix -> parser language.
EXTENSION_LANGUAGE_MAP: dict[str, str] = {
    ".py": "python",
    ".js": "javascript",
    ".jsx": "javascript",
    ".mjs": "javascript",
    ".cjs": "javascript",
    ".ts": "typescript",
    ".tsx": "typescript",
    ".mts": "typescript",
    ".cts": "typescript",
}

SOURCE_SUFFIXES: frozenset[str] = frozenset(EXTENSION_LANGUAGE_MAP)


def _read_gitignore(root: pathlib.Path) -> list[str]:
    path = root / ".gitignore"
    if not path.is_file():
        return []
    try:
        return path.read_text(encoding="utf-8", errors="replace").splitlines()
    except OSError as exc:
        logger.warning("gitignore_unreadable", path=str(path), error=str(exc))
        return []


class FileCrawler:
    """Lists the files of a repository an extractor cares about.

    Args:
        root: Repository root.
        suffixes: Accepted file-name endings, matched case-insensitively
            (``".py"``, ``".schema.json"``).  Defaults to the parseable
            source suffixes; pass ``()`` to select by *file_names* only.
        file_names: Exact names accepted regardless of suffix
            (``"package.json"``).
        blacklist: Gitignore-style exclusion patterns.  Defaults to
            ``settings.default_blacklist``.
        max_file_size_bytes: Larger files are skipped with a warning.
    """

    def __init__(
        self,
        root: pathlib.Path,
        suffixes: Iterable[str] | None = None,
        file_names: Iterable[str] | None = None,
        blacklist: list[str] | None = None,
        max_file_size_bytes: int | None = None,
    ) -> None:
        self.root = root.resolve()
        chosen = SOURCE_SUFFIXES if suffixes is None else suffixes
        self.suffixes = tuple(sorted(s.lower() for s in chosen))
        self.file_names = frozenset(file_names or ())
        self.blacklist = list(settings.default_blacklist if blacklist is None else blacklist)
        self.max_file_size_bytes = max_file_size_bytes or settings.max_file_size_bytes
        self._ignored = pathspec.PathSpec.from_lines(
            "gitwildmatch", [*self.blacklist, *_read_gitignore(self.root)]
        )

    def is_ignored(self, path: pathlib.Path, *, is_dir: bool = False) -> bool:
        """True if *path* (inside the root) matches an exclusion pattern."""
        try:
            rel = path.relative_to(self.root).as_posix()
        except ValueError:
            return False
        # Directory patterns such as "build/" only match with the slash.
        return self._ignored.match_file(rel + "/" if is_dir else rel)

    def accepts(self, path: pathlib.Path) -> bool:
        return path.name in self.file_names or path.name.lower().endswith(self.suffixes)

    def crawl(self) -> Iterator[pathlib.Path]:
        """Yield accepted files as absolute paths, depth-first in name order."""
        yielded = skipped = 0
        pending = [self.root]
        while pending:
            directory = pending.pop()
            try:
                entries = sorted(directory.iterdir(), reverse=True)
            except OSError as exc:
                logger.warning("directory_unreadable", path=str(directory), error=str(exc))
                continue

            files: list[pathlib.Path] = []
            for entry in entries:
                if entry.is_dir():
                    if not self.is_ignored(entry, is_dir=True):
                        pending.append(entry)
                elif entry.is_file() and self.accepts(entry) and not self.is_ignored(entry):
                    files.append(entry)

            for path in reversed(files):
                if self._too_large(path):
                    skipped += 1
                    continue
                yielded += 1
                yield path

        logger.debug("crawl_finished", root=str(self.root), files=yielded, skipped=skipped)

    def _too_large(self, path: pathlib.Path) -> bool:
        try:
            size = path.stat().st_size
        except OSError as exc:
            logger.warning("stat_failed", path=str(path), error=str(exc))
            return True
        if size > self.max_file_size_bytes:
            logger.warning("file_too_large", path=str(path), size=size, limit=self.max_file_size_bytes)
            return True
        return False


def get_language_for_file(path: pathlib.Path) -> str | None:
    """Parser language for *path*, or ``None`` when no parser handles it."""
    return EXTENSION_LANGUAGE_MAP.get(path.suffix.lower())
