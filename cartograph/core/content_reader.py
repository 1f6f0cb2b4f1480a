"""On-demand content reader that resolves node pointers to source text.

Graph nodes never store source inline.  Function, class, and document
nodes keep ``path``, ``start_line`` and ``end_line`` as pointers, and
this module reads only the requested range from disk with an encoding
fallback chain.
"""

from __future__ import annotations

import pathlib
from typing import Optional

import structlog

from cartograph.models.graph import GraphNode

logger = structlog.get_logger(__name__)

# Encodings to attempt in order when reading source files.
_ENCODING_CHAIN: tuple[str, ...] = ("utf-8", "latin-1", "cp1252")


def read_text(file_path: pathlib.Path) -> str:
    """Read *file_path* trying each encoding of the fallback chain.

    Raises:
        FileNotFoundError: If *file_path* does not exist.
    """
    if not file_path.exists():
        raise FileNotFoundError(f"Source file not found: {file_path}")

    for encoding in _ENCODING_CHAIN:
        try:
            with file_path.open("r", encoding=encoding, buffering=8192) as fh:
                return fh.read()
        except (UnicodeDecodeError, UnicodeError):
            continue

    # latin-1 accepts every byte, so this is only reached if the chain changes.
    logger.warning("encoding_fallback", file=str(file_path), tried=_ENCODING_CHAIN)
    return file_path.read_bytes().decode("utf-8", errors="replace")


def read_lines(file_path: pathlib.Path, start_line: int, end_line: int) -> str:
    """Read a specific 1-indexed, inclusive line range from *file_path*.

    Args:
        file_path: Absolute path to the source file.
        start_line: First line to include.
        end_line: Last line to include (clamped to the file length).

    Returns:
        The extracted source text (lines joined by ``\\n``).

    Raises:
        FileNotFoundError: If *file_path* does not exist.
        ValueError: If the line range is invalid.
    """
    if start_line < 1 or end_line < start_line:
        raise ValueError(f"Invalid line range: start_line={start_line}, end_line={end_line}")

    lines = read_text(file_path).splitlines()
    return "\n".join(lines[start_line - 1 : min(end_line, len(lines))])


def get_node_snippet(node: GraphNode, repo_root: pathlib.Path, max_lines: int = 40) -> Optional[str]:
    """Return the source lines a node points to, or ``None``.

    Nodes without a file path or line pointers (packages, schemas from
    JSON documents) and files that have since disappeared yield ``None``.

    Args:
        node: A node carrying ``path`` and ``start_line`` / ``end_line``
            properties.
        repo_root: Repository root that ``node.path`` is relative to.
        max_lines: Cap on the number of lines returned.
    """
    start = node.properties.get("start_line")
    end = node.properties.get("end_line")
    if not node.path or start is None or end is None:
        return None

    abs_path = (repo_root / node.path).resolve()
    try:
        return read_lines(abs_path, int(start), min(int(end), int(start) + max_lines - 1))
    except (FileNotFoundError, ValueError, OSError) as exc:
        logger.debug("snippet_unavailable", node_id=node.id, path=str(abs_path), error=str(exc))
        return None
