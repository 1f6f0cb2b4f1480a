"""Document extractor: Markdown, reStructuredText and plain-text docs."""

from __future__ import annotations

import pathlib
import re
from typing import Optional

import structlog

from cartograph.core.content_reader import read_text
from cartograph.core.crawler import FileCrawler
from cartograph.extractors.base import ExtractorKind, make_node, record_error, relative_to
from cartograph.models.graph import ExtractionResult, GraphNode, NodeType

logger = structlog.get_logger(__name__)

DOCUMENT_FORMATS: dict[str, str] = {
    ".md": "markdown",
    ".markdown": "markdown",
    ".mdx": "markdown",
    ".rst": "rst",
    ".txt": "text",
}

_FRONT_MATTER = re.compile(r"\A---\s*\n(?P<body>.*?)\n---\s*(?:\n|\Z)", re.S)
_FRONT_MATTER_FIELD = re.compile(r"^(?P<key>[A-Za-z_][\w-]*)\s*:\s*(?P<value>.*)$", re.M)
_MD_HEADING = re.compile(r"^(#{1,6})\s+(.+?)\s*#*\s*$")
_MD_FENCE = re.compile(r"^\s*(```|~~~)")
_MD_LINK = re.compile(r"(?<!!)\[[^\]]*\]\(\s*<?([^)\s>]+)>?(?:\s+\"[^\"]*\")?\s*\)")
_AUTOLINK = re.compile(r"<(https?://[^>\s]+)>")
_RST_LINK = re.compile(r"`[^`<]*<([^>]+)>`_")
_RST_UNDERLINE = re.compile(r"^([=\-~^\"'`#*+])\1{2,}\s*$")
_WORD = re.compile(r"\b\w+\b")
_SUMMARY_MAX = 280


def _unquote(value: str) -> str:
    value = value.strip()
    if len(value) >= 2 and value[0] == value[-1] and value[0] in "'\"":
        return value[1:-1]
    return value


class DocumentExtractor:
    """Extracts one ``Document`` node per documentation file.

    ``title`` comes from front-matter ``title:``, else the first heading,
    else the file stem.

    Args:
        repo_root: Repository root to scan.
        blacklist: Optional crawl blacklist override.
    """

    kind = ExtractorKind.DOCUMENT

    def __init__(self, repo_root: pathlib.Path, blacklist: list[str] | None = None) -> None:
        self.repo_root = repo_root.resolve()
        self._crawler = FileCrawler(self.repo_root, suffixes=tuple(DOCUMENT_FORMATS), blacklist=blacklist)

    def extract(self) -> ExtractionResult:
        result = ExtractionResult()
        for path in self._crawler.crawl():
            rel = relative_to(self.repo_root, path)
            try:
                result.nodes.append(self._document_node(path, rel))
            except (OSError, ValueError) as exc:
                record_error(result, self.kind, exc, rel)
                logger.warning("document_unreadable", path=rel, error=str(exc))
        logger.info("documents_extracted", documents=len(result.nodes))
        return result

    def _document_node(self, path: pathlib.Path, rel: str) -> GraphNode:
        text = read_text(path)
        fmt = DOCUMENT_FORMATS.get(path.suffix.lower(), "text")

        front: dict[str, str] = {}
        body = text
        match = _FRONT_MATTER.match(text)
        if match is not None:
            front = {m.group("key").lower(): _unquote(m.group("value")) for m in _FRONT_MATTER_FIELD.finditer(match.group("body"))}
            body = text[match.end() :]

        if fmt == "markdown":
            headings, prose = self._markdown_structure(body)
            links = _MD_LINK.findall(body) + _AUTOLINK.findall(body)
        elif fmt == "rst":
            headings, prose = self._rst_structure(body)
            links = _RST_LINK.findall(body) + _AUTOLINK.findall(body)
        else:
            headings, prose = [], body.splitlines()
            links = _AUTOLINK.findall(body)

        title = front.get("title") or (headings[0] if headings else None) or path.stem
        line_count = text.count("\n") + 1
        tags = front.get("tags")

        return make_node(
            NodeType.DOCUMENT,
            rel,
            rel,
            name=title,
            title=title,
            format=fmt,
            file_name=path.name,
            description=front.get("description"),
            tags=[t.strip(" []'\"") for t in tags.split(",") if t.strip(" []'\"")] if tags else None,
            headings=headings,
            word_count=len(_WORD.findall(body)),
            links=list(dict.fromkeys(links)),
            summary=self._summary(prose),
            start_line=1,
            end_line=line_count,
            line_count=line_count,
        )

    @staticmethod
    def _markdown_structure(body: str) -> tuple[list[str], list[str]]:
        """Return headings and non-heading lines, ignoring fenced code."""
        headings: list[str] = []
        prose: list[str] = []
        in_fence = False
        for line in body.splitlines():
            if _MD_FENCE.match(line):
                in_fence = not in_fence
                continue
            if in_fence:
                continue
            heading = _MD_HEADING.match(line)
            if heading:
                headings.append(heading.group(2).strip())
            else:
                prose.append(line)
        return headings, prose

    @staticmethod
    def _rst_structure(body: str) -> tuple[list[str], list[str]]:
        """Return section titles (text followed by an adornment line) and other lines."""
        lines = body.splitlines()
        headings: list[str] = []
        prose: list[str] = []
        skip = set()
        for i, line in enumerate(lines):
            if i in skip:
                continue
            nxt = lines[i + 1] if i + 1 < len(lines) else ""
            if line.strip() and not _RST_UNDERLINE.match(line) and _RST_UNDERLINE.match(nxt) and len(nxt.strip()) >= len(line.strip()):
                headings.append(line.strip())
                skip.add(i + 1)
            elif not _RST_UNDERLINE.match(line):
                prose.append(line)
        return headings, prose

    @staticmethod
    def _summary(lines: list[str]) -> Optional[str]:
        """First prose paragraph, collapsed and truncated."""
        paragraph: list[str] = []
        for line in lines:
            stripped = line.strip()
            if not stripped:
                if paragraph:
                    break
                continue
            if stripped.startswith(("<", "![", "[!", "|", ">", "..")):
                continue
            paragraph.append(stripped)
        if not paragraph:
            return None
        text = " ".join(paragraph)
        return text if len(text) <= _SUMMARY_MAX else text[: _SUMMARY_MAX - 3].rstrip() + "..."
