"""Line-oriented markdown reader.

Only the block structure the extractor needs is recognized: headings,
horizontal rules, list items, fenced code blocks and paragraphs. Inline
markup is kept verbatim in node text.
"""

from __future__ import annotations

import re
from typing import Iterable, List, Optional, Pattern, Sequence, Union

from .config import DEFAULT_MAX_DOCUMENT_BYTES
from .errors import ParseError
from .models import (
    CODE_BLOCK,
    HEADING,
    HORIZONTAL_RULE,
    LIST_ITEM,
    PARAGRAPH,
    DocumentTree,
    Node,
    Section,
)

HEADING_RE = re.compile(r"^(#{1,6})\s+(.+?)\s*$")
CLOSING_HASHES_RE = re.compile(r"\s+#+$")
RULE_RE = re.compile(r"^(?:-{3,}|\*{3,}|_{3,})$")
LIST_RE = re.compile(r"^([ \t]*)([-*+]|\d+\.)\s+(.+)$")
FENCE = "```"


class MarkdownParser:
    """Parse markdown text into a flat :class:`DocumentTree`."""

    def __init__(self, max_bytes: int = DEFAULT_MAX_DOCUMENT_BYTES):
        self.max_bytes = max_bytes

    def parse(self, text: str, source: Optional[str] = None) -> DocumentTree:
        size = len(text.encode("utf-8"))
        if size > self.max_bytes:
            raise ParseError(f"Document too large: {size} bytes exceeds limit of {self.max_bytes} bytes")

        nodes: List[Node] = []
        fence_line = 0
        fence_opener = ""
        fence_language: Optional[str] = None
        fence_buffer: Optional[List[str]] = None

        for number, raw in enumerate(text.splitlines(), start=1):
            if fence_buffer is not None:
                if raw.strip().startswith(FENCE):
                    nodes.append(Node(
                        kind=CODE_BLOCK,
                        line=fence_line,
                        text="\n".join(fence_buffer),
                        language=fence_language,
                    ))
                    fence_buffer = None
                else:
                    fence_buffer.append(raw)
                continue

            stripped = raw.strip()
            if not stripped:
                continue

            if stripped.startswith(FENCE):
                fence_line = number
                fence_opener = stripped
                fence_language = stripped[len(FENCE):].strip() or None
                fence_buffer = []
                continue

            node = self._parse_line(raw, stripped, number)
            nodes.append(node)

        if fence_buffer is not None:
            # unterminated fence: keep the text rather than fail the document
            body = "\n".join([fence_opener] + [line.strip() for line in fence_buffer if line.strip()])
            nodes.append(Node(kind=PARAGRAPH, line=fence_line, text=body))

        return DocumentTree(nodes=tuple(nodes), text=text, source=source)

    def _parse_line(self, raw: str, stripped: str, number: int) -> Node:
        heading = HEADING_RE.match(stripped) if not raw[:1].isspace() else None
        if heading:
            title = CLOSING_HASHES_RE.sub("", heading.group(2)).strip()
            return Node(kind=HEADING, line=number, text=title, level=len(heading.group(1)))

        if RULE_RE.match(stripped.replace(" ", "")):
            return Node(kind=HORIZONTAL_RULE, line=number)

        item = LIST_RE.match(raw)
        if item:
            width = len(item.group(1).replace("\t", "  "))
            return Node(
                kind=LIST_ITEM,
                line=number,
                text=item.group(3).strip(),
                indent=width // 2,
                ordered=item.group(2)[0].isdigit(),
            )

        if stripped.startswith(">"):
            stripped = stripped.lstrip(">").strip() or stripped
        return Node(kind=PARAGRAPH, line=number, text=stripped)


TitlePattern = Union[str, Pattern[str]]


def _compile(pattern: TitlePattern) -> Pattern[str]:
    if isinstance(pattern, str):
        return re.compile(pattern, re.IGNORECASE)
    return pattern


def find_section(nodes: Sequence[Node], title_pattern: TitlePattern) -> Optional[Section]:
    """First heading whose text matches ``title_pattern``, with its body.

    The body runs until the next heading at the same or a shallower level.
    """
    pattern = _compile(title_pattern)
    for index, node in enumerate(nodes):
        if node.kind == HEADING and pattern.search(node.text):
            return Section(heading=node, nodes=tuple(section_body(nodes, index)))
    return None


def section_body(nodes: Sequence[Node], heading_index: int) -> List[Node]:
    heading = nodes[heading_index]
    body = []
    for node in nodes[heading_index + 1:]:
        if node.kind == HEADING and node.level <= heading.level:
            break
        body.append(node)
    return body


def headings_at_level(nodes: Iterable[Node], level: int) -> List[Node]:
    return [node for node in nodes if node.kind == HEADING and node.level == level]


def list_items(nodes: Iterable[Node], top_level_only: bool = False) -> List[str]:
    """Text of the list items in ``nodes``."""
    return [
        node.text
        for node in nodes
        if node.kind == LIST_ITEM and (not top_level_only or node.indent == 0)
    ]


def section_text(section: Optional[Section]) -> str:
    """Paragraph and list text of a section joined by newlines."""
    if section is None:
        return ""
    return "\n".join(node.text for node in section.nodes if node.kind in (PARAGRAPH, LIST_ITEM))
