"""Table-of-contents candidate detection over document blocks."""

import re
from dataclasses import dataclass
from typing import List, Optional, Dict, Any

from .layout import ParagraphTag

_NUMBER_AT_EDGE = re.compile(r"^\s*\d|\d\s*$")

ENTRY_PATTERNS = [
    # "3.1 Title ........ 42"
    re.compile(r"^([A-Z]?\d+(?:\.\d+)*\.?)\s+(.+?)\s*\.{2,}\s*-?(\d+)$"),
    # "Title ........ 42"
    re.compile(r"^(.+?)\s*\.{2,}\s*-?(\d+)$"),
    # "3 Title 42"
    re.compile(r"^(\d+(?:\.\d+)*\.?)\s+(\D+?)\s+(\d+)$"),
    # "Title 42"
    re.compile(r"^(\D+?)\s+(\d+)$"),
    # "3.1 Title"
    re.compile(r"^(\d+(?:\.\d+)*\.?)\s+(\D+)$"),
]


@dataclass(frozen=True)
class TocEntry:
    """One parsed table-of-contents line."""
    title: str
    page: Optional[str] = None
    number: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {"number": self.number, "title": self.title, "page": self.page}


def parse_toc_entry(text: str) -> TocEntry:
    """Split a ToC line into (number, title, page); unparseable lines keep their full text."""
    line = " ".join(text.split())
    for i, pattern in enumerate(ENTRY_PATTERNS):
        match = pattern.match(line)
        if not match:
            continue
        groups = match.groups()
        if i in (0, 2):
            number, title, page = groups
        elif i == 4:
            number, title, page = groups[0], groups[1], None
        else:
            number, title, page = "", groups[0], groups[1]
        return TocEntry(title=_clean_title(title), page=page, number=number.rstrip("."))
    return TocEntry(title=line)


def _clean_title(title: str) -> str:
    title = re.sub(r"(?:\.\s*){2,}", "", title)
    return re.sub(r"\s+", " ", title).strip()


class TocDetector:
    """
    Collapses runs of short, numbered heading blocks into one ToC block.

    Best effort and isolated from layout reconstruction; any replacement only
    needs to map a block list to a block list.
    """

    def __init__(self, config=None):
        if config is None:
            from ..config import TocConfig
            config = TocConfig()
        self.config = config

    def is_candidate(self, block) -> bool:
        return (
            block.tag == ParagraphTag.HEADING
            and 0 < len(block.text) <= self.config.max_entry_chars
            and _NUMBER_AT_EDGE.search(block.text) is not None
        )

    def collapse(self, blocks: List) -> List:
        """Return a new block list with qualifying heading runs merged into ToC blocks."""
        from .document import ContentBlock

        result = []
        run: List = []

        def flush():
            if len(run) >= self.config.min_entries:
                result.append(ContentBlock(
                    text="\n".join(b.text for b in run),
                    tag=ParagraphTag.TOC,
                    page_index=run[0].page_index,
                    entries=tuple(parse_toc_entry(b.text) for b in run)
                ))
            else:
                result.extend(run)
            run.clear()

        for block in blocks:
            if self.is_candidate(block):
                run.append(block)
            else:
                flush()
                result.append(block)
        flush()

        return result
