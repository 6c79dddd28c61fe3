"""
Document builder module for the PDF to EPUB pipeline.

Provides:
- Document data model (ContentBlock, DocumentModel)
- Ordered page accumulation with an append/finalize lifecycle
- Table-of-contents collapsing (delegated to toc.py)
- Page-number continuity diagnostics
"""

import logging
from dataclasses import dataclass
from typing import List, Optional, Dict, Any, Tuple

from ..errors import LifecycleError
from .layout import ParagraphTag
from .toc import TocDetector, TocEntry

logger = logging.getLogger(__name__)


# ============================================================================
# Data Classes
# ============================================================================

@dataclass(frozen=True)
class ContentBlock:
    """A document-level text unit ready for serialization."""
    text: str
    tag: ParagraphTag
    page_index: int  # 1-based source page
    entries: Tuple[TocEntry, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        result = {
            "text": self.text,
            "tag": self.tag.value,
            "page_index": self.page_index
        }
        if self.entries:
            result["entries"] = [e.to_dict() for e in self.entries]
        return result


@dataclass(frozen=True)
class PageNumberIssue:
    """A break in the detected page-number sequence."""
    kind: str  # gap, duplicate, backwards, extra_pages
    page_index: int
    detected: int
    previous: int
    expected: int

    @property
    def message(self) -> str:
        if self.kind == "duplicate":
            return f"page {self.page_index} repeats printed number {self.detected}"
        if self.kind == "backwards":
            return (f"page {self.page_index} printed number {self.detected} "
                    f"goes back from {self.previous}")
        if self.kind == "gap":
            return (f"page {self.page_index} printed number {self.detected}, expected "
                    f"{self.expected}: {self.detected - self.expected} scan page(s) may be missing")
        return (f"page {self.page_index} printed number {self.detected}, expected "
                f"{self.expected}: unnumbered pages inserted")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "page_index": self.page_index,
            "detected": self.detected,
            "previous": self.previous,
            "expected": self.expected,
            "message": self.message
        }


@dataclass(frozen=True)
class DocumentModel:
    """Finalized, read-only content of the whole book."""
    title: Optional[str]
    blocks: Tuple[ContentBlock, ...]
    page_count: int
    page_numbers: Tuple[Tuple[int, Optional[str]], ...] = ()  # (page_index, printed number)
    page_number_issues: Tuple[PageNumberIssue, ...] = ()
    failed_pages: Tuple[int, ...] = ()
    author: Optional[str] = None

    def blocks_for_page(self, page_index: int) -> List[ContentBlock]:
        return [b for b in self.blocks if b.page_index == page_index]

    def page_number_for(self, page_index: int) -> Optional[str]:
        for index, number in self.page_numbers:
            if index == page_index:
                return number
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "title": self.title,
            "author": self.author,
            "page_count": self.page_count,
            "failed_pages": list(self.failed_pages),
            "page_numbers": [
                {"page_index": index, "page_number": number}
                for index, number in self.page_numbers
            ],
            "page_number_issues": [i.to_dict() for i in self.page_number_issues],
            "blocks": [b.to_dict() for b in self.blocks]
        }


# ============================================================================
# Document Builder
# ============================================================================

class DocumentBuilder:
    """
    Accumulates PageModels in page order and produces one DocumentModel.

    Lifecycle: any number of ``append_page`` calls, then exactly one
    ``finalize``. Block order follows page order only; detected page
    numbers are diagnostics and never reorder content.
    """

    def __init__(
        self,
        title: Optional[str] = None,
        author: Optional[str] = None,
        toc_config=None
    ):
        if toc_config is None:
            from ..config import TocConfig
            toc_config = TocConfig()
        self.title = title
        self.author = author
        self.toc_config = toc_config
        self.toc_detector = TocDetector(toc_config)

        self._blocks: List[ContentBlock] = []
        self._page_numbers: List[Tuple[int, Optional[str]]] = []
        self._failed_pages: List[int] = []
        self._last_page_index: Optional[int] = None
        self._page_count = 0
        self._finalized = False

    @property
    def finalized(self) -> bool:
        return self._finalized

    def append_page(self, page_model) -> None:
        """
        Append one page's body paragraphs as content blocks.

        Raises:
            LifecycleError: If the document was already finalized
            ValueError: If the page does not come after the previous one
        """
        if self._finalized:
            raise LifecycleError(
                f"append_page(page {page_model.page_index}) called after finalize()"
            )
        if self._last_page_index is not None and page_model.page_index <= self._last_page_index:
            raise ValueError(
                f"page {page_model.page_index} appended after page {self._last_page_index}; "
                "pages must be appended in ascending order"
            )

        for paragraph in page_model.body:
            if paragraph.tag == ParagraphTag.PAGE_NUMBER:
                continue
            self._blocks.append(ContentBlock(
                text=paragraph.text,
                tag=paragraph.tag,
                page_index=page_model.page_index
            ))

        self._page_numbers.append((page_model.page_index, page_model.page_number))
        if page_model.status == "failed":
            self._failed_pages.append(page_model.page_index)

        self._last_page_index = page_model.page_index
        self._page_count += 1

    def finalize(self) -> DocumentModel:
        """
        Run whole-document heuristics and freeze the result.

        Raises:
            LifecycleError: If called more than once
        """
        if self._finalized:
            raise LifecycleError("finalize() called more than once")
        self._finalized = True

        blocks = self._blocks
        if self.toc_config.enabled:
            blocks = self.toc_detector.collapse(blocks)
            collapsed = len(self._blocks) - len(blocks)
            if collapsed:
                logger.info(f"Collapsed {collapsed} heading blocks into table-of-contents regions")

        issues = check_page_numbers(self._page_numbers)
        for issue in issues:
            logger.warning(f"Page numbering: {issue.message}")

        document = DocumentModel(
            title=self.title,
            author=self.author,
            blocks=tuple(blocks),
            page_count=self._page_count,
            page_numbers=tuple(self._page_numbers),
            page_number_issues=tuple(issues),
            failed_pages=tuple(self._failed_pages)
        )
        logger.info(f"Finalized document: {document.page_count} pages, {len(document.blocks)} blocks")
        return document


def check_page_numbers(page_numbers) -> List[PageNumberIssue]:
    """
    Compare consecutive detected page numbers against the scan order.

    Pages without a numeric page number are skipped; the expected value
    accounts for the distance in scan pages since the last numbered page.
    """
    issues = []
    previous = None  # (page_index, number)

    for page_index, value in page_numbers:
        if value is None or not str(value).isdigit():
            continue
        number = int(value)

        if previous is not None:
            prev_index, prev_number = previous
            expected = prev_number + (page_index - prev_index)
            kind = None
            if number == prev_number:
                kind = "duplicate"
            elif number < prev_number:
                kind = "backwards"
            elif number > expected:
                kind = "gap"
            elif number < expected:
                kind = "extra_pages"

            if kind is not None:
                issues.append(PageNumberIssue(
                    kind=kind,
                    page_index=page_index,
                    detected=number,
                    previous=prev_number,
                    expected=expected
                ))

        previous = (page_index, number)

    return issues
