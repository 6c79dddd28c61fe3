"""
Export module for the PDF to EPUB pipeline.

Provides:
- EPUB 3 export (using EbookLib, chapter XHTML built with BeautifulSoup)
- Chapter planning by source-page ranges
- Page-break markers for printed page numbers
- JSON export of the document model
"""

import logging
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Union

from ..errors import EmissionError
from .document import ContentBlock, DocumentModel
from .io import save_json
from .layout import ParagraphTag

logger = logging.getLogger(__name__)

OMITTED_TAGS = (ParagraphTag.HEADER, ParagraphTag.FOOTER, ParagraphTag.PAGE_NUMBER)


# ============================================================================
# Chapter Planning
# ============================================================================

@dataclass
class ChapterPlan:
    """Pages and blocks going into one XHTML content document."""
    number: int
    page_indices: List[int]
    blocks: List[ContentBlock] = field(default_factory=list)

    @property
    def first_page(self) -> int:
        return self.page_indices[0]

    @property
    def last_page(self) -> int:
        return self.page_indices[-1]

    @property
    def file_name(self) -> str:
        return f"chap_{self.number:03d}.xhtml"

    @property
    def title(self) -> str:
        for block in self.blocks:
            if block.tag == ParagraphTag.HEADING and block.text.strip():
                return block.text.strip()
        if self.first_page == self.last_page:
            return f"Page {self.first_page}"
        return f"Pages {self.first_page}-{self.last_page}"


def plan_chapters(document: DocumentModel, pages_per_chapter: int = 20) -> List[ChapterPlan]:
    """Split the document into chapters of consecutive source pages."""
    pages_per_chapter = max(1, pages_per_chapter)
    page_indices = [index for index, _ in document.page_numbers]
    if not page_indices:
        page_indices = sorted({b.page_index for b in document.blocks})

    chapters = []
    for start in range(0, len(page_indices), pages_per_chapter):
        chunk = page_indices[start:start + pages_per_chapter]
        members = set(chunk)
        chapters.append(ChapterPlan(
            number=len(chapters) + 1,
            page_indices=chunk,
            blocks=[b for b in document.blocks if b.page_index in members]
        ))
    return chapters


# ============================================================================
# EPUB Exporter
# ============================================================================

class EpubExporter:
    """Export a finalized DocumentModel to an EPUB archive."""

    def __init__(self, config=None):
        if config is None:
            from ..config import ExportConfig
            config = ExportConfig()
        self.config = config

    def export(
        self,
        document: DocumentModel,
        output_path: Union[str, Path]
    ) -> Path:
        """
        Write the document as an EPUB file.

        Args:
            document: Finalized document model
            output_path: Output .epub path

        Returns:
            Path to the generated EPUB

        Raises:
            EmissionError: If the archive cannot be built or written
        """
        output_path = Path(output_path)
        if output_path.is_dir():
            raise EmissionError(f"Output path is a directory: {output_path}")

        try:
            from ebooklib import epub
        except ImportError as e:
            raise EmissionError("EbookLib not installed. Install with: pip install EbookLib") from e

        try:
            book = self._build_book(document, epub)
        except EmissionError:
            raise
        except Exception as e:
            raise EmissionError(f"Failed to build EPUB: {e}") from e

        try:
            output_path.parent.mkdir(parents=True, exist_ok=True)
            epub.write_epub(str(output_path), book, {})
        except Exception as e:
            raise EmissionError(f"Failed to write EPUB to {output_path}: {e}") from e

        # write_epub swallows IOError
        if not output_path.is_file():
            raise EmissionError(f"EPUB was not written to {output_path}")

        logger.info(f"Exported EPUB to: {output_path}")
        return output_path

    def _build_book(self, document: DocumentModel, epub):
        title = self.config.title or document.title or "Untitled"
        author = self.config.author or document.author

        book = epub.EpubBook()
        book.set_identifier(f"urn:uuid:{uuid.uuid4()}")
        book.set_title(title)
        book.set_language(self.config.language)
        if author:
            book.add_author(author)

        css = epub.EpubItem(
            uid="style_main",
            file_name="style/main.css",
            media_type="text/css",
            content=self.config.stylesheet
        )
        book.add_item(css)

        plans = plan_chapters(document, self.config.pages_per_chapter)
        chapters = []

        for plan in plans:
            chapter = epub.EpubHtml(
                title=plan.title,
                file_name=plan.file_name,
                lang=self.config.language
            )
            chapter.content = self._chapter_html(plan.title, self.render_body(plan, document))
            chapter.add_item(css)
            book.add_item(chapter)
            chapters.append(chapter)

        if not chapters:
            chapter = epub.EpubHtml(title=title, file_name="content.xhtml", lang=self.config.language)
            chapter.content = self._chapter_html(title, "")
            chapter.add_item(css)
            book.add_item(chapter)
            chapters.append(chapter)

        book.toc = tuple(chapters)
        book.add_item(epub.EpubNcx())
        book.add_item(epub.EpubNav())
        book.spine = ["nav"] + chapters

        logger.debug(f"Built EPUB with {len(chapters)} chapters")
        return book

    def render_body(self, plan: ChapterPlan, document: DocumentModel) -> str:
        """Render a chapter's blocks (and optional page-break markers) as XHTML body content."""
        from bs4 import BeautifulSoup

        soup = BeautifulSoup("", "html.parser")
        blocks_by_page = {}
        for block in plan.blocks:
            blocks_by_page.setdefault(block.page_index, []).append(block)

        for page_index in plan.page_indices:
            if self.config.extract_page_numbers:
                number = document.page_number_for(page_index)
                if number:
                    soup.append(soup.new_tag(
                        "span",
                        attrs={"role": "doc-pagebreak", "id": f"page-{page_index}", "title": number}
                    ))

            for block in blocks_by_page.get(page_index, []):
                element = self._block_element(soup, block)
                if element is not None:
                    soup.append(element)

        return str(soup)

    @staticmethod
    def _block_element(soup, block: ContentBlock):
        if block.tag in OMITTED_TAGS:
            return None

        if block.tag == ParagraphTag.HEADING:
            h2 = soup.new_tag("h2")
            h2.string = block.text
            return h2

        if block.tag == ParagraphTag.TOC:
            div = soup.new_tag("div", attrs={"class": "toc"})
            lines = [_toc_line(e) for e in block.entries] or block.text.split("\n")
            for line in lines:
                p = soup.new_tag("p")
                p.string = line
                div.append(p)
            return div

        p = soup.new_tag("p")
        p.string = block.text
        return p

    @staticmethod
    def _chapter_html(title: str, body: str) -> str:
        """
        Wrap body content in an XHTML document.

        A body without visible text (blank, failed or margin-only pages) gets
        the chapter title as an <h1>; EbookLib rejects empty documents.
        """
        from bs4 import BeautifulSoup

        soup = BeautifulSoup("", "html.parser")
        title_tag = soup.new_tag("title")
        title_tag.string = title

        if not BeautifulSoup(body, "html.parser").get_text(strip=True):
            h1 = soup.new_tag("h1")
            h1.string = title
            body = f"{h1}{body}"

        return (
            "<html><head>"
            f"{title_tag}"
            "<link rel='stylesheet' href='style/main.css' type='text/css'/>"
            f"</head><body>{body}</body></html>"
        )


def _toc_line(entry) -> str:
    parts = [p for p in (entry.number, entry.title) if p]
    line = " ".join(parts)
    if entry.page:
        line = f"{line} ... {entry.page}"
    return line


# ============================================================================
# JSON Exporter
# ============================================================================

def export_json(document: DocumentModel, output_path: Union[str, Path]) -> Path:
    """Write the document model as JSON."""
    try:
        path = save_json(document.to_dict(), output_path)
    except OSError as e:
        raise EmissionError(f"Failed to write JSON to {output_path}: {e}") from e
    logger.info(f"Exported JSON to: {path}")
    return path


def export_document(
    document: DocumentModel,
    output_path: Union[str, Path],
    fmt: str = "epub",
    config=None
) -> Path:
    """Export to 'epub' or 'json'."""
    if fmt == "epub":
        return EpubExporter(config).export(document, output_path)
    elif fmt == "json":
        return export_json(document, output_path)
    raise ValueError(f"Unknown export format: {fmt}")
