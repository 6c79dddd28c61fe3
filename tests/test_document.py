"""
Tests for the document builder and table-of-contents detection.
"""

import pytest
import sys
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from pdf2epub.errors import LifecycleError
from pdf2epub.utils.assembler import PageModel
from pdf2epub.utils.document import DocumentBuilder, ContentBlock, check_page_numbers
from pdf2epub.utils.layout import Paragraph, ParagraphTag
from pdf2epub.utils.toc import TocDetector, parse_toc_entry


def paragraph(text, tag=ParagraphTag.BODY):
    return Paragraph(lines=[], text=text, tag=tag)


def page(index, *paragraphs, page_number=None):
    return PageModel(page_index=index, body=list(paragraphs), page_number=page_number)


class TestDocumentBuilder:
    """Test append/finalize behaviour."""

    def test_blocks_follow_page_order(self):
        builder = DocumentBuilder(title="Book")
        builder.append_page(page(1, paragraph("p1 a"), paragraph("p1 b")))
        builder.append_page(page(2))
        builder.append_page(page(3, paragraph("p3 a")))

        document = builder.finalize()

        assert [b.text for b in document.blocks] == ["p1 a", "p1 b", "p3 a"]
        assert [b.page_index for b in document.blocks] == [1, 1, 3]
        assert document.page_count == 3
        assert document.title == "Book"

    def test_page_numbers_do_not_reorder_blocks(self):
        builder = DocumentBuilder()
        builder.append_page(page(1, paragraph("first"), page_number="9"))
        builder.append_page(page(2, paragraph("second"), page_number="3"))

        document = builder.finalize()

        assert [b.text for b in document.blocks] == ["first", "second"]
        assert document.page_numbers == ((1, "9"), (2, "3"))
        assert document.page_number_for(2) == "3"

    def test_tags_are_carried(self):
        builder = DocumentBuilder()
        builder.append_page(page(1, paragraph("RUNNING HEAD", ParagraphTag.HEADER),
                                 paragraph("Body")))

        document = builder.finalize()

        assert [b.tag for b in document.blocks] == [ParagraphTag.HEADER, ParagraphTag.BODY]

    def test_failed_pages_are_recorded(self):
        builder = DocumentBuilder()
        builder.append_page(page(1, paragraph("ok")))
        builder.append_page(PageModel.failed(2, "render failed"))

        document = builder.finalize()

        assert document.failed_pages == (2,)
        assert document.blocks_for_page(2) == []

    def test_append_after_finalize_raises(self):
        builder = DocumentBuilder()
        builder.finalize()

        with pytest.raises(LifecycleError):
            builder.append_page(page(1))

    def test_finalize_twice_raises(self):
        builder = DocumentBuilder()
        builder.finalize()

        with pytest.raises(LifecycleError):
            builder.finalize()

    def test_out_of_order_append_raises(self):
        builder = DocumentBuilder()
        builder.append_page(page(2))

        with pytest.raises(ValueError):
            builder.append_page(page(1))

    def test_document_is_read_only(self):
        from dataclasses import FrozenInstanceError

        builder = DocumentBuilder()
        builder.append_page(page(1, paragraph("x")))
        document = builder.finalize()

        with pytest.raises(FrozenInstanceError):
            document.title = "changed"
        assert isinstance(document.blocks, tuple)

    def test_to_dict(self):
        builder = DocumentBuilder(title="T", author="A")
        builder.append_page(page(1, paragraph("x"), page_number="1"))

        data = builder.finalize().to_dict()

        assert data["title"] == "T"
        assert data["author"] == "A"
        assert data["blocks"] == [{"text": "x", "tag": "body", "page_index": 1}]
        assert data["page_numbers"] == [{"page_index": 1, "page_number": "1"}]


class TestTocDetection:
    """Test table-of-contents collapsing."""

    def heading_run(self):
        return [
            paragraph("Contents", ParagraphTag.HEADING),
            paragraph("1 Introduction 3", ParagraphTag.HEADING),
            paragraph("2 Methods ........ 17", ParagraphTag.HEADING),
            paragraph("Results 42", ParagraphTag.HEADING),
            paragraph("Some body text follows."),
        ]

    def test_run_of_numbered_headings_collapses(self):
        builder = DocumentBuilder()
        builder.append_page(page(1, *self.heading_run()))

        document = builder.finalize()

        assert [b.tag for b in document.blocks] == [
            ParagraphTag.HEADING, ParagraphTag.TOC, ParagraphTag.BODY
        ]
        toc = document.blocks[1]
        assert [(e.number, e.title, e.page) for e in toc.entries] == [
            ("1", "Introduction", "3"),
            ("2", "Methods", "17"),
            ("", "Results", "42"),
        ]

    def test_short_run_is_kept(self):
        builder = DocumentBuilder()
        builder.append_page(page(1, paragraph("Chapter 1", ParagraphTag.HEADING),
                                 paragraph("Body"),
                                 paragraph("Chapter 2", ParagraphTag.HEADING)))

        document = builder.finalize()

        assert all(b.tag != ParagraphTag.TOC for b in document.blocks)

    def test_toc_can_be_disabled(self):
        from pdf2epub.config import TocConfig

        builder = DocumentBuilder(toc_config=TocConfig(enabled=False))
        builder.append_page(page(1, *self.heading_run()))

        document = builder.finalize()

        assert len(document.blocks) == 5

    def test_detector_works_on_blocks_alone(self):
        blocks = [
            ContentBlock(text=f"Part {i}", tag=ParagraphTag.HEADING, page_index=1)
            for i in range(1, 5)
        ]

        collapsed = TocDetector().collapse(blocks)

        assert len(collapsed) == 1
        assert collapsed[0].tag == ParagraphTag.TOC
        assert collapsed[0].text == "Part 1\nPart 2\nPart 3\nPart 4"

    def test_long_headings_are_not_candidates(self):
        long_heading = ContentBlock(text="A" * 90 + " 12", tag=ParagraphTag.HEADING, page_index=1)

        assert TocDetector().is_candidate(long_heading) is False

    def test_parse_toc_entry(self):
        assert parse_toc_entry("3.1 Background ..... 12").number == "3.1"
        assert parse_toc_entry("Preface . . . . 7").title == "Preface"
        assert parse_toc_entry("Preface . . . . 7").page == "7"
        assert parse_toc_entry("4 Discussion").page is None
        assert parse_toc_entry("???").title == "???"


class TestPageNumberDiagnostics:
    """Test page-number continuity checks."""

    def test_consistent_sequence(self):
        assert check_page_numbers([(1, "10"), (2, "11"), (3, None), (4, "13")]) == []

    def test_gap_duplicate_backwards(self):
        issues = check_page_numbers([
            (1, "10"), (2, "13"),   # gap: expected 11
            (3, "13"),              # duplicate
            (4, "5"),               # backwards
        ])

        assert [i.kind for i in issues] == ["gap", "duplicate", "backwards"]
        assert issues[0].expected == 11
        assert "missing" in issues[0].message

    def test_extra_unnumbered_pages(self):
        issues = check_page_numbers([(1, "10"), (4, "11")])

        assert [i.kind for i in issues] == ["extra_pages"]

    def test_finalize_reports_issues(self, caplog):
        import logging

        builder = DocumentBuilder()
        builder.append_page(page(1, page_number="1"))
        builder.append_page(page(2, page_number="1"))

        with caplog.at_level(logging.WARNING):
            document = builder.finalize()

        assert [i.kind for i in document.page_number_issues] == ["duplicate"]
        assert "repeats printed number 1" in caplog.text
