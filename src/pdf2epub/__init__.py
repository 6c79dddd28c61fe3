"""
PDF to EPUB Pipeline
====================

Converts scanned or image-only PDFs into reflowable EPUB e-books.

Main components:
- Page rasterization (pdf2image / poppler)
- Two-stage text OCR (detection + recognition)
- Layout reconstruction (lines, paragraphs, headings, page numbers)
- Document assembly with table-of-contents detection
- EPUB export
"""

__version__ = "0.3.0"
__author__ = "pdf2epub contributors"
