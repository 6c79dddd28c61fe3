"""
Error taxonomy for the PDF to EPUB pipeline.

Page-level errors (``PageError`` subclasses) are recoverable: the page is
skipped with a warning and the conversion continues. Every other error
aborts the conversion.
"""

from typing import Optional


class Pdf2EpubError(Exception):
    """Base class for all pipeline errors."""


class PageError(Pdf2EpubError):
    """A single page could not be processed."""

    stage = "page"

    def __init__(self, message: str, page_index: Optional[int] = None, stage: Optional[str] = None):
        super().__init__(message)
        self.page_index = page_index
        if stage is not None:
            self.stage = stage

    def __str__(self) -> str:
        message = super().__str__()
        if self.page_index is None:
            return message
        return f"page {self.page_index + 1} ({self.stage}): {message}"


class PageRenderError(PageError):
    """The bitmap source could not rasterize a page."""
    stage = "render"


class OcrEngineError(PageError):
    """The OCR engine failed on a bitmap."""
    stage = "ocr"


class PageTimeoutError(PageError):
    """A page exceeded its processing deadline."""
    stage = "timeout"


class LifecycleError(Pdf2EpubError):
    """A document builder operation was called outside its valid lifecycle."""


class EmissionError(Pdf2EpubError):
    """The EPUB archive could not be produced."""


class ModelLoadError(Pdf2EpubError):
    """OCR model assets or runtime are missing at startup."""


class InputError(Pdf2EpubError):
    """The input document cannot be opened."""


class ConversionCancelled(Pdf2EpubError):
    """The conversion was cancelled between pages."""
