"""
Conversion driver for the PDF to EPUB pipeline.

Owns one ConversionContext per conversion and runs the page loop:
Page Assembler per page (in page order) -> Document Builder -> Exporter.
Page-level failures are recorded and skipped; everything else propagates.
"""

import logging
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Dict, Any, Sequence, Union

from ..errors import PageError
from .assembler import PageAssembler, PageModel
from .document import DocumentBuilder, DocumentModel

logger = logging.getLogger(__name__)


# ============================================================================
# Data Classes
# ============================================================================

@dataclass
class PageFailure:
    """A page skipped because of a page-level error."""
    page_index: int  # 1-based
    stage: str
    message: str

    def to_dict(self) -> Dict[str, Any]:
        return {"page_index": self.page_index, "stage": self.stage, "message": self.message}


@dataclass
class ConversionContext:
    """State scoped to one conversion, passed explicitly to every component."""
    config: Any
    cancel_event: threading.Event = field(default_factory=threading.Event)
    warnings: List[PageFailure] = field(default_factory=list)

    def cancel(self):
        self.cancel_event.set()

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    def record_failure(self, error: PageError, page_index: int) -> PageFailure:
        failure = PageFailure(page_index=page_index, stage=error.stage, message=str(error))
        self.warnings.append(failure)
        logger.warning(f"Skipping page {page_index}: {error}")
        return failure


@dataclass
class ConversionResult:
    """Outcome of a conversion."""
    document: DocumentModel
    output_path: Optional[Path] = None
    failures: List[PageFailure] = field(default_factory=list)
    elapsed: float = 0.0

    @property
    def has_warnings(self) -> bool:
        return bool(self.failures) or bool(self.document.page_number_issues)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "output_path": str(self.output_path) if self.output_path else None,
            "pages": self.document.page_count,
            "blocks": len(self.document.blocks),
            "failures": [f.to_dict() for f in self.failures],
            "elapsed": round(self.elapsed, 3)
        }


# ============================================================================
# Converter
# ============================================================================

class Converter:
    """
    Runs one conversion from a bitmap source to a finalized document.

    The source and engine may be injected (tests, replay); otherwise they are
    created from the input path and the OCR configuration.
    """

    def __init__(
        self,
        config=None,
        source=None,
        engine=None,
        context: Optional[ConversionContext] = None
    ):
        if config is None:
            from ..config import get_config
            config = get_config()
        self.config = config
        self.source = source
        self.engine = engine
        self.context = context or ConversionContext(config=config)

    def cancel(self):
        """Request cancellation; honored before the next page starts."""
        self.context.cancel()

    def _ensure_components(self, input_path: Optional[Union[str, Path]]):
        if self.source is None:
            if input_path is None:
                raise ValueError("Either a bitmap source or an input path is required")
            from .io import open_source
            self.source = open_source(
                input_path,
                grayscale=self.config.image.grayscale,
                timeout=self.config.page.page_timeout
            )

        if self.engine is None:
            from .ocr_text import create_engine
            self.engine = create_engine(self.config.ocr)
            logger.info(f"Using OCR engine: {getattr(self.engine, 'name', type(self.engine).__name__)}")

    def build_document(
        self,
        input_path: Optional[Union[str, Path]] = None,
        page_indices: Optional[Sequence[int]] = None
    ) -> DocumentModel:
        """
        Process pages in order and return the finalized document.

        Args:
            input_path: PDF file or image folder (unused when a source was injected)
            page_indices: 0-based pages to process (default: all)

        Raises:
            InputError, ModelLoadError: Before any page is processed
            ConversionCancelled: If cancelled between pages
        """
        self._ensure_components(input_path)

        total = self.source.page_count()
        if page_indices is None:
            page_indices = list(range(total))
        else:
            page_indices = sorted(set(i for i in page_indices if 0 <= i < total))
        if self.config.max_pages:
            page_indices = page_indices[:self.config.max_pages]

        meta = self.source.metadata()
        builder = DocumentBuilder(
            title=self.config.export.title or meta.get("title") or _title_from_path(input_path),
            author=self.config.export.author or meta.get("author"),
            toc_config=self.config.toc
        )
        assembler = PageAssembler(self.source, self.engine, self.config)

        logger.info(f"Processing {len(page_indices)} of {total} page(s)")

        for count, page_index in enumerate(page_indices, 1):
            try:
                page = assembler.process_page(page_index, self.config.image.dpi, self.context)
            except PageError as e:
                failure = self.context.record_failure(e, page_index + 1)
                page = PageModel.failed(page_index + 1, failure.message)

            builder.append_page(page)
            logger.debug(f"Appended page {page_index + 1} ({count}/{len(page_indices)})")

        return builder.finalize()

    def convert(
        self,
        input_path: Optional[Union[str, Path]],
        output_path: Union[str, Path],
        page_indices: Optional[Sequence[int]] = None,
        fmt: str = "epub"
    ) -> ConversionResult:
        """Build the document and export it."""
        from .export import export_document

        start_time = time.time()
        document = self.build_document(input_path, page_indices)
        path = export_document(document, output_path, fmt, self.config.export)

        result = ConversionResult(
            document=document,
            output_path=path,
            failures=list(self.context.warnings),
            elapsed=time.time() - start_time
        )
        if result.failures:
            logger.warning(f"Conversion finished with {len(result.failures)} skipped page(s)")
        return result


def _title_from_path(input_path) -> Optional[str]:
    if input_path is None:
        return None
    return Path(input_path).stem.replace("_", " ").strip() or None
