"""
Page assembler module for the PDF to EPUB pipeline.

Provides:
- Page data model (PageModel)
- Per-page orchestration: render -> OCR -> confidence filter -> layout
- Page-number extraction out of the body
- Bounded OCR retries and a cooperative page deadline
"""

import logging
import time
from dataclasses import dataclass, field
from typing import List, Optional, Dict, Any

from ..errors import ConversionCancelled, OcrEngineError, PageTimeoutError
from .layout import LayoutReconstructor, PageGeometry, Paragraph, ParagraphTag
from .layout import page_number_value, running_head_page_number
from .ocr_text import RawDetection

logger = logging.getLogger(__name__)


# ============================================================================
# Data Classes
# ============================================================================

@dataclass
class PageModel:
    """Structured output for one page."""
    page_index: int  # 1-based
    body: List[Paragraph] = field(default_factory=list)
    page_number: Optional[str] = None
    status: str = "success"  # success, failed
    error: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict, compare=False)

    @classmethod
    def empty(cls, page_index: int) -> 'PageModel':
        return cls(page_index=page_index)

    @classmethod
    def failed(cls, page_index: int, error: str) -> 'PageModel':
        """Placeholder that keeps a skipped page's slot in the document."""
        return cls(page_index=page_index, status="failed", error=error)

    @property
    def is_empty(self) -> bool:
        return not self.body

    def to_dict(self) -> Dict[str, Any]:
        result = {
            "page_index": self.page_index,
            "page_number": self.page_number,
            "status": self.status,
            "body": [p.to_dict() for p in self.body],
            "metadata": self.metadata
        }
        if self.error is not None:
            result["error"] = self.error
        return result


# ============================================================================
# Page Assembler
# ============================================================================

class PageAssembler:
    """
    Produces one PageModel per page index.

    Coordinates:
    - Bitmap source (rasterization)
    - OCR engine (detection + recognition)
    - Layout reconstructor (lines, paragraphs, tags)

    Nothing page-scoped is kept on the assembler between calls.
    """

    def __init__(
        self,
        source,
        engine,
        config=None,
        reconstructor: Optional[LayoutReconstructor] = None
    ):
        if config is None:
            from ..config import PipelineConfig
            config = PipelineConfig()
        self.source = source
        self.engine = engine
        self.config = config
        self.reconstructor = reconstructor or LayoutReconstructor(config.layout)

    def process_page(
        self,
        page_index: int,
        resolution: Optional[int] = None,
        context=None
    ) -> PageModel:
        """
        Render, OCR and reconstruct a single page.

        Args:
            page_index: 0-based page index in the source
            resolution: Rasterization DPI (defaults to ImageConfig.dpi)
            context: Optional conversion context carrying a cancel_event

        Returns:
            PageModel with a 1-based page index; its body never contains
            a page-number paragraph

        Raises:
            ConversionCancelled: If the conversion was cancelled
            PageRenderError: If the page cannot be rasterized
            OcrEngineError: If OCR still fails after the retries
            PageTimeoutError: If the page exceeds its deadline
        """
        cancel_event = getattr(context, "cancel_event", None)
        if cancel_event is not None and cancel_event.is_set():
            raise ConversionCancelled(f"cancelled before page {page_index + 1}")

        resolution = resolution or self.config.image.dpi
        start_time = time.monotonic()
        timeout = self.config.page.page_timeout
        deadline = start_time + timeout if timeout else None

        # 1. Render
        bitmap = self.source.render_page(page_index, resolution)
        if bitmap.page_index is None:
            bitmap.page_index = page_index
        self._check_deadline(page_index, deadline, "render")

        # 2. Optional preprocessing
        deskew_angle = 0.0
        image_config = self.config.image
        if image_config.deskew or image_config.denoise or image_config.enhance_contrast:
            from .images import preprocess_bitmap
            preprocessed = preprocess_bitmap(bitmap, image_config)
            bitmap = preprocessed.bitmap
            deskew_angle = preprocessed.deskew_angle

        geometry = PageGeometry.from_bitmap(bitmap)

        # 3. OCR
        detections = self._recognize(bitmap, page_index, deadline)
        del bitmap  # page raster is no longer needed

        if self.config.dump_detections_dir:
            from .ocr_text import save_detections
            save_detections(detections, self.config.dump_detections_dir, page_index,
                            getattr(self.engine, "name", ""))

        # 4. Confidence filter
        kept = self._filter_detections(detections)
        logger.debug(
            f"Page {page_index + 1}: kept {len(kept)}/{len(detections)} detections "
            f"(floor {self.config.ocr.confidence_floor})"
        )

        # 5. Layout
        self._check_deadline(page_index, deadline, "layout")
        paragraphs = self.reconstructor.reconstruct(kept, geometry)

        # 6. Page number extraction
        body, page_number = self._extract_page_number(paragraphs)

        elapsed = time.monotonic() - start_time
        logger.info(f"Page {page_index + 1} processed in {elapsed:.2f}s "
                    f"({len(body)} paragraphs, page number: {page_number or '-'})")

        return PageModel(
            page_index=page_index + 1,
            body=body,
            page_number=page_number,
            metadata={
                "width": geometry.width,
                "height": geometry.height,
                "detections": len(detections),
                "kept_detections": len(kept),
                "deskew_angle": deskew_angle,
                "elapsed": round(elapsed, 3)
            }
        )

    def _recognize(self, bitmap, page_index: int, deadline: Optional[float]) -> List[RawDetection]:
        """Run OCR with bounded retries on OcrEngineError."""
        max_retries = max(0, self.config.ocr.max_retries)
        attempt = 0

        while True:
            try:
                detections = list(self.engine.detect_and_recognize(bitmap))
                self._check_deadline(page_index, deadline, "ocr")
                return detections
            except OcrEngineError as e:
                if e.page_index is None:
                    e.page_index = page_index
                if attempt >= max_retries:
                    raise
                attempt += 1
                logger.warning(f"OCR attempt {attempt} failed on page {page_index + 1}: "
                               f"{e}; retrying")
                self._check_deadline(page_index, deadline, "ocr")
                time.sleep(self.config.ocr.retry_delay)

    def _filter_detections(self, detections: List[RawDetection]) -> List[RawDetection]:
        floor = self.config.ocr.confidence_floor
        return [
            d for d in detections
            if d.confidence >= floor and d.text and d.text.strip()
        ]

    def _extract_page_number(self, paragraphs: List[Paragraph]):
        """Move page-number paragraphs out of the body; the first one wins."""
        max_digits = self.config.layout.page_number_max_digits
        body = [p for p in paragraphs if p.tag != ParagraphTag.PAGE_NUMBER]
        numbers = [p for p in paragraphs if p.tag == ParagraphTag.PAGE_NUMBER]

        page_number = None
        if numbers:
            page_number = page_number_value(numbers[0].text, max_digits)
            if len(numbers) > 1:
                logger.debug(f"Ignoring {len(numbers) - 1} extra page-number paragraphs")
        elif self.config.layout.page_numbers_from_running_heads:
            for p in body:
                if p.tag in (ParagraphTag.HEADER, ParagraphTag.FOOTER):
                    page_number = running_head_page_number(p, max_digits)
                    if page_number is not None:
                        break

        return body, page_number

    @staticmethod
    def _check_deadline(page_index: int, deadline: Optional[float], stage: str):
        if deadline is not None and time.monotonic() > deadline:
            raise PageTimeoutError(f"page deadline exceeded after {stage}", page_index=page_index)
