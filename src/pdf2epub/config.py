"""
Configuration and constants for the PDF to EPUB pipeline.

This module provides:
- Logging configuration
- Model asset locations
- Processing parameters (rasterization, OCR, layout heuristics, export)
- Environment overrides
"""

import os
from dataclasses import dataclass, field
from typing import Optional, List
from pathlib import Path
import logging

# ============================================================================
# Logging Configuration
# ============================================================================

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

logging.basicConfig(
    level=logging.INFO,
    format=LOG_FORMAT
)
logger = logging.getLogger("pdf2epub")


# ============================================================================
# Directory Paths
# ============================================================================

MODELS_DIR = Path(os.environ.get("PDF2EPUB_MODELS_DIR", Path.home() / ".pdf2epub" / "models"))


# ============================================================================
# Processing Configuration
# ============================================================================

@dataclass
class ImageConfig:
    """Bitmap rendering and optional preprocessing before OCR."""
    dpi: int = 300
    grayscale: bool = True
    deskew: bool = False
    denoise: bool = False
    enhance_contrast: bool = False
    deskew_max_angle: float = 15.0
    denoise_strength: int = 10
    contrast_clip_limit: float = 2.0


@dataclass
class OCRConfig:
    """OCR engine configuration."""
    engine: str = "paddleocr"  # paddleocr, tesseract, easyocr, replay
    language: str = "en"
    use_gpu: bool = False
    # Detection / recognition model assets (PaddleOCR inference directories).
    # None lets the engine resolve its bundled default models.
    det_model_dir: Optional[str] = None
    rec_model_dir: Optional[str] = None
    tesseract_config: str = "--oem 3 --psm 3"
    # Detections below this confidence are treated as scan noise
    confidence_floor: float = 0.5
    max_retries: int = 2
    retry_delay: float = 0.2
    # Directory of saved detections for the replay engine
    detections_dir: Optional[str] = None


@dataclass
class LayoutConfig:
    """
    Layout reconstruction tolerances.

    All distances are expressed relative to the page's median detection
    (or line) height so they hold across scan resolutions.
    """
    line_tolerance_ratio: float = 0.5
    paragraph_gap_ratio: float = 0.8
    indent_tolerance_ratio: float = 1.0
    heading_height_ratio: float = 1.3
    margin_band_ratio: float = 0.08
    page_number_max_digits: int = 4
    page_numbers_from_running_heads: bool = True
    # Whole words that keep their hyphen when a line break follows them
    # ("self-" + "aware"). Only words that are never a syllable break belong
    # here; "ex-", "re-", "co-" and the like split ordinary words.
    compound_prefixes: List[str] = field(default_factory=lambda: ["self", "well"])


@dataclass
class PageConfig:
    """Per-page processing policy."""
    page_timeout: Optional[float] = 300.0  # seconds, None = unlimited


@dataclass
class TocConfig:
    """Table-of-contents candidate detection."""
    enabled: bool = True
    min_entries: int = 3
    max_entry_chars: int = 80


@dataclass
class ExportConfig:
    """EPUB export configuration."""
    title: Optional[str] = None
    author: Optional[str] = None
    language: str = "en"
    pages_per_chapter: int = 20
    extract_page_numbers: bool = False
    stylesheet: str = (
        "body { font-family: serif; line-height: 1.6; margin: 1em; }\n"
        "h1 { margin: 1.5em 0 1em 0; font-size: 1.5em; text-align: center; }\n"
        "h2 { margin: 1.2em 0 0.6em 0; font-size: 1.3em; }\n"
        "p { margin: 0 0 0.8em 0; text-align: justify; }\n"
        "div.toc p { text-align: left; margin: 0 0 0.3em 0; }\n"
    )


@dataclass
class PipelineConfig:
    """Main pipeline configuration."""
    image: ImageConfig = field(default_factory=ImageConfig)
    ocr: OCRConfig = field(default_factory=OCRConfig)
    layout: LayoutConfig = field(default_factory=LayoutConfig)
    page: PageConfig = field(default_factory=PageConfig)
    toc: TocConfig = field(default_factory=TocConfig)
    export: ExportConfig = field(default_factory=ExportConfig)

    # Global settings
    debug_mode: bool = False
    max_pages: Optional[int] = None  # None = process all pages
    dump_detections_dir: Optional[str] = None


# ============================================================================
# Default Configuration Instance
# ============================================================================

def get_config() -> PipelineConfig:
    """Get the default pipeline configuration with environment overrides."""
    config = PipelineConfig()

    if os.environ.get("PDF2EPUB_DPI"):
        config.image.dpi = int(os.environ["PDF2EPUB_DPI"])

    if os.environ.get("PDF2EPUB_OCR_ENGINE"):
        config.ocr.engine = os.environ["PDF2EPUB_OCR_ENGINE"]

    if os.environ.get("PDF2EPUB_USE_GPU", "").lower() == "true":
        config.ocr.use_gpu = True

    if os.environ.get("PDF2EPUB_CONFIDENCE_FLOOR"):
        config.ocr.confidence_floor = float(os.environ["PDF2EPUB_CONFIDENCE_FLOOR"])

    # Model assets
    config.ocr.det_model_dir = os.environ.get("PDF2EPUB_DET_MODEL_DIR", config.ocr.det_model_dir)
    config.ocr.rec_model_dir = os.environ.get("PDF2EPUB_REC_MODEL_DIR", config.ocr.rec_model_dir)

    # Fall back to models installed under MODELS_DIR/det and MODELS_DIR/rec
    if config.ocr.det_model_dir is None and (MODELS_DIR / "det").is_dir():
        config.ocr.det_model_dir = str(MODELS_DIR / "det")
    if config.ocr.rec_model_dir is None and (MODELS_DIR / "rec").is_dir():
        config.ocr.rec_model_dir = str(MODELS_DIR / "rec")

    if os.environ.get("PDF2EPUB_DEBUG", "").lower() == "true":
        config.debug_mode = True

    return config


def check_gpu_available() -> bool:
    """Check if PaddlePaddle was built with CUDA support."""
    try:
        import paddle
        return bool(paddle.is_compiled_with_cuda())
    except ImportError:
        return False
