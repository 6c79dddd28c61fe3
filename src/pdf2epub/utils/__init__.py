"""
Pipeline modules for PDF to EPUB conversion.
"""

from .io import Bitmap, PdfBitmapSource, ImageFolderSource, open_source, save_json, ensure_dir
from .images import preprocess_bitmap, estimate_skew, deskew, denoise, enhance_contrast
from .ocr_text import BoundingBox, RawDetection, OcrEngine, create_engine
from .layout import LayoutReconstructor, TextLine, Paragraph, ParagraphTag, PageGeometry
from .assembler import PageAssembler, PageModel
from .document import DocumentBuilder, DocumentModel, ContentBlock
from .toc import TocDetector, TocEntry
from .export import EpubExporter, export_json
from .converter import Converter, ConversionContext, ConversionResult, PageFailure

__all__ = [
    # IO
    "Bitmap", "PdfBitmapSource", "ImageFolderSource", "open_source", "save_json", "ensure_dir",
    # Images
    "preprocess_bitmap", "estimate_skew", "deskew", "denoise", "enhance_contrast",
    # OCR
    "BoundingBox", "RawDetection", "OcrEngine", "create_engine",
    # Layout
    "LayoutReconstructor", "TextLine", "Paragraph", "ParagraphTag", "PageGeometry",
    # Assembly
    "PageAssembler", "PageModel", "DocumentBuilder", "DocumentModel", "ContentBlock",
    "TocDetector", "TocEntry",
    # Export
    "EpubExporter", "export_json",
    # Conversion
    "Converter", "ConversionContext", "ConversionResult", "PageFailure",
]
