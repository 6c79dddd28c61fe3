"""
I/O utilities for the PDF to EPUB pipeline.

Handles:
- Page rasterization (PDF pages and image folders) into bitmaps
- JSON serialization
- Directory management
- Input type detection
"""

import json
import logging
from pathlib import Path
from typing import List, Union, Optional, Any, Dict
from dataclasses import dataclass, asdict
from enum import Enum

import numpy as np

from ..errors import InputError, PageRenderError, PageTimeoutError

logger = logging.getLogger(__name__)

IMAGE_EXTENSIONS = ('.png', '.jpg', '.jpeg', '.tiff', '.tif', '.bmp')


# ============================================================================
# Bitmap
# ============================================================================

@dataclass
class Bitmap:
    """A rasterized page owned by the page assembler for one page."""
    pixels: np.ndarray
    pixel_format: str = "L"  # "L" (grayscale) or "RGB"
    page_index: Optional[int] = None  # 0-based source page, if known

    @property
    def width(self) -> int:
        return int(self.pixels.shape[1])

    @property
    def height(self) -> int:
        return int(self.pixels.shape[0])

    @classmethod
    def from_pil(cls, image, page_index: Optional[int] = None) -> 'Bitmap':
        """Wrap a PIL image, normalizing the mode to L or RGB."""
        if image.mode not in ("L", "RGB"):
            image = image.convert("RGB")
        return cls(pixels=np.array(image), pixel_format=image.mode, page_index=page_index)


# ============================================================================
# PDF Bitmap Source
# ============================================================================

class PdfBitmapSource:
    """
    Rasterizes PDF pages one at a time using pdf2image (poppler backend).

    Only one page is rendered per call so peak memory stays at a single
    page's raster regardless of document length.
    """

    def __init__(
        self,
        pdf_path: Union[str, Path],
        grayscale: bool = True,
        timeout: Optional[float] = None
    ):
        self.pdf_path = Path(pdf_path)
        self.grayscale = grayscale
        self.timeout = timeout
        self._info: Optional[Dict[str, Any]] = None

        if not self.pdf_path.exists():
            raise InputError(f"PDF file not found: {self.pdf_path}")

    def _pdfinfo(self) -> Dict[str, Any]:
        if self._info is None:
            try:
                from pdf2image import pdfinfo_from_path
            except ImportError as e:
                raise InputError(
                    "pdf2image is required. Install with: pip install pdf2image\n"
                    "Also ensure poppler is installed on your system."
                ) from e

            try:
                self._info = pdfinfo_from_path(str(self.pdf_path))
            except Exception as e:
                raise InputError(f"Failed to read PDF {self.pdf_path}: {e}") from e
        return self._info

    def page_count(self) -> int:
        """Number of pages in the PDF."""
        return int(self._pdfinfo().get("Pages", 0))

    def metadata(self) -> Dict[str, str]:
        """Title and author from the PDF info dictionary, when present."""
        info = self._pdfinfo()
        meta = {}
        for key in ("Title", "Author"):
            value = str(info.get(key, "") or "").strip()
            if value:
                meta[key.lower()] = value
        return meta

    def render_page(self, page_index: int, dpi: int = 300) -> Bitmap:
        """
        Render one page to a bitmap.

        Args:
            page_index: 0-based page index
            dpi: Rasterization resolution

        Returns:
            Bitmap of the rendered page

        Raises:
            PageRenderError: If the index is out of range or poppler fails
            PageTimeoutError: If poppler exceeds the render timeout
        """
        from pdf2image import convert_from_path
        from pdf2image.exceptions import PDFPopplerTimeoutError

        count = self.page_count()
        if page_index < 0 or page_index >= count:
            raise PageRenderError(
                f"page index out of range (document has {count} pages)",
                page_index=page_index
            )

        try:
            images = convert_from_path(
                str(self.pdf_path),
                dpi=dpi,
                first_page=page_index + 1,
                last_page=page_index + 1,
                grayscale=self.grayscale,
                timeout=self.timeout
            )
        except PDFPopplerTimeoutError as e:
            raise PageTimeoutError(f"rendering timed out: {e}", page_index=page_index) from e
        except Exception as e:
            raise PageRenderError(f"rendering failed: {e}", page_index=page_index) from e

        if not images:
            raise PageRenderError("poppler returned no image", page_index=page_index)

        bitmap = Bitmap.from_pil(images[0], page_index=page_index)
        logger.debug(f"Rendered page {page_index + 1} at {dpi} DPI ({bitmap.width}x{bitmap.height})")
        return bitmap


# ============================================================================
# Image Folder Source
# ============================================================================

class ImageFolderSource:
    """Serves a folder of pre-scanned page images through the bitmap source interface."""

    def __init__(self, folder_path: Union[str, Path], grayscale: bool = True):
        self.folder_path = Path(folder_path)
        self.grayscale = grayscale

        if not self.folder_path.is_dir():
            raise InputError(f"Not a directory: {self.folder_path}")

        self.files = sorted(
            f for f in self.folder_path.iterdir()
            if f.suffix.lower() in IMAGE_EXTENSIONS
        )
        logger.info(f"Found {len(self.files)} images in {self.folder_path}")

    def page_count(self) -> int:
        return len(self.files)

    def metadata(self) -> Dict[str, str]:
        return {}

    def render_page(self, page_index: int, dpi: int = 300) -> Bitmap:
        """Load one page image. The dpi argument is ignored; scans keep their resolution."""
        from PIL import Image

        if page_index < 0 or page_index >= len(self.files):
            raise PageRenderError(
                f"page index out of range (folder has {len(self.files)} images)",
                page_index=page_index
            )

        try:
            with Image.open(self.files[page_index]) as img:
                img = img.convert("L" if self.grayscale else "RGB")
                return Bitmap.from_pil(img, page_index=page_index)
        except OSError as e:
            raise PageRenderError(f"could not decode {self.files[page_index].name}: {e}",
                                  page_index=page_index) from e


def open_source(input_path: Union[str, Path], grayscale: bool = True, timeout: Optional[float] = None):
    """Create the bitmap source matching the input type."""
    input_type = detect_input_type(input_path)

    if input_type == 'pdf':
        return PdfBitmapSource(input_path, grayscale=grayscale, timeout=timeout)
    elif input_type == 'image_folder':
        return ImageFolderSource(input_path, grayscale=grayscale)

    raise InputError(f"Unsupported input: {input_path}")


# ============================================================================
# JSON Serialization
# ============================================================================

class EnhancedJSONEncoder(json.JSONEncoder):
    """JSON encoder that handles numpy values, enums and dataclasses."""

    def default(self, obj):
        if isinstance(obj, np.ndarray):
            return obj.tolist()
        if isinstance(obj, np.integer):
            return int(obj)
        if isinstance(obj, np.floating):
            return float(obj)
        if isinstance(obj, Enum):
            return obj.value
        if hasattr(obj, 'to_dict'):
            return obj.to_dict()
        if hasattr(obj, '__dataclass_fields__'):
            return asdict(obj)
        if isinstance(obj, Path):
            return str(obj)
        return super().default(obj)


def save_json(
    data: Any,
    output_path: Union[str, Path],
    indent: int = 2,
    ensure_ascii: bool = False
) -> Path:
    """
    Save data to a JSON file.

    Args:
        data: Data to serialize (dict, list, dataclass, etc.)
        output_path: Path to save the JSON file
        indent: Indentation level for pretty printing
        ensure_ascii: If True, escape non-ASCII characters

    Returns:
        Path to the saved file
    """
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    with open(output_path, 'w', encoding='utf-8') as f:
        json.dump(data, f, indent=indent, ensure_ascii=ensure_ascii, cls=EnhancedJSONEncoder)

    logger.debug(f"Saved JSON: {output_path}")
    return output_path


def load_json(json_path: Union[str, Path]) -> Any:
    """Load data from a JSON file."""
    json_path = Path(json_path)
    if not json_path.exists():
        raise FileNotFoundError(f"JSON file not found: {json_path}")

    with open(json_path, 'r', encoding='utf-8') as f:
        return json.load(f)


# ============================================================================
# Directory Management
# ============================================================================

def ensure_dir(path: Union[str, Path]) -> Path:
    """Ensure a directory exists, creating it if necessary."""
    path = Path(path)
    path.mkdir(parents=True, exist_ok=True)
    return path


# ============================================================================
# File Type Detection
# ============================================================================

def detect_input_type(input_path: Union[str, Path]) -> str:
    """
    Detect the type of input file or directory.

    Returns:
        One of: 'pdf', 'image_folder', 'unknown'
    """
    input_path = Path(input_path)

    if input_path.is_dir():
        has_images = any(
            f.suffix.lower() in IMAGE_EXTENSIONS
            for f in input_path.iterdir()
        )
        return 'image_folder' if has_images else 'unknown'

    if not input_path.exists():
        return 'unknown'

    if input_path.suffix.lower() == '.pdf':
        return 'pdf'

    return 'unknown'


def default_output_path(input_path: Union[str, Path], suffix: str = ".epub") -> Path:
    """Derive the output path next to the input (book.pdf -> book.epub)."""
    input_path = Path(input_path)
    if input_path.is_dir():
        return input_path.parent / f"{input_path.name}{suffix}"
    return input_path.with_suffix(suffix)


def parse_page_range(page_str: str, max_pages: int) -> List[int]:
    """Parse a 1-based page range string ('1-5', '1,3,5') into 0-based indices."""
    pages = []

    for part in page_str.split(","):
        part = part.strip()
        if not part:
            continue
        if "-" in part:
            start, end = part.split("-", 1)
            start = max(int(start), 1)
            end = min(int(end), max_pages)
            pages.extend(range(start, end + 1))
        else:
            page = int(part)
            if 1 <= page <= max_pages:
                pages.append(page)

    return [p - 1 for p in sorted(set(pages))]
