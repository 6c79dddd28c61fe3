"""
Shared fixtures and fakes for the pipeline tests.
"""

import sys
import time
from pathlib import Path

import numpy as np
import pytest

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from pdf2epub.config import PipelineConfig
from pdf2epub.errors import OcrEngineError, PageRenderError
from pdf2epub.utils.io import Bitmap
from pdf2epub.utils.ocr_text import BoundingBox, RawDetection

PAGE_WIDTH = 800
PAGE_HEIGHT = 1000


def make_detection(text, x1, y1, x2, y2, confidence=0.95):
    return RawDetection(bbox=BoundingBox(x1, y1, x2, y2), text=text, confidence=confidence)


def body_lines(texts, top=200, left=100, line_height=20, spacing=26, indent_first=True):
    """One paragraph of body lines, first line indented by two line heights."""
    detections = []
    for i, text in enumerate(texts):
        x1 = left + (2 * line_height if indent_first and i == 0 else 0)
        y1 = top + i * spacing
        detections.append(make_detection(text, x1, y1, x1 + 10 * len(text), y1 + line_height))
    return detections


class FakeBitmapSource:
    """Blank pages of a fixed size; selected pages fail to render."""

    def __init__(self, page_count=3, fail_pages=(), width=PAGE_WIDTH, height=PAGE_HEIGHT,
                 metadata=None):
        self._page_count = page_count
        self.fail_pages = set(fail_pages)
        self.width = width
        self.height = height
        self._metadata = metadata or {}
        self.rendered = []

    def page_count(self):
        return self._page_count

    def metadata(self):
        return dict(self._metadata)

    def render_page(self, page_index, dpi=300):
        if page_index < 0 or page_index >= self._page_count:
            raise PageRenderError("page index out of range", page_index=page_index)
        if page_index in self.fail_pages:
            raise PageRenderError("corrupt page data", page_index=page_index)
        self.rendered.append((page_index, dpi))
        pixels = np.full((self.height, self.width), 255, dtype=np.uint8)
        return Bitmap(pixels=pixels, pixel_format="L", page_index=page_index)


class FakeOcrEngine:
    """Deterministic engine serving fixed detections per 0-based page index."""

    name = "fake"

    def __init__(self, pages=None, failures=None, delay=0.0):
        self.pages = pages or {}
        # page_index -> number of calls that raise before succeeding
        self.failures = dict(failures or {})
        self.delay = delay
        self.calls = []

    def detect_and_recognize(self, bitmap):
        self.calls.append(bitmap.page_index)
        if self.delay:
            time.sleep(self.delay)
        remaining = self.failures.get(bitmap.page_index, 0)
        if remaining:
            self.failures[bitmap.page_index] = remaining - 1
            raise OcrEngineError("model runtime error")
        return list(self.pages.get(bitmap.page_index, []))


@pytest.fixture
def config():
    """Pipeline configuration without retry delays."""
    cfg = PipelineConfig()
    cfg.ocr.retry_delay = 0.0
    return cfg


@pytest.fixture
def page_geometry():
    from pdf2epub.utils.layout import PageGeometry
    return PageGeometry(width=PAGE_WIDTH, height=PAGE_HEIGHT)
