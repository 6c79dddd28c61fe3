"""
Layout reconstruction module for the PDF to EPUB pipeline.

Provides:
- Line grouping (raw detections -> visual text lines)
- Paragraph grouping with hyphenation repair
- Region classification (body, heading, page number, header/footer)
- Reading order (top-to-bottom, left-to-right within a line)

All tolerances are relative to the page's median detection height so the
same configuration works across scan resolutions.
"""

import logging
import re
from dataclasses import dataclass, replace
from enum import Enum
from typing import List, Optional, Dict, Any, Sequence, Tuple

import numpy as np

from .ocr_text import BoundingBox, RawDetection

logger = logging.getLogger(__name__)


# ============================================================================
# Data Classes and Enums
# ============================================================================

class ParagraphTag(Enum):
    """Classification of a reconstructed paragraph."""
    BODY = "body"
    HEADING = "heading"
    PAGE_NUMBER = "page_number"
    HEADER = "header"
    FOOTER = "footer"
    UNKNOWN = "unknown"
    TOC = "toc"


@dataclass(frozen=True)
class PageGeometry:
    """Page dimensions plus the median detection height used as font-size reference."""
    width: float
    height: float
    median_detection_height: Optional[float] = None

    @classmethod
    def from_bitmap(cls, bitmap) -> 'PageGeometry':
        return cls(width=float(bitmap.width), height=float(bitmap.height))


@dataclass(frozen=True)
class TextLine:
    """Detections lying on one visual line, ordered left-to-right."""
    detections: Tuple[RawDetection, ...]

    def __post_init__(self):
        ordered = tuple(sorted(self.detections, key=lambda d: (d.bbox.x1, d.bbox.y1)))
        object.__setattr__(self, "detections", ordered)

    @property
    def bbox(self) -> BoundingBox:
        return BoundingBox.union_of([d.bbox for d in self.detections])

    @property
    def baseline(self) -> float:
        """Median bottom edge of the members."""
        return float(np.median([d.bbox.y2 for d in self.detections]))

    @property
    def center_y(self) -> float:
        return float(np.mean([d.bbox.center_y for d in self.detections]))

    @property
    def mean_detection_height(self) -> float:
        return float(np.mean([d.bbox.height for d in self.detections]))

    @property
    def text(self) -> str:
        return " ".join(d.text.strip() for d in self.detections if d.text.strip())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "text": self.text,
            "bbox": list(self.bbox.to_tuple()),
            "baseline": self.baseline,
            "detections": [d.to_dict() for d in self.detections],
        }


@dataclass
class Paragraph:
    """Vertically contiguous lines sharing a left edge, with its classification."""
    lines: List[TextLine]
    text: str
    tag: ParagraphTag = ParagraphTag.BODY

    @property
    def bbox(self) -> BoundingBox:
        return BoundingBox.union_of([line.bbox for line in self.lines])

    @property
    def detections(self) -> List[RawDetection]:
        return [d for line in self.lines for d in line.detections]

    @property
    def mean_detection_height(self) -> float:
        return float(np.mean([d.bbox.height for d in self.detections]))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tag": self.tag.value,
            "text": self.text,
            "bbox": list(self.bbox.to_tuple()),
            "lines": [line.text for line in self.lines],
        }


# ============================================================================
# Text Helpers
# ============================================================================

_HYPHEN_BREAK = re.compile(r"([^\W\d_]+)-$")
_DECORATION = r"[\s\-–—\[\]\(\)\.\|•·~*]*"


def join_line_texts(texts: Sequence[str], compound_prefixes: Sequence[str] = ()) -> str:
    """
    Join line texts with single spaces, repairing words split across lines.

    "exam-" + "ple" becomes "example"; "self-" + "aware" keeps its hyphen
    ("self-aware") when the fragment is a known compound prefix.
    """
    prefixes = {p.lower() for p in compound_prefixes}
    result = ""

    for raw in texts:
        text = " ".join(raw.split())
        if not text:
            continue
        if not result:
            result = text
            continue

        match = _HYPHEN_BREAK.search(result)
        if match and text[0].isalpha():
            if match.group(1).lower() in prefixes:
                result = result + text
            else:
                result = result[:-1] + text
        else:
            result = f"{result} {text}"

    return result


def page_number_value(text: str, max_digits: int = 4) -> Optional[str]:
    """Return the digits of a lone page-number token ("- 12 -", "[12]"), else None."""
    match = re.fullmatch(rf"{_DECORATION}(\d{{1,{max_digits}}}){_DECORATION}", text.strip())
    if match is None:
        return None
    return match.group(1)


_SECTION_WORDS = {"chapter", "chap", "part", "section", "sect", "volume", "vol", "book"}


def running_head_page_number(paragraph: Paragraph, max_digits: int = 4) -> Optional[str]:
    """
    Return a page number printed at the outer end of a running head.

    The number must be its own detection, first or last on its line
    ("42" + "THE TITLE"). A trailing number after a word such as "Chapter"
    or "Part" is a section number and is ignored.
    """
    for line in paragraph.lines:
        tokens = [d.text.strip() for d in line.detections if d.text and d.text.strip()]
        if len(tokens) < 2:
            continue

        lead = page_number_value(tokens[0], max_digits)
        if lead is not None:
            return lead

        trail = page_number_value(tokens[-1], max_digits)
        if trail is not None:
            previous = tokens[-2].split()[-1].lower().strip(".:")
            if previous not in _SECTION_WORDS:
                return trail
    return None


# ============================================================================
# Layout Reconstructor
# ============================================================================

class LayoutReconstructor:
    """
    Rebuilds reading-ordered paragraphs from the unordered detections of one page.

    Stateless between calls; every call works only on the detections it is given.
    """

    def __init__(self, config=None):
        if config is None:
            from ..config import LayoutConfig
            config = LayoutConfig()
        self.config = config

    def reconstruct(
        self,
        detections: Sequence[RawDetection],
        page_geometry: PageGeometry
    ) -> List[Paragraph]:
        """
        Group detections into lines, lines into paragraphs, and tag each paragraph.

        Args:
            detections: Raw detections for one bitmap
            page_geometry: Dimensions of that bitmap

        Returns:
            Paragraphs in reading order (empty for a blank page)
        """
        if not detections:
            logger.info("No detections on page; nothing to reconstruct")
            return []

        if page_geometry.median_detection_height is None:
            page_geometry = replace(
                page_geometry,
                median_detection_height=_median_height(d.bbox for d in detections)
            )

        lines = self.group_into_lines(detections)
        paragraphs = self.group_into_paragraphs(lines)
        for paragraph in paragraphs:
            paragraph.tag = self.classify(paragraph, page_geometry)

        logger.debug(
            f"Reconstructed {len(detections)} detections into {len(lines)} lines, "
            f"{len(paragraphs)} paragraphs"
        )
        return paragraphs

    def group_into_lines(self, detections: Sequence[RawDetection]) -> List[TextLine]:
        """
        Merge detections whose vertical centers fall within the line tolerance.

        Lines are seeded top-down, then every detection is settled on the
        line whose remaining members' center is nearest, ties going to the
        larger horizontal overlap. The result is a partition of the input.
        """
        if not detections:
            return []

        tolerance = self.config.line_tolerance_ratio * _median_height(d.bbox for d in detections)
        order = sorted(range(len(detections)),
                       key=lambda i: (detections[i].bbox.center_y, detections[i].bbox.x1))

        # 1. Seed lines top-down
        groups: List[List[int]] = []
        for i in order:
            center = detections[i].bbox.center_y
            best = None
            best_distance = None
            for g, members in enumerate(groups):
                distance = abs(center - self._line_center(detections, members))
                if distance <= tolerance and (best_distance is None or distance < best_distance):
                    best, best_distance = g, distance
            if best is None:
                groups.append([i])
            else:
                groups[best].append(i)

        # 2. Settle each detection on its nearest line
        settled: List[List[int]] = [[] for _ in groups]
        for g, members in enumerate(groups):
            for i in members:
                det = detections[i]
                best = g
                best_key = None
                for h, candidates in enumerate(groups):
                    others = [k for k in candidates if k != i]
                    if not others:
                        continue
                    distance = abs(det.bbox.center_y - self._line_center(detections, others))
                    if distance > tolerance:
                        continue
                    extent = BoundingBox.union_of([detections[k].bbox for k in others])
                    key = (distance, -det.bbox.horizontal_overlap(extent))
                    if best_key is None or key < best_key:
                        best, best_key = h, key
                settled[best].append(i)

        lines = [TextLine(tuple(detections[i] for i in members)) for members in settled if members]
        lines.sort(key=lambda line: (line.center_y, line.bbox.x1))
        return lines

    @staticmethod
    def _line_center(detections: Sequence[RawDetection], members: List[int]) -> float:
        return float(np.median([detections[k].bbox.center_y for k in members]))

    def group_into_paragraphs(self, lines: Sequence[TextLine]) -> List[Paragraph]:
        """Split top-to-bottom lines into paragraphs on gaps, indents and size changes."""
        if not lines:
            return []

        median_line_height = _median_height(line.bbox for line in lines)
        gap_limit = self.config.paragraph_gap_ratio * median_line_height
        indent_tolerance = self.config.indent_tolerance_ratio * median_line_height

        groups: List[List[TextLine]] = [[lines[0]]]

        for line in lines[1:]:
            current = groups[-1]
            prev = current[-1]

            gap = line.bbox.y1 - prev.bbox.y2
            shift = line.bbox.x1 - prev.bbox.x1

            if gap > gap_limit:
                split = True
            elif self._height_jump(current, line):
                split = True
            elif shift > indent_tolerance:
                split = True  # first-line indent
            elif shift < -indent_tolerance and len(current) >= 2:
                split = True
            else:
                split = False

            if split:
                groups.append([line])
            else:
                current.append(line)

        return [
            Paragraph(
                lines=group,
                text=join_line_texts([line.text for line in group], self.config.compound_prefixes)
            )
            for group in groups
        ]

    def _height_jump(self, current: List[TextLine], line: TextLine) -> bool:
        para_height = float(np.mean([l.mean_detection_height for l in current]))
        line_height = line.mean_detection_height
        smaller = min(para_height, line_height)
        if smaller <= 0:
            return False
        return max(para_height, line_height) / smaller > self.config.heading_height_ratio

    def classify(self, paragraph: Paragraph, page_geometry: PageGeometry) -> ParagraphTag:
        """
        Tag a paragraph by position and size.

        Priority: page number in a margin band, other margin text as
        header/footer, oversized text as heading, empty text as unknown,
        everything else body. The assembler drops blank detections before
        reconstruction, so UNKNOWN only reaches callers that pass them to
        reconstruct() directly.
        """
        band = self.config.margin_band_ratio * page_geometry.height
        center_y = paragraph.bbox.center_y
        in_top = center_y <= band
        in_bottom = center_y >= page_geometry.height - band

        if in_top or in_bottom:
            if page_number_value(paragraph.text, self.config.page_number_max_digits) is not None:
                return ParagraphTag.PAGE_NUMBER
            return ParagraphTag.HEADER if in_top else ParagraphTag.FOOTER

        median = page_geometry.median_detection_height
        if median and paragraph.mean_detection_height > self.config.heading_height_ratio * median:
            return ParagraphTag.HEADING

        if not paragraph.text.strip():
            return ParagraphTag.UNKNOWN

        return ParagraphTag.BODY


def _median_height(boxes) -> float:
    heights = [b.height for b in boxes if b.height > 0]
    if not heights:
        return 1.0
    return float(np.median(heights))
