"""
Text OCR module for the PDF to EPUB pipeline.

Provides:
- Raw detection data model (bounding box + text + confidence)
- A structural OCR engine interface (detection + recognition as one call)
- Engine adapters (PaddleOCR, Tesseract, EasyOCR)
- A replay engine that serves previously saved detections
"""

import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Tuple, Dict, Any, Sequence, Union, Protocol

import numpy as np

from ..errors import ModelLoadError, OcrEngineError
from .images import to_bgr, to_rgb
from .io import Bitmap, ensure_dir, load_json, save_json

logger = logging.getLogger(__name__)


# ============================================================================
# Data Classes
# ============================================================================

@dataclass(frozen=True)
class BoundingBox:
    """Axis-aligned box in bitmap pixel coordinates."""
    x1: float
    y1: float
    x2: float
    y2: float

    @property
    def width(self) -> float:
        return self.x2 - self.x1

    @property
    def height(self) -> float:
        return self.y2 - self.y1

    @property
    def area(self) -> float:
        return self.width * self.height

    @property
    def center_x(self) -> float:
        return (self.x1 + self.x2) / 2

    @property
    def center_y(self) -> float:
        return (self.y1 + self.y2) / 2

    @property
    def center(self) -> Tuple[float, float]:
        return (self.center_x, self.center_y)

    def to_tuple(self) -> Tuple[float, float, float, float]:
        return (self.x1, self.y1, self.x2, self.y2)

    @classmethod
    def from_polygon(cls, points: Sequence[Sequence[float]]) -> 'BoundingBox':
        xs = [float(p[0]) for p in points]
        ys = [float(p[1]) for p in points]
        return cls(min(xs), min(ys), max(xs), max(ys))

    @classmethod
    def union_of(cls, boxes: Sequence['BoundingBox']) -> 'BoundingBox':
        return cls(
            min(b.x1 for b in boxes),
            min(b.y1 for b in boxes),
            max(b.x2 for b in boxes),
            max(b.y2 for b in boxes)
        )

    def horizontal_overlap(self, other: 'BoundingBox') -> float:
        return max(0.0, min(self.x2, other.x2) - max(self.x1, other.x1))

    def vertical_overlap(self, other: 'BoundingBox') -> float:
        return max(0.0, min(self.y2, other.y2) - max(self.y1, other.y1))


@dataclass(frozen=True)
class RawDetection:
    """One recognized text region as produced by an OCR engine."""
    bbox: BoundingBox
    text: str
    confidence: float
    polygon: Optional[Tuple[Tuple[float, float], ...]] = None

    def __post_init__(self):
        object.__setattr__(self, "confidence", min(1.0, max(0.0, float(self.confidence))))

    @classmethod
    def from_polygon(cls, points: Sequence[Sequence[float]], text: str, confidence: float) -> 'RawDetection':
        polygon = tuple((float(p[0]), float(p[1])) for p in points)
        return cls(
            bbox=BoundingBox.from_polygon(polygon),
            text=text,
            confidence=confidence,
            polygon=polygon
        )

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "bbox": list(self.bbox.to_tuple()),
            "text": self.text,
            "confidence": self.confidence,
        }
        if self.polygon is not None:
            data["polygon"] = [list(p) for p in self.polygon]
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'RawDetection':
        if data.get("polygon"):
            return cls.from_polygon(data["polygon"], data.get("text", ""), data.get("confidence", 0.0))
        x1, y1, x2, y2 = data["bbox"]
        return cls(
            bbox=BoundingBox(float(x1), float(y1), float(x2), float(y2)),
            text=data.get("text", ""),
            confidence=data.get("confidence", 0.0)
        )


# ============================================================================
# Engine Interface
# ============================================================================

class OcrEngine(Protocol):
    """
    Anything that turns a bitmap into raw detections.

    Detection and recognition run as one black-box call. Implementations
    raise OcrEngineError for failures on a given bitmap and ModelLoadError
    from their constructor when model assets are unavailable.
    """

    name: str

    def detect_and_recognize(self, bitmap: Bitmap) -> List[RawDetection]:
        ...


def create_engine(config) -> OcrEngine:
    """
    Create the OCR engine selected in an OCRConfig.

    Raises:
        ModelLoadError: If the engine or its model assets are unavailable
    """
    engine_name = config.engine
    if engine_name == "paddleocr":
        return PaddleOCREngine(
            language=config.language,
            use_gpu=config.use_gpu,
            det_model_dir=config.det_model_dir,
            rec_model_dir=config.rec_model_dir
        )
    elif engine_name == "tesseract":
        return TesseractEngine(language=config.language, config=config.tesseract_config)
    elif engine_name == "easyocr":
        return EasyOCREngine(language=config.language, use_gpu=config.use_gpu)
    elif engine_name == "replay":
        if not config.detections_dir:
            raise ModelLoadError("The replay engine needs a detections directory")
        return ReplayOcrEngine(config.detections_dir)
    else:
        raise ModelLoadError(f"Unknown OCR engine: {engine_name}")


# ============================================================================
# PaddleOCR Engine
# ============================================================================

class PaddleOCREngine:
    """
    Two-stage OCR using PaddleOCR (text detection model + text recognition model).

    Explicit model directories are checked at construction; a missing asset
    is a startup error, never a per-page one.
    """

    name = "paddleocr"

    def __init__(
        self,
        language: str = "en",
        use_gpu: bool = False,
        det_model_dir: Optional[str] = None,
        rec_model_dir: Optional[str] = None
    ):
        for label, model_dir in (("detection", det_model_dir), ("recognition", rec_model_dir)):
            if model_dir is not None and not Path(model_dir).exists():
                raise ModelLoadError(f"Text {label} model not found: {model_dir}")

        try:
            from paddleocr import PaddleOCR
        except ImportError as e:
            raise ModelLoadError(
                "PaddleOCR not available. Install with: pip install 'pdf2epub[paddle]'"
            ) from e

        # Suppress PaddleOCR logging
        logging.getLogger('ppocr').setLevel(logging.WARNING)
        logging.getLogger('paddleocr').setLevel(logging.WARNING)

        lang_map = {"eng": "en", "chi_sim": "ch", "chi_tra": "chinese_cht"}
        paddle_lang = lang_map.get(language, language)

        try:
            self.ocr = PaddleOCR(**self._init_kwargs(PaddleOCR, paddle_lang, use_gpu,
                                                     det_model_dir, rec_model_dir))
        except Exception as e:
            raise ModelLoadError(f"Failed to initialize PaddleOCR: {e}") from e

        self.language = paddle_lang
        logger.info(f"Initialized PaddleOCR engine (lang={paddle_lang})")

    @staticmethod
    def _init_kwargs(
        paddle_cls,
        lang: str,
        use_gpu: bool,
        det_model_dir: Optional[str],
        rec_model_dir: Optional[str]
    ) -> Dict[str, Any]:
        """Build constructor arguments for both the 3.x and the legacy 2.x API."""
        import inspect

        params = inspect.signature(paddle_cls.__init__).parameters
        kwargs: Dict[str, Any] = {"lang": lang}

        if "text_detection_model_dir" in params:
            kwargs["use_doc_orientation_classify"] = False
            kwargs["use_doc_unwarping"] = False
            kwargs["use_textline_orientation"] = False
            kwargs["device"] = "gpu" if use_gpu else "cpu"
            if det_model_dir:
                kwargs["text_detection_model_dir"] = det_model_dir
            if rec_model_dir:
                kwargs["text_recognition_model_dir"] = rec_model_dir
        else:
            kwargs["use_angle_cls"] = False
            kwargs["use_gpu"] = use_gpu
            kwargs["show_log"] = False
            if det_model_dir:
                kwargs["det_model_dir"] = det_model_dir
            if rec_model_dir:
                kwargs["rec_model_dir"] = rec_model_dir
        return kwargs

    def detect_and_recognize(self, bitmap: Bitmap) -> List[RawDetection]:
        """Detect text regions and recognize each one."""
        image = to_bgr(bitmap)

        try:
            if hasattr(self.ocr, "predict"):
                return parse_paddle_predictions(self.ocr.predict(image))
            return parse_paddle_legacy(self.ocr.ocr(image, cls=False))
        except Exception as e:
            raise OcrEngineError(f"PaddleOCR failed: {e}") from e


def _first_present(record: Any, keys: Sequence[str]) -> Any:
    for key in keys:
        value = record.get(key)
        if value is not None:
            return value
    return None


def parse_paddle_predictions(predictions: Any) -> List[RawDetection]:
    """Parse PaddleOCR 3.x ``predict`` output (one dict-like record per image)."""
    detections = []
    for record in predictions or []:
        if hasattr(record, "json") and not hasattr(record, "get"):
            record = record.json.get("res", {})
        polys = _first_present(record, ("rec_polys", "dt_polys"))
        texts = record.get("rec_texts")
        scores = record.get("rec_scores")
        if polys is None or texts is None or scores is None:
            continue
        for poly, text, score in zip(polys, texts, scores):
            if not text or not str(text).strip():
                continue
            detections.append(RawDetection.from_polygon(np.asarray(poly).tolist(), str(text), float(score)))
    return detections


def parse_paddle_legacy(result: Any) -> List[RawDetection]:
    """Parse PaddleOCR 2.x ``ocr`` output: [[ [poly, (text, conf)], ... ]]."""
    if not result or not result[0]:
        return []

    detections = []
    for line_data in result[0]:
        if len(line_data) < 2:
            continue
        poly = line_data[0]
        text, conf = line_data[1]
        if not text or not text.strip():
            continue
        detections.append(RawDetection.from_polygon(poly, text, float(conf)))
    return detections


# ============================================================================
# Tesseract Engine
# ============================================================================

class TesseractEngine:
    """OCR using Tesseract, one detection per recognized word."""

    name = "tesseract"

    def __init__(
        self,
        language: str = "eng",
        config: str = "--oem 3 --psm 3"
    ):
        try:
            import pytesseract
            self.pytesseract = pytesseract
            pytesseract.get_tesseract_version()
        except Exception as e:
            raise ModelLoadError(
                f"Tesseract not available: {e}\n"
                "Install with: pip install pytesseract\n"
                "Also install Tesseract: https://github.com/tesseract-ocr/tesseract"
            ) from e

        lang_map = {"en": "eng", "ch": "chi_sim", "de": "deu", "fr": "fra"}
        self.language = lang_map.get(language, language)
        self.config = config

    def detect_and_recognize(self, bitmap: Bitmap) -> List[RawDetection]:
        """Run Tesseract and return word-level detections."""
        try:
            data = self.pytesseract.image_to_data(
                bitmap.pixels if bitmap.pixel_format == "L" else to_rgb(bitmap),
                lang=self.language,
                config=self.config,
                output_type=self.pytesseract.Output.DICT
            )
        except Exception as e:
            raise OcrEngineError(f"Tesseract failed: {e}") from e

        return parse_tesseract_data(data)


def parse_tesseract_data(data: Dict[str, List[Any]]) -> List[RawDetection]:
    """Convert ``image_to_data`` DICT output into detections."""
    detections = []
    for i in range(len(data['text'])):
        text = str(data['text'][i]).strip()
        conf = float(data['conf'][i])

        if conf < 0 or not text:  # -1 means no valid confidence
            continue

        left, top = float(data['left'][i]), float(data['top'][i])
        detections.append(RawDetection(
            bbox=BoundingBox(left, top, left + float(data['width'][i]), top + float(data['height'][i])),
            text=text,
            confidence=conf / 100.0
        ))
    return detections


# ============================================================================
# EasyOCR Engine
# ============================================================================

class EasyOCREngine:
    """OCR using EasyOCR (CRAFT detection + CRNN recognition)."""

    name = "easyocr"

    def __init__(
        self,
        language: str = "en",
        use_gpu: bool = False
    ):
        try:
            import easyocr
        except ImportError as e:
            raise ModelLoadError(
                "EasyOCR not available. Install with: pip install 'pdf2epub[easyocr]'"
            ) from e

        lang_map = {"eng": "en", "chi_sim": "ch_sim", "chi_tra": "ch_tra"}
        easy_lang = lang_map.get(language, language)

        try:
            self.reader = easyocr.Reader([easy_lang], gpu=use_gpu, verbose=False)
        except Exception as e:
            raise ModelLoadError(f"Failed to initialize EasyOCR: {e}") from e

        self.language = easy_lang

    def detect_and_recognize(self, bitmap: Bitmap) -> List[RawDetection]:
        try:
            result = self.reader.readtext(to_rgb(bitmap))
        except Exception as e:
            raise OcrEngineError(f"EasyOCR failed: {e}") from e

        detections = []
        for bbox_points, text, conf in result:
            if not text or not text.strip():
                continue
            detections.append(RawDetection.from_polygon(bbox_points, text, float(conf)))
        return detections


# ============================================================================
# Replay Engine
# ============================================================================

def detections_filename(page_index: int) -> str:
    """File name used to store the detections of a 0-based page."""
    return f"page_{page_index + 1:04d}.json"


def save_detections(
    detections: List[RawDetection],
    output_dir: Union[str, Path],
    page_index: int,
    engine_name: str = ""
) -> Path:
    """Save one page's raw detections so they can be replayed later."""
    return save_json(
        {
            "page_index": page_index,
            "engine": engine_name,
            "saved_at": time.strftime("%Y-%m-%dT%H:%M:%S"),
            "detections": [d.to_dict() for d in detections],
        },
        ensure_dir(output_dir) / detections_filename(page_index)
    )


class ReplayOcrEngine:
    """
    Deterministic engine that returns detections saved by ``save_detections``.

    Lets layout and export be rerun without the OCR models.
    """

    name = "replay"

    def __init__(self, detections_dir: Union[str, Path]):
        self.detections_dir = Path(detections_dir)
        if not self.detections_dir.is_dir():
            raise ModelLoadError(f"Detections directory not found: {self.detections_dir}")

    def detect_and_recognize(self, bitmap: Bitmap) -> List[RawDetection]:
        if bitmap.page_index is None:
            raise OcrEngineError("bitmap carries no page index to replay")

        path = self.detections_dir / detections_filename(bitmap.page_index)
        try:
            data = load_json(path)
        except FileNotFoundError as e:
            raise OcrEngineError(f"no saved detections for page {bitmap.page_index + 1}") from e

        try:
            return [RawDetection.from_dict(d) for d in data.get("detections", [])]
        except (KeyError, TypeError, ValueError) as e:
            raise OcrEngineError(f"malformed detections file {path.name}: {e}") from e
