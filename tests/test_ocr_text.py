"""
Tests for text OCR module.
"""

import pytest
import numpy as np
import sys
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))


class TestRawDetection:
    """Test RawDetection class."""

    def test_detection_creation(self):
        from pdf2epub.utils.ocr_text import RawDetection, BoundingBox

        det = RawDetection(bbox=BoundingBox(10, 20, 110, 40), text="Hello", confidence=0.9)

        assert det.text == "Hello"
        assert det.confidence == 0.9
        assert det.polygon is None

    def test_confidence_is_clamped(self):
        from pdf2epub.utils.ocr_text import RawDetection, BoundingBox

        high = RawDetection(bbox=BoundingBox(0, 0, 1, 1), text="a", confidence=1.7)
        low = RawDetection(bbox=BoundingBox(0, 0, 1, 1), text="a", confidence=-0.2)

        assert high.confidence == 1.0
        assert low.confidence == 0.0

    def test_detection_is_immutable(self):
        from dataclasses import FrozenInstanceError
        from pdf2epub.utils.ocr_text import RawDetection, BoundingBox

        det = RawDetection(bbox=BoundingBox(0, 0, 1, 1), text="a", confidence=0.5)

        with pytest.raises(FrozenInstanceError):
            det.text = "b"

    def test_from_polygon_keeps_quadrilateral(self):
        from pdf2epub.utils.ocr_text import RawDetection

        det = RawDetection.from_polygon([[10, 12], [90, 10], [92, 30], [8, 32]], "skewed", 0.8)

        assert det.bbox.to_tuple() == (8, 10, 92, 32)
        assert det.polygon == ((10, 12), (90, 10), (92, 30), (8, 32))

    def test_to_dict_from_dict(self):
        from pdf2epub.utils.ocr_text import RawDetection

        det = RawDetection.from_polygon([[0, 0], [50, 0], [50, 20], [0, 20]], "word", 0.75)
        data = det.to_dict()

        assert data["text"] == "word"
        assert data["bbox"] == [0, 0, 50, 20]
        assert RawDetection.from_dict(data) == det


class TestEngineOutputParsing:
    """Test conversion of engine-specific output into detections."""

    def test_parse_tesseract_data(self):
        from pdf2epub.utils.ocr_text import parse_tesseract_data

        data = {
            "text": ["", "Hello", "world", "  "],
            "conf": [-1, 96, "87.5", 50],
            "left": [0, 10, 80, 150],
            "top": [0, 20, 22, 20],
            "width": [500, 60, 70, 10],
            "height": [300, 18, 18, 18],
        }

        detections = parse_tesseract_data(data)

        assert [d.text for d in detections] == ["Hello", "world"]
        assert detections[0].confidence == pytest.approx(0.96)
        assert detections[1].bbox.to_tuple() == (80, 22, 150, 40)

    def test_parse_paddle_legacy(self):
        from pdf2epub.utils.ocr_text import parse_paddle_legacy

        result = [[
            [[[10, 10], [100, 10], [100, 30], [10, 30]], ("Title", 0.98)],
            [[[10, 50], [200, 50], [200, 70], [10, 70]], ("", 0.4)],
        ]]

        detections = parse_paddle_legacy(result)

        assert len(detections) == 1
        assert detections[0].text == "Title"
        assert detections[0].bbox.to_tuple() == (10, 10, 100, 30)

    def test_parse_paddle_legacy_empty_page(self):
        from pdf2epub.utils.ocr_text import parse_paddle_legacy

        assert parse_paddle_legacy([None]) == []
        assert parse_paddle_legacy([]) == []

    def test_parse_paddle_predictions(self):
        from pdf2epub.utils.ocr_text import parse_paddle_predictions

        predictions = [{
            "rec_polys": [np.array([[10, 10], [100, 10], [100, 30], [10, 30]])],
            "rec_texts": ["Body"],
            "rec_scores": [0.91],
        }]

        detections = parse_paddle_predictions(predictions)

        assert len(detections) == 1
        assert detections[0].text == "Body"
        assert detections[0].confidence == pytest.approx(0.91)

    def test_parse_paddle_predictions_falls_back_to_dt_polys(self):
        from pdf2epub.utils.ocr_text import parse_paddle_predictions

        predictions = [{
            "dt_polys": [[[0, 0], [40, 0], [40, 10], [0, 10]]],
            "rec_texts": ["word"],
            "rec_scores": [0.7],
        }]

        detections = parse_paddle_predictions(predictions)

        assert detections[0].bbox.to_tuple() == (0, 0, 40, 10)


class TestPaddleOCREngine:
    """Test PaddleOCR engine setup."""

    def test_missing_model_dir_is_load_error(self, tmp_path):
        from pdf2epub.errors import ModelLoadError
        from pdf2epub.utils.ocr_text import PaddleOCREngine

        with pytest.raises(ModelLoadError, match="detection"):
            PaddleOCREngine(det_model_dir=str(tmp_path / "missing_det"))

    def test_init_kwargs_for_current_api(self):
        from pdf2epub.utils.ocr_text import PaddleOCREngine

        class CurrentPaddle:
            def __init__(self, lang=None, device=None, text_detection_model_dir=None,
                         text_recognition_model_dir=None, **kwargs):
                pass

        kwargs = PaddleOCREngine._init_kwargs(CurrentPaddle, "en", False, "/m/det", "/m/rec")

        assert kwargs["text_detection_model_dir"] == "/m/det"
        assert kwargs["text_recognition_model_dir"] == "/m/rec"
        assert kwargs["device"] == "cpu"
        assert "use_gpu" not in kwargs

    def test_init_kwargs_for_legacy_api(self):
        from pdf2epub.utils.ocr_text import PaddleOCREngine

        class LegacyPaddle:
            def __init__(self, **kwargs):
                pass

        kwargs = PaddleOCREngine._init_kwargs(LegacyPaddle, "en", True, "/m/det", None)

        assert kwargs["det_model_dir"] == "/m/det"
        assert "rec_model_dir" not in kwargs
        assert kwargs["use_gpu"] is True


class TestReplayEngine:
    """Test the replay engine and saved detections."""

    @pytest.fixture
    def bitmap(self):
        from pdf2epub.utils.io import Bitmap
        return Bitmap(pixels=np.full((100, 80), 255, dtype=np.uint8), page_index=2)

    def test_replays_saved_detections(self, tmp_path, bitmap):
        from pdf2epub.utils.ocr_text import RawDetection, BoundingBox
        from pdf2epub.utils.ocr_text import ReplayOcrEngine, save_detections

        saved = [
            RawDetection(bbox=BoundingBox(1, 2, 30, 12), text="one", confidence=0.9),
            RawDetection(bbox=BoundingBox(35, 2, 60, 12), text="two", confidence=0.4),
        ]
        path = save_detections(saved, tmp_path, page_index=2, engine_name="fake")

        assert path.name == "page_0003.json"

        engine = ReplayOcrEngine(tmp_path)
        assert engine.detect_and_recognize(bitmap) == saved
        assert engine.detect_and_recognize(bitmap) == saved

    def test_missing_page_is_engine_error(self, tmp_path, bitmap):
        from pdf2epub.errors import OcrEngineError
        from pdf2epub.utils.ocr_text import ReplayOcrEngine

        engine = ReplayOcrEngine(tmp_path)

        with pytest.raises(OcrEngineError):
            engine.detect_and_recognize(bitmap)

    def test_missing_directory_is_load_error(self, tmp_path):
        from pdf2epub.errors import ModelLoadError
        from pdf2epub.utils.ocr_text import ReplayOcrEngine

        with pytest.raises(ModelLoadError):
            ReplayOcrEngine(tmp_path / "nope")


class TestEngineSelection:
    """Test create_engine."""

    def test_unknown_engine(self):
        from pdf2epub.config import OCRConfig
        from pdf2epub.errors import ModelLoadError
        from pdf2epub.utils.ocr_text import create_engine

        with pytest.raises(ModelLoadError, match="Unknown OCR engine"):
            create_engine(OCRConfig(engine="magic"))

    def test_replay_requires_directory(self):
        from pdf2epub.config import OCRConfig
        from pdf2epub.errors import ModelLoadError
        from pdf2epub.utils.ocr_text import create_engine

        with pytest.raises(ModelLoadError):
            create_engine(OCRConfig(engine="replay"))

    def test_replay_engine(self, tmp_path):
        from pdf2epub.config import OCRConfig
        from pdf2epub.utils.ocr_text import create_engine, ReplayOcrEngine

        engine = create_engine(OCRConfig(engine="replay", detections_dir=str(tmp_path)))

        assert isinstance(engine, ReplayOcrEngine)
        assert engine.name == "replay"
