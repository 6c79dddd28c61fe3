"""
Tests for bitmap preprocessing module.
"""

import pytest
import numpy as np
import sys
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))


class TestPreprocessing:
    """Test image preprocessing functions."""

    @pytest.fixture
    def sample_image(self):
        """Create a sample grayscale image."""
        # Dark regions simulating text lines
        img = np.ones((300, 400), dtype=np.uint8) * 255
        img[50:60, 50:200] = 0
        img[80:90, 50:180] = 0
        img[110:120, 50:220] = 0
        return img

    @pytest.fixture
    def sample_color_image(self):
        """Create a sample color image."""
        img = np.ones((300, 400, 3), dtype=np.uint8) * 255
        img[50:60, 50:200] = [0, 0, 0]
        img[80:90, 50:180] = [0, 0, 0]
        return img

    @pytest.fixture
    def skewed_image(self):
        """Create a slightly skewed image."""
        import cv2

        img = np.ones((400, 500), dtype=np.uint8) * 255
        for y in range(50, 350, 30):
            img[y:y+2, 50:450] = 0

        center = (250, 200)
        rotation_matrix = cv2.getRotationMatrix2D(center, 5.0, 1.0)
        return cv2.warpAffine(img, rotation_matrix, (500, 400), borderValue=255)

    def test_to_grayscale_already_gray(self, sample_image):
        """Test that grayscale images are returned unchanged."""
        from pdf2epub.utils.images import to_grayscale

        result = to_grayscale(sample_image)

        np.testing.assert_array_equal(result, sample_image)

    def test_to_grayscale_from_color(self, sample_color_image):
        from pdf2epub.utils.images import to_grayscale

        result = to_grayscale(sample_color_image)

        assert len(result.shape) == 2
        assert result.shape[:2] == sample_color_image.shape[:2]

    def test_to_grayscale_four_channels(self):
        from pdf2epub.utils.images import to_grayscale

        img = np.ones((100, 100, 4), dtype=np.uint8) * 128

        assert len(to_grayscale(img).shape) == 2

    def test_channel_conversions(self, sample_image):
        """Grayscale bitmaps become 3-channel arrays for the OCR engines."""
        from pdf2epub.utils.io import Bitmap
        from pdf2epub.utils.images import to_rgb, to_bgr

        bitmap = Bitmap(pixels=sample_image, pixel_format="L")

        assert to_rgb(bitmap).shape == (300, 400, 3)
        assert to_bgr(bitmap).shape == (300, 400, 3)

    def test_bgr_swaps_channels(self):
        from pdf2epub.utils.io import Bitmap
        from pdf2epub.utils.images import to_bgr

        pixels = np.zeros((10, 10, 3), dtype=np.uint8)
        pixels[:, :, 0] = 200  # red
        bgr = to_bgr(Bitmap(pixels=pixels, pixel_format="RGB"))

        assert bgr[0, 0, 2] == 200
        assert bgr[0, 0, 0] == 0

    def test_deskew_straight_image(self, sample_image):
        from pdf2epub.utils.images import deskew

        _, angle = deskew(sample_image)

        assert abs(angle) < 2.0

    def test_deskew_skewed_image(self, skewed_image):
        """Test deskewing of a rotated image."""
        from pdf2epub.utils.images import deskew

        _, angle = deskew(skewed_image, max_angle=15.0)

        # Rotation direction depends on the image y axis
        assert abs(abs(angle) - 5.0) < 3.0

    def test_blank_page_has_no_skew(self):
        from pdf2epub.utils.images import estimate_skew

        assert estimate_skew(np.full((200, 300), 255, dtype=np.uint8)) == 0.0

    def test_rotate_page_keeps_content(self, sample_image):
        from pdf2epub.utils.images import rotate_page

        rotated = rotate_page(sample_image, 10.0)

        assert rotated.shape[0] > sample_image.shape[0]
        assert rotated.shape[1] > sample_image.shape[1]
        assert rotated[0, 0] == 255

    def test_denoise(self, sample_image):
        from pdf2epub.utils.images import denoise

        rng = np.random.default_rng(0)
        noise = rng.normal(0, 25, sample_image.shape)
        noisy = np.clip(sample_image.astype(np.float64) + noise, 0, 255).astype(np.uint8)

        result = denoise(noisy, strength=10)

        assert result.shape == noisy.shape
        assert np.std(result) <= np.std(noisy)

    def test_enhance_contrast(self, sample_image):
        from pdf2epub.utils.images import enhance_contrast

        low_contrast = (sample_image * 0.5 + 64).astype(np.uint8)

        result = enhance_contrast(low_contrast, clip_limit=2.0)

        assert result.shape == low_contrast.shape
        assert np.std(result) >= np.std(low_contrast)

    def test_enhance_contrast_color(self, sample_color_image):
        from pdf2epub.utils.images import enhance_contrast

        result = enhance_contrast(sample_color_image)

        assert result.shape == sample_color_image.shape


class TestPreprocessBitmap:
    """Test the configurable preprocessing pass."""

    def test_nothing_enabled(self):
        from pdf2epub.config import ImageConfig
        from pdf2epub.utils.io import Bitmap
        from pdf2epub.utils.images import preprocess_bitmap

        bitmap = Bitmap(pixels=np.full((50, 60), 255, dtype=np.uint8), page_index=4)

        result = preprocess_bitmap(bitmap, ImageConfig())

        assert result.transformations == []
        assert result.deskew_angle == 0.0
        assert result.bitmap.page_index == 4
        np.testing.assert_array_equal(result.bitmap.pixels, bitmap.pixels)

    def test_steps_are_recorded(self):
        from pdf2epub.config import ImageConfig
        from pdf2epub.utils.io import Bitmap
        from pdf2epub.utils.images import preprocess_bitmap

        pixels = np.full((120, 160), 200, dtype=np.uint8)
        pixels[40:50, 20:140] = 30
        bitmap = Bitmap(pixels=pixels, page_index=0)
        original = pixels.copy()

        result = preprocess_bitmap(bitmap, ImageConfig(denoise=True, enhance_contrast=True))

        assert result.transformations == ["denoise", "enhance_contrast"]
        assert result.bitmap.pixels.shape == (120, 160)
        np.testing.assert_array_equal(bitmap.pixels, original)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
