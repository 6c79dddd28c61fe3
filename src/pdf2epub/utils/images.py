"""
Bitmap preprocessing utilities for the PDF to EPUB pipeline.

Provides:
- Channel conversions between grayscale, RGB and BGR arrays
- Skew estimation and page rotation
- Denoising (scan speckle removal)
- Contrast enhancement for faded scans
- Optional preprocessing pass before OCR

Every step returns a new array; rendered bitmaps are never modified in place.
"""

import logging
from dataclasses import dataclass, field
from typing import Tuple, List
import numpy as np

from .io import Bitmap

logger = logging.getLogger(__name__)

# Skew below this many degrees is left alone
MIN_SKEW_ANGLE = 0.5


# ============================================================================
# Data Classes
# ============================================================================

@dataclass
class PreprocessingResult:
    """A preprocessed bitmap plus what was done to it."""
    bitmap: Bitmap
    deskew_angle: float = 0.0
    transformations: List[str] = field(default_factory=list)


# ============================================================================
# Channel Conversions
# ============================================================================

def to_grayscale(image: np.ndarray) -> np.ndarray:
    """
    Convert an RGB/RGBA array to a single channel; grayscale input is returned as is.
    """
    import cv2

    if image.ndim == 2:
        return image
    channels = image.shape[2] if image.ndim == 3 else 0
    if channels == 1:
        return image[:, :, 0]
    if channels == 3:
        return cv2.cvtColor(image, cv2.COLOR_RGB2GRAY)
    if channels == 4:
        return cv2.cvtColor(image, cv2.COLOR_RGBA2GRAY)

    raise ValueError(f"Unexpected image shape: {image.shape}")


def to_rgb(bitmap: Bitmap) -> np.ndarray:
    """Return the bitmap pixels as a 3-channel RGB array."""
    import cv2

    if bitmap.pixel_format == "L" or bitmap.pixels.ndim == 2:
        return cv2.cvtColor(bitmap.pixels, cv2.COLOR_GRAY2RGB)
    return bitmap.pixels


def to_bgr(bitmap: Bitmap) -> np.ndarray:
    """Return the bitmap pixels as a 3-channel BGR array (OpenCV order)."""
    import cv2

    if bitmap.pixel_format == "L" or bitmap.pixels.ndim == 2:
        return cv2.cvtColor(bitmap.pixels, cv2.COLOR_GRAY2BGR)
    return cv2.cvtColor(bitmap.pixels, cv2.COLOR_RGB2BGR)


# ============================================================================
# Skew Correction
# ============================================================================

def estimate_skew(image: np.ndarray, max_angle: float = 15.0) -> float:
    """
    Estimate page skew in degrees from near-horizontal line segments.

    Text baselines and rules are picked up with a probabilistic Hough
    transform on the edge map; the median segment angle is the estimate.
    Returns 0.0 when nothing usable is found.
    """
    import cv2

    gray = to_grayscale(image)
    edges = cv2.Canny(gray, 50, 150, apertureSize=3)
    min_length = max(50, min(gray.shape[:2]) // 4)
    segments = cv2.HoughLinesP(
        edges,
        rho=1,
        theta=np.pi / 180,
        threshold=100,
        minLineLength=min_length,
        maxLineGap=10
    )
    if segments is None:
        logger.debug("No line segments found for skew estimation")
        return 0.0

    seg = segments.reshape(-1, 4).astype(np.float64)
    dx = seg[:, 2] - seg[:, 0]
    dy = seg[:, 3] - seg[:, 1]
    keep = dx != 0
    angles = np.degrees(np.arctan2(dy[keep], dx[keep]))
    angles = angles[np.abs(angles) < max_angle]

    if angles.size == 0:
        logger.debug("No near-horizontal segments for skew estimation")
        return 0.0
    return float(np.median(angles))


def rotate_page(image: np.ndarray, angle: float) -> np.ndarray:
    """Rotate around the page center, enlarging the canvas so no content is cut off."""
    import cv2

    h, w = image.shape[:2]
    matrix = cv2.getRotationMatrix2D((w / 2, h / 2), angle, 1.0)
    cos, sin = abs(matrix[0, 0]), abs(matrix[0, 1])
    out_w = int(round(h * sin + w * cos))
    out_h = int(round(h * cos + w * sin))
    matrix[0, 2] += (out_w - w) / 2
    matrix[1, 2] += (out_h - h) / 2

    white = 255 if image.ndim == 2 else (255,) * image.shape[2]
    return cv2.warpAffine(
        image,
        matrix,
        (out_w, out_h),
        flags=cv2.INTER_CUBIC,
        borderMode=cv2.BORDER_CONSTANT,
        borderValue=white
    )


def deskew(image: np.ndarray, max_angle: float = 15.0) -> Tuple[np.ndarray, float]:
    """
    Straighten a skewed page.

    Args:
        image: Page pixels (grayscale or RGB)
        max_angle: Largest skew considered (degrees)

    Returns:
        Tuple of (possibly rotated image, estimated angle)
    """
    angle = estimate_skew(image, max_angle)
    if abs(angle) < MIN_SKEW_ANGLE:
        return image, angle

    logger.info(f"Deskewing page by {angle:.2f}°")
    return rotate_page(image, angle), angle


# ============================================================================
# Cleanup
# ============================================================================

def denoise(image: np.ndarray, strength: int = 10) -> np.ndarray:
    """Remove scan noise using Non-local Means Denoising."""
    import cv2

    if image.ndim == 2:
        return cv2.fastNlMeansDenoising(image, None, strength, 7, 21)
    return cv2.fastNlMeansDenoisingColored(image, None, strength, strength, 7, 21)


def enhance_contrast(image: np.ndarray, clip_limit: float = 2.0, grid_size: int = 8) -> np.ndarray:
    """CLAHE on the pixels (grayscale) or on the lightness channel (RGB)."""
    import cv2

    clahe = cv2.createCLAHE(clipLimit=clip_limit, tileGridSize=(grid_size, grid_size))
    if image.ndim == 2:
        return clahe.apply(image)

    lab = cv2.cvtColor(image, cv2.COLOR_RGB2LAB)
    lab[:, :, 0] = clahe.apply(np.ascontiguousarray(lab[:, :, 0]))
    return cv2.cvtColor(lab, cv2.COLOR_LAB2RGB)


# ============================================================================
# Preprocessing Pass
# ============================================================================

def preprocess_bitmap(bitmap: Bitmap, config) -> PreprocessingResult:
    """
    Apply the preprocessing steps enabled in an ImageConfig.

    Args:
        bitmap: Rendered page
        config: ImageConfig with deskew/denoise/enhance_contrast switches

    Returns:
        PreprocessingResult with a new bitmap (the input is not modified)
    """
    pixels = bitmap.pixels
    steps = []
    angle = 0.0

    if config.deskew:
        pixels, angle = deskew(pixels, config.deskew_max_angle)
        if abs(angle) >= MIN_SKEW_ANGLE:
            steps.append(f"deskew_{angle:.1f}deg")

    if config.denoise:
        pixels = denoise(pixels, strength=config.denoise_strength)
        steps.append("denoise")

    if config.enhance_contrast:
        pixels = enhance_contrast(pixels, clip_limit=config.contrast_clip_limit)
        steps.append("enhance_contrast")

    if steps:
        logger.debug(f"Page {bitmap.page_index}: preprocessing {' -> '.join(steps)}")

    return PreprocessingResult(
        bitmap=Bitmap(pixels=pixels, pixel_format=bitmap.pixel_format, page_index=bitmap.page_index),
        deskew_angle=angle,
        transformations=steps
    )
