"""OpenCV cleanup applied to photographed pages before local OCR.

Grayscale conversion, bilateral denoising, CLAHE contrast enhancement,
adaptive binarization and optional deskew. Vision-model backends get
the original image; only the Tesseract path is preprocessed.
"""

import cv2
import numpy as np

from scanreport.utils.config import PreprocessingConfig
from scanreport.utils.logger import get_logger

logger = get_logger(__name__)


def to_gray(image: np.ndarray) -> np.ndarray:
    """Convert an RGB image to grayscale; grayscale input is returned as is."""
    if image.ndim == 3:
        return cv2.cvtColor(image, cv2.COLOR_RGB2GRAY)
    return image


def detect_skew_angle(gray: np.ndarray) -> float:
    """Estimate page rotation in degrees from dominant Hough line angles."""
    edges = cv2.Canny(gray, 50, 150, apertureSize=3)
    lines = cv2.HoughLinesP(edges, 1, np.pi / 180, 100, minLineLength=100, maxLineGap=10)
    if lines is None:
        return 0.0
    angles = [np.degrees(np.arctan2(y2 - y1, x2 - x1)) for x1, y1, x2, y2 in lines[:, 0]]
    return float(np.median(angles))


def deskew(gray: np.ndarray, angle_threshold: float = 0.5) -> np.ndarray:
    """Rotate the page back to horizontal when the skew exceeds the threshold."""
    angle = detect_skew_angle(gray)
    if abs(angle) < angle_threshold:
        return gray
    h, w = gray.shape[:2]
    matrix = cv2.getRotationMatrix2D((w // 2, h // 2), angle, 1.0)
    logger.debug("Deskewing page by %.2f degrees", angle)
    return cv2.warpAffine(
        gray, matrix, (w, h), flags=cv2.INTER_CUBIC, borderMode=cv2.BORDER_REPLICATE
    )


def prepare_for_ocr(image: np.ndarray, config: PreprocessingConfig) -> np.ndarray:
    """Run the enabled cleanup steps and return a grayscale image.

    Args:
        image: Page image as decoded from the upload (RGB or grayscale).
        config: Which steps to apply.

    Returns:
        Grayscale (or binary) image suitable for Tesseract.
    """
    result = to_gray(image)
    steps: list[str] = []

    if config.deskew_enabled:
        result = deskew(result)
        steps.append("deskew")
    if config.denoise_enabled:
        result = cv2.bilateralFilter(result, 9, 75, 75)
        steps.append("denoise")
    if config.contrast_enabled:
        tile = config.clahe_tile_size
        clahe = cv2.createCLAHE(clipLimit=config.clahe_clip_limit, tileGridSize=(tile, tile))
        result = clahe.apply(result)
        steps.append("clahe")
    if config.binarize_enabled:
        result = cv2.adaptiveThreshold(
            result, 255, cv2.ADAPTIVE_THRESH_GAUSSIAN_C, cv2.THRESH_BINARY, 11, 2
        )
        steps.append("binarize")

    logger.debug("Preprocessing steps applied: %s", ", ".join(steps) or "none")
    return result
