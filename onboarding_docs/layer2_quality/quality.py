"""
Layer 2 — Quality Assessment
Scores how usable a captured document image is, without a server round-trip.
Evaluates resolution, file size, brightness, contrast and sharpness.
"""
import cv2
import numpy as np
import logging
from typing import Dict, Optional, Tuple

from ..error_handlers import ImageDecodeError
from ..i18n import translate
from ..models import DocumentQuality, SourceFile

logger = logging.getLogger(__name__)


def decode_image(data: bytes, filename: Optional[str] = None) -> np.ndarray:
    """
    Decode encoded image bytes into a BGR pixel array.

    Raises:
        ImageDecodeError: If the bytes are not a decodable image
    """
    if not data:
        raise ImageDecodeError(filename)
    try:
        image = cv2.imdecode(np.frombuffer(data, dtype=np.uint8), cv2.IMREAD_COLOR)
    except cv2.error as e:
        logger.debug(f"cv2.imdecode failed for {filename}: {e}")
        image = None
    if image is None or image.size == 0:
        raise ImageDecodeError(filename)
    return image


def luminance(pixels: np.ndarray) -> np.ndarray:
    """Per-pixel luminance as the mean of the three colour channels."""
    return pixels[:, :, :3].astype(np.float32).mean(axis=2)


def mean_luminance(pixels: np.ndarray) -> float:
    return float(luminance(pixels).mean())


def luminance_range(pixels: np.ndarray) -> float:
    """Max minus min luminance, used as a contrast proxy."""
    gray = luminance(pixels)
    return float(gray.max() - gray.min())


def sampled_edge_ratio(
    pixels: np.ndarray,
    rng: np.random.Generator,
    max_samples: int = 10000,
    jump_threshold: int = 30
) -> float:
    """
    Estimate sharpness from randomly sampled pixels.

    A sample counts as an edge when the summed per-channel difference to its
    right or lower neighbour exceeds the jump threshold. Samples on the last
    row or column never count but stay in the denominator.
    """
    height, width = pixels.shape[:2]
    total = width * height
    samples = int(min(max_samples, total / 10))
    upper = total - width - 1
    if samples < 1 or upper < 1:
        return 0.0

    flat = pixels[:, :, :3].reshape(-1, 3).astype(np.int16)
    idx = rng.integers(0, upper, size=samples)
    x = idx % width
    y = idx // width
    valid = (x < width - 1) & (y < height - 1)
    idx = idx[valid]

    here = flat[idx]
    diff_x = np.abs(here - flat[idx + 1]).sum(axis=1)
    diff_y = np.abs(here - flat[idx + width]).sum(axis=1)
    edges = np.count_nonzero((diff_x > jump_threshold) | (diff_y > jump_threshold))
    return edges / samples


class QualityAssessor:
    """
    Heuristic usability rating for document images.
    Score starts at 100 and loses points for each triggered condition.
    """

    # Quality thresholds for acceptable images
    THRESHOLDS = {
        'min_width': 1000,
        'min_height': 700,
        'min_file_size': 200000,             # bytes
        'max_file_size': 5 * 1024 * 1024,    # bytes
        'max_working_width': 1200,           # downscale bound for pixel passes
        'max_working_height': 900,
        'dark_luminance': 40.0,
        'bright_luminance': 220.0,
        'min_luminance_range': 50.0,
        'sharpness_samples': 10000,
        'edge_jump': 30,
        'min_edge_ratio': 0.05,
    }

    # Points subtracted per triggered condition
    PENALTIES = {
        'low_resolution': 15,
        'file_too_small': 10,
        'file_too_large': 5,
        'too_dark': 20,
        'too_bright': 15,
        'low_contrast': 15,
        'blurry': 20,
    }

    def __init__(self, thresholds: Optional[Dict] = None, penalties: Optional[Dict] = None, seed: int = 0):
        """
        Initialize quality assessor.

        Args:
            thresholds: Optional custom thresholds
            penalties: Optional custom penalties
            seed: Seed for the sharpness sampling pattern
        """
        self.thresholds = {**self.THRESHOLDS, **(thresholds or {})}
        self.penalties = {**self.PENALTIES, **(penalties or {})}
        self.seed = seed
        logger.debug("QualityAssessor initialized")

    def assess(self, source: SourceFile, language: str = 'en') -> DocumentQuality:
        """
        Assess a document file.

        Args:
            source: Captured or selected file
            language: Language for issues and recommendations

        Returns:
            DocumentQuality: score, issues and recommendations
        """
        try:
            image = decode_image(source.data, source.name)
        except ImageDecodeError:
            logger.warning(f"Could not decode {source.name} ({source.media_type}), scoring 0")
            return self.unreadable(language)

        return self.assess_pixels(image, source.size, language)

    def assess_pixels(self, image: np.ndarray, file_size: int, language: str = 'en') -> DocumentQuality:
        """Score already-decoded pixels plus the encoded file size."""
        t = self.thresholds
        triggered = []

        height, width = image.shape[:2]

        # Step 1: Resolution
        if width < t['min_width'] or height < t['min_height']:
            triggered.append('low_resolution')

        # Step 2: File size
        if file_size < t['min_file_size']:
            triggered.append('file_too_small')
        elif file_size > t['max_file_size']:
            triggered.append('file_too_large')

        # Steps 3-5 run on a bounded working copy
        working = self._working_copy(image)
        brightness = mean_luminance(working)
        spread = luminance_range(working)
        edge_ratio = sampled_edge_ratio(
            working,
            np.random.default_rng(self.seed),
            max_samples=t['sharpness_samples'],
            jump_threshold=t['edge_jump']
        )

        # Step 3: Brightness
        if brightness < t['dark_luminance']:
            triggered.append('too_dark')
        elif brightness > t['bright_luminance']:
            triggered.append('too_bright')

        # Step 4: Contrast
        if spread < t['min_luminance_range']:
            triggered.append('low_contrast')

        # Step 5: Sharpness
        if edge_ratio < t['min_edge_ratio']:
            triggered.append('blurry')

        logger.debug(
            f"Quality signals: {width}x{height}, {file_size} bytes, "
            f"brightness={brightness:.1f}, range={spread:.1f}, edges={edge_ratio:.4f}"
        )
        return self._build_result(triggered, language)

    def unreadable(self, language: str = 'en') -> DocumentQuality:
        """Terminal result for files that cannot be decoded."""
        return DocumentQuality(
            score=0,
            issues=[translate('quality.unreadable', language)],
            recommendations=[translate('quality.unreadable.fix', language)]
        )

    def _working_copy(self, image: np.ndarray) -> np.ndarray:
        height, width = image.shape[:2]
        target_w, target_h = self._working_size(width, height)
        if (target_w, target_h) == (width, height):
            return image
        return cv2.resize(image, (target_w, target_h), interpolation=cv2.INTER_AREA)

    def _working_size(self, width: int, height: int) -> Tuple[int, int]:
        return (
            min(width, self.thresholds['max_working_width']),
            min(height, self.thresholds['max_working_height'])
        )

    def _build_result(self, triggered, language) -> DocumentQuality:
        score = 100
        issues = []
        recommendations = []
        for condition in triggered:
            score -= self.penalties[condition]
            issues.append(translate(f'quality.{condition}', language))
            recommendations.append(translate(f'quality.{condition}.fix', language))

        return DocumentQuality(
            score=int(max(0, min(100, score))),
            issues=issues,
            recommendations=recommendations
        )
