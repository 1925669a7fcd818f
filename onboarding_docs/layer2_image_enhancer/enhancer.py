"""
Layer 2 — Image Enhancer
Local brightness/contrast remap and sharpening for a captured document.

Produces a new document record; the source record is never modified.
"""
import cv2
import numpy as np
import logging
import threading
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Optional

from ..error_handlers import EnhancementError, EnhancementInProgressError, ImageDecodeError
from ..layer2_quality.quality import decode_image
from ..models import (
    DocumentQuality,
    DocumentRecord,
    SourceFile,
    compute_requires_review,
    new_document_id,
)

logger = logging.getLogger(__name__)

# Encoder per media type; anything else is re-encoded as JPEG
ENCODINGS = {
    'image/jpeg': ('.jpg', cv2.IMWRITE_JPEG_QUALITY),
    'image/jpg': ('.jpg', cv2.IMWRITE_JPEG_QUALITY),
    'image/png': ('.png', None),
    'image/webp': ('.webp', cv2.IMWRITE_WEBP_QUALITY),
}


@dataclass
class EnhancementConfig:
    """Configuration for image enhancements."""
    brightness: float = 10.0     # percent of full scale added to every channel
    contrast: float = 15.0       # contrast delta in [-255, 255]
    sharpness: float = 5.0       # 0 disables the convolution
    encode_quality: int = 90     # same factor as camera capture
    score_bump: int = 10         # assumed gain, not re-measured


def contrast_factor(contrast: float) -> float:
    """Standard contrast correction factor for a delta in [-255, 255]."""
    return (259.0 * (contrast + 255.0)) / (255.0 * (259.0 - contrast))


def adjust_brightness_contrast(pixels: np.ndarray, brightness: float, contrast: float) -> np.ndarray:
    """
    Apply a linear brightness offset followed by factor*(p-128)+128.
    Channels are clamped to [0, 255] after each step.
    """
    result = pixels.astype(np.float32)
    result = np.clip(result + (brightness / 100.0) * 255.0, 0, 255)
    result = contrast_factor(contrast) * (result - 128.0) + 128.0
    return np.clip(np.rint(result), 0, 255).astype(np.uint8)


def sharpen_kernel(strength: float) -> np.ndarray:
    return np.array([
        [0, -1, 0],
        [-1, 5 + strength / 20.0, -1],
        [0, -1, 0]
    ], dtype=np.float32)


def sharpen(pixels: np.ndarray, strength: float) -> np.ndarray:
    """
    3x3 sharpening convolution over the whole image.
    Every output pixel is computed from the unmodified input buffer.
    """
    if strength <= 0:
        return pixels.copy()
    source = pixels.astype(np.float32)
    filtered = cv2.filter2D(source, -1, sharpen_kernel(strength), borderType=cv2.BORDER_REPLICATE)
    return np.clip(np.rint(filtered), 0, 255).astype(np.uint8)


def encode_image(pixels: np.ndarray, media_type: str, quality: int = 90):
    """
    Encode pixels for the given media type.

    Returns:
        Tuple of (bytes, media_type actually used)
    """
    extension, quality_flag = ENCODINGS.get(media_type, ('.jpg', cv2.IMWRITE_JPEG_QUALITY))
    out_type = media_type if media_type in ENCODINGS else 'image/jpeg'
    params = [int(quality_flag), int(quality)] if quality_flag is not None else []

    ok, buffer = cv2.imencode(extension, pixels, params)
    if not ok:
        raise EnhancementError(
            message=f"Failed to encode enhanced image as {extension}",
            error_code="ENHANCEMENT_ENCODE_FAILED",
            details={"media_type": media_type}
        )
    return buffer.tobytes(), out_type


class ImageEnhancer:
    """
    Single-shot enhancement of a document record.
    Concurrent requests for the same record are rejected.
    """

    def __init__(self, config: Optional[EnhancementConfig] = None):
        self.config = config or EnhancementConfig()
        self._in_flight = set()
        self._lock = threading.Lock()
        logger.info("ImageEnhancer initialized")
        logger.debug(f"Enhancement defaults: brightness={self.config.brightness}, "
                     f"contrast={self.config.contrast}, sharpness={self.config.sharpness}")

    def enhance(self, record: DocumentRecord) -> DocumentRecord:
        """
        Enhance a document and return a new record.

        Args:
            record: Source document (left untouched)

        Returns:
            DocumentRecord with a new id, new file and bumped quality

        Raises:
            EnhancementInProgressError: Record is already being enhanced
            EnhancementError: Source cannot be decoded or re-encoded
        """
        with self._lock:
            if record.id in self._in_flight:
                raise EnhancementInProgressError(record.id)
            self._in_flight.add(record.id)

        try:
            return self._enhance(record)
        finally:
            with self._lock:
                self._in_flight.discard(record.id)

    def _enhance(self, record: DocumentRecord) -> DocumentRecord:
        cfg = self.config
        source = record.source_file

        try:
            pixels = decode_image(source.data, source.name)
        except ImageDecodeError as e:
            raise EnhancementError(
                message=f"Cannot enhance {source.name}",
                error_code="ENHANCEMENT_UNSUPPORTED",
                details={"media_type": source.media_type, "reason": e.message}
            )

        logger.info(f"[Layer 2] Enhancing {record.id} ({pixels.shape[1]}x{pixels.shape[0]})")
        result = adjust_brightness_contrast(pixels, cfg.brightness, cfg.contrast)
        if cfg.sharpness > 0:
            result = sharpen(result, cfg.sharpness)

        data, media_type = encode_image(result, source.media_type, cfg.encode_quality)
        enhanced_file = SourceFile(name=source.name, media_type=media_type, data=data)

        quality = DocumentQuality(
            score=min(100, record.quality.score + cfg.score_bump),
            issues=list(record.quality.issues),
            recommendations=list(record.quality.recommendations)
        )

        ocr = None
        if record.ocr is not None:
            ocr = replace(
                record.ocr,
                extracted_fields=dict(record.ocr.extracted_fields),
                confidence_by_field=dict(record.ocr.confidence_by_field),
                suggestions={name: list(values) for name, values in record.ocr.suggestions.items()},
            )
            ocr.requires_review = compute_requires_review(
                ocr.confidence_by_field, quality.score, ocr.status
            )

        enhanced = DocumentRecord(
            id=new_document_id(),
            source_file=enhanced_file,
            category=record.category,
            quality=quality,
            ocr=ocr,
            captured_at=datetime.now(),
            remote_id=record.remote_id,
        )
        logger.info(f"[Layer 2] Enhanced {record.id} -> {enhanced.id}, "
                    f"score {record.quality.score} -> {quality.score}")
        return enhanced
