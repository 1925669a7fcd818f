"""
Tests for the image enhancer.
"""
import threading

import numpy as np
import pytest

from onboarding_docs.error_handlers import EnhancementError, EnhancementInProgressError
from onboarding_docs.layer2_image_enhancer import EnhancementConfig, ImageEnhancer
from onboarding_docs.layer2_image_enhancer.enhancer import (
    adjust_brightness_contrast,
    contrast_factor,
    sharpen,
    sharpen_kernel,
)
from onboarding_docs.layer2_quality import decode_image
from onboarding_docs.models import (
    DocumentCategory,
    DocumentQuality,
    DocumentRecord,
    OcrData,
    OcrStatus,
)


def make_record(source, score=60, ocr=None):
    return DocumentRecord(
        id='doc_source',
        source_file=source,
        category=DocumentCategory.PASSPORT,
        quality=DocumentQuality(score=score, issues=['Low resolution'], recommendations=['Use higher resolution']),
        ocr=ocr,
        remote_id='remote-9',
    )


class TestPixelOperations:
    """Test the pure enhancement passes."""

    def test_contrast_factor_identity(self):
        """Test zero contrast leaves pixels unchanged."""
        assert contrast_factor(0) == pytest.approx(1.0)

    def test_contrast_factor_increases(self):
        """Test positive contrast gives a factor above 1."""
        assert contrast_factor(15) > 1.0

    def test_brightness_offset(self):
        """Test brightness adds b/100*255 before contrast."""
        pixels = np.full((2, 2, 3), 100, dtype=np.uint8)
        result = adjust_brightness_contrast(pixels, brightness=20, contrast=0)
        assert int(result[0, 0, 0]) == 151

    def test_values_are_clamped(self):
        """Test channels stay in [0, 255]."""
        pixels = np.array([[[0, 128, 255]]], dtype=np.uint8)
        result = adjust_brightness_contrast(pixels, brightness=50, contrast=100)
        assert result.dtype == np.uint8
        assert result.min() >= 0 and result.max() <= 255
        assert int(result[0, 0, 2]) == 255

    def test_sharpen_kernel_weights(self):
        """Test center weight 5 + strength/20 with orthogonal -1 and zero corners."""
        kernel = sharpen_kernel(5)
        assert kernel[1, 1] == pytest.approx(5.25)
        assert kernel[0, 1] == kernel[1, 0] == kernel[1, 2] == kernel[2, 1] == -1
        assert kernel[0, 0] == kernel[2, 2] == 0

    def test_sharpen_reads_unmodified_input(self):
        """Test the convolution never sees its own output."""
        pixels = np.random.default_rng(4).integers(0, 256, size=(6, 7, 3), dtype=np.uint8)
        kernel = sharpen_kernel(5).astype(np.float64)

        padded = np.pad(pixels.astype(np.float64), ((1, 1), (1, 1), (0, 0)), mode='edge')
        expected = np.zeros(pixels.shape, dtype=np.float64)
        for dy in range(3):
            for dx in range(3):
                expected += kernel[dy, dx] * padded[dy:dy + 6, dx:dx + 7]
        expected = np.clip(np.rint(expected), 0, 255).astype(np.uint8)

        assert np.array_equal(sharpen(pixels, strength=5), expected)

    def test_sharpen_disabled(self):
        """Test zero strength returns an unchanged copy."""
        pixels = np.full((3, 3, 3), 7, dtype=np.uint8)
        result = sharpen(pixels, strength=0)
        assert np.array_equal(result, pixels)
        assert result is not pixels


class TestImageEnhancer:
    """Test enhancement of document records."""

    def test_returns_new_record(self, small_image):
        """Test enhancement produces a new id and leaves the source alone."""
        source = make_record(small_image)

        enhanced = ImageEnhancer().enhance(source)

        assert enhanced.id != source.id
        assert enhanced.source_file is not source.source_file
        assert source.source_file is small_image
        assert enhanced.category == source.category
        assert enhanced.remote_id == 'remote-9'
        assert enhanced.source_file.media_type == 'image/png'
        assert decode_image(enhanced.source_file.data).shape == decode_image(small_image.data).shape

    def test_score_bumped(self, small_image):
        """Test quality score gains 10 points and keeps issues."""
        enhanced = ImageEnhancer().enhance(make_record(small_image, score=60))

        assert enhanced.quality.score == 70
        assert enhanced.quality.issues == ['Low resolution']

    def test_score_capped(self, small_image):
        """Test the bump never exceeds 100."""
        enhanced = ImageEnhancer().enhance(make_record(small_image, score=95))
        assert enhanced.quality.score == 100

    @pytest.mark.parametrize('score', [0, 40, 90, 100])
    def test_score_never_decreases(self, small_image, score):
        """Test enhanced score is at least the source score."""
        enhanced = ImageEnhancer().enhance(make_record(small_image, score=score))
        assert enhanced.quality.score >= score

    def test_review_flag_recomputed(self, small_image):
        """Test requires_review follows the bumped score."""
        ocr = OcrData(
            extracted_fields={'firstName': 'Ana'},
            confidence_by_field={'firstName': 95.0},
            status=OcrStatus.COMPLETED,
            requires_review=True,
        )
        source = make_record(small_image, score=65, ocr=ocr)

        enhanced = ImageEnhancer().enhance(source)

        assert enhanced.ocr is not source.ocr
        assert enhanced.ocr.requires_review is False
        assert source.ocr.requires_review is True

    def test_jpeg_output(self, make_source):
        """Test JPEG sources are re-encoded as JPEG."""
        source = make_record(make_source('capture.jpg'))
        enhanced = ImageEnhancer(EnhancementConfig(sharpness=0)).enhance(source)
        assert enhanced.source_file.media_type == 'image/jpeg'
        assert enhanced.source_file.data[:2] == b'\xff\xd8'

    def test_pdf_cannot_be_enhanced(self, pdf_file):
        """Test undecodable sources raise EnhancementError."""
        with pytest.raises(EnhancementError) as exc_info:
            ImageEnhancer().enhance(make_record(pdf_file))
        assert exc_info.value.error_code == 'ENHANCEMENT_UNSUPPORTED'

    def test_concurrent_enhancement_rejected(self, small_image):
        """Test a second request for the same record is refused while one runs."""
        enhancer = ImageEnhancer()
        record = make_record(small_image)
        started = threading.Event()
        release = threading.Event()
        original = enhancer._enhance

        def slow_enhance(rec):
            started.set()
            release.wait(5)
            return original(rec)

        enhancer._enhance = slow_enhance
        worker = threading.Thread(target=enhancer.enhance, args=(record,))
        worker.start()
        try:
            assert started.wait(5)
            with pytest.raises(EnhancementInProgressError):
                enhancer.enhance(record)
        finally:
            release.set()
            worker.join(5)

        # Free again once the first call finished
        assert enhancer.enhance(record).id != record.id
