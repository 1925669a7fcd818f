"""
Tests for quality assessment and filename classification.
"""
import numpy as np
import pytest

from onboarding_docs.layer2_quality import QualityAssessor, classify_filename, decode_image
from onboarding_docs.layer2_quality.quality import luminance_range, mean_luminance, sampled_edge_ratio
from onboarding_docs.error_handlers import ImageDecodeError
from onboarding_docs.models import DocumentCategory, SourceFile


def noise(width, height, seed=0):
    return np.random.default_rng(seed).integers(0, 256, size=(height, width, 3), dtype=np.uint8)


class TestQualityScenarios:
    """Test end-to-end scoring of realistic inputs."""

    def test_good_image_scores_high(self, good_image):
        """Test a large, well-lit, sharp image has no issues."""
        assert 200000 < good_image.size < 5 * 1024 * 1024

        quality = QualityAssessor().assess(good_image)

        assert quality.score >= 90
        assert quality.issues == []
        assert quality.recommendations == []
        assert quality.is_good

    def test_dark_small_image_scores_low(self, dark_image):
        """Test a small, dark, tiny file reports the expected issues."""
        quality = QualityAssessor().assess(dark_image)

        assert 'Low resolution' in quality.issues
        assert 'File too small' in quality.issues
        assert 'Image too dark' in quality.issues
        assert quality.score < 50
        assert len(quality.recommendations) == len(quality.issues)

    def test_dark_image_in_spanish(self, dark_image):
        """Test issues are localized."""
        quality = QualityAssessor().assess(dark_image, language='es')

        assert 'Imagen muy oscura' in quality.issues
        assert 'Resolución baja' in quality.issues

    def test_unknown_language_falls_back_to_english(self, dark_image):
        """Test an unsupported language yields English messages."""
        quality = QualityAssessor().assess(dark_image, language='fr')
        assert 'Image too dark' in quality.issues


class TestDecodeFailure:
    """Test behaviour for files that are not decodable images."""

    def test_garbage_bytes_score_zero(self):
        """Test undecodable data yields exactly one issue and score 0."""
        source = SourceFile('scan.jpg', 'image/jpeg', b'not an image' * 1000)

        quality = QualityAssessor().assess(source)

        assert quality.score == 0
        assert quality.issues == ['Could not load image']

    def test_large_garbage_still_single_issue(self):
        """Test file size does not add issues when decoding fails."""
        source = SourceFile('huge.png', 'image/png', b'\x00' * (6 * 1024 * 1024))

        quality = QualityAssessor().assess(source)

        assert quality.score == 0
        assert len(quality.issues) == 1

    def test_pdf_scores_zero(self, pdf_file):
        """Test a PDF cannot be scored as an image."""
        quality = QualityAssessor().assess(pdf_file)
        assert quality.score == 0
        assert len(quality.issues) == 1

    def test_decode_image_raises(self):
        """Test decode_image raises ImageDecodeError for empty input."""
        with pytest.raises(ImageDecodeError):
            decode_image(b'', 'empty.png')


class TestScoreRules:
    """Test individual penalties through assess_pixels."""

    def test_file_too_large(self):
        """Test files over 5 MiB lose 5 points."""
        quality = QualityAssessor().assess_pixels(noise(1200, 900), file_size=6 * 1024 * 1024)

        assert quality.issues == ['File too large']
        assert quality.score == 95

    def test_too_bright_uniform(self):
        """Test a uniform bright image is bright, flat and blurry."""
        image = np.full((900, 1200, 3), 250, dtype=np.uint8)

        quality = QualityAssessor().assess_pixels(image, file_size=300000)

        assert quality.issues == ['Image too bright', 'Low contrast', 'Image blurry']
        assert quality.score == 100 - 15 - 15 - 20

    def test_large_image_uses_working_copy(self):
        """Test images above 1200x900 are downscaled before pixel passes."""
        quality = QualityAssessor().assess_pixels(noise(2400, 1800), file_size=300000)
        assert quality.score == 100

    @pytest.mark.parametrize('value,size', [
        (0, 100),
        (128, 300000),
        (255, 6 * 1024 * 1024),
    ])
    def test_score_bounds(self, value, size):
        """Test score stays in [0, 100] and is 100 only without issues."""
        image = np.full((50, 60, 3), value, dtype=np.uint8)

        quality = QualityAssessor().assess_pixels(image, file_size=size)

        assert 0 <= quality.score <= 100
        assert (quality.score == 100) == (not quality.issues)

    def test_penalties_can_be_overridden(self):
        """Test custom penalty table."""
        assessor = QualityAssessor(penalties={'file_too_large': 50})
        quality = assessor.assess_pixels(noise(1200, 900), file_size=6 * 1024 * 1024)
        assert quality.score == 50

    def test_assessment_is_reproducible(self, good_image):
        """Test seeded sampling gives the same result every run."""
        first = QualityAssessor().assess(good_image)
        second = QualityAssessor().assess(good_image)
        assert first == second

    def test_quality_level(self, good_image, dark_image):
        """Test level labels."""
        assert QualityAssessor().assess(good_image).level == 'good'
        assert QualityAssessor().assess(dark_image).level == 'poor'


class TestPixelStatistics:
    """Test the pure pixel passes."""

    def test_mean_luminance(self):
        """Test luminance is the mean of the channels."""
        image = np.zeros((4, 4, 3), dtype=np.uint8)
        image[:, :, 0] = 30
        image[:, :, 1] = 60
        image[:, :, 2] = 90
        assert mean_luminance(image) == pytest.approx(60.0)

    def test_luminance_range(self):
        """Test range is max minus min luminance."""
        image = np.zeros((2, 2, 3), dtype=np.uint8)
        image[0, 0] = 255
        assert luminance_range(image) == pytest.approx(255.0)

    def test_edge_ratio_uniform_is_zero(self):
        """Test a flat image has no edges."""
        image = np.full((100, 100, 3), 120, dtype=np.uint8)
        assert sampled_edge_ratio(image, np.random.default_rng(0)) == 0.0

    def test_edge_ratio_noise_is_high(self):
        """Test random noise is almost all edges."""
        ratio = sampled_edge_ratio(noise(200, 200), np.random.default_rng(0))
        assert ratio > 0.8

    def test_edge_ratio_tiny_image(self):
        """Test images too small to sample return 0."""
        image = np.zeros((1, 1, 3), dtype=np.uint8)
        assert sampled_edge_ratio(image, np.random.default_rng(0)) == 0.0


class TestClassifier:
    """Test filename based document classification."""

    @pytest.mark.parametrize('filename,expected', [
        ('drivers_license_front.jpg', DocumentCategory.DRIVERS_LICENSE),
        ('Licencia.png', DocumentCategory.DRIVERS_LICENSE),
        ('SSN-card.png', DocumentCategory.SSN_CARD),
        ('Pasaporte.pdf', DocumentCategory.PASSPORT),
        ('acta_nacimiento.jpg', DocumentCategory.BIRTH_CERTIFICATE),
        ('IMG_0001.jpg', DocumentCategory.OTHER),
    ])
    def test_keywords(self, filename, expected):
        """Test keyword matches per category."""
        assert classify_filename(filename) == expected

    def test_first_category_wins(self):
        """Test table order breaks ties."""
        assert classify_filename('license_and_passport.jpg') == DocumentCategory.DRIVERS_LICENSE

    def test_missing_filename(self):
        """Test a missing filename is OTHER."""
        assert classify_filename(None) == DocumentCategory.OTHER

    def test_disallowed_category_degrades(self):
        """Test a guess outside the allowed set becomes OTHER."""
        result = classify_filename('passport.jpg', allowed=[DocumentCategory.DRIVERS_LICENSE])
        assert result == DocumentCategory.OTHER
