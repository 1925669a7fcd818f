"""
Pytest configuration and fixtures for onboarding document capture tests.
"""
import cv2
import numpy as np
import pytest
from unittest.mock import MagicMock

from onboarding_docs.error_handlers import CameraPermissionDeniedError
from onboarding_docs.layer1_capture import CameraDevice, ManualScheduler, encode_jpeg
from onboarding_docs.layer3_ocr import DocumentServiceClient, UploadResult
from onboarding_docs.models import SourceFile


def encode(pixels, ext='.png', quality=90):
    params = [int(cv2.IMWRITE_JPEG_QUALITY), quality] if ext == '.jpg' else []
    ok, buffer = cv2.imencode(ext, pixels, params)
    assert ok
    return buffer.tobytes()


def noise_pixels(width, height, seed=1):
    """Full-range random pixels: bright enough, high contrast, sharp."""
    rng = np.random.default_rng(seed)
    return rng.integers(0, 256, size=(height, width, 3), dtype=np.uint8)


def striped_frame(width=160, height=120, stripe=10):
    """Alternating black/white columns; edge density around 0.19."""
    frame = np.zeros((height, width, 3), dtype=np.uint8)
    for x in range(0, width, stripe * 2):
        frame[:, x:x + stripe] = 255
    return frame


class FakeCamera(CameraDevice):
    """Camera double serving a fixed frame."""

    def __init__(self, frame=None, deny=False):
        self.frame = striped_frame() if frame is None else frame
        self.deny = deny
        self.streaming = False
        self.open_calls = 0
        self.stop_calls = 0
        self.requested = None

    def open_stream(self, facing_mode='environment', width=1920, height=1080):
        self.open_calls += 1
        self.requested = (facing_mode, width, height)
        if self.deny:
            raise CameraPermissionDeniedError(reason="denied by test")
        self.streaming = True

    def grab_frame(self):
        return self.frame if self.streaming else None

    def encode_frame(self, frame, quality=90):
        return encode_jpeg(frame, quality)

    def stop_stream(self):
        self.stop_calls += 1
        self.streaming = False

    @property
    def is_streaming(self):
        return self.streaming


@pytest.fixture
def good_image():
    """1200x900 well-lit, high-contrast, sharp PNG (about 3 MB)."""
    return SourceFile('passport_scan.png', 'image/png', encode(noise_pixels(1200, 900)))


@pytest.fixture
def dark_image():
    """400x300 almost black JPEG, far below 200 KB."""
    pixels = np.full((300, 400, 3), 10, dtype=np.uint8)
    return SourceFile('dark_photo.jpg', 'image/jpeg', encode(pixels, '.jpg'))


@pytest.fixture
def small_image():
    """Small but valid image for pipeline tests."""
    return SourceFile('drivers_license.png', 'image/png', encode(noise_pixels(120, 80, seed=2)))


@pytest.fixture
def pdf_file():
    return SourceFile('birth_certificate.pdf', 'application/pdf', b'%PDF-1.4\n%fake\n')


@pytest.fixture
def scheduler():
    """Virtual clock scheduler."""
    return ManualScheduler()


@pytest.fixture
def camera():
    """Fake camera showing a document-like frame."""
    return FakeCamera()


@pytest.fixture
def ocr_result():
    """Raw OCR result as returned by the document service."""
    return {
        'extractedData': {
            'first_name': 'John',
            'last_name': 'Doe',
            'dob': '1990-01-15',
            'license_number': 'D1234567',
        },
        'fieldConfidences': {
            'first_name': 0.95,
            'last_name': 0.92,
            'dob': 0.9,
            'license_number': 0.88,
        },
        'rawText': 'JOHN DOE 1990-01-15 D1234567',
        'processingStatus': 'completed',
    }


@pytest.fixture
def document_client(ocr_result):
    """Mocked document service client: upload succeeds, OCR returns ocr_result."""
    client = MagicMock(spec=DocumentServiceClient)
    client.upload_document.return_value = UploadResult(document_id='remote-1')
    client.process_ocr.return_value = ocr_result
    return client


@pytest.fixture
def app(document_client, camera, scheduler):
    """Create Flask test application."""
    from onboarding_docs.app import DocumentCoordinator, create_app
    coordinator = DocumentCoordinator(
        client=document_client,
        camera_factory=lambda: camera,
        scheduler=scheduler
    )
    flask_app = create_app(coordinator)
    flask_app.config['TESTING'] = True
    return flask_app


@pytest.fixture
def client(app):
    """Create Flask test client."""
    return app.test_client()


@pytest.fixture
def make_camera():
    """FakeCamera class, for tests needing custom frames or denial."""
    return FakeCamera


@pytest.fixture
def document_frame():
    return striped_frame()


@pytest.fixture
def make_source():
    """Build a noise image SourceFile of the given size."""
    def factory(name='document.png', width=120, height=80, seed=3):
        media_type = 'image/jpeg' if name.endswith('.jpg') else 'image/png'
        ext = '.jpg' if name.endswith('.jpg') else '.png'
        return SourceFile(name, media_type, encode(noise_pixels(width, height, seed), ext))
    return factory
