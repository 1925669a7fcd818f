"""
Layer 1 — Camera
Capability interface for live video plus the OpenCV-backed device.

The capture surface and frame analyzer only talk to CameraDevice, so
tests can feed synthetic frames through a fake implementation.
"""
import cv2
import logging
from abc import ABC, abstractmethod
from typing import Optional

import numpy as np

from ..error_handlers import CameraPermissionDeniedError, FrameCaptureError

logger = logging.getLogger(__name__)


class CameraDevice(ABC):
    """openStream / grabFrame / encodeFrame / stopStream."""

    @abstractmethod
    def open_stream(self, facing_mode: str = 'environment', width: int = 1920, height: int = 1080) -> None:
        """
        Acquire the camera.

        Raises:
            CameraPermissionDeniedError: Access refused or no device
        """

    @abstractmethod
    def grab_frame(self) -> Optional[np.ndarray]:
        """Current BGR frame, or None while the stream is not ready."""

    @abstractmethod
    def encode_frame(self, frame: np.ndarray, quality: int = 90) -> bytes:
        """Compress a frame to JPEG bytes."""

    @abstractmethod
    def stop_stream(self) -> None:
        """Release the camera. Safe to call when nothing is open."""

    @property
    @abstractmethod
    def is_streaming(self) -> bool:
        """True while the device holds an open stream."""


def encode_jpeg(frame: np.ndarray, quality: int = 90) -> bytes:
    ok, buffer = cv2.imencode('.jpg', frame, [int(cv2.IMWRITE_JPEG_QUALITY), int(quality)])
    if not ok:
        raise FrameCaptureError(reason="JPEG encoding failed")
    return buffer.tobytes()


class OpenCVCamera(CameraDevice):
    """
    Local camera through cv2.VideoCapture.
    OpenCV has no notion of facing mode; the device index selects the camera.
    """

    # Default camera configuration
    DEFAULT_CONFIG = {
        'fps': 30,
        'codec': 'MJPG',
        'buffer_size': 1,  # Minimal buffer for low latency
    }

    def __init__(self, camera_index: int = 0, config: Optional[dict] = None):
        """
        Initialize camera device.

        Args:
            camera_index: cv2 device index
            config: Optional configuration override
        """
        self.camera_index = camera_index
        self.config = {**self.DEFAULT_CONFIG, **(config or {})}
        self.camera: Optional[cv2.VideoCapture] = None

        # Actual resolution (may differ from requested)
        self.actual_width = 0
        self.actual_height = 0

        logger.info(f"OpenCVCamera created for device {camera_index}")

    def open_stream(self, facing_mode: str = 'environment', width: int = 1920, height: int = 1080) -> None:
        if self.is_streaming:
            logger.debug("Camera already streaming")
            return

        logger.info(f"Opening camera {self.camera_index} ({facing_mode}, ideal {width}x{height})")
        try:
            self.camera = cv2.VideoCapture(self.camera_index)
            if not self.camera.isOpened():
                raise CameraPermissionDeniedError(reason=f"Failed to open camera device {self.camera_index}")

            self._configure_camera(width, height)
            self.actual_width = int(self.camera.get(cv2.CAP_PROP_FRAME_WIDTH))
            self.actual_height = int(self.camera.get(cv2.CAP_PROP_FRAME_HEIGHT))
            logger.info(f"Camera streaming: {self.actual_width}x{self.actual_height}")

        except CameraPermissionDeniedError:
            self.stop_stream()
            raise
        except cv2.error as e:
            logger.error(f"Camera initialization failed: {e}")
            self.stop_stream()
            raise CameraPermissionDeniedError(reason=str(e))

    def _configure_camera(self, width: int, height: int):
        """Apply camera configuration settings."""
        cfg = self.config
        fourcc = cv2.VideoWriter_fourcc(*cfg['codec'])
        self.camera.set(cv2.CAP_PROP_FOURCC, fourcc)
        self.camera.set(cv2.CAP_PROP_FRAME_WIDTH, width)
        self.camera.set(cv2.CAP_PROP_FRAME_HEIGHT, height)
        self.camera.set(cv2.CAP_PROP_FPS, cfg['fps'])
        self.camera.set(cv2.CAP_PROP_BUFFERSIZE, cfg['buffer_size'])

    def grab_frame(self) -> Optional[np.ndarray]:
        if not self.is_streaming:
            return None
        ret, frame = self.camera.read()
        if not ret or frame is None:
            logger.debug("Camera returned no frame")
            return None
        return frame

    def encode_frame(self, frame: np.ndarray, quality: int = 90) -> bytes:
        return encode_jpeg(frame, quality)

    def stop_stream(self) -> None:
        if self.camera is not None:
            self.camera.release()
            self.camera = None
            logger.info("Camera released")

    @property
    def is_streaming(self) -> bool:
        return self.camera is not None and self.camera.isOpened()

    def __enter__(self):
        """Context manager entry."""
        self.open_stream()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.stop_stream()
        return False
