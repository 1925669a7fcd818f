"""
Layer 1 — Capture Surface
Owns the camera lifecycle, the detection overlay and the shutter.

State machine:
    closed -> requesting_permission -> streaming | blocked -> closed

The camera is held only while streaming. Every exit path (capture, close,
denied permission) stops the stream and cancels both the analyzer poll and
the countdown.
"""
import cv2
import logging
import threading
import time
from dataclasses import dataclass, field
from functools import partial
from enum import Enum
from typing import Callable, Dict, Optional, Tuple

import numpy as np

from ..error_handlers import (
    CameraNotStreamingError,
    CameraPermissionDeniedError,
    CaptureInProgressError,
    FrameCaptureError,
)
from ..i18n import translate
from ..models import SourceFile
from .camera import CameraDevice
from .frame_analyzer import AnalyzerConfig, Countdown, LiveFrameAnalyzer
from .timers import Disposer, Scheduler, ThreadScheduler

logger = logging.getLogger(__name__)


class SurfaceState(str, Enum):
    CLOSED = 'closed'
    REQUESTING_PERMISSION = 'requesting_permission'
    STREAMING = 'streaming'
    BLOCKED = 'blocked'


@dataclass
class CaptureConfig:
    """Camera request and shutter settings."""
    facing_mode: str = 'environment'
    width: int = 1920
    height: int = 1080
    jpeg_quality: int = 90
    auto_capture: bool = False
    analyzer: AnalyzerConfig = field(default_factory=AnalyzerConfig)


class CaptureSurface:
    """
    Camera capture with optional auto-capture.

    on_capture receives the finished SourceFile; the surface closes right
    after delivering it.
    """

    # Overlay colours (BGR)
    COLOR_IDLE = (255, 255, 255)
    COLOR_DETECTED = (0, 200, 0)

    def __init__(
        self,
        camera: CameraDevice,
        on_capture: Callable[[SourceFile], None],
        scheduler: Optional[Scheduler] = None,
        config: Optional[CaptureConfig] = None,
        language: str = 'en',
        clock: Callable[[], float] = time.time
    ):
        self.camera = camera
        self.on_capture = on_capture
        self.scheduler = scheduler or ThreadScheduler()
        self.config = config or CaptureConfig()
        self.language = language
        self.clock = clock

        self.state = SurfaceState.CLOSED
        self.auto_capture = self.config.auto_capture
        self.is_capturing = False
        self.last_error: Optional[CameraPermissionDeniedError] = None

        self.analyzer = LiveFrameAnalyzer(camera, self.config.analyzer)
        self._generation = 0
        self.countdown = self._new_countdown()

        self._lock = threading.RLock()
        self._disposer = Disposer()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def open(self) -> SurfaceState:
        """Request the camera and start analysis. Returns the resulting state."""
        with self._lock:
            if self.state == SurfaceState.STREAMING:
                return self.state

            self.state = SurfaceState.REQUESTING_PERMISSION
            cfg = self.config
            try:
                self.camera.open_stream(cfg.facing_mode, cfg.width, cfg.height)
            except CameraPermissionDeniedError as e:
                self.camera.stop_stream()
                self.state = SurfaceState.BLOCKED
                self.last_error = e
                logger.warning(f"[Layer 1] Camera blocked: {e.details.get('reason')}")
                return self.state

            self.last_error = None
            self.state = SurfaceState.STREAMING
            # Ticks from a previous open() must not reach this stream
            self._generation += 1
            self.countdown = self._new_countdown()
            self._disposer = Disposer()
            self._disposer.add(
                self.scheduler.call_every(cfg.analyzer.interval_seconds, self._analysis_tick)
            )
            self._disposer.add(self.countdown.cancel)
            logger.info(f"[Layer 1] Camera streaming (auto-capture {'on' if self.auto_capture else 'off'})")
            return self.state

    def _new_countdown(self) -> Countdown:
        return Countdown(
            self.scheduler,
            on_complete=partial(self._on_countdown_complete, self._generation),
            seconds=self.config.analyzer.countdown_seconds,
            interval=self.config.analyzer.countdown_interval
        )

    def retry(self) -> SurfaceState:
        """Retry after a denied permission request."""
        with self._lock:
            if self.state != SurfaceState.BLOCKED:
                return self.state
            return self.open()

    def close(self):
        """Stop the stream and every timer. Safe to call repeatedly."""
        with self._lock:
            self._disposer.dispose()
            self.countdown.cancel()
            self.camera.stop_stream()
            self.analyzer.reset()
            if self.state != SurfaceState.CLOSED:
                logger.info(f"[Layer 1] Capture surface closed (was {self.state.value})")
            self.state = SurfaceState.CLOSED

    # ------------------------------------------------------------------
    # Shutter
    # ------------------------------------------------------------------

    def capture(self) -> SourceFile:
        """
        Manual shutter.

        Raises:
            CameraNotStreamingError: Surface is not streaming
            CaptureInProgressError: A capture or countdown is running
            FrameCaptureError: No frame could be grabbed or encoded
        """
        with self._lock:
            if self.countdown.active:
                raise CaptureInProgressError(reason="countdown")
            return self._capture()

    def _capture(self) -> SourceFile:
        if self.state != SurfaceState.STREAMING:
            raise CameraNotStreamingError(self.state.value)
        if self.is_capturing:
            raise CaptureInProgressError(reason="capture")

        self.is_capturing = True
        try:
            frame = self.camera.grab_frame()
            if frame is None or frame.size == 0:
                raise FrameCaptureError(reason="No frame available")
            data = self.camera.encode_frame(frame, self.config.jpeg_quality)
        except Exception:
            self.is_capturing = False
            raise

        source = SourceFile(
            name=f"document_{int(self.clock() * 1000)}.jpg",
            media_type='image/jpeg',
            data=data
        )
        logger.info(f"[Layer 1] Captured {source.name} ({source.size} bytes)")
        try:
            self.on_capture(source)
        finally:
            self.is_capturing = False
            self.close()
        return source

    # ------------------------------------------------------------------
    # Analyzer / countdown callbacks
    # ------------------------------------------------------------------

    def _analysis_tick(self):
        with self._lock:
            if self.state != SurfaceState.STREAMING:
                return
            analysis = self.analyzer.analyze()
            if analysis is None:
                return
            if (
                analysis.document_present
                and self.auto_capture
                and not self.countdown.active
                and not self.is_capturing
            ):
                self._disposer.add(self.countdown.start())

    def _on_countdown_complete(self, generation: int):
        with self._lock:
            # A close() racing the final tick wins
            if self.state != SurfaceState.STREAMING or generation != self._generation:
                logger.debug("[Layer 1] Stale countdown completion ignored")
                return
            try:
                self._capture()
            except (CaptureInProgressError, FrameCaptureError) as e:
                logger.warning(f"[Layer 1] Auto-capture failed: {e.message}")

    # ------------------------------------------------------------------
    # Presentation
    # ------------------------------------------------------------------

    def set_auto_capture(self, enabled: bool):
        with self._lock:
            self.auto_capture = bool(enabled)
            if not self.auto_capture:
                self.countdown.cancel()

    @property
    def document_detected(self) -> bool:
        return self.analyzer.document_present

    def prompt(self) -> str:
        if self.state == SurfaceState.BLOCKED:
            return translate('capture.permission_denied', self.language)
        if self.state == SurfaceState.REQUESTING_PERMISSION:
            return translate('capture.permission_request', self.language)
        if self.countdown.active:
            return translate('capture.hold_steady', self.language)
        if self.document_detected:
            return translate('capture.document_detected', self.language)
        return translate('capture.position_document', self.language)

    def status(self) -> Dict:
        analysis = self.analyzer.last_analysis
        return {
            'state': self.state.value,
            'auto_capture': self.auto_capture,
            'document_detected': self.document_detected,
            'edge_ratio': round(analysis.edge_ratio, 4) if analysis else None,
            'countdown': self.countdown.remaining,
            'is_capturing': self.is_capturing,
            'retryable': self.state == SurfaceState.BLOCKED,
            'prompt': self.prompt(),
        }

    def preview_frame(self) -> Tuple[Optional[np.ndarray], Dict]:
        """Current frame with the detection overlay drawn on a copy."""
        with self._lock:
            if self.state != SurfaceState.STREAMING:
                return None, self.status()
            frame = self.camera.grab_frame()
            if frame is None or frame.size == 0:
                return None, self.status()
            return self.render_overlay(frame), self.status()

    def render_overlay(self, frame: np.ndarray) -> np.ndarray:
        display = frame.copy()
        h, w = display.shape[:2]
        color = self.COLOR_DETECTED if self.document_detected else self.COLOR_IDLE

        # Document guide: inset frame at roughly ID-card proportions
        margin_x, margin_y = int(w * 0.1), int(h * 0.15)
        cv2.rectangle(display, (margin_x, margin_y), (w - margin_x, h - margin_y), color, 2, cv2.LINE_AA)

        cv2.putText(
            display, self.prompt(), (margin_x, max(margin_y - 12, 20)),
            cv2.FONT_HERSHEY_SIMPLEX, 0.8, color, 2, cv2.LINE_AA
        )
        if self.countdown.active:
            text = str(self.countdown.remaining)
            (tw, th), _ = cv2.getTextSize(text, cv2.FONT_HERSHEY_SIMPLEX, 4, 8)
            cv2.putText(
                display, text, ((w - tw) // 2, (h + th) // 2),
                cv2.FONT_HERSHEY_SIMPLEX, 4, color, 8, cv2.LINE_AA
            )
        return display

    def __enter__(self):
        """Context manager entry."""
        self.open()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.close()
        return False
