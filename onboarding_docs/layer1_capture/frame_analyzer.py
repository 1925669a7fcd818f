"""
Layer 1 — Live Frame Analyzer
Polls the active stream once per second, estimates whether a document fills
the frame from grayscale edge density, and runs the auto-capture countdown.
"""
import logging
from dataclasses import dataclass
from typing import Callable, Optional

import numpy as np

from .camera import CameraDevice
from .timers import Scheduler, TimerHandle

logger = logging.getLogger(__name__)


@dataclass
class AnalyzerConfig:
    """Detection tunables."""
    interval_seconds: float = 1.0
    edge_threshold: int = 50
    min_edge_ratio: float = 0.1   # below: empty frame
    max_edge_ratio: float = 0.4   # above: visual noise
    countdown_seconds: int = 3
    countdown_interval: float = 1.0


@dataclass
class FrameAnalysis:
    edge_ratio: float
    document_present: bool
    width: int
    height: int


def edge_density(pixels: np.ndarray, threshold: int = 50) -> float:
    """
    Fraction of pixels with a 4-connected neighbour whose gray level differs
    by more than the threshold. Gray is the plain mean of the three channels.
    """
    height, width = pixels.shape[:2]
    if height == 0 or width == 0:
        return 0.0

    if pixels.ndim == 2:
        gray = pixels.astype(np.float32)
    else:
        gray = pixels[:, :, :3].astype(np.float32).mean(axis=2)

    edges = np.zeros((height, width), dtype=bool)

    vertical = np.abs(np.diff(gray, axis=0)) > threshold
    edges[1:, :] |= vertical
    edges[:-1, :] |= vertical

    horizontal = np.abs(np.diff(gray, axis=1)) > threshold
    edges[:, 1:] |= horizontal
    edges[:, :-1] |= horizontal

    return float(edges.mean())


def is_document_present(ratio: float, config: Optional[AnalyzerConfig] = None) -> bool:
    config = config or AnalyzerConfig()
    return config.min_edge_ratio < ratio < config.max_edge_ratio


class LiveFrameAnalyzer:
    """
    Samples frames from a streaming camera. The caller drives analyze() on
    the configured interval while it owns the stream.
    """

    def __init__(self, camera: CameraDevice, config: Optional[AnalyzerConfig] = None):
        self.camera = camera
        self.config = config or AnalyzerConfig()
        self.document_present = False
        self.last_analysis: Optional[FrameAnalysis] = None

    def analyze(self) -> Optional[FrameAnalysis]:
        """
        Analyze the current frame.

        Returns:
            FrameAnalysis, or None when the stream has no usable frame yet
        """
        frame = self.camera.grab_frame()
        if frame is None or frame.size == 0 or frame.shape[0] == 0 or frame.shape[1] == 0:
            logger.debug("Stream not ready, skipping analysis tick")
            return None

        ratio = edge_density(frame, self.config.edge_threshold)
        present = is_document_present(ratio, self.config)
        if present != self.document_present:
            logger.info(f"[Layer 1] Document {'detected' if present else 'lost'} (edge ratio {ratio:.3f})")
        else:
            logger.debug(f"Edge ratio {ratio:.3f}, present={present}")

        self.document_present = present
        self.last_analysis = FrameAnalysis(
            edge_ratio=ratio,
            document_present=present,
            width=int(frame.shape[1]),
            height=int(frame.shape[0])
        )
        return self.last_analysis

    def reset(self):
        self.document_present = False
        self.last_analysis = None


class Countdown:
    """
    Ticks down from `seconds` at a fixed interval and calls on_complete once
    on reaching zero, then returns to idle.
    """

    def __init__(
        self,
        scheduler: Scheduler,
        on_complete: Callable[[], None],
        seconds: int = 3,
        interval: float = 1.0,
        on_tick: Optional[Callable[[int], None]] = None
    ):
        self.scheduler = scheduler
        self.on_complete = on_complete
        self.on_tick = on_tick
        self.seconds = seconds
        self.interval = interval
        self.remaining = 0
        self._handle: Optional[TimerHandle] = None

    @property
    def active(self) -> bool:
        return self.remaining > 0

    def start(self) -> TimerHandle:
        if self.active:
            return self._handle
        self.remaining = self.seconds
        self._handle = self.scheduler.call_every(self.interval, self._tick)
        logger.info(f"[Layer 1] Auto-capture countdown started ({self.seconds}s)")
        return self._handle

    def cancel(self):
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
        if self.remaining:
            logger.info("[Layer 1] Countdown cancelled")
        self.remaining = 0

    def _tick(self):
        if self.remaining <= 1:
            handle, self._handle = self._handle, None
            if handle is not None:
                handle.cancel()
            self.remaining = 0
            self.on_complete()
            return
        self.remaining -= 1
        if self.on_tick:
            self.on_tick(self.remaining)
