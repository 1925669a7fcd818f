"""
Layer 1 — Capture
Camera capability, cancellable timers, live frame analysis and the
capture surface state machine.
"""
from .camera import CameraDevice, OpenCVCamera, encode_jpeg
from .frame_analyzer import (
    AnalyzerConfig,
    Countdown,
    FrameAnalysis,
    LiveFrameAnalyzer,
    edge_density,
    is_document_present,
)
from .surface import CaptureConfig, CaptureSurface, SurfaceState
from .timers import Disposer, ManualScheduler, Scheduler, ThreadScheduler, TimerHandle

__all__ = [
    'CameraDevice',
    'OpenCVCamera',
    'encode_jpeg',
    'AnalyzerConfig',
    'Countdown',
    'FrameAnalysis',
    'LiveFrameAnalyzer',
    'edge_density',
    'is_document_present',
    'CaptureConfig',
    'CaptureSurface',
    'SurfaceState',
    'Disposer',
    'ManualScheduler',
    'Scheduler',
    'ThreadScheduler',
    'TimerHandle'
]
