"""
Tests for the capture layer: timers, frame analysis and the capture surface.
"""
import numpy as np
import pytest

from onboarding_docs.error_handlers import (
    CameraNotStreamingError,
    CaptureInProgressError,
    FrameCaptureError,
)
from onboarding_docs.layer1_capture import (
    AnalyzerConfig,
    CaptureConfig,
    CaptureSurface,
    Countdown,
    Disposer,
    LiveFrameAnalyzer,
    ManualScheduler,
    SurfaceState,
    edge_density,
    is_document_present,
)
from onboarding_docs.layer2_quality import decode_image


class TestManualScheduler:
    """Test the virtual clock scheduler."""

    def test_fires_on_interval(self):
        """Test callbacks run once per elapsed interval."""
        scheduler = ManualScheduler()
        calls = []
        scheduler.call_every(1.0, lambda: calls.append(scheduler.now))

        scheduler.advance(3.5)

        assert calls == [1.0, 2.0, 3.0]
        assert scheduler.now == 3.5

    def test_cancel_stops_callbacks(self):
        """Test a cancelled handle never fires again."""
        scheduler = ManualScheduler()
        calls = []
        handle = scheduler.call_every(1.0, lambda: calls.append(1))

        scheduler.advance(1)
        handle.cancel()
        scheduler.advance(5)

        assert calls == [1]
        assert scheduler.active_timers == 0

    def test_callback_errors_are_contained(self):
        """Test a failing callback does not break the scheduler."""
        scheduler = ManualScheduler()
        calls = []

        def boom():
            raise RuntimeError("boom")

        scheduler.call_every(1.0, boom)
        scheduler.call_every(1.0, lambda: calls.append(1))
        scheduler.advance(2)

        assert calls == [1, 1]


class TestDisposer:
    """Test grouped cleanup."""

    def test_dispose_cancels_everything_once(self):
        """Test handles are cancelled and callables run exactly once."""
        scheduler = ManualScheduler()
        disposer = Disposer()
        handle = disposer.add(scheduler.call_every(1.0, lambda: None))
        cleanups = []
        disposer.add(lambda: cleanups.append('x'))

        disposer.dispose()
        disposer.dispose()

        assert handle.cancelled
        assert cleanups == ['x']


class TestEdgeDensity:
    """Test the frame edge-density measure."""

    def test_uniform_frame(self):
        """Test an empty frame has no edges."""
        frame = np.full((60, 80, 3), 90, dtype=np.uint8)
        assert edge_density(frame) == 0.0

    def test_striped_frame(self, document_frame):
        """Test alternating stripes: two edge columns per boundary."""
        assert edge_density(document_frame) == pytest.approx(30 / 160)

    def test_small_steps_ignored(self):
        """Test gray deltas at or below the threshold do not count."""
        frame = np.zeros((10, 10, 3), dtype=np.uint8)
        frame[:, 5:] = 50
        assert edge_density(frame) == 0.0
        frame[:, 5:] = 51
        assert edge_density(frame) == pytest.approx(0.2)

    def test_zero_dimension(self):
        """Test an empty array yields 0."""
        assert edge_density(np.zeros((0, 0, 3), dtype=np.uint8)) == 0.0

    @pytest.mark.parametrize('ratio,expected', [
        (0.0, False),
        (0.1, False),
        (0.2, True),
        (0.4, False),
        (0.9, False),
    ])
    def test_document_band(self, ratio, expected):
        """Test the open (0.1, 0.4) detection band."""
        assert is_document_present(ratio) is expected


class TestLiveFrameAnalyzer:
    """Test per-tick frame analysis."""

    def test_detects_document(self, camera):
        """Test a document-like frame is reported present."""
        camera.open_stream()
        analysis = LiveFrameAnalyzer(camera).analyze()

        assert analysis.document_present
        assert (analysis.width, analysis.height) == (160, 120)

    def test_noise_is_not_a_document(self, make_camera):
        """Test a noisy frame falls above the band."""
        frame = np.random.default_rng(0).integers(0, 256, size=(120, 160, 3), dtype=np.uint8)
        camera = make_camera(frame=frame)
        camera.open_stream()

        assert LiveFrameAnalyzer(camera).analyze().document_present is False

    def test_skips_zero_dimension_frame(self, make_camera):
        """Test a not-yet-ready stream is skipped without error."""
        camera = make_camera(frame=np.zeros((0, 0, 3), dtype=np.uint8))
        camera.open_stream()
        analyzer = LiveFrameAnalyzer(camera)

        assert analyzer.analyze() is None
        assert analyzer.document_present is False

    def test_skips_missing_frame(self, camera):
        """Test a closed stream yields no analysis."""
        assert LiveFrameAnalyzer(camera).analyze() is None


class TestCountdown:
    """Test the auto-capture countdown."""

    def test_fires_once_after_three_ticks(self, scheduler):
        """Test completion after 3 seconds, then idle."""
        fired = []
        ticks = []
        countdown = Countdown(scheduler, lambda: fired.append(scheduler.now), on_tick=ticks.append)

        countdown.start()
        assert countdown.remaining == 3
        scheduler.advance(10)

        assert fired == [3.0]
        assert ticks == [2, 1]
        assert not countdown.active
        assert scheduler.active_timers == 0

    def test_cancel(self, scheduler):
        """Test cancelling suppresses completion."""
        fired = []
        countdown = Countdown(scheduler, lambda: fired.append(1))

        countdown.start()
        scheduler.advance(1)
        countdown.cancel()
        scheduler.advance(5)

        assert fired == []
        assert countdown.remaining == 0


class TestCaptureSurfaceLifecycle:
    """Test the capture surface state machine."""

    def test_open_streams(self, camera, scheduler):
        """Test open requests the rear camera at 1920x1080."""
        surface = CaptureSurface(camera, on_capture=lambda f: None, scheduler=scheduler)

        assert surface.open() == SurfaceState.STREAMING
        assert camera.requested == ('environment', 1920, 1080)
        assert scheduler.active_timers == 1

    def test_permission_denied_blocks(self, make_camera, scheduler):
        """Test denial moves to blocked, releases the camera and starts no timers."""
        camera = make_camera(deny=True)
        surface = CaptureSurface(camera, on_capture=lambda f: None, scheduler=scheduler)

        assert surface.open() == SurfaceState.BLOCKED
        assert camera.stop_calls == 1
        assert scheduler.active_timers == 0
        assert surface.status()['retryable'] is True
        assert surface.prompt() == 'Camera permission denied'

    def test_retry_after_grant(self, make_camera, scheduler):
        """Test retry reopens once permission is granted."""
        camera = make_camera(deny=True)
        surface = CaptureSurface(camera, on_capture=lambda f: None, scheduler=scheduler)
        surface.open()

        camera.deny = False
        assert surface.retry() == SurfaceState.STREAMING

    def test_close_is_idempotent(self, camera, scheduler):
        """Test close from any state, any number of times."""
        surface = CaptureSurface(camera, on_capture=lambda f: None, scheduler=scheduler)
        surface.close()
        surface.open()
        surface.close()
        surface.close()

        assert surface.state == SurfaceState.CLOSED
        assert not camera.is_streaming
        assert scheduler.active_timers == 0

    def test_context_manager(self, camera, scheduler):
        """Test the surface closes on exit."""
        with CaptureSurface(camera, on_capture=lambda f: None, scheduler=scheduler) as surface:
            assert surface.state == SurfaceState.STREAMING
        assert surface.state == SurfaceState.CLOSED


class TestManualCapture:
    """Test the manual shutter."""

    def test_capture_emits_jpeg_and_closes(self, camera, scheduler):
        """Test capture produces document_<ms>.jpg and closes the surface."""
        captured = []
        surface = CaptureSurface(
            camera, on_capture=captured.append, scheduler=scheduler, clock=lambda: 1700000000.5
        )
        surface.open()

        source = surface.capture()

        assert captured == [source]
        assert source.name == 'document_1700000000500.jpg'
        assert source.media_type == 'image/jpeg'
        assert decode_image(source.data).shape == (120, 160, 3)
        assert surface.state == SurfaceState.CLOSED
        assert not camera.is_streaming
        assert scheduler.active_timers == 0

    def test_capture_requires_stream(self, camera, scheduler):
        """Test capture outside streaming is rejected."""
        surface = CaptureSurface(camera, on_capture=lambda f: None, scheduler=scheduler)
        with pytest.raises(CameraNotStreamingError):
            surface.capture()

    def test_capture_rejected_during_countdown(self, camera, scheduler):
        """Test the manual shutter is refused while a countdown runs."""
        surface = CaptureSurface(
            camera, on_capture=lambda f: None, scheduler=scheduler,
            config=CaptureConfig(auto_capture=True)
        )
        surface.open()
        scheduler.advance(1)
        assert surface.countdown.active

        with pytest.raises(CaptureInProgressError):
            surface.capture()

    def test_capture_not_reentrant(self, camera, scheduler):
        """Test capturing from inside the capture callback is refused."""
        errors = []
        surface = None

        def on_capture(source):
            try:
                surface.capture()
            except CaptureInProgressError as e:
                errors.append(e)

        surface = CaptureSurface(camera, on_capture=on_capture, scheduler=scheduler)
        surface.open()
        surface.capture()

        assert len(errors) == 1

    def test_no_frame_keeps_streaming(self, make_camera, scheduler):
        """Test a missing frame raises and leaves the stream open."""
        camera = make_camera(frame=np.zeros((0, 0, 3), dtype=np.uint8))
        surface = CaptureSurface(camera, on_capture=lambda f: None, scheduler=scheduler)
        surface.open()

        with pytest.raises(FrameCaptureError):
            surface.capture()

        assert surface.state == SurfaceState.STREAMING
        assert surface.is_capturing is False


class TestAutoCapture:
    """Test detection driven auto-capture."""

    def test_sustained_detection_fires_once(self, camera, scheduler):
        """Test a document present for the whole countdown fires exactly one shutter."""
        captured = []
        surface = CaptureSurface(
            camera, on_capture=captured.append, scheduler=scheduler,
            config=CaptureConfig(auto_capture=True)
        )
        surface.open()

        scheduler.advance(10)

        assert len(captured) == 1
        assert surface.state == SurfaceState.CLOSED
        assert scheduler.active_timers == 0

    def test_countdown_progress(self, camera, scheduler):
        """Test detection at 1s starts the countdown and it fires at 4s."""
        captured = []
        surface = CaptureSurface(
            camera, on_capture=captured.append, scheduler=scheduler,
            config=CaptureConfig(auto_capture=True)
        )
        surface.open()

        scheduler.advance(1)
        assert surface.countdown.remaining == 3
        assert surface.prompt() == 'Hold steady...'
        scheduler.advance(2)
        assert surface.countdown.remaining == 1
        assert captured == []
        scheduler.advance(1)
        assert len(captured) == 1

    def test_close_mid_countdown(self, camera, scheduler):
        """Test closing at tick 2 of 3 suppresses the capture and clears timers."""
        captured = []
        surface = CaptureSurface(
            camera, on_capture=captured.append, scheduler=scheduler,
            config=CaptureConfig(auto_capture=True)
        )
        surface.open()
        scheduler.advance(2)
        assert surface.countdown.remaining == 2

        surface.close()
        scheduler.advance(10)

        assert captured == []
        assert scheduler.active_timers == 0
        assert surface.countdown.remaining == 0

    def test_countdown_from_previous_open_is_ignored(self, camera, scheduler):
        """Test a late tick from before close() cannot capture on the reopened stream."""
        captured = []
        surface = CaptureSurface(
            camera, on_capture=captured.append, scheduler=scheduler,
            config=CaptureConfig(auto_capture=True)
        )
        surface.open()
        scheduler.advance(1)
        stale = surface.countdown
        assert stale.active

        surface.close()
        surface.open()
        stale.remaining = 1
        stale._tick()

        assert captured == []
        assert surface.state == SurfaceState.STREAMING
        assert surface.countdown is not stale

    def test_auto_capture_off(self, camera, scheduler):
        """Test detection alone never fires the shutter."""
        captured = []
        surface = CaptureSurface(camera, on_capture=captured.append, scheduler=scheduler)
        surface.open()

        scheduler.advance(10)

        assert captured == []
        assert surface.document_detected
        assert surface.prompt() == 'Document Detected'

    def test_disabling_cancels_countdown(self, camera, scheduler):
        """Test turning auto-capture off mid-countdown."""
        captured = []
        surface = CaptureSurface(
            camera, on_capture=captured.append, scheduler=scheduler,
            config=CaptureConfig(auto_capture=True)
        )
        surface.open()
        scheduler.advance(1)

        surface.set_auto_capture(False)
        scheduler.advance(10)

        assert captured == []
        assert surface.state == SurfaceState.STREAMING

    def test_empty_frame_never_counts_down(self, make_camera, scheduler):
        """Test an empty scene does not start a countdown."""
        camera = make_camera(frame=np.full((120, 160, 3), 30, dtype=np.uint8))
        surface = CaptureSurface(
            camera, on_capture=lambda f: None, scheduler=scheduler,
            config=CaptureConfig(auto_capture=True, analyzer=AnalyzerConfig())
        )
        surface.open()
        scheduler.advance(5)

        assert not surface.countdown.active
        assert surface.prompt() == 'Position document within the frame'


class TestOverlay:
    """Test preview rendering."""

    def test_preview_frame(self, camera, scheduler):
        """Test the overlay is drawn on a copy of the frame."""
        surface = CaptureSurface(camera, on_capture=lambda f: None, scheduler=scheduler)
        surface.open()
        scheduler.advance(1)

        frame, status = surface.preview_frame()

        assert frame.shape == camera.frame.shape
        assert frame is not camera.frame
        assert status['document_detected'] is True
        assert status['state'] == 'streaming'

    def test_preview_when_closed(self, camera, scheduler):
        """Test no frame while closed."""
        surface = CaptureSurface(camera, on_capture=lambda f: None, scheduler=scheduler)
        frame, status = surface.preview_frame()
        assert frame is None
        assert status['state'] == 'closed'
