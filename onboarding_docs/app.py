"""
Onboarding Document Capture Service
Thin coordinator for the layered document capture pipeline.

Provides REST API for:
- Camera capture with live document detection (local hardware)
- File upload with local quality scoring and remote OCR
- Per-session document review: search, delete, enhance, re-process
"""
from flask import Flask, Response, jsonify, request
from flask_cors import CORS
import time
import logging
import threading

from . import settings
from .error_handlers import (
    CameraError,
    CameraPermissionDeniedError,
    CaptureInProgressError,
    DocumentCaptureError,
    DocumentLimitExceededError,
    DocumentServiceError,
    EnhancementInProgressError,
    InvalidStatusTransitionError,
    UnknownDocumentError,
    UnknownSessionError,
    ValidationError,
    handle_error,
)
from .i18n import normalize_language, translate
from .layer1_capture import OpenCVCamera, SurfaceState, encode_jpeg
from .layer2_quality import QualityAssessor, classify_filename
from .layer3_ocr import get_document_client
from .layer4_documents import DocumentStep
from .models import SourceFile
from .notifications import NotificationChannel, NotificationLog

# Setup logging
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL, logging.INFO),
    format='%(asctime)s - %(levelname)s - %(message)s',
    datefmt='%Y-%m-%d %H:%M:%S'
)
logger = logging.getLogger(__name__)


def error_status(error):
    """HTTP status for a pipeline error."""
    if isinstance(error, (UnknownDocumentError, UnknownSessionError)):
        return 404
    if isinstance(error, (CaptureInProgressError, EnhancementInProgressError, InvalidStatusTransitionError)):
        return 409
    if isinstance(error, CameraPermissionDeniedError):
        return 403
    if isinstance(error, CameraError):
        return 409
    if isinstance(error, DocumentLimitExceededError):
        return 422
    if isinstance(error, ValidationError):
        return 400
    if isinstance(error, DocumentServiceError):
        return 502
    if isinstance(error, DocumentCaptureError):
        return 422
    return 500


class DocumentCoordinator:
    """
    Coordinates onboarding sessions and the shared camera.
    Each session owns one DocumentStep; the camera serves one session at a time.
    """

    def __init__(self, client=None, camera_factory=None, scheduler=None, assessor=None):
        logger.info("Initializing DocumentCoordinator")
        self.client = client
        self.camera_factory = camera_factory or (lambda: OpenCVCamera(camera_index=settings.CAMERA_INDEX))
        self.scheduler = scheduler
        self.assessor = assessor or QualityAssessor()

        self.sessions = {}
        self.logs = {}
        self.camera_session = None
        self._lock = threading.Lock()

    def get_client(self):
        if self.client is None:
            self.client = get_document_client()
        return self.client

    def session(self, session_id, language=None):
        """Get or create the document step for a session."""
        with self._lock:
            step = self.sessions.get(session_id)
            if step is None:
                channel = NotificationChannel()
                step = DocumentStep(
                    language=language or settings.DEFAULT_LANGUAGE,
                    max_documents=settings.MAX_DOCUMENTS,
                    session_id=session_id,
                    client=self.get_client(),
                    assessor=self.assessor,
                    notifications=channel,
                )
                self.sessions[session_id] = step
                self.logs[session_id] = NotificationLog(channel)
                logger.info(f"Session {session_id} started ({step.language})")
            return step

    def existing_session(self, session_id):
        step = self.sessions.get(session_id)
        if step is None:
            raise UnknownSessionError(session_id)
        return step

    def drain_notifications(self, session_id):
        log = self.logs.get(session_id)
        return [n.to_dict() for n in log.drain()] if log else []

    def end_session(self, session_id):
        with self._lock:
            step = self.sessions.pop(session_id, None)
            log = self.logs.pop(session_id, None)
        if step is None:
            raise UnknownSessionError(session_id)
        if self.camera_session == session_id:
            self.camera_session = None
        step.close()
        if log:
            log.close()
        logger.info(f"Session {session_id} ended")

    def resolve_preview(self, token):
        for step in list(self.sessions.values()):
            source = step.previews.resolve(token)
            if source is not None:
                return source
        return None

    # Camera (exclusive)

    def open_camera(self, session_id, auto_capture=False):
        step = self.session(session_id)
        if self.camera_session and self.camera_session != session_id:
            self.close_camera()
        surface = step.open_camera(self.camera_factory(), scheduler=self.scheduler, auto_capture=auto_capture)
        self.camera_session = session_id
        return surface

    def camera_surface(self):
        if self.camera_session is None:
            return None
        step = self.sessions.get(self.camera_session)
        return step.surface if step else None

    def close_camera(self):
        surface = self.camera_surface()
        if surface is not None:
            surface.close()
        self.camera_session = None


def _read_upload(file_storage):
    return SourceFile(
        name=file_storage.filename or 'upload',
        media_type=file_storage.mimetype or 'application/octet-stream',
        data=file_storage.read()
    )


def create_app(coordinator=None):
    """
    Build the Flask application.

    Args:
        coordinator: Optional DocumentCoordinator (tests inject fakes here)
    """
    app = Flask(__name__)

    # Enable CORS for cross-origin requests from the onboarding frontend
    CORS(app, origins=["*"])

    coordinator = coordinator or DocumentCoordinator()
    app.config['COORDINATOR'] = coordinator

    @app.errorhandler(DocumentCaptureError)
    def capture_error(e):
        return jsonify(handle_error(e)), error_status(e)

    # ========================================================================
    # Service
    # ========================================================================

    @app.route("/health", methods=["GET"])
    def health_check():
        """Health check endpoint for service discovery and load balancers"""
        return jsonify({
            "status": "healthy",
            "service": "onboarding-document-capture",
            "version": "1.0.0"
        })

    @app.route("/api/status", methods=["GET"])
    def api_status():
        """Get service status and capabilities"""
        surface = coordinator.camera_surface()
        return jsonify({
            "success": True,
            "document_service": settings.DOCUMENT_SERVICE_URL,
            "active_sessions": len(coordinator.sessions),
            "camera_state": surface.state.value if surface else SurfaceState.CLOSED.value,
            "max_documents": settings.MAX_DOCUMENTS,
            "endpoints": {
                "health": "/health",
                "quality": "/api/quality",
                "documents": "/api/sessions/<session_id>/documents",
                "camera": "/api/camera/status",
                "video_feed": "/api/camera/video_feed"
            }
        })

    @app.route("/api/quality", methods=["POST"])
    def api_quality():
        """
        Score a single image without storing it.

        Request:
            multipart/form-data with 'document' and optional 'language'
        """
        if 'document' not in request.files:
            return jsonify({
                "success": False,
                "error": "No document file provided",
                "error_code": "NO_DOCUMENT"
            }), 400

        source = _read_upload(request.files['document'])
        language = normalize_language(request.form.get('language'))
        quality = coordinator.assessor.assess(source, language)
        return jsonify({
            "success": True,
            "filename": source.name,
            "category": classify_filename(source.name).value,
            "quality": quality.to_dict(),
            "summary": translate('quality.good', language) if quality.is_good else None
        })

    # ========================================================================
    # Session documents
    # ========================================================================

    @app.route("/api/sessions/<session_id>/documents", methods=["POST"])
    def upload_documents(session_id):
        """
        Ingest one or more files into the session.

        Request:
            multipart/form-data with 'documents' (repeatable) and optional 'language'
        """
        files = request.files.getlist('documents')
        if not files:
            return jsonify({
                "success": False,
                "error": "No documents provided",
                "error_code": "NO_DOCUMENTS"
            }), 400

        step = coordinator.session(session_id, normalize_language(request.form.get('language')))
        logger.info(f"Upload request for session {session_id}: {len(files)} files")
        try:
            result = step.upload_files([_read_upload(f) for f in files])
        except DocumentCaptureError as e:
            response = handle_error(e)
            response["notifications"] = coordinator.drain_notifications(session_id)
            return jsonify(response), error_status(e)

        return jsonify({
            "success": True,
            **result.to_dict(),
            "notifications": coordinator.drain_notifications(session_id)
        }), 201 if result.records else 200

    @app.route("/api/sessions/<session_id>/documents", methods=["GET"])
    def list_documents(session_id):
        step = coordinator.existing_session(session_id)
        documents = step.view(
            query=request.args.get('q', ''),
            category=request.args.get('category') or None,
            sort=request.args.get('sort', 'captured_at')
        )
        return jsonify({
            "success": True,
            "count": len(documents),
            "total": len(step.collection),
            "documents": [doc.to_dict() for doc in documents],
            "can_continue": step.can_continue
        })

    @app.route("/api/sessions/<session_id>/documents/<document_id>", methods=["DELETE"])
    def delete_document(session_id, document_id):
        step = coordinator.existing_session(session_id)
        record = step.remove(document_id)
        return jsonify({"success": True, "deleted": [record.id]})

    @app.route("/api/sessions/<session_id>/documents/bulk-delete", methods=["POST"])
    def bulk_delete(session_id):
        step = coordinator.existing_session(session_id)
        payload = request.get_json(silent=True) or {}
        removed = step.bulk_delete(confirm=bool(payload.get('confirm')), ids=payload.get('ids') or [])
        return jsonify({
            "success": True,
            "deleted": [record.id for record in removed],
            "remaining": len(step.collection)
        })

    @app.route("/api/sessions/<session_id>/documents/<document_id>/enhance", methods=["POST"])
    def enhance_document(session_id, document_id):
        step = coordinator.existing_session(session_id)
        record = step.enhance(document_id)
        return jsonify({"success": True, "replaced": document_id, "document": record.to_dict()})

    @app.route("/api/sessions/<session_id>/documents/<document_id>/reprocess", methods=["POST"])
    def reprocess_document(session_id, document_id):
        step = coordinator.existing_session(session_id)
        payload = request.get_json(silent=True) or {}
        record = step.reprocess(document_id, payload.get('language'))
        return jsonify({"success": True, "document": record.to_dict()})

    @app.route("/api/sessions/<session_id>/continue", methods=["POST"])
    def continue_session(session_id):
        step = coordinator.existing_session(session_id)
        documents = step.continue_()
        return jsonify({"success": True, "documents": [doc.to_dict() for doc in documents]})

    @app.route("/api/sessions/<session_id>", methods=["DELETE"])
    def end_session(session_id):
        coordinator.end_session(session_id)
        return jsonify({"success": True})

    @app.route("/api/previews/<token>", methods=["GET"])
    def preview(token):
        source = coordinator.resolve_preview(token)
        if source is None:
            return jsonify({
                "success": False,
                "error": "Preview not found",
                "error_code": "PREVIEW_NOT_FOUND"
            }), 404
        return Response(source.data, mimetype=source.media_type)

    # ========================================================================
    # Camera
    # ========================================================================

    @app.route("/api/camera/open", methods=["POST"])
    def open_camera():
        payload = request.get_json(silent=True) or {}
        session_id = payload.get('sessionId')
        if not session_id:
            return jsonify({
                "success": False,
                "error": "sessionId is required",
                "error_code": "NO_SESSION"
            }), 400

        logger.info(f"Open camera request for session {session_id}")
        surface = coordinator.open_camera(session_id, auto_capture=bool(payload.get('autoCapture', settings.AUTO_CAPTURE)))
        if surface.state == SurfaceState.BLOCKED:
            response = handle_error(surface.last_error)
            response["camera"] = surface.status()
            return jsonify(response), 403
        return jsonify({"success": True, "camera": surface.status()})

    @app.route("/api/camera/capture", methods=["POST"])
    def capture():
        surface = coordinator.camera_surface()
        if surface is None:
            return jsonify({
                "success": False,
                "error": "Camera is not open",
                "error_code": "CAMERA_NOT_STREAMING"
            }), 409

        session_id = coordinator.camera_session
        step = coordinator.sessions[session_id]
        logger.info("Capture request received from client")
        try:
            source = surface.capture()
        except DocumentCaptureError as e:
            response = handle_error(e)
            response["notifications"] = coordinator.drain_notifications(session_id)
            return jsonify(response), error_status(e)

        record = next((doc for doc in reversed(step.documents) if doc.source_file is source), None)
        return jsonify({
            "success": True,
            "filename": source.name,
            "document": record.to_dict() if record else None,
            "notifications": coordinator.drain_notifications(session_id)
        }), 201

    @app.route("/api/camera/close", methods=["POST"])
    def close_camera():
        logger.info("Close camera request received")
        coordinator.close_camera()
        return jsonify({"success": True})

    @app.route("/api/camera/auto-capture", methods=["POST"])
    def auto_capture():
        payload = request.get_json(silent=True) or {}
        surface = coordinator.camera_surface()
        if surface is None:
            return jsonify({
                "success": False,
                "error": "Camera is not open",
                "error_code": "CAMERA_NOT_STREAMING"
            }), 409
        surface.set_auto_capture(bool(payload.get('enabled')))
        return jsonify({"success": True, "camera": surface.status()})

    @app.route("/api/camera/status", methods=["GET"])
    def camera_status():
        surface = coordinator.camera_surface()
        if surface is None:
            return jsonify({"success": True, "camera": {"state": SurfaceState.CLOSED.value}})
        return jsonify({"success": True, "camera": surface.status()})

    @app.route("/api/camera/video_feed", methods=["GET"])
    def video_feed():
        """MJPEG stream with the detection overlay"""
        logger.info("Video feed with overlay requested")

        def generate():
            while True:
                surface = coordinator.camera_surface()
                if surface is None or surface.state != SurfaceState.STREAMING:
                    break
                frame, _ = surface.preview_frame()
                if frame is None:
                    time.sleep(0.1)
                    continue
                frame_bytes = encode_jpeg(frame, 80)
                yield (b'--frame\r\n'
                       b'Content-Type: image/jpeg\r\n\r\n' + frame_bytes + b'\r\n')
            logger.info("Video feed ended")

        return Response(generate(), mimetype='multipart/x-mixed-replace; boundary=frame')

    return app


# ============================================================================
# Main Entry Point
# ============================================================================

if __name__ == '__main__':
    print("\n" + "=" * 60)
    print("ONBOARDING DOCUMENT CAPTURE SERVICE")
    print("=" * 60)
    print("\n📡 API Endpoints:")
    print("  GET  /health                              - Health check")
    print("  GET  /api/status                          - Service status")
    print("  POST /api/quality                         - Score an image")
    print("  POST /api/sessions/<sid>/documents        - Upload documents")
    print("  GET  /api/sessions/<sid>/documents        - Search / filter / sort")
    print("  POST /api/camera/open|capture|close       - Camera control")
    print(f"\n🎥 Camera: device {settings.CAMERA_INDEX}, auto-capture {'on' if settings.AUTO_CAPTURE else 'off'}")
    print(f"🌐 Document service: {settings.DOCUMENT_SERVICE_URL}")
    print("=" * 60 + "\n")

    logger.info("Flask server starting")
    create_app().run(host='0.0.0.0', port=5000, debug=False, threaded=True)
