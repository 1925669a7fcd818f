"""
Error Handling System
Provides consistent error responses across all capture layers
"""
import logging

logger = logging.getLogger(__name__)


class DocumentCaptureError(Exception):
    """Base exception for document capture errors"""
    def __init__(self, message, error_code, details=None):
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self):
        """Convert error to JSON-serializable dict"""
        return {
            "success": False,
            "error": self.message,
            "error_code": self.error_code,
            "details": self.details
        }


# Layer 1 Errors - Camera / Capture Surface
class CameraError(DocumentCaptureError):
    """Camera-related errors"""
    pass


class CameraPermissionDeniedError(CameraError):
    """Camera access was refused or no device is available"""
    def __init__(self, reason=None):
        super().__init__(
            message="Camera permission denied",
            error_code="CAMERA_PERMISSION_DENIED",
            details={
                "reason": reason,
                "retryable": True,
                "suggestion": "Allow camera access and retry, or upload a file instead"
            }
        )


class CameraNotStreamingError(CameraError):
    """Attempting to capture without an active stream"""
    def __init__(self, state):
        super().__init__(
            message="Camera is not streaming",
            error_code="CAMERA_NOT_STREAMING",
            details={
                "state": state,
                "suggestion": "Open the camera first"
            }
        )


class CaptureInProgressError(CameraError):
    """A capture or countdown is already running"""
    def __init__(self, reason):
        super().__init__(
            message="A capture is already in progress",
            error_code="CAPTURE_IN_PROGRESS",
            details={"reason": reason}
        )


class FrameCaptureError(CameraError):
    """Failed to grab or encode a frame"""
    def __init__(self, reason=None):
        super().__init__(
            message="Failed to capture frame from camera",
            error_code="FRAME_CAPTURE_FAILED",
            details={
                "reason": reason,
                "suggestion": "Check camera connection or reopen the camera"
            }
        )


# Layer 2 Errors - Image Processing
class ImageDecodeError(DocumentCaptureError):
    """Image bytes could not be decoded"""
    def __init__(self, filename=None):
        super().__init__(
            message="Could not decode image",
            error_code="IMAGE_DECODE_FAILED",
            details={
                "filename": filename,
                "suggestion": "Re-capture the document or try another file format"
            }
        )


class EnhancementError(DocumentCaptureError):
    """Image enhancement errors"""
    pass


class EnhancementInProgressError(EnhancementError):
    """Concurrent enhancement of the same document"""
    def __init__(self, document_id):
        super().__init__(
            message=f"Document {document_id} is already being enhanced",
            error_code="ENHANCEMENT_IN_PROGRESS",
            details={"document_id": document_id}
        )


# Layer 3 Errors - Remote document service
class DocumentServiceError(DocumentCaptureError):
    """Upload or OCR request failed"""
    def __init__(self, message, status_code=None, error_code="DOCUMENT_SERVICE_FAILED", details=None):
        details = dict(details or {})
        details["status_code"] = status_code
        super().__init__(message=message, error_code=error_code, details=details)
        self.status_code = status_code


# Layer 4 Errors - Validation / Collection
class ValidationError(DocumentCaptureError):
    """File or request validation errors"""
    pass


class UnsupportedFileTypeError(ValidationError):
    """File is neither an image nor a PDF"""
    def __init__(self, filename, media_type):
        super().__init__(
            message=f"Unsupported file type for {filename}",
            error_code="UNSUPPORTED_FILE_TYPE",
            details={
                "filename": filename,
                "media_type": media_type,
                "suggestion": "Upload a JPG, PNG or PDF file"
            }
        )


class FileTooLargeError(ValidationError):
    """File exceeds the upload size limit"""
    def __init__(self, filename, size, limit):
        super().__init__(
            message=f"File {filename} is too large",
            error_code="FILE_TOO_LARGE",
            details={
                "filename": filename,
                "size": size,
                "limit": limit,
                "suggestion": "Reduce the file size below 10MB"
            }
        )


class DocumentLimitExceededError(ValidationError):
    """Batch would exceed the maximum number of documents"""
    def __init__(self, max_documents, requested):
        super().__init__(
            message=f"You can only upload a maximum of {max_documents} documents",
            error_code="DOCUMENT_LIMIT_EXCEEDED",
            details={
                "max_documents": max_documents,
                "requested": requested
            }
        )


class BulkDeleteNotConfirmedError(ValidationError):
    """Bulk delete attempted without confirmation"""
    def __init__(self, count):
        super().__init__(
            message=f"Deleting {count} document(s) requires confirmation",
            error_code="BULK_DELETE_NOT_CONFIRMED",
            details={"count": count}
        )


class UnknownDocumentError(ValidationError):
    """Document id is not part of the collection"""
    def __init__(self, document_id):
        super().__init__(
            message=f"Document not found: {document_id}",
            error_code="DOCUMENT_NOT_FOUND",
            details={"document_id": document_id}
        )


class UnknownSessionError(ValidationError):
    """Session id has no active document step"""
    def __init__(self, session_id):
        super().__init__(
            message=f"Unknown session: {session_id}",
            error_code="SESSION_NOT_FOUND",
            details={"session_id": session_id}
        )


class InvalidStatusTransitionError(DocumentCaptureError):
    """OCR status moved outside pending -> processing -> completed|failed"""
    def __init__(self, current, requested):
        super().__init__(
            message=f"Cannot move OCR status from {current} to {requested}",
            error_code="INVALID_STATUS_TRANSITION",
            details={"current": current, "requested": requested}
        )


# Error response helpers
def handle_error(error, log_message=None):
    """
    Handle error consistently across the application

    Args:
        error: Exception that occurred
        log_message: Optional custom log message

    Returns:
        dict: Error response for JSON serialization
    """
    if log_message:
        logger.error(log_message)

    if isinstance(error, DocumentCaptureError):
        # Known capture error
        logger.error(f"{error.error_code}: {error.message}")
        if error.details:
            logger.debug(f"Error details: {error.details}")
        return error.to_dict()
    else:
        # Unexpected error
        logger.error(f"Unexpected error: {error}")
        logger.exception("Full traceback:")
        return {
            "success": False,
            "error": "An unexpected error occurred",
            "error_code": "UNEXPECTED_ERROR",
            "details": {
                "error_type": type(error).__name__,
                "error_message": str(error)
            }
        }
