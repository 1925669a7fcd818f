"""
Document Service Client
Communicates with the remote document-storage / OCR service.

The service stores uploaded onboarding documents and returns extracted
fields with per-field confidences. Any non-2xx answer or transport error
surfaces as DocumentServiceError.
"""
import logging
import requests
from dataclasses import dataclass
from typing import Mapping, Optional

from .. import settings
from ..error_handlers import DocumentServiceError
from ..models import SourceFile

logger = logging.getLogger(__name__)


@dataclass
class UploadResult:
    """Outcome of a successful upload."""
    document_id: Optional[str]
    ocr_result: Optional[dict] = None
    document: Optional[dict] = None


class DocumentServiceClient:
    """
    Client for the onboarding document service.

    Handles:
    - Document upload with session metadata
    - OCR (re-)processing of an uploaded document
    """

    def __init__(self, base_url: str = None, timeout: int = None):
        """
        Initialize document service client.

        Args:
            base_url: Base URL of the service. Defaults to DOCUMENT_SERVICE_URL env var.
            timeout: Request timeout in seconds.
        """
        self.base_url = (base_url or settings.DOCUMENT_SERVICE_URL).rstrip('/')
        self.timeout = timeout or settings.DOCUMENT_SERVICE_TIMEOUT
        self.session = requests.Session()
        logger.info(f"Document service client initialized with base URL: {self.base_url}")

    def health_check(self) -> bool:
        """
        Check if the document service is healthy.

        Returns:
            bool: True if service is healthy, False otherwise.
        """
        try:
            response = self.session.get(f"{self.base_url}/health", timeout=5)
            return response.status_code == 200
        except requests.RequestException as e:
            logger.warning(f"Document service health check failed: {e}")
            return False

    def upload_document(
        self,
        session_id: str,
        source: SourceFile,
        category: str,
        document_name: str = None
    ) -> UploadResult:
        """
        Upload a document for an onboarding session.

        Args:
            session_id: Onboarding session identifier.
            source: File payload.
            category: Document category value.
            document_name: Display name, defaults to the file name.

        Returns:
            UploadResult: Remote document id and OCR result if the service ran it inline.

        Raises:
            DocumentServiceError: If the upload fails.
        """
        files = {'document': (source.name, source.data, source.media_type)}
        data = {
            'sessionId': session_id,
            'documentType': getattr(category, 'value', category),
            'documentName': document_name or source.name,
        }
        try:
            response = self.session.post(
                f"{self.base_url}/api/documents/onboarding-upload",
                files=files,
                data=data,
                timeout=self.timeout
            )
        except requests.RequestException as e:
            logger.error(f"Failed to upload document: {e}")
            raise DocumentServiceError(f"Failed to upload document: {e}")

        payload = self._parse(response, "Upload failed")
        body = payload.get('data') or payload
        return UploadResult(
            document_id=body.get('documentId'),
            ocr_result=body.get('ocrResult') or payload.get('ocrResult'),
            document=body
        )

    def process_ocr(self, document_id: str, language: str = 'en') -> dict:
        """
        Request OCR processing for an uploaded document.

        Args:
            document_id: Remote document identifier.
            language: OCR language hint ('en' or 'es').

        Returns:
            dict: OCR result with extractedData, fieldConfidences, rawText, processingStatus.

        Raises:
            DocumentServiceError: If processing fails or returns no result.
        """
        try:
            response = self.session.post(
                f"{self.base_url}/api/ocr/process",
                json={'documentId': document_id, 'language': language},
                timeout=self.timeout
            )
        except requests.RequestException as e:
            logger.error(f"Failed to process OCR: {e}")
            raise DocumentServiceError(f"Failed to process OCR: {e}")

        payload = self._parse(response, "OCR processing failed")
        body = payload.get('data') or payload
        ocr_result = body.get('ocrResult')
        if not ocr_result:
            raise DocumentServiceError(
                "OCR processing returned no result",
                status_code=response.status_code,
                error_code="OCR_EMPTY_RESULT"
            )
        return check_ocr_result(ocr_result)

    def _parse(self, response, default_error: str) -> dict:
        """Return the JSON body of a 2xx response or raise DocumentServiceError."""
        try:
            payload = response.json()
        except ValueError:
            payload = {}
        if not isinstance(payload, dict):
            payload = {}

        if not 200 <= response.status_code < 300:
            message = payload.get('error') or f"{default_error} (HTTP {response.status_code})"
            logger.warning(f"Document service returned {response.status_code}: {message}")
            raise DocumentServiceError(
                message,
                status_code=response.status_code,
                details={'response': payload}
            )

        if payload.get('success') is False:
            raise DocumentServiceError(
                payload.get('error', default_error),
                status_code=response.status_code
            )
        return payload


def check_ocr_result(raw) -> dict:
    """
    Validate the shape of an OCR result before field mapping.

    extractedData and fieldConfidences must be objects when present, and
    every confidence must be numeric.

    Raises:
        DocumentServiceError: OCR_MALFORMED_RESULT if the payload does not fit.
    """
    if not isinstance(raw, Mapping):
        raise DocumentServiceError(
            "OCR result is not an object",
            error_code="OCR_MALFORMED_RESULT",
            details={'type': type(raw).__name__}
        )
    for key in ('extractedData', 'fieldConfidences'):
        value = raw.get(key)
        if value is not None and not isinstance(value, Mapping):
            raise DocumentServiceError(
                f"OCR result field {key} is not an object",
                error_code="OCR_MALFORMED_RESULT",
                details={'field': key, 'type': type(value).__name__}
            )
    for name, value in (raw.get('fieldConfidences') or {}).items():
        try:
            float(value)
        except (TypeError, ValueError):
            raise DocumentServiceError(
                f"OCR confidence for {name} is not a number",
                error_code="OCR_MALFORMED_RESULT",
                details={'field': name, 'value': repr(value)}
            )
    return raw


# Singleton instance
_client: Optional[DocumentServiceClient] = None


def get_document_client() -> DocumentServiceClient:
    """
    Get the singleton document service client instance.

    Returns:
        DocumentServiceClient: The client instance.
    """
    global _client
    if _client is None:
        _client = DocumentServiceClient()
    return _client
