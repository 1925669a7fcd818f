"""
Layer 4 — Document Step
The document step of the onboarding wizard: capture or upload, review,
enhance and continue. Reports the document list to the wizard after every
change.
"""
import logging
import threading
from dataclasses import replace
from typing import Callable, Iterable, List, Optional

from .. import notifications as notify
from ..error_handlers import DocumentCaptureError, ValidationError
from ..i18n import normalize_language, translate
from ..layer1_capture import CameraDevice, CaptureConfig, CaptureSurface, Scheduler
from ..layer2_image_enhancer import ImageEnhancer
from ..layer2_quality import QualityAssessor
from ..layer3_ocr import DocumentServiceClient
from ..models import DocumentCategory, DocumentRecord, SourceFile
from ..notifications import NotificationChannel
from .collection import DEFAULT_SORT, DocumentCollection
from .orchestrator import BatchResult, UploadLimits, UploadOrchestrator
from .previews import PreviewStore

logger = logging.getLogger(__name__)


class DocumentStep:
    """
    Wizard collaborator for document capture.

    Args:
        language: 'en' or 'es'
        max_documents: Collection size limit
        allowed_categories: Categories the classifier may assign
        on_documents_change: Called with the record list after every change
        on_continue: Called with the record list when the user continues
        session_id: Onboarding session; without one nothing is uploaded
    """

    def __init__(
        self,
        language: str = 'en',
        max_documents: int = 10,
        allowed_categories: Optional[Iterable] = None,
        on_documents_change: Optional[Callable[[List[DocumentRecord]], None]] = None,
        on_continue: Optional[Callable[[List[DocumentRecord]], None]] = None,
        session_id: Optional[str] = None,
        client: Optional[DocumentServiceClient] = None,
        assessor: Optional[QualityAssessor] = None,
        enhancer: Optional[ImageEnhancer] = None,
        notifications: Optional[NotificationChannel] = None
    ):
        self.language = normalize_language(language)
        self.session_id = session_id
        self.allowed_categories = (
            [DocumentCategory(getattr(c, 'value', c)) for c in allowed_categories]
            if allowed_categories is not None else None
        )
        self.on_documents_change = on_documents_change
        self.on_continue = on_continue

        self.notifications = notifications or NotificationChannel()
        self.previews = PreviewStore()
        self.collection = DocumentCollection(self.previews, self.language)
        self.enhancer = enhancer or ImageEnhancer()
        self.orchestrator = UploadOrchestrator(
            self.collection,
            client=client,
            assessor=assessor,
            notifications=self.notifications,
            limits=UploadLimits(max_documents=max_documents),
            language=self.language,
            allowed_categories=self.allowed_categories,
        )
        self.surface: Optional[CaptureSurface] = None
        # Camera shots arrive on the timer thread; batches must not interleave
        self._lock = threading.RLock()

    @property
    def documents(self) -> List[DocumentRecord]:
        return self.collection.documents

    # ------------------------------------------------------------------
    # Ingest
    # ------------------------------------------------------------------

    def upload_files(self, files: Iterable[SourceFile]) -> BatchResult:
        with self._lock:
            result = self.orchestrator.process_batch(files, self.session_id)
            if result.records:
                self._changed()
            return result

    def open_camera(
        self,
        camera: CameraDevice,
        scheduler: Optional[Scheduler] = None,
        auto_capture: bool = False,
        config: Optional[CaptureConfig] = None
    ) -> CaptureSurface:
        """Open a capture surface whose shots feed straight into upload_files."""
        self.close_camera()
        config = replace(config or CaptureConfig(), auto_capture=auto_capture)
        self.surface = CaptureSurface(
            camera,
            on_capture=self._on_capture,
            scheduler=scheduler,
            config=config,
            language=self.language,
        )
        self.surface.open()
        return self.surface

    def close_camera(self):
        if self.surface is not None:
            self.surface.close()

    def _on_capture(self, source: SourceFile):
        try:
            self.upload_files([source])
        except DocumentCaptureError as e:
            self.notifications.emit(notify.ERROR, translate('upload.failed', self.language), e.error_code)
            raise

    # ------------------------------------------------------------------
    # Review actions
    # ------------------------------------------------------------------

    def remove(self, document_id: str) -> DocumentRecord:
        with self._lock:
            record = self.collection.remove(document_id)
            self._changed()
            return record

    def bulk_delete(self, confirm: bool = False, ids: Optional[Iterable[str]] = None) -> List[DocumentRecord]:
        with self._lock:
            removed = self.collection.bulk_delete(confirm=confirm, ids=ids)
            if removed:
                self._changed()
            return removed

    def enhance(self, document_id: str) -> DocumentRecord:
        """Replace a document with its enhanced version at the same position."""
        with self._lock:
            source = self.collection.get(document_id)
            enhanced = self.enhancer.enhance(source)
            enhanced = self.collection.replace(document_id, enhanced)
            self._changed()
            return enhanced

    def reprocess(self, document_id: str, language: Optional[str] = None) -> DocumentRecord:
        with self._lock:
            record = self.collection.get(document_id)
            updated = self.orchestrator.reprocess(record, normalize_language(language or self.language))
            self._changed()
            return updated

    def view(self, query: str = '', category=None, sort: str = DEFAULT_SORT) -> List[DocumentRecord]:
        with self._lock:
            return self.collection.view(query, category, sort)

    # ------------------------------------------------------------------
    # Wizard contract
    # ------------------------------------------------------------------

    @property
    def can_continue(self) -> bool:
        return len(self.collection) > 0

    def continue_(self) -> List[DocumentRecord]:
        """
        Raises:
            ValidationError: No documents captured yet
        """
        with self._lock:
            if not self.can_continue:
                raise ValidationError(
                    message="At least one document is required to continue",
                    error_code="NO_DOCUMENTS",
                )
            documents = self.documents
        logger.info(f"[Layer 4] Continuing with {len(documents)} documents")
        if self.on_continue:
            self.on_continue(documents)
        return documents

    def _changed(self):
        if self.on_documents_change:
            self.on_documents_change(self.documents)

    def close(self):
        self.close_camera()
        with self._lock:
            self.collection.clear()
