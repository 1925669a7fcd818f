"""
Layer 4 — Upload Orchestrator
Turns captured or selected files into DocumentRecords.

Pipeline per file, one file at a time:
1. Validate type and size (no network on rejection)
2. Classify from the filename
3. Score quality locally
4. Upload to the document service and request OCR
5. Map OCR fields to the canonical vocabulary and flag review

Remote failures never drop the capture: the record is kept with OCR status
'failed' and marked for review.
"""
import logging
from dataclasses import dataclass, field, replace
from typing import Iterable, List, Optional

from .. import notifications as notify
from ..error_handlers import (
    DocumentCaptureError,
    DocumentLimitExceededError,
    DocumentServiceError,
    FileTooLargeError,
    UnsupportedFileTypeError,
    ValidationError,
)
from ..i18n import translate
from ..layer2_quality import QualityAssessor, classify_filename
from ..layer3_ocr import (
    DocumentServiceClient,
    check_ocr_result,
    get_document_client,
    map_confidences,
    map_fields,
    suggest_values,
)
from ..models import (
    DocumentRecord,
    OcrData,
    OcrStatus,
    SourceFile,
    compute_requires_review,
    new_document_id,
)
from ..notifications import NotificationChannel
from .collection import DocumentCollection

logger = logging.getLogger(__name__)


@dataclass
class UploadLimits:
    max_file_size: int = 10 * 1024 * 1024
    max_documents: int = 10


@dataclass
class RejectedFile:
    name: str
    error: DocumentCaptureError

    def to_dict(self):
        return {'name': self.name, **self.error.to_dict()}


@dataclass
class BatchResult:
    """Records created by one batch plus the files turned away."""
    records: List[DocumentRecord] = field(default_factory=list)
    rejected: List[RejectedFile] = field(default_factory=list)

    @property
    def needs_review(self) -> int:
        return sum(1 for record in self.records if record.requires_review)

    def to_dict(self):
        return {
            'documents': [record.to_dict() for record in self.records],
            'rejected': [item.to_dict() for item in self.rejected],
            'processed': len(self.records),
            'needs_review': self.needs_review,
        }


class UploadOrchestrator:
    """
    Sequential ingest of files into a DocumentCollection.

    Without a session id the records are created and scored locally only;
    their OCR stays unset.
    """

    def __init__(
        self,
        collection: DocumentCollection,
        client: Optional[DocumentServiceClient] = None,
        assessor: Optional[QualityAssessor] = None,
        notifications: Optional[NotificationChannel] = None,
        limits: Optional[UploadLimits] = None,
        language: str = 'en',
        allowed_categories=None
    ):
        self.collection = collection
        self._client = client
        self.assessor = assessor or QualityAssessor()
        self.notifications = notifications or NotificationChannel()
        self.limits = limits or UploadLimits()
        self.language = language
        self.allowed_categories = allowed_categories

    @property
    def client(self) -> DocumentServiceClient:
        if self._client is None:
            self._client = get_document_client()
        return self._client

    def validate(self, source: SourceFile):
        """
        Raises:
            UnsupportedFileTypeError: Neither image nor PDF
            FileTooLargeError: Larger than the upload limit
        """
        if not (source.is_image or source.is_pdf):
            raise UnsupportedFileTypeError(source.name, source.media_type)
        if source.size > self.limits.max_file_size:
            raise FileTooLargeError(source.name, source.size, self.limits.max_file_size)

    def process_batch(self, files: Iterable[SourceFile], session_id: Optional[str] = None) -> BatchResult:
        """
        Validate, ingest and upload a batch of files in order.

        Raises:
            DocumentLimitExceededError: Accepted files would exceed max_documents;
                nothing from the batch is ingested
        """
        result = BatchResult()
        accepted = []
        for source in files:
            try:
                self.validate(source)
            except UnsupportedFileTypeError as e:
                result.rejected.append(RejectedFile(source.name, e))
                self._emit(notify.ERROR, 'upload.unsupported_type', e.error_code, filename=source.name)
                continue
            except FileTooLargeError as e:
                result.rejected.append(RejectedFile(source.name, e))
                self._emit(notify.ERROR, 'upload.too_large', e.error_code, filename=source.name)
                continue
            accepted.append(source)

        if not accepted:
            return result

        requested = len(self.collection) + len(accepted)
        if requested > self.limits.max_documents:
            error = DocumentLimitExceededError(self.limits.max_documents, requested)
            self._emit(notify.ERROR, 'upload.limit_exceeded', error.error_code,
                       max_documents=self.limits.max_documents)
            raise error

        total = len(accepted)
        logger.info(f"[Layer 4] Processing batch of {total} documents (session={session_id})")
        for position, source in enumerate(accepted, start=1):
            self._emit(notify.INFO, 'upload.processing', 'UPLOAD_PROGRESS', current=position, total=total)
            record = self.ingest(source, session_id)
            self.collection.add(record)
            result.records.append(record)

        self._emit(notify.SUCCESS, 'upload.processed', 'UPLOAD_COMPLETE', count=len(result.records))
        if result.needs_review:
            self._emit(notify.WARNING, 'upload.needs_review', 'NEEDS_REVIEW', count=result.needs_review)
        return result

    def ingest(self, source: SourceFile, session_id: Optional[str] = None) -> DocumentRecord:
        """Build a record for one validated file."""
        category = classify_filename(source.name, self.allowed_categories)
        quality = self.assessor.assess(source, self.language)
        record = DocumentRecord(
            id=new_document_id(),
            source_file=source,
            category=category,
            quality=quality,
            preview_handle=self.collection.previews.create(source),
        )
        logger.info(f"[Layer 4] {source.name}: category={category.value}, quality={quality.score}")

        if session_id:
            self._upload(record, session_id)
        return record

    def reprocess(self, record: DocumentRecord, language: Optional[str] = None) -> DocumentRecord:
        """
        Request OCR again for an uploaded record. The record keeps its id and
        gets a fresh OCR result; the collection entry is updated in place.

        Raises:
            ValidationError: Record was never uploaded
        """
        if not record.remote_id:
            raise ValidationError(
                message=f"Document {record.id} has not been uploaded",
                error_code="DOCUMENT_NOT_UPLOADED",
                details={"document_id": record.id}
            )

        updated = replace(record, ocr=OcrData())
        updated.ocr.transition(OcrStatus.PROCESSING)
        try:
            raw = self.client.process_ocr(record.remote_id, language or self.language)
            self._apply_ocr(updated, raw)
        except DocumentServiceError as e:
            self._fail_ocr(updated, e)

        if record.id in self.collection:
            self.collection.replace(record.id, updated)
        return updated

    def _upload(self, record: DocumentRecord, session_id: str):
        record.ocr = OcrData()
        record.ocr.transition(OcrStatus.PROCESSING)
        source = record.source_file
        try:
            uploaded = self.client.upload_document(session_id, source, record.category, source.name)
            record.remote_id = uploaded.document_id
            raw = uploaded.ocr_result
            if not raw:
                raw = self.client.process_ocr(uploaded.document_id, self.language)
            self._apply_ocr(record, raw)
        except DocumentServiceError as e:
            self._fail_ocr(record, e)

    def _apply_ocr(self, record: DocumentRecord, raw: dict):
        check_ocr_result(raw)
        ocr = record.ocr
        ocr.extracted_fields = map_fields(raw.get('extractedData'))
        ocr.confidence_by_field = map_confidences(raw.get('fieldConfidences'))
        ocr.raw_text = str(raw.get('rawText') or '')
        for name, value in ocr.extracted_fields.items():
            if isinstance(value, str):
                alternatives = suggest_values(name, value)
                if alternatives:
                    ocr.suggestions[name] = alternatives

        if str(raw.get('processingStatus', '')).lower() == OcrStatus.FAILED.value:
            ocr.transition(OcrStatus.FAILED)
        else:
            ocr.transition(OcrStatus.COMPLETED)

        ocr.requires_review = compute_requires_review(
            ocr.confidence_by_field, record.quality.score, ocr.status
        )
        logger.info(
            f"[Layer 4] OCR {ocr.status.value} for {record.id}: {len(ocr.extracted_fields)} fields, "
            f"avg confidence {ocr.average_confidence:.1f}, review={ocr.requires_review}"
        )

    def _fail_ocr(self, record: DocumentRecord, error: DocumentServiceError):
        logger.warning(f"[Layer 4] Remote processing failed for {record.id}: {error.message}")
        record.ocr.transition(OcrStatus.FAILED)
        record.ocr.requires_review = True

    def _emit(self, level, key, code, **params):
        self.notifications.emit(level, translate(key, self.language, **params), code, **params)
