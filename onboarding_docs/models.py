"""
Document records shared by every capture layer.
"""
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

from .error_handlers import InvalidStatusTransitionError

REVIEW_CONFIDENCE_THRESHOLD = 75.0
REVIEW_QUALITY_THRESHOLD = 70


class DocumentCategory(str, Enum):
    DRIVERS_LICENSE = 'drivers_license'
    SSN_CARD = 'ssn_card'
    PASSPORT = 'passport'
    BIRTH_CERTIFICATE = 'birth_certificate'
    OTHER = 'other'


class OcrStatus(str, Enum):
    PENDING = 'pending'
    PROCESSING = 'processing'
    COMPLETED = 'completed'
    FAILED = 'failed'


_ALLOWED_TRANSITIONS = {
    OcrStatus.PENDING: {OcrStatus.PROCESSING, OcrStatus.FAILED},
    OcrStatus.PROCESSING: {OcrStatus.COMPLETED, OcrStatus.FAILED},
    OcrStatus.COMPLETED: set(),
    OcrStatus.FAILED: set(),
}


@dataclass(frozen=True)
class SourceFile:
    """Binary payload of a captured or selected document."""
    name: str
    media_type: str
    data: bytes = field(repr=False)

    @property
    def size(self) -> int:
        return len(self.data)

    @property
    def is_image(self) -> bool:
        return self.media_type.startswith('image/')

    @property
    def is_pdf(self) -> bool:
        return self.media_type == 'application/pdf'


@dataclass(frozen=True)
class DocumentQuality:
    """Usability rating for a captured document image."""
    score: int
    issues: List[str] = field(default_factory=list)
    recommendations: List[str] = field(default_factory=list)

    @property
    def is_good(self) -> bool:
        return not self.issues

    @property
    def level(self) -> str:
        return quality_level(self.score)

    def to_dict(self) -> Dict:
        return {
            'score': self.score,
            'issues': list(self.issues),
            'recommendations': list(self.recommendations),
            'level': self.level,
        }


@dataclass
class OcrData:
    """OCR outcome attached to a document once upload has run."""
    extracted_fields: Dict[str, object] = field(default_factory=dict)
    confidence_by_field: Dict[str, float] = field(default_factory=dict)
    raw_text: str = ''
    status: OcrStatus = OcrStatus.PENDING
    requires_review: bool = True
    suggestions: Dict[str, List[str]] = field(default_factory=dict)

    def transition(self, status: OcrStatus) -> None:
        """Advance along pending -> processing -> completed|failed."""
        status = OcrStatus(status)
        if status not in _ALLOWED_TRANSITIONS[self.status]:
            raise InvalidStatusTransitionError(self.status.value, status.value)
        self.status = status

    @property
    def average_confidence(self) -> float:
        return average_confidence(self.confidence_by_field)

    def to_dict(self) -> Dict:
        return {
            'extracted_fields': dict(self.extracted_fields),
            'confidence_by_field': dict(self.confidence_by_field),
            'confidence_level_by_field': {
                name: confidence_level(value) for name, value in self.confidence_by_field.items()
            },
            'average_confidence': self.average_confidence,
            'confidence_level': confidence_level(self.average_confidence),
            'suggestions': {name: list(values) for name, values in self.suggestions.items()},
            'raw_text': self.raw_text,
            'status': self.status.value,
            'requires_review': self.requires_review,
        }


@dataclass
class DocumentRecord:
    """The unit of work moving through capture, upload and review."""
    id: str
    source_file: SourceFile
    category: DocumentCategory
    quality: DocumentQuality
    preview_handle: Optional[str] = None
    ocr: Optional[OcrData] = None
    captured_at: datetime = field(default_factory=datetime.now)
    remote_id: Optional[str] = None

    @property
    def name(self) -> str:
        return self.source_file.name

    @property
    def requires_review(self) -> bool:
        return self.ocr.requires_review if self.ocr else False

    def to_dict(self) -> Dict:
        return {
            'id': self.id,
            'name': self.source_file.name,
            'media_type': self.source_file.media_type,
            'size': self.source_file.size,
            'size_label': format_file_size(self.source_file.size),
            'category': self.category.value,
            'preview': self.preview_handle,
            'quality': self.quality.to_dict(),
            'ocr': self.ocr.to_dict() if self.ocr else None,
            'captured_at': self.captured_at.isoformat(),
            'remote_id': self.remote_id,
        }


def new_document_id() -> str:
    return f"doc_{uuid.uuid4().hex}"


def average_confidence(confidence_by_field: Dict[str, float]) -> float:
    values = list(confidence_by_field.values())
    if not values:
        return 0.0
    return sum(values) / len(values)


def compute_requires_review(confidence_by_field, quality_score, status) -> bool:
    """A human must verify the extracted data when any signal is weak."""
    return (
        average_confidence(confidence_by_field) < REVIEW_CONFIDENCE_THRESHOLD
        or quality_score < REVIEW_QUALITY_THRESHOLD
        or OcrStatus(status) == OcrStatus.FAILED
    )


def quality_level(score: int) -> str:
    if score >= 80:
        return 'good'
    if score >= 60:
        return 'fair'
    return 'poor'


def confidence_level(confidence: float) -> str:
    if confidence >= 90:
        return 'high'
    if confidence >= 70:
        return 'medium'
    return 'low'


def format_file_size(size: int) -> str:
    """Human-readable byte count, e.g. '1.5 MB'."""
    if size <= 0:
        return '0 Bytes'
    units = ['Bytes', 'KB', 'MB', 'GB']
    exponent = 0
    while size >= 1024 ** (exponent + 1) and exponent < len(units) - 1:
        exponent += 1
    value = round(size / (1024 ** exponent), 2)
    return f"{value:g} {units[exponent]}"
