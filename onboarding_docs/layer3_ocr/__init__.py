"""
Layer 3 — OCR
Remote document upload / OCR client and canonical field mapping.
"""
from .api_client import (
    DocumentServiceClient,
    UploadResult,
    check_ocr_result,
    get_document_client,
)
from .field_mapper import (
    CANONICAL_FIELDS,
    map_confidences,
    map_fields,
    resolve_field,
    suggest_values,
)

__all__ = [
    'DocumentServiceClient',
    'UploadResult',
    'check_ocr_result',
    'get_document_client',
    'CANONICAL_FIELDS',
    'map_confidences',
    'map_fields',
    'resolve_field',
    'suggest_values'
]
