"""
Layer 2 — Document Type Classifier
Advisory guess of the document category from the original filename.
"""
import logging
from typing import Iterable, Optional

from ..models import DocumentCategory

logger = logging.getLogger(__name__)

# Checked in order; first category with a matching keyword wins
CATEGORY_KEYWORDS = (
    (DocumentCategory.DRIVERS_LICENSE, ('license', 'dl', 'licencia', 'driving', 'driver', 'permiso')),
    (DocumentCategory.SSN_CARD, ('ssn', 'social', 'seguro', 'security', 'seguridad')),
    (DocumentCategory.PASSPORT, ('passport', 'pasaporte', 'passeport', 'travel')),
    (DocumentCategory.BIRTH_CERTIFICATE, ('birth', 'nacimiento', 'certificate', 'certificado', 'acta')),
)


def classify_filename(filename: Optional[str], allowed: Optional[Iterable[DocumentCategory]] = None) -> DocumentCategory:
    """
    Infer a document category from keywords in the filename.

    Args:
        filename: Original file name (any case)
        allowed: Optional categories the caller accepts; a guess outside
            this set degrades to OTHER

    Returns:
        DocumentCategory, OTHER when nothing matches
    """
    name = (filename or '').lower()
    category = DocumentCategory.OTHER

    for candidate, keywords in CATEGORY_KEYWORDS:
        if any(keyword in name for keyword in keywords):
            category = candidate
            break

    if allowed is not None and category not in set(allowed):
        logger.debug(f"Category {category.value} not allowed for {filename}, using other")
        category = DocumentCategory.OTHER

    logger.debug(f"Classified '{filename}' as {category.value}")
    return category
