"""
Layer 4 — Documents
Session collection, upload orchestration and the wizard document step.
"""
from .collection import DocumentCollection, SORT_KEYS
from .orchestrator import BatchResult, RejectedFile, UploadLimits, UploadOrchestrator
from .previews import PreviewStore
from .wizard_step import DocumentStep

__all__ = [
    'DocumentCollection',
    'SORT_KEYS',
    'BatchResult',
    'RejectedFile',
    'UploadLimits',
    'UploadOrchestrator',
    'PreviewStore',
    'DocumentStep'
]
