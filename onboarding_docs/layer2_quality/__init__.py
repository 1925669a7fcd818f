"""
Layer 2 — Quality
Local scoring of captured documents and filename-based category guessing.
"""
from .quality import QualityAssessor, decode_image
from .classifier import classify_filename

__all__ = [
    'QualityAssessor',
    'decode_image',
    'classify_filename'
]
