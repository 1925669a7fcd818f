"""
Layer 2 — Image Enhancer
Brightness/contrast remap and sharpening applied to a captured document,
producing a new document record.
"""
from .enhancer import ImageEnhancer, EnhancementConfig

__all__ = ['ImageEnhancer', 'EnhancementConfig']
