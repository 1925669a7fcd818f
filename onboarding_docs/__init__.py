"""
Onboarding document capture.

Layered pipeline:
    layer1_capture         - camera, live detection, capture surface
    layer2_quality         - quality scoring, category guess
    layer2_image_enhancer  - brightness/contrast/sharpen
    layer3_ocr             - document service client, OCR field mapping
    layer4_documents       - collection, upload orchestration, wizard step
"""
__version__ = '1.0.0'
