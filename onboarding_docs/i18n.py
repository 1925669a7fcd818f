"""
Message tables for the two supported wizard languages.
"""
import logging

logger = logging.getLogger(__name__)

SUPPORTED_LANGUAGES = ('en', 'es')
FALLBACK_LANGUAGE = 'en'

MESSAGES = {
    'en': {
        # Quality issues / recommendations
        'quality.low_resolution': 'Low resolution',
        'quality.low_resolution.fix': 'Use higher resolution (min 1000x700)',
        'quality.file_too_small': 'File too small',
        'quality.file_too_small.fix': 'Capture with better quality (min 200KB)',
        'quality.file_too_large': 'File too large',
        'quality.file_too_large.fix': 'Reduce file size',
        'quality.too_dark': 'Image too dark',
        'quality.too_dark.fix': 'Improve ambient lighting',
        'quality.too_bright': 'Image too bright',
        'quality.too_bright.fix': 'Reduce direct light',
        'quality.low_contrast': 'Low contrast',
        'quality.low_contrast.fix': 'Increase image contrast',
        'quality.blurry': 'Image blurry',
        'quality.blurry.fix': 'Keep camera steady',
        'quality.unreadable': 'Could not load image',
        'quality.unreadable.fix': 'Try another file or format',
        'quality.good': 'Good quality document',

        # Capture surface prompts
        'capture.position_document': 'Position document within the frame',
        'capture.document_detected': 'Document Detected',
        'capture.hold_steady': 'Hold steady...',
        'capture.permission_denied': 'Camera permission denied',
        'capture.permission_request': 'Camera access is required to capture documents',

        # Orchestrator notifications
        'upload.processing': 'Processing {current} of {total} documents...',
        'upload.processed': '{count} documents processed successfully',
        'upload.needs_review': '{count} documents need manual review',
        'upload.limit_exceeded': 'You can only upload a maximum of {max_documents} documents',
        'upload.unsupported_type': '{filename}: unsupported file type (JPG, PNG, PDF only)',
        'upload.too_large': '{filename}: file exceeds 10MB',
        'upload.failed': 'Error processing files. Please try again.',

        # Collection
        'collection.confirm_delete': 'Are you sure you want to delete {count} document(s)?',
    },
    'es': {
        'quality.low_resolution': 'Resolución baja',
        'quality.low_resolution.fix': 'Use una resolución más alta (mín. 1000x700)',
        'quality.file_too_small': 'Archivo muy pequeño',
        'quality.file_too_small.fix': 'Capture con mejor calidad (mín. 200KB)',
        'quality.file_too_large': 'Archivo muy grande',
        'quality.file_too_large.fix': 'Reduzca el tamaño del archivo',
        'quality.too_dark': 'Imagen muy oscura',
        'quality.too_dark.fix': 'Mejore la iluminación ambiente',
        'quality.too_bright': 'Imagen muy brillante',
        'quality.too_bright.fix': 'Reduzca la luz directa',
        'quality.low_contrast': 'Bajo contraste',
        'quality.low_contrast.fix': 'Aumente el contraste de la imagen',
        'quality.blurry': 'Imagen borrosa',
        'quality.blurry.fix': 'Mantenga la cámara estable',
        'quality.unreadable': 'No se pudo cargar la imagen',
        'quality.unreadable.fix': 'Intente con otro archivo o formato',
        'quality.good': 'Documento de buena calidad',

        'capture.position_document': 'Posicione el documento dentro del marco',
        'capture.document_detected': 'Documento Detectado',
        'capture.hold_steady': 'Manténgase firme...',
        'capture.permission_denied': 'Permiso de cámara denegado',
        'capture.permission_request': 'Se requiere acceso a la cámara para capturar documentos',

        'upload.processing': 'Procesando {current} de {total} documentos...',
        'upload.processed': '{count} documentos procesados correctamente',
        'upload.needs_review': '{count} documentos necesitan revisión manual',
        'upload.limit_exceeded': 'Solo puede subir un máximo de {max_documents} documentos',
        'upload.unsupported_type': '{filename}: tipo de archivo no soportado (solo JPG, PNG, PDF)',
        'upload.too_large': '{filename}: el archivo supera 10MB',
        'upload.failed': 'Error al procesar los archivos. Por favor, inténtelo de nuevo.',

        'collection.confirm_delete': '¿Está seguro de que desea eliminar {count} documento(s)?',
    },
}

CATEGORY_LABELS = {
    'en': {
        'drivers_license': "Driver's License",
        'ssn_card': 'Social Security Card',
        'passport': 'Passport',
        'birth_certificate': 'Birth Certificate',
        'other': 'Other Document',
    },
    'es': {
        'drivers_license': 'Licencia de Conducir',
        'ssn_card': 'Tarjeta de Seguro Social',
        'passport': 'Pasaporte',
        'birth_certificate': 'Certificado de Nacimiento',
        'other': 'Otro Documento',
    },
}


def normalize_language(language):
    """Return a supported language code, falling back to English."""
    if language in SUPPORTED_LANGUAGES:
        return language
    if language:
        logger.debug(f"Unsupported language '{language}', using {FALLBACK_LANGUAGE}")
    return FALLBACK_LANGUAGE


def translate(key, language=FALLBACK_LANGUAGE, **params):
    table = MESSAGES[normalize_language(language)]
    template = table.get(key) or MESSAGES[FALLBACK_LANGUAGE][key]
    return template.format(**params) if params else template


def category_label(category, language=FALLBACK_LANGUAGE):
    value = getattr(category, 'value', category)
    return CATEGORY_LABELS[normalize_language(language)][value]
