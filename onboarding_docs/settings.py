"""
Service configuration read from the environment.
Per-layer tunables live in the dataclass configs next to each layer.
"""
import os


def _env_flag(name, default=False):
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


DOCUMENT_SERVICE_URL = os.environ.get('DOCUMENT_SERVICE_URL', 'http://localhost:3000')
DOCUMENT_SERVICE_TIMEOUT = int(os.environ.get('DOCUMENT_SERVICE_TIMEOUT', 30))

CAMERA_INDEX = int(os.environ.get('CAMERA_INDEX', 0))
AUTO_CAPTURE = _env_flag('AUTO_CAPTURE')

LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO').upper()
DEFAULT_LANGUAGE = os.environ.get('DEFAULT_LANGUAGE', 'en')
MAX_DOCUMENTS = int(os.environ.get('MAX_DOCUMENTS', 10))
