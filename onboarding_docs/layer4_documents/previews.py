"""
Preview handles for captured documents.
A handle is an opaque token that resolves to the file bytes until released.
"""
import logging
import secrets
import threading
from typing import Dict, Optional

from ..models import SourceFile

logger = logging.getLogger(__name__)


class PreviewStore:
    """In-memory preview registry for one onboarding session."""

    def __init__(self):
        self._previews: Dict[str, SourceFile] = {}
        self._lock = threading.Lock()

    def create(self, source: SourceFile) -> str:
        token = secrets.token_urlsafe(16)
        with self._lock:
            self._previews[token] = source
        logger.debug(f"Preview {token} created for {source.name}")
        return token

    def resolve(self, token: Optional[str]) -> Optional[SourceFile]:
        if not token:
            return None
        with self._lock:
            return self._previews.get(token)

    def release(self, token: Optional[str]) -> bool:
        """Drop a preview. Returns False when it was already gone."""
        if not token:
            return False
        with self._lock:
            released = self._previews.pop(token, None) is not None
        if released:
            logger.debug(f"Preview {token} released")
        return released

    def clear(self):
        with self._lock:
            self._previews.clear()

    def __contains__(self, token) -> bool:
        with self._lock:
            return token in self._previews

    def __len__(self) -> int:
        with self._lock:
            return len(self._previews)
