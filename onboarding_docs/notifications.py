"""
Notification channel for pipeline events.
Processing code emits; presentation layers subscribe.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, List

logger = logging.getLogger(__name__)

INFO = 'info'
SUCCESS = 'success'
WARNING = 'warning'
ERROR = 'error'


@dataclass
class Notification:
    """A user-facing message produced by the pipeline."""
    level: str
    message: str
    code: str = ''
    context: Dict = field(default_factory=dict)
    created_at: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> Dict:
        return {
            'level': self.level,
            'message': self.message,
            'code': self.code,
            'context': self.context,
            'created_at': self.created_at.isoformat(),
        }


class NotificationChannel:
    """Synchronous fan-out of notifications to subscribers."""

    def __init__(self):
        self._subscribers: List[Callable[[Notification], None]] = []

    def subscribe(self, callback: Callable[[Notification], None]) -> Callable[[], None]:
        """
        Register a subscriber.

        Returns:
            Callable that removes the subscription.
        """
        self._subscribers.append(callback)

        def unsubscribe():
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def emit(self, level: str, message: str, code: str = '', **context) -> Notification:
        notification = Notification(level=level, message=message, code=code, context=context)
        logger.debug(f"Notify [{level}] {message}")
        for callback in list(self._subscribers):
            try:
                callback(notification)
            except Exception as e:
                logger.error(f"Notification subscriber failed: {e}")
        return notification


class NotificationLog:
    """Subscriber that keeps every notification, used by the REST layer."""

    def __init__(self, channel: NotificationChannel):
        self.items: List[Notification] = []
        self._unsubscribe = channel.subscribe(self.items.append)

    def drain(self) -> List[Notification]:
        items = list(self.items)
        self.items.clear()
        return items

    def close(self):
        self._unsubscribe()
