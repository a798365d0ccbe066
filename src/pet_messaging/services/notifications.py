"""Semantic events for the application's toast and badge surface."""

from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List

import structlog
from pydantic import BaseModel, Field

from ..domain.models import utcnow

logger = structlog.get_logger()


class NotificationKind(str, Enum):
    MESSAGE_RECEIVED = "message_received"
    SEND_FAILED = "send_failed"
    UNREAD_CHANGED = "unread_changed"


class Notification(BaseModel):
    kind: NotificationKind
    payload: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utcnow)


Listener = Callable[[Notification], None]


class NotificationCenter:
    """Fan-out of notifications to subscribed listeners.

    Rendering is left to the listeners. A failing listener is logged and
    does not stop delivery to the others.
    """

    def __init__(self) -> None:
        self._listeners: List[Listener] = []

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def emit(self, kind: NotificationKind, **payload: Any) -> Notification:
        notification = Notification(kind=kind, payload=payload)
        logger.debug("notification_emitted", kind=kind.value)
        for listener in list(self._listeners):
            try:
                listener(notification)
            except Exception as e:
                logger.error("notification_listener_error", kind=kind.value, error=str(e))
        return notification

    def clear(self) -> None:
        self._listeners.clear()
