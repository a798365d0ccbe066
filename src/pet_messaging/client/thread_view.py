"""Local, ordered view of one conversation thread.

Entries are one of three variants. ``ConfirmedMessage`` wraps a message the
server accepted and is ordered by its server id. ``PendingMessage`` and
``FailedMessage`` exist only locally, are keyed by a client-generated
correlation id and are shown after the confirmed messages in the order they
were submitted. Server messages that echo a correlation id replace the local
entry with that id.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, Iterable, List, Optional, Union
from uuid import uuid4

from ..domain.errors import MessagingError
from ..domain.models import Message, utcnow


class LocalStatus(str, Enum):
    CONFIRMED = "confirmed"
    PENDING = "pending"
    FAILED = "failed"


@dataclass(frozen=True)
class ConfirmedMessage:
    message: Message
    status: LocalStatus = field(default=LocalStatus.CONFIRMED, init=False)

    @property
    def id(self) -> int:
        return self.message.id

    @property
    def content(self) -> str:
        return self.message.content

    @property
    def client_id(self) -> Optional[str]:
        return self.message.client_id


@dataclass(frozen=True)
class PendingMessage:
    client_id: str
    content: str
    queued_at: datetime = field(default_factory=utcnow)
    status: LocalStatus = field(default=LocalStatus.PENDING, init=False)


@dataclass(frozen=True)
class FailedMessage:
    client_id: str
    content: str
    error: MessagingError
    queued_at: datetime = field(default_factory=utcnow)
    status: LocalStatus = field(default=LocalStatus.FAILED, init=False)


LocalEntry = Union[PendingMessage, FailedMessage]
ThreadEntry = Union[ConfirmedMessage, PendingMessage, FailedMessage]


def new_client_id() -> str:
    return uuid4().hex


class ThreadView:
    def __init__(self) -> None:
        self._confirmed: Dict[int, ConfirmedMessage] = {}
        self._local: Dict[str, LocalEntry] = {}

    def __len__(self) -> int:
        return len(self._confirmed) + len(self._local)

    @property
    def entries(self) -> List[ThreadEntry]:
        confirmed: List[ThreadEntry] = [self._confirmed[i] for i in sorted(self._confirmed)]
        return confirmed + list(self._local.values())

    @property
    def messages(self) -> List[Message]:
        return [self._confirmed[i].message for i in sorted(self._confirmed)]

    @property
    def last_confirmed_id(self) -> Optional[int]:
        return max(self._confirmed) if self._confirmed else None

    @property
    def first_confirmed_id(self) -> Optional[int]:
        return min(self._confirmed) if self._confirmed else None

    def merge(self, messages: Iterable[Message]) -> List[Message]:
        """Fold server messages in. Returns the ones not seen before."""
        added = []
        for message in messages:
            known = self._confirmed.get(message.id)
            if known is not None:
                # Only read state can change on a known message.
                if message.read_at is not None and known.message.read_at is None:
                    self._confirmed[message.id] = ConfirmedMessage(message)
                continue
            self._confirmed[message.id] = ConfirmedMessage(message)
            if message.client_id is not None:
                self._local.pop(message.client_id, None)
            added.append(message)
        added.sort(key=lambda m: m.id)
        return added

    def add_pending(self, content: str, client_id: Optional[str] = None) -> PendingMessage:
        pending = PendingMessage(client_id=client_id or new_client_id(), content=content)
        self._local[pending.client_id] = pending
        return pending

    def confirm(self, client_id: str, message: Message) -> ConfirmedMessage:
        self._local.pop(client_id, None)
        self.merge([message])
        return self._confirmed[message.id]

    def fail(self, client_id: str, error: MessagingError) -> Optional[FailedMessage]:
        """Mark a pending entry failed. None if it was confirmed meanwhile."""
        entry = self._local.get(client_id)
        if entry is None:
            return None
        failed = FailedMessage(client_id=client_id, content=entry.content, error=error)
        self._local[client_id] = failed
        return failed

    def retry(self, client_id: str) -> PendingMessage:
        """Turn a failed entry back into a pending one with the same client id."""
        entry = self._local.get(client_id)
        if not isinstance(entry, FailedMessage):
            raise KeyError(f"No failed message with client id {client_id}")
        pending = PendingMessage(client_id=client_id, content=entry.content)
        self._local[client_id] = pending
        return pending

    def discard(self, client_id: str) -> bool:
        entry = self._local.get(client_id)
        if not isinstance(entry, FailedMessage):
            return False
        del self._local[client_id]
        return True

    def entry_for(self, client_id: str) -> Optional[ThreadEntry]:
        if client_id in self._local:
            return self._local[client_id]
        for entry in self._confirmed.values():
            if entry.client_id == client_id:
                return entry
        return None
