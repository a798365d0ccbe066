"""Base message store interface."""

from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Tuple
from uuid import UUID

from ..domain.models import Conversation, Message


class MessageStore(ABC):
    """Append-only, per-conversation message log."""

    @abstractmethod
    async def append(
        self,
        sender_id: str,
        recipient_id: str,
        pet_id: int,
        content: str,
        client_id: Optional[str] = None,
    ) -> Message:
        """Persist a message, creating its conversation if needed."""
        pass

    @abstractmethod
    async def list_by_conversation(
        self,
        conversation_id: UUID,
        reader_id: str,
        before: Optional[int] = None,
        after: Optional[int] = None,
        limit: int = 50,
    ) -> List[Message]:
        """Return a page of messages, oldest first."""
        pass

    @abstractmethod
    async def mark_read(self, conversation_id: UUID, reader_id: str) -> int:
        """Mark every message addressed to the reader as read."""
        pass

    @abstractmethod
    async def get_conversation(self, conversation_id: UUID) -> Optional[Conversation]:
        """Retrieve a conversation by ID."""
        pass

    @abstractmethod
    async def conversations_for_user(self, user_id: str) -> List[Conversation]:
        """Conversations the user takes part in, in no particular order."""
        pass

    @abstractmethod
    async def count_unread(self, user_id: str, conversation_id: Optional[UUID] = None) -> int:
        """Count unread messages by scanning the log."""
        pass

    @abstractmethod
    async def unread_snapshot(self) -> Dict[Tuple[str, UUID], int]:
        """Unread counts for every (recipient, conversation) pair, from the log."""
        pass
