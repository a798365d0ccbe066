"""In-memory message store implementation."""

import asyncio
import itertools
from collections import defaultdict
from typing import DefaultDict, Dict, List, Optional, Tuple
from uuid import UUID

import structlog

from ..domain.errors import ConflictError, ForbiddenError, NotFoundError, ValidationError
from ..domain.models import Conversation, Message, conversation_id_for, ordered_pair, utcnow
from ..services.directory import PetCatalog
from ..services.unread import UnreadTracker
from .base import MessageStore

logger = structlog.get_logger()


class InMemoryMessageStore(MessageStore):
    """Message store backed by dictionaries.

    Writes to one conversation are serialized with a per-conversation
    ``asyncio.Lock``. Message ids are drawn from a store-wide counter while
    that lock is held, so id order is the append order of each conversation.
    Callers always receive copies; stored messages only change ``read_at``.
    """

    def __init__(
        self,
        tracker: Optional[UnreadTracker] = None,
        pets: Optional[PetCatalog] = None,
        max_page_size: int = 200,
    ) -> None:
        self.tracker = tracker or UnreadTracker()
        self._pets = pets
        self.max_page_size = max_page_size
        self._conversations: Dict[UUID, Conversation] = {}
        self._messages: Dict[UUID, List[Message]] = {}
        self._by_user: DefaultDict[str, set] = defaultdict(set)
        self._client_ids: Dict[Tuple[UUID, str, str], Message] = {}
        self._locks: Dict[UUID, asyncio.Lock] = {}
        self._sequence = itertools.count(1)
        if pets is None:
            logger.warning("pet_existence_check_disabled")
        logger.info("message_store_initialized")

    def _lock_for(self, conversation_id: UUID) -> asyncio.Lock:
        lock = self._locks.get(conversation_id)
        if lock is None:
            lock = self._locks[conversation_id] = asyncio.Lock()
        return lock

    def _require_participant(self, conversation_id: UUID, user_id: str) -> Conversation:
        conversation = self._conversations.get(conversation_id)
        if conversation is None:
            logger.warning("conversation_not_found", conversation_id=str(conversation_id))
            raise NotFoundError(
                f"Conversation {conversation_id} not found",
                conversation_id=str(conversation_id),
            )
        if not conversation.has_participant(user_id):
            logger.warning(
                "conversation_access_denied",
                conversation_id=str(conversation_id),
                user_id=user_id,
            )
            raise ForbiddenError(
                "Not a participant of this conversation",
                conversation_id=str(conversation_id),
                user_id=user_id,
            )
        return conversation

    async def append(
        self,
        sender_id: str,
        recipient_id: str,
        pet_id: int,
        content: str,
        client_id: Optional[str] = None,
    ) -> Message:
        """Add a message to its conversation."""
        if not sender_id or not recipient_id:
            raise ValidationError("Sender and recipient are required")
        if sender_id == recipient_id:
            raise ValidationError("Cannot send a message to yourself", user_id=sender_id)
        text = (content or "").strip()
        if not text:
            raise ValidationError("Message content cannot be empty")
        if self._pets is not None and await self._pets.get_pet(pet_id) is None:
            logger.warning("pet_not_found_for_message", pet_id=pet_id)
            raise NotFoundError(f"Pet {pet_id} not found", pet_id=pet_id)

        conversation_id = conversation_id_for(sender_id, recipient_id, pet_id)
        participants = ordered_pair(sender_id, recipient_id)
        async with self._lock_for(conversation_id):
            conversation = self._conversations.get(conversation_id)
            if conversation is not None and (
                conversation.participants != participants or conversation.pet_id != pet_id
            ):
                logger.error(
                    "conversation_id_collision",
                    conversation_id=str(conversation_id),
                    sender_id=sender_id,
                )
                raise ConflictError(
                    "Conversation id belongs to another conversation",
                    conversation_id=str(conversation_id),
                )

            if client_id is not None:
                previous = self._client_ids.get((conversation_id, sender_id, client_id))
                if previous is not None:
                    if previous.content != text:
                        raise ConflictError(
                            "Client id already used for a different message",
                            client_id=client_id,
                        )
                    logger.info(
                        "message_resubmitted",
                        conversation_id=str(conversation_id),
                        message_id=previous.id,
                    )
                    return previous.model_copy()

            if conversation is None:
                conversation = Conversation(
                    id=conversation_id,
                    participants=participants,
                    pet_id=pet_id,
                )
                self._conversations[conversation_id] = conversation
                self._messages[conversation_id] = []
                self._by_user[sender_id].add(conversation_id)
                self._by_user[recipient_id].add(conversation_id)
                logger.info("conversation_created", conversation_id=str(conversation_id), pet_id=pet_id)

            log = self._messages[conversation_id]
            created_at = utcnow()
            if log and log[-1].created_at > created_at:
                created_at = log[-1].created_at
            message = Message(
                id=next(self._sequence),
                conversation_id=conversation_id,
                sender_id=sender_id,
                recipient_id=recipient_id,
                pet_id=pet_id,
                content=text,
                created_at=created_at,
                client_id=client_id,
            )
            log.append(message)
            conversation.last_message = message
            if client_id is not None:
                self._client_ids[(conversation_id, sender_id, client_id)] = message
            self.tracker.record_delivery(recipient_id, conversation_id)

            logger.info(
                "message_added",
                conversation_id=str(conversation_id),
                message_id=message.id,
                sender_id=sender_id,
            )
            return message.model_copy()

    async def list_by_conversation(
        self,
        conversation_id: UUID,
        reader_id: str,
        before: Optional[int] = None,
        after: Optional[int] = None,
        limit: int = 50,
    ) -> List[Message]:
        """Get a page of messages, oldest first."""
        if limit < 1 or limit > self.max_page_size:
            raise ValidationError(
                f"limit must be between 1 and {self.max_page_size}", limit=limit
            )
        self._require_participant(conversation_id, reader_id)

        messages = self._messages.get(conversation_id, [])
        if before is not None:
            messages = [m for m in messages if m.id < before]
        if after is not None:
            page = [m for m in messages if m.id > after][:limit]
        else:
            page = messages[-limit:]
        return [m.model_copy() for m in page]

    async def mark_read(self, conversation_id: UUID, reader_id: str) -> int:
        """Set read_at on the reader's unread messages."""
        self._require_participant(conversation_id, reader_id)
        async with self._lock_for(conversation_id):
            now = utcnow()
            updated = 0
            for message in self._messages[conversation_id]:
                if message.recipient_id == reader_id and message.read_at is None:
                    message.read_at = now
                    updated += 1
            self.tracker.record_read(reader_id, conversation_id, updated)

        if updated:
            logger.info(
                "messages_marked_read",
                conversation_id=str(conversation_id),
                user_id=reader_id,
                count=updated,
            )
        return updated

    async def get_conversation(self, conversation_id: UUID) -> Optional[Conversation]:
        conversation = self._conversations.get(conversation_id)
        return conversation.model_copy(deep=True) if conversation else None

    async def conversations_for_user(self, user_id: str) -> List[Conversation]:
        return [
            self._conversations[cid].model_copy(deep=True)
            for cid in self._by_user.get(user_id, ())
        ]

    async def count_unread(self, user_id: str, conversation_id: Optional[UUID] = None) -> int:
        if conversation_id is not None:
            ids = [conversation_id] if conversation_id in self._messages else []
        else:
            ids = list(self._by_user.get(user_id, ()))
        return sum(
            1
            for cid in ids
            for m in self._messages[cid]
            if m.recipient_id == user_id and m.read_at is None
        )

    async def unread_snapshot(self) -> Dict[Tuple[str, UUID], int]:
        counts: Dict[Tuple[str, UUID], int] = {}
        for cid, messages in self._messages.items():
            for m in messages:
                if m.read_at is None:
                    key = (m.recipient_id, cid)
                    counts[key] = counts.get(key, 0) + 1
        return counts
