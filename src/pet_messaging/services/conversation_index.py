"""Per-user view of conversations, newest activity first."""

import asyncio
from typing import List
from uuid import UUID

import structlog

from ..domain.errors import ForbiddenError, NotFoundError, ValidationError
from ..domain.models import Conversation, ConversationSummary, conversation_id_for
from ..repositories.base import MessageStore
from .directory import PetCatalog, UserDirectory, placeholder_pet, placeholder_user
from .unread import UnreadTracker

logger = structlog.get_logger()


class ConversationIndex:
    """Derives conversation summaries from the message store."""

    def __init__(
        self,
        store: MessageStore,
        tracker: UnreadTracker,
        users: UserDirectory,
        pets: PetCatalog,
    ) -> None:
        self.store = store
        self.tracker = tracker
        self.users = users
        self.pets = pets

    async def get_or_create_handle(self, user_a_id: str, user_b_id: str, pet_id: int) -> UUID:
        """Return the id the conversation has, or will have once a message exists."""
        if not user_a_id or not user_b_id:
            raise ValidationError("Both participants are required")
        if user_a_id == user_b_id:
            raise ValidationError("A conversation needs two different users", user_id=user_a_id)
        return conversation_id_for(user_a_id, user_b_id, pet_id)

    async def get_conversation(self, conversation_id: UUID, user_id: str) -> Conversation:
        conversation = await self.store.get_conversation(conversation_id)
        if conversation is None:
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

    async def conversation_exists(self, user_id: str, other_user_id: str, pet_id: int) -> bool:
        handle = await self.get_or_create_handle(user_id, other_user_id, pet_id)
        return await self.store.get_conversation(handle) is not None

    async def list_for_user(self, user_id: str) -> List[ConversationSummary]:
        conversations = [
            c for c in await self.store.conversations_for_user(user_id)
            if c.last_message is not None
        ]
        conversations.sort(
            key=lambda c: (c.last_message.created_at, c.last_message.id),
            reverse=True,
        )
        return list(await asyncio.gather(*[self._summarize(c, user_id) for c in conversations]))

    async def _summarize(self, conversation: Conversation, user_id: str) -> ConversationSummary:
        other_id = conversation.counterpart(user_id)
        other_user, pet = await asyncio.gather(
            self.users.get_user(other_id),
            self.pets.get_pet(conversation.pet_id),
        )
        if other_user is None:
            logger.debug("counterpart_missing", user_id=other_id)
            other_user = placeholder_user(other_id)
        if pet is None:
            logger.debug("pet_missing", pet_id=conversation.pet_id)
            pet = placeholder_pet(conversation.pet_id)
        return ConversationSummary(
            id=conversation.id,
            other_user=other_user,
            pet=pet,
            latest_message=conversation.last_message,
            unread_count=self.tracker.unread_count_for_conversation(user_id, conversation.id),
        )
