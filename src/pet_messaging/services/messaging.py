"""Messaging operations for an authenticated caller.

``MessagingService`` is the single entry point used by the HTTP layer. It
combines the message store, the conversation index and the unread tracker
and resolves send requests against the user directory.
"""

from dataclasses import dataclass, field
from typing import List, Optional
from uuid import UUID

import structlog

from ..config import Settings
from ..domain.errors import NotFoundError, ValidationError
from ..domain.models import ConversationSummary, Message, MessageCreate
from ..repositories.base import MessageStore
from ..repositories.memory import InMemoryMessageStore
from .conversation_index import ConversationIndex
from .directory import (
    CachedPetCatalog,
    CachedUserDirectory,
    InMemoryPetCatalog,
    InMemoryUserDirectory,
    PetCatalog,
    UserDirectory,
)
from .unread import UnreadTracker

logger = structlog.get_logger()


class MessagingService:
    def __init__(
        self,
        store: MessageStore,
        index: ConversationIndex,
        tracker: UnreadTracker,
        users: UserDirectory,
        recipients: Optional[UserDirectory] = None,
        page_size: int = 50,
    ) -> None:
        self.store = store
        self.index = index
        self.tracker = tracker
        self.users = users
        self._recipients = recipients
        self.page_size = page_size
        if recipients is None:
            logger.warning("recipient_existence_check_disabled")

    async def resolve_recipient(self, request: MessageCreate) -> str:
        """Recipient id from the request; usernames go through the directory."""
        if request.recipient_id:
            if (
                self._recipients is not None
                and await self._recipients.get_user(request.recipient_id) is None
            ):
                logger.warning("recipient_not_found", recipient_id=request.recipient_id)
                raise NotFoundError(
                    f"User {request.recipient_id} not found", recipient_id=request.recipient_id
                )
            return request.recipient_id
        if request.receiver:
            user = await self.users.find_by_username(request.receiver)
            if user is None:
                raise NotFoundError(f"User {request.receiver!r} not found", username=request.receiver)
            return user.id
        raise ValidationError("A recipient_id or receiver is required")

    async def send(self, sender_id: str, request: MessageCreate) -> Message:
        recipient_id = await self.resolve_recipient(request)
        return await self.store.append(
            sender_id,
            recipient_id,
            request.pet_id,
            request.content,
            client_id=request.client_id,
        )

    async def list_messages(
        self,
        conversation_id: UUID,
        user_id: str,
        before: Optional[int] = None,
        after: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> List[Message]:
        return await self.store.list_by_conversation(
            conversation_id,
            user_id,
            before=before,
            after=after,
            limit=self.page_size if limit is None else limit,
        )

    async def mark_read(self, conversation_id: UUID, user_id: str) -> int:
        return await self.store.mark_read(conversation_id, user_id)

    async def list_conversations(self, user_id: str) -> List[ConversationSummary]:
        return await self.index.list_for_user(user_id)

    async def handle_for(self, user_id: str, other_user_id: str, pet_id: int) -> UUID:
        return await self.index.get_or_create_handle(user_id, other_user_id, pet_id)

    async def existing_handle_for(self, user_id: str, other_user_id: str, pet_id: int) -> UUID:
        """Like :meth:`handle_for` but fails when no message was exchanged yet."""
        handle = await self.handle_for(user_id, other_user_id, pet_id)
        await self.index.get_conversation(handle, user_id)
        return handle

    async def unread_count_for_user(self, user_id: str) -> int:
        return self.tracker.unread_count_for_user(user_id)

    async def unread_count_for_conversation(self, user_id: str, conversation_id: UUID) -> int:
        await self.index.get_conversation(conversation_id, user_id)
        return self.tracker.unread_count_for_conversation(user_id, conversation_id)

    async def reconcile_unread(self) -> int:
        return await self.tracker.reconcile(self.store)


@dataclass
class MessagingContext:
    """Everything the server side needs, built once at startup."""

    settings: Settings
    users: UserDirectory
    pets: PetCatalog
    tracker: UnreadTracker
    store: MessageStore
    index: ConversationIndex
    service: MessagingService = field(repr=False)


def build_context(
    settings: Optional[Settings] = None,
    users: Optional[UserDirectory] = None,
    pets: Optional[PetCatalog] = None,
) -> MessagingContext:
    settings = settings or Settings()
    cached_users = CachedUserDirectory(users or InMemoryUserDirectory(), ttl=settings.directory_cache_ttl)
    display_pets = CachedPetCatalog(pets or InMemoryPetCatalog(), ttl=settings.directory_cache_ttl)
    tracker = UnreadTracker()
    # Existence checks on send go straight to the source directories.
    store = InMemoryMessageStore(
        tracker=tracker,
        pets=pets,
        max_page_size=settings.max_page_size,
    )
    index = ConversationIndex(store, tracker, cached_users, display_pets)
    service = MessagingService(
        store,
        index,
        tracker,
        cached_users,
        recipients=users,
        page_size=settings.page_size,
    )
    logger.info("messaging_context_built", page_size=settings.page_size)
    return MessagingContext(
        settings=settings,
        users=cached_users,
        pets=display_pets,
        tracker=tracker,
        store=store,
        index=index,
        service=service,
    )
