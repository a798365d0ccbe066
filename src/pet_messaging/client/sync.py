"""Client-side synchronization of conversations and message threads.

Everything here runs on one asyncio event loop. Server state is pulled on a
fixed interval; overlapping fetches and optimistic sends are reconciled by
message id and client correlation id, never by position or content.
"""

import asyncio
from enum import Enum
from typing import Any, Dict, List, Optional, Set
from uuid import UUID

import structlog

from ..config import Settings
from ..domain.errors import MessagingError, NotFoundError, TransientError, ValidationError
from ..domain.models import ConversationSummary, Message, conversation_id_for
from ..services.notifications import NotificationCenter, NotificationKind
from ..services.periodic import PeriodicTask
from .thread_view import ConfirmedMessage, PendingMessage, ThreadEntry, ThreadView
from .transport import MessagingTransport

logger = structlog.get_logger()


class ThreadState(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    LIVE = "live"
    SENDING = "sending"
    CLOSED = "closed"


class ConversationThread:
    """One open conversation: history, polling, optimistic sends, read receipts."""

    def __init__(
        self,
        transport: MessagingTransport,
        user_id: str,
        other_user_id: str,
        pet_id: int,
        notifications: Optional[NotificationCenter] = None,
        poll_interval: float = 10.0,
        page_size: int = 50,
    ) -> None:
        if user_id == other_user_id:
            raise ValidationError("A conversation needs two different users", user_id=user_id)
        self.transport = transport
        self.user_id = user_id
        self.other_user_id = other_user_id
        self.pet_id = pet_id
        self.conversation_id: UUID = conversation_id_for(user_id, other_user_id, pet_id)
        self.notifications = notifications or NotificationCenter()
        self.page_size = page_size
        self.view = ThreadView()
        self.state = ThreadState.IDLE
        self._sends_in_flight = 0
        self._background: Set[asyncio.Task] = set()
        self._poller = PeriodicTask(poll_interval, self.refresh, name=f"thread:{self.conversation_id}")

    @property
    def closed(self) -> bool:
        return self.state is ThreadState.CLOSED

    @property
    def polling(self) -> bool:
        return self._poller.running

    @property
    def entries(self) -> List[ThreadEntry]:
        return self.view.entries

    def _log(self, event: str, **kw: Any) -> None:
        logger.info(event, conversation_id=str(self.conversation_id), user_id=self.user_id, **kw)

    async def open(self) -> None:
        """Load the latest page, go live, acknowledge and start polling."""
        if self.state is not ThreadState.IDLE:
            raise RuntimeError(f"Cannot open a thread in state {self.state.value}")
        self.state = ThreadState.LOADING
        try:
            messages = await self.transport.list_messages(self.conversation_id, limit=self.page_size)
        except NotFoundError:
            # Nobody has written yet; the first send creates the conversation.
            messages = []
        except MessagingError:
            if not self.closed:
                self.state = ThreadState.IDLE
            raise
        if self.closed:
            return

        self.view.merge(messages)
        self.state = ThreadState.LIVE
        if any(m.recipient_id == self.user_id and not m.is_read for m in messages):
            self._schedule_mark_read()
        self._poller.start()
        self._log("thread_opened", messages=len(messages))

    async def refresh(self) -> List[Message]:
        """Fetch messages newer than the last confirmed one."""
        if self.state not in (ThreadState.LIVE, ThreadState.SENDING):
            return []
        added: List[Message] = []
        while True:
            try:
                batch = await self.transport.list_messages(
                    self.conversation_id, after=self.view.last_confirmed_id, limit=self.page_size
                )
            except NotFoundError:
                return added
            if self.closed:
                return []
            added.extend(self.view.merge(batch))
            if len(batch) < self.page_size:
                break

        incoming = [m for m in added if m.recipient_id == self.user_id]
        if incoming:
            self.notifications.emit(
                NotificationKind.MESSAGE_RECEIVED,
                conversation_id=str(self.conversation_id),
                sender_id=self.other_user_id,
                pet_id=self.pet_id,
                count=len(incoming),
                preview=incoming[-1].content,
            )
            self._schedule_mark_read()
        return added

    async def load_older(self) -> List[Message]:
        """Fetch the page before the oldest confirmed message."""
        first = self.view.first_confirmed_id
        if self.closed or first is None:
            return []
        batch = await self.transport.list_messages(
            self.conversation_id, before=first, limit=self.page_size
        )
        if self.closed:
            return []
        return self.view.merge(batch)

    async def send(self, content: str) -> ThreadEntry:
        """Show the message immediately, then confirm or fail it."""
        self._require_live()
        text = (content or "").strip()
        if not text:
            raise ValidationError("Message content cannot be empty")
        return await self._submit(self.view.add_pending(text))

    async def retry(self, client_id: str) -> ThreadEntry:
        """Resubmit a failed message with its original client id."""
        self._require_live()
        return await self._submit(self.view.retry(client_id))

    def discard(self, client_id: str) -> bool:
        return self.view.discard(client_id)

    async def _submit(self, pending: PendingMessage) -> ThreadEntry:
        self._sends_in_flight += 1
        self.state = ThreadState.SENDING
        try:
            message = await self.transport.send_message(
                self.other_user_id, self.pet_id, pending.content, client_id=pending.client_id
            )
        except MessagingError as e:
            if self.closed:
                return pending
            logger.warning(
                "message_send_failed",
                conversation_id=str(self.conversation_id),
                client_id=pending.client_id,
                error=e.message,
            )
            failed = self.view.fail(pending.client_id, e)
            if failed is None:
                # A poll already delivered the server copy.
                return self.view.entry_for(pending.client_id) or pending
            self.notifications.emit(
                NotificationKind.SEND_FAILED,
                conversation_id=str(self.conversation_id),
                client_id=pending.client_id,
                content=pending.content,
                error=e.message,
            )
            return failed
        finally:
            self._sends_in_flight -= 1
            if not self.closed and self._sends_in_flight == 0:
                self.state = ThreadState.LIVE

        if self.closed:
            return ConfirmedMessage(message)
        self._log("message_confirmed", message_id=message.id, client_id=pending.client_id)
        return self.view.confirm(pending.client_id, message)

    def _require_live(self) -> None:
        if self.state not in (ThreadState.LIVE, ThreadState.SENDING):
            raise RuntimeError(f"Thread is not open (state {self.state.value})")

    def _schedule_mark_read(self) -> None:
        task = asyncio.create_task(self._mark_read())
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _mark_read(self) -> None:
        try:
            updated = await self.transport.mark_read(self.conversation_id)
        except MessagingError as e:
            logger.warning(
                "mark_read_failed",
                conversation_id=str(self.conversation_id),
                error=e.message,
            )
            return
        if not self.closed:
            logger.debug("mark_read_done", conversation_id=str(self.conversation_id), updated=updated)

    async def drain(self) -> None:
        """Wait for background read receipts to settle."""
        while self._background:
            await asyncio.gather(*list(self._background))

    async def close(self) -> None:
        """Stop polling. In-flight calls finish but their results are dropped."""
        if self.closed:
            return
        self.state = ThreadState.CLOSED
        await self._poller.stop()
        self._log("thread_closed")


class ConversationListSync:
    """Keeps the conversation list and the global unread badge current."""

    def __init__(
        self,
        transport: MessagingTransport,
        notifications: Optional[NotificationCenter] = None,
        poll_interval: float = 10.0,
    ) -> None:
        self.transport = transport
        self.notifications = notifications or NotificationCenter()
        self.conversations: List[ConversationSummary] = []
        self.unread_total = 0
        # Open threads announce their own incoming messages.
        self.watched: Set[UUID] = set()
        self._loaded = False
        self._stopped = False
        self._poller = PeriodicTask(poll_interval, self.refresh, name="conversation_list")

    @property
    def polling(self) -> bool:
        return self._poller.running

    async def start(self) -> None:
        self._stopped = False
        try:
            await self.refresh()
        except TransientError as e:
            logger.info("conversation_list_initial_load_failed", error=e.message)
        self._poller.start()

    async def refresh(self) -> List[ConversationSummary]:
        summaries = await self.transport.list_conversations()
        if self._stopped:
            return self.conversations

        previous = {c.id: c.unread_count for c in self.conversations}
        if self._loaded:
            for summary in summaries:
                if summary.id in self.watched:
                    continue
                if summary.unread_count > previous.get(summary.id, 0):
                    self.notifications.emit(
                        NotificationKind.MESSAGE_RECEIVED,
                        conversation_id=str(summary.id),
                        sender_id=summary.other_user.id,
                        pet_id=summary.pet.id,
                        count=summary.unread_count - previous.get(summary.id, 0),
                        preview=summary.latest_message.content if summary.latest_message else None,
                    )

        total = sum(c.unread_count for c in summaries)
        if total != self.unread_total:
            self.notifications.emit(
                NotificationKind.UNREAD_CHANGED,
                unread_count=total,
                previous=self.unread_total,
            )
        self.conversations = summaries
        self.unread_total = total
        self._loaded = True
        return summaries

    def find(self, other_user_id: str, pet_id: int) -> Optional[ConversationSummary]:
        for summary in self.conversations:
            if summary.other_user.id == other_user_id and summary.pet.id == pet_id:
                return summary
        return None

    async def stop(self) -> None:
        self._stopped = True
        await self._poller.stop()


class MessagingSession:
    """Client-side messaging context for one signed-in user.

    Built once after login and closed on logout; owns the conversation list
    sync and every open thread.
    """

    def __init__(
        self,
        transport: MessagingTransport,
        user_id: str,
        notifications: Optional[NotificationCenter] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self.settings = settings or Settings()
        self.transport = transport
        self.user_id = user_id
        self.notifications = notifications or NotificationCenter()
        self.conversations = ConversationListSync(
            transport,
            self.notifications,
            poll_interval=self.settings.conversation_list_poll_interval,
        )
        self.threads: Dict[UUID, ConversationThread] = {}

    async def __aenter__(self) -> "MessagingSession":
        await self.start()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    async def start(self) -> None:
        await self.conversations.start()
        logger.info("messaging_session_started", user_id=self.user_id)

    async def open_thread(self, other_user_id: str, pet_id: int) -> ConversationThread:
        conversation_id = conversation_id_for(self.user_id, other_user_id, pet_id)
        thread = self.threads.get(conversation_id)
        if thread is not None and not thread.closed:
            return thread
        thread = ConversationThread(
            self.transport,
            self.user_id,
            other_user_id,
            pet_id,
            notifications=self.notifications,
            poll_interval=self.settings.poll_interval,
            page_size=self.settings.page_size,
        )
        self.threads[conversation_id] = thread
        self.conversations.watched.add(conversation_id)
        try:
            await thread.open()
        except MessagingError:
            del self.threads[conversation_id]
            self.conversations.watched.discard(conversation_id)
            raise
        return thread

    async def close_thread(self, conversation_id: UUID) -> None:
        thread = self.threads.pop(conversation_id, None)
        self.conversations.watched.discard(conversation_id)
        if thread is not None:
            await thread.close()

    async def close(self) -> None:
        for conversation_id in list(self.threads):
            await self.close_thread(conversation_id)
        await self.conversations.stop()
        self.notifications.clear()
        logger.info("messaging_session_closed", user_id=self.user_id)
