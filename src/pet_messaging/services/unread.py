"""Incremental unread counters.

Counts are an optimization over the message log and can always be rebuilt
from it with :meth:`UnreadTracker.reconcile`. Mutations are made by the
message store while it holds the conversation lock.
"""

from collections import defaultdict
from typing import TYPE_CHECKING, DefaultDict, Dict, Tuple
from uuid import UUID

import structlog

if TYPE_CHECKING:
    from ..repositories.base import MessageStore

logger = structlog.get_logger()


class UnreadTracker:
    """Per-user, per-conversation unread message counts."""

    def __init__(self) -> None:
        self._counts: Dict[Tuple[str, UUID], int] = {}
        self._totals: DefaultDict[str, int] = defaultdict(int)

    def record_delivery(self, recipient_id: str, conversation_id: UUID, count: int = 1) -> None:
        key = (recipient_id, conversation_id)
        self._counts[key] = self._counts.get(key, 0) + count
        self._totals[recipient_id] += count

    def record_read(self, reader_id: str, conversation_id: UUID, count: int) -> None:
        if count <= 0:
            return
        key = (reader_id, conversation_id)
        current = self._counts.get(key, 0)
        removed = min(current, count)
        if removed != count:
            logger.warning(
                "unread_counter_underflow",
                user_id=reader_id,
                conversation_id=str(conversation_id),
                tracked=current,
                read=count,
            )
        self._set(key, current - removed)

    def unread_count_for_conversation(self, user_id: str, conversation_id: UUID) -> int:
        return self._counts.get((user_id, conversation_id), 0)

    def unread_count_for_user(self, user_id: str) -> int:
        return self._totals.get(user_id, 0)

    def _set(self, key: Tuple[str, UUID], value: int) -> None:
        user_id = key[0]
        self._totals[user_id] += value - self._counts.get(key, 0)
        if value:
            self._counts[key] = value
        else:
            self._counts.pop(key, None)
        if not self._totals[user_id]:
            del self._totals[user_id]

    async def reconcile(self, store: "MessageStore") -> int:
        """Rebuild counts from the store. Returns how many entries drifted."""
        actual = await store.unread_snapshot()
        corrected = 0
        for key in set(self._counts) | set(actual):
            expected = actual.get(key, 0)
            tracked = self._counts.get(key, 0)
            if tracked != expected:
                logger.warning(
                    "unread_counter_corrected",
                    user_id=key[0],
                    conversation_id=str(key[1]),
                    tracked=tracked,
                    actual=expected,
                )
                self._set(key, expected)
                corrected += 1
        return corrected
