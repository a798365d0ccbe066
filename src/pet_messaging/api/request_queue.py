"""Per-conversation single-writer queue for send requests."""

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Set
from uuid import UUID

import structlog

from ..domain.errors import TransientError

logger = structlog.get_logger()


@dataclass
class QueuedRequest:
    """A write waiting for its conversation's worker."""

    conversation_id: UUID
    task: Callable[..., Awaitable[Any]]
    args: tuple
    kwargs: dict
    future: asyncio.Future
    sequence_number: int


class ConversationWriteQueue:
    """Runs writes for the same conversation one at a time, in arrival order.

    A worker task is started for a conversation on its first write and exits
    after ``idle_timeout`` seconds without work.
    """

    def __init__(self, queue_timeout: float = 30.0, idle_timeout: float = 60.0) -> None:
        self.queue_timeout = queue_timeout
        self.idle_timeout = idle_timeout
        self.queues: Dict[UUID, asyncio.Queue] = {}
        self._workers: Set[asyncio.Task] = set()
        self._sequence_counters: Dict[UUID, int] = {}
        logger.info("write_queue_initialized", queue_timeout=queue_timeout)

    def _queue_for(self, conversation_id: UUID) -> asyncio.Queue:
        queue = self.queues.get(conversation_id)
        if queue is None:
            queue = self.queues[conversation_id] = asyncio.Queue()
            self._sequence_counters.setdefault(conversation_id, 0)
            worker = asyncio.create_task(self._process_queue(conversation_id, queue))
            self._workers.add(worker)
            worker.add_done_callback(self._workers.discard)
        return queue

    async def _process_queue(self, conversation_id: UUID, queue: asyncio.Queue) -> None:
        """Drain the conversation's queue until it stays idle."""
        try:
            while True:
                try:
                    request = await asyncio.wait_for(queue.get(), timeout=self.idle_timeout)
                except asyncio.TimeoutError:
                    if queue.empty():
                        del self.queues[conversation_id]
                        self._sequence_counters.pop(conversation_id, None)
                        logger.debug("write_worker_idle_exit", conversation_id=str(conversation_id))
                        return
                    continue

                if request.future.done():
                    # The submitter gave up while the request was waiting.
                    queue.task_done()
                    continue
                try:
                    result = await request.task(*request.args, **request.kwargs)
                    if not request.future.done():
                        request.future.set_result(result)
                except Exception as e:
                    if not request.future.done():
                        request.future.set_exception(e)
                finally:
                    queue.task_done()
        except asyncio.CancelledError:
            logger.info("write_worker_cancelled", conversation_id=str(conversation_id))
            raise

    async def submit(
        self,
        conversation_id: UUID,
        task: Callable[..., Awaitable[Any]],
        *args: Any,
        **kwargs: Any,
    ) -> Any:
        """Enqueue a write and wait for its result."""
        queue = self._queue_for(conversation_id)
        sequence_number = self._sequence_counters[conversation_id]
        self._sequence_counters[conversation_id] += 1

        future = asyncio.get_running_loop().create_future()
        queue.put_nowait(
            QueuedRequest(
                conversation_id=conversation_id,
                task=task,
                args=args,
                kwargs=kwargs,
                future=future,
                sequence_number=sequence_number,
            )
        )
        try:
            return await asyncio.wait_for(asyncio.shield(future), timeout=self.queue_timeout)
        except asyncio.TimeoutError:
            future.cancel()
            logger.error(
                "write_timeout",
                conversation_id=str(conversation_id),
                sequence=sequence_number,
            )
            raise TransientError("Request processing timed out", conversation_id=str(conversation_id))

    async def cleanup(self) -> None:
        """Cancel workers and drop queued writes."""
        workers = list(self._workers)
        for worker in workers:
            worker.cancel()
        if workers:
            await asyncio.gather(*workers, return_exceptions=True)
        self.queues.clear()
        self._sequence_counters.clear()
        logger.info("write_queue_cleaned_up")
