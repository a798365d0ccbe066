"""
FastAPI Application Module

HTTP surface of the pet marketplace messaging core: conversation lists,
message threads, read receipts and unread badges for an authenticated
caller.

Key Features:
- Caller identity from the ``X-User-Id`` header set by the gateway
- Sends serialized per conversation through a single-writer queue
- Rate limiting, structured logging and Prometheus metrics
- CORS and OpenTelemetry support

Domain errors map to HTTP statuses in one exception handler, so routes only
deal with the success path.
"""

import time
from contextlib import asynccontextmanager
from typing import List, Optional
from uuid import UUID

from fastapi import Depends, FastAPI, Header, HTTPException, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from structlog import get_logger

from ..config import Settings
from ..domain.errors import MessagingError
from ..domain.models import (
    ConversationHandle,
    ConversationSummary,
    Message,
    MessageCreate,
    ReadReceipt,
    UnreadCount,
    conversation_id_for,
)
from ..logging_config import configure_logging
from ..services.messaging import MessagingContext, MessagingService, build_context
from ..services.periodic import PeriodicTask
from .metrics import MessagingMetrics
from .rate_limiter import RateLimiter, rate_limit_middleware
from .request_queue import ConversationWriteQueue

logger = get_logger()


def get_service(request: Request) -> MessagingService:
    return request.app.state.context.service


def get_write_queue(request: Request) -> ConversationWriteQueue:
    return request.app.state.write_queue


def get_metrics(request: Request) -> MessagingMetrics:
    return request.app.state.metrics


async def get_current_user(x_user_id: Optional[str] = Header(default=None)) -> str:
    """Caller identity, trusted as given by the identity provider"""
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Missing X-User-Id header")
    return x_user_id


def create_app(
    context: Optional[MessagingContext] = None,
    settings: Optional[Settings] = None,
) -> FastAPI:
    """Build the application around an explicit messaging context."""
    if context is None:
        context = build_context(settings or Settings())
    settings = context.settings

    write_queue = ConversationWriteQueue(
        queue_timeout=settings.write_queue_timeout,
        idle_timeout=settings.write_queue_idle_timeout,
    )
    rate_limiter = RateLimiter(rate_limit=settings.rate_limit, time_window=settings.rate_window)
    metrics = MessagingMetrics()
    reconciler = PeriodicTask(
        settings.unread_reconcile_interval,
        context.service.reconcile_unread,
        name="unread_reconcile",
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Handles app startup/shutdown and resource management"""
        await rate_limiter.start()
        reconciler.start()
        logger.info("application_startup_complete")

        yield

        await reconciler.stop()
        await write_queue.cleanup()
        await rate_limiter.stop()
        logger.info("application_shutdown_complete")

    app = FastAPI(
        title="Pet Messaging API",
        description="Conversations between pet owners and adopters",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.context = context
    app.state.write_queue = write_queue
    app.state.rate_limiter = rate_limiter
    app.state.metrics = metrics
    app.state.reconciler = reconciler

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    FastAPIInstrumentor.instrument_app(app)

    @app.exception_handler(MessagingError)
    async def messaging_error_handler(request: Request, exc: MessagingError):
        logger.warning(
            "request_rejected",
            path=request.url.path,
            code=exc.code,
            error=exc.message,
            **exc.context,
        )
        metrics.errors.labels(code=exc.code).inc()
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.middleware("http")
    async def logging_middleware(request: Request, call_next):
        """Tracks requests and enforces rate limits"""
        started = time.perf_counter()
        logger.info("request_started", method=request.method, path=request.url.path)
        try:
            await rate_limit_middleware(request, rate_limiter)
        except MessagingError as exc:
            metrics.errors.labels(code=exc.code).inc()
            return JSONResponse(status_code=exc.status_code, content=exc.to_dict())
        try:
            response = await call_next(request)
        except Exception as e:
            logger.error("request_failed", path=request.url.path, error=str(e))
            metrics.errors.labels(code="internal_error").inc()
            return JSONResponse(status_code=500, content={"detail": "Internal server error"})
        route = request.scope.get("route")
        path = getattr(route, "path", request.url.path)
        metrics.requests.labels(path=path).inc()
        metrics.processing_time.labels(path=path).inc(time.perf_counter() - started)
        return response

    @app.get("/messages/conversations/", response_model=List[ConversationSummary])
    async def list_conversations(
        user_id: str = Depends(get_current_user),
        service: MessagingService = Depends(get_service),
    ) -> List[ConversationSummary]:
        """Conversations of the caller, most recent activity first"""
        return await service.list_conversations(user_id)

    @app.get(
        "/messages/conversations/{conversation_id}/messages/",
        response_model=List[Message],
    )
    async def list_messages(
        conversation_id: UUID,
        before: Optional[int] = None,
        after: Optional[int] = None,
        limit: Optional[int] = None,
        user_id: str = Depends(get_current_user),
        service: MessagingService = Depends(get_service),
    ) -> List[Message]:
        """Page of messages, oldest first"""
        return await service.list_messages(
            conversation_id, user_id, before=before, after=after, limit=limit
        )

    @app.patch("/messages/conversations/{conversation_id}/read/", response_model=ReadReceipt)
    async def mark_conversation_read(
        conversation_id: UUID,
        user_id: str = Depends(get_current_user),
        service: MessagingService = Depends(get_service),
        metrics: MessagingMetrics = Depends(get_metrics),
    ) -> ReadReceipt:
        updated = await service.mark_read(conversation_id, user_id)
        metrics.messages_read.inc(updated)
        return ReadReceipt(updated=updated)

    @app.get("/messages/conversation/{other_user_id}/{pet_id}/", response_model=List[Message])
    async def get_conversation_messages(
        other_user_id: str,
        pet_id: int,
        before: Optional[int] = None,
        after: Optional[int] = None,
        limit: Optional[int] = None,
        user_id: str = Depends(get_current_user),
        service: MessagingService = Depends(get_service),
    ) -> List[Message]:
        """Messages with another user about a pet; 404 until the first message"""
        conversation_id = await service.existing_handle_for(user_id, other_user_id, pet_id)
        return await service.list_messages(
            conversation_id, user_id, before=before, after=after, limit=limit
        )

    @app.patch("/messages/mark-read/{other_user_id}/{pet_id}/", response_model=ReadReceipt)
    async def mark_read(
        other_user_id: str,
        pet_id: int,
        user_id: str = Depends(get_current_user),
        service: MessagingService = Depends(get_service),
        metrics: MessagingMetrics = Depends(get_metrics),
    ) -> ReadReceipt:
        conversation_id = await service.existing_handle_for(user_id, other_user_id, pet_id)
        updated = await service.mark_read(conversation_id, user_id)
        metrics.messages_read.inc(updated)
        return ReadReceipt(updated=updated)

    @app.post("/messages/send/", response_model=Message)
    async def send_message(
        payload: MessageCreate,
        user_id: str = Depends(get_current_user),
        service: MessagingService = Depends(get_service),
        write_queue: ConversationWriteQueue = Depends(get_write_queue),
        metrics: MessagingMetrics = Depends(get_metrics),
    ) -> Message:
        """Append a message; writes to one conversation run in arrival order"""
        recipient_id = await service.resolve_recipient(payload)
        payload = payload.model_copy(update={"recipient_id": recipient_id})
        conversation_id = conversation_id_for(user_id, recipient_id, payload.pet_id)
        message = await write_queue.submit(conversation_id, service.send, user_id, payload)
        metrics.messages_sent.inc()
        logger.info(
            "message_sent",
            conversation_id=str(message.conversation_id),
            message_id=message.id,
            content_length=len(message.content),
        )
        return message

    @app.get("/messages/handle/{other_user_id}/{pet_id}/", response_model=ConversationHandle)
    async def conversation_handle(
        other_user_id: str,
        pet_id: int,
        user_id: str = Depends(get_current_user),
        service: MessagingService = Depends(get_service),
    ) -> ConversationHandle:
        """Conversation id to use before the first message is sent"""
        return ConversationHandle(
            conversation_id=await service.handle_for(user_id, other_user_id, pet_id)
        )

    @app.get("/messages/unread-count/", response_model=UnreadCount)
    async def unread_count(
        user_id: str = Depends(get_current_user),
        service: MessagingService = Depends(get_service),
    ) -> UnreadCount:
        return UnreadCount(unread_count=await service.unread_count_for_user(user_id))

    @app.get("/metrics")
    async def metrics_endpoint():
        """Provides Prometheus metrics for system monitoring"""
        return Response(metrics.render(), media_type="text/plain")

    return app


def build_default_app() -> FastAPI:
    """Entry point for ``uvicorn --factory pet_messaging.api.app:build_default_app``."""
    settings = Settings()
    configure_logging(settings.json_logs, settings.log_level)
    return create_app(settings=settings)
