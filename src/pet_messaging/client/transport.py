"""HTTP client for the messaging API."""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Type
from uuid import UUID

import httpx
import structlog

from ..domain.errors import (
    ConflictError,
    ForbiddenError,
    MessagingError,
    NotFoundError,
    RateLimitExceeded,
    TransientError,
    ValidationError,
)
from ..domain.models import ConversationSummary, Message

logger = structlog.get_logger()

STATUS_ERRORS: Dict[int, Type[MessagingError]] = {
    400: ValidationError,
    403: ForbiddenError,
    404: NotFoundError,
    408: TransientError,
    409: ConflictError,
    422: ValidationError,
    429: RateLimitExceeded,
}


class MessagingTransport(ABC):
    """Operations the synchronization client needs from the backend."""

    @abstractmethod
    async def list_conversations(self) -> List[ConversationSummary]:
        pass

    @abstractmethod
    async def list_messages(
        self,
        conversation_id: UUID,
        before: Optional[int] = None,
        after: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> List[Message]:
        pass

    @abstractmethod
    async def send_message(
        self, recipient_id: str, pet_id: int, content: str, client_id: Optional[str] = None
    ) -> Message:
        pass

    @abstractmethod
    async def mark_read(self, conversation_id: UUID) -> int:
        pass

    @abstractmethod
    async def unread_count(self) -> int:
        pass


def error_from_response(response: httpx.Response) -> MessagingError:
    try:
        data = response.json()
    except ValueError:
        data = None
    detail = data.get("detail", response.text) if isinstance(data, dict) else response.text
    if not isinstance(detail, str):
        detail = str(detail)
    if response.status_code >= 500:
        error_class: Type[MessagingError] = TransientError
    else:
        error_class = STATUS_ERRORS.get(response.status_code, MessagingError)
    return error_class(detail or f"HTTP {response.status_code}", status=response.status_code)


class HttpMessagingClient(MessagingTransport):
    """Talks JSON over HTTP as one user.

    Timeouts and connection failures are raised as ``TransientError``; error
    responses are mapped back onto the domain error classes.
    """

    def __init__(
        self,
        base_url: str,
        user_id: str,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.user_id = user_id
        self._client = httpx.AsyncClient(
            base_url=base_url,
            headers={"X-User-Id": user_id},
            timeout=timeout,
            transport=transport,
        )

    async def __aenter__(self) -> "HttpMessagingClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, url: str, **kwargs: Any) -> Any:
        try:
            response = await self._client.request(method, url, **kwargs)
        except httpx.TimeoutException as e:
            logger.warning("messaging_request_timeout", method=method, url=url)
            raise TransientError("Request timed out", url=url) from e
        except httpx.TransportError as e:
            logger.warning("messaging_request_failed", method=method, url=url, error=str(e))
            raise TransientError("Messaging service unreachable", url=url) from e
        if response.is_error:
            raise error_from_response(response)
        return response.json()

    async def list_conversations(self) -> List[ConversationSummary]:
        data = await self._request("GET", "/messages/conversations/")
        return [ConversationSummary.model_validate(item) for item in data]

    async def list_messages(
        self,
        conversation_id: UUID,
        before: Optional[int] = None,
        after: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> List[Message]:
        params = {
            key: value
            for key, value in (("before", before), ("after", after), ("limit", limit))
            if value is not None
        }
        data = await self._request(
            "GET", f"/messages/conversations/{conversation_id}/messages/", params=params
        )
        return [Message.model_validate(item) for item in data]

    async def send_message(
        self, recipient_id: str, pet_id: int, content: str, client_id: Optional[str] = None
    ) -> Message:
        body = {
            "recipient_id": recipient_id,
            "pet": pet_id,
            "content": content,
            "client_id": client_id,
        }
        return Message.model_validate(await self._request("POST", "/messages/send/", json=body))

    async def mark_read(self, conversation_id: UUID) -> int:
        data = await self._request("PATCH", f"/messages/conversations/{conversation_id}/read/")
        return data["updated"]

    async def unread_count(self) -> int:
        data = await self._request("GET", "/messages/unread-count/")
        return data["unread_count"]
