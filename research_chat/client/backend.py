"""HTTP client for the generation service.

Thin wrapper around ``httpx.AsyncClient`` covering every endpoint the chat
client calls: the streaming and non-streaming chat turns, chart preparation,
and the conversation history collection.
"""

import logging
from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager
from typing import Any
from urllib.parse import quote

import httpx

from research_chat.config import ClientConfig, get_client_config
from research_chat.models import Attachment
from research_chat.models.schemas import ChartRequest, ChatReply

logger = logging.getLogger(__name__)


class BackendError(Exception):
    """Raised when the backend answers with a non-success status.

    Attributes:
        status_code: HTTP status of the failed response.
        detail: Response body as text.
    """

    def __init__(self, detail: str, status_code: int | None = None) -> None:
        super().__init__(f"HTTP {status_code}: {detail}" if status_code else detail)
        self.detail = detail
        self.status_code = status_code


class ChatRequestError(BackendError):
    """Raised when a chat turn is rejected before any streaming starts."""

    pass


class BackendClient:
    """Async client for the chat backend.

    Args:
        config: Client configuration. Loads from environment if not provided.
        transport: Optional httpx transport (tests use mock or ASGI transports).
    """

    def __init__(
        self,
        config: ClientConfig | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.config = config or get_client_config()
        self._client = httpx.AsyncClient(
            timeout=self.config.request_timeout,
            transport=transport,
        )

    async def __aenter__(self) -> "BackendClient":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    def _headers(self, accept: str = "application/json") -> dict[str, str]:
        headers = {"Accept": accept}
        if self.config.auth_token:
            headers["Authorization"] = f"Bearer {self.config.auth_token}"
        return headers

    def _conversation_url(self, conversation_id: str | None = None) -> str:
        url = self.config.url(self.config.conversations_path)
        if conversation_id is None:
            return url
        return f"{url}/{quote(conversation_id, safe='')}"

    @staticmethod
    def _chat_body(
        prompt: str,
        conversation_id: str | None,
        attachments: Sequence[Attachment] | None,
    ) -> dict[str, Any]:
        """Build httpx request kwargs: JSON, or multipart when files are attached."""
        if not attachments:
            payload: dict[str, Any] = {"prompt": prompt}
            if conversation_id:
                payload["conversationId"] = conversation_id
            return {"json": payload}

        data = {"prompt": prompt}
        if conversation_id:
            data["conversationId"] = conversation_id
        files = [("files", (a.name, a.content, a.content_type)) for a in attachments]
        return {"data": data, "files": files}

    @staticmethod
    async def _raise_for_status(response: httpx.Response, error_cls: type[BackendError]) -> None:
        if response.is_success:
            return
        body = (await response.aread()).decode("utf-8", errors="replace")
        raise error_cls(body.strip() or response.reason_phrase, response.status_code)

    @asynccontextmanager
    async def stream_chat(
        self,
        prompt: str,
        conversation_id: str | None = None,
        attachments: Sequence[Attachment] | None = None,
    ) -> AsyncIterator[httpx.Response]:
        """Open the streaming chat request.

        Yields:
            The response, with its body not yet read.

        Raises:
            ChatRequestError: If the backend rejects the turn.
        """
        url = self.config.url(self.config.chat_stream_path)
        async with self._client.stream(
            "POST",
            url,
            headers=self._headers(accept="text/event-stream"),
            **self._chat_body(prompt, conversation_id, attachments),
        ) as response:
            await self._raise_for_status(response, ChatRequestError)
            yield response

    async def complete_chat(
        self,
        prompt: str,
        conversation_id: str | None = None,
        attachments: Sequence[Attachment] | None = None,
    ) -> ChatReply:
        """Run a non-streaming chat turn."""
        response = await self._client.post(
            self.config.url(self.config.chat_path),
            headers=self._headers(),
            **self._chat_body(prompt, conversation_id, attachments),
        )
        await self._raise_for_status(response, ChatRequestError)
        return ChatReply.model_validate(response.json())

    async def prepare_chart(self, prompt: str, conversation_id: str) -> Any:
        """Ask the backend to build a chart for a finished turn."""
        request = ChartRequest(prompt=prompt, conversation_id=conversation_id)
        response = await self._client.post(
            self.config.url(self.config.charts_path),
            headers=self._headers(),
            json=request.model_dump(by_alias=True),
        )
        await self._raise_for_status(response, BackendError)
        return response.json()

    async def list_conversations(self) -> list[dict[str, Any]]:
        response = await self._client.get(self._conversation_url(), headers=self._headers())
        await self._raise_for_status(response, BackendError)
        data = response.json()
        if isinstance(data, dict):
            data = data.get("conversations", [])
        if not isinstance(data, list):
            logger.warning(f"Unexpected conversation list payload: {type(data).__name__}")
            return []
        return [item for item in data if isinstance(item, dict)]

    async def get_conversation(self, conversation_id: str) -> dict[str, Any]:
        response = await self._client.get(
            self._conversation_url(conversation_id), headers=self._headers()
        )
        await self._raise_for_status(response, BackendError)
        data = response.json()
        if not isinstance(data, dict):
            raise BackendError(f"Unexpected conversation payload: {type(data).__name__}")
        return data

    async def delete_conversation(self, conversation_id: str) -> None:
        response = await self._client.delete(
            self._conversation_url(conversation_id), headers=self._headers()
        )
        await self._raise_for_status(response, BackendError)
