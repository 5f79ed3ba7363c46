"""In-process stand-in for the generation service.

A small FastAPI app exposing the same endpoints as the real backend, served
to the client through ``httpx.ASGITransport``. Replies are canned: the prompt
is echoed back in a few deltas, with one cited source.

Special prompts:
    - ``fail``: the stream reports an error after the first delta
    - ``no chart``: the chart endpoint answers 502 for that conversation
"""

import json
import logging
import uuid
from collections.abc import AsyncGenerator
from datetime import UTC, datetime
from typing import Any

from fastapi import APIRouter, FastAPI, Header, HTTPException, Request, status
from fastapi.responses import StreamingResponse

logger = logging.getLogger(__name__)

TOKEN = "integration-token"
SOURCE_URL = "https://example.org/article"


def _now() -> str:
    return datetime.now(UTC).isoformat()


def _event(payload: dict[str, Any], event: str | None = None) -> str:
    head = f"event: {event}\n" if event else ""
    return f"{head}data: {json.dumps(payload)}\n\n"


class ConversationStore:
    """Conversations kept in memory, keyed by id."""

    def __init__(self) -> None:
        self.conversations: dict[str, dict[str, Any]] = {}
        self.chart_failures: set[str] = set()

    def ensure(self, conversation_id: str | None, prompt: str) -> dict[str, Any]:
        if conversation_id and conversation_id in self.conversations:
            return self.conversations[conversation_id]
        conversation = {
            "id": conversation_id or uuid.uuid4().hex[:12],
            "title": prompt[:40] or "Attachment",
            "createdAt": _now(),
            "updatedAt": _now(),
            "messages": [],
        }
        self.conversations[conversation["id"]] = conversation
        return conversation

    def record(self, conversation: dict[str, Any], role: str, content: str, **extra: Any) -> None:
        conversation["messages"].append(
            {
                "id": uuid.uuid4().hex,
                "role": role,
                "content": content,
                "createdAt": _now(),
                **extra,
            }
        )
        conversation["updatedAt"] = _now()


def _require_token(authorization: str | None) -> None:
    if authorization != f"Bearer {TOKEN}":
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")


async def _read_turn(request: Request) -> tuple[str, str | None, list[str]]:
    """Return prompt, conversation id and attached file names of a chat request."""
    if request.headers.get("content-type", "").startswith("multipart/form-data"):
        form = await request.form()
        files = [f.filename for f in form.getlist("files") if hasattr(f, "filename")]
        return str(form.get("prompt", "")), form.get("conversationId"), files
    body = await request.json()
    return body.get("prompt", ""), body.get("conversationId"), []


def create_router(store: ConversationStore) -> APIRouter:
    router = APIRouter(prefix="/api/gemini", tags=["gemini"])

    @router.post("/chat/stream")
    async def chat_stream(
        request: Request, authorization: str | None = Header(None)
    ) -> StreamingResponse:
        _require_token(authorization)
        prompt, conversation_id, files = await _read_turn(request)
        conversation = store.ensure(conversation_id, prompt)
        store.record(conversation, "user", prompt, attachments=files)
        if prompt == "no chart":
            store.chart_failures.add(conversation["id"])

        async def generate() -> AsyncGenerator[str]:
            yield ": connected\n\n"
            yield _event({"conversationId": conversation["id"]})
            yield _event({"text": "You asked: "})
            if prompt == "fail":
                yield _event({"message": "generation aborted"}, event="error")
                return
            yield _event({"text": prompt, "sources": [SOURCE_URL]})
            yield _event({"text": "."})
            reply = f"You asked: {prompt}."
            store.record(conversation, "model", reply, sources=[SOURCE_URL])
            yield _event({"finishReason": "STOP"})

        return StreamingResponse(generate(), media_type="text/event-stream")

    @router.post("/charts")
    async def prepare_chart(
        body: dict[str, Any], authorization: str | None = Header(None)
    ) -> dict[str, Any]:
        _require_token(authorization)
        conversation_id = body.get("conversationId")
        if conversation_id in store.chart_failures:
            raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail="No chart")
        return {"charts": {"chartUrl": f"https://charts.example.org/{conversation_id}.png"}}

    @router.get("/conversations")
    async def list_conversations(authorization: str | None = Header(None)) -> dict[str, Any]:
        _require_token(authorization)
        summaries = [
            {"id": c["id"], "title": c["title"], "updatedAt": c["updatedAt"]}
            for c in store.conversations.values()
        ]
        return {"conversations": summaries}

    @router.get("/conversations/{conversation_id}")
    async def get_conversation(
        conversation_id: str, authorization: str | None = Header(None)
    ) -> dict[str, Any]:
        _require_token(authorization)
        if conversation_id not in store.conversations:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Not found")
        return store.conversations[conversation_id]

    @router.delete("/conversations/{conversation_id}")
    async def delete_conversation(
        conversation_id: str, authorization: str | None = Header(None)
    ) -> dict[str, bool]:
        _require_token(authorization)
        if store.conversations.pop(conversation_id, None) is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Not found")
        return {"success": True}

    return router


def create_app(store: ConversationStore | None = None) -> FastAPI:
    """Create the fake service around a conversation store."""
    application = FastAPI(title="Fake generation service")
    application.state.store = store or ConversationStore()
    application.include_router(create_router(application.state.store))
    return application
