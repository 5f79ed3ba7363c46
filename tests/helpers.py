"""Scripted backend for driving the client without a server."""

import asyncio
import json
from collections.abc import AsyncIterator
from typing import Any

import httpx


def sse(payload: Any, event: str | None = None) -> bytes:
    """Frame one payload as an event-stream event."""
    data = payload if isinstance(payload, str) else json.dumps(payload)
    head = f"event: {event}\n" if event else ""
    return f"{head}data: {data}\n\n".encode()


class FakeBackend:
    """In-memory stand-in for the generation service, served via MockTransport.

    Attributes:
        stream_chunks: Raw byte chunks of the next streaming response.
        stream_status: Status of the streaming endpoint.
        stream_error_body: Body returned with a non-200 stream status.
        hold_stream: When set, the stream stays open after its chunks until
            the event fires.
        stream_failure: Raised from the body after its chunks, as a dropped
            connection would.
        chart_status / chart_payload: Response of the chart endpoint.
        chart_failure: Raised instead of answering the chart request.
        reply: JSON returned by the non-streaming chat endpoint.
        conversations / details: Responses of the history endpoints.
        delete_status: Status returned by the delete endpoint.
        requests: Every request received, in order.
    """

    def __init__(self) -> None:
        self.stream_chunks: list[bytes] = []
        self.stream_status = 200
        self.stream_error_body = ""
        self.hold_stream: asyncio.Event | None = None
        self.stream_failure: Exception | None = None
        self.chunks_sent = asyncio.Event()
        self.chart_status = 200
        self.chart_payload: Any = {"chartUrl": "https://charts.test/c1.png"}
        self.chart_gate: asyncio.Event | None = None
        self.chart_failure: Exception | None = None
        self.reply: dict[str, Any] = {"content": "", "sources": []}
        self.conversations: Any = []
        self.details: dict[str, dict[str, Any]] = {}
        self.list_status = 200
        self.detail_status = 200
        self.delete_status = 200
        self.requests: list[httpx.Request] = []

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    def requests_to(self, path: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.path == path]

    async def _stream(self) -> AsyncIterator[bytes]:
        for chunk in self.stream_chunks:
            yield chunk
            await asyncio.sleep(0)
        self.chunks_sent.set()
        if self.stream_failure is not None:
            raise self.stream_failure
        if self.hold_stream is not None:
            await self.hold_stream.wait()

    async def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        conversations = "/api/gemini/conversations"

        if path == "/api/gemini/chat/stream":
            if self.stream_status != 200:
                return httpx.Response(self.stream_status, text=self.stream_error_body)
            return httpx.Response(
                200, headers={"content-type": "text/event-stream"}, content=self._stream()
            )
        if path == "/api/gemini/chat":
            return httpx.Response(200, json=self.reply)
        if path == "/api/gemini/charts":
            if self.chart_gate is not None:
                await self.chart_gate.wait()
            if self.chart_failure is not None:
                raise self.chart_failure
            if self.chart_status != 200:
                return httpx.Response(self.chart_status, text="chart service down")
            return httpx.Response(200, json=self.chart_payload)
        if path == conversations and request.method == "GET":
            if self.list_status != 200:
                return httpx.Response(self.list_status, text="list failed")
            return httpx.Response(200, json=self.conversations)
        if path.startswith(conversations + "/"):
            conversation_id = path.rsplit("/", 1)[-1]
            if request.method == "DELETE":
                if self.delete_status != 200:
                    return httpx.Response(self.delete_status, text="delete failed")
                self.details.pop(conversation_id, None)
                return httpx.Response(200, json={"success": True})
            if self.detail_status != 200 or conversation_id not in self.details:
                return httpx.Response(self.detail_status if self.detail_status != 200 else 404)
            return httpx.Response(200, json=self.details[conversation_id])
        return httpx.Response(404)
