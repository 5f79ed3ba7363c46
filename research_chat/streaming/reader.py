"""Incremental decoding of ``text/event-stream`` response bodies.

Bytes are decoded with a stateful decoder so multi-byte characters split
across network chunks survive intact. Lines are grouped into events on blank
lines; each event's ``data`` is parsed as JSON and validated into typed
stream events. Malformed payloads are logged and skipped.
"""

import codecs
import json
import logging
from collections.abc import AsyncIterable, AsyncIterator

from pydantic import BaseModel, ValidationError

from research_chat.models.schemas import Errored, StreamChunk, StreamEvent, chunk_to_events

logger = logging.getLogger(__name__)

DONE_SENTINEL = "[DONE]"


class ServerSentEvent(BaseModel):
    """A framed event before its payload is interpreted.

    Attributes:
        event: Event type label (``message`` unless the stream says otherwise).
        data: Payload, with multiple ``data:`` lines joined by newlines.
        data_lines: The individual ``data:`` lines.
        id: Last event id, if sent.
    """

    event: str = "message"
    data: str = ""
    data_lines: list[str] = []
    id: str | None = None


class EventStreamReader:
    """Turns an async byte source into lines, then framed events.

    Each call to :meth:`lines` or :meth:`events` starts with fresh decoder
    state; the underlying source itself can only be consumed once.
    """

    def __init__(self, source: AsyncIterable[bytes], encoding: str = "utf-8") -> None:
        self._source = source
        self._encoding = encoding

    async def lines(self) -> AsyncIterator[str]:
        """Yield decoded lines, without their terminators."""
        decoder = codecs.getincrementaldecoder(self._encoding)(errors="replace")
        buffer = ""
        async for chunk in self._source:
            if not chunk:
                continue
            buffer += decoder.decode(chunk)
            # A trailing \r may be the first half of \r\n
            complete, held = (buffer[:-1], "\r") if buffer.endswith("\r") else (buffer, "")
            *ready, buffer = _split_lines(complete)
            buffer += held
            for line in ready:
                yield line
        buffer += decoder.decode(b"", final=True)
        if buffer.endswith("\r"):
            buffer = buffer[:-1] + "\n"
        *ready, rest = _split_lines(buffer)
        for line in ready:
            yield line
        if rest:
            yield rest

    async def events(self) -> AsyncIterator[ServerSentEvent]:
        """Yield one event per blank-line-terminated block."""
        event_type = ""
        data_lines: list[str] = []
        last_id: str | None = None

        async for line in self.lines():
            if not line:
                if data_lines or event_type:
                    yield _build_event(event_type, data_lines, last_id)
                event_type, data_lines = "", []
                continue
            if line.startswith(":"):
                continue
            field, _, value = line.partition(":")
            if value.startswith(" "):
                value = value[1:]
            if field == "event":
                event_type = value
            elif field == "data":
                data_lines.append(value)
            elif field == "id":
                last_id = value
            # "retry" and unknown fields are ignored

        if data_lines or event_type:
            yield _build_event(event_type, data_lines, last_id)

    def __aiter__(self) -> AsyncIterator[ServerSentEvent]:
        return self.events()


def _split_lines(text: str) -> list[str]:
    return text.replace("\r\n", "\n").replace("\r", "\n").split("\n")


def _build_event(event_type: str, data_lines: list[str], last_id: str | None) -> ServerSentEvent:
    return ServerSentEvent(
        event=event_type or "message",
        data="\n".join(data_lines),
        data_lines=list(data_lines),
        id=last_id,
    )


def _load_payloads(sse: ServerSentEvent) -> list[object]:
    """Parse the JSON payload(s) of an event, skipping what does not parse.

    Some backends put several JSON objects on consecutive ``data:`` lines
    without a blank separator; those are parsed line by line.
    """
    if sse.data.strip() in ("", DONE_SENTINEL):
        return []
    try:
        return [json.loads(sse.data)]
    except json.JSONDecodeError:
        if len(sse.data_lines) < 2:
            logger.warning(f"Skipping malformed event data: {sse.data[:200]!r}")
            return []

    payloads: list[object] = []
    for line in sse.data_lines:
        if line.strip() in ("", DONE_SENTINEL):
            continue
        try:
            payloads.append(json.loads(line))
        except json.JSONDecodeError:
            logger.warning(f"Skipping malformed event line: {line[:200]!r}")
    return payloads


def decode_event(sse: ServerSentEvent) -> list[StreamEvent]:
    """Validate a framed event into typed stream events."""
    payloads = _load_payloads(sse)
    if sse.event == "error" and not payloads:
        return [Errored(message=sse.data or "stream error")]

    events: list[StreamEvent] = []
    for payload in payloads:
        if not isinstance(payload, dict):
            logger.warning(f"Skipping non-object event payload: {payload!r}")
            continue
        try:
            chunk = StreamChunk.model_validate(payload)
        except ValidationError as e:
            logger.warning(f"Skipping invalid event payload: {e}")
            continue
        decoded = chunk_to_events(chunk)
        if sse.event == "error" and not any(isinstance(ev, Errored) for ev in decoded):
            message = payload.get("message")
            decoded.append(Errored(message=message if isinstance(message, str) else sse.data))
        events.extend(decoded)
    return events


async def stream_events(source: AsyncIterable[bytes]) -> AsyncIterator[StreamEvent]:
    """Decode a raw event-stream body into typed events, in arrival order."""
    async for sse in EventStreamReader(source):
        for event in decode_event(sse):
            yield event
