"""Wire schemas for backend payloads: stream chunks, chat replies, charts and history."""

from typing import Annotated, Any, Literal

from pydantic import BaseModel, Field, field_validator

from research_chat.models import SourceRef, normalize_chart_urls, normalize_sources


class StreamChunk(BaseModel):
    """One JSON payload of the chat event stream, as sent by the backend.

    Every key is optional; a single payload may carry several of them.

    Attributes:
        conversation_id: Identifier assigned to the conversation.
        text: A text delta to append to the reply.
        sources: Cumulative snapshot of the cited sources.
        finish_reason: Present on the final payload.
        error: Present when the backend failed mid-stream.
    """

    conversation_id: str | None = Field(None, alias="conversationId")
    text: str | None = None
    sources: list[SourceRef] | None = None
    finish_reason: str | None = Field(None, alias="finishReason")
    error: str | None = None

    @field_validator("conversation_id", mode="before")
    @classmethod
    def stringify_id(cls, v: Any) -> Any:
        """Accept numeric identifiers."""
        if isinstance(v, int | float) and not isinstance(v, bool):
            return str(v)
        return v

    @field_validator("sources", mode="before")
    @classmethod
    def coerce_sources(cls, v: Any) -> Any:
        """Accept plain URL strings as well as ``{url, title}`` objects."""
        if v is None:
            return None
        return normalize_sources(v)

    @field_validator("error", mode="before")
    @classmethod
    def stringify_error(cls, v: Any) -> Any:
        """Backends sometimes send ``{"message": ...}`` objects as errors."""
        if isinstance(v, dict):
            return str(v.get("message") or v)
        return v


class ConversationAssigned(BaseModel):
    kind: Literal["conversation"] = "conversation"
    conversation_id: str


class TextDelta(BaseModel):
    kind: Literal["text"] = "text"
    text: str


class SourceUpdate(BaseModel):
    kind: Literal["sources"] = "sources"
    sources: list[SourceRef]


class Completed(BaseModel):
    kind: Literal["completed"] = "completed"
    reason: str | None = None


class Errored(BaseModel):
    kind: Literal["error"] = "error"
    message: str


StreamEvent = Annotated[
    ConversationAssigned | TextDelta | SourceUpdate | Completed | Errored,
    Field(discriminator="kind"),
]


def chunk_to_events(chunk: StreamChunk) -> list[StreamEvent]:
    """Expand a payload into events in the order they must be applied."""
    events: list[StreamEvent] = []
    if chunk.conversation_id:
        events.append(ConversationAssigned(conversation_id=chunk.conversation_id))
    if chunk.error:
        events.append(Errored(message=chunk.error))
        return events
    if chunk.text:
        events.append(TextDelta(text=chunk.text))
    if chunk.sources is not None:
        events.append(SourceUpdate(sources=chunk.sources))
    if chunk.finish_reason:
        events.append(Completed(reason=chunk.finish_reason))
    return events


class ChatReply(BaseModel):
    """Response of the non-streaming chat endpoint."""

    content: str = ""
    sources: list[SourceRef] = Field(default_factory=list)
    conversation_id: str | None = Field(None, alias="conversationId")
    timestamp: str | None = None

    @field_validator("content", mode="before")
    @classmethod
    def none_is_empty(cls, v: Any) -> Any:
        return "" if v is None else v

    @field_validator("sources", mode="before")
    @classmethod
    def coerce_sources(cls, v: Any) -> Any:
        return normalize_sources(v)


class ChartRequest(BaseModel):
    """Request payload for the chart-preparation endpoint."""

    prompt: str
    conversation_id: str = Field(..., serialization_alias="conversationId")
    options: dict[str, bool] = Field(default_factory=lambda: {"includeSearch": True})


def extract_chart_urls(payload: Any) -> list[str]:
    """Find chart URLs in a chart response.

    Looks at ``chartUrl``, ``charts.chartUrl`` and the list forms
    ``chartUrls`` / ``charts.chartUrls``.
    """
    if not isinstance(payload, dict):
        return []
    candidates: list[Any] = [payload.get("chartUrl"), payload.get("chartUrls")]
    charts = payload.get("charts")
    if isinstance(charts, dict):
        candidates += [charts.get("chartUrl"), charts.get("chartUrls")]
    urls: list[str] = []
    for candidate in candidates:
        urls.extend(normalize_chart_urls(candidate))
    return list(dict.fromkeys(urls))
