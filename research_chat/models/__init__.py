"""Pydantic models for the chat client's in-memory state.

Provides type safety and validation for everything the UI renders.

Models:
    - SourceRef: A web source cited by an assistant reply
    - Message: Individual message in a conversation
    - Attachment: A file sent along with a prompt
    - ConversationSummary: One entry of the conversation history list
"""

import mimetypes
import uuid
from collections.abc import Iterable
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, TypeAdapter, ValidationError

EPOCH = datetime(1970, 1, 1, tzinfo=UTC)

_datetime_adapter = TypeAdapter(datetime)


def utcnow() -> datetime:
    return datetime.now(UTC)


def parse_timestamp(value: Any) -> datetime | None:
    """Parse an ISO string or epoch number into an aware datetime.

    Returns None for missing or unparseable values. Naive values are
    assumed to be UTC.
    """
    if value is None or value == "":
        return None
    try:
        parsed = _datetime_adapter.validate_python(value)
    except ValidationError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


class Role(str, Enum):
    """Speaker of a message."""

    USER = "user"
    ASSISTANT = "assistant"


class SourceRef(BaseModel):
    """A web source referenced by an assistant message.

    Attributes:
        url: Address of the source.
        title: Optional human-readable title.
    """

    url: str = Field(..., min_length=1)
    title: str | None = None

    @classmethod
    def coerce(cls, value: Any) -> "SourceRef | None":
        """Build a SourceRef from a plain URL string or a ``{url, title}`` object."""
        if isinstance(value, str):
            return cls(url=value) if value.strip() else None
        if isinstance(value, dict):
            url = value.get("url") or value.get("uri")
            if not isinstance(url, str) or not url.strip():
                return None
            title = value.get("title")
            return cls(url=url, title=title if isinstance(title, str) else None)
        return None


def normalize_sources(values: Any) -> list[SourceRef]:
    """Coerce a heterogeneous source list, dropping entries without a URL."""
    if not isinstance(values, list):
        return []
    sources: list[SourceRef] = []
    for value in values:
        source = SourceRef.coerce(value)
        if source is not None:
            sources.append(source)
    return sources


def normalize_chart_urls(values: Any) -> list[str]:
    """Coerce a chart reference (string or list of strings) into unique URLs."""
    if isinstance(values, str):
        values = [values]
    if not isinstance(values, list):
        return []
    urls = (v.strip() for v in values if isinstance(v, str))
    return list(dict.fromkeys(u for u in urls if u))


class Message(BaseModel):
    """A single chat message in the conversation.

    Assistant messages are created empty when a turn starts and filled in
    as the stream arrives. Once finalized, the text content is frozen.

    Attributes:
        id: Identifier, unique within a session.
        role: The speaker (user or assistant).
        content: The message text.
        sources: Web sources cited by the reply, in order.
        chart_urls: Charts attached to the reply, unique by URL.
        created_at: Creation time (None for history entries with a bad date).
        is_complete: Whether the text content is final.
        finish_reason: Why the generation stopped, when the backend says so.
        error: Failure detail for synthetic error messages.
        attachments: Names of files sent with a user message.
    """

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    role: Role
    content: str = ""
    sources: list[SourceRef] = Field(default_factory=list)
    chart_urls: list[str] = Field(default_factory=list)
    created_at: datetime | None = Field(default_factory=utcnow)
    is_complete: bool = False
    finish_reason: str | None = None
    error: str | None = None
    attachments: list[str] = Field(default_factory=list)

    def append_text(self, delta: str) -> str:
        """Append a text delta and return the full accumulated content."""
        if self.is_complete:
            raise ValueError(f"Message {self.id} is finalized")
        self.content += delta
        return self.content

    def replace_sources(self, sources: Iterable[SourceRef]) -> None:
        self.sources = list(sources)

    def add_chart_url(self, url: str) -> bool:
        """Attach a chart URL. Returns False if it was already attached."""
        if url in self.chart_urls:
            return False
        self.chart_urls.append(url)
        return True

    def finalize(self, fallback_text: str) -> None:
        """Freeze the content, stamping the completion time."""
        if not self.content:
            self.content = fallback_text
        self.created_at = utcnow()
        self.is_complete = True


class Attachment(BaseModel):
    """A file sent along with a prompt.

    Attributes:
        name: File name as shown to the backend.
        content: Raw file bytes.
        content_type: MIME type.
    """

    name: str = Field(..., min_length=1)
    content: bytes
    content_type: str = "application/octet-stream"

    @classmethod
    def from_path(cls, path: str | Path) -> "Attachment":
        path = Path(path)
        content_type, _ = mimetypes.guess_type(path.name)
        return cls(
            name=path.name,
            content=path.read_bytes(),
            content_type=content_type or "application/octet-stream",
        )

    @classmethod
    def from_upload(cls, name: str, content: bytes, content_type: str | None) -> "Attachment":
        """Build an attachment from a browser upload, guessing a missing MIME type."""
        if not content_type:
            content_type, _ = mimetypes.guess_type(name)
        return cls(
            name=name,
            content=content,
            content_type=content_type or "application/octet-stream",
        )


class ConversationSummary(BaseModel):
    """One entry of the conversation history list.

    Attributes:
        id: Conversation identifier.
        title: Display title.
        updated_at: Best-known last-activity time (None if unknown).
    """

    id: str = Field(..., min_length=1)
    title: str
    updated_at: datetime | None = None

    @property
    def sort_key(self) -> datetime:
        return self.updated_at or EPOCH

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "ConversationSummary":
        """Normalize a server summary with inconsistent field names.

        Raises:
            ValueError: If the payload has no usable ``id``.
        """
        raw_id = payload.get("id")
        if raw_id is None or str(raw_id) == "":
            raise ValueError("conversation summary without id")
        conversation_id = str(raw_id)

        title = payload.get("title") or payload.get("name")
        if not isinstance(title, str) or not title.strip():
            title = f"Chat {conversation_id[:6]}"

        updated_at = None
        for key in ("updated_at", "updatedAt", "created_at", "createdAt"):
            updated_at = parse_timestamp(payload.get(key))
            if updated_at is not None:
                break

        return cls(id=conversation_id, title=title.strip(), updated_at=updated_at)
