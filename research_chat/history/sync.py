"""Reconciles the backend's conversation history into local state.

The backend's history payloads are loosely shaped: field names vary between
snake_case and camelCase, timestamps can be missing or malformed, and the
assistant role is called ``model``. Everything is normalized here before it
reaches the session, and nothing is written until a fetch fully succeeds.
"""

import logging
import uuid
from datetime import datetime, timedelta, tzinfo
from typing import Any

import httpx
from pydantic import ValidationError

from research_chat.client.backend import BackendClient, BackendError
from research_chat.models import (
    EPOCH,
    ConversationSummary,
    Message,
    Role,
    normalize_chart_urls,
    normalize_sources,
    parse_timestamp,
    utcnow,
)
from research_chat.streaming.orchestrator import StreamOrchestrator

logger = logging.getLogger(__name__)


class HistorySyncError(Exception):
    """Raised when the conversation history could not be synchronized."""

    pass


def message_from_payload(payload: dict[str, Any]) -> Message:
    """Build a finalized Message from a stored history entry."""
    role = Role.USER if payload.get("role") == "user" else Role.ASSISTANT
    content = payload.get("content")
    created_at = parse_timestamp(payload.get("created_at") or payload.get("createdAt"))

    chart_urls: list[str] = []
    for key in ("charts", "chartUrl", "chartUrls"):
        chart_urls.extend(normalize_chart_urls(payload.get(key)))

    return Message(
        id=str(payload.get("id") or uuid.uuid4()),
        role=role,
        content=content if isinstance(content, str) else "",
        sources=normalize_sources(payload.get("sources")),
        chart_urls=list(dict.fromkeys(chart_urls)),
        created_at=created_at,
        is_complete=True,
    )


def normalize_history(payloads: Any) -> list[Message]:
    """Convert stored messages and order them chronologically.

    Messages with an unparseable timestamp sort first; ties keep the
    server's order.
    """
    if not isinstance(payloads, list):
        return []
    messages: list[Message] = []
    seen: set[str] = set()
    for payload in payloads:
        if not isinstance(payload, dict):
            continue
        message = message_from_payload(payload)
        if message.id in seen:
            message.id = str(uuid.uuid4())
        seen.add(message.id)
        messages.append(message)
    return sorted(messages, key=lambda m: (m.created_at is not None, m.created_at or EPOCH))


def format_activity(
    timestamp: datetime | None, now: datetime | None = None, tz: tzinfo | None = None
) -> str:
    """Format a last-activity time for the history list.

    Returns the time of day within 24 hours, weekday and time within a week,
    month, day and time otherwise, and an empty string when unknown.
    """
    if timestamp is None:
        return ""
    now = now or utcnow()
    local = timestamp.astimezone(tz)
    clock = local.strftime("%I:%M %p").lstrip("0")
    age = abs(now - timestamp)
    if age < timedelta(hours=24):
        return clock
    if age < timedelta(days=7):
        return f"{local:%a} {clock}"
    return f"{local:%b} {local.day}, {clock}"


class HistorySync:
    """Keeps the conversation list and the loaded conversation in step with the backend.

    Args:
        backend: Client for the conversation endpoints.
        orchestrator: Owner of the session and tracker that get replaced
            or reset.
    """

    def __init__(self, backend: BackendClient, orchestrator: StreamOrchestrator) -> None:
        self._backend = backend
        self._orchestrator = orchestrator
        self.conversations: list[ConversationSummary] = []

    async def load(self, conversation_id: str) -> list[Message]:
        """Fetch a conversation and make it the active one.

        Any in-flight turn is cancelled first.

        Raises:
            HistorySyncError: If the conversation could not be fetched.
        """
        try:
            payload = await self._backend.get_conversation(conversation_id)
        except (BackendError, httpx.HTTPError, ValueError) as e:
            logger.error(f"Failed to load conversation {conversation_id}: {e}")
            raise HistorySyncError(f"Could not load conversation {conversation_id}") from e

        messages = normalize_history(payload.get("messages"))
        self._orchestrator.cancel()
        self._orchestrator.tracker.reset()
        self._orchestrator.session.replace_history(conversation_id, messages)
        logger.info(f"Loaded conversation {conversation_id} ({len(messages)} messages)")
        return messages

    async def remove(self, conversation_id: str) -> None:
        """Delete a conversation; resets the session if it was the active one.

        A conversation the backend no longer knows counts as removed.

        Raises:
            HistorySyncError: If the backend refused the deletion.
        """
        try:
            await self._backend.delete_conversation(conversation_id)
        except BackendError as e:
            if e.status_code != 404:
                logger.error(f"Failed to delete conversation {conversation_id}: {e}")
                raise HistorySyncError(f"Could not delete conversation {conversation_id}") from e
            logger.info(f"Conversation {conversation_id} was already deleted")
        except httpx.HTTPError as e:
            logger.error(f"Failed to delete conversation {conversation_id}: {e}")
            raise HistorySyncError(f"Could not delete conversation {conversation_id}") from e

        self.conversations = [c for c in self.conversations if c.id != conversation_id]
        if self._orchestrator.session.conversation_id == conversation_id:
            self._orchestrator.start_new_chat()

    # Defined last: the method name shadows the builtin inside the class body.
    async def list(self) -> list[ConversationSummary]:
        """Fetch conversation summaries, most recent first.

        Raises:
            HistorySyncError: If the list could not be fetched.
        """
        try:
            payloads = await self._backend.list_conversations()
        except (BackendError, httpx.HTTPError, ValueError) as e:
            logger.error(f"Failed to list conversations: {e}")
            raise HistorySyncError("Could not list conversations") from e

        summaries: list[ConversationSummary] = []
        for payload in payloads:
            try:
                summaries.append(ConversationSummary.from_payload(payload))
            except (ValueError, ValidationError) as e:
                logger.warning(f"Skipping conversation summary: {e}")
        summaries.sort(key=lambda s: s.sort_key, reverse=True)
        self.conversations = summaries
        return list(summaries)
