"""Conversation state mutated by the orchestrator and history sync."""

import logging
from collections.abc import Callable, Iterable
from enum import Enum
from typing import Protocol

from research_chat.models import Message, Role

logger = logging.getLogger(__name__)


class ChangeKind(str, Enum):
    """What changed in a session, as reported to listeners."""

    CONVERSATION = "conversation"
    MESSAGE_ADDED = "message_added"
    MESSAGE_UPDATED = "message_updated"
    DRAFT_STARTED = "draft_started"
    DRAFT_UPDATED = "draft_updated"
    DRAFT_DISCARDED = "draft_discarded"
    RESET = "reset"
    HISTORY_LOADED = "history_loaded"


SessionListener = Callable[[ChangeKind, Message | None], None]


class AbortHandle(Protocol):
    def cancel(self) -> bool: ...


class ConversationSession:
    """Holds the active conversation id, its message log, and the in-flight turn.

    The assistant reply being streamed lives in :attr:`draft` and only
    joins :attr:`messages` once it is committed, so an abandoned turn never
    leaves a half-written message in the log.
    """

    def __init__(self, conversation_id: str | None = None) -> None:
        self.conversation_id: str | None = conversation_id
        self.messages: list[Message] = []
        self.draft: Message | None = None
        self.abort_handle: AbortHandle | None = None
        self._listeners: list[SessionListener] = []

    def subscribe(self, listener: SessionListener) -> Callable[[], None]:
        """Register a listener. Returns a function that unregisters it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    @property
    def in_flight(self) -> bool:
        return self.abort_handle is not None

    def set_conversation_id(self, conversation_id: str | None) -> bool:
        """Update the conversation id. Returns True only if it changed."""
        if conversation_id == self.conversation_id:
            return False
        logger.info(f"Conversation id: {self.conversation_id} -> {conversation_id}")
        self.conversation_id = conversation_id
        self._notify(ChangeKind.CONVERSATION, None)
        return True

    def add_message(self, message: Message) -> Message:
        self.messages.append(message)
        self._notify(ChangeKind.MESSAGE_ADDED, message)
        return message

    def get_message(self, message_id: str) -> Message | None:
        for message in self.messages:
            if message.id == message_id:
                return message
        return None

    def add_chart_url(self, message_id: str, url: str) -> bool:
        """Attach a chart to a committed message, if it is still present."""
        message = self.get_message(message_id)
        if message is None or not message.add_chart_url(url):
            return False
        self._notify(ChangeKind.MESSAGE_UPDATED, message)
        return True

    def begin_turn(self, handle: AbortHandle) -> Message:
        """Bind the abort handle of a new turn and open its draft reply."""
        self.abort_handle = handle
        self.draft = Message(role=Role.ASSISTANT)
        self._notify(ChangeKind.DRAFT_STARTED, self.draft)
        return self.draft

    def owns_turn(self, handle: AbortHandle) -> bool:
        return self.abort_handle is handle

    def touch_draft(self) -> None:
        """Republish the draft after it was mutated."""
        if self.draft is not None:
            self._notify(ChangeKind.DRAFT_UPDATED, self.draft)

    def commit_draft(self, handle: AbortHandle) -> Message | None:
        """Move the draft into the log and release the turn."""
        if not self.owns_turn(handle) or self.draft is None:
            return None
        message, self.draft = self.draft, None
        self.abort_handle = None
        return self.add_message(message)

    def release_turn(self, handle: AbortHandle) -> None:
        """Drop the draft and abort handle of ``handle``'s turn, if still current."""
        if not self.owns_turn(handle):
            return
        self.abort_handle = None
        if self.draft is not None:
            draft, self.draft = self.draft, None
            self._notify(ChangeKind.DRAFT_DISCARDED, draft)

    def replace_history(self, conversation_id: str, messages: Iterable[Message]) -> None:
        """Swap in a conversation loaded from the backend."""
        self.conversation_id = conversation_id
        self.messages = list(messages)
        self.draft = None
        self.abort_handle = None
        self._notify(ChangeKind.HISTORY_LOADED, None)

    def reset(self) -> None:
        """Forget the conversation: no id, no messages, no turn."""
        self.conversation_id = None
        self.messages = []
        self.draft = None
        self.abort_handle = None
        self._notify(ChangeKind.RESET, None)

    def _notify(self, kind: ChangeKind, message: Message | None) -> None:
        for listener in list(self._listeners):
            listener(kind, message)
