"""Streaming turn orchestration.

Core module for sending a prompt and turning the backend's event stream into
session and progress state.

How a turn runs:

1. **Dispatch** - the user message is logged, the tracker goes to
   ``searching``, and the request runs inside its own task so a
   :class:`CancelToken` can abort the transport at any suspension point.

2. **Consume** - events are applied in arrival order. Text deltas grow the
   draft reply, source snapshots replace its sources, and the conversation id
   is adopted when the backend assigns one.

3. **Finalize** - the draft is committed (with a fallback text if nothing was
   generated) and ``responding`` completes.

4. **Chart follow-up** - when a conversation id is known, a background task
   asks for a chart. It is not covered by the turn's cancel token and its
   failure only sends ``charting`` back to ``pending``.
"""

import asyncio
import logging
from collections.abc import Sequence
from typing import Any

from research_chat.client.backend import BackendClient, BackendError
from research_chat.config import ClientConfig
from research_chat.models import Attachment, Message, Role
from research_chat.models.schemas import (
    Completed,
    ConversationAssigned,
    Errored,
    SourceUpdate,
    TextDelta,
    extract_chart_urls,
)
from research_chat.streaming.reader import stream_events
from research_chat.streaming.session import ConversationSession
from research_chat.streaming.stages import Stage, StageState, StageTracker

logger = logging.getLogger(__name__)

ATTACHMENTS_ONLY_PROMPT = "(sent with attachments)"


class StreamEventError(Exception):
    """Raised when the backend reports an error inside the stream."""

    pass


class TurnInProgressError(RuntimeError):
    """Raised when a turn is sent while another one is still running."""

    pass


class ChartUnavailableError(Exception):
    """Raised when the chart endpoint answers without a chart."""

    pass


class CancelToken:
    """Cancellation handle for one in-flight turn.

    Cancelling is idempotent, and a no-op once the turn has finished.
    """

    def __init__(self) -> None:
        self.cancelled = False
        self._task: asyncio.Future[Any] | None = None

    def bind(self, task: asyncio.Future[Any]) -> None:
        self._task = task

    def cancel(self) -> bool:
        """Abort the bound task. Returns True the first time it takes effect."""
        if self.cancelled or (self._task is not None and self._task.done()):
            return False
        self.cancelled = True
        if self._task is not None:
            self._task.cancel()
        return True


class StreamOrchestrator:
    """Drives chat turns against the backend.

    Owns the session's abort handle while a turn runs and publishes every
    change through the session and tracker listeners.

    Args:
        backend: Client used for the chat and chart requests.
        session: Conversation state to mutate. A fresh one if not provided.
        tracker: Progress tracker. A fresh one if not provided.
        config: Overrides the backend's configuration for fallback texts.
    """

    def __init__(
        self,
        backend: BackendClient,
        session: ConversationSession | None = None,
        tracker: StageTracker | None = None,
        config: ClientConfig | None = None,
    ) -> None:
        self._backend = backend
        self._config = config or backend.config
        self.session = session or ConversationSession()
        self.tracker = tracker or StageTracker()
        self._turn: CancelToken | None = None
        self._chart_tasks: set[asyncio.Task[None]] = set()

    @property
    def is_streaming(self) -> bool:
        return self.session.in_flight

    def _open_turn(
        self,
        prompt: str,
        attachments: Sequence[Attachment] | None,
        conversation_id: str | None,
    ) -> tuple[CancelToken, Message]:
        if self.session.in_flight:
            raise TurnInProgressError("A turn is already in progress; cancel it first")
        token = CancelToken()
        self._turn = token
        if conversation_id:
            self.session.set_conversation_id(conversation_id)
        self.session.add_message(
            Message(
                role=Role.USER,
                content=prompt or ATTACHMENTS_ONLY_PROMPT,
                attachments=[a.name for a in attachments or ()],
                is_complete=True,
            )
        )
        self.tracker.reset()
        self.tracker.activate(Stage.SEARCHING)
        draft = self.session.begin_turn(token)
        return token, draft

    async def send(
        self,
        prompt: str,
        attachments: Sequence[Attachment] | None = None,
        conversation_id: str | None = None,
    ) -> Message | None:
        """Send a prompt and stream the reply into the session.

        Args:
            prompt: The user's message.
            attachments: Optional files; switches the body to multipart.
            conversation_id: Conversation to continue. Defaults to the
                session's current one.

        Returns:
            The committed reply, the synthetic error message if the turn
            failed, or None if it was cancelled.

        Raises:
            TurnInProgressError: If another turn has not finished.
        """
        token, draft = self._open_turn(prompt, attachments, conversation_id)
        resolved_id = self.session.conversation_id
        logger.info(
            f"Sending turn (conversation={resolved_id}, attachments={len(attachments or ())})"
        )

        task = asyncio.ensure_future(
            self._consume(token, draft, prompt, resolved_id, attachments)
        )
        token.bind(task)
        try:
            await task
        except asyncio.CancelledError:
            if not token.cancelled:
                self.session.release_turn(token)
                raise
            logger.info("Turn cancelled")
            return None
        except Exception as e:
            if token.cancelled:
                return None
            return self._fail_turn(token, e)

        if token.cancelled:
            return None
        message = self._finish_turn(token, draft)
        if message is not None:
            self._schedule_chart(token, message, prompt)
        return message

    async def _consume(
        self,
        token: CancelToken,
        draft: Message,
        prompt: str,
        conversation_id: str | None,
        attachments: Sequence[Attachment] | None,
    ) -> None:
        async with self._backend.stream_chat(prompt, conversation_id, attachments) as response:
            async for event in stream_events(response.aiter_bytes()):
                if token.cancelled:
                    return
                if isinstance(event, ConversationAssigned):
                    self.session.set_conversation_id(event.conversation_id)
                elif isinstance(event, Errored):
                    raise StreamEventError(event.message)
                elif isinstance(event, TextDelta):
                    if self.tracker.state(Stage.RESPONDING) is StageState.PENDING:
                        self.tracker.activate(Stage.RESPONDING)
                    draft.append_text(event.text)
                    self.session.touch_draft()
                elif isinstance(event, SourceUpdate):
                    draft.replace_sources(event.sources)
                    self.session.touch_draft()
                elif isinstance(event, Completed):
                    draft.finish_reason = event.reason

    def _finish_turn(self, token: CancelToken, draft: Message) -> Message | None:
        draft.finalize(self._config.fallback_text)
        message = self.session.commit_draft(token)
        if message is None:
            return None
        self.tracker.complete(Stage.RESPONDING)
        logger.info(
            f"Turn complete: {len(message.content)} chars, {len(message.sources)} sources"
        )
        return message

    def _fail_turn(self, token: CancelToken, error: Exception) -> Message | None:
        if not self.session.owns_turn(token):
            return None
        logger.error(f"Turn failed: {error}")
        self.session.release_turn(token)
        detail = error.detail if isinstance(error, BackendError) else str(error)
        message = self.session.add_message(
            Message(
                role=Role.ASSISTANT,
                content=self._config.apology_text,
                error=detail or type(error).__name__,
                is_complete=True,
            )
        )
        self.tracker.reset()
        return message

    async def send_once(
        self,
        prompt: str,
        attachments: Sequence[Attachment] | None = None,
        conversation_id: str | None = None,
    ) -> Message | None:
        """Run a turn against the non-streaming endpoint.

        Same state transitions as :meth:`send`, with the whole reply
        applied at once. No chart follow-up is issued.
        """
        token, draft = self._open_turn(prompt, attachments, conversation_id)
        resolved_id = self.session.conversation_id

        task = asyncio.ensure_future(
            self._backend.complete_chat(prompt, resolved_id, attachments)
        )
        token.bind(task)
        try:
            reply = await task
        except asyncio.CancelledError:
            if not token.cancelled:
                self.session.release_turn(token)
                raise
            return None
        except Exception as e:
            if token.cancelled:
                return None
            return self._fail_turn(token, e)

        if reply.conversation_id:
            self.session.set_conversation_id(reply.conversation_id)
        self.tracker.activate(Stage.RESPONDING)
        draft.append_text(reply.content)
        draft.replace_sources(reply.sources)
        return self._finish_turn(token, draft)

    def cancel(self) -> bool:
        """Abort the in-flight turn without producing a message.

        Returns:
            True if a running turn was cancelled, False if there was none.
        """
        handle = self.session.abort_handle
        if not isinstance(handle, CancelToken) or not handle.cancel():
            return False
        self.session.release_turn(handle)
        self.tracker.reset()
        return True

    def start_new_chat(self) -> None:
        """Cancel anything in flight and start from an empty conversation."""
        self.cancel()
        self._turn = None
        self.session.reset()
        self.tracker.reset()

    def _schedule_chart(self, token: CancelToken, message: Message, prompt: str) -> None:
        conversation_id = self.session.conversation_id
        if not conversation_id:
            return
        self.tracker.activate(Stage.CHARTING)
        task = asyncio.create_task(
            self._prepare_chart(token, message.id, prompt, conversation_id)
        )
        self._chart_tasks.add(task)
        task.add_done_callback(self._chart_tasks.discard)

    async def _prepare_chart(
        self, token: CancelToken, message_id: str, prompt: str, conversation_id: str
    ) -> None:
        try:
            payload = await self._backend.prepare_chart(prompt, conversation_id)
            urls = extract_chart_urls(payload)
            if not urls:
                raise ChartUnavailableError("chart response without a chart URL")
            attached = self._attach_charts(message_id, urls)
        except Exception as e:
            # A chart never fails the turn it follows
            logger.warning(f"Chart preparation failed for conversation {conversation_id}: {e}")
            if self._owns_charting(token):
                self.tracker.revert(Stage.CHARTING)
            return

        if attached and self._owns_charting(token):
            self.tracker.complete(Stage.CHARTING)

    def _attach_charts(self, message_id: str, urls: list[str]) -> bool:
        if self.session.get_message(message_id) is None:
            logger.debug(f"Dropping chart for message {message_id}: no longer in session")
            return False
        for url in urls:
            self.session.add_chart_url(message_id, url)
        return True

    def _owns_charting(self, token: CancelToken) -> bool:
        return self._turn is token and self.tracker.state(Stage.CHARTING) is StageState.ACTIVE

    async def wait_for_charts(self) -> None:
        """Wait until every scheduled chart request has finished."""
        while self._chart_tasks:
            await asyncio.gather(*list(self._chart_tasks))
