"""NiceGUI chat interface driven by the streaming orchestrator."""

from nicegui import background_tasks, context, ui

from research_chat.client.backend import BackendClient
from research_chat.history.sync import HistorySync, HistorySyncError, format_activity
from research_chat.models import Attachment, Message, Role
from research_chat.streaming.orchestrator import StreamOrchestrator
from research_chat.streaming.session import ChangeKind
from research_chat.streaming.stages import STAGE_ORDER, Stage, StageState

STAGE_LABELS = {
    Stage.SEARCHING: ("travel_explore", "Searching the web"),
    Stage.RESPONDING: ("auto_awesome", "Generating insights"),
    Stage.CHARTING: ("bar_chart", "Preparing charts"),
}

CUSTOM_CSS = """
<link href="https://fonts.googleapis.com/css2?family=Inter:wght@400;500;600&display=swap"
      rel="stylesheet">
<style>
    * { font-family: 'Inter', sans-serif; }

    body { background: #f5f5f5; min-height: 100vh; }

    .app-container {
        background: white;
        border-radius: 12px;
        box-shadow: 0 2px 8px rgba(0, 0, 0, 0.1);
        overflow: hidden;
    }

    .header { background: linear-gradient(135deg, #0f0f13 0%, #1d1f24 100%); }

    .message-user {
        background: #1d1f24;
        color: white;
        border-radius: 18px 18px 4px 18px;
    }

    .message-assistant {
        background: #f3f4f6;
        color: #1f2937;
        border-radius: 18px 18px 18px 4px;
    }

    .stage-pending { color: #9ca3af; }
    .stage-active { color: #4f46e5; font-weight: 600; }
    .stage-complete { color: #059669; }

    .input-box {
        background: #f9fafb;
        border: 1px solid #e5e7eb;
        border-radius: 12px;
    }
</style>
"""


@ui.page("/")
def chat_page() -> None:
    """Main chat page. Each browser tab gets its own session."""
    ui.add_head_html(CUSTOM_CSS)

    backend = BackendClient()
    orchestrator = StreamOrchestrator(backend)
    history = HistorySync(backend, orchestrator)
    session = orchestrator.session

    messages_container: ui.column
    draft_view: ui.markdown | None = None
    input_field: ui.textarea
    send_btn: ui.button
    stop_btn: ui.button

    def render_message(msg: Message) -> None:
        is_user = msg.role is Role.USER
        align = "justify-end" if is_user else "justify-start"
        bubble = "message-user" if is_user else "message-assistant"

        with ui.row().classes(f"w-full {align}"):
            with ui.column().classes("max-w-[75%] gap-1"):
                with ui.element("div").classes(f"px-4 py-3 {bubble}"):
                    ui.markdown(msg.content).classes("text-sm leading-relaxed")
                if msg.sources:
                    with ui.row().classes("gap-2 flex-wrap"):
                        for source in msg.sources:
                            ui.link(source.title or source.url, source.url, new_tab=True).classes(
                                "text-xs text-indigo-600"
                            )
                for url in msg.chart_urls:
                    ui.image(url).classes("w-full rounded-lg")
                if msg.created_at is not None:
                    ui.label(format_activity(msg.created_at)).classes("text-[10px] text-gray-400")

    def refresh_messages() -> None:
        nonlocal draft_view
        draft_view = None
        messages_container.clear()
        with messages_container:
            if not session.messages and session.draft is None:
                with ui.column().classes("w-full h-64 items-center justify-center gap-3"):
                    ui.icon("forum").classes("text-5xl text-gray-300")
                    ui.label("Ask a research question").classes("text-lg text-gray-400")
                return
            for msg in session.messages:
                render_message(msg)
            if session.draft is not None:
                with ui.row().classes("w-full justify-start"):
                    with ui.element("div").classes("message-assistant px-4 py-3 max-w-[75%]"):
                        draft_view = ui.markdown(session.draft.content).classes("text-sm")

    @ui.refreshable
    def stage_indicator() -> None:
        if not orchestrator.tracker.is_busy:
            return
        with ui.row().classes("w-full px-5 py-2 gap-6 bg-white border-t"):
            for stage in STAGE_ORDER:
                icon, title = STAGE_LABELS[stage]
                state = orchestrator.tracker.state(stage)
                with ui.row().classes(f"items-center gap-1 stage-{state.value}"):
                    ui.icon("check" if state is StageState.COMPLETE else icon).classes("text-base")
                    ui.label(title).classes("text-xs")

    @ui.refreshable
    def history_list() -> None:
        if not history.conversations:
            ui.label("No conversations yet").classes("text-sm text-gray-400 px-3 py-4")
            return
        for summary in history.conversations:
            active = summary.id == session.conversation_id
            with ui.row().classes(
                "w-full items-center justify-between px-3 py-2 rounded-md cursor-pointer "
                + ("bg-indigo-50" if active else "hover:bg-gray-50")
            ).on("click", lambda _, cid=summary.id: select_conversation(cid)):
                with ui.column().classes("gap-0 min-w-0"):
                    ui.label(summary.title).classes("text-sm font-medium truncate")
                    ui.label(format_activity(summary.updated_at)).classes("text-xs text-gray-500")
                ui.button(icon="delete").props("flat round dense size=sm color=grey").on(
                    "click.stop", lambda _, cid=summary.id: delete_conversation(cid)
                )

    async def refresh_history() -> None:
        try:
            await history.list()
        except HistorySyncError as e:
            ui.notify(str(e), type="warning")
            return
        history_list.refresh()

    async def select_conversation(conversation_id: str) -> None:
        try:
            await history.load(conversation_id)
        except HistorySyncError as e:
            ui.notify(str(e), type="negative")
            return
        history_list.refresh()

    async def delete_conversation(conversation_id: str) -> None:
        try:
            await history.remove(conversation_id)
        except HistorySyncError as e:
            ui.notify(str(e), type="negative")
            return
        history_list.refresh()

    def on_session_change(kind: ChangeKind, message: Message | None) -> None:
        if kind is ChangeKind.DRAFT_UPDATED and draft_view is not None and message is not None:
            draft_view.set_content(message.content)
        elif kind is ChangeKind.CONVERSATION:
            background_tasks.create(refresh_history())
        else:
            refresh_messages()

    pending_files: list[Attachment] = []

    def on_upload(e) -> None:
        pending_files.append(Attachment.from_upload(e.name, e.content.read(), e.type))

    async def send_message() -> None:
        text = input_field.value.strip()
        if (not text and not pending_files) or orchestrator.is_streaming:
            return

        attachments = list(pending_files)
        pending_files.clear()
        upload.reset()
        input_field.value = ""
        send_btn.disable()
        stop_btn.enable()
        try:
            reply = await orchestrator.send(text, attachments=attachments or None)
        finally:
            send_btn.enable()
            stop_btn.disable()
        if reply is not None and reply.error:
            ui.notify(reply.error, type="negative")

    def new_chat() -> None:
        orchestrator.start_new_chat()
        history_list.refresh()

    session.subscribe(on_session_change)
    orchestrator.tracker.subscribe(lambda _: stage_indicator.refresh())
    context.client.on_disconnect(backend.aclose)

    # === UI Layout ===
    with ui.row().classes("w-full min-h-screen p-4 md:p-8 gap-4 no-wrap"):
        with ui.column().classes("w-72 app-container p-2 gap-1").style(
            "height: calc(100vh - 4rem)"
        ):
            with ui.row().classes("w-full items-center justify-between px-2 py-2"):
                ui.label("History").classes("font-semibold")
                with ui.row().classes("gap-1"):
                    ui.button(icon="refresh", on_click=refresh_history).props("flat round dense")
                    ui.button(icon="add", on_click=new_chat).props("flat round dense")
            with ui.scroll_area().classes("flex-grow w-full"):
                history_list()

        with ui.column().classes("flex-grow app-container").style("height: calc(100vh - 4rem)"):
            with ui.row().classes("w-full header px-5 py-4 items-center"):
                ui.icon("insights").classes("text-white text-3xl")
                ui.label("Research Assistant").classes("text-lg font-semibold text-white")

            with (
                ui.scroll_area().classes("flex-grow w-full bg-gray-50"),
                ui.column().classes("w-full p-5"),
            ):
                messages_container = ui.column().classes("w-full gap-4")
                refresh_messages()

            stage_indicator()

            with ui.row().classes("w-full p-4 gap-3 items-end bg-white border-t"):
                upload = (
                    ui.upload(on_upload=on_upload, multiple=True, auto_upload=True)
                    .props("flat dense hide-upload-btn")
                    .classes("w-48")
                )
                with ui.element("div").classes("flex-grow input-box px-3 py-2"):
                    input_field = (
                        ui.textarea(placeholder="Ask anything...")
                        .props("autogrow borderless dense rows=1")
                        .classes("w-full")
                        .on("keydown.enter.prevent", send_message)
                    )
                stop_btn = ui.button(icon="stop", on_click=orchestrator.cancel).props(
                    "round flat"
                )
                stop_btn.disable()
                send_btn = ui.button(icon="send", on_click=send_message).props("round unelevated")

    ui.timer(backend.config.history_refresh_seconds, refresh_history)
    ui.timer(0.1, refresh_history, once=True)
