"""Qt chat panel acting as the display surface for a :class:`ChatSession`.

The panel owns no chat logic. It turns user gestures into session commands,
publishes the returned events on an :class:`EventBus` and renders whatever
it receives:

* user messages are shown as literal (escaped) text,
* assistant replies are shown as the HTML produced by the Markdown renderer,
* failures are shown inline as system rows and in the status line.
"""

from __future__ import annotations

import asyncio
import html
import logging
from typing import Any, List, Optional

from PySide6.QtCore import QEvent, Qt
from PySide6.QtWidgets import (
    QFileDialog,
    QHBoxLayout,
    QLabel,
    QLineEdit,
    QPlainTextEdit,
    QPushButton,
    QTextBrowser,
    QVBoxLayout,
    QWidget,
)

from ..ui.events import (
    AttachFile,
    Command,
    EndpointUpdated,
    ErrorOccurred,
    Event,
    EventBus,
    FileAttached,
    ReplyReceived,
    SubmitMessage,
    UpdateEndpoint,
)
from .message_model import ChatMessage
from .session import ChatSession

LOGGER = logging.getLogger(__name__)

_ENTER_KEYS = (Qt.Key.Key_Return, Qt.Key.Key_Enter)
_HISTORY_STYLE = """
<style>
.lm-message { margin-bottom: 12px; padding: 8px; }
.lm-user { background-color: rgba(97, 175, 239, 0.15); }
.lm-assistant { border: 1px solid rgba(128, 128, 128, 0.35); }
.lm-system { color: #c0392b; }
pre { background-color: rgba(128, 128, 128, 0.12); padding: 6px; }
</style>
"""


class ChatPanel(QWidget):
    """Pane showing chat history, composer, attachment and endpoint controls."""

    MAX_HISTORY = 200

    def __init__(
        self,
        session: ChatSession,
        parent: Optional[QWidget] = None,
        *,
        bus: EventBus[Event] | None = None,
        history_limit: Optional[int] = None,
    ) -> None:
        super().__init__(parent)
        self._session = session
        self._bus: EventBus[Event] = bus or EventBus()
        self._history_limit = max(1, history_limit or self.MAX_HISTORY)
        self._messages: List[ChatMessage] = []
        self._pending_file_name: Optional[str] = None
        self._busy = False
        self._tasks: set[asyncio.Task[Any]] = set()

        self._session.set_file_picker(self._pick_file)
        self._bus.subscribe(ReplyReceived, self._on_reply)
        self._bus.subscribe(FileAttached, self._on_file_attached)
        self._bus.subscribe(ErrorOccurred, self._on_error)
        self._bus.subscribe(EndpointUpdated, self._on_endpoint_updated)

        self._build_ui()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    @property
    def session(self) -> ChatSession:
        return self._session

    @property
    def bus(self) -> EventBus[Event]:
        return self._bus

    @property
    def busy(self) -> bool:
        """Return ``True`` while a submission is waiting for the endpoint."""

        return self._busy

    @property
    def status_text(self) -> str:
        return self._status_label.text()

    @property
    def attachment_text(self) -> str:
        return self._file_label.text()

    def history(self) -> List[ChatMessage]:
        """Return a copy of the displayed chat history."""

        return list(self._messages)

    def history_html(self) -> str:
        """Return the HTML shown in the history view."""

        rows = [self._message_html(message) for message in self._messages]
        return _HISTORY_STYLE + "".join(rows)

    @property
    def composer_text(self) -> str:
        return self._composer.toPlainText()

    def set_composer_text(self, text: str) -> None:
        self._composer.setPlainText(text)

    async def dispatch(self, command: Command) -> List[Event]:
        """Hand ``command`` to the session and publish the resulting events."""

        events = await self._session.handle(command)
        self._bus.publish_all(events)
        return events

    async def submit(self) -> List[Event]:
        """Send the composer text (and pending attachment) as one message."""

        text = self.composer_text.strip()
        if not text or self._busy:
            return []
        display_text = text
        if self._pending_file_name:
            display_text = f"{text}\n[{self._session_attachment_label()}: {self._pending_file_name}]"
        self._append_message(ChatMessage(role="user", content=display_text))
        self._composer.clear()
        self._pending_file_name = None
        self._file_label.setText("")
        self._set_busy(True)
        try:
            return await self.dispatch(SubmitMessage(text=text))
        finally:
            self._set_busy(False)

    async def request_attachment(self) -> List[Event]:
        return await self.dispatch(AttachFile())

    async def apply_endpoint(self) -> List[Event]:
        return await self.dispatch(UpdateEndpoint(url=self._endpoint_input.text()))

    # ------------------------------------------------------------------
    # Bus handlers
    # ------------------------------------------------------------------
    def _on_reply(self, event: ReplyReceived) -> None:
        self._append_message(
            ChatMessage(role="assistant", content=event.text, metadata={"html": event.html})
        )
        self._status_label.setText("")

    def _on_file_attached(self, event: FileAttached) -> None:
        self._pending_file_name = event.name
        self._file_label.setText(f"{self._session_attachment_label()}: {event.name}")

    def _on_error(self, event: ErrorOccurred) -> None:
        self._append_message(
            ChatMessage(role="system", content=event.message, metadata={"kind": event.kind})
        )
        self._status_label.setText(event.message)
        if event.kind == "file_read_failure":
            self._pending_file_name = None
            self._file_label.setText("")

    def _on_endpoint_updated(self, event: EndpointUpdated) -> None:
        self._endpoint_input.setText(event.url)
        self._status_label.setText(f"Endpoint updated to: {event.url}")

    # ------------------------------------------------------------------
    # Qt plumbing
    # ------------------------------------------------------------------
    def _build_ui(self) -> None:
        layout = QVBoxLayout(self)
        layout.setContentsMargins(8, 8, 8, 8)
        layout.setSpacing(8)

        endpoint_row = QHBoxLayout()
        self._endpoint_input = QLineEdit(self)
        self._endpoint_input.setObjectName("lm-endpoint-input")
        self._endpoint_input.setPlaceholderText("http://localhost:1234")
        self._endpoint_input.setText(self._session.endpoint.base_url)
        self._endpoint_button = QPushButton("Save", self)
        self._endpoint_button.clicked.connect(self._schedule_endpoint)  # type: ignore[attr-defined]
        endpoint_row.addWidget(QLabel("Endpoint:", self), 0)
        endpoint_row.addWidget(self._endpoint_input, 1)
        endpoint_row.addWidget(self._endpoint_button, 0)
        layout.addLayout(endpoint_row)

        self._history_view = QTextBrowser(self)
        self._history_view.setObjectName("lm-chat-history")
        self._history_view.setOpenExternalLinks(True)
        layout.addWidget(self._history_view, 1)

        input_row = QHBoxLayout()
        self._composer = QPlainTextEdit(self)
        self._composer.setObjectName("lm-chat-composer")
        self._composer.setPlaceholderText("Type a message...")
        self._composer.setFixedHeight(72)
        self._composer.installEventFilter(self)
        self._attach_button = QPushButton("Attach", self)
        self._attach_button.clicked.connect(self._schedule_attachment)  # type: ignore[attr-defined]
        self._send_button = QPushButton("Send", self)
        self._send_button.clicked.connect(self._schedule_submit)  # type: ignore[attr-defined]
        button_stack = QVBoxLayout()
        button_stack.addWidget(self._send_button)
        button_stack.addWidget(self._attach_button)
        input_row.addWidget(self._composer, 1)
        input_row.addLayout(button_stack, 0)
        layout.addLayout(input_row)

        self._file_label = QLabel("", self)
        self._file_label.setObjectName("lm-chat-file-info")
        layout.addWidget(self._file_label)
        self._status_label = QLabel("", self)
        self._status_label.setObjectName("lm-chat-status")
        self._status_label.setWordWrap(True)
        layout.addWidget(self._status_label)

    def eventFilter(self, obj: Any, event: Any) -> bool:  # type: ignore[override]
        if obj is self._composer and event.type() == QEvent.Type.KeyPress:
            if event.key() in _ENTER_KEYS and not (
                event.modifiers() & Qt.KeyboardModifier.ShiftModifier
            ):
                self._schedule_submit()
                return True
        return super().eventFilter(obj, event)

    def _schedule_submit(self) -> None:
        self._schedule(self.submit())

    def _schedule_attachment(self) -> None:
        self._schedule(self.request_attachment())

    def _schedule_endpoint(self) -> None:
        self._schedule(self.apply_endpoint())

    def _schedule(self, coroutine: Any) -> None:
        task = asyncio.ensure_future(coroutine)
        self._tasks.add(task)
        task.add_done_callback(self._on_task_done)

    def _on_task_done(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            LOGGER.error("Chat panel action failed", exc_info=exc)
            self._on_error(ErrorOccurred(message=f"Unexpected error: {exc}"))

    def _pick_file(self) -> Optional[str]:
        path, _filter = QFileDialog.getOpenFileName(self, "Attach file", "", "All files (*)")
        return path or None

    def _set_busy(self, busy: bool) -> None:
        self._busy = busy
        self._send_button.setEnabled(not busy)
        if busy:
            self._status_label.setText("Waiting for the model...")

    def _append_message(self, message: ChatMessage) -> None:
        self._messages.append(message)
        if len(self._messages) > self._history_limit:
            del self._messages[: len(self._messages) - self._history_limit]
        self._history_view.setHtml(self.history_html())
        scrollbar = self._history_view.verticalScrollBar()
        scrollbar.setValue(scrollbar.maximum())

    def _session_attachment_label(self) -> str:
        return self._session.attachment_label

    @staticmethod
    def _message_html(message: ChatMessage) -> str:
        if message.role == "assistant":
            body = message.metadata.get("html", "")
        else:
            body = html.escape(message.content).replace("\n", "<br>")
        return f'<div class="lm-message lm-{message.role}">{body}</div>'
