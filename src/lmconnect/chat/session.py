"""Chat session: the single command handler behind a display surface.

A :class:`ChatSession` owns the pieces of state one chat surface needs (the
pending attachment and the endpoint configuration) and turns each inbound
command into a list of outbound events. It never talks to widgets directly;
surfaces hand it commands and render whatever events come back.
"""

from __future__ import annotations

import inspect
import logging
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, Iterator, List, Mapping, Optional, Union

from ..ai.client import ClientSettings, CompletionClient
from ..errors import CompletionFailure, ConfigurationInvalid, FileReadFailure
from ..services.settings import (
    DEFAULT_BASE_URL,
    EndpointConfig,
    Settings,
    SettingsStore,
    validate_endpoint,
)
from ..ui.events import (
    AttachFile,
    Command,
    EndpointUpdated,
    ErrorOccurred,
    Event,
    FileAttached,
    ReplyReceived,
    SubmitMessage,
    UpdateEndpoint,
    command_from_payload,
)
from .markdown import render_markdown
from .message_model import AttachedFile, compose_message

LOGGER = logging.getLogger(__name__)

PickedPath = Optional[Union[Path, str]]
FilePicker = Callable[[], Union[PickedPath, Awaitable[PickedPath]]]
Renderer = Callable[[str], str]


class ChatSession:
    """Dispatches :data:`~lmconnect.ui.events.Command` values for one logical session."""

    def __init__(
        self,
        session_id: str = "default",
        *,
        settings: Settings | None = None,
        client: CompletionClient | None = None,
        file_picker: FilePicker | None = None,
        store: SettingsStore | None = None,
        renderer: Renderer = render_markdown,
    ) -> None:
        self._session_id = session_id
        self._settings = settings or Settings()
        self._endpoint: EndpointConfig = self._settings.endpoint()
        self._client = client or CompletionClient(
            ClientSettings(
                request_timeout=self._settings.request_timeout,
                debug_logging=self._settings.debug_logging,
            )
        )
        self._file_picker = file_picker
        self._store = store
        self._renderer = renderer
        self._attachment: AttachedFile | None = None

    @property
    def session_id(self) -> str:
        return self._session_id

    @property
    def endpoint(self) -> EndpointConfig:
        return self._endpoint

    @property
    def pending_attachment(self) -> AttachedFile | None:
        """Return the file waiting to be sent with the next message, if any."""

        return self._attachment

    @property
    def attachment_label(self) -> str:
        return self._settings.attachment_label

    def set_file_picker(self, picker: FilePicker | None) -> None:
        self._file_picker = picker

    async def handle(self, command: Command) -> List[Event]:
        """Run ``command`` and return the events the display surface should show."""

        LOGGER.debug("Session %s handling %s", self._session_id, type(command).__name__)
        if isinstance(command, SubmitMessage):
            return await self._submit(command)
        if isinstance(command, AttachFile):
            return await self._attach_file()
        if isinstance(command, UpdateEndpoint):
            return self._update_endpoint(command)
        raise TypeError(f"Unsupported command: {type(command).__name__}")

    async def handle_payload(self, payload: Mapping[str, Any]) -> List[Dict[str, Any]]:
        """Wire-format variant of :meth:`handle` for surfaces that exchange plain dicts."""

        try:
            command = command_from_payload(payload)
        except (TypeError, ValueError) as exc:
            LOGGER.warning("Rejected message from display surface: %s", exc)
            return [ErrorOccurred(message=str(exc), kind="protocol_error").to_payload()]
        events = await self.handle(command)
        return [event.to_payload() for event in events]

    async def aclose(self) -> None:
        """Release network resources held by the completion client."""

        await self._client.aclose()

    # ------------------------------------------------------------------
    # Command handlers
    # ------------------------------------------------------------------
    async def _submit(self, command: SubmitMessage) -> List[Event]:
        attachment = command.file or self._attachment
        # At most one attachment per message, whatever the outcome.
        self._attachment = None
        content = compose_message(command.text, attachment, label=self._settings.attachment_label)
        endpoint = self._endpoint.base_url
        try:
            reply = await self._client.complete(endpoint, content)
        except CompletionFailure as exc:
            LOGGER.warning("Completion failed: %s", exc)
            return [ErrorOccurred(message=str(exc), kind=exc.kind)]
        return [ReplyReceived(text=reply.text, html=self._renderer(reply.text))]

    async def pick_file(self) -> AttachedFile | None:
        """Ask the file picker for a path and read it; ``None`` when the user cancels.

        Raises :class:`FileReadFailure` when the chosen file cannot be read and
        ``RuntimeError`` when no picker is configured.
        """

        if self._file_picker is None:
            raise RuntimeError("No file picker is available.")
        picked = self._file_picker()
        if inspect.isawaitable(picked):
            picked = await picked
        if not picked:
            return None
        return AttachedFile.from_path(picked)

    async def _attach_file(self) -> List[Event]:
        if self._file_picker is None:
            return [ErrorOccurred(message="No file picker is available.", kind=FileReadFailure.kind)]
        try:
            attachment = await self.pick_file()
        except FileReadFailure as exc:
            self._attachment = None
            LOGGER.warning("Attachment aborted: %s", exc)
            return [ErrorOccurred(message=str(exc), kind=exc.kind)]
        if attachment is None:
            LOGGER.debug("File selection cancelled")
            return []
        self._attachment = attachment
        LOGGER.info("Attached %s (%s chars)", attachment.name, len(attachment.content))
        return [FileAttached(name=attachment.name, content=attachment.content)]

    def _update_endpoint(self, command: UpdateEndpoint) -> List[Event]:
        raw_url = (command.url or "").strip()
        try:
            url = validate_endpoint(raw_url) if raw_url else DEFAULT_BASE_URL
        except ConfigurationInvalid as exc:
            LOGGER.warning("Endpoint update rejected: %s", exc)
            return [ErrorOccurred(message=str(exc), kind=exc.kind)]

        self._endpoint.base_url = url
        self._settings.base_url = url
        events: List[Event] = [EndpointUpdated(url=url)]
        if self._store is not None:
            try:
                self._store.save(self._settings)
            except OSError as exc:
                LOGGER.warning("Failed to persist endpoint %s: %s", url, exc)
                events.append(
                    ErrorOccurred(
                        message=f"Endpoint updated to {url} but could not be saved: {exc}",
                        kind="settings_save_failure",
                    )
                )
        LOGGER.info("Endpoint updated to %s", url)
        return events


class SessionRegistry:
    """Keeps at most one :class:`ChatSession` per session id."""

    def __init__(self, factory: Callable[[str], ChatSession] | None = None) -> None:
        self._factory = factory or (lambda session_id: ChatSession(session_id))
        self._sessions: Dict[str, ChatSession] = {}

    def get_or_create(self, session_id: str = "default") -> ChatSession:
        """Return the session for ``session_id``, creating it on first use."""

        session = self._sessions.get(session_id)
        if session is None:
            session = self._factory(session_id)
            self._sessions[session_id] = session
            LOGGER.debug("Created chat session %s", session_id)
        return session

    def get(self, session_id: str) -> ChatSession | None:
        return self._sessions.get(session_id)

    async def dispose(self, session_id: str) -> bool:
        """Close and forget ``session_id``; returns ``False`` when it was not registered."""

        session = self._sessions.pop(session_id, None)
        if session is None:
            return False
        await session.aclose()
        LOGGER.debug("Disposed chat session %s", session_id)
        return True

    async def aclose(self) -> None:
        """Dispose every registered session."""

        for session_id in list(self._sessions):
            await self.dispose(session_id)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._sessions))

    def __len__(self) -> int:
        return len(self._sessions)
