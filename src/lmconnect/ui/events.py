"""Message protocol between a display surface and the chat session.

Inbound commands form a closed set (:class:`SubmitMessage`,
:class:`AttachFile`, :class:`UpdateEndpoint`). The session answers each
command with a list of outbound events which the display surface consumes,
usually by publishing them on an :class:`EventBus`.

Both directions also have a plain-dict wire form (``{"command": ...}``) so a
surface living in another process, e.g. a webview, can speak the same protocol.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import (
    Any,
    Callable,
    Generic,
    Mapping,
    TypeVar,
    TYPE_CHECKING,
    Union,
)
from weakref import WeakMethod, ref

from ..chat.message_model import AttachedFile

if TYPE_CHECKING:  # pragma: no cover - imports for type checking only
    from typing import DefaultDict

logger = logging.getLogger(__name__)

E = TypeVar("E", bound="Event")

Handler = Callable[[E], None]


@dataclass(slots=True)
class Event:
    """Base class for outbound events delivered to the display surface."""

    def to_payload(self) -> dict[str, Any]:  # pragma: no cover - overridden
        raise NotImplementedError


# =============================================================================
# Inbound commands
# =============================================================================


@dataclass(slots=True)
class SubmitMessage:
    """The user sent ``text``, optionally with a file the surface already holds.

    Attributes:
        text: The raw text typed by the user.
        file: Attachment carried by the surface. When ``None`` the session's
              own pending attachment (from :class:`AttachFile`) is used.
    """

    text: str
    file: AttachedFile | None = None


@dataclass(slots=True)
class AttachFile:
    """The user asked to pick a file for the next message."""


@dataclass(slots=True)
class UpdateEndpoint:
    """The user entered a new completion endpoint base URL.

    Attributes:
        url: The new base URL. A blank value resets to the default endpoint.
    """

    url: str


Command = Union[SubmitMessage, AttachFile, UpdateEndpoint]

_COMMAND_NAMES: Mapping[str, str] = {
    "sendMessage": "submit",
    "submitMessage": "submit",
    "attachFile": "attach",
    "updateApiUrl": "endpoint",
    "updateEndpoint": "endpoint",
}


def command_from_payload(payload: Mapping[str, Any]) -> Command:
    """Parse a wire message such as ``{"command": "sendMessage", "text": "hi"}``.

    Raises ``ValueError`` for unknown commands.
    """

    name = payload.get("command")
    kind = _COMMAND_NAMES.get(str(name))
    if kind == "submit":
        return SubmitMessage(
            text=str(payload.get("text") or ""),
            file=AttachedFile.from_value(payload.get("file")),
        )
    if kind == "attach":
        return AttachFile()
    if kind == "endpoint":
        url = payload.get("url", payload.get("apiUrl"))
        return UpdateEndpoint(url=str(url or ""))
    raise ValueError(f"Unknown command: {name!r}")


# =============================================================================
# Outbound events
# =============================================================================


@dataclass(slots=True)
class ReplyReceived(Event):
    """The completion endpoint answered.

    Attributes:
        text: The reply exactly as reported by the server.
        html: The reply rendered through the Markdown renderer.
    """

    text: str
    html: str

    def to_payload(self) -> dict[str, Any]:
        return {"command": "addResponse", "text": self.text, "html": self.html}


@dataclass(slots=True)
class FileAttached(Event):
    """A file was read and is pending for the next message."""

    name: str
    content: str

    def to_payload(self) -> dict[str, Any]:
        return {"command": "fileAttached", "file": {"name": self.name, "content": self.content}}


@dataclass(slots=True)
class ErrorOccurred(Event):
    """An operation failed; ``message`` is meant for the user.

    Attributes:
        message: Human-readable description of the failure.
        kind: Machine-readable failure category (see :mod:`lmconnect.errors`).
    """

    message: str
    kind: str = "error"

    def to_payload(self) -> dict[str, Any]:
        return {"command": "error", "message": self.message, "kind": self.kind}


@dataclass(slots=True)
class EndpointUpdated(Event):
    """The endpoint configuration changed; applies from the next submission."""

    url: str

    def to_payload(self) -> dict[str, Any]:
        return {"command": "endpointUpdated", "url": self.url}


class EventBus(Generic[E]):
    """A typed publish-subscribe bus for outbound events.

    Handlers registered as bound methods are held weakly so a closed panel
    does not keep receiving events. The bus is not thread-safe; use it from
    the UI thread only.
    """

    __slots__ = ("_handlers",)

    def __init__(self) -> None:
        self._handlers: DefaultDict[type[Event], list[_HandlerRef]] = defaultdict(list)

    def subscribe(self, event_type: type[E], handler: Handler[E]) -> None:
        """Register ``handler`` for events of exactly ``event_type``."""

        handler_ref = _HandlerRef.create(handler)
        self._handlers[event_type].append(handler_ref)
        logger.debug(
            "Subscribed handler %s to event type %s",
            _handler_name(handler),
            event_type.__name__,
        )

    def unsubscribe(self, event_type: type[E], handler: Handler[E]) -> None:
        """Remove the first registration of ``handler``; unknown handlers are ignored."""

        handlers = self._handlers.get(event_type)
        if handlers is None:
            return

        for i, handler_ref in enumerate(handlers):
            if handler_ref.matches(handler):
                handlers.pop(i)
                logger.debug(
                    "Unsubscribed handler %s from event type %s",
                    _handler_name(handler),
                    event_type.__name__,
                )
                return

    def publish(self, event: E) -> None:
        """Invoke every handler for ``event`` in registration order.

        A handler that raises is logged and does not stop the others.
        """

        event_type = type(event)
        handlers = self._handlers.get(event_type)
        if handlers is None:
            logger.debug("No handlers for event type %s", event_type.__name__)
            return

        logger.debug("Publishing %s to %d handler(s)", event_type.__name__, len(handlers))
        dead_indices: list[int] = []

        for i, handler_ref in enumerate(handlers):
            handler = handler_ref.resolve()
            if handler is None:
                dead_indices.append(i)
                continue

            try:
                handler(event)
            except Exception:
                logger.exception(
                    "Handler %s raised exception for event %s",
                    _handler_name(handler),
                    event_type.__name__,
                )

        for i in reversed(dead_indices):
            handlers.pop(i)

    def publish_all(self, events: list[Event]) -> None:
        for event in events:
            self.publish(event)  # type: ignore[arg-type]

    def clear(self) -> None:
        """Remove all registered handlers."""

        self._handlers.clear()
        logger.debug("Cleared all event handlers")

    def handler_count(self, event_type: type[E] | None = None) -> int:
        """Return the number of handlers for ``event_type``, or across all types."""

        if event_type is not None:
            return len(self._handlers.get(event_type, []))
        return sum(len(handlers) for handlers in self._handlers.values())


class _HandlerRef:
    """Weak reference for bound methods, strong reference for plain callables."""

    __slots__ = ("_ref", "_is_weak")

    def __init__(self, handler_ref: WeakMethod | ref | Handler, is_weak: bool) -> None:
        self._ref = handler_ref
        self._is_weak = is_weak

    @classmethod
    def create(cls, handler: Handler) -> _HandlerRef:
        if hasattr(handler, "__self__") and hasattr(handler, "__func__"):
            try:
                return cls(WeakMethod(handler), is_weak=True)
            except TypeError:
                pass
        return cls(handler, is_weak=False)

    def resolve(self) -> Handler | None:
        if not self._is_weak:
            return self._ref  # type: ignore[return-value]
        return self._ref()  # type: ignore[operator]

    def matches(self, handler: Handler) -> bool:
        resolved = self.resolve()
        if resolved is None:
            return False
        return resolved == handler


def _handler_name(handler: Handler) -> str:
    if hasattr(handler, "__self__") and hasattr(handler, "__func__"):
        cls_name = type(handler.__self__).__name__
        return f"{cls_name}.{handler.__func__.__name__}"
    if hasattr(handler, "__name__"):
        return handler.__name__
    return repr(handler)


__all__ = [
    "Event",
    "EventBus",
    "Handler",
    "Command",
    "SubmitMessage",
    "AttachFile",
    "UpdateEndpoint",
    "command_from_payload",
    "ReplyReceived",
    "FileAttached",
    "ErrorOccurred",
    "EndpointUpdated",
]
