"""Message protocol shared by the chat session and its display surfaces."""

from .events import (
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
    command_from_payload,
)

__all__ = [
    # Inbound commands
    "AttachFile",
    "Command",
    "SubmitMessage",
    "UpdateEndpoint",
    "command_from_payload",
    # Outbound events
    "EndpointUpdated",
    "ErrorOccurred",
    "Event",
    "FileAttached",
    "ReplyReceived",
    # Event Bus
    "EventBus",
]
