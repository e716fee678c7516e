"""Chat request, reply, attachment and history data models."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Literal, Optional

from ..errors import FileReadFailure
from ..utils.file_io import read_text

DEFAULT_ATTACHMENT_LABEL = "Прикрепленный файл"
CODE_FENCE = "```"

ChatRole = Literal["user", "assistant", "system"]


def _utcnow() -> datetime:
    """Return the current UTC time as a timezone-aware datetime."""

    return datetime.now(timezone.utc)


@dataclass(slots=True, frozen=True)
class AttachedFile:
    """A single file's text held until the next submission."""

    name: str
    content: str

    @classmethod
    def from_path(cls, path: Path | str) -> "AttachedFile":
        """Read ``path`` as text, wrapping every read error in :class:`FileReadFailure`."""

        target = Path(path)
        try:
            content = read_text(target)
        except (OSError, ValueError) as exc:
            raise FileReadFailure(target, str(exc) or exc.__class__.__name__) from exc
        return cls(name=target.name, content=content)

    @classmethod
    def from_value(cls, value: Any) -> Optional["AttachedFile"]:
        """Coerce a ``{"name", "content"}`` mapping (as posted by a display surface)."""

        if value is None or isinstance(value, AttachedFile):
            return value
        if isinstance(value, dict):
            return cls(name=str(value.get("name", "")), content=str(value.get("content", "")))
        raise TypeError(f"Cannot build an attachment from {type(value).__name__}")

    def to_dict(self) -> Dict[str, str]:
        return {"name": self.name, "content": self.content}


def compose_message(
    text: str,
    attachment: AttachedFile | None = None,
    *,
    label: str = DEFAULT_ATTACHMENT_LABEL,
) -> str:
    """Return the outbound message content for ``text`` plus an optional attachment.

    The attachment is appended after a blank line as a label line naming the
    file followed by the file content inside a triple-backtick fence.
    """

    if attachment is None:
        return text
    return f"{text}\n\n{label} ({attachment.name}):\n{CODE_FENCE}\n{attachment.content}\n{CODE_FENCE}"


@dataclass(slots=True, frozen=True)
class ChatRequest:
    """One user message sent to the completion endpoint."""

    content: str
    role: ChatRole = "user"

    def to_message(self) -> Dict[str, str]:
        return {"role": self.role, "content": self.content}


@dataclass(slots=True, frozen=True)
class ChatReply:
    """Reply text taken from ``choices[0].message.content``."""

    text: str


@dataclass(slots=True)
class ChatMessage:
    """Represents a row inside the chat history list."""

    role: ChatRole
    content: str
    created_at: datetime = field(default_factory=_utcnow)
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize the message for display surfaces and logs."""

        return {
            "role": self.role,
            "content": self.content,
            "created_at": self.created_at.isoformat(),
            "metadata": self.metadata,
        }
