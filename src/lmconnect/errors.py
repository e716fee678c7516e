"""Exception types surfaced to the chat panel."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict

__all__ = [
    "LMConnectError",
    "CompletionFailure",
    "FileReadFailure",
    "ConfigurationInvalid",
]


class LMConnectError(Exception):
    """Base class for recoverable, user-visible failures."""

    kind: str = "error"

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.kind, "message": str(self)}


class CompletionFailure(LMConnectError):
    """Raised when the chat-completion exchange fails for any reason.

    Covers transport errors (refused connection, DNS, timeout), non-2xx
    statuses and response bodies missing ``choices[0].message.content``.
    """

    kind = "completion_failure"

    def __init__(self, endpoint: str, reason: str, *, status_code: int | None = None) -> None:
        self.endpoint = endpoint
        self.reason = reason
        self.status_code = status_code
        super().__init__(f"Failed to reach completion endpoint ({endpoint}): {reason}")


class FileReadFailure(LMConnectError):
    """Raised when an attachment cannot be read from disk."""

    kind = "file_read_failure"

    def __init__(self, path: Path | str, reason: str) -> None:
        self.path = Path(path)
        self.reason = reason
        super().__init__(f"Failed to read file {self.path}: {reason}")


class ConfigurationInvalid(LMConnectError):
    """Raised when a user-supplied endpoint URL is malformed."""

    kind = "configuration_invalid"

    def __init__(self, url: str, reason: str) -> None:
        self.url = url
        self.reason = reason
        super().__init__(f"Invalid endpoint URL {url!r}: {reason}")
