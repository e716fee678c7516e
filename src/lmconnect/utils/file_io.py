"""File reading helpers used by the attachment picker."""

from __future__ import annotations

import codecs
import locale
from pathlib import Path

__all__ = ["read_text", "MAX_ATTACHMENT_BYTES"]

# UTF-32 first: the UTF-16-LE mark is a prefix of the UTF-32-LE one.
_BOM_MAP: dict[bytes, str] = {
    codecs.BOM_UTF8: "utf-8-sig",
    codecs.BOM_UTF32_LE: "utf-32-le",
    codecs.BOM_UTF32_BE: "utf-32-be",
    codecs.BOM_UTF16_LE: "utf-16-le",
    codecs.BOM_UTF16_BE: "utf-16-be",
}
# Binary files are still read as text; the limit only guards against giant payloads.
MAX_ATTACHMENT_BYTES = 5_000_000


def read_text(
    path: Path | str,
    *,
    encoding: str | None = None,
    errors: str = "replace",
    normalize_newlines: bool = True,
    max_bytes: int | None = MAX_ATTACHMENT_BYTES,
) -> str:
    """Read a text file with encoding detection and optional newline normalization.

    Raises ``OSError`` for missing/unreadable files and ``ValueError`` when the
    file exceeds ``max_bytes``.
    """

    target = Path(path)
    if target.is_dir():
        raise IsADirectoryError(f"{target} is a directory")
    raw = target.read_bytes()
    if max_bytes is not None and len(raw) > max_bytes:
        raise ValueError(f"file is {len(raw)} bytes, limit is {max_bytes}")
    detected_encoding = encoding or _detect_encoding(raw)
    text = raw.decode(detected_encoding, errors=errors)
    text = _strip_bom(text)
    return _normalize_newlines(text) if normalize_newlines else text


def _detect_encoding(raw: bytes) -> str:
    for bom, encoding in _BOM_MAP.items():
        if raw.startswith(bom):
            return encoding

    preferred = locale.getpreferredencoding(False) or "utf-8"
    seen: set[str] = set()
    for candidate in ("utf-8", preferred):
        if not candidate or candidate in seen:
            continue
        seen.add(candidate)
        try:
            raw.decode(candidate)
            return candidate
        except (UnicodeDecodeError, LookupError):
            continue
    return "utf-8"


def _normalize_newlines(text: str) -> str:
    if "\r" not in text:
        return text
    text = text.replace("\r\n", "\n")
    return text.replace("\r", "\n")


def _strip_bom(text: str) -> str:
    return text[1:] if text.startswith("\ufeff") else text
