"""Minimal Markdown-to-HTML renderer for assistant replies.

The renderer is a fixed sequence of text substitutions rather than a parser.
Order matters:

1. :func:`escape_html` runs over the entire raw input first. Every later
   stage only ever *adds* markup around already-escaped text, so no input can
   smuggle executable markup into the output.
2. :func:`protect_fenced_blocks` swaps every triple-backtick region for an
   opaque placeholder. The remaining stages never see code content, and the
   blocks are put back by :func:`restore_fenced_blocks` once everything else
   has run.
3. :data:`RENDER_STAGES` then runs in order: inline code, headers, emphasis,
   lists, links, blockquotes and finally paragraphs.

Only assistant replies go through here; user text is always shown literally.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Callable, Sequence

__all__ = [
    "RenderedDocument",
    "RENDER_STAGES",
    "render_markdown",
    "render_document",
    "escape_html",
    "protect_fenced_blocks",
    "restore_fenced_blocks",
    "render_inline_code",
    "render_headers",
    "render_emphasis",
    "render_lists",
    "render_links",
    "render_blockquotes",
    "render_paragraphs",
]

Stage = Callable[[str], str]

_ESCAPES: tuple[tuple[str, str], ...] = (
    ("&", "&amp;"),
    ("<", "&lt;"),
    (">", "&gt;"),
    ('"', "&quot;"),
    ("'", "&#039;"),
)
_SENTINEL = "\x00"
_FENCE_PATTERN = re.compile(r"```(.*?)```", re.DOTALL)
_PLACEHOLDER_PATTERN = re.compile(_SENTINEL + r"(\d+)" + _SENTINEL)
_INLINE_CODE_PATTERN = re.compile(r"`([^`\n]+)`")
_HEADER_PATTERNS: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"^### (.*)$", re.MULTILINE), r"<h3>\1</h3>"),
    (re.compile(r"^## (.*)$", re.MULTILINE), r"<h2>\1</h2>"),
    (re.compile(r"^# (.*)$", re.MULTILINE), r"<h1>\1</h1>"),
)
_EMPHASIS_PATTERNS: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"\*\*\*(?!\s)([^*\n]+?)\*\*\*"), r"<strong><em>\1</em></strong>"),
    (re.compile(r"\*\*(?!\s)([^*\n]+?)\*\*"), r"<strong>\1</strong>"),
    (re.compile(r"\*(?!\s)([^*\n]+?)\*"), r"<em>\1</em>"),
)
_LIST_PATTERNS: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"^\* (.*)$", re.MULTILINE), r"<ul><li>\1</li></ul>"),
    (re.compile(r"^- (.*)$", re.MULTILINE), r"<ul><li>\1</li></ul>"),
    (re.compile(r"^\d+\. (.*)$", re.MULTILINE), r"<ol><li>\1</li></ol>"),
)
# Only wrappers on directly consecutive lines merge; a blank line starts a new list.
_LIST_MERGE_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"</ul>\n?<ul>"),
    re.compile(r"</ol>\n?<ol>"),
)
_LINK_PATTERN = re.compile(r"\[([^\]]+)\]\(([^)]+)\)")
_BLOCKQUOTE_PATTERN = re.compile(r"^&gt; (.*)$", re.MULTILINE)
_PARAGRAPH_SPLIT = re.compile(r"\n\n+")
_BLOCK_PREFIXES: tuple[str, ...] = ("<h", "<ul", "<ol", "<blockquote", "<pre", _SENTINEL)


@dataclass(slots=True, frozen=True)
class RenderedDocument:
    """Rendered HTML together with the Markdown it was produced from."""

    html: str
    source: str


def escape_html(text: str) -> str:
    """Replace ``& < > " '`` with HTML entities."""

    for raw, entity in _ESCAPES:
        text = text.replace(raw, entity)
    return text


def protect_fenced_blocks(text: str) -> tuple[str, list[str]]:
    """Replace each shortest triple-backtick pair with a placeholder.

    Returns the rewritten text and the captured block contents, indexed by
    placeholder number. An unpaired fence is left untouched.
    """

    text = text.replace(_SENTINEL, "\ufffd")
    blocks: list[str] = []

    def _stash(match: re.Match[str]) -> str:
        blocks.append(match.group(1))
        return f"{_SENTINEL}{len(blocks) - 1}{_SENTINEL}"

    return _FENCE_PATTERN.sub(_stash, text), blocks


def restore_fenced_blocks(text: str, blocks: Sequence[str]) -> str:
    """Swap placeholders back for ``<pre><code>`` blocks holding the verbatim content."""

    if not blocks:
        return text
    return _PLACEHOLDER_PATTERN.sub(
        lambda match: f"<pre><code>{blocks[int(match.group(1))]}</code></pre>", text
    )


def render_inline_code(text: str) -> str:
    """Single-backtick spans on one line become ``<code>``."""

    return _INLINE_CODE_PATTERN.sub(r"<code>\1</code>", text)


def render_headers(text: str) -> str:
    """``###``/``##``/``#`` lines become ``h3``/``h2``/``h1``, longest prefix first."""

    for pattern, replacement in _HEADER_PATTERNS:
        text = pattern.sub(replacement, text)
    return text


def render_emphasis(text: str) -> str:
    """Triple, double then single asterisk spans (no inner asterisks, no line breaks)."""

    for pattern, replacement in _EMPHASIS_PATTERNS:
        text = pattern.sub(replacement, text)
    return text


def render_lists(text: str) -> str:
    """Wrap each list line in its own list, then merge adjacent wrappers of the same type.

    Numbers of ordered items are discarded; the browser numbers ``<ol>`` items.
    """

    for pattern, replacement in _LIST_PATTERNS:
        text = pattern.sub(replacement, text)
    for pattern in _LIST_MERGE_PATTERNS:
        text = pattern.sub("", text)
    return text


def render_links(text: str) -> str:
    """``[text](url)`` becomes an anchor opening in a new window.

    The URL is not restricted to safe schemes; it is already entity-escaped.
    """

    return _LINK_PATTERN.sub(r'<a href="\2" target="_blank">\1</a>', text)


def render_blockquotes(text: str) -> str:
    """Lines starting with ``> `` (escaped by now) become ``<blockquote>``."""

    return _BLOCKQUOTE_PATTERN.sub(r"<blockquote>\1</blockquote>", text)


def render_paragraphs(text: str) -> str:
    """Wrap blank-line separated segments in ``<p>`` unless they already open a block."""

    segments = _PARAGRAPH_SPLIT.split(text)
    rendered: list[str] = []
    for segment in segments:
        if segment.startswith(_BLOCK_PREFIXES):
            rendered.append(segment)
        else:
            rendered.append("<p>" + segment.replace("\n", "<br>") + "</p>")
    return "".join(rendered)


RENDER_STAGES: tuple[Stage, ...] = (
    render_inline_code,
    render_headers,
    render_emphasis,
    render_lists,
    render_links,
    render_blockquotes,
    render_paragraphs,
)


def render_markdown(markdown: str) -> str:
    """Render ``markdown`` into HTML. Empty input yields an empty string."""

    if not markdown:
        return ""
    text, blocks = protect_fenced_blocks(escape_html(markdown))
    for stage in RENDER_STAGES:
        text = stage(text)
    return restore_fenced_blocks(text, blocks)


def render_document(markdown: str) -> RenderedDocument:
    """Return a :class:`RenderedDocument` for ``markdown``."""

    return RenderedDocument(html=render_markdown(markdown), source=markdown or "")
