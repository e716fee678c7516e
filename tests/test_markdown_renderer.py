"""Tests for the Markdown-to-HTML reply renderer."""

from __future__ import annotations

import pytest

from lmconnect.chat.markdown import (
    RENDER_STAGES,
    escape_html,
    protect_fenced_blocks,
    render_document,
    render_headers,
    render_lists,
    render_markdown,
    render_paragraphs,
    restore_fenced_blocks,
)


def test_empty_input_renders_nothing() -> None:
    assert render_markdown("") == ""


def test_script_tags_never_survive_unescaped() -> None:
    html = render_markdown("<script>alert('x')</script>")

    assert "<script>" not in html
    assert html == "<p>&lt;script&gt;alert(&#039;x&#039;)&lt;/script&gt;</p>"


@pytest.mark.parametrize(
    "source",
    [
        "**<script>**",
        "*<script>*",
        "# <script>",
        "`<script>`",
        "> <script>",
        "- <script>",
        "1. <script>",
        "[<script>](<script>)",
        "```\n<script>alert(1)</script>\n```",
        "text\n\n<script>\n\n</script>",
    ],
)
def test_markup_around_script_tags_stays_escaped(source: str) -> None:
    html = render_markdown(source)

    assert "<script>" not in html
    assert "&lt;script&gt;" in html


def test_plain_text_becomes_single_paragraph() -> None:
    assert render_markdown("Tom & Jerry") == "<p>Tom &amp; Jerry</p>"


def test_escape_html_covers_quotes() -> None:
    assert escape_html("\"a\" & 'b'") == "&quot;a&quot; &amp; &#039;b&#039;"


def test_fenced_block_content_is_verbatim() -> None:
    html = render_markdown("```\n*not bold*\n# not a header\n```")

    assert html == "<pre><code>\n*not bold*\n# not a header\n</code></pre>"


def test_fenced_block_keeps_blank_lines_and_escapes_markup() -> None:
    html = render_markdown("```\n<b>a</b>\n\nb\n```")

    assert html == "<pre><code>\n&lt;b&gt;a&lt;/b&gt;\n\nb\n</code></pre>"


def test_inline_fence_inside_paragraph() -> None:
    assert render_markdown("run ```ls``` now") == "<p>run <pre><code>ls</code></pre> now</p>"


def test_unpaired_fence_is_left_literal() -> None:
    assert render_markdown("```python") == "<p>```python</p>"


def test_protect_and_restore_fenced_blocks() -> None:
    text, blocks = protect_fenced_blocks("a ```x``` b ```y```")

    assert blocks == ["x", "y"]
    assert "```" not in text
    assert restore_fenced_blocks(text, blocks) == "a <pre><code>x</code></pre> b <pre><code>y</code></pre>"


def test_inline_code_is_escaped() -> None:
    assert render_markdown("use `x < y` here") == "<p>use <code>x &lt; y</code> here</p>"


@pytest.mark.parametrize(
    ("source", "expected"),
    [
        ("### Title", "<h3>Title</h3>"),
        ("## Title", "<h2>Title</h2>"),
        ("# Title", "<h1>Title</h1>"),
    ],
)
def test_headers(source: str, expected: str) -> None:
    assert render_markdown(source) == expected


def test_headers_prefer_longest_prefix() -> None:
    assert render_headers("### a\n# b") == "<h3>a</h3>\n<h1>b</h1>"


def test_emphasis_variants() -> None:
    html = render_markdown("**bold** and *it* and ***both***")

    assert html == "<p><strong>bold</strong> and <em>it</em> and <strong><em>both</em></strong></p>"


def test_dash_list_merges_into_one_list() -> None:
    html = render_markdown("- a\n- b\n- c")

    assert html == "<ul><li>a</li><li>b</li><li>c</li></ul>"
    assert html.count("<ul>") == 1
    assert html.count("<li>") == 3


def test_asterisk_list_is_not_emphasis() -> None:
    assert render_markdown("* a\n* b") == "<ul><li>a</li><li>b</li></ul>"


def test_ordered_list() -> None:
    assert render_markdown("1. one\n2. two") == "<ol><li>one</li><li>two</li></ol>"


def test_blank_line_splits_lists() -> None:
    html = render_markdown("- a\n\n- b")

    assert html == "<ul><li>a</li></ul><ul><li>b</li></ul>"


def test_unordered_and_ordered_lists_do_not_merge() -> None:
    html = render_lists("- a\n1. b")

    assert html == "<ul><li>a</li></ul>\n<ol><li>b</li></ol>"


def test_links_open_in_new_window() -> None:
    html = render_markdown("[site](http://example.com)")

    assert html == '<p><a href="http://example.com" target="_blank">site</a></p>'


def test_link_url_cannot_break_out_of_attribute() -> None:
    html = render_markdown('[x](http://a" onclick="b)')

    assert 'onclick="' not in html
    assert "&quot;" in html


def test_blockquote() -> None:
    assert render_markdown("> quoted") == "<blockquote>quoted</blockquote>"


def test_paragraphs_and_line_breaks() -> None:
    assert render_markdown("one\ntwo\n\nthree") == "<p>one<br>two</p><p>three</p>"


def test_paragraphs_leave_block_segments_alone() -> None:
    assert render_paragraphs("<h1>x</h1>\n\ntext") == "<h1>x</h1><p>text</p>"


def test_stage_order() -> None:
    names = [stage.__name__ for stage in RENDER_STAGES]

    assert names == [
        "render_inline_code",
        "render_headers",
        "render_emphasis",
        "render_lists",
        "render_links",
        "render_blockquotes",
        "render_paragraphs",
    ]


def test_render_document_keeps_source() -> None:
    document = render_document("# Hi")

    assert document.html == "<h1>Hi</h1>"
    assert document.source == "# Hi"
