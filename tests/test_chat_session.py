"""Tests for the chat session command handler and registry."""

from __future__ import annotations

from pathlib import Path

import httpx
import pytest

from lmconnect.chat.message_model import AttachedFile
from lmconnect.chat.session import ChatSession, SessionRegistry
from lmconnect.services.settings import DEFAULT_BASE_URL, Settings, SettingsStore
from lmconnect.ui.events import (
    AttachFile,
    EndpointUpdated,
    ErrorOccurred,
    FileAttached,
    ReplyReceived,
    SubmitMessage,
    UpdateEndpoint,
)

from tests.helpers import completion_body, refuse_connection


def _session(make_client, responder=None, **kwargs):
    client, transport = make_client(responder)
    return ChatSession(client=client, **kwargs), transport


@pytest.mark.asyncio
async def test_submit_returns_reply_with_rendered_html(make_client) -> None:
    session, transport = _session(
        make_client, lambda request: httpx.Response(200, json=completion_body("**hi**"))
    )

    events = await session.handle(SubmitMessage(text="hello"))

    assert events == [ReplyReceived(text="**hi**", html="<p><strong>hi</strong></p>")]
    assert [str(request.url) for request in transport.requests] == [
        "http://localhost:1234/v1/chat/completions"
    ]
    assert transport.payloads()[0]["messages"][0]["content"] == "hello"


@pytest.mark.asyncio
async def test_connection_failure_yields_single_error_and_no_reply(make_client) -> None:
    session, _ = _session(make_client, refuse_connection)

    events = await session.handle(SubmitMessage(text="hello"))

    assert len(events) == 1
    error = events[0]
    assert isinstance(error, ErrorOccurred)
    assert error.kind == "completion_failure"
    assert "http://localhost:1234" in error.message


@pytest.mark.asyncio
async def test_attach_then_submit_composes_once(make_client, tmp_path: Path) -> None:
    path = tmp_path / "a.txt"
    path.write_text("x=1", encoding="utf-8")
    session, transport = _session(make_client, file_picker=lambda: path)

    attached = await session.handle(AttachFile())
    assert attached == [FileAttached(name="a.txt", content="x=1")]
    assert session.pending_attachment == AttachedFile(name="a.txt", content="x=1")

    await session.handle(SubmitMessage(text="check this"))
    await session.handle(SubmitMessage(text="again"))

    contents = [payload["messages"][0]["content"] for payload in transport.payloads()]
    assert contents == [
        "check this\n\nПрикрепленный файл (a.txt):\n```\nx=1\n```",
        "again",
    ]
    assert session.pending_attachment is None


@pytest.mark.asyncio
async def test_attachment_is_cleared_even_when_submission_fails(make_client) -> None:
    session, _ = _session(make_client, refuse_connection)
    session._attachment = AttachedFile(name="a.txt", content="x")

    events = await session.handle(SubmitMessage(text="hi"))

    assert isinstance(events[0], ErrorOccurred)
    assert session.pending_attachment is None


@pytest.mark.asyncio
async def test_explicit_file_on_command_wins(make_client) -> None:
    session, transport = _session(make_client)
    session._attachment = AttachedFile(name="slot.txt", content="slot")

    await session.handle(SubmitMessage(text="t", file=AttachedFile(name="cmd.txt", content="cmd")))

    content = transport.payloads()[0]["messages"][0]["content"]
    assert "(cmd.txt)" in content
    assert "slot" not in content


@pytest.mark.asyncio
async def test_custom_attachment_label(make_client) -> None:
    session, transport = _session(make_client, settings=Settings(attachment_label="Attached file"))

    await session.handle(SubmitMessage(text="t", file=AttachedFile(name="a", content="b")))

    assert transport.payloads()[0]["messages"][0]["content"] == "t\n\nAttached file (a):\n```\nb\n```"


@pytest.mark.asyncio
async def test_cancelled_picker_produces_no_events(make_client) -> None:
    session, _ = _session(make_client, file_picker=lambda: None)

    assert await session.handle(AttachFile()) == []
    assert session.pending_attachment is None


@pytest.mark.asyncio
async def test_async_picker_is_awaited(make_client, tmp_path: Path) -> None:
    path = tmp_path / "b.txt"
    path.write_text("async", encoding="utf-8")

    async def pick() -> Path:
        return path

    session, _ = _session(make_client, file_picker=pick)

    assert await session.handle(AttachFile()) == [FileAttached(name="b.txt", content="async")]


@pytest.mark.asyncio
async def test_unreadable_file_clears_slot_and_reports(make_client, tmp_path: Path) -> None:
    session, transport = _session(make_client, file_picker=lambda: tmp_path / "missing.txt")
    session._attachment = AttachedFile(name="old.txt", content="old")

    events = await session.handle(AttachFile())

    assert len(events) == 1
    assert isinstance(events[0], ErrorOccurred)
    assert events[0].kind == "file_read_failure"
    assert session.pending_attachment is None

    await session.handle(SubmitMessage(text="text only"))
    assert transport.payloads()[0]["messages"][0]["content"] == "text only"


@pytest.mark.asyncio
async def test_attach_without_picker_reports_error(make_client) -> None:
    session, _ = _session(make_client)

    events = await session.handle(AttachFile())

    assert isinstance(events[0], ErrorOccurred)


@pytest.mark.asyncio
async def test_update_endpoint_applies_to_next_submission(make_client, tmp_path: Path) -> None:
    store = SettingsStore(tmp_path / "settings.json")
    session, transport = _session(make_client, store=store)

    events = await session.handle(UpdateEndpoint(url="http://192.168.0.9:5000/"))
    await session.handle(SubmitMessage(text="hi"))

    assert events == [EndpointUpdated(url="http://192.168.0.9:5000")]
    assert session.endpoint.base_url == "http://192.168.0.9:5000"
    assert str(transport.requests[0].url) == "http://192.168.0.9:5000/v1/chat/completions"
    assert store.load().base_url == "http://192.168.0.9:5000"


@pytest.mark.asyncio
async def test_invalid_endpoint_is_rejected_and_prior_value_kept(make_client) -> None:
    session, _ = _session(make_client, settings=Settings(base_url="http://keep:1"))

    events = await session.handle(UpdateEndpoint(url="ftp://nope"))

    assert len(events) == 1
    assert isinstance(events[0], ErrorOccurred)
    assert events[0].kind == "configuration_invalid"
    assert session.endpoint.base_url == "http://keep:1"


@pytest.mark.asyncio
async def test_blank_endpoint_resets_to_default(make_client) -> None:
    session, _ = _session(make_client, settings=Settings(base_url="http://custom:1"))

    events = await session.handle(UpdateEndpoint(url="   "))

    assert events == [EndpointUpdated(url=DEFAULT_BASE_URL)]
    assert session.endpoint.base_url == DEFAULT_BASE_URL


@pytest.mark.asyncio
async def test_endpoint_save_failure_is_reported(make_client) -> None:
    class BrokenStore(SettingsStore):
        def save(self, settings: Settings) -> Path:
            raise PermissionError("read-only")

    session, _ = _session(make_client, store=BrokenStore())

    events = await session.handle(UpdateEndpoint(url="http://h:2"))

    assert events[0] == EndpointUpdated(url="http://h:2")
    assert isinstance(events[1], ErrorOccurred)
    assert events[1].kind == "settings_save_failure"
    assert session.endpoint.base_url == "http://h:2"


@pytest.mark.asyncio
async def test_handle_payload_speaks_wire_format(make_client) -> None:
    session, _ = _session(make_client)

    replies = await session.handle_payload({"command": "sendMessage", "text": "hello"})
    rejected = await session.handle_payload({"command": "bogus"})

    assert replies == [{"command": "addResponse", "text": "hi", "html": "<p>hi</p>"}]
    assert rejected[0]["command"] == "error"
    assert rejected[0]["kind"] == "protocol_error"


@pytest.mark.asyncio
async def test_unknown_command_type_raises(make_client) -> None:
    session, _ = _session(make_client)

    with pytest.raises(TypeError):
        await session.handle("sendMessage")  # type: ignore[arg-type]


class _ClosingSession(ChatSession):
    def __init__(self, session_id: str) -> None:
        super().__init__(session_id)
        self.closed = 0

    async def aclose(self) -> None:
        self.closed += 1
        await super().aclose()


@pytest.mark.asyncio
async def test_registry_keeps_one_session_per_id() -> None:
    registry = SessionRegistry(_ClosingSession)

    first = registry.get_or_create("a")

    assert registry.get_or_create("a") is first
    assert registry.get_or_create("b") is not first
    assert "a" in registry
    assert sorted(registry) == ["a", "b"]
    assert len(registry) == 2
    assert await registry.dispose("a") is True
    assert await registry.dispose("a") is False
    assert registry.get("a") is None
    assert first.closed == 1


@pytest.mark.asyncio
async def test_registry_aclose_releases_owned_http_clients() -> None:
    registry = SessionRegistry()
    session = registry.get_or_create("panel")
    owned = session._client._ensure_client()

    await registry.aclose()

    assert len(registry) == 0
    assert owned.is_closed


def test_registry_uses_factory() -> None:
    created: list[str] = []

    def factory(session_id: str) -> ChatSession:
        created.append(session_id)
        return ChatSession(session_id)

    registry = SessionRegistry(factory)
    session = registry.get_or_create("panel-1")

    assert session.session_id == "panel-1"
    assert created == ["panel-1"]


@pytest.mark.asyncio
async def test_pick_file_returns_attachment_without_touching_slot(make_client, tmp_path: Path) -> None:
    path = tmp_path / "c.txt"
    path.write_text("body", encoding="utf-8")
    session, _ = _session(make_client, file_picker=lambda: str(path))

    attachment = await session.pick_file()

    assert attachment == AttachedFile(name="c.txt", content="body")
    assert session.pending_attachment is None


@pytest.mark.asyncio
async def test_pick_file_requires_picker(make_client) -> None:
    session, _ = _session(make_client)

    with pytest.raises(RuntimeError):
        await session.pick_file()
