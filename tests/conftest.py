"""Shared pytest fixtures."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Callable

import httpx
import pytest

from lmconnect.ai.client import ClientSettings, CompletionClient
from tests.helpers import RecordingTransport, Responder, completion_body

os.environ.setdefault("QT_QPA_PLATFORM", "offscreen")

ClientFactory = Callable[..., "tuple[CompletionClient, RecordingTransport]"]


@pytest.fixture(autouse=True)
def _isolate_environment(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    for name in list(os.environ):
        if name.startswith("LMCONNECT_"):
            monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("LMCONNECT_LOG_DIR", str(tmp_path / "logs"))


@pytest.fixture
def make_client() -> ClientFactory:
    """Build a :class:`CompletionClient` backed by an ``httpx.MockTransport``."""

    def _factory(
        responder: Responder | None = None,
        *,
        settings: ClientSettings | None = None,
    ) -> tuple[CompletionClient, RecordingTransport]:
        transport = RecordingTransport(
            responder or (lambda request: httpx.Response(200, json=completion_body("hi")))
        )
        http_client = httpx.AsyncClient(transport=httpx.MockTransport(transport))
        return CompletionClient(settings, client=http_client), transport

    return _factory
