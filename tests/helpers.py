"""Shared test helpers for faking the completion endpoint."""

from __future__ import annotations

import json
from typing import Any, Callable

import httpx

Responder = Callable[[httpx.Request], httpx.Response]


def completion_body(text: str) -> dict[str, Any]:
    """Return a minimal chat-completion response body carrying ``text``."""

    return {"choices": [{"message": {"role": "assistant", "content": text}}]}


class RecordingTransport:
    """Collects requests and answers them with ``responder``.

    Example:
        transport = RecordingTransport(lambda request: httpx.Response(200, json=completion_body("hi")))
        client = httpx.AsyncClient(transport=httpx.MockTransport(transport))
    """

    def __init__(self, responder: Responder) -> None:
        self.requests: list[httpx.Request] = []
        self._responder = responder

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self._responder(request)

    def payloads(self) -> list[dict[str, Any]]:
        return [json.loads(request.content) for request in self.requests]


def refuse_connection(request: httpx.Request) -> httpx.Response:
    raise httpx.ConnectError("Connection refused", request=request)
