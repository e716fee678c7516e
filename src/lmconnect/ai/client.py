"""Async client for OpenAI-compatible chat-completion endpoints (LM Studio et al.)."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, Mapping

import httpx

from ..chat.message_model import ChatReply, ChatRequest
from ..errors import CompletionFailure

LOGGER = logging.getLogger(__name__)

DEFAULT_ENDPOINT = "http://localhost:1234"
COMPLETIONS_PATH = "/v1/chat/completions"
DEFAULT_MODEL = "local-model"
DEFAULT_TEMPERATURE = 0.7
DEFAULT_TIMEOUT_SECONDS = 30.0
_REQUEST_HEADERS: Mapping[str, str] = {"Content-Type": "application/json"}
_ERROR_SNIPPET_CHARS = 120


@dataclass(slots=True)
class ClientSettings:
    """Subset of settings required to configure the completion client."""

    request_timeout: float | None = DEFAULT_TIMEOUT_SECONDS
    model: str = DEFAULT_MODEL
    temperature: float = DEFAULT_TEMPERATURE
    debug_logging: bool = False


def completions_url(endpoint: str) -> str:
    """Return the chat-completions URL for ``endpoint`` (a base URL)."""

    return f"{(endpoint or '').strip().rstrip('/')}{COMPLETIONS_PATH}"


def extract_reply_text(body: Any) -> str:
    """Return ``choices[0].message.content`` from a decoded response body.

    Raises ``ValueError`` when the path is missing or the content is not a string.
    """

    try:
        content = body["choices"][0]["message"]["content"]
    except (KeyError, IndexError, TypeError) as exc:
        raise ValueError("response is missing choices[0].message.content") from exc
    if not isinstance(content, str):
        raise ValueError(
            f"choices[0].message.content is {type(content).__name__}, expected a string"
        )
    return content


class CompletionClient:
    """Single-shot, non-streaming chat-completion client.

    Every request is one JSON POST; there is no retry and no partial result.
    Any failure is raised as :class:`CompletionFailure`.
    """

    def __init__(
        self,
        settings: ClientSettings | None = None,
        *,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._settings = settings or ClientSettings()
        self._client = client
        self._owns_client = client is None

    @property
    def settings(self) -> ClientSettings:
        return self._settings

    def build_payload(self, request: ChatRequest) -> Dict[str, Any]:
        """Return the JSON body for ``request``."""

        return {
            "messages": [request.to_message()],
            "stream": False,
            "model": self._settings.model,
            "temperature": self._settings.temperature,
        }

    async def complete(self, endpoint: str, message: str) -> ChatReply:
        """Send ``message`` to ``endpoint`` and return the reply text unmodified."""

        url = completions_url(endpoint)
        payload = self.build_payload(ChatRequest(content=message))
        LOGGER.debug("Posting chat completion to %s (%s chars)", url, len(message))
        if self._settings.debug_logging:
            self._log_prompt_payload(payload)

        response = await self._post(endpoint, url, payload)
        if not response.is_success:
            raise CompletionFailure(
                endpoint,
                _describe_status(response),
                status_code=response.status_code,
            )
        try:
            body = response.json()
        except ValueError as exc:
            raise CompletionFailure(endpoint, "response body is not valid JSON") from exc
        try:
            text = extract_reply_text(body)
        except ValueError as exc:
            raise CompletionFailure(endpoint, str(exc)) from exc

        LOGGER.debug("Received %s chars from %s", len(text), url)
        return ChatReply(text=text)

    async def _post(self, endpoint: str, url: str, payload: Mapping[str, Any]) -> httpx.Response:
        timeout = self._settings.request_timeout
        client = self._ensure_client()
        try:
            return await client.post(
                url, json=payload, headers=dict(_REQUEST_HEADERS), timeout=timeout
            )
        except httpx.TimeoutException as exc:
            raise CompletionFailure(endpoint, f"request timed out after {timeout}s") from exc
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            raise CompletionFailure(endpoint, str(exc) or exc.__class__.__name__) from exc

    def _ensure_client(self) -> httpx.AsyncClient:
        if self._client is None or (self._owns_client and self._client.is_closed):
            self._client = httpx.AsyncClient(timeout=self._settings.request_timeout)
            self._owns_client = True
        return self._client

    async def aclose(self) -> None:
        """Close the HTTP client this instance created; injected clients are left open."""

        client = self._client
        if client is None or not self._owns_client:
            return
        self._client = None
        await client.aclose()

    def _log_prompt_payload(self, payload: Mapping[str, Any]) -> None:
        try:
            serialized = json.dumps(payload, ensure_ascii=False, indent=2)
        except (TypeError, ValueError):
            LOGGER.debug("Completion payload (unserializable): %s", payload)
        else:
            LOGGER.debug("Completion payload:\n%s", serialized)


def _describe_status(response: httpx.Response) -> str:
    snippet = (response.text or "").strip()
    if len(snippet) > _ERROR_SNIPPET_CHARS:
        snippet = f"{snippet[:_ERROR_SNIPPET_CHARS - 3]}..."
    reason = snippet or response.reason_phrase or "Unknown error"
    return f"endpoint responded with {response.status_code}: {reason}"
