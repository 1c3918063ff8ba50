"""Minimal OpenAI-compatible client for the chat completion backend."""

from __future__ import annotations

import json
import socket
from typing import Any
from urllib import error, request

DEFAULT_MODEL = "grok-2-vision-1212"
DEFAULT_BASE_URL = "https://api.x.ai/v1"
DEFAULT_TIMEOUT_SECONDS = 60


class CompletionError(RuntimeError):
    """Base class for completion backend failures."""


class CompletionTransportError(CompletionError):
    """The request never got a response."""


class CompletionHTTPError(CompletionError):
    def __init__(self, status: int, payload: Any) -> None:
        super().__init__(f"Completion API HTTP {status}: {payload}")
        self.status = status
        self.payload = payload


class CompletionAPIError(CompletionError):
    """2xx response carrying an error object instead of a reply."""

    def __init__(self, message: str, payload: Any = None) -> None:
        super().__init__(message)
        self.message = message
        self.payload = payload


class CompletionFormatError(CompletionError):
    def __init__(self, payload: Any) -> None:
        super().__init__(f"Completion API unexpected response: {payload}")
        self.payload = payload


def _decode_body(raw: str) -> Any:
    try:
        return json.loads(raw)
    except ValueError:
        return raw


def extract_reply(data: Any) -> str:
    """Return ``choices[0].message.content`` or raise the matching error."""
    if not isinstance(data, dict):
        raise CompletionFormatError(data)
    choices = data.get("choices")
    if isinstance(choices, list) and choices and isinstance(choices[0], dict):
        message = choices[0].get("message")
        content = message.get("content") if isinstance(message, dict) else None
        if isinstance(content, str) and content:
            return content
    err = data.get("error")
    if err:
        message = err.get("message") if isinstance(err, dict) else str(err)
        raise CompletionAPIError(str(message or err), payload=data)
    raise CompletionFormatError(data)


def complete(
    messages: list[dict[str, Any]],
    api_key: str,
    *,
    base_url: str | None = None,
    model: str = DEFAULT_MODEL,
    timeout: float = DEFAULT_TIMEOUT_SECONDS,
) -> str:
    """
    Call the chat completions API with streaming off and temperature 0.
    Returns the reply text; raises a CompletionError subclass otherwise.
    base_url: e.g. https://api.x.ai/v1 or http://localhost:11434/v1 (Ollama).
    """
    url = (base_url or DEFAULT_BASE_URL).rstrip("/") + "/chat/completions"
    body = {
        "messages": messages,
        "model": model,
        "stream": False,
        "temperature": 0,
    }
    encoded = json.dumps(body).encode("utf-8")
    headers: dict[str, str] = {
        "Content-Type": "application/json",
        "Authorization": f"Bearer {api_key}",
    }
    req = request.Request(url, data=encoded, headers=headers, method="POST")
    try:
        with request.urlopen(req, timeout=timeout) as response:  # noqa: S310
            raw = response.read().decode("utf-8", errors="replace")
    except error.HTTPError as exc:
        body_read = exc.read().decode("utf-8", errors="replace")
        raise CompletionHTTPError(exc.code, _decode_body(body_read)) from exc
    except (error.URLError, socket.timeout, OSError) as exc:
        raise CompletionTransportError(str(exc)) from exc

    return extract_reply(_decode_body(raw))
