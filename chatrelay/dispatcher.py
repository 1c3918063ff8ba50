"""Turn dispatch: from an inbound chat event to a model reply in history."""

from __future__ import annotations

import asyncio
import base64
import json
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Protocol

from chatrelay.chat_log import ChatLogStore
from chatrelay.conversation import Role, Turn, user_turn
from chatrelay.formatting import escape_markdown_v2
from chatrelay.llm import (
    DEFAULT_TIMEOUT_SECONDS,
    CompletionAPIError,
    CompletionFormatError,
    CompletionHTTPError,
    CompletionTransportError,
)
from chatrelay.media_group import MediaAggregator, MediaPart, Pending
from chatrelay.session_store import InteractionMode, SessionStore

VIEW_CONTEXT_LABEL = "👁 View Context"
CHANGE_ROLE_LABEL = "🎭 Change Role"
IMAGE_FALLBACK_PROMPT = "Please describe these images"
WELCOME_TEXT = "Welcome! I am a chat bot. Use the buttons or just send a message!"
PENDING_TEXT = "Requesting a response..."
ROLE_PROMPT_TEXT = "Please describe the new role:"
ROLE_CHANGED_TEXT = "Role successfully changed! You can start chatting."
EMPTY_CONTEXT_TEXT = "Context is empty"
MARKDOWN_V2 = "MarkdownV2"


class ReplyMarkup(str, Enum):
    MAIN_KEYBOARD = "main_keyboard"
    FORCE_REPLY = "force_reply"


@dataclass(frozen=True)
class PhotoVariant:
    file_id: str
    file_size: int | None = None


@dataclass(frozen=True)
class InboundEvent:
    chat_id: int
    text: str | None = None
    caption: str | None = None
    photo: tuple[PhotoVariant, ...] = ()
    media_group_id: str | None = None

    @property
    def body(self) -> str:
        return self.caption or self.text or ""


class ChatTransport(Protocol):
    async def send_message(
        self,
        chat_id: int,
        text: str,
        *,
        parse_mode: str | None = None,
        reply_markup: ReplyMarkup | None = None,
    ) -> None: ...

    async def fetch_image(self, file_id: str) -> bytes: ...


class EventRecorder(Protocol):
    def record(
        self,
        event_type: str,
        payload: dict[str, Any],
        *,
        chat_id: int | None = None,
        decision: str | None = None,
    ) -> int: ...


Completer = Callable[[list[dict[str, Any]]], str]


def describe_failure(exc: BaseException, backend_name: str) -> str:
    """User-facing diagnostic for a failed completion call."""
    if isinstance(exc, CompletionHTTPError):
        payload = exc.payload
        if not isinstance(payload, str):
            payload = json.dumps(payload, separators=(",", ":"), ensure_ascii=False)
        return (
            f"An error occurred while contacting the {backend_name}. "
            f"Status: {exc.status}, Message: {payload}"
        )
    if isinstance(exc, CompletionAPIError):
        return f"{backend_name} Error: {exc.message}"
    if isinstance(exc, CompletionFormatError):
        return "Failed to get a response. Check the response format."
    if isinstance(exc, CompletionTransportError):
        return f"An error occurred while sending a request to the {backend_name}."
    return f"An unknown error occurred while contacting the {backend_name}."


class TurnDispatcher:
    def __init__(
        self,
        *,
        sessions: SessionStore,
        aggregator: MediaAggregator,
        transport: ChatTransport,
        complete: Completer,
        events: EventRecorder,
        chat_log: ChatLogStore,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        backend_name: str = "Grok API",
    ) -> None:
        self._sessions = sessions
        self._aggregator = aggregator
        self._transport = transport
        self._complete = complete
        self._events = events
        self._chat_log = chat_log
        self._timeout_seconds = timeout_seconds
        self._backend_name = backend_name

    def awaiting_role(self, chat_id: int) -> bool:
        return self._sessions.mode(chat_id) == InteractionMode.AWAITING_ROLE_INPUT

    async def start(self, chat_id: int) -> None:
        self._sessions.ensure(chat_id)
        await self._send(chat_id, WELCOME_TEXT, reply_markup=ReplyMarkup.MAIN_KEYBOARD)

    async def show_context(self, chat_id: int) -> None:
        summary = self._sessions.read(chat_id)
        if summary is None:
            await self._send(chat_id, EMPTY_CONTEXT_TEXT)
            return
        await self._send(chat_id, f"Current chat context:\n\n{summary}")

    async def change_role(self, chat_id: int) -> None:
        self._sessions.begin_role_change(chat_id)
        await self._send(chat_id, ROLE_PROMPT_TEXT, reply_markup=ReplyMarkup.FORCE_REPLY)

    async def handle(self, event: InboundEvent) -> None:
        chat_id = event.chat_id
        text = event.body

        if self.awaiting_role(chat_id):
            # Any text, command text included, becomes the persona.
            # Events without text leave the chat waiting for a role.
            if text:
                self._sessions.complete_role_change(chat_id, text)
                self._events.record("persona_changed", {"length": len(text)}, chat_id=chat_id, decision="allow")
                await self._send(chat_id, ROLE_CHANGED_TEXT, reply_markup=ReplyMarkup.MAIN_KEYBOARD)
            return

        if text == VIEW_CONTEXT_LABEL:
            await self.show_context(chat_id)
            return
        if text == CHANGE_ROLE_LABEL:
            await self.change_role(chat_id)
            return

        image = await self._fetch_photo(event) if event.photo else None
        result = await self._aggregator.submit(
            event.media_group_id,
            chat_id,
            MediaPart(image=image, caption=text or None),
        )
        if isinstance(result, Pending):
            return
        if result.is_empty or result.text.startswith("/"):
            return

        await self._dispatch(chat_id, result.text, list(result.images))

    async def _dispatch(self, chat_id: int, text: str, images: list[str]) -> None:
        history = self._sessions.ensure(chat_id)
        self._log(chat_id, "user", text or f"Photo ({len(images)} pcs)")
        await self._send(chat_id, PENDING_TEXT)

        turn = user_turn(text, images, fallback_prompt=IMAGE_FALLBACK_PROMPT)
        messages = history.to_messages(pending=turn)
        try:
            reply = await asyncio.wait_for(
                asyncio.to_thread(self._complete, messages),
                timeout=self._timeout_seconds,
            )
        except asyncio.TimeoutError:
            await self._report_failure(chat_id, CompletionTransportError("completion timed out"))
            return
        except Exception as exc:
            await self._report_failure(chat_id, exc)
            return

        await self._send(chat_id, escape_markdown_v2(reply), parse_mode=MARKDOWN_V2)
        self._log(chat_id, "assistant", reply)
        # The user turn is committed only with its reply, so a failed call
        # leaves the history untouched and turns 1.. alternate strictly.
        self._sessions.append(chat_id, turn)
        self._sessions.append(chat_id, Turn(Role.ASSISTANT, reply))
        self._sessions.truncate(chat_id)

    async def _report_failure(self, chat_id: int, exc: BaseException) -> None:
        payload: dict[str, Any] = {"error_class": type(exc).__name__, "error": str(exc)}
        if isinstance(exc, CompletionHTTPError):
            payload["status"] = exc.status
        if isinstance(exc, (CompletionHTTPError, CompletionFormatError, CompletionAPIError)):
            payload["raw"] = exc.payload
        self._events.record("completion_error", payload, chat_id=chat_id, decision="deny")
        await self._send(chat_id, describe_failure(exc, self._backend_name))

    async def _fetch_photo(self, event: InboundEvent) -> str | None:
        largest = max(event.photo, key=lambda variant: variant.file_size or 0)
        try:
            data = await self._transport.fetch_image(largest.file_id)
        except Exception as exc:
            self._events.record(
                "media_fetch_error",
                {"file_id": largest.file_id, "error": str(exc)},
                chat_id=event.chat_id,
                decision="deny",
            )
            return None
        return base64.b64encode(data).decode("ascii")

    async def _send(
        self,
        chat_id: int,
        text: str,
        *,
        parse_mode: str | None = None,
        reply_markup: ReplyMarkup | None = None,
    ) -> None:
        try:
            await self._transport.send_message(chat_id, text, parse_mode=parse_mode, reply_markup=reply_markup)
        except Exception as exc:
            self._events.record(
                "telegram_send_error",
                {"error": str(exc), "parse_mode": parse_mode},
                chat_id=chat_id,
                decision="deny",
            )

    def _log(self, chat_id: int, role: str, content: str) -> None:
        try:
            self._chat_log.record(chat_id, role, content)
        except OSError as exc:
            self._events.record("chat_log_error", {"error": str(exc)}, chat_id=chat_id, decision="deny")

    def housekeeping(self) -> tuple[list[str], list[int]]:
        """Sweep abandoned media groups and idle sessions."""
        groups = self._aggregator.sweep()
        chats = self._sessions.evict_idle()
        for group_id in groups:
            self._events.record("media_group_evicted", {"media_group_id": group_id}, decision="allow")
        for chat_id in chats:
            self._events.record("session_evicted", {}, chat_id=chat_id, decision="allow")
        return groups, chats

    async def run_housekeeping(self, interval_seconds: float) -> None:
        while True:
            await asyncio.sleep(interval_seconds)
            try:
                self.housekeeping()
            except Exception as exc:
                # A failed pass must not stop later sweeps.
                self._events.record(
                    "housekeeping_error",
                    {"error_class": type(exc).__name__, "error": str(exc)},
                    decision="deny",
                )
