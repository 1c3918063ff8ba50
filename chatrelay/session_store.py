"""Per-chat interaction mode and conversation history."""

from __future__ import annotations

import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable

from chatrelay.conversation import DEFAULT_MAX_TURNS, ConversationHistory, Turn

DEFAULT_SESSION_IDLE_SECONDS = 86400


class InteractionMode(str, Enum):
    NORMAL = "normal"
    AWAITING_ROLE_INPUT = "awaiting_role_input"


@dataclass
class ChatSession:
    history: ConversationHistory
    touched_at: float


class SessionStore:
    """Sole owner of per-chat mode and history.

    A chat can be awaiting role input before it has any history (the user
    pressed "change role" before talking to the model), so the mode map is
    kept apart from the session map. Both are swept by ``evict_idle``.
    """

    def __init__(
        self,
        default_persona: str,
        *,
        max_turns: int = DEFAULT_MAX_TURNS,
        idle_seconds: float = DEFAULT_SESSION_IDLE_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._default_persona = default_persona
        self._max_turns = max_turns
        self._idle_seconds = idle_seconds
        self._clock = clock
        self._sessions: dict[int, ChatSession] = {}
        self._awaiting_role: dict[int, float] = {}

    @property
    def default_persona(self) -> str:
        return self._default_persona

    def __contains__(self, chat_id: int) -> bool:
        return chat_id in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)

    def mode(self, chat_id: int) -> InteractionMode:
        if chat_id in self._awaiting_role:
            return InteractionMode.AWAITING_ROLE_INPUT
        return InteractionMode.NORMAL

    def begin_role_change(self, chat_id: int) -> None:
        self._awaiting_role[chat_id] = self._clock()

    def complete_role_change(self, chat_id: int, persona: str) -> ConversationHistory:
        """Replace the persona, clear the history and return the chat to normal mode."""
        history = self.reset(chat_id, persona)
        self._awaiting_role.pop(chat_id, None)
        return history

    def ensure(self, chat_id: int) -> ConversationHistory:
        session = self._sessions.get(chat_id)
        if session is None:
            return self.reset(chat_id, self._default_persona)
        session.touched_at = self._clock()
        return session.history

    def reset(self, chat_id: int, system_prompt: str) -> ConversationHistory:
        session = self._sessions.get(chat_id)
        if session is None:
            session = ChatSession(
                history=ConversationHistory(system_prompt, max_turns=self._max_turns),
                touched_at=self._clock(),
            )
            self._sessions[chat_id] = session
        else:
            session.history.reset(system_prompt)
            session.touched_at = self._clock()
        return session.history

    def history(self, chat_id: int) -> ConversationHistory | None:
        session = self._sessions.get(chat_id)
        return session.history if session else None

    def append(self, chat_id: int, turn: Turn) -> None:
        self.ensure(chat_id).append(turn)

    def truncate(self, chat_id: int) -> int:
        history = self.history(chat_id)
        return history.truncate() if history is not None else 0

    def read(self, chat_id: int) -> str | None:
        """Display-safe projection of the chat's history, or None when there is none."""
        history = self.history(chat_id)
        return history.summary() if history is not None else None

    def evict_idle(self) -> list[int]:
        now = self._clock()
        evicted = [
            chat_id
            for chat_id, session in self._sessions.items()
            if now - session.touched_at > self._idle_seconds
        ]
        for chat_id in evicted:
            del self._sessions[chat_id]
        for chat_id, since in list(self._awaiting_role.items()):
            if now - since > self._idle_seconds:
                del self._awaiting_role[chat_id]
        return evicted
