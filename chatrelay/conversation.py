"""Conversation turns and the bounded per-chat history buffer."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Union

DEFAULT_MAX_TURNS = 10
PREVIEW_CHARS = 100


class Role(str, Enum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


@dataclass(frozen=True)
class TextPart:
    text: str

    def to_message(self) -> dict[str, Any]:
        return {"type": "text", "text": self.text}


@dataclass(frozen=True)
class ImagePart:
    """Base64 encoded JPEG payload."""

    data: str
    mime_type: str = "image/jpeg"

    def to_message(self) -> dict[str, Any]:
        return {
            "type": "image_url",
            "image_url": {"url": f"data:{self.mime_type};base64,{self.data}"},
        }


ContentPart = Union[TextPart, ImagePart]


@dataclass(frozen=True)
class Turn:
    role: Role
    content: str | tuple[ContentPart, ...]

    @property
    def has_image(self) -> bool:
        if isinstance(self.content, str):
            return False
        return any(isinstance(part, ImagePart) for part in self.content)

    def to_message(self) -> dict[str, Any]:
        if isinstance(self.content, str):
            return {"role": self.role.value, "content": self.content}
        return {"role": self.role.value, "content": [part.to_message() for part in self.content]}

    def preview(self) -> str:
        if isinstance(self.content, str):
            return self.content[:PREVIEW_CHARS] + "..."
        return "Message with image"


def user_turn(text: str, images: list[str] | tuple[str, ...] = (), *, fallback_prompt: str = "") -> Turn:
    """Plain text when there are no images, otherwise text followed by each image."""
    if not images:
        return Turn(Role.USER, text)
    parts: list[ContentPart] = [TextPart(text or fallback_prompt)]
    parts.extend(ImagePart(data) for data in images)
    return Turn(Role.USER, tuple(parts))


class ConversationHistory:
    """Ordered turns with a pinned system turn at index 0."""

    def __init__(self, system_prompt: str, *, max_turns: int = DEFAULT_MAX_TURNS) -> None:
        if max_turns < 3:
            raise ValueError("max_turns must leave room for the system turn and one pair")
        self._max_turns = max_turns
        self._turns: list[Turn] = [Turn(Role.SYSTEM, system_prompt)]

    def __len__(self) -> int:
        return len(self._turns)

    @property
    def system_prompt(self) -> str:
        content = self._turns[0].content
        return content if isinstance(content, str) else ""

    @property
    def turns(self) -> tuple[Turn, ...]:
        return tuple(self._turns)

    def reset(self, system_prompt: str) -> None:
        self._turns = [Turn(Role.SYSTEM, system_prompt)]

    def append(self, turn: Turn) -> None:
        if turn.role == Role.SYSTEM:
            raise ValueError("system turn can only be replaced through reset()")
        self._turns.append(turn)

    def truncate(self) -> int:
        """Drop the oldest user/assistant pairs until the bound holds; return turns removed."""
        removed = 0
        while len(self._turns) > self._max_turns:
            del self._turns[1:3]
            removed += 2
        # Irregular histories (consecutive same-role turns) must not leave an
        # assistant turn directly after the system turn.
        while len(self._turns) > 1 and self._turns[1].role != Role.USER:
            del self._turns[1]
            removed += 1
        return removed

    def to_messages(self, pending: Turn | None = None) -> list[dict[str, Any]]:
        messages = [turn.to_message() for turn in self._turns]
        if pending is not None:
            messages.append(pending.to_message())
        return messages

    def summary(self) -> str:
        return "\n\n".join(
            f"{index}. {turn.role.value}: {turn.preview()}" for index, turn in enumerate(self._turns)
        )
