"""Load the default persona (system instruction) for new chats."""

from __future__ import annotations

from pathlib import Path

BUILTIN_PERSONA = (
    "You are an English language expert, and I am learning it. I will send you my messages, "
    "if they are in English it means I translated them into English. And you comment on what "
    "is better to correct, if they are in Russian then translate into English and comment! "
    "the message needs to be used on Twitter, you can add emojis"
)


def get_default_persona(profile_name: str, repo_root: Path | None = None) -> str:
    """Return config/personas/<profile>.md, falling back to the built-in tutor prompt."""
    if repo_root is None:
        repo_root = Path(__file__).resolve().parent.parent
    persona_file = repo_root / "config" / "personas" / f"{profile_name}.md"
    if persona_file.exists():
        text = persona_file.read_text(encoding="utf-8").strip()
        if text:
            return text
    return BUILTIN_PERSONA
