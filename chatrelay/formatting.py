"""Text escaping for outbound Telegram messages."""

from __future__ import annotations

import re

_MARKDOWN_V2_SPECIAL = re.compile(r"([_*\[\]()~`>#+\-=|{}.!])")


def escape_markdown_v2(text: str) -> str:
    """Backslash-escape every MarkdownV2 control character, in one pass."""
    return _MARKDOWN_V2_SPECIAL.sub(r"\\\1", text)
