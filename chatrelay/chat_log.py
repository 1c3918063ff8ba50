"""Append-only per-chat text log of user and assistant messages."""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path


class ChatLogStore:
    def __init__(self, logs_dir: Path) -> None:
        self._dir = logs_dir / "chat_logs"

    @property
    def directory(self) -> Path:
        return self._dir

    def path_for(self, chat_id: int) -> Path:
        return self._dir / f"chat_{chat_id}.txt"

    def record(self, chat_id: int, role: str, content: str) -> None:
        """Append one ``[timestamp] ROLE: content`` line. Raises OSError on write failure."""
        timestamp = datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")
        line = f"[{timestamp}] {role.upper()}: {content}\n"
        self._dir.mkdir(parents=True, exist_ok=True)
        with self.path_for(chat_id).open("a", encoding="utf-8") as fh:
            fh.write(line)

    def read(self, chat_id: int) -> list[str]:
        path = self.path_for(chat_id)
        if not path.exists():
            return []
        return path.read_text(encoding="utf-8").splitlines()
