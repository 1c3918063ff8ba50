from __future__ import annotations

import sqlite3
import tempfile
import unittest
from pathlib import Path

from chatrelay.chat_log import ChatLogStore
from chatrelay.formatting import escape_markdown_v2
from chatrelay.memory.engine import MemoryEngine
from chatrelay.memory.episodic_memory import EpisodicMemoryStore


class EscapeMarkdownTests(unittest.TestCase):
    def test_every_special_character_is_escaped_once(self) -> None:
        specials = "_*[]()~`>#+-=|{}.!"
        escaped = escape_markdown_v2(specials)
        self.assertEqual(escaped, "".join(f"\\{ch}" for ch in specials))

    def test_plain_text_untouched(self) -> None:
        self.assertEqual(escape_markdown_v2("Hello world, 42 times"), "Hello world, 42 times")

    def test_mixed_reply(self) -> None:
        self.assertEqual(escape_markdown_v2("**Tip:** use a-b.c!"), "\\*\\*Tip:\\*\\* use a\\-b\\.c\\!")


class ChatLogTests(unittest.TestCase):
    def test_lines_are_appended_per_chat(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            log = ChatLogStore(Path(tmpdir))
            log.record(1, "user", "Hello")
            log.record(1, "assistant", "Hi there!")
            log.record(2, "user", "Other chat")
            self.assertEqual(log.path_for(1), Path(tmpdir) / "chat_logs" / "chat_1.txt")
            lines = log.read(1)
            self.assertEqual(len(lines), 2)
            self.assertRegex(lines[0], r"^\[\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}\.\d{3}Z\] USER: Hello$")
            self.assertTrue(lines[1].endswith("] ASSISTANT: Hi there!"))
            self.assertEqual(len(log.read(2)), 1)
            self.assertEqual(log.read(3), [])


class EpisodicMemoryTests(unittest.TestCase):
    def test_record_and_filter(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            engine = MemoryEngine(Path(tmpdir) / "relay.db")
            engine.initialize()
            conn: sqlite3.Connection = engine.connect()
            store = EpisodicMemoryStore(conn)
            store.record("relay_boot", {"profile": "default"}, decision="allow")
            store.record("completion_error", {"status": 429}, chat_id=7, decision="deny")
            store.record("telegram_send_error", {"error": "x"}, chat_id=8, decision="deny")

            latest = store.latest(limit=10)
            self.assertEqual([e["event_type"] for e in latest], ["telegram_send_error", "completion_error", "relay_boot"])
            by_chat = store.latest(chat_id=7)
            self.assertEqual(len(by_chat), 1)
            self.assertEqual(by_chat[0]["payload"], {"status": 429})
            self.assertEqual(len(store.latest(event_type="relay_boot")), 1)
            engine.close()


if __name__ == "__main__":
    unittest.main()
