from __future__ import annotations

import unittest

from chatrelay.conversation import Role, Turn
from chatrelay.session_store import InteractionMode, SessionStore


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


class SessionStoreTests(unittest.TestCase):
    def test_new_chat_is_normal_and_has_no_history(self) -> None:
        store = SessionStore("default persona")
        self.assertEqual(store.mode(7), InteractionMode.NORMAL)
        self.assertIsNone(store.history(7))
        self.assertIsNone(store.read(7))

    def test_ensure_creates_default_persona_once(self) -> None:
        store = SessionStore("default persona")
        history = store.ensure(7)
        history.append(Turn(Role.USER, "hi"))
        self.assertIs(store.ensure(7), history)
        self.assertEqual(history.turns[0], Turn(Role.SYSTEM, "default persona"))
        self.assertEqual(len(history), 2)

    def test_role_change_resets_history_regardless_of_size(self) -> None:
        store = SessionStore("default persona")
        for idx in range(4):
            store.append(7, Turn(Role.USER, f"q{idx}"))
            store.append(7, Turn(Role.ASSISTANT, f"a{idx}"))
            store.truncate(7)
        store.begin_role_change(7)
        self.assertEqual(store.mode(7), InteractionMode.AWAITING_ROLE_INPUT)
        self.assertEqual(len(store.history(7)), 9)

        history = store.complete_role_change(7, "You are a pirate")
        self.assertEqual(store.mode(7), InteractionMode.NORMAL)
        self.assertEqual(history.turns, (Turn(Role.SYSTEM, "You are a pirate"),))

    def test_role_change_before_first_contact(self) -> None:
        store = SessionStore("default persona")
        store.begin_role_change(9)
        self.assertNotIn(9, store)
        store.complete_role_change(9, "Be brief")
        self.assertEqual(store.history(9).system_prompt, "Be brief")

    def test_modes_are_per_chat(self) -> None:
        store = SessionStore("default persona")
        store.begin_role_change(1)
        self.assertEqual(store.mode(1), InteractionMode.AWAITING_ROLE_INPUT)
        self.assertEqual(store.mode(2), InteractionMode.NORMAL)

    def test_evict_idle_drops_untouched_sessions_and_modes(self) -> None:
        clock = FakeClock()
        store = SessionStore("default persona", idle_seconds=60, clock=clock)
        store.ensure(1)
        store.ensure(2)
        store.begin_role_change(3)
        clock.now += 30
        store.ensure(2)
        clock.now += 45
        self.assertEqual(store.evict_idle(), [1])
        self.assertNotIn(1, store)
        self.assertIn(2, store)
        self.assertEqual(store.mode(3), InteractionMode.NORMAL)

    def test_read_returns_projection(self) -> None:
        store = SessionStore("persona")
        store.append(5, Turn(Role.USER, "Hello"))
        self.assertEqual(store.read(5), "0. system: persona...\n\n1. user: Hello...")


if __name__ == "__main__":
    unittest.main()
