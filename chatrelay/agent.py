"""Relay runtime entry point."""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

from chatrelay.memory.engine import MemoryEngine
from chatrelay.memory.episodic_memory import EpisodicMemoryStore
from chatrelay.persona import get_default_persona
from chatrelay.profile import ProfileError, ensure_profile_directories, load_profile
from chatrelay.telegram_bot import TelegramBot, TelegramBotConfigError


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Relay Telegram chats to a chat completion API")
    parser.add_argument("--profile", default="default", help="Profile name, e.g. default")
    parser.add_argument(
        "--repo-root",
        default=None,
        help="Optional repo root override for config loading",
    )
    parser.add_argument(
        "--data-root",
        default=None,
        help="Optional override for the runtime data directory (default ~/relaydata)",
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    repo_root = Path(args.repo_root).resolve() if args.repo_root else None
    data_root = Path(args.data_root).expanduser().resolve() if args.data_root else None
    try:
        profile = load_profile(args.profile, repo_root=repo_root, data_root=data_root)
    except ProfileError as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        return 1
    ensure_profile_directories(profile)

    memory_engine = MemoryEngine(profile.paths.db_path)
    memory_engine.initialize()
    episodic_memory = EpisodicMemoryStore(memory_engine.connect())
    episodic_memory.record("relay_boot", {"profile": profile.name}, decision="allow")

    telegram_bot = TelegramBot(
        profile=profile,
        episodic_memory=episodic_memory,
        default_persona=get_default_persona(profile.name, repo_root=repo_root),
    )
    try:
        telegram_bot.start()
    except TelegramBotConfigError as exc:
        episodic_memory.record("relay_config_error", {"error": str(exc)}, decision="deny")
        print(f"ERROR: {exc}", file=sys.stderr)
        return 1
    finally:
        telegram_bot.stop()
        episodic_memory.record("relay_shutdown", {"profile": profile.name}, decision="allow")
        memory_engine.close()

    return 0


if __name__ == "__main__":
    raise SystemExit(main())
