"""Profile configuration loader, path resolver and secret lookup."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

from chatrelay.llm import DEFAULT_BASE_URL, DEFAULT_MODEL, DEFAULT_TIMEOUT_SECONDS


@dataclass(frozen=True)
class ProfilePaths:
    base_data_dir: Path
    db_path: Path
    logs_dir: Path
    secrets_dir: Path


@dataclass(frozen=True)
class Profile:
    name: str
    display_name: str
    llm_default_model: str
    llm_base_url: str
    llm_timeout_seconds: int
    history_max_turns: int
    media_group_debounce_seconds: float
    media_group_stale_seconds: float
    housekeeping_interval_seconds: float
    session_idle_seconds: float
    paths: ProfilePaths


class ProfileError(ValueError):
    """Raised when profile configuration is invalid."""


def read_secret(secrets_dir: Path, filename: str, env_var: str | None = None) -> str | None:
    """Read a secret file; fall back to ``env_var``. None if missing or empty."""
    path = secrets_dir / filename
    if path.exists():
        raw = path.read_text(encoding="utf-8").strip()
        if raw:
            return raw
    if env_var:
        raw = os.environ.get(env_var, "").strip()
        if raw:
            return raw
    return None


def _validate_raw_profile(raw: dict[str, Any], expected_name: str) -> None:
    required = {"name", "display_name"}
    missing = required.difference(raw.keys())
    if missing:
        missing_joined = ", ".join(sorted(missing))
        raise ProfileError(f"Missing required profile keys: {missing_joined}")

    if raw["name"] != expected_name:
        raise ProfileError(
            f"Profile filename/name mismatch: expected '{expected_name}', got '{raw['name']}'"
        )

    if int(raw.get("history_max_turns", 10)) < 3:
        raise ProfileError("history_max_turns must be at least 3")

    for key in ("media_group_debounce_seconds", "media_group_stale_seconds", "housekeeping_interval_seconds"):
        if key in raw and float(raw[key]) <= 0:
            raise ProfileError(f"{key} must be positive")


def _clamp_timeout(value: Any) -> int:
    return max(5, min(300, int(value)))


def load_profile(profile_name: str, repo_root: Path | None = None, data_root: Path | None = None) -> Profile:
    """Load a profile from config and resolve data paths."""
    if repo_root is None:
        repo_root = Path(__file__).resolve().parent.parent

    profile_path = repo_root / "config" / "profiles" / f"{profile_name}.yaml"
    if not profile_path.exists():
        raise ProfileError(f"Profile not found: {profile_path}")

    with profile_path.open("r", encoding="utf-8") as fh:
        raw = yaml.safe_load(fh) or {}

    if not isinstance(raw, dict):
        raise ProfileError(f"Profile file must contain a mapping: {profile_path}")

    try:
        _validate_raw_profile(raw, profile_name)
    except ProfileError:
        raise
    except (TypeError, ValueError) as exc:
        raise ProfileError(f"Invalid profile value in {profile_path}: {exc}") from exc

    base_data_dir = (data_root or Path.home() / "relaydata") / profile_name
    paths = ProfilePaths(
        base_data_dir=base_data_dir,
        db_path=base_data_dir / "relay.db",
        logs_dir=base_data_dir / "logs",
        secrets_dir=base_data_dir / "secrets",
    )

    return Profile(
        name=raw["name"],
        display_name=raw["display_name"],
        llm_default_model=str(raw.get("llm_default_model", DEFAULT_MODEL)).strip() or DEFAULT_MODEL,
        llm_base_url=str(raw.get("llm_base_url", DEFAULT_BASE_URL)).strip() or DEFAULT_BASE_URL,
        llm_timeout_seconds=_clamp_timeout(raw.get("llm_timeout_seconds", DEFAULT_TIMEOUT_SECONDS)),
        history_max_turns=int(raw.get("history_max_turns", 10)),
        media_group_debounce_seconds=float(raw.get("media_group_debounce_seconds", 1.0)),
        media_group_stale_seconds=float(raw.get("media_group_stale_seconds", 5.0)),
        housekeeping_interval_seconds=float(raw.get("housekeeping_interval_seconds", 10.0)),
        session_idle_seconds=float(raw.get("session_idle_seconds", 86400)),
        paths=paths,
    )


def ensure_profile_directories(profile: Profile) -> None:
    """Create profile directories without touching existing data."""
    profile.paths.base_data_dir.mkdir(parents=True, exist_ok=True)
    profile.paths.logs_dir.mkdir(parents=True, exist_ok=True)
    profile.paths.secrets_dir.mkdir(parents=True, exist_ok=True)
