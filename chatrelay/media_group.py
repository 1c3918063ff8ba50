"""Debounced aggregation of album events into one logical submission.

Telegram delivers an album as N independent messages sharing a
``media_group_id`` with no marker on the last one. Every event appends its
part to the group's bucket and waits out the debounce window; only the
submission carrying the newest part may claim the bucket afterwards, so the
window closes after the last part and the group yields one ``Ready``.
A part that shows up after its group was claimed starts a new group.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Union

DEFAULT_DEBOUNCE_SECONDS = 1.0
DEFAULT_STALE_SECONDS = 5.0


@dataclass(frozen=True)
class MediaPart:
    image: str | None = None
    caption: str | None = None


@dataclass(frozen=True)
class Pending:
    """Another submission owns the group's result."""


@dataclass(frozen=True)
class Ready:
    text: str
    images: tuple[str, ...] = ()

    @property
    def is_empty(self) -> bool:
        return not self.text and not self.images


SubmitResult = Union[Pending, Ready]


@dataclass
class PendingMediaGroup:
    chat_id: int
    created_at: float
    updated_at: float
    parts: list[str] = field(default_factory=list)
    caption_text: str = ""
    locked: bool = False
    sequence: int = 0


class MediaAggregator:
    def __init__(
        self,
        *,
        debounce_seconds: float = DEFAULT_DEBOUNCE_SECONDS,
        stale_seconds: float = DEFAULT_STALE_SECONDS,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[object]] = asyncio.sleep,
    ) -> None:
        self._debounce = debounce_seconds
        self._stale = stale_seconds
        self._clock = clock
        self._sleep = sleep
        self._groups: dict[str, PendingMediaGroup] = {}

    def pending_count(self) -> int:
        return len(self._groups)

    async def submit(self, group_id: str | None, chat_id: int, part: MediaPart) -> SubmitResult:
        if not group_id:
            images = (part.image,) if part.image else ()
            return Ready(text=part.caption or "", images=images)

        now = self._clock()
        group = self._groups.get(group_id)
        if group is None:
            group = PendingMediaGroup(chat_id=chat_id, created_at=now, updated_at=now)
            self._groups[group_id] = group
        if part.image:
            group.parts.append(part.image)
        if part.caption:
            group.caption_text = part.caption
        group.updated_at = now
        group.sequence += 1
        ticket = group.sequence

        await self._sleep(self._debounce)

        claimed = self._claim(group_id, ticket=ticket)
        if claimed is None:
            return Pending()
        return Ready(text=claimed.caption_text, images=tuple(claimed.parts))

    def sweep(self) -> list[str]:
        """Discard unclaimed groups idle past the stale threshold; return their ids."""
        now = self._clock()
        expired = [
            group_id
            for group_id, group in self._groups.items()
            if not group.locked and now - group.updated_at > self._stale
        ]
        return [group_id for group_id in expired if self._claim(group_id) is not None]

    def _claim(self, group_id: str, *, ticket: int | None = None) -> PendingMediaGroup | None:
        # Runs without awaiting, so check-and-mark is atomic on the event loop.
        group = self._groups.get(group_id)
        if group is None or group.locked:
            return None
        if ticket is not None and group.sequence != ticket:
            return None
        group.locked = True
        del self._groups[group_id]
        return group
