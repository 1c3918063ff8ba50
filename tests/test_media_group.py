from __future__ import annotations

import asyncio
import unittest

from chatrelay.media_group import MediaAggregator, MediaPart, Pending, Ready


class GatedSleep:
    """Sleep replacement that waits until the test opens the gate."""

    def __init__(self) -> None:
        self.gate = asyncio.Event()
        self.calls = 0

    async def __call__(self, seconds: float) -> None:
        self.calls += 1
        await self.gate.wait()


class MediaAggregatorTests(unittest.IsolatedAsyncioTestCase):
    async def test_event_without_group_is_ready_immediately(self) -> None:
        sleep = GatedSleep()
        aggregator = MediaAggregator(sleep=sleep)
        result = await aggregator.submit(None, 1, MediaPart(image="img", caption="hi"))
        self.assertEqual(result, Ready(text="hi", images=("img",)))
        self.assertEqual(sleep.calls, 0)
        self.assertEqual(aggregator.pending_count(), 0)

    async def test_album_burst_yields_exactly_one_ready(self) -> None:
        aggregator = MediaAggregator(debounce_seconds=0.05)

        async def part(delay: float, image: str, caption: str | None) -> object:
            await asyncio.sleep(delay)
            return await aggregator.submit("album", 1, MediaPart(image=image, caption=caption))

        results = await asyncio.gather(
            part(0.0, "p1", "look"),
            part(0.01, "p2", None),
            part(0.02, "p3", None),
        )
        ready = [r for r in results if isinstance(r, Ready)]
        self.assertEqual(len(ready), 1)
        self.assertEqual(sum(isinstance(r, Pending) for r in results), 2)
        self.assertEqual(ready[0].text, "look")
        self.assertEqual(ready[0].images, ("p1", "p2", "p3"))
        self.assertEqual(aggregator.pending_count(), 0)

    async def test_last_non_empty_caption_wins(self) -> None:
        aggregator = MediaAggregator(debounce_seconds=0.05)
        results = await asyncio.gather(
            aggregator.submit("g", 1, MediaPart(image="a", caption="first")),
            aggregator.submit("g", 1, MediaPart(image="b", caption="second")),
            aggregator.submit("g", 1, MediaPart(image="c", caption=None)),
        )
        ready = [r for r in results if isinstance(r, Ready)]
        self.assertEqual(ready, [Ready(text="second", images=("a", "b", "c"))])

    async def test_interleaved_groups_stay_isolated(self) -> None:
        aggregator = MediaAggregator(debounce_seconds=0.05)
        results = await asyncio.gather(
            aggregator.submit("g1", 1, MediaPart(image="a1", caption="one")),
            aggregator.submit("g2", 2, MediaPart(image="b1", caption="two")),
            aggregator.submit("g1", 1, MediaPart(image="a2")),
            aggregator.submit("g2", 2, MediaPart(image="b2")),
        )
        ready = sorted((r for r in results if isinstance(r, Ready)), key=lambda r: r.text)
        self.assertEqual(
            ready,
            [Ready(text="one", images=("a1", "a2")), Ready(text="two", images=("b1", "b2"))],
        )

    async def test_part_after_claim_starts_new_group(self) -> None:
        aggregator = MediaAggregator(debounce_seconds=0.01)
        first = await aggregator.submit("g", 1, MediaPart(image="a", caption="cap"))
        late = await aggregator.submit("g", 1, MediaPart(image="b"))
        self.assertEqual(first, Ready(text="cap", images=("a",)))
        self.assertEqual(late, Ready(text="", images=("b",)))

    async def test_sweep_evicts_abandoned_group(self) -> None:
        now = [100.0]
        sleep = GatedSleep()
        aggregator = MediaAggregator(stale_seconds=5.0, clock=lambda: now[0], sleep=sleep)

        task = asyncio.create_task(aggregator.submit("lost", 1, MediaPart(image="a")))
        await asyncio.sleep(0)
        self.assertEqual(aggregator.pending_count(), 1)

        now[0] += 3.0
        self.assertEqual(aggregator.sweep(), [])
        now[0] += 3.0
        self.assertEqual(aggregator.sweep(), ["lost"])
        self.assertEqual(aggregator.pending_count(), 0)

        sleep.gate.set()
        self.assertEqual(await task, Pending())

    async def test_sweep_skips_recently_updated_group(self) -> None:
        now = [0.0]
        sleep = GatedSleep()
        aggregator = MediaAggregator(stale_seconds=5.0, clock=lambda: now[0], sleep=sleep)
        first = asyncio.create_task(aggregator.submit("g", 1, MediaPart(image="a")))
        await asyncio.sleep(0)
        now[0] = 4.0
        second = asyncio.create_task(aggregator.submit("g", 1, MediaPart(image="b")))
        await asyncio.sleep(0)
        now[0] = 7.0
        self.assertEqual(aggregator.sweep(), [])

        sleep.gate.set()
        results = await asyncio.gather(first, second)
        self.assertEqual(results, [Pending(), Ready(text="", images=("a", "b"))])


if __name__ == "__main__":
    unittest.main()
