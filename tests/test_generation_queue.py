import asyncio

import pytest

from moodsound.models.mood import MoodEntry
from moodsound.models.music import GeneratedMusic, MusicSummary
from moodsound.services.generation_queue import GenerationQueue


class GatedOrchestrator:
    """Blocks every generation until ``gate`` is set and tracks concurrency."""

    def __init__(self, fail_on=()):
        self.gate = asyncio.Event()
        self.calls = []
        self.active = 0
        self.max_active = 0
        self.fail_on = set(fail_on)

    async def generate(self, user_id, entry):
        self.calls.append(entry.entry_id)
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            await self.gate.wait()
            if entry.entry_id in self.fail_on:
                raise RuntimeError(f"boom {entry.entry_id}")
            return GeneratedMusic(
                user_id=user_id,
                entry_id=entry.entry_id,
                music_parameters=MusicSummary(tempo=90, key="C major"),
            )
        finally:
            self.active -= 1


def entry(entry_id: str) -> MoodEntry:
    return MoodEntry(entry_id=entry_id, mood_rating=5)


class TestGenerationQueue:
    @pytest.mark.asyncio
    async def test_idle_runs_immediately(self):
        """With nothing in flight the request runs and returns its result."""
        orch = GatedOrchestrator()
        orch.gate.set()
        queue = GenerationQueue(orch)
        music = await queue.enqueue_or_run("u1", entry("e1"))
        assert music.entry_id == "e1"
        assert not queue.is_generating()
        assert queue.queue_length() == 0

    @pytest.mark.asyncio
    async def test_busy_requests_are_queued_fifo(self):
        """Requests arriving mid-flight are queued and run one at a time in order."""
        orch = GatedOrchestrator()
        queue = GenerationQueue(orch)

        first = asyncio.create_task(queue.enqueue_or_run("u1", entry("e1")))
        await asyncio.sleep(0)
        assert queue.is_generating()

        assert await queue.enqueue_or_run("u1", entry("e2")) is None
        assert await queue.enqueue_or_run("u1", entry("e3")) is None
        assert queue.queue_length() == 2

        orch.gate.set()
        assert (await first).entry_id == "e1"
        # the next queued entry has already taken over
        assert queue.is_generating()

        await queue.join()
        assert orch.calls == ["e1", "e2", "e3"]
        assert orch.max_active == 1
        assert not queue.is_generating()
        assert queue.queue_length() == 0

    @pytest.mark.asyncio
    async def test_on_generated_callback(self):
        """The callback receives every result, including queued ones."""
        orch = GatedOrchestrator()
        results = []

        async def on_generated(user_id, entry, music):
            assert entry.entry_id == music.entry_id
            results.append((user_id, music.entry_id))

        queue = GenerationQueue(orch, on_generated=on_generated)
        first = asyncio.create_task(queue.enqueue_or_run("u1", entry("e1")))
        await asyncio.sleep(0)
        await queue.enqueue_or_run("u1", entry("e2"))
        orch.gate.set()
        await first
        await queue.join()
        assert results == [("u1", "e1"), ("u1", "e2")]

    @pytest.mark.asyncio
    async def test_sync_callback_failure_is_contained(self):
        """A failing callback does not stop the queue."""
        orch = GatedOrchestrator()
        orch.gate.set()

        def on_generated(user_id, entry, music):
            raise ValueError("listener broke")

        queue = GenerationQueue(orch, on_generated=on_generated)
        music = await queue.enqueue_or_run("u1", entry("e1"))
        assert music.entry_id == "e1"
        assert not queue.is_generating()

    @pytest.mark.asyncio
    async def test_failed_queued_generation_does_not_block(self):
        """An exception in a queued generation still releases the queue."""
        orch = GatedOrchestrator(fail_on={"e2"})
        queue = GenerationQueue(orch)

        first = asyncio.create_task(queue.enqueue_or_run("u1", entry("e1")))
        await asyncio.sleep(0)
        await queue.enqueue_or_run("u1", entry("e2"))
        await queue.enqueue_or_run("u1", entry("e3"))
        orch.gate.set()
        await first
        await queue.join()

        assert orch.calls == ["e1", "e2", "e3"]
        assert not queue.is_generating()

    @pytest.mark.asyncio
    async def test_join_when_idle(self):
        """join returns immediately when nothing is running."""
        queue = GenerationQueue(GatedOrchestrator())
        await asyncio.wait_for(queue.join(), timeout=1)

    @pytest.mark.asyncio
    async def test_join_waits_for_running_generation(self):
        """join blocks while the first generation is running and wakes when the queue drains."""
        orch = GatedOrchestrator()
        queue = GenerationQueue(orch)
        first = asyncio.create_task(queue.enqueue_or_run("u1", entry("e1")))
        await asyncio.sleep(0)
        await queue.enqueue_or_run("u1", entry("e2"))

        waiter = asyncio.create_task(queue.join())
        await asyncio.sleep(0.05)
        assert not waiter.done()

        orch.gate.set()
        await first
        await asyncio.wait_for(waiter, timeout=1)
        assert orch.calls == ["e1", "e2"]
        assert not queue.is_generating()
