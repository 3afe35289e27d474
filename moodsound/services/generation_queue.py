"""Single-flight FIFO queue in front of the orchestrator.

At most one generation runs at a time. A request arriving while one is in
flight is queued; when the running generation finishes, the oldest queued
request starts in the background.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from typing import Awaitable, Callable

from moodsound.models.mood import GenerationQueueEntry, MoodEntry
from moodsound.models.music import GeneratedMusic
from moodsound.services.orchestrator import GenerationOrchestrator

log = logging.getLogger(__name__)

OnGenerated = Callable[[str, MoodEntry, GeneratedMusic], Awaitable[None] | None]


class GenerationQueue:
    def __init__(self, orchestrator: GenerationOrchestrator, on_generated: OnGenerated | None = None):
        self.orchestrator = orchestrator
        self.on_generated = on_generated
        self._pending: deque[GenerationQueueEntry] = deque()
        self._in_flight = False
        self._tasks: set[asyncio.Task] = set()
        self._idle = asyncio.Event()
        self._idle.set()

    def is_generating(self) -> bool:
        return self._in_flight

    def queue_length(self) -> int:
        return len(self._pending)

    async def enqueue_or_run(self, user_id: str, entry: MoodEntry) -> GeneratedMusic | None:
        """Run now if idle and return the result, otherwise queue and return None."""
        if self._in_flight:
            self._pending.append(GenerationQueueEntry(user_id=user_id, mood_entry=entry))
            log.info(
                "Generation in progress, queued entry %s (queue length %d)",
                entry.entry_id,
                len(self._pending),
            )
            return None

        self._in_flight = True
        self._idle.clear()
        return await self._run(GenerationQueueEntry(user_id=user_id, mood_entry=entry))

    async def _run(self, item: GenerationQueueEntry) -> GeneratedMusic:
        try:
            music = await self.orchestrator.generate(item.user_id, item.mood_entry)
            await self._notify(item, music)
            return music
        finally:
            self._release()

    def _release(self) -> None:
        # in-flight stays held while handing over, so nothing can jump the queue
        if not self._pending:
            self._in_flight = False
            self._idle.set()
            return
        item = self._pending.popleft()
        log.info(f"Starting queued generation for entry {item.mood_entry.entry_id}")
        task = asyncio.get_running_loop().create_task(self._run_queued(item))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run_queued(self, item: GenerationQueueEntry) -> None:
        try:
            await self._run(item)
        except Exception as e:
            log.error(f"Queued generation for entry {item.mood_entry.entry_id} failed: {e}", exc_info=True)

    async def _notify(self, item: GenerationQueueEntry, music: GeneratedMusic) -> None:
        if self.on_generated is None:
            return
        try:
            result = self.on_generated(item.user_id, item.mood_entry, music)
            if asyncio.iscoroutine(result):
                await result
        except Exception as e:
            log.error(f"on_generated callback failed for music {music.music_id}: {e}", exc_info=True)

    async def join(self) -> None:
        """Wait until the queue is drained and nothing is in flight."""
        await self._idle.wait()
