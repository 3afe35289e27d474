"""Composition root wiring mapper, providers, orchestrator, queue, storage and playback."""

from __future__ import annotations

import logging
from typing import Sequence

import httpx

from moodsound.config import EngineSettings
from moodsound.models.mood import MoodEntry
from moodsound.models.music import GeneratedMusic, MusicParameters
from moodsound.services.generation_queue import GenerationQueue, OnGenerated
from moodsound.services.orchestrator import GenerationOrchestrator
from moodsound.services.parameter_mapper import ParameterMapper
from moodsound.services.playback import AudioBackend, PlaybackController, PlaybackStatus
from moodsound.services.providers import ProviderClient, build_providers
from moodsound.services.storage import (
    FileStorage,
    InMemoryStorage,
    MusicRepository,
    PersistenceError,
    StorageBackend,
)
from moodsound.synth.synthesizer import ProceduralSynthesizer

log = logging.getLogger(__name__)


class MoodSoundEngine:
    """Public entry point used by the mood-entry save flow and the playback UI."""

    def __init__(
        self,
        repository: MusicRepository,
        orchestrator: GenerationOrchestrator,
        playback: PlaybackController | None = None,
        settings: EngineSettings | None = None,
        on_generated: OnGenerated | None = None,
    ):
        self.settings = settings or EngineSettings()
        self.repository = repository
        self.orchestrator = orchestrator
        self.queue = GenerationQueue(orchestrator, on_generated=on_generated)
        self.playback = playback or PlaybackController(
            repository, regenerate=orchestrator.regenerate_audio
        )

    @classmethod
    def from_settings(
        cls,
        settings: EngineSettings | None = None,
        *,
        storage: StorageBackend | None = None,
        providers: Sequence[ProviderClient] | None = None,
        backend: AudioBackend | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        mapper: ParameterMapper | None = None,
        synthesizer: ProceduralSynthesizer | None = None,
        on_generated: OnGenerated | None = None,
    ) -> MoodSoundEngine:
        settings = settings or EngineSettings.from_env()
        if storage is None:
            storage = FileStorage(settings.storage_dir) if settings.storage_dir else InMemoryStorage()
        if providers is None:
            providers = build_providers(settings, transport=transport)
        repository = MusicRepository(storage)
        orchestrator = GenerationOrchestrator(
            providers,
            repository,
            synthesizer=synthesizer or ProceduralSynthesizer(settings.sample_rate),
            mapper=mapper,
            settings=settings,
        )
        playback = PlaybackController(repository, backend, regenerate=orchestrator.regenerate_audio)
        log.info(
            "Engine ready: %d provider(s), storage=%s",
            len(orchestrator.providers),
            type(storage).__name__,
        )
        return cls(repository, orchestrator, playback, settings, on_generated)

    # ── Generation ──────────────────────────────────────────────────

    async def request_generation(self, user_id: str, entry: MoodEntry) -> GeneratedMusic | None:
        """Generate now, or queue behind the generation in flight (returns None)."""
        return await self.queue.enqueue_or_run(user_id, entry)

    def is_generating(self) -> bool:
        return self.queue.is_generating()

    def queue_length(self) -> int:
        return self.queue.queue_length()

    async def join(self) -> None:
        await self.queue.join()

    def preview_parameters(self, entry: MoodEntry) -> MusicParameters:
        return self.orchestrator.mapper.map(entry)

    def provider_status(self) -> dict:
        s = self.settings
        return {
            "providers": [p.name for p in self.orchestrator.providers],
            "configured": {
                "elevenlabs": bool(s.elevenlabs_api_key),
                "replicate": bool(s.replicate_api_token),
                "huggingface": bool(s.huggingface_api_token),
            },
            "enabled": {
                "elevenlabs": s.elevenlabs_enabled,
                "replicate": s.replicate_enabled,
                "huggingface": s.huggingface_enabled,
            },
            "fallback": "procedural",
            "max_retries": s.max_retries,
        }

    # ── Artifacts ───────────────────────────────────────────────────

    async def retrieve_music(self, user_id: str, music_id: str) -> GeneratedMusic | None:
        return await self.repository.get(user_id, music_id)

    async def list_music(self, user_id: str) -> list[GeneratedMusic]:
        return await self.repository.list_for_user(user_id)

    async def find_music_for_entry(self, user_id: str, entry_id: str) -> GeneratedMusic | None:
        return await self.repository.find_for_entry(user_id, entry_id)

    async def get_audio(self, music: GeneratedMusic) -> bytes | None:
        return await self.repository.get_audio(music.audio_url)

    async def delete_music(self, user_id: str, music_id: str) -> bool:
        if self.playback.current_music_id == music_id:
            self.playback.stop()
        try:
            return await self.repository.delete(user_id, music_id)
        except PersistenceError as e:
            log.error(f"Failed to delete music {music_id}: {e}")
            return False

    # ── Playback ────────────────────────────────────────────────────

    async def play(self, music_id: str, user_id: str) -> bool:
        return await self.playback.play(music_id, user_id)

    def pause(self) -> bool:
        return self.playback.pause()

    def resume(self) -> bool:
        return self.playback.resume()

    def stop(self) -> bool:
        return self.playback.stop()

    def seek(self, seconds: float) -> bool:
        return self.playback.seek(seconds)

    def set_volume(self, volume: float) -> bool:
        return self.playback.set_volume(volume)

    def set_repeat(self, repeat: bool) -> bool:
        return self.playback.set_repeat(repeat)

    def playback_status(self) -> PlaybackStatus:
        return self.playback.status()
