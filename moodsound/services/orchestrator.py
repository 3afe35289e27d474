"""Generation pipeline: mood entry -> parameters -> audio -> persisted artifact.

Providers are tried in priority order, each with a bounded retry budget. When
all of them are exhausted the procedural synthesizer renders the clip locally,
so a request always ends with a GeneratedMusic (possibly without audio if
synthesis or storage fail).
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Sequence

from moodsound.config import EngineSettings
from moodsound.models.mood import MoodEntry
from moodsound.models.music import GeneratedMusic, MusicParameters, MusicSummary
from moodsound.services.parameter_mapper import ParameterMapper, build_prompt, mood_label
from moodsound.services.providers import ProviderClient, ProviderError
from moodsound.services.storage import MusicRepository, PersistenceError
from moodsound.synth.synthesizer import ProceduralSynthesizer, SynthesisError, SynthesizedAudio

log = logging.getLogger(__name__)

PROVIDER_TEMPO = 120
PROVIDER_KEY = "Ambient"
PROVIDER_MOOD = "AI Generated"

Sleep = Callable[[float], Awaitable[None]]


def provider_summary(provider_name: str) -> MusicSummary:
    """Placeholder metadata for provider audio; the real tempo and key are unknown."""
    return MusicSummary(
        tempo=PROVIDER_TEMPO,
        key=PROVIDER_KEY,
        instruments=[f"AI Generated ({provider_name})"],
        mood=PROVIDER_MOOD,
    )


def parameter_summary(parameters: MusicParameters, mood: str) -> MusicSummary:
    return MusicSummary(
        tempo=parameters.tempo,
        key=parameters.key_signature,
        instruments=list(parameters.instrumentation),
        mood=mood,
    )


class GenerationOrchestrator:
    """Runs a single generation request end to end."""

    def __init__(
        self,
        providers: Sequence[ProviderClient],
        repository: MusicRepository,
        synthesizer: ProceduralSynthesizer | None = None,
        mapper: ParameterMapper | None = None,
        settings: EngineSettings | None = None,
        sleep: Sleep = asyncio.sleep,
    ):
        self.settings = settings or EngineSettings()
        self.providers = list(providers)
        self.repository = repository
        self.synthesizer = synthesizer or ProceduralSynthesizer(self.settings.sample_rate)
        self.mapper = mapper or ParameterMapper()
        self._sleep = sleep

    async def generate(self, user_id: str, entry: MoodEntry) -> GeneratedMusic:
        """Produce and persist music for ``entry``. Never raises.

        Returns an artifact with an empty ``audio_url`` and zero duration when
        no audio could be produced or stored.
        """
        label = mood_label(entry.mood_rating)
        parameters = self.mapper.map(entry)
        music = GeneratedMusic(
            user_id=user_id,
            entry_id=entry.entry_id,
            music_parameters=parameter_summary(parameters, label),
        )
        log.info(
            f"[{entry.entry_id}] Generating music (rating={entry.mood_rating}, mood={label}, "
            f"tempo={parameters.tempo:.0f}, key={parameters.key_signature})"
        )

        try:
            prompt = build_prompt(entry)
            for provider in self.providers:
                data = await self._try_provider(provider, prompt, entry.entry_id)
                if data is None:
                    continue
                music = music.model_copy(
                    update={
                        "duration": provider.clip_seconds,
                        "audio_format": provider.audio_format,
                        "source": provider.name,
                        "music_parameters": provider_summary(provider.name),
                    }
                )
                return await self._persist(music, data)

            if self.providers:
                log.warning(f"[{entry.entry_id}] All providers failed, using procedural synthesis")

            try:
                audio = await self._synthesize(parameters, self.settings.duration_seconds, label)
            except SynthesisError as e:
                log.error(f"[{entry.entry_id}] Procedural synthesis failed: {e}")
                return music

            music = music.model_copy(
                update={
                    "duration": audio.duration,
                    "audio_format": audio.audio_format,
                    "source": "procedural",
                }
            )
            return await self._persist(music, audio.data)
        except Exception as e:
            log.error(f"[{entry.entry_id}] Unexpected generation failure: {e}", exc_info=True)
            return music.model_copy(update={"audio_url": "", "duration": 0.0})

    async def _try_provider(self, provider: ProviderClient, prompt: str, entry_id: str) -> bytes | None:
        """Up to ``max_retries`` attempts; None when the provider is given up on."""
        attempts = self.settings.max_retries
        for attempt in range(attempts):
            try:
                data = await provider.generate(prompt)
                log.info(f"[{entry_id}] {provider.name} succeeded on attempt {attempt + 1}")
                return data
            except ProviderError as e:
                log.warning(
                    "[%s] %s attempt %d/%d failed: %s", entry_id, provider.name, attempt + 1, attempts, e
                )
                if not e.transient:
                    log.info(f"[{entry_id}] {provider.name} error is not retryable, moving on")
                    return None
            except Exception as e:
                log.error(f"[{entry_id}] {provider.name} raised unexpectedly: {e}", exc_info=True)
                return None

            if attempt + 1 < attempts:
                await self._sleep(self.settings.retry_base_delay * (attempt + 1))
        return None

    async def _synthesize(self, parameters: MusicParameters, duration: float, mood: str) -> SynthesizedAudio:
        return await asyncio.to_thread(self.synthesizer.synthesize, parameters, duration, mood=mood)

    async def _persist(self, music: GeneratedMusic, data: bytes) -> GeneratedMusic:
        try:
            locator = await self.repository.store_audio(music.music_id, music.audio_format, data)
            music = music.model_copy(update={"audio_url": locator})
            await self.repository.store(music)
        except PersistenceError as e:
            log.error(f"[{music.entry_id}] Failed to persist music {music.music_id}: {e}")
            await self.repository.discard(music)
            return music.model_copy(update={"audio_url": "", "duration": 0.0})
        return music

    async def regenerate_audio(self, user_id: str, music_id: str) -> GeneratedMusic | None:
        """Re-render audio for a stored artifact whose audio has gone missing.

        Always uses the procedural synthesizer, with parameters rebuilt from
        the stored summary. Returns the updated artifact, or None on failure.
        """
        try:
            music = await self.repository.get(user_id, music_id)
        except PersistenceError as e:
            log.error(f"Cannot load music {music_id} for regeneration: {e}")
            return None
        if music is None:
            log.warning(f"Cannot regenerate unknown music {music_id}")
            return None

        parameters = self.mapper.reconstruct(music.music_parameters)
        duration = music.duration if music.duration > 0 else self.settings.duration_seconds
        try:
            audio = await self._synthesize(parameters, duration, music.music_parameters.mood)
        except SynthesisError as e:
            log.error(f"Regeneration of {music_id} failed: {e}")
            return None

        try:
            locator = await self.repository.store_audio(music_id, audio.audio_format, audio.data)
            music = music.model_copy(
                update={
                    "audio_url": locator,
                    "duration": audio.duration,
                    "audio_format": audio.audio_format,
                    "source": "procedural",
                }
            )
            await self.repository.store(music)
        except PersistenceError as e:
            log.error(f"Failed to store regenerated audio for {music_id}: {e}")
            return None
        log.info("Regenerated %.2fs of audio for music %s", audio.duration, music_id)
        return music
