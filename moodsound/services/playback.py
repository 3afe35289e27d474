"""Playback of stored artifacts, one session at a time.

State machine::

    IDLE -> LOADING -> PLAYING <-> PAUSED -> (finished) -> IDLE
    any  -> STOPPED -> IDLE

Starting playback always tears down the previous session first. Audio output
itself sits behind the AudioBackend protocol; the shipped ClockedAudioBackend
only keeps time, which is what the HTTP service and tests need.
"""

from __future__ import annotations

import asyncio
import enum
import logging
import time
from typing import Awaitable, Callable, Protocol, runtime_checkable

from pydantic import BaseModel

from moodsound.models.music import GeneratedMusic
from moodsound.services.storage import MusicRepository, PersistenceError
from moodsound.synth.wav import read_wav_header

log = logging.getLogger(__name__)

Regenerate = Callable[[str, str], Awaitable[GeneratedMusic | None]]


class PlaybackError(Exception):
    """Artifact missing, unreadable or rejected by the audio backend."""


class PlaybackState(str, enum.Enum):
    IDLE = "idle"
    LOADING = "loading"
    PLAYING = "playing"
    PAUSED = "paused"
    STOPPED = "stopped"


class PlaybackStatus(BaseModel):
    state: PlaybackState
    is_playing: bool
    current_music_id: str | None = None
    repeat: bool = False
    volume: float = 1.0
    position: float | None = None
    duration: float | None = None


@runtime_checkable
class Sound(Protocol):
    """A loaded track. Methods must not block."""

    duration: float

    def play(self) -> None: ...

    def pause(self) -> None: ...

    def seek(self, seconds: float) -> None: ...

    def set_volume(self, volume: float) -> None: ...

    def position(self) -> float: ...

    def unload(self) -> None: ...


@runtime_checkable
class AudioBackend(Protocol):
    async def load(
        self,
        data: bytes,
        audio_format: str,
        duration_hint: float,
        on_finished: Callable[[], None],
    ) -> Sound:
        """Prepare ``data`` for playback or raise PlaybackError."""
        ...


class ClockedSound:
    """Tracks play position against a monotonic clock and fires ``on_finished``."""

    def __init__(
        self,
        duration: float,
        on_finished: Callable[[], None],
        clock: Callable[[], float] = time.monotonic,
    ):
        self.duration = duration
        self.volume = 1.0
        self._on_finished = on_finished
        self._clock = clock
        self._offset = 0.0
        self._started_at: float | None = None
        self._timer: asyncio.TimerHandle | None = None

    @property
    def playing(self) -> bool:
        return self._started_at is not None

    def position(self) -> float:
        if self._started_at is None:
            return self._offset
        return min(self.duration, self._offset + self._clock() - self._started_at)

    def play(self) -> None:
        if self.playing:
            return
        self._started_at = self._clock()
        remaining = max(0.0, self.duration - self._offset)
        self._timer = asyncio.get_running_loop().call_later(remaining, self._finish)

    def pause(self) -> None:
        if not self.playing:
            return
        self._offset = self.position()
        self._started_at = None
        self._cancel_timer()

    def seek(self, seconds: float) -> None:
        was_playing = self.playing
        self.pause()
        self._offset = min(max(seconds, 0.0), self.duration)
        if was_playing:
            self.play()

    def set_volume(self, volume: float) -> None:
        self.volume = volume

    def unload(self) -> None:
        self._cancel_timer()
        self._started_at = None
        self._offset = 0.0

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _finish(self) -> None:
        self._timer = None
        self._started_at = None
        self._offset = self.duration
        self._on_finished()


class ClockedAudioBackend:
    """Headless backend: validates the payload and keeps time, produces no sound."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock

    async def load(
        self,
        data: bytes,
        audio_format: str,
        duration_hint: float,
        on_finished: Callable[[], None],
    ) -> ClockedSound:
        if not data:
            raise PlaybackError("Audio payload is empty")
        if audio_format == "wav":
            try:
                duration = read_wav_header(data).duration
            except ValueError as e:
                raise PlaybackError(f"Corrupt WAV audio: {e}") from e
        else:
            duration = duration_hint
        if duration <= 0:
            raise PlaybackError(f"Cannot determine duration of {audio_format} audio")
        return ClockedSound(duration, on_finished, self._clock)


class PlaybackController:
    """Owns the single active playback session.

    Every public operation returns a boolean (or a status value) and never
    raises; failures are logged.
    """

    def __init__(
        self,
        repository: MusicRepository,
        backend: AudioBackend | None = None,
        regenerate: Regenerate | None = None,
    ):
        self.repository = repository
        self.backend = backend or ClockedAudioBackend()
        self.regenerate = regenerate
        self.state = PlaybackState.IDLE
        self._sound: Sound | None = None
        self._music: GeneratedMusic | None = None
        self._repeat = False
        self._volume = 1.0
        self._session = 0

    @property
    def current_music_id(self) -> str | None:
        return self._music.music_id if self._music else None

    async def play(self, music_id: str, user_id: str) -> bool:
        self.stop()
        self._session += 1
        session = self._session
        self.state = PlaybackState.LOADING
        try:
            music, sound = await self._load(user_id, music_id, session)
        except PlaybackError as e:
            log.error(f"Cannot play music {music_id}: {e}")
            if session == self._session:
                self.state = PlaybackState.IDLE
            return False
        except Exception as e:
            log.error(f"Loading music {music_id} failed: {e}", exc_info=True)
            if session == self._session:
                self.state = PlaybackState.IDLE
            return False

        if session != self._session:
            # stop() or another play() arrived while loading
            self._unload(sound)
            return False

        self._music = music
        self._sound = sound
        try:
            sound.set_volume(self._volume)
            sound.play()
        except Exception as e:
            log.error(f"Backend refused to play {music_id}: {e}", exc_info=True)
            self.stop()
            return False
        self.state = PlaybackState.PLAYING
        log.info(f"Playing music {music_id} ({sound.duration:.1f}s)")
        return True

    async def _load(self, user_id: str, music_id: str, session: int) -> tuple[GeneratedMusic, Sound]:
        try:
            music = await self.repository.get(user_id, music_id)
        except PersistenceError as e:
            raise PlaybackError(str(e)) from e
        if music is None:
            raise PlaybackError("not found")

        try:
            return music, await self._open(music, session)
        except PlaybackError as e:
            if self.regenerate is None:
                raise
            log.warning(f"Audio for {music_id} unavailable ({e}), regenerating")

        regenerated = await self.regenerate(user_id, music_id)
        if regenerated is None:
            raise PlaybackError("regeneration failed")
        return regenerated, await self._open(regenerated, session)

    async def _open(self, music: GeneratedMusic, session: int) -> Sound:
        try:
            data = await self.repository.get_audio(music.audio_url)
        except PersistenceError as e:
            raise PlaybackError(str(e)) from e
        if not data:
            raise PlaybackError(f"no audio stored at {music.audio_url or '<empty locator>'}")
        return await self.backend.load(
            data,
            music.audio_format,
            music.duration,
            lambda: self._on_finished(session),
        )

    def _on_finished(self, session: int) -> None:
        if session != self._session or self._sound is None:
            return
        if self._repeat:
            log.debug("Track finished, repeating %s", self.current_music_id)
            try:
                self._sound.seek(0.0)
                self._sound.play()
                return
            except Exception as e:
                log.error(f"Repeat failed: {e}", exc_info=True)
        log.info(f"Finished playing {self.current_music_id}")
        self._teardown()
        self.state = PlaybackState.IDLE

    def pause(self) -> bool:
        if self.state != PlaybackState.PLAYING or self._sound is None:
            return False
        try:
            self._sound.pause()
        except Exception as e:
            log.error(f"Pause failed: {e}", exc_info=True)
            return False
        self.state = PlaybackState.PAUSED
        return True

    def resume(self) -> bool:
        if self.state != PlaybackState.PAUSED or self._sound is None:
            return False
        try:
            self._sound.play()
        except Exception as e:
            log.error(f"Resume failed: {e}", exc_info=True)
            return False
        self.state = PlaybackState.PLAYING
        return True

    def stop(self) -> bool:
        """Unload whatever is active; safe from any state."""
        self._session += 1
        if self._sound is not None:
            self.state = PlaybackState.STOPPED
            log.info(f"Stopped music {self.current_music_id}")
        self._teardown()
        self.state = PlaybackState.IDLE
        return True

    def _teardown(self) -> None:
        sound, self._sound, self._music = self._sound, None, None
        self._repeat = False
        if sound is not None:
            self._unload(sound)

    @staticmethod
    def _unload(sound: Sound) -> None:
        try:
            sound.unload()
        except Exception as e:
            log.warning(f"Unload failed: {e}", exc_info=True)

    def seek(self, seconds: float) -> bool:
        if self._sound is None:
            return False
        try:
            self._sound.seek(min(max(seconds, 0.0), self._sound.duration))
        except Exception as e:
            log.error(f"Seek failed: {e}", exc_info=True)
            return False
        return True

    def set_volume(self, volume: float) -> bool:
        """Clamp to [0, 1] and remember it; False when nothing is loaded."""
        self._volume = min(max(volume, 0.0), 1.0)
        if self._sound is None:
            return False
        try:
            self._sound.set_volume(self._volume)
        except Exception as e:
            log.error(f"Volume change failed: {e}", exc_info=True)
            return False
        return True

    def set_repeat(self, repeat: bool) -> bool:
        if self._sound is None:
            return False
        self._repeat = repeat
        return True

    def position(self) -> float | None:
        if self._sound is None:
            return None
        try:
            return self._sound.position()
        except Exception as e:
            log.error(f"Position query failed: {e}", exc_info=True)
            return None

    def status(self) -> PlaybackStatus:
        return PlaybackStatus(
            state=self.state,
            is_playing=self.state == PlaybackState.PLAYING,
            current_music_id=self.current_music_id,
            repeat=self._repeat,
            volume=self._volume,
            position=self.position(),
            duration=self._sound.duration if self._sound else None,
        )
