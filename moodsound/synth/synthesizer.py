"""Offline procedural synthesizer, the guaranteed fallback when providers fail.

Renders a short mono clip from MusicParameters: a four-note cyclic melody on
the key's root, two fixed overtones, a sub-octave bass line and a linear
attack/release envelope, quantised to 16-bit PCM and wrapped in a WAV header.
"""

from __future__ import annotations

import logging
import math
import random
from dataclasses import dataclass

import numpy as np

from moodsound.models.music import MusicParameters
from moodsound.synth.wav import encode_wav

log = logging.getLogger(__name__)

DEFAULT_SAMPLE_RATE = 44100
DEFAULT_BASE_FREQUENCY = 440.0

NOTE_LENGTH = 0.8  # fraction of a beat
ATTACK_SECONDS = 0.1
RELEASE_SECONDS = 0.3
MELODY_GAIN = 0.4
SECOND_HARMONIC_GAIN = 0.15
THIRD_HARMONIC_GAIN = 0.1
BASS_GAIN = 0.2
SAMPLE_LIMIT = 0.8

BASE_FREQUENCIES = {
    "C": 261.63, "C#": 277.18, "D": 293.66, "D#": 311.13,
    "E": 329.63, "F": 349.23, "F#": 369.99, "G": 392.00,
    "G#": 415.30, "A": 440.00, "A#": 466.16, "B": 493.88,
}
_FLATS = {"Db": "C#", "Eb": "D#", "Gb": "F#", "Ab": "G#", "Bb": "A#"}

MAJOR_PATTERN = (0, 4, 7, 12)
MINOR_PATTERN = (0, 3, 7, 10)
PENTATONIC_PATTERN = (0, 5, 7, 12)


class SynthesisError(Exception):
    """Raised when the synthesizer is given inputs it cannot render."""


@dataclass(frozen=True)
class Note:
    start: float
    end: float
    pitch: int  # semitones above the root
    velocity: float


@dataclass(frozen=True)
class SynthesizedAudio:
    data: bytes  # complete WAV file
    sample_rate: int
    sample_count: int

    audio_format = "wav"

    @property
    def duration(self) -> float:
        return self.sample_count / self.sample_rate


def base_frequency(key_signature: str | None) -> float:
    """Frequency of the key's root note, 440 Hz when the root is unknown."""
    root = (key_signature or "A major").split(" ")[0]
    root = _FLATS.get(root, root)
    return BASE_FREQUENCIES.get(root, DEFAULT_BASE_FREQUENCY)


def melody_pattern(mood: str | None) -> tuple[int, ...]:
    label = (mood or "neutral").lower()
    if any(word in label for word in ("joyful", "uplifting", "happy")):
        return MAJOR_PATTERN
    if any(word in label for word in ("melancholic", "sad")):
        return MINOR_PATTERN
    return PENTATONIC_PATTERN


def generate_melody(
    mood: str | None,
    tempo: float,
    duration: float,
    rng: random.Random | None = None,
) -> list[Note]:
    """One note per whole beat, pitch cycling through the mood's pattern.

    Pitch and timing depend only on the inputs; velocity in [0.5, 0.8) comes
    from ``rng``.
    """
    rng = rng or random.Random()
    beat = 60.0 / tempo
    pattern = melody_pattern(mood)
    notes = []
    for i in range(math.floor(duration / beat)):
        start = i * beat
        notes.append(
            Note(
                start=start,
                end=start + beat * NOTE_LENGTH,
                pitch=pattern[i % len(pattern)],
                velocity=0.5 + rng.random() * 0.3,
            )
        )
    return notes


def envelope(t: np.ndarray, duration: float) -> np.ndarray:
    env = np.ones_like(t)
    attack = t < ATTACK_SECONDS
    env[attack] = t[attack] / ATTACK_SECONDS
    release = ~attack & (t > duration - RELEASE_SECONDS)
    env[release] = (duration - t[release]) / RELEASE_SECONDS
    return env


class ProceduralSynthesizer:
    """Renders MusicParameters to a WAV clip without any network I/O."""

    def __init__(self, sample_rate: int = DEFAULT_SAMPLE_RATE, rng: random.Random | None = None):
        self.sample_rate = sample_rate
        self._rng = rng or random.Random()

    def synthesize(
        self,
        parameters: MusicParameters,
        duration: float,
        *,
        mood: str = "neutral",
    ) -> SynthesizedAudio:
        if duration <= 0 or not math.isfinite(duration):
            raise SynthesisError(f"Duration must be positive, got {duration}")
        if self.sample_rate <= 0:
            raise SynthesisError(f"Sample rate must be positive, got {self.sample_rate}")

        samples = self.render(parameters, duration, mood=mood)
        pcm = np.clip(np.floor(samples * 32767), -32768, 32767).astype("<i2").tobytes()
        audio = SynthesizedAudio(
            data=encode_wav(pcm, self.sample_rate),
            sample_rate=self.sample_rate,
            sample_count=len(samples),
        )
        log.info(
            "Synthesized %.2fs of %s audio (key=%s, tempo=%.0f, %d bytes)",
            audio.duration,
            mood,
            parameters.key_signature,
            parameters.tempo,
            len(audio.data),
        )
        return audio

    def render(self, parameters: MusicParameters, duration: float, *, mood: str = "neutral") -> np.ndarray:
        """Float samples in [-SAMPLE_LIMIT, SAMPLE_LIMIT] before quantisation."""
        sample_count = round(duration * self.sample_rate)
        t = np.arange(sample_count, dtype=np.float64) / self.sample_rate
        base = base_frequency(parameters.key_signature)

        signal = np.zeros(sample_count, dtype=np.float64)
        for note in generate_melody(mood, parameters.tempo, duration, self._rng):
            active = (t >= note.start) & (t < note.end)
            freq = base * 2 ** (note.pitch / 12)
            amplitude = note.velocity * parameters.dynamics * MELODY_GAIN
            signal[active] += amplitude * np.sin(2 * np.pi * freq * t[active])

        signal += SECOND_HARMONIC_GAIN * np.sin(2 * np.pi * base * 2 * t)
        signal += THIRD_HARMONIC_GAIN * np.sin(2 * np.pi * base * 3 * t)
        signal += BASS_GAIN * np.sin(2 * np.pi * base * 0.5 * t)

        signal *= envelope(t, duration)
        return np.clip(signal, -SAMPLE_LIMIT, SAMPLE_LIMIT)
