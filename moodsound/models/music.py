"""Music parameter and generated-artifact models."""

from __future__ import annotations

from datetime import datetime, timezone
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field

SCALE_TYPES = (
    "minor",
    "major",
    "dorian",
    "mixolydian",
    "lydian",
    "phrygian",
    "diminished",
)


class MusicParameters(BaseModel):
    """Musical rendering of a mood entry.

    Produced fresh for every request by the parameter mapper and consumed by
    the procedural synthesizer. Never persisted as-is; artifacts keep only
    the public ``MusicSummary`` projection.
    """

    model_config = ConfigDict(frozen=True)

    tempo: float = Field(ge=40, le=200, description="Tempo in BPM")
    key_signature: str = Field(description="Root note and mode, e.g. 'C minor'")
    scale_type: str = Field(description=f"One of {', '.join(SCALE_TYPES)}")
    density: float = Field(ge=0.0, le=1.0, description="Fraction of beats carrying notes")
    dynamics: float = Field(ge=0.0, le=1.0, description="Loudness fraction")
    instrumentation: tuple[str, ...] = Field(description="Deduplicated instrument labels")
    reverb: float = Field(ge=0.0, le=1.0)
    harmony: str = Field(description="Descriptive harmony label, e.g. 'dissonant'")
    complexity: float = Field(ge=0.0, le=1.0)
    rhythm_complexity: float | None = Field(
        default=None, ge=0.0, le=1.0, description="Set only by rhythm-bearing emotion tags"
    )

    @property
    def root_note(self) -> str:
        return self.key_signature.split(" ")[0] if self.key_signature else ""


class MusicSummary(BaseModel):
    """Public projection of the parameters an artifact was made with."""

    tempo: float
    key: str
    instruments: list[str] = Field(default_factory=list)
    mood: str = "neutral"


class GeneratedMusic(BaseModel):
    """A persisted generation result. Owned by storage once written."""

    music_id: str = Field(default_factory=lambda: str(uuid4()))
    user_id: str
    entry_id: str = Field(description="Back-reference to the mood entry")
    generated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    audio_url: str = Field(default="", description="Storage locator of the audio bytes")
    duration: float = Field(default=0.0, ge=0.0, description="Duration in seconds")
    audio_format: str = Field(default="wav", description="'wav' or the provider's format")
    source: str = Field(default="procedural", description="Provider name or 'procedural'")
    music_parameters: MusicSummary

    def has_audio(self) -> bool:
        return bool(self.audio_url) and self.duration > 0
