"""Mood entry as handed to the engine by the mood-entry save flow."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, field_validator


class MoodEntry(BaseModel):
    """A user-submitted mood record. Read-only to the engine."""

    model_config = ConfigDict(frozen=True)

    entry_id: str = Field(description="Unique identifier of the mood entry")
    mood_rating: int = Field(ge=1, le=10, description="Mood rating from 1 (lowest) to 10")
    emotion_tags: tuple[str, ...] = Field(
        default=(),
        description="Emotion tags, e.g. ('happy', 'grateful'); matched case-insensitively",
    )
    reflection: str = Field(default="", description="Free-text reflection, may be empty")

    @field_validator("emotion_tags", mode="before")
    @classmethod
    def _coerce_tags(cls, value):
        if value is None:
            return ()
        if isinstance(value, str):
            return (value,)
        return tuple(value)


class GenerationQueueEntry(BaseModel):
    """A generation request waiting for the one in flight to finish."""

    user_id: str
    mood_entry: MoodEntry
