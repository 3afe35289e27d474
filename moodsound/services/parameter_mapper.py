"""Map a mood entry onto musical parameters.

Three layers, applied in order:
  1. Base row: fixed table keyed by mood rating 1 to 10
  2. Emotion tags: per-tag modifiers, applied cumulatively in tag order
  3. Reflection: keyword sentiment scan of the free text

The only non-deterministic decision is whether a scale preference found in the
reflection replaces the scale chosen by steps 1 and 2 (70% of the time). The random
source is injected so callers and tests can pin it.
"""

from __future__ import annotations

import logging
import random
from types import MappingProxyType
from typing import Any, Mapping, Protocol

from moodsound.models.mood import MoodEntry
from moodsound.models.music import MusicParameters, MusicSummary

log = logging.getLogger(__name__)

MIN_TEMPO = 40
MAX_TEMPO = 200
MIN_INTENSITY_LEVEL = 0.1
SCALE_PREFERENCE_PROBABILITY = 0.7
DEFAULT_PROMPT = "peaceful ambient soundscape"

# Representative rating for each mood label, used when rebuilding parameters
LABEL_RATINGS = MappingProxyType(
    {"melancholic": 2, "contemplative": 4, "uplifting": 6, "joyful": 9}
)
NEUTRAL_RATING = 5
_KNOWN_ROOTS = frozenset(
    ("C", "C#", "Db", "D", "D#", "Eb", "E", "F", "F#", "Gb", "G", "G#", "Ab", "A", "A#", "Bb", "B")
)

_PUNCTUATION = ".,!?;:'\"()"


def _frozen(table: dict[Any, dict[str, Any]]) -> Mapping[Any, Mapping[str, Any]]:
    return MappingProxyType({key: MappingProxyType(row) for key, row in table.items()})


# ── Base rows ───────────────────────────────────────────────────────
# Low ratings: slow, minor, sparse, wet. High ratings: fast, bright, dense.

MOOD_BASE_PARAMETERS = _frozen(
    {
        1: {
            "tempo": 60,
            "key_signature": "C minor",
            "scale_type": "minor",
            "density": 0.3,
            "dynamics": 0.4,
            "instrumentation": ("piano", "strings"),
            "reverb": 0.8,
            "complexity": 0.3,
            "harmony": "dissonant",
        },
        2: {
            "tempo": 65,
            "key_signature": "G minor",
            "scale_type": "minor",
            "density": 0.4,
            "dynamics": 0.5,
            "instrumentation": ("piano", "cello"),
            "reverb": 0.7,
            "complexity": 0.4,
            "harmony": "minor",
        },
        3: {
            "tempo": 72,
            "key_signature": "D minor",
            "scale_type": "minor",
            "density": 0.5,
            "dynamics": 0.5,
            "instrumentation": ("piano", "guitar", "strings"),
            "reverb": 0.6,
            "complexity": 0.5,
            "harmony": "minor_major",
        },
        4: {
            "tempo": 80,
            "key_signature": "A minor",
            "scale_type": "dorian",
            "density": 0.5,
            "dynamics": 0.6,
            "instrumentation": ("piano", "guitar", "bass"),
            "reverb": 0.5,
            "complexity": 0.5,
            "harmony": "dorian",
        },
        5: {
            "tempo": 88,
            "key_signature": "F major",
            "scale_type": "mixolydian",
            "density": 0.6,
            "dynamics": 0.6,
            "instrumentation": ("piano", "guitar", "bass", "light percussion"),
            "reverb": 0.5,
            "complexity": 0.6,
            "harmony": "mixolydian",
        },
        6: {
            "tempo": 96,
            "key_signature": "D major",
            "scale_type": "major",
            "density": 0.6,
            "dynamics": 0.7,
            "instrumentation": ("piano", "guitar", "bass", "percussion"),
            "reverb": 0.4,
            "complexity": 0.6,
            "harmony": "major",
        },
        7: {
            "tempo": 104,
            "key_signature": "A major",
            "scale_type": "major",
            "density": 0.7,
            "dynamics": 0.7,
            "instrumentation": ("piano", "guitar", "bass", "percussion", "synth"),
            "reverb": 0.4,
            "complexity": 0.7,
            "harmony": "major",
        },
        8: {
            "tempo": 112,
            "key_signature": "E major",
            "scale_type": "lydian",
            "density": 0.7,
            "dynamics": 0.8,
            "instrumentation": ("piano", "guitar", "bass", "percussion", "synth"),
            "reverb": 0.3,
            "complexity": 0.7,
            "harmony": "lydian",
        },
        9: {
            "tempo": 120,
            "key_signature": "B major",
            "scale_type": "lydian",
            "density": 0.8,
            "dynamics": 0.8,
            "instrumentation": (
                "piano", "guitar", "bass", "full percussion", "synth", "brass",
            ),
            "reverb": 0.3,
            "complexity": 0.8,
            "harmony": "lydian",
        },
        10: {
            "tempo": 132,
            "key_signature": "E major",
            "scale_type": "lydian",
            "density": 0.9,
            "dynamics": 0.9,
            "instrumentation": (
                "piano", "guitar", "bass", "full percussion", "synth", "brass", "strings",
            ),
            "reverb": 0.2,
            "complexity": 0.9,
            "harmony": "lydian",
        },
    }
)

# ── Emotion tag modifiers ───────────────────────────────────────────
# tempo/reverb are additive deltas; every other field is an override.

EMOTION_MODIFIERS = _frozen(
    {
        # negative
        "sad": {
            "scale": "minor",
            "tempo": -10,
            "instruments": ("cello",),
            "reverb": 0.1,
            "harmony": "dissonant",
        },
        "anxious": {
            "scale": "diminished",
            "tempo": 5,
            "instruments": ("tremolo strings",),
            "rhythm_complexity": 0.7,
            "harmony": "chromatic",
        },
        "angry": {
            "scale": "phrygian",
            "tempo": 10,
            "instruments": ("distorted guitar", "heavy percussion"),
            "dynamics": 0.8,
            "harmony": "power_chords",
        },
        "frustrated": {
            "scale": "minor",
            "tempo": 5,
            "instruments": ("distorted bass",),
            "rhythm_complexity": 0.6,
            "harmony": "minor",
        },
        "tired": {
            "scale": "minor",
            "tempo": -15,
            "instruments": ("soft pad",),
            "density": 0.4,
            "harmony": "ambient",
        },
        # neutral
        "calm": {
            "scale": "major",
            "tempo": -10,
            "instruments": ("acoustic guitar", "soft pad"),
            "reverb": 0.1,
            "harmony": "open_chords",
        },
        "focused": {
            "scale": "major",
            "tempo": 0,
            "instruments": ("piano", "minimal percussion"),
            "rhythm_complexity": 0.4,
            "harmony": "minimal",
        },
        "reflective": {
            "scale": "dorian",
            "tempo": -5,
            "instruments": ("piano", "ambient pad"),
            "reverb": 0.1,
            "harmony": "modal",
        },
        # positive
        "happy": {
            "scale": "major",
            "tempo": 10,
            "instruments": ("bright synth",),
            "dynamics": 0.8,
            "harmony": "major",
        },
        "excited": {
            "scale": "lydian",
            "tempo": 15,
            "instruments": ("bright synth", "full percussion"),
            "dynamics": 0.9,
            "harmony": "lydian",
        },
        "grateful": {
            "scale": "major",
            "tempo": 0,
            "instruments": ("acoustic guitar", "warm pad"),
            "reverb": 0.05,
            "harmony": "warm",
        },
        "peaceful": {
            "scale": "major",
            "tempo": -5,
            "instruments": ("flute", "soft strings"),
            "reverb": 0.1,
            "harmony": "peaceful",
        },
        "energetic": {
            "scale": "major",
            "tempo": 15,
            "instruments": ("electric guitar", "drums"),
            "dynamics": 0.9,
            "harmony": "energetic",
        },
        "creative": {
            "scale": "mixolydian",
            "tempo": 5,
            "instruments": ("synth", "experimental sounds"),
            "complexity": 0.8,
            "harmony": "experimental",
        },
    }
)

# ── Reflection keywords ─────────────────────────────────────────────

SENTIMENT_KEYWORDS = _frozen(
    {
        "struggle": {"tempo": -5, "scale": "minor"},
        "difficult": {"tempo": -5, "scale": "minor"},
        "challenge": {"tempo": 0, "scale": "minor"},
        "stress": {"tempo": 5, "scale": "diminished"},
        "worry": {"tempo": 0, "scale": "minor"},
        "fear": {"tempo": 0, "scale": "diminished"},
        "sad": {"tempo": -10, "scale": "minor"},
        "lonely": {"tempo": -10, "scale": "minor"},
        "tired": {"tempo": -15, "scale": "minor"},
        "exhausted": {"tempo": -15, "scale": "minor"},
        "happy": {"tempo": 10, "scale": "major"},
        "joy": {"tempo": 15, "scale": "lydian"},
        "excited": {"tempo": 15, "scale": "lydian"},
        "grateful": {"tempo": 5, "scale": "major"},
        "thankful": {"tempo": 5, "scale": "major"},
        "peaceful": {"tempo": -5, "scale": "major"},
        "calm": {"tempo": -10, "scale": "major"},
        "love": {"tempo": 0, "scale": "major"},
        "hope": {"tempo": 5, "scale": "major"},
        "inspired": {"tempo": 10, "scale": "lydian"},
        # intensity modifiers, only count next to another keyword
        "very": {"intensity": 0.2},
        "extremely": {"intensity": 0.3},
        "somewhat": {"intensity": -0.1},
        "slightly": {"intensity": -0.2},
    }
)


class RandomSource(Protocol):
    def random(self) -> float: ...


def _clamp(value: float, low: float, high: float) -> float:
    return min(max(value, low), high)


def mood_label(mood_rating: int) -> str:
    """Coarse mood name for a rating, used for artifact metadata and melody choice."""
    if mood_rating <= 3:
        return "melancholic"
    if mood_rating <= 5:
        return "contemplative"
    if mood_rating <= 7:
        return "uplifting"
    return "joyful"


def build_prompt(entry: MoodEntry) -> str:
    """Text prompt sent to providers: the reflection verbatim, or a default phrase."""
    reflection = entry.reflection.strip()
    return reflection or DEFAULT_PROMPT


def tokenize_reflection(text: str) -> list[str]:
    return [word.strip(_PUNCTUATION) for word in text.lower().split()]


class ParameterMapper:
    """Turns a MoodEntry into MusicParameters."""

    def __init__(self, rng: RandomSource | None = None) -> None:
        self._rng = rng or random.Random()

    def map(self, entry: MoodEntry) -> MusicParameters:
        rating = int(_clamp(round(entry.mood_rating), 1, 10))
        params = self.base_parameters(rating)
        params = self.apply_emotion_tags(params, entry.emotion_tags)
        params = self.apply_reflection(params, entry.reflection)
        result = MusicParameters(**params)
        log.debug(
            "Mapped entry %s (rating=%d, tags=%s) -> tempo=%.1f scale=%s",
            entry.entry_id,
            rating,
            list(entry.emotion_tags),
            result.tempo,
            result.scale_type,
        )
        return result

    @staticmethod
    def base_parameters(rating: int) -> dict[str, Any]:
        return dict(MOOD_BASE_PARAMETERS[rating])

    def apply_emotion_tags(self, params: dict[str, Any], tags) -> dict[str, Any]:
        params = dict(params)
        for tag in tags:
            modifier = EMOTION_MODIFIERS.get(tag.lower())
            if modifier is None:
                continue

            params["tempo"] += modifier.get("tempo", 0)
            if "scale" in modifier:
                params["scale_type"] = modifier["scale"]
            if "instruments" in modifier:
                params["instrumentation"] = tuple(
                    dict.fromkeys((*params["instrumentation"], *modifier["instruments"]))
                )
            if "reverb" in modifier:
                params["reverb"] = _clamp(params["reverb"] + modifier["reverb"], 0.0, 1.0)
            for field in ("dynamics", "density", "complexity", "rhythm_complexity"):
                if field in modifier:
                    params[field] = modifier[field]
            if "harmony" in modifier:
                params["harmony"] = modifier["harmony"]

        params["tempo"] = _clamp(params["tempo"], MIN_TEMPO, MAX_TEMPO)
        return params

    def apply_reflection(self, params: dict[str, Any], reflection: str) -> dict[str, Any]:
        params = dict(params)
        words = tokenize_reflection(reflection)
        tempo_delta = 0
        scale_preference = ""
        intensity_delta = 0.0

        for index, word in enumerate(words):
            effect = SENTIMENT_KEYWORDS.get(word)
            if effect is None:
                continue
            tempo_delta += effect.get("tempo", 0)
            if not scale_preference and effect.get("scale"):
                scale_preference = effect["scale"]
            if "intensity" in effect:
                previous_word = words[index - 1] if index > 0 else None
                next_word = words[index + 1] if index + 1 < len(words) else None
                if previous_word in SENTIMENT_KEYWORDS or next_word in SENTIMENT_KEYWORDS:
                    intensity_delta += effect["intensity"]

        params["tempo"] += tempo_delta

        if scale_preference and self._rng.random() < SCALE_PREFERENCE_PROBABILITY:
            params["scale_type"] = scale_preference

        if intensity_delta:
            params["dynamics"] = _clamp(
                params["dynamics"] + intensity_delta, MIN_INTENSITY_LEVEL, 1.0
            )
            params["density"] = _clamp(
                params["density"] + intensity_delta, MIN_INTENSITY_LEVEL, 1.0
            )

        params["tempo"] = _clamp(params["tempo"], MIN_TEMPO, MAX_TEMPO)
        return params

    def reconstruct(self, summary: MusicSummary) -> MusicParameters:
        """Best-effort parameters for an artifact that only kept its public summary.

        Starts from the base row of a rating typical for the stored mood label
        and keeps whatever tempo, key and instruments the summary still has.
        """
        params = self.base_parameters(LABEL_RATINGS.get(summary.mood, NEUTRAL_RATING))
        if MIN_TEMPO <= summary.tempo <= MAX_TEMPO:
            params["tempo"] = summary.tempo
        if summary.key.split(" ")[0] in _KNOWN_ROOTS:
            params["key_signature"] = summary.key
        if summary.instruments:
            params["instrumentation"] = tuple(dict.fromkeys(summary.instruments))
        return MusicParameters(**params)
