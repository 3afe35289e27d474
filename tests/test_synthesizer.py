import math
import random
import struct

import numpy as np
import pytest

from moodsound.models.music import MusicParameters
from moodsound.synth.synthesizer import (
    SAMPLE_LIMIT,
    ProceduralSynthesizer,
    SynthesisError,
    base_frequency,
    generate_melody,
    melody_pattern,
)
from moodsound.synth.wav import WAV_HEADER_SIZE, encode_wav, read_wav_header


def params(**overrides) -> MusicParameters:
    values = {
        "tempo": 120,
        "key_signature": "A major",
        "scale_type": "major",
        "density": 0.6,
        "dynamics": 0.7,
        "instrumentation": ("piano",),
        "reverb": 0.4,
        "harmony": "major",
        "complexity": 0.6,
    }
    values.update(overrides)
    return MusicParameters(**values)


class TestWav:
    def test_header_layout(self):
        """The 44-byte header carries mono 16-bit PCM fields."""
        data = encode_wav(b"\x00\x00" * 10, 44100)
        assert len(data) == WAV_HEADER_SIZE + 20
        assert data[:4] == b"RIFF"
        assert data[8:16] == b"WAVEfmt "
        assert struct.unpack_from("<I", data, 4)[0] == 36 + 20
        assert data[36:40] == b"data"

    def test_read_header(self):
        """read_wav_header recovers rate, channels and sample count."""
        header = read_wav_header(encode_wav(b"\x01\x00" * 8000, 8000))
        assert header.sample_rate == 8000
        assert header.channels == 1
        assert header.bits_per_sample == 16
        assert header.sample_count == 8000
        assert header.duration == 1.0

    def test_rejects_short_data(self):
        """Fewer than 44 bytes is not a WAV file."""
        with pytest.raises(ValueError):
            read_wav_header(b"RIFF")

    def test_rejects_other_containers(self):
        """Non-RIFF payloads such as MP3 frames are rejected."""
        with pytest.raises(ValueError):
            read_wav_header(b"ID3" + b"\x00" * 100)

    def test_rejects_truncated_size(self):
        """A RIFF size that disagrees with the data size is rejected."""
        data = bytearray(encode_wav(b"\x00\x00" * 4, 44100))
        struct.pack_into("<I", data, 4, 999)
        with pytest.raises(ValueError):
            read_wav_header(bytes(data))

    def test_odd_pcm_length(self):
        """PCM must be whole 16-bit samples."""
        with pytest.raises(ValueError):
            encode_wav(b"\x00\x00\x00", 44100)


class TestMelody:
    def test_patterns(self):
        """Mood labels choose major, minor or pentatonic patterns."""
        assert melody_pattern("joyful") == (0, 4, 7, 12)
        assert melody_pattern("uplifting") == (0, 4, 7, 12)
        assert melody_pattern("melancholic") == (0, 3, 7, 10)
        assert melody_pattern("contemplative") == (0, 5, 7, 12)
        assert melody_pattern(None) == (0, 5, 7, 12)

    def test_one_note_per_beat(self):
        """120 BPM over two seconds yields four notes cycling the pattern."""
        notes = generate_melody("joyful", 120, 2.0, random.Random(0))
        assert [n.pitch for n in notes] == [0, 4, 7, 12]
        assert [n.start for n in notes] == [0.0, 0.5, 1.0, 1.5]
        for note in notes:
            assert note.end - note.start == pytest.approx(0.4)
            assert 0.5 <= note.velocity < 0.8

    def test_partial_beats_are_dropped(self):
        """Only whole beats that fit in the duration produce notes."""
        assert len(generate_melody("joyful", 60, 2.5, random.Random(0))) == 2

    def test_pattern_wraps(self):
        """The pattern restarts after four notes."""
        notes = generate_melody("melancholic", 240, 1.5, random.Random(0))
        assert [n.pitch for n in notes] == [0, 3, 7, 10, 0, 3]

    def test_base_frequency(self):
        """Root notes map to their frequencies; unknown roots use 440 Hz."""
        assert base_frequency("C minor") == 261.63
        assert base_frequency("Bb major") == 466.16
        assert base_frequency("Ambient") == 440.0
        assert base_frequency(None) == 440.0


class TestProceduralSynthesizer:
    def test_wav_output(self):
        """One second at 44.1 kHz is 44100 mono 16-bit samples."""
        audio = ProceduralSynthesizer(rng=random.Random(1)).synthesize(params(), 1.0, mood="joyful")
        assert audio.sample_count == 44100
        assert audio.duration == 1.0
        assert audio.audio_format == "wav"
        assert len(audio.data) == WAV_HEADER_SIZE + 44100 * 2
        header = read_wav_header(audio.data)
        assert header.sample_rate == 44100
        assert header.sample_count == 44100

    def test_samples_bounded(self):
        """Mixed samples never exceed the 0.8 safety limit."""
        synth = ProceduralSynthesizer(rng=random.Random(1))
        samples = synth.render(params(dynamics=1.0), 1.0, mood="joyful")
        assert np.max(np.abs(samples)) <= SAMPLE_LIMIT

    def test_envelope_starts_silent(self):
        """The attack ramp starts from zero."""
        synth = ProceduralSynthesizer(rng=random.Random(1))
        samples = synth.render(params(), 0.5)
        assert samples[0] == 0.0
        assert abs(samples[-1]) < 0.01

    def test_seeded_output_is_reproducible(self):
        """The same seed renders byte-identical audio."""
        first = ProceduralSynthesizer(rng=random.Random(7)).synthesize(params(), 0.5)
        second = ProceduralSynthesizer(rng=random.Random(7)).synthesize(params(), 0.5)
        assert first.data == second.data

    def test_sample_count_rounds(self):
        """Sample count is the rounded product of duration and rate."""
        audio = ProceduralSynthesizer(sample_rate=8000, rng=random.Random(0)).synthesize(
            params(), 0.12345
        )
        assert audio.sample_count == round(0.12345 * 8000)

    @pytest.mark.parametrize("duration", [0, -1, math.nan, math.inf])
    def test_invalid_duration(self, duration):
        """Non-positive or non-finite durations raise SynthesisError."""
        with pytest.raises(SynthesisError):
            ProceduralSynthesizer().synthesize(params(), duration)

    def test_invalid_sample_rate(self):
        """A zero sample rate raises SynthesisError."""
        with pytest.raises(SynthesisError):
            ProceduralSynthesizer(sample_rate=0).synthesize(params(), 1.0)
