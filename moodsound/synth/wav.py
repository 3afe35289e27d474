"""Minimal RIFF/WAVE codec for mono 16-bit PCM."""

from __future__ import annotations

import io
import struct
import wave

from pydantic import BaseModel

WAV_HEADER_SIZE = 44
PCM_FORMAT = 1
BITS_PER_SAMPLE = 16
BYTES_PER_SAMPLE = BITS_PER_SAMPLE // 8

# RIFF size, "WAVE", "fmt " chunk (size 16), "data" chunk header; used to validate
_HEADER = struct.Struct("<4sI4s4sIHHIIHH4sI")


class WavHeader(BaseModel):
    sample_rate: int
    channels: int
    bits_per_sample: int
    byte_rate: int
    block_align: int
    data_size: int
    riff_size: int

    @property
    def sample_count(self) -> int:
        return self.data_size // self.block_align if self.block_align else 0

    @property
    def duration(self) -> float:
        return self.sample_count / self.sample_rate if self.sample_rate else 0.0


def encode_wav(pcm: bytes, sample_rate: int, channels: int = 1) -> bytes:
    """Wrap little-endian int16 PCM bytes in a canonical 44-byte WAV header."""
    block_align = channels * BYTES_PER_SAMPLE
    if len(pcm) % block_align:
        raise ValueError(f"PCM length {len(pcm)} is not a multiple of {block_align}")
    buf = io.BytesIO()
    with wave.open(buf, "wb") as wf:
        wf.setnchannels(channels)
        wf.setsampwidth(BYTES_PER_SAMPLE)
        wf.setframerate(sample_rate)
        wf.writeframes(pcm)
    return buf.getvalue()


def read_wav_header(data: bytes) -> WavHeader:
    """Parse and sanity-check a canonical WAV header.

    Raises ValueError when the bytes are not a PCM WAV file this codec wrote.
    """
    if len(data) < WAV_HEADER_SIZE:
        raise ValueError(f"WAV data too short: {len(data)} bytes")
    (
        riff,
        riff_size,
        wave_id,
        fmt_id,
        fmt_size,
        audio_format,
        channels,
        sample_rate,
        byte_rate,
        block_align,
        bits_per_sample,
        data_id,
        data_size,
    ) = _HEADER.unpack_from(data)
    if riff != b"RIFF" or wave_id != b"WAVE" or fmt_id != b"fmt " or data_id != b"data":
        raise ValueError("Not a canonical RIFF/WAVE file")
    if fmt_size != 16 or audio_format != PCM_FORMAT:
        raise ValueError(f"Unsupported WAV format {audio_format} (fmt size {fmt_size})")
    if block_align != channels * bits_per_sample // 8 or byte_rate != sample_rate * block_align:
        raise ValueError("Inconsistent WAV fmt chunk")
    if riff_size != 36 + data_size:
        raise ValueError(f"RIFF size {riff_size} does not match data size {data_size}")
    return WavHeader(
        sample_rate=sample_rate,
        channels=channels,
        bits_per_sample=bits_per_sample,
        byte_rate=byte_rate,
        block_align=block_align,
        data_size=data_size,
        riff_size=riff_size,
    )
