"""Encoding and inspection of 16-bit PCM wave segments."""

from __future__ import annotations

import io
import struct
import wave
from dataclasses import dataclass
from pathlib import Path

import numpy as np

SAMPLE_WIDTH = 2  # 16-bit PCM
PCM_FORMAT = 1
HEADER_SIZE = 44


@dataclass(frozen=True)
class WavHeader:
    riff_size: int
    audio_format: int
    channels: int
    sample_rate: int
    byte_rate: int
    block_align: int
    bits_per_sample: int
    data_size: int

    @property
    def sample_count(self) -> int:
        """Total samples across channels (``data_size / 2`` for 16-bit)."""

        return self.data_size // (self.bits_per_sample // 8)

    @property
    def frames(self) -> int:
        return self.sample_count // max(self.channels, 1)


def to_int16(samples: np.ndarray, channels: int) -> np.ndarray:
    """Return an interleavable ``(frames, channels)`` int16 array."""

    data = np.asarray(samples)
    if data.ndim == 1:
        data = data[:, np.newaxis]
    if data.shape[1] != channels:
        if data.shape[1] == 1:
            data = np.repeat(data, channels, axis=1)
        else:
            raise ValueError(
                f"Channel mismatch when encoding audio: got {data.shape[1]}, expected {channels}"
            )
    if data.dtype == np.int16:
        return data
    clipped = np.clip(data.astype(np.float32, copy=False), -1.0, 1.0)
    return (clipped * 32767.0).astype(np.int16)


def encode_wav(samples: np.ndarray, sample_rate: int, channels: int = 1) -> bytes:
    """Encode samples as a self-contained RIFF/WAVE byte stream."""

    pcm = to_int16(samples, channels)
    buffer = io.BytesIO()
    with wave.open(buffer, "wb") as wf:
        wf.setnchannels(channels)
        wf.setsampwidth(SAMPLE_WIDTH)
        wf.setframerate(sample_rate)
        wf.setnframes(pcm.shape[0])
        wf.writeframes(pcm.tobytes())
    return buffer.getvalue()


def read_wav_header(data: bytes) -> WavHeader:
    """Parse the canonical 44-byte header of a PCM wave file."""

    if len(data) < HEADER_SIZE:
        raise ValueError(f"WAV data too short: {len(data)} bytes")
    riff, riff_size, wave_id = struct.unpack_from("<4sI4s", data, 0)
    if riff != b"RIFF" or wave_id != b"WAVE":
        raise ValueError("Not a RIFF/WAVE stream")

    offset = 12
    fmt = None
    while offset + 8 <= len(data):
        chunk_id, chunk_size = struct.unpack_from("<4sI", data, offset)
        body = offset + 8
        if chunk_id == b"fmt ":
            fmt = struct.unpack_from("<HHIIHH", data, body)
        elif chunk_id == b"data":
            if fmt is None:
                raise ValueError("data chunk precedes fmt chunk")
            audio_format, channels, sample_rate, byte_rate, block_align, bits = fmt
            return WavHeader(
                riff_size=riff_size,
                audio_format=audio_format,
                channels=channels,
                sample_rate=sample_rate,
                byte_rate=byte_rate,
                block_align=block_align,
                bits_per_sample=bits,
                data_size=chunk_size,
            )
        offset = body + chunk_size + (chunk_size % 2)
    raise ValueError("WAV stream has no data chunk")


def read_wav_file(path: Path) -> WavHeader:
    with open(path, "rb") as handle:
        return read_wav_header(handle.read(4096))


__all__ = [
    "HEADER_SIZE",
    "SAMPLE_WIDTH",
    "WavHeader",
    "encode_wav",
    "read_wav_file",
    "read_wav_header",
    "to_int16",
]
