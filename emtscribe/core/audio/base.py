"""Audio source abstractions consumed by the segmenter."""

from __future__ import annotations

import abc
from dataclasses import dataclass
from typing import Optional

import numpy as np


@dataclass
class SourceInfo:
    """Format of the frames produced by an audio source."""

    name: str
    sample_rate: int
    channels: int
    device: Optional[str] = None


class AudioSource(abc.ABC):
    """Microphone-like stream that yields ``(frames, channels)`` numpy blocks."""

    info: SourceInfo

    @abc.abstractmethod
    def start(self) -> None:
        """Open the device and begin buffering blocks."""

    @abc.abstractmethod
    def stop(self) -> None:
        """Stop producing new blocks; buffered blocks remain readable."""

    @abc.abstractmethod
    def close(self) -> None:
        """Release the device."""

    @abc.abstractmethod
    def read(self, timeout: Optional[float] = None) -> Optional[np.ndarray]:
        """Return the next buffered block, or ``None`` when none is ready."""


class CaptureError(RuntimeError):
    """Raised when an audio source cannot be opened."""


__all__ = ["AudioSource", "CaptureError", "SourceInfo"]
