"""Continuous capture split into fixed-length wave segments."""

from __future__ import annotations

import contextlib
import os
import re
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, List, Optional

import numpy as np

from ...data.models import AudioSegment
from ...logging import get_logger
from .base import AudioSource
from .wav import encode_wav, to_int16

LOGGER = get_logger(__name__)

PARTIAL_SUFFIX = ".part"


def segment_pattern(prefix: str) -> re.Pattern[str]:
    """Names produced by :class:`AudioSegmenter` for ``prefix``."""

    return re.compile(rf"^{re.escape(prefix)}_\d{{8}}_\d{{6}}_\d{{6}}_\d{{4}}\.wav$")


class AudioSegmenter:
    """Record from ``source`` and persist one WAV file per ``segment_seconds``.

    Frames are accumulated in memory until a full window is available, then
    written to ``<name>.part`` and renamed into place so observers of the
    directory never see an incomplete file under its final name. ``stop``
    drains whatever the source still holds and flushes the partial window.
    """

    def __init__(
        self,
        source: AudioSource,
        directory: Path,
        segment_seconds: float = 10.0,
        prefix: str = "recorded_audio",
        on_segment: Optional[Callable[[AudioSegment], None]] = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        if segment_seconds <= 0:
            raise ValueError("segment_seconds must be positive")
        self.source = source
        self.directory = Path(directory)
        self.segment_seconds = segment_seconds
        self.prefix = prefix
        self.on_segment = on_segment
        self._clock = clock
        self._lock = threading.Lock()
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._pending: List[np.ndarray] = []
        self._pending_frames = 0
        self._sequence = 0
        self._written: List[AudioSegment] = []

    @property
    def is_recording(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    @property
    def window_frames(self) -> int:
        return max(int(round(self.segment_seconds * self.source.info.sample_rate)), 1)

    def start(self) -> None:
        with self._lock:
            if self.is_recording:
                return
            self.directory.mkdir(parents=True, exist_ok=True)
            self._stop.clear()
            self._written = []
            self.source.start()
            LOGGER.info(
                "Starting continuous recording into %s (%.1fs segments)",
                self.directory,
                self.segment_seconds,
            )
            self._thread = threading.Thread(target=self._run, name="audio-segmenter", daemon=True)
            self._thread.start()

    def stop(self) -> List[AudioSegment]:
        """Stop capture, flush the partial segment and return this run's segments."""

        with self._lock:
            thread = self._thread
            if thread is None:
                return []
            LOGGER.info("Stopping audio recording")
            self._stop.set()
            thread.join()
            self._thread = None

            with contextlib.suppress(Exception):
                self.source.stop()
            while True:
                block = self.source.read(timeout=0)
                if block is None:
                    break
                self._consume(block)
            if self._pending_frames:
                LOGGER.info("Saving the final recording chunk before stopping")
                self._flush(self._pending_frames)
            with contextlib.suppress(Exception):
                self.source.close()
            return list(self._written)

    def _run(self) -> None:
        while not self._stop.is_set():
            block = self.source.read(timeout=0.1)
            if block is not None:
                self._consume(block)

    def _consume(self, block: np.ndarray) -> None:
        pcm = to_int16(block, self.source.info.channels)
        if pcm.shape[0] == 0:
            return
        self._pending.append(pcm)
        self._pending_frames += pcm.shape[0]
        window = self.window_frames
        while self._pending_frames >= window:
            self._flush(window)

    def _flush(self, frames: int) -> None:
        joined = np.concatenate(self._pending, axis=0)
        head, tail = joined[:frames], joined[frames:]
        self._pending = [tail] if tail.shape[0] else []
        self._pending_frames = tail.shape[0]
        try:
            segment = self._write_segment(head)
        except OSError:
            LOGGER.exception("Failed to persist audio segment in %s", self.directory)
            return
        self._written.append(segment)
        if self.on_segment is not None:
            try:
                self.on_segment(segment)
            except Exception:  # pragma: no cover - callbacks should not break capture
                LOGGER.exception("Segment callback raised an exception")

    def _write_segment(self, pcm: np.ndarray) -> AudioSegment:
        info = self.source.info
        created = self._clock()
        self._sequence += 1
        name = f"{self.prefix}_{created:%Y%m%d_%H%M%S_%f}_{self._sequence:04d}.wav"
        final_path = self.directory / name
        partial_path = final_path.with_name(name + PARTIAL_SUFFIX)

        partial_path.write_bytes(encode_wav(pcm, info.sample_rate, info.channels))
        os.replace(partial_path, final_path)

        segment = AudioSegment(
            path=final_path,
            created_at=created,
            sample_rate=info.sample_rate,
            channels=info.channels,
            frames=int(pcm.shape[0]),
        )
        LOGGER.info("Audio segment saved: %s (%.2fs)", final_path.name, segment.duration)
        return segment


__all__ = ["AudioSegmenter", "PARTIAL_SUFFIX", "segment_pattern"]
