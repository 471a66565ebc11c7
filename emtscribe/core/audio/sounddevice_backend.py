"""Microphone source powered by sounddevice/PortAudio."""

from __future__ import annotations

import contextlib
import queue
from dataclasses import dataclass
from typing import List, Optional

import numpy as np

from ...logging import get_logger
from .base import AudioSource, CaptureError, SourceInfo

LOGGER = get_logger(__name__)

FALLBACK_SAMPLE_RATES = (44_100, 48_000, 32_000, 22_050, 16_000)


@dataclass
class InputDevice:
    id: int
    name: str
    max_input_channels: int
    default_samplerate: float
    hostapi: str


class SoundDeviceSource(AudioSource):
    """Input stream using the sounddevice library."""

    def __init__(
        self,
        info: SourceInfo,
        device: Optional[int | str] = None,
        block_size: int = 1024,
    ) -> None:
        try:
            import sounddevice as sd
        except ImportError as exc:  # pragma: no cover - optional dependency
            raise CaptureError(
                "sounddevice dependency is required for capture; install emtscribe[audio]"
            ) from exc

        self._sd = sd
        self.info = info
        self._device = device
        self._block_size = block_size
        self._queue: queue.Queue[np.ndarray] = queue.Queue()
        self._stream = None

    def _callback(self, indata, frames, time_info, status) -> None:  # pragma: no cover - runtime only
        if status:
            LOGGER.warning("sounddevice status: %s", status)
        self._queue.put(indata.copy())

    def _sample_rate_candidates(self) -> List[int]:
        candidates = [int(self.info.sample_rate)]
        try:
            default_rate = int(float(self._sd.query_devices(self._device, "input")["default_samplerate"]))
        except Exception as exc:  # pragma: no cover - depends on runtime device
            LOGGER.debug("Failed to query default sample rate for %s: %s", self._device, exc)
        else:
            candidates.append(default_rate)
        candidates.extend(FALLBACK_SAMPLE_RATES)
        ordered: List[int] = []
        for rate in candidates:
            if rate > 0 and rate not in ordered:
                ordered.append(rate)
        return ordered

    def start(self) -> None:
        if self._stream is not None:
            return
        LOGGER.info("Opening microphone %s for %s", self._device or "<default>", self.info.name)

        last_error: Optional[Exception] = None
        requested = int(self.info.sample_rate)
        for sample_rate in self._sample_rate_candidates():
            try:
                stream = self._sd.InputStream(
                    samplerate=sample_rate,
                    channels=self.info.channels,
                    dtype="float32",
                    blocksize=self._block_size,
                    device=self._device,
                    callback=self._callback,
                )
                stream.start()
            except self._sd.PortAudioError as exc:  # pragma: no cover - depends on runtime device
                last_error = exc
                if "sample rate" in str(exc).lower():
                    LOGGER.warning("Device %s rejected %s Hz: %s", self._device, sample_rate, exc)
                    continue
                raise CaptureError(str(exc)) from exc

            if sample_rate != requested:
                LOGGER.warning(
                    "Adjusted sample rate for %s from %s Hz to %s Hz",
                    self.info.name,
                    requested,
                    sample_rate,
                )
            self.info.sample_rate = sample_rate
            self._stream = stream
            return

        raise CaptureError(
            f"Failed to open audio stream for {self.info.name} on {self._device}: {last_error}"
        ) from last_error

    def stop(self) -> None:
        if self._stream is not None:
            LOGGER.info("Stopping microphone for %s", self.info.name)
            with contextlib.suppress(self._sd.PortAudioError):
                self._stream.stop()

    def close(self) -> None:
        if self._stream is not None:
            self._stream.close()
            self._stream = None

    def read(self, timeout: Optional[float] = None) -> Optional[np.ndarray]:
        try:
            if timeout is None or timeout <= 0:
                return self._queue.get_nowait()
            return self._queue.get(timeout=timeout)
        except queue.Empty:
            return None


def list_input_devices() -> List[InputDevice]:
    try:
        import sounddevice as sd
    except ImportError:
        LOGGER.warning("sounddevice not installed; cannot list devices")
        return []

    hostapis = sd.query_hostapis()
    results: List[InputDevice] = []
    for idx, info in enumerate(sd.query_devices()):
        max_input = int(info.get("max_input_channels") or 0)
        if max_input <= 0:
            continue
        results.append(
            InputDevice(
                id=idx,
                name=info["name"],
                max_input_channels=max_input,
                default_samplerate=float(info.get("default_samplerate") or 0.0),
                hostapi=hostapis[info["hostapi"]]["name"] if hostapis else "unknown",
            )
        )
    return results


def format_device_table(devices: Optional[List[InputDevice]] = None) -> str:
    device_list = list_input_devices() if devices is None else list(devices)
    if not device_list:
        return (
            "No input devices detected. Install optional audio support with "
            "`pip install emtscribe[audio]` and ensure a microphone is accessible."
        )
    header = f"{'ID':>3} | {'Name':<40} | {'In':>2} | {'Rate':>7} | Host API"
    lines = [header, "-" * len(header)]
    for device in device_list:
        lines.append(
            f"{device.id:>3} | {device.name:<40.40} | {device.max_input_channels:>2} | "
            f"{int(device.default_samplerate):>7} | {device.hostapi}"
        )
    return "\n".join(lines)


__all__ = ["InputDevice", "SoundDeviceSource", "format_device_table", "list_input_devices"]
