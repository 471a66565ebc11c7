"""Transcription service abstractions."""

from __future__ import annotations

import abc

from ...data.models import AudioSegment, TranscriptResult


class TranscriptionService(abc.ABC):
    """Convert one finished audio segment into recognised text."""

    @abc.abstractmethod
    def transcribe(self, segment: AudioSegment) -> TranscriptResult:
        """Return a result whose status is recognized, no_match or canceled.

        Implementations report service failures through the result rather than
        raising, so the caller decides whether the segment is kept.
        """

    def close(self) -> None:
        """Release any network resources held by the service."""


__all__ = ["TranscriptionService"]
