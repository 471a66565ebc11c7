"""Dummy transcription service for testing or offline usage."""

from __future__ import annotations

from typing import Optional

from ...data.models import AudioSegment, RecognitionStatus, TranscriptResult
from .base import TranscriptionService


class DummyTranscriptionService(TranscriptionService):
    def __init__(self, text: Optional[str] = None) -> None:
        self.text = text

    def transcribe(self, segment: AudioSegment) -> TranscriptResult:
        text = self.text
        if text is None:
            text = (
                f"Dummy transcript for {segment.path.name} ({segment.duration:.1f}s). "
                "Replace with a real transcription backend."
            )
        status = RecognitionStatus.RECOGNIZED if text.strip() else RecognitionStatus.NO_MATCH
        return TranscriptResult(segment=str(segment.path), status=status, text=text)


__all__ = ["DummyTranscriptionService"]
