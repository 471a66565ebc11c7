"""Factories for runtime service selection."""

from __future__ import annotations

from typing import Optional

from ..config import Settings, get_settings
from ..data.remote import RestRecordStore
from ..data.storage import RecordStore, SQLiteRecordStore
from .extraction.base import ExtractionService
from .extraction.dummy import DummyExtractionService
from .extraction.openai_extractor import OpenAIExtractionService
from .transcription.azure_speech import AzureSpeechTranscriptionService
from .transcription.base import TranscriptionService
from .transcription.dummy import DummyTranscriptionService


class ServiceConfigurationError(ValueError):
    """Raised when an unknown backend is requested."""


def _normalise(name: Optional[str]) -> str:
    if not name:
        return "none"
    return name.strip().lower()


def resolve_transcription_backend(
    name: Optional[str], settings: Optional[Settings] = None
) -> Optional[TranscriptionService]:
    backend = _normalise(name)
    if backend in {"", "none", "off"}:
        return None
    if backend == "dummy":
        return DummyTranscriptionService()
    if backend == "azure":
        return AzureSpeechTranscriptionService(settings=settings)
    raise ServiceConfigurationError(f"Unknown transcription backend: {name}")


def resolve_extraction_backend(
    name: Optional[str], settings: Optional[Settings] = None
) -> ExtractionService:
    backend = _normalise(name)
    if backend == "dummy":
        return DummyExtractionService()
    if backend == "openai":
        return OpenAIExtractionService(settings=settings)
    raise ServiceConfigurationError(f"Unknown extraction backend: {name}")


def resolve_record_store(name: Optional[str], settings: Optional[Settings] = None) -> RecordStore:
    settings = settings or get_settings()
    backend = _normalise(name)
    if backend == "sqlite":
        return SQLiteRecordStore(settings.database_path)
    if backend == "rest":
        return RestRecordStore(settings=settings)
    raise ServiceConfigurationError(f"Unknown record store: {name}")


__all__ = [
    "ServiceConfigurationError",
    "resolve_extraction_backend",
    "resolve_record_store",
    "resolve_transcription_backend",
]
