"""Offline extractor that files the whole transcript under symptoms."""

from __future__ import annotations

from typing import Dict, Mapping

from ...data.records import empty_record
from .base import ExtractionService


class DummyExtractionService(ExtractionService):
    def extract_fragment(self, transcript: str, current: Mapping[str, str]) -> Dict[str, str]:
        fragment = empty_record()
        fragment["Symptoms"] = transcript.strip()
        return fragment


__all__ = ["DummyExtractionService"]
