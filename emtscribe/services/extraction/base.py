"""Structured record extraction abstractions."""

from __future__ import annotations

import abc
from typing import Dict, Mapping

from ...data.models import SessionContext
from ...data.records import IDENTITY_FIELDS, normalise_record


class ExtractionService(abc.ABC):
    @abc.abstractmethod
    def extract_fragment(
        self, transcript: str, current: Mapping[str, str]
    ) -> Mapping[str, object]:
        """Return the raw field mapping produced for ``transcript``."""

    def extract(
        self, session: SessionContext, transcript: str, current: Mapping[str, str]
    ) -> Dict[str, str]:
        """Produce a full-template fragment stamped with the session identity."""

        fragment = normalise_record(self.extract_fragment(transcript, current))
        identity = session.identity_record()
        for field in IDENTITY_FIELDS:
            fragment[field] = identity[field]
        return fragment


__all__ = ["ExtractionService"]
