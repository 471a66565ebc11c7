"""Record extraction services."""

from .base import ExtractionService
from .dummy import DummyExtractionService

__all__ = ["ExtractionService", "DummyExtractionService"]
