"""Audio capture and segmentation package."""

from .base import AudioSource, CaptureError, SourceInfo

__all__ = ["AudioSource", "CaptureError", "SourceInfo"]
