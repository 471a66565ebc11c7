"""Failure taxonomy shared by every pipeline stage."""

from __future__ import annotations

from typing import Iterable, Optional


class PipelineError(RuntimeError):
    """Base class for errors that isolate to a single segment or session."""

    def __init__(self, message: str, *, detail: Optional[str] = None) -> None:
        super().__init__(message)
        self.detail = detail


class RecoverableEmpty(PipelineError):
    """No speech was found; the segment is consumed and nothing is stored."""


class TransientServiceFailure(PipelineError):
    """A network or service call failed; the source segment must be kept."""


class MalformedResponse(PipelineError):
    """A service answered with a body that does not have the expected shape."""


class ConfigurationMissing(PipelineError):
    """Required credentials are absent; monitoring must not start."""

    def __init__(self, missing: Iterable[str]) -> None:
        self.missing = sorted(set(missing))
        super().__init__(
            "Missing required configuration: "
            + ", ".join(self.missing)
            + ". Set the environment variables or provide appsettings.json."
        )


__all__ = [
    "ConfigurationMissing",
    "MalformedResponse",
    "PipelineError",
    "RecoverableEmpty",
    "TransientServiceFailure",
]
