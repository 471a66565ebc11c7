"""Data models used by emtscribe."""

from __future__ import annotations

import secrets
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, Mapping, Optional

from pydantic import BaseModel

from ..core.audio.wav import read_wav_file
from .records import empty_record, normalise_record


class RecognitionStatus(str, Enum):
    RECOGNIZED = "recognized"
    NO_MATCH = "no_match"
    CANCELED = "canceled"


class TranscriptResult(BaseModel):
    segment: str
    status: RecognitionStatus
    text: str = ""
    error_code: Optional[str] = None
    error_detail: Optional[str] = None
    raw_response: Optional[dict] = None

    @property
    def recognized(self) -> bool:
        return self.status is RecognitionStatus.RECOGNIZED and bool(self.text.strip())


@dataclass(frozen=True)
class AudioSegment:
    """A finished WAV file written by the segmenter."""

    path: Path
    created_at: datetime
    sample_rate: int
    channels: int
    frames: int
    sample_width: int = 2

    @property
    def duration(self) -> float:
        if self.sample_rate <= 0:
            return 0.0
        return self.frames / float(self.sample_rate)

    @classmethod
    def from_path(cls, path: Path) -> "AudioSegment":
        header = read_wav_file(path)
        created = datetime.fromtimestamp(Path(path).stat().st_mtime, tz=timezone.utc)
        return cls(
            path=Path(path),
            created_at=created,
            sample_rate=header.sample_rate,
            channels=header.channels,
            frames=header.frames,
        )


def generate_patient_id(
    prefix: str = "PT",
    now: Optional[datetime] = None,
    token: Callable[[int], str] = secrets.token_hex,
) -> str:
    """Return ``<prefix>-<YYYYMMDD>-<HHMMSS>-<6 hex>``."""

    now = now or datetime.now(timezone.utc)
    return f"{prefix}-{now:%Y%m%d}-{now:%H%M%S}-{token(3)}"


@dataclass
class SessionContext:
    """State of one monitoring session, passed explicitly to each stage."""

    patient_id: str
    created_at: datetime
    current_record: Dict[str, str] = field(default_factory=dict)
    recorded_timestamp: Optional[str] = None

    def __post_init__(self) -> None:
        if not self.current_record:
            self.current_record = self.identity_record()

    @classmethod
    def create(cls, prefix: str = "PT", now: Optional[datetime] = None) -> "SessionContext":
        now = now or datetime.now(timezone.utc)
        return cls(patient_id=generate_patient_id(prefix, now), created_at=now)

    @classmethod
    def resume(
        cls,
        patient_id: str,
        record: Optional[Mapping[str, str]] = None,
        now: Optional[datetime] = None,
    ) -> "SessionContext":
        """Continue an existing patient, keeping the stored ``Timestamp``."""

        now = now or datetime.now(timezone.utc)
        if not record:
            return cls(patient_id=patient_id, created_at=now)
        current = normalise_record(record)
        current["PatientID"] = patient_id
        return cls(
            patient_id=patient_id,
            created_at=now,
            current_record=current,
            recorded_timestamp=current["Timestamp"] or None,
        )

    @property
    def timestamp(self) -> str:
        if self.recorded_timestamp:
            return self.recorded_timestamp
        return self.created_at.isoformat(timespec="seconds")

    def identity_record(self) -> Dict[str, str]:
        record = empty_record()
        record["PatientID"] = self.patient_id
        record["Timestamp"] = self.timestamp
        return record


__all__ = [
    "AudioSegment",
    "RecognitionStatus",
    "SessionContext",
    "TranscriptResult",
    "generate_patient_id",
]
