"""Patient record schema, parsing and field-level merge rules.

Every record produced by the pipeline is an ordered ``Dict[str, str]``
carrying the full template key set. Absent information is an empty string,
never a missing key. Records are combined with :func:`merge_records`, which
accumulates differing values instead of overwriting them.
"""

from __future__ import annotations

import json
import re
from typing import Any, Dict, Mapping, Tuple

from pydantic import BaseModel, ConfigDict, field_validator

TEMPLATE_VERSION = 1

IDENTITY_FIELDS: Tuple[str, ...] = ("PatientID", "Timestamp")

MERGE_SEPARATOR = ", "


class PatientRecord(BaseModel):
    """Template schema, version 1."""

    model_config = ConfigDict(extra="ignore")

    PatientID: str = ""
    Timestamp: str = ""
    PatientName: str = ""
    DateOfBirth: str = ""
    Age: str = ""
    Sex: str = ""
    PrimaryAddress: str = ""
    Allergies: str = ""
    CurrentMedications: str = ""
    MedicalConditions: str = ""
    Symptoms: str = ""
    HeartRate: str = ""
    BloodPressure: str = ""
    RespiratoryRate: str = ""
    OxygenSaturation: str = ""
    Severity: str = ""
    EmergencyContact: str = ""
    EmergencyContactPhone: str = ""

    @field_validator("*", mode="before")
    @classmethod
    def _coerce_to_text(cls, value: Any) -> str:
        if value is None:
            return ""
        if isinstance(value, bool):
            return "yes" if value else "no"
        if isinstance(value, (list, tuple)):
            return MERGE_SEPARATOR.join(str(item).strip() for item in value if item not in (None, ""))
        if isinstance(value, dict):
            return json.dumps(value, ensure_ascii=False)
        return str(value).strip()


TEMPLATE_FIELDS: Tuple[str, ...] = tuple(PatientRecord.model_fields)


def empty_record() -> Dict[str, str]:
    return PatientRecord().model_dump()


def normalise_record(data: Mapping[str, Any]) -> Dict[str, str]:
    """Coerce ``data`` onto the template: every key present, values as text."""

    return PatientRecord.model_validate(dict(data)).model_dump()


def render_template(record: Mapping[str, str]) -> str:
    return json.dumps(normalise_record(record), ensure_ascii=False, separators=(",", ":"))


_FENCE = re.compile(r"^```[a-zA-Z]*\s*(.*?)\s*```$", re.DOTALL)


def parse_record_content(content: str) -> Dict[str, Any]:
    """Decode model output into a mapping.

    A single surrounding Markdown code fence is stripped. Raises ``ValueError``
    when the payload is not a JSON object.
    """

    text = (content or "").strip()
    fenced = _FENCE.match(text)
    if fenced:
        text = fenced.group(1).strip()
    if not text:
        raise ValueError("empty record payload")
    data = json.loads(text)
    if not isinstance(data, dict):
        raise ValueError(f"expected a JSON object, got {type(data).__name__}")
    return data


def _text(value: Any) -> str:
    if value is None:
        return ""
    return str(value)


def merge_records(old: Mapping[str, Any], new: Mapping[str, Any]) -> Dict[str, str]:
    """Merge a stored record with a newly extracted fragment.

    For each key in ``old`` ∪ ``new`` (old ordering first):

    * new value empty: old value kept unchanged
    * old value empty or equal to the new one: new value taken
    * both non-empty and different: ``"old, new"``
    """

    merged: Dict[str, str] = {key: _text(value) for key, value in old.items()}
    for key, value in new.items():
        incoming = _text(value)
        current = merged.get(key, "")
        if not incoming.strip():
            merged.setdefault(key, current)
            continue
        if not current.strip() or current == incoming:
            merged[key] = incoming
        else:
            merged[key] = f"{current}{MERGE_SEPARATOR}{incoming}"
    return merged


__all__ = [
    "IDENTITY_FIELDS",
    "MERGE_SEPARATOR",
    "PatientRecord",
    "TEMPLATE_FIELDS",
    "TEMPLATE_VERSION",
    "empty_record",
    "merge_records",
    "normalise_record",
    "parse_record_content",
    "render_template",
]
