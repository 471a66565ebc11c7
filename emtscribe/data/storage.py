"""Record stores holding the authoritative merged patient record."""

from __future__ import annotations

import abc
import json
import sqlite3
import time
from pathlib import Path
from typing import Dict, List, Mapping, Optional

from ..errors import MalformedResponse, TransientServiceFailure
from ..logging import get_logger
from .records import IDENTITY_FIELDS, merge_records

LOGGER = get_logger(__name__)


class RecordStore(abc.ABC):
    """Fetch-merge-write persistence for patient records.

    The sequence in :meth:`upsert` is not atomic against concurrent writers
    for the same patient; one active session per patient is assumed.
    """

    @abc.abstractmethod
    def fetch(self, patient_id: str) -> Optional[Dict[str, str]]:
        """Return the stored record for ``patient_id`` or ``None``."""

    @abc.abstractmethod
    def write(self, record: Mapping[str, str]) -> Dict[str, str]:
        """Persist ``record`` replacing any prior version; return what was stored."""

    def upsert(self, patient_id: str, fragment: Mapping[str, str]) -> Dict[str, str]:
        try:
            existing = self.fetch(patient_id)
        except Exception as exc:
            LOGGER.warning(
                "Failed to fetch existing record for %s; storing fragment as full record: %s",
                patient_id,
                exc,
            )
            existing = None

        if existing is None:
            record = dict(fragment)
        else:
            record = merge_records(existing, fragment)
            # identifiers are set once and never accumulate
            for field in IDENTITY_FIELDS:
                if existing.get(field):
                    record[field] = existing[field]
        record["PatientID"] = patient_id
        stored = self.write(record)
        LOGGER.info("Stored record for %s (%s fields)", patient_id, len(stored))
        return stored

    def close(self) -> None:
        """Release connections held by the store."""


class SQLiteRecordStore(RecordStore):
    """Local record store built on SQLite."""

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.initialize()

    def _connect(self) -> sqlite3.Connection:
        return sqlite3.connect(self.path)

    def initialize(self) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS records (
                    patient_id TEXT PRIMARY KEY,
                    payload TEXT NOT NULL,
                    updated_at REAL NOT NULL
                )
                """
            )
            conn.commit()

    def fetch(self, patient_id: str) -> Optional[Dict[str, str]]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT payload FROM records WHERE patient_id = ?",
                (patient_id,),
            ).fetchone()
        if not row:
            return None
        return json.loads(row[0])

    def write(self, record: Mapping[str, str]) -> Dict[str, str]:
        patient_id = record.get("PatientID")
        if not patient_id:
            raise ValueError("record must carry a PatientID")
        payload = json.dumps(dict(record), ensure_ascii=False)
        try:
            with self._connect() as conn:
                conn.execute(
                    "INSERT OR REPLACE INTO records (patient_id, payload, updated_at) VALUES (?, ?, ?)",
                    (patient_id, payload, time.time()),
                )
                conn.commit()
        except sqlite3.Error as exc:
            raise TransientServiceFailure(f"Failed to write record {patient_id}: {exc}") from exc
        return dict(record)

    def list_patient_ids(self) -> List[str]:
        with self._connect() as conn:
            rows = conn.execute("SELECT patient_id FROM records ORDER BY updated_at DESC").fetchall()
        return [row[0] for row in rows]


def coerce_record(payload: object, source: str) -> Optional[Dict[str, str]]:
    """Unwrap a store echo (object or single-element array) into a record."""

    if isinstance(payload, list):
        if not payload:
            return None
        payload = payload[0]
    if not isinstance(payload, dict):
        raise MalformedResponse(f"{source} did not return a record object", detail=repr(payload))
    return {str(key): "" if value is None else str(value) for key, value in payload.items()}


__all__ = ["RecordStore", "SQLiteRecordStore", "coerce_record"]
