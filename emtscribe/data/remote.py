"""REST (PostgREST-style) record store client."""

from __future__ import annotations

from typing import Dict, Mapping, Optional

import httpx

from ..config import Settings, get_settings
from ..errors import MalformedResponse, TransientServiceFailure
from ..logging import get_logger
from .storage import RecordStore, coerce_record

LOGGER = get_logger(__name__)

UPSERT_PREFER = "resolution=merge-duplicates,return=representation"


class RestRecordStore(RecordStore):
    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        *,
        settings: Optional[Settings] = None,
        client: Optional[httpx.Client] = None,
    ) -> None:
        settings = settings or get_settings()
        self.base_url = (base_url or settings.record_store_url or "").rstrip("/")
        self.api_key = api_key or settings.record_store_key
        if not self.base_url or not self.api_key:
            raise RuntimeError(
                "Record store not configured. Set EMTSCRIBE_RECORD_STORE_URL and "
                "EMTSCRIBE_RECORD_STORE_KEY."
            )
        self._client = client or httpx.Client(timeout=settings.request_timeout)

    def _headers(self) -> Dict[str, str]:
        return {
            "apikey": self.api_key,
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    def fetch(self, patient_id: str) -> Optional[Dict[str, str]]:
        response = self._client.get(
            self.base_url,
            params={"PatientID": f"eq.{patient_id}"},
            headers=self._headers(),
        )
        response.raise_for_status()
        return coerce_record(response.json(), "Record store fetch")

    def write(self, record: Mapping[str, str]) -> Dict[str, str]:
        headers = self._headers()
        headers["Prefer"] = UPSERT_PREFER
        try:
            response = self._client.post(self.base_url, json=dict(record), headers=headers)
        except httpx.HTTPError as exc:
            raise TransientServiceFailure(f"Record store write failed: {exc}") from exc
        if response.is_error:
            raise TransientServiceFailure(
                f"Record store write failed: {response.status_code} {response.reason_phrase}",
                detail=response.text,
            )
        if not response.content:
            return dict(record)
        try:
            payload = response.json()
        except ValueError as exc:
            raise MalformedResponse(
                "Record store returned a non-JSON body", detail=response.text
            ) from exc
        stored = coerce_record(payload, "Record store write")
        return stored if stored is not None else dict(record)

    def close(self) -> None:
        self._client.close()


__all__ = ["RestRecordStore", "UPSERT_PREFER"]
