"""Azure Speech powered transcription over the short-audio REST API."""

from __future__ import annotations

from typing import Any, Dict, Optional

import httpx

from ...config import Settings, get_settings
from ...data.models import AudioSegment, RecognitionStatus, TranscriptResult
from ...logging import get_logger
from .base import TranscriptionService

LOGGER = get_logger(__name__)

ENDPOINT_TEMPLATE = (
    "https://{region}.stt.speech.microsoft.com/speech/recognition/conversation/cognitiveservices/v1"
)

_NO_MATCH_STATUSES = {"NoMatch", "InitialSilenceTimeout", "BabbleTimeout"}


class AzureSpeechTranscriptionService(TranscriptionService):
    def __init__(
        self,
        settings: Optional[Settings] = None,
        client: Optional[httpx.Client] = None,
    ) -> None:
        settings = settings or get_settings()
        if not settings.azure_subscription_key or not settings.azure_region:
            raise RuntimeError(
                "Azure Speech credentials not configured. Set EMTSCRIBE_AZURE_SUBSCRIPTION_KEY "
                "and EMTSCRIBE_AZURE_REGION or provide them in appsettings.json."
            )
        self.subscription_key = settings.azure_subscription_key
        self.region = settings.azure_region
        self.language = settings.azure_language
        self._client = client or httpx.Client(timeout=settings.request_timeout)

    @property
    def endpoint(self) -> str:
        return ENDPOINT_TEMPLATE.format(region=self.region)

    def _headers(self, segment: AudioSegment) -> Dict[str, str]:
        return {
            "Ocp-Apim-Subscription-Key": self.subscription_key,
            "Content-Type": f"audio/wav; codecs=audio/pcm; samplerate={segment.sample_rate}",
            "Accept": "application/json",
        }

    def transcribe(self, segment: AudioSegment) -> TranscriptResult:
        LOGGER.info("Requesting Azure transcription for %s", segment.path)
        source = str(segment.path)
        try:
            audio = segment.path.read_bytes()
            response = self._client.post(
                self.endpoint,
                params={"language": self.language, "format": "simple"},
                headers=self._headers(segment),
                content=audio,
            )
        except OSError as exc:
            return self._canceled(source, "FileReadError", str(exc))
        except httpx.HTTPError as exc:
            return self._canceled(source, "ConnectionFailure", str(exc))

        if response.is_error:
            return self._canceled(
                source,
                str(response.status_code),
                f"{response.reason_phrase}: {response.text}",
            )

        try:
            payload: Dict[str, Any] = response.json()
        except ValueError:
            return self._canceled(source, "InvalidResponse", response.text)
        if not isinstance(payload, dict):
            return self._canceled(source, "InvalidResponse", response.text)

        status = str(payload.get("RecognitionStatus", ""))
        text = str(payload.get("DisplayText") or "").strip()
        if status == "Success" and text:
            LOGGER.info("Transcription for %s: %s", segment.path.name, text)
            return TranscriptResult(
                segment=source,
                status=RecognitionStatus.RECOGNIZED,
                text=text,
                raw_response=payload,
            )
        if status == "Success" or status in _NO_MATCH_STATUSES:
            LOGGER.warning("No speech recognized in %s (%s)", segment.path.name, status)
            return TranscriptResult(
                segment=source,
                status=RecognitionStatus.NO_MATCH,
                raw_response=payload,
            )
        return self._canceled(source, status or "Error", str(payload), payload)

    def _canceled(
        self,
        source: str,
        code: str,
        detail: str,
        payload: Optional[Dict[str, Any]] = None,
    ) -> TranscriptResult:
        LOGGER.error(
            "Speech recognition canceled for %s. Error Code: %s. Error Details: %s",
            source,
            code,
            detail,
        )
        return TranscriptResult(
            segment=source,
            status=RecognitionStatus.CANCELED,
            error_code=code,
            error_detail=detail,
            raw_response=payload,
        )

    def close(self) -> None:
        self._client.close()


__all__ = ["AzureSpeechTranscriptionService", "ENDPOINT_TEMPLATE"]
