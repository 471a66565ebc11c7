"""OpenAI chat-completion powered patient record extraction."""

from __future__ import annotations

from typing import Any, Dict, Mapping, Optional

from ...config import Settings, get_settings
from ...data.records import parse_record_content, render_template
from ...errors import MalformedResponse, TransientServiceFailure
from ...logging import get_logger
from .base import ExtractionService

LOGGER = get_logger(__name__)

EXTRACTION_POLICY = (
    "You are to fill out the following JSON data with the corresponding string input. "
    "If data is missing from input, leave the value of that name empty. "
    "Do not add information to the JSON that does not exist. "
    "Only add what you are certain matches with JSON field. "
    "Do not give your answer formatted. Omit newline, tab, markdown, or any other formatting. "
    "Return your JSON data as a readable string. "
    "Make sure to return the complete JSON template with every field name unchanged, even if data is missing. "
    "If a field in the template already has a value, keep it and append new information after it "
    "instead of replacing it. "
    "From input, you may reformat the answer to be more easily readable. "
    'Ex: "I have an allergy to peanuts" may just be "peanuts".'
)


def build_instruction(transcript: str, current: Mapping[str, str]) -> str:
    return f"{EXTRACTION_POLICY} input: {transcript} template: {render_template(current)}"


class OpenAIExtractionService(ExtractionService):
    def __init__(
        self,
        model: Optional[str] = None,
        settings: Optional[Settings] = None,
        client: Any = None,
    ) -> None:
        settings = settings or get_settings()
        self.model = model or settings.openai_model
        try:
            from openai import APIError, OpenAI, OpenAIError  # type: ignore
        except ImportError as exc:  # pragma: no cover - runtime dependency guard
            raise RuntimeError("openai package is required for OpenAIExtractionService") from exc
        self._api_error_cls = APIError

        if client is not None:
            self.client = client
            return
        try:
            self.client = OpenAI(
                api_key=settings.openai_api_key,
                timeout=settings.request_timeout,
                max_retries=0,
            )
        except OpenAIError as exc:
            message = str(exc)
            if "api_key" in message.lower():
                raise RuntimeError(
                    "OpenAI API key not configured. Set EMTSCRIBE_OPENAI_API_KEY "
                    "or OpenAIApiKey in appsettings.json."
                ) from exc
            raise RuntimeError(f"Failed to initialise OpenAI extraction client: {message}") from exc

    def extract_fragment(self, transcript: str, current: Mapping[str, str]) -> Dict[str, Any]:
        instruction = build_instruction(transcript, current)
        LOGGER.info("Sending transcript to OpenAI model %s: %s", self.model, transcript)
        try:
            response = self.client.chat.completions.create(
                model=self.model,
                messages=[{"role": "user", "content": instruction}],
            )
        except self._api_error_cls as exc:
            body = getattr(exc, "body", None)
            raise TransientServiceFailure(
                f"OpenAI request failed: {exc}", detail=str(body) if body is not None else None
            ) from exc

        content = self._message_content(response)
        try:
            fragment = parse_record_content(content)
        except ValueError as exc:
            raise MalformedResponse(
                f"OpenAI response is not a JSON record: {exc}", detail=content
            ) from exc
        LOGGER.info("OpenAI response: %s", content)
        return fragment

    def _message_content(self, response: Any) -> str:
        try:
            content = response.choices[0].message.content
        except (AttributeError, IndexError, KeyError, TypeError) as exc:
            raise MalformedResponse(
                "OpenAI response has no choices[0].message.content", detail=repr(response)
            ) from exc
        if not isinstance(content, str):
            raise MalformedResponse(
                "OpenAI response content is not text", detail=repr(response)
            )
        return content


__all__ = ["EXTRACTION_POLICY", "OpenAIExtractionService", "build_instruction"]
