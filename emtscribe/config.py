"""Global configuration using Pydantic settings."""

from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from .errors import ConfigurationMissing
from .logging import get_logger

LOGGER = get_logger(__name__)


class Settings(BaseSettings):
    """Application wide settings loaded from environment variables."""

    recordings_dir: Path = Field(default_factory=lambda: Path("recordings"))
    database_path: Path = Field(default_factory=lambda: Path("emtscribe.db"))
    appsettings_path: Path = Field(default_factory=lambda: Path("appsettings.json"))
    sample_rate: int = 44_100
    channels: int = 1
    segment_seconds: float = 10.0
    segment_prefix: str = "recorded_audio"
    patient_id_prefix: str = "PT"
    openai_api_key: Optional[str] = None
    openai_model: str = "gpt-4o"
    azure_subscription_key: Optional[str] = None
    azure_region: str = "westus"
    azure_language: str = "en-US"
    record_store_url: Optional[str] = None
    record_store_key: Optional[str] = None
    request_timeout: float = 30.0
    default_mic_device: Optional[str] = None

    model_config = SettingsConfigDict(
        env_prefix="EMTSCRIBE_",
        env_file=".env",
        case_sensitive=False,
    )


_settings: Optional[Settings] = None

_ENV_PREFIX = (Settings.model_config.get("env_prefix") or "").upper()

# appsettings.json keys and the settings fields they populate
APPSETTINGS_KEYS: Dict[str, str] = {
    "OpenAIApiKey": "openai_api_key",
    "AzureSubscriptionKey": "azure_subscription_key",
    "AzureRegion": "azure_region",
    "RecordStoreUrl": "record_store_url",
    "RecordStoreKey": "record_store_key",
}

_SECRET_FIELDS = {"openai_api_key", "azure_subscription_key", "record_store_key"}


@dataclass
class EnvironmentSetting:
    """Metadata about a configuration option backed by an environment variable."""

    field: str
    env_name: str
    value: Any
    default: Any

    @property
    def display_value(self) -> str:
        if self.value in (None, ""):
            return "<unset>"
        if self.field in _SECRET_FIELDS:
            text = str(self.value)
            return f"{text[:4]}…" if len(text) > 4 else "****"
        return str(self.value)


def env_name(field: str) -> str:
    return f"{_ENV_PREFIX}{field}".upper()


def read_appsettings(path: Path) -> Dict[str, str]:
    """Map an ``appsettings.json`` document onto settings field names."""

    path = Path(path)
    if not path.exists():
        return {}
    try:
        document = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        LOGGER.error("Error loading configuration from %s: %s", path, exc)
        return {}
    if not isinstance(document, dict):
        LOGGER.error("Configuration file %s must contain a JSON object", path)
        return {}

    values: Dict[str, str] = {}
    for key, field in APPSETTINGS_KEYS.items():
        value = document.get(key)
        if value not in (None, ""):
            values[field] = str(value)
    return values


def load_settings(appsettings_path: Optional[Path] = None) -> Settings:
    """Build settings from the environment, filling gaps from appsettings.json.

    Environment variables win; the JSON file only supplies values that are
    unset (or left at their default) in the environment.
    """

    settings = Settings()
    path = Path(appsettings_path or settings.appsettings_path)
    file_values = read_appsettings(path)
    updates: Dict[str, Any] = {}
    for field, value in file_values.items():
        if field in settings.model_fields_set:
            continue
        updates[field] = value
    if updates:
        LOGGER.info("Loaded %s value(s) from %s", len(updates), path)
        settings = settings.model_copy(update=updates)
    return settings


def get_settings() -> Settings:
    """Return a singleton instance of the application settings."""

    global _settings
    if _settings is None:
        _settings = load_settings()
    return _settings


def reset_settings() -> None:
    global _settings
    _settings = None


def list_environment_settings(settings: Optional[Settings] = None) -> Iterable[EnvironmentSetting]:
    settings = settings or get_settings()
    for name, field in Settings.model_fields.items():
        default = field.default
        if default is None and field.default_factory is not None:
            default = field.default_factory()
        yield EnvironmentSetting(
            field=name,
            env_name=env_name(name),
            value=getattr(settings, name),
            default=default,
        )


def ensure_credentials(
    settings: Settings,
    *,
    transcription: Optional[str] = "azure",
    extraction: Optional[str] = "openai",
    store: Optional[str] = "rest",
) -> None:
    """Fail fast when the selected backends lack credentials."""

    required: List[str] = []
    if transcription == "azure":
        required += ["azure_subscription_key", "azure_region"]
    if extraction == "openai":
        required.append("openai_api_key")
    if store == "rest":
        required += ["record_store_url", "record_store_key"]

    missing = [env_name(field) for field in required if not getattr(settings, field)]
    if missing:
        raise ConfigurationMissing(missing)


__all__ = [
    "APPSETTINGS_KEYS",
    "EnvironmentSetting",
    "Settings",
    "ensure_credentials",
    "env_name",
    "get_settings",
    "list_environment_settings",
    "load_settings",
    "read_appsettings",
    "reset_settings",
]
