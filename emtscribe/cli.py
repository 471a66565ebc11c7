"""Typer CLI entry point for emtscribe."""

from __future__ import annotations

import json
import time
from pathlib import Path
from typing import List, Optional

import typer

from .config import ensure_credentials, get_settings, list_environment_settings
from .core.audio.base import AudioSource, CaptureError, SourceInfo
from .core.pipeline.orchestrator import PipelineOrchestrator, SegmentOutcome
from .data.models import SessionContext
from .errors import ConfigurationMissing
from .logging import configure_logging, get_logger
from .services.factory import (
    ServiceConfigurationError,
    resolve_extraction_backend,
    resolve_record_store,
    resolve_transcription_backend,
)

app = typer.Typer(help="emtscribe patient record transcriber")
LOGGER = get_logger(__name__)


def _parse_device(device: Optional[str]) -> Optional[int | str]:
    if device is None:
        return None
    if device.isdigit():
        return int(device)
    return device


def _build_source(device: Optional[str], sample_rate: int, channels: int) -> AudioSource:
    from .core.audio.sounddevice_backend import SoundDeviceSource

    info = SourceInfo(name="microphone", sample_rate=sample_rate, channels=channels, device=device)
    try:
        return SoundDeviceSource(info=info, device=_parse_device(device))
    except CaptureError as exc:
        raise typer.BadParameter(str(exc)) from exc


def _check_credentials(transcription: str, extraction: str, store: str) -> None:
    try:
        ensure_credentials(
            get_settings(),
            transcription=transcription.lower(),
            extraction=extraction.lower(),
            store=store.lower(),
        )
    except ConfigurationMissing as exc:
        typer.echo(str(exc), err=True)
        raise typer.Exit(code=2) from exc


def _build_orchestrator(transcription: str, extraction: str, store: str) -> PipelineOrchestrator:
    try:
        return PipelineOrchestrator(
            transcription=resolve_transcription_backend(transcription),
            extraction=resolve_extraction_backend(extraction),
            store=resolve_record_store(store),
            on_outcome=_echo_outcome,
        )
    except ServiceConfigurationError as exc:
        raise typer.BadParameter(str(exc)) from exc


def _echo_outcome(outcome: SegmentOutcome) -> None:
    line = f"  {outcome.path.name}: {outcome.status.value}"
    if outcome.error is not None:
        line += f" ({outcome.error})"
    typer.echo(line)


def _echo_record(record: dict) -> None:
    typer.echo(json.dumps(record, indent=2, ensure_ascii=False))


@app.command()
def devices() -> None:
    """List available audio input devices."""

    configure_logging()
    from .core.audio.sounddevice_backend import format_device_table

    typer.echo(format_device_table())


@app.command()
def monitor(
    duration: Optional[float] = typer.Option(None, help="Duration in seconds; default waits for Ctrl+C"),
    mic_device: Optional[str] = typer.Option(None, help="Input device id/name for the microphone"),
    transcription_backend: str = typer.Option("azure", help="Transcription backend: none/dummy/azure"),
    extraction_backend: str = typer.Option("openai", help="Extraction backend: dummy/openai"),
    store: str = typer.Option("rest", help="Record store: sqlite/rest"),
    sample_rate: Optional[int] = typer.Option(None, help="Override sample rate"),
    channels: Optional[int] = typer.Option(None, help="Override number of channels"),
) -> None:
    """Record, transcribe and merge findings into a new patient record."""

    configure_logging()
    settings = get_settings()
    _check_credentials(transcription_backend, extraction_backend, store)
    orchestrator = _build_orchestrator(transcription_backend, extraction_backend, store)
    try:
        source = _build_source(
            mic_device or settings.default_mic_device,
            sample_rate or settings.sample_rate,
            channels or settings.channels,
        )
        session = orchestrator.start_monitoring(source)
    except CaptureError as exc:
        orchestrator.close()
        typer.echo(f"Audio capture failed: {exc}", err=True)
        raise typer.Exit(code=1) from exc
    except typer.BadParameter:
        orchestrator.close()
        raise
    typer.echo(f"Monitoring patient {session.patient_id}; press Ctrl+C to stop")
    started = time.monotonic()
    try:
        while duration is None or time.monotonic() - started < duration:
            time.sleep(0.2)
    except KeyboardInterrupt:
        LOGGER.info("Monitoring interrupted by user; finishing up")
    finally:
        outcome = orchestrator.stop()
        orchestrator.close()

    typer.echo(f"Patient {outcome.session.patient_id}: {len(outcome.segments)} segment(s) captured")
    _echo_record(outcome.session.current_record)


@app.command()
def process(
    paths: List[Path] = typer.Argument(..., exists=True, dir_okay=False, help="Retained segment files"),
    patient_id: Optional[str] = typer.Option(None, help="Existing patient id; a new one is created if omitted"),
    transcription_backend: str = typer.Option("azure", help="Transcription backend: dummy/azure"),
    extraction_backend: str = typer.Option("openai", help="Extraction backend: dummy/openai"),
    store: str = typer.Option("rest", help="Record store: sqlite/rest"),
) -> None:
    """Run retained segment files through the pipeline again."""

    configure_logging()
    settings = get_settings()
    _check_credentials(transcription_backend, extraction_backend, store)
    orchestrator = _build_orchestrator(transcription_backend, extraction_backend, store)
    if orchestrator.transcription is None:
        raise typer.BadParameter("process needs a transcription backend")

    try:
        if patient_id:
            session = SessionContext.resume(patient_id, orchestrator.store.fetch(patient_id))
        else:
            session = SessionContext.create(settings.patient_id_prefix)
        typer.echo(f"Processing {len(paths)} segment(s) for patient {session.patient_id}")
        outcomes = orchestrator.process_paths(session, sorted(paths))
    finally:
        orchestrator.close()

    _echo_record(session.current_record)
    if any(outcome.retained for outcome in outcomes):
        raise typer.Exit(code=1)


@app.command()
def show(
    patient_id: str = typer.Argument(..., help="Patient id to look up"),
    store: str = typer.Option("rest", help="Record store: sqlite/rest"),
) -> None:
    """Print the stored record for a patient."""

    configure_logging()
    _check_credentials("none", "none", store)
    try:
        record_store = resolve_record_store(store)
    except ServiceConfigurationError as exc:
        raise typer.BadParameter(str(exc)) from exc
    try:
        record = record_store.fetch(patient_id)
    finally:
        record_store.close()
    if record is None:
        typer.echo(f"No record stored for {patient_id}", err=True)
        raise typer.Exit(code=1)
    _echo_record(record)


@app.command("settings")
def show_settings() -> None:
    """Print the effective configuration with secrets masked."""

    for setting in list_environment_settings(get_settings()):
        typer.echo(f"{setting.env_name:<36} {setting.display_value}")


if __name__ == "__main__":  # pragma: no cover
    app()
