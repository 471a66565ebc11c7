import queue
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Mapping

import numpy as np
import pytest
from watchdog.observers.polling import PollingObserver

from emtscribe.config import Settings
from emtscribe.core.audio.base import AudioSource, CaptureError, SourceInfo
from emtscribe.core.audio.wav import encode_wav
from emtscribe.core.pipeline.orchestrator import PipelineOrchestrator, SegmentStatus
from emtscribe.data.models import AudioSegment, RecognitionStatus, SessionContext, TranscriptResult
from emtscribe.data.storage import RecordStore, SQLiteRecordStore
from emtscribe.errors import MalformedResponse, RecoverableEmpty, TransientServiceFailure
from emtscribe.services.extraction.base import ExtractionService
from emtscribe.services.transcription.base import TranscriptionService
from emtscribe.services.transcription.dummy import DummyTranscriptionService


class FakeSource(AudioSource):
    def __init__(self, info: SourceInfo, chunks: list[np.ndarray]) -> None:
        self.info = info
        self._queue: "queue.Queue[np.ndarray]" = queue.Queue()
        for chunk in chunks:
            self._queue.put(chunk)

    def start(self) -> None:
        pass

    def stop(self) -> None:
        pass

    def close(self) -> None:
        pass

    def read(self, timeout: float | None = None):
        try:
            if timeout is None or timeout <= 0:
                return self._queue.get_nowait()
            return self._queue.get(timeout=timeout)
        except queue.Empty:
            return None


class ScriptedTranscriptionService(TranscriptionService):
    """Returns the queued phrases in call order."""

    def __init__(self, phrases: list[str]) -> None:
        self.phrases = list(phrases)
        self.segments: list[AudioSegment] = []

    def transcribe(self, segment: AudioSegment) -> TranscriptResult:
        self.segments.append(segment)
        return TranscriptResult(
            segment=str(segment.path),
            status=RecognitionStatus.RECOGNIZED,
            text=self.phrases.pop(0),
        )


class CanceledTranscriptionService(TranscriptionService):
    def transcribe(self, segment: AudioSegment) -> TranscriptResult:
        return TranscriptResult(
            segment=str(segment.path),
            status=RecognitionStatus.CANCELED,
            error_code="401",
            error_detail="Unauthorized: invalid key",
        )


class AllergyExtractionService(ExtractionService):
    def extract_fragment(self, transcript: str, current: Mapping[str, str]) -> Dict[str, str]:
        return {"Allergies": transcript.rsplit(" ", 1)[-1]}


class MalformedExtractionService(ExtractionService):
    def extract_fragment(self, transcript: str, current: Mapping[str, str]) -> Dict[str, str]:
        raise MalformedResponse("not JSON", detail="Sure!")


class FailingStore(RecordStore):
    def fetch(self, patient_id: str):
        return None

    def write(self, record):
        raise TransientServiceFailure("store unavailable", detail="503")


def _settings(tmp_path: Path) -> Settings:
    return Settings(
        recordings_dir=tmp_path / "recordings",
        sample_rate=100,
        segment_seconds=10.0,
    )


def _session() -> SessionContext:
    return SessionContext(
        patient_id="PT-20261019-143015-abc123",
        created_at=datetime(2026, 10, 19, 14, 30, 15, tzinfo=timezone.utc),
    )


def _segment_file(directory: Path, name: str = "recorded_audio_20261019_143015_000000_0001.wav") -> Path:
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / name
    path.write_bytes(encode_wav(np.zeros(100, dtype=np.int16), 100))
    return path


def test_monitoring_merges_every_segment_into_one_record(tmp_path: Path) -> None:
    settings = _settings(tmp_path)
    store = SQLiteRecordStore(tmp_path / "emtscribe.db")
    transcription = ScriptedTranscriptionService(["allergic to peanuts", "allergic to shellfish"])
    orchestrator = PipelineOrchestrator(
        transcription,
        AllergyExtractionService(),
        store,
        settings=settings,
        observer_factory=lambda: PollingObserver(timeout=0.05),
    )
    chunks = [np.zeros((100, 1), dtype=np.float32) for _ in range(12)]
    source = FakeSource(SourceInfo(name="mic", sample_rate=100, channels=1), chunks)

    session = orchestrator.start_monitoring(source)
    assert orchestrator.start_monitoring(source) is session
    outcome = orchestrator.stop()

    assert [segment.duration for segment in outcome.segments] == [10.0, 2.0]
    assert [result.status for result in outcome.outcomes] == [SegmentStatus.STORED, SegmentStatus.STORED]
    assert len(transcription.segments) == 2
    stored = store.fetch(session.patient_id)
    assert stored["Allergies"] == "peanuts, shellfish"
    assert stored["PatientID"] == session.patient_id
    assert stored["Timestamp"] == session.timestamp
    assert session.current_record == stored
    assert not any(segment.path.exists() for segment in outcome.segments)
    assert not orchestrator.is_monitoring


def test_segment_is_kept_when_store_write_fails(tmp_path: Path) -> None:
    orchestrator = PipelineOrchestrator(
        ScriptedTranscriptionService(["allergic to peanuts"]),
        AllergyExtractionService(),
        FailingStore(),
        settings=_settings(tmp_path),
    )
    session = _session()
    before = dict(session.current_record)
    path = _segment_file(tmp_path / "recordings")

    outcome = orchestrator.process_segment(session, path)

    assert outcome.status is SegmentStatus.FAILED
    assert isinstance(outcome.error, TransientServiceFailure)
    assert outcome.retained
    assert path.exists()
    assert session.current_record == before


def test_segment_without_speech_is_consumed(tmp_path: Path) -> None:
    store = SQLiteRecordStore(tmp_path / "emtscribe.db")
    orchestrator = PipelineOrchestrator(
        DummyTranscriptionService(text=""),
        AllergyExtractionService(),
        store,
        settings=_settings(tmp_path),
    )
    session = _session()
    path = _segment_file(tmp_path / "recordings")

    outcome = orchestrator.process_segment(session, path)

    assert outcome.status is SegmentStatus.EMPTY
    assert isinstance(outcome.error, RecoverableEmpty)
    assert not path.exists()
    assert store.fetch(session.patient_id) is None


def test_canceled_recognition_keeps_segment(tmp_path: Path) -> None:
    orchestrator = PipelineOrchestrator(
        CanceledTranscriptionService(),
        AllergyExtractionService(),
        SQLiteRecordStore(tmp_path / "emtscribe.db"),
        settings=_settings(tmp_path),
    )
    path = _segment_file(tmp_path / "recordings")

    outcome = orchestrator.process_segment(_session(), path)

    assert outcome.status is SegmentStatus.FAILED
    assert isinstance(outcome.error, TransientServiceFailure)
    assert outcome.error.detail == "Unauthorized: invalid key"
    assert path.exists()


def test_malformed_extraction_keeps_segment_and_continues(tmp_path: Path) -> None:
    store = SQLiteRecordStore(tmp_path / "emtscribe.db")
    orchestrator = PipelineOrchestrator(
        ScriptedTranscriptionService(["first", "second"]),
        MalformedExtractionService(),
        store,
        settings=_settings(tmp_path),
    )
    recordings = tmp_path / "recordings"
    paths = [
        _segment_file(recordings, "recorded_audio_20261019_143015_000000_0001.wav"),
        _segment_file(recordings, "recorded_audio_20261019_143025_000000_0002.wav"),
    ]

    outcomes = orchestrator.process_paths(_session(), paths)

    assert [outcome.status for outcome in outcomes] == [SegmentStatus.FAILED, SegmentStatus.FAILED]
    assert all(isinstance(outcome.error, MalformedResponse) for outcome in outcomes)
    assert all(path.exists() for path in paths)


def test_unreadable_segment_fails_without_raising(tmp_path: Path) -> None:
    orchestrator = PipelineOrchestrator(
        ScriptedTranscriptionService(["unused"]),
        AllergyExtractionService(),
        SQLiteRecordStore(tmp_path / "emtscribe.db"),
        settings=_settings(tmp_path),
    )
    path = tmp_path / "recorded_audio_20261019_143015_000000_0001.wav"
    path.write_bytes(b"garbage")

    outcome = orchestrator.process_segment(_session(), path)

    assert outcome.status is SegmentStatus.FAILED
    assert path.exists()


def test_resumed_session_keeps_stored_identity(tmp_path: Path) -> None:
    store = SQLiteRecordStore(tmp_path / "emtscribe.db")
    store.write({"PatientID": "PT-1", "Timestamp": "2026-10-19T09:00:00+00:00", "Allergies": "peanuts"})
    orchestrator = PipelineOrchestrator(
        ScriptedTranscriptionService(["allergic to latex"]),
        AllergyExtractionService(),
        store,
        settings=_settings(tmp_path),
    )
    session = SessionContext.resume("PT-1", store.fetch("PT-1"))

    orchestrator.process_segment(session, _segment_file(tmp_path / "recordings"))

    stored = store.fetch("PT-1")
    assert stored["Timestamp"] == "2026-10-19T09:00:00+00:00"
    assert stored["Allergies"] == "peanuts, latex"


class BrokenSource(FakeSource):
    def start(self) -> None:
        raise CaptureError("device unavailable")


class ExplodingTranscriptionService(TranscriptionService):
    def __init__(self) -> None:
        self.calls = 0

    def transcribe(self, segment: AudioSegment) -> TranscriptResult:
        self.calls += 1
        raise RuntimeError("unexpected payload shape")


def _pipeline_threads() -> list[threading.Thread]:
    return [thread for thread in threading.enumerate() if thread.name == "segment-pipeline"]


def test_failed_capture_start_releases_monitoring_state(tmp_path: Path) -> None:
    orchestrator = PipelineOrchestrator(
        ScriptedTranscriptionService(["allergic to peanuts"]),
        AllergyExtractionService(),
        SQLiteRecordStore(tmp_path / "emtscribe.db"),
        settings=_settings(tmp_path),
        observer_factory=lambda: PollingObserver(timeout=0.05),
    )
    broken = BrokenSource(SourceInfo(name="mic", sample_rate=100, channels=1), [])

    with pytest.raises(CaptureError):
        orchestrator.start_monitoring(broken)

    assert not orchestrator.is_monitoring
    assert not _pipeline_threads()
    with pytest.raises(CaptureError):
        orchestrator.start_monitoring(broken)

    working = FakeSource(SourceInfo(name="mic", sample_rate=100, channels=1), [])
    session = orchestrator.start_monitoring(working)
    outcome = orchestrator.stop()

    assert outcome.session is session
    assert outcome.segments == []
    assert not _pipeline_threads()


def test_unexpected_errors_are_recorded_and_later_segments_still_run(tmp_path: Path) -> None:
    transcription = ExplodingTranscriptionService()
    orchestrator = PipelineOrchestrator(
        transcription,
        AllergyExtractionService(),
        SQLiteRecordStore(tmp_path / "emtscribe.db"),
        settings=_settings(tmp_path),
    )
    recordings = tmp_path / "recordings"
    paths = [
        _segment_file(recordings, "recorded_audio_20261019_143015_000000_0001.wav"),
        _segment_file(recordings, "recorded_audio_20261019_143025_000000_0002.wav"),
    ]

    outcomes = orchestrator.process_paths(_session(), paths)

    assert transcription.calls == 2
    assert [outcome.status for outcome in outcomes] == [SegmentStatus.FAILED, SegmentStatus.FAILED]
    assert all("unexpected payload shape" in str(outcome.error) for outcome in outcomes)
    assert all(path.exists() for path in paths)


def test_monitoring_records_outcome_for_unexpected_errors(tmp_path: Path) -> None:
    orchestrator = PipelineOrchestrator(
        ExplodingTranscriptionService(),
        AllergyExtractionService(),
        SQLiteRecordStore(tmp_path / "emtscribe.db"),
        settings=_settings(tmp_path),
        observer_factory=lambda: PollingObserver(timeout=0.05),
    )
    chunks = [np.zeros((100, 1), dtype=np.float32) for _ in range(12)]

    orchestrator.start_monitoring(FakeSource(SourceInfo(name="mic", sample_rate=100, channels=1), chunks))
    outcome = orchestrator.stop()

    assert len(outcome.segments) == 2
    assert [result.status for result in outcome.outcomes] == [SegmentStatus.FAILED, SegmentStatus.FAILED]
    assert all(segment.path.exists() for segment in outcome.segments)
