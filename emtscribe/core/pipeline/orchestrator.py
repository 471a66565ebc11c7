"""Pipeline orchestrator wiring capture, observation and per-segment processing."""

from __future__ import annotations

import queue
import threading
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional

from watchdog.observers import Observer

from ...config import Settings, get_settings
from ...data.models import AudioSegment, RecognitionStatus, SessionContext, TranscriptResult
from ...data.records import normalise_record
from ...data.storage import RecordStore
from ...errors import PipelineError, RecoverableEmpty, TransientServiceFailure
from ...logging import get_logger
from ...services.extraction.base import ExtractionService
from ...services.transcription.base import TranscriptionService
from ..audio.base import AudioSource
from ..audio.segmenter import AudioSegmenter, segment_pattern
from .watcher import SegmentWatcher

LOGGER = get_logger(__name__)

_SENTINEL = object()


class SegmentStatus(str, Enum):
    STORED = "stored"
    EMPTY = "empty"
    FAILED = "failed"


@dataclass
class SegmentOutcome:
    path: Path
    status: SegmentStatus
    error: Optional[PipelineError] = None
    transcript: Optional[TranscriptResult] = None
    record: Optional[Dict[str, str]] = None

    @property
    def retained(self) -> bool:
        return self.status is SegmentStatus.FAILED


@dataclass
class MonitoringOutcome:
    session: SessionContext
    segments: List[AudioSegment] = field(default_factory=list)
    outcomes: List[SegmentOutcome] = field(default_factory=list)


class PipelineOrchestrator:
    """Run transcribe, extract and upsert for each finished segment.

    While monitoring, segments flow from the segmenter through the watcher
    into a queue drained by one worker thread, so record merges for a
    session happen strictly one at a time. A segment file is deleted only
    once its content is stored (or it held no speech); any failure leaves it
    on disk for a manual retry.
    """

    def __init__(
        self,
        transcription: Optional[TranscriptionService],
        extraction: ExtractionService,
        store: RecordStore,
        settings: Optional[Settings] = None,
        recordings_dir: Optional[Path] = None,
        observer_factory: Callable[[], object] = Observer,
        on_outcome: Optional[Callable[[SegmentOutcome], None]] = None,
        emit_timeout: float = 5.0,
    ) -> None:
        self.settings = settings or get_settings()
        self.transcription = transcription
        self.extraction = extraction
        self.store = store
        self.recordings_dir = Path(recordings_dir or self.settings.recordings_dir)
        self.observer_factory = observer_factory
        self.on_outcome = on_outcome
        self.emit_timeout = emit_timeout

        self._lock = threading.Lock()
        self._session: Optional[SessionContext] = None
        self._segmenter: Optional[AudioSegmenter] = None
        self._watcher: Optional[SegmentWatcher] = None
        self._worker: Optional[threading.Thread] = None
        self._queue: "queue.Queue[object]" = queue.Queue()
        self._outcomes: List[SegmentOutcome] = []

    @property
    def session(self) -> Optional[SessionContext]:
        return self._session

    @property
    def is_monitoring(self) -> bool:
        return self._segmenter is not None

    # Per-segment pipeline -------------------------------------------------

    def process_segment(self, session: SessionContext, path: Path) -> SegmentOutcome:
        path = Path(path)
        if self.transcription is None:
            error = PipelineError(f"No transcription backend configured for {path}")
            return self._failed(path, error)

        try:
            segment = AudioSegment.from_path(path)
        except (OSError, ValueError) as exc:
            return self._failed(path, PipelineError(f"Cannot read segment {path}: {exc}"))

        result = self.transcription.transcribe(segment)
        if result.status is RecognitionStatus.CANCELED:
            error = TransientServiceFailure(
                f"Speech recognition canceled for {path.name}: {result.error_code}",
                detail=result.error_detail,
            )
            return self._failed(path, error, transcript=result)
        if not result.recognized:
            LOGGER.info("No speech in %s; discarding segment", path.name)
            self._discard(path)
            return SegmentOutcome(
                path=path,
                status=SegmentStatus.EMPTY,
                error=RecoverableEmpty(f"No speech recognized in {path.name}"),
                transcript=result,
            )

        try:
            fragment = self.extraction.extract(session, result.text, session.current_record)
            stored = self.store.upsert(session.patient_id, fragment)
        except PipelineError as exc:
            return self._failed(path, exc, transcript=result)

        session.current_record = normalise_record(stored)
        self._discard(path)
        LOGGER.info("Segment %s merged into record %s", path.name, session.patient_id)
        return SegmentOutcome(
            path=path,
            status=SegmentStatus.STORED,
            transcript=result,
            record=dict(session.current_record),
        )

    def process_paths(self, session: SessionContext, paths: Iterable[Path]) -> List[SegmentOutcome]:
        """Run retained segment files through the pipeline in the given order."""

        outcomes = []
        for path in paths:
            outcome = self._run_segment(session, Path(path))
            self._notify(outcome)
            outcomes.append(outcome)
        return outcomes

    def _run_segment(self, session: SessionContext, path: Path) -> SegmentOutcome:
        try:
            return self.process_segment(session, path)
        except Exception as exc:
            LOGGER.exception("Unexpected failure processing %s", path)
            error = PipelineError(f"Unexpected failure processing {path.name}: {exc!r}")
            return SegmentOutcome(path=path, status=SegmentStatus.FAILED, error=error)

    def _failed(
        self,
        path: Path,
        error: PipelineError,
        transcript: Optional[TranscriptResult] = None,
    ) -> SegmentOutcome:
        if error.detail:
            LOGGER.error("Segment %s kept after failure: %s | %s", path, error, error.detail)
        else:
            LOGGER.error("Segment %s kept after failure: %s", path, error)
        return SegmentOutcome(path=path, status=SegmentStatus.FAILED, error=error, transcript=transcript)

    def _discard(self, path: Path) -> None:
        try:
            path.unlink()
        except FileNotFoundError:
            pass
        except OSError as exc:
            LOGGER.warning("Failed to delete segment %s: %s", path, exc)

    def _notify(self, outcome: SegmentOutcome) -> None:
        if self.on_outcome is None:
            return
        try:
            self.on_outcome(outcome)
        except Exception:  # pragma: no cover - callbacks should not break pipeline
            LOGGER.exception("Outcome callback raised an exception")

    # Monitoring lifecycle -------------------------------------------------

    def start_monitoring(
        self, source: AudioSource, session: Optional[SessionContext] = None
    ) -> SessionContext:
        with self._lock:
            if self._segmenter is not None and self._session is not None:
                return self._session

            session = session or SessionContext.create(self.settings.patient_id_prefix)
            self._session = session
            self._outcomes = []
            self._queue = queue.Queue()
            LOGGER.info("Starting session for patient %s", session.patient_id)

            if self.transcription is not None:
                self._worker = threading.Thread(
                    target=self._drain,
                    args=(session, self._queue, self._outcomes),
                    name="segment-pipeline",
                    daemon=True,
                )
                self._worker.start()
                self._watcher = SegmentWatcher(
                    self.recordings_dir,
                    segment_pattern(self.settings.segment_prefix),
                    self._queue.put,
                    observer_factory=self.observer_factory,
                )
                self._watcher.start()
            else:
                LOGGER.warning("No transcription backend; segments will be kept on disk")

            segmenter = AudioSegmenter(
                source,
                self.recordings_dir,
                segment_seconds=self.settings.segment_seconds,
                prefix=self.settings.segment_prefix,
            )
            try:
                segmenter.start()
            except Exception:
                LOGGER.error("Audio capture failed to start; releasing session %s", session.patient_id)
                watcher, self._watcher = self._watcher, None
                worker, self._worker = self._worker, None
                self._session = None
                self._shutdown(watcher, worker, self._queue)
                raise
            self._segmenter = segmenter
            return session

    def stop(self) -> MonitoringOutcome:
        """Stop capture and let every captured segment finish processing."""

        with self._lock:
            segmenter, self._segmenter = self._segmenter, None
            watcher, self._watcher = self._watcher, None
            worker, self._worker = self._worker, None
            session = self._session
            work = self._queue
            outcomes = self._outcomes
            if segmenter is None or session is None:
                raise RuntimeError("Monitoring has not been started")

        segments = segmenter.stop()
        if watcher is not None:
            paths = [segment.path for segment in segments]
            watcher.wait_for(paths, timeout=self.emit_timeout)
            watcher.stop()
            observed = {path.resolve() for path in watcher.emitted}
            for path in paths:
                if path.resolve() not in observed:
                    LOGGER.warning("Queueing unobserved segment %s", path.name)
                    work.put(path)
        self._shutdown(None, worker, work)

        LOGGER.info(
            "Session %s finished: %s segment(s), %s processed",
            session.patient_id,
            len(segments),
            len(outcomes),
        )
        return MonitoringOutcome(session=session, segments=segments, outcomes=list(outcomes))

    def _shutdown(
        self,
        watcher: Optional[SegmentWatcher],
        worker: Optional[threading.Thread],
        work: "queue.Queue[object]",
    ) -> None:
        if watcher is not None:
            watcher.stop()
        if worker is not None:
            work.put(_SENTINEL)
            worker.join()

    def close(self) -> None:
        if self.transcription is not None:
            self.transcription.close()
        self.store.close()

    def _drain(
        self,
        session: SessionContext,
        work: "queue.Queue[object]",
        outcomes: List[SegmentOutcome],
    ) -> None:
        while True:
            item = work.get()
            if item is _SENTINEL:
                break
            outcome = self._run_segment(session, Path(item))
            outcomes.append(outcome)
            self._notify(outcome)


__all__ = [
    "MonitoringOutcome",
    "PipelineOrchestrator",
    "SegmentOutcome",
    "SegmentStatus",
]
