"""Directory observer handing finished segments to the pipeline."""

from __future__ import annotations

import re
import threading
import time
from pathlib import Path
from typing import Callable, Iterable, List, Optional, Set

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from ...logging import get_logger

LOGGER = get_logger(__name__)


class _SegmentEventHandler(FileSystemEventHandler):
    def __init__(self, watcher: "SegmentWatcher") -> None:
        self._watcher = watcher

    def on_created(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._watcher._offer(Path(event.src_path))

    def on_moved(self, event: FileSystemEvent) -> None:
        # Segments are written as ``*.part`` and renamed into place.
        if not event.is_directory:
            self._watcher._offer(Path(event.dest_path))


class SegmentWatcher:
    """Emit every new file matching ``pattern`` in ``directory`` exactly once.

    Only filesystem completion events (creation or rename into place) are
    acted upon. Files already present when monitoring starts are remembered
    as seen and never emitted, so a restart cannot re-process them.

    Emission order follows the observer's event order. Native observers
    report renames in the order they happen; watchdog's ``PollingObserver``
    reports files that appear within one polling interval in arbitrary order.
    """

    def __init__(
        self,
        directory: Path,
        pattern: re.Pattern[str],
        on_segment: Callable[[Path], None],
        observer_factory: Callable[[], object] = Observer,
    ) -> None:
        self.directory = Path(directory)
        self.pattern = pattern
        self.on_segment = on_segment
        self._observer_factory = observer_factory
        self._observer = None
        self._seen: Set[Path] = set()
        self._emitted: List[Path] = []
        self._condition = threading.Condition()

    @property
    def is_monitoring(self) -> bool:
        return self._observer is not None

    @property
    def emitted(self) -> List[Path]:
        with self._condition:
            return list(self._emitted)

    def start(self) -> None:
        if self._observer is not None:
            return
        self.directory.mkdir(parents=True, exist_ok=True)
        with self._condition:
            for existing in self.directory.iterdir():
                if self._matches(existing):
                    self._seen.add(existing.resolve())

        observer = self._observer_factory()
        observer.schedule(_SegmentEventHandler(self), str(self.directory), recursive=False)
        observer.start()
        self._observer = observer
        LOGGER.info("Monitoring for new audio segments in %s", self.directory)

    def stop(self) -> None:
        observer, self._observer = self._observer, None
        if observer is None:
            return
        observer.stop()
        observer.join()
        LOGGER.info("Stopped monitoring %s", self.directory)

    def wait_for(self, paths: Iterable[Path], timeout: float = 5.0) -> bool:
        """Block until every path in ``paths`` has been emitted."""

        targets = {Path(path).resolve() for path in paths}
        deadline = time.monotonic() + timeout
        with self._condition:
            while not targets <= self._seen:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    missing = sorted(str(path) for path in targets - self._seen)
                    LOGGER.warning("Watcher did not observe %s before timeout", missing)
                    return False
                self._condition.wait(remaining)
        return True

    def _matches(self, path: Path) -> bool:
        return bool(self.pattern.match(path.name))

    def _offer(self, path: Path) -> None:
        if Path(path).parent.resolve() != self.directory.resolve() or not self._matches(path):
            return
        resolved = Path(path).resolve()
        with self._condition:
            if resolved in self._seen:
                return
            self._seen.add(resolved)
            self._emitted.append(path)
            self._condition.notify_all()
        LOGGER.info("New recording saved: %s", path.name)
        try:
            self.on_segment(path)
        except Exception:
            LOGGER.exception("Segment handler failed for %s", path)


__all__ = ["SegmentWatcher"]
