import os
import threading
from pathlib import Path

from watchdog.observers import Observer
from watchdog.observers.polling import PollingObserver

from emtscribe.core.audio.segmenter import segment_pattern
from emtscribe.core.pipeline.watcher import SegmentWatcher


def _observer():
    return PollingObserver(timeout=0.05)


def _segment_name(index: int) -> str:
    return f"recorded_audio_20261019_143015_{index:06d}_{index:04d}.wav"


def _write_segment(directory: Path, index: int) -> Path:
    final = directory / _segment_name(index)
    partial = final.with_name(final.name + ".part")
    partial.write_bytes(b"RIFF")
    os.replace(partial, final)
    return final


def _watcher(directory: Path, received: list) -> SegmentWatcher:
    return SegmentWatcher(directory, segment_pattern("recorded_audio"), received.append, observer_factory=_observer)


def test_each_new_segment_is_emitted_once_in_order(tmp_path: Path) -> None:
    received: list[Path] = []
    watcher = _watcher(tmp_path, received)
    watcher.start()
    try:
        written = []
        for index in range(1, 4):
            path = _write_segment(tmp_path, index)
            written.append(path)
            assert watcher.wait_for([path])
        (tmp_path / "notes.txt").write_text("ignored")
        watcher.start()
    finally:
        watcher.stop()

    assert [path.name for path in received] == [path.name for path in written]
    assert not watcher.is_monitoring


def test_existing_files_are_not_emitted_after_restart(tmp_path: Path) -> None:
    received: list[Path] = []
    _write_segment(tmp_path, 1)

    first = _watcher(tmp_path, received)
    first.start()
    try:
        second_path = _write_segment(tmp_path, 2)
        assert first.wait_for([second_path])
    finally:
        first.stop()

    restarted = _watcher(tmp_path, received)
    restarted.start()
    try:
        third_path = _write_segment(tmp_path, 3)
        assert restarted.wait_for([third_path])
    finally:
        restarted.stop()

    assert [path.name for path in received] == [_segment_name(2), _segment_name(3)]


def test_handler_failure_does_not_stop_observation(tmp_path: Path) -> None:
    calls: list[Path] = []
    ready = threading.Event()

    def flaky(path: Path) -> None:
        calls.append(path)
        if len(calls) == 1:
            raise RuntimeError("boom")
        ready.set()

    watcher = SegmentWatcher(tmp_path, segment_pattern("recorded_audio"), flaky, observer_factory=_observer)
    watcher.start()
    try:
        assert watcher.wait_for([_write_segment(tmp_path, 1)])
        _write_segment(tmp_path, 2)
        assert ready.wait(5.0)
    finally:
        watcher.stop()

    assert len(calls) == 2


def test_wait_for_times_out_for_unseen_paths(tmp_path: Path) -> None:
    watcher = _watcher(tmp_path, [])

    assert watcher.wait_for([tmp_path / _segment_name(9)], timeout=0.05) is False


def test_rapid_segments_are_emitted_once_in_creation_order(tmp_path: Path) -> None:
    received: list[Path] = []
    watcher = SegmentWatcher(tmp_path, segment_pattern("recorded_audio"), received.append, observer_factory=Observer)
    watcher.start()
    try:
        written = [_write_segment(tmp_path, index) for index in range(1, 11)]
        assert watcher.wait_for(written)
    finally:
        watcher.stop()

    assert [path.name for path in received] == [path.name for path in written]
