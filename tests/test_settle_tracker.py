"""Tests for settle detection."""

from __future__ import annotations

import threading
from pathlib import Path

from download_sorter.watch import FileSettledEvent, SettleTracker


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def _tracker(settle: float = 180) -> tuple[SettleTracker, FakeClock, list[FileSettledEvent]]:
    clock = FakeClock()
    tracker = SettleTracker(settle, clock=clock)
    events: list[FileSettledEvent] = []
    tracker.add_listener(events.append)
    return tracker, clock, events


def test_file_settles_after_quiet_period(tmp_path: Path) -> None:
    tracker, clock, events = _tracker()
    target = tmp_path / "movie.mkv"
    target.write_bytes(b"x" * 10)

    tracker.on_file_event(target)
    clock.advance(179)
    assert tracker.sweep() == []
    assert tracker.pending_count == 1

    clock.advance(1)
    emitted = tracker.sweep()

    assert emitted == [FileSettledEvent(path=target, file_size=10)]
    assert events == emitted
    assert tracker.pending_count == 0


def test_growth_restarts_the_timer(tmp_path: Path) -> None:
    tracker, clock, events = _tracker()
    target = tmp_path / "big.iso"
    target.write_bytes(b"x")

    tracker.on_file_event(target)
    clock.advance(100)
    with target.open("ab") as handle:
        handle.write(b"more")
    assert tracker.sweep() == []

    clock.advance(179)
    assert tracker.sweep() == []

    clock.advance(1)
    assert [event.file_size for event in tracker.sweep()] == [5]
    assert len(events) == 1


def test_file_changing_every_sweep_never_settles(tmp_path: Path) -> None:
    tracker, clock, events = _tracker()
    target = tmp_path / "stream.mp4"
    target.write_bytes(b"x")
    tracker.on_file_event(target)

    for _ in range(4):
        with target.open("ab") as handle:
            handle.write(b"chunk")
        clock.advance(200)
        assert tracker.sweep() == []
        assert tracker.pending_count == 1

    assert events == []
    clock.advance(180)
    assert [event.file_size for event in tracker.sweep()] == [21]


def test_notification_restarts_timer_without_changes(tmp_path: Path) -> None:
    tracker, clock, events = _tracker()
    target = tmp_path / "doc.pdf"
    target.write_bytes(b"pdf")

    tracker.on_file_event(target)
    clock.advance(170)
    tracker.on_file_event(target)
    clock.advance(170)

    assert tracker.sweep() == []
    clock.advance(10)
    assert len(tracker.sweep()) == 1
    assert len(events) == 1


def test_vanished_file_is_dropped_silently(tmp_path: Path) -> None:
    tracker, clock, events = _tracker()
    target = tmp_path / "gone.zip"
    target.write_bytes(b"zip")

    tracker.on_file_event(target)
    target.unlink()
    clock.advance(500)

    assert tracker.sweep() == []
    assert tracker.pending_count == 0
    assert events == []


def test_missing_path_is_not_tracked(tmp_path: Path) -> None:
    tracker, _, _ = _tracker()

    tracker.on_file_event(tmp_path / "never-existed.txt")

    assert tracker.pending_count == 0


def test_untrack_prevents_settling(tmp_path: Path) -> None:
    tracker, clock, events = _tracker()
    target = tmp_path / "setup.exe"
    target.write_bytes(b"mz")

    tracker.on_file_event(target)
    tracker.untrack(target)
    clock.advance(500)

    assert tracker.sweep() == []
    assert events == []


def test_one_signal_per_quiet_episode(tmp_path: Path) -> None:
    tracker, clock, events = _tracker(settle=10)
    target = tmp_path / "notes.txt"
    target.write_text("v1", encoding="utf-8")

    tracker.on_file_event(target)
    clock.advance(10)
    tracker.sweep()
    clock.advance(10)
    tracker.sweep()
    assert len(events) == 1

    tracker.on_file_event(target)
    clock.advance(10)
    tracker.sweep()
    assert len(events) == 2


def test_zero_settle_time_settles_on_next_sweep(tmp_path: Path) -> None:
    tracker, _, events = _tracker(settle=0)
    target = tmp_path / "quick.txt"
    target.write_text("now", encoding="utf-8")

    tracker.on_file_event(target)

    assert len(tracker.sweep()) == 1
    assert events[0].path == target


def test_listener_failure_does_not_block_other_listeners(tmp_path: Path) -> None:
    tracker, clock, events = _tracker(settle=1)

    def _boom(_: FileSettledEvent) -> None:
        raise RuntimeError("listener failed")

    tracker.remove_listener(events.append)
    tracker.add_listener(_boom)
    tracker.add_listener(events.append)
    target = tmp_path / "a.txt"
    target.write_text("a", encoding="utf-8")

    tracker.on_file_event(target)
    clock.advance(1)
    tracker.sweep()

    assert [event.path for event in events] == [target]


def test_no_signal_after_stop(tmp_path: Path) -> None:
    tracker, clock, events = _tracker(settle=1)
    target = tmp_path / "late.txt"
    target.write_text("late", encoding="utf-8")

    tracker.on_file_event(target)
    clock.advance(5)
    tracker.stop(clear=False)

    assert tracker.sweep() == []
    assert events == []


def test_stop_clears_tracked_files(tmp_path: Path) -> None:
    tracker, _, _ = _tracker()
    target = tmp_path / "a.txt"
    target.write_text("a", encoding="utf-8")
    tracker.on_file_event(target)

    tracker.stop()

    assert tracker.pending_files() == []


def test_background_sweep_emits(tmp_path: Path) -> None:
    tracker = SettleTracker(0, sweep_interval=0.05)
    settled = threading.Event()
    tracker.add_listener(lambda _: settled.set())
    target = tmp_path / "bg.txt"
    target.write_text("bg", encoding="utf-8")

    tracker.start()
    try:
        assert tracker.is_running
        tracker.on_file_event(target)
        assert settled.wait(timeout=5)
    finally:
        tracker.stop()

    assert not tracker.is_running
