"""Settle detection: hold files back until they stop changing.

Filesystem notifications only refresh a file's quiet timer; a periodic sweep is
the sole authority that declares a file settled. The sweep re-stats every
tracked path, restarts the timer when size or modification time moved, and
emits a settled signal once a path has been quiet for the settle duration.

All mutations of the tracked-state map go through ``_lock``. The sweep reads a
snapshot, performs its ``stat`` calls without the lock, and then applies each
update or removal only if the entry is still the exact object it inspected, so
a concurrent event or untrack is never overwritten or resurrected.
"""

from __future__ import annotations

import logging
import os
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class TrackedFileState:
    """Snapshot of a tracked file.

    Attributes:
        path: Tracked file path.
        last_seen_at: Clock reading of the last observed activity.
        last_size: Size in bytes at the last observation.
        last_modified_ns: Modification time (ns) at the last observation.
    """

    path: Path
    last_seen_at: float
    last_size: int
    last_modified_ns: int


@dataclass(frozen=True, slots=True)
class FileSettledEvent:
    """Payload emitted when a file has been quiet for the settle duration."""

    path: Path
    file_size: int


SettledListener = Callable[[FileSettledEvent], None]


class SettleTracker:
    """Debounce raw filesystem events into one settled signal per quiet episode."""

    def __init__(
        self,
        settle_seconds: float,
        *,
        sweep_interval: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the tracker.

        Args:
            settle_seconds: Quiet period required before a file settles. Zero or
                negative values settle on the next sweep.
            sweep_interval: Seconds between background sweeps.
            clock: Monotonic clock used for quiet-period arithmetic.
        """
        self._settle_seconds = settle_seconds
        self._sweep_interval = sweep_interval
        self._clock = clock
        self._pending: dict[Path, TrackedFileState] = {}
        self._lock = threading.Lock()
        self._listeners: list[SettledListener] = []
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    # ------------------------------------------------------------------ #
    # Listeners and lifecycle                                            #
    # ------------------------------------------------------------------ #

    def add_listener(self, listener: SettledListener) -> None:
        """Register ``listener`` for settled signals."""
        self._listeners.append(listener)

    def remove_listener(self, listener: SettledListener) -> None:
        """Unregister a previously added listener."""
        if listener in self._listeners:
            self._listeners.remove(listener)

    @property
    def is_running(self) -> bool:
        """Return whether the background sweep thread is alive."""
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        """Start the background sweep thread."""
        if self.is_running:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run, name="settle-sweep", daemon=True
        )
        self._thread.start()

    def stop(self, *, clear: bool = True) -> None:
        """Stop sweeping; no settled signal is emitted after this returns.

        Args:
            clear: Whether to drop every tracked entry.
        """
        self._stop_event.set()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=max(5.0, self._sweep_interval * 2))
        self._thread = None
        if clear:
            with self._lock:
                self._pending.clear()

    def _run(self) -> None:
        while not self._stop_event.wait(self._sweep_interval):
            try:
                self.sweep()
            except Exception:  # pragma: no cover
                LOGGER.exception("Settle sweep failed")

    # ------------------------------------------------------------------ #
    # Ingestion                                                          #
    # ------------------------------------------------------------------ #

    def on_file_event(self, path: Path | str) -> None:
        """Record activity for ``path`` and restart its quiet timer.

        Every call resets the timer, even when size and modification time are
        unchanged, since an OS notification implies the file was touched.
        """
        target = Path(path)
        try:
            stat = os.stat(target)
        except (FileNotFoundError, NotADirectoryError):
            self.untrack(target)
            return
        except PermissionError:
            LOGGER.debug("No access to %s; not tracking", target)
            self.untrack(target)
            return
        except OSError as exc:
            LOGGER.debug("Unable to stat %s (%s); waiting for the next event", target, exc)
            return

        state = TrackedFileState(
            path=target,
            last_seen_at=self._clock(),
            last_size=stat.st_size,
            last_modified_ns=stat.st_mtime_ns,
        )
        with self._lock:
            self._pending[target] = state

    def untrack(self, path: Path | str) -> None:
        """Drop ``path`` immediately without emitting a settled signal."""
        with self._lock:
            self._pending.pop(Path(path), None)

    @property
    def pending_count(self) -> int:
        """Return the number of tracked files."""
        with self._lock:
            return len(self._pending)

    def pending_files(self) -> list[Path]:
        """Return the currently tracked paths."""
        with self._lock:
            return list(self._pending)

    # ------------------------------------------------------------------ #
    # Sweep                                                              #
    # ------------------------------------------------------------------ #

    def sweep(self) -> list[FileSettledEvent]:
        """Re-validate every tracked file and emit settled signals.

        Returns:
            list[FileSettledEvent]: Signals emitted during this sweep.
        """
        with self._lock:
            snapshot = list(self._pending.values())

        now = self._clock()
        settled: list[FileSettledEvent] = []

        for state in snapshot:
            try:
                stat = os.stat(state.path)
            except (FileNotFoundError, NotADirectoryError, PermissionError):
                self._remove_if_current(state)
                continue
            except OSError:
                continue

            if stat.st_size != state.last_size or stat.st_mtime_ns != state.last_modified_ns:
                refreshed = TrackedFileState(
                    path=state.path,
                    last_seen_at=now,
                    last_size=stat.st_size,
                    last_modified_ns=stat.st_mtime_ns,
                )
                self._replace_if_current(state, refreshed)
                continue

            if now - state.last_seen_at >= self._settle_seconds:
                if self._remove_if_current(state):
                    settled.append(FileSettledEvent(path=state.path, file_size=state.last_size))

        emitted: list[FileSettledEvent] = []
        for event in settled:
            if self._stop_event.is_set():
                break
            self._emit(event)
            emitted.append(event)
        return emitted

    def _remove_if_current(self, state: TrackedFileState) -> bool:
        with self._lock:
            if self._pending.get(state.path) is state:
                del self._pending[state.path]
                return True
        return False

    def _replace_if_current(self, state: TrackedFileState, replacement: TrackedFileState) -> bool:
        with self._lock:
            if self._pending.get(state.path) is state:
                self._pending[state.path] = replacement
                return True
        return False

    def _emit(self, event: FileSettledEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                LOGGER.exception("Settled listener failed for %s", event.path)


__all__ = ["FileSettledEvent", "SettleTracker", "TrackedFileState"]
