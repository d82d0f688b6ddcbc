"""Filesystem watch service feeding settled files into the sorter."""

from __future__ import annotations

import logging
import os
import queue
import threading
from pathlib import Path
from typing import Callable, Optional

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer
from watchdog.observers.api import BaseObserver

from download_sorter.config import SorterConfig
from download_sorter.organization import FileSorter, SortResult

from .settle import FileSettledEvent, SettleTracker

LOGGER = logging.getLogger(__name__)

SortCallback = Callable[[SortResult], None]


class WatchService:
    """Watch the configured folders and sort files once they settle.

    Notifications from watchdog refresh the settle tracker; settled files are
    queued and sorted on a dedicated worker thread so lock retries never stall
    the sweep. ``watch`` adds supervision on top of ``start``/``stop`` and
    resubscribes with exponential backoff when the observer dies.
    """

    def __init__(
        self,
        config: SorterConfig,
        sorter: FileSorter,
        *,
        tracker: Optional[SettleTracker] = None,
        observer_factory: Callable[[], BaseObserver] = Observer,
    ) -> None:
        """Initialize the watch service.

        Args:
            config: Loaded configuration snapshot.
            sorter: Sorter invoked for settled files.
            tracker: Settle tracker override, built from ``config`` by default.
            observer_factory: Factory returning a watchdog observer.
        """
        self._config = config
        self._sorter = sorter
        self._tracker = tracker or SettleTracker(
            config.sorting.settle_time_seconds,
            sweep_interval=config.sorting.sweep_interval_seconds,
        )
        self._observer_factory = observer_factory
        self._observer: Optional[BaseObserver] = None
        self._queue: queue.Queue[Optional[Path]] = queue.Queue()
        self._worker: Optional[threading.Thread] = None
        self._stop_event = threading.Event()
        self._paused = threading.Event()
        self._callbacks: list[SortCallback] = []
        self._folders: list[Path] = []
        self._initial_backoff = max(0.1, config.watch.error_backoff_seconds)
        self._max_backoff = max(self._initial_backoff, config.watch.max_error_backoff_seconds)
        self._tracker.add_listener(self._on_settled)

    # ------------------------------------------------------------------ #
    # Public API                                                         #
    # ------------------------------------------------------------------ #

    @property
    def tracker(self) -> SettleTracker:
        """Return the settle tracker fed by this service."""
        return self._tracker

    @property
    def folders(self) -> list[Path]:
        """Return the folders currently subscribed."""
        return list(self._folders)

    @property
    def is_running(self) -> bool:
        """Return whether the observer is subscribed."""
        return self._observer is not None and not self._stop_event.is_set()

    @property
    def is_paused(self) -> bool:
        """Return whether settled files are currently left in place."""
        return self._paused.is_set()

    @property
    def pending_count(self) -> int:
        """Return the number of files waiting to settle."""
        return self._tracker.pending_count

    def add_callback(self, callback: SortCallback) -> None:
        """Register ``callback`` to receive results of watcher-triggered sorts."""
        self._callbacks.append(callback)

    def process_once(self) -> list[SortResult]:
        """Sort the current contents of every watch folder once."""
        return self._sorter.sort_from_all_watch_folders()

    def start(self) -> None:
        """Subscribe to the watch folders and begin tracking files.

        Raises:
            RuntimeError: If the service is already running.
            OSError: If no observer could be scheduled.
        """
        if self._observer is not None:
            raise RuntimeError("WatchService is already running.")

        self._stop_event.clear()
        self._queue = queue.Queue()
        self._worker = threading.Thread(target=self._run_worker, name="sort-worker", daemon=True)
        self._worker.start()
        self._tracker.start()
        self._subscribe()
        self._seed_existing()

    def stop(self) -> None:
        """Unsubscribe, stop sweeping, and wait for an in-flight sort to finish."""
        self._stop_event.set()
        self._unsubscribe()
        self._tracker.stop()
        self._queue.put(None)
        worker = self._worker
        if worker is not None and worker is not threading.current_thread():
            worker.join()
        self._worker = None

    def pause(self) -> None:
        """Keep tracking files but leave settled files unsorted."""
        self._paused.set()

    def resume(self) -> None:
        """Resume sorting and re-track files that settled while paused."""
        self._paused.clear()
        if self.is_running:
            self._seed_existing()

    def watch(self, callback: Optional[SortCallback] = None) -> None:
        """Run until ``stop`` is called, resubscribing whenever the observer dies.

        Args:
            callback: Optional callable invoked with each watcher-triggered result.
        """
        if callback is not None:
            self.add_callback(callback)

        backoff = self._initial_backoff
        try:
            self.start()
        except OSError as exc:
            LOGGER.error("Unable to start watching: %s", exc)

        interval = max(0.1, self._config.watch.health_check_seconds)
        try:
            while not self._stop_event.wait(interval):
                if self._observer_healthy():
                    backoff = self._initial_backoff
                    continue
                LOGGER.warning("File watcher stopped unexpectedly; resubscribing.")
                try:
                    self._unsubscribe()
                    self._subscribe()
                    self._seed_existing()
                except OSError as exc:
                    LOGGER.error("Resubscribe failed (%s); retrying in %.1fs", exc, backoff)
                    self._unsubscribe()
                    if self._stop_event.wait(backoff):
                        break
                    backoff = min(backoff * 2, self._max_backoff)
        finally:
            self.stop()

    # ------------------------------------------------------------------ #
    # Event ingestion                                                    #
    # ------------------------------------------------------------------ #

    def handle_activity(self, path: Path) -> None:
        """Feed a create/modify notification for ``path`` into the tracker."""
        if self._stop_event.is_set() or not self._is_candidate(path):
            return
        self._tracker.on_file_event(path)

    def handle_move(self, source: Path, destination: Path) -> None:
        """Untrack ``source`` and track ``destination`` when it stays in a watch folder."""
        self._tracker.untrack(source)
        self.handle_activity(destination)

    def handle_deleted(self, path: Path) -> None:
        """Drop tracking state for a deleted file."""
        self._tracker.untrack(path)

    # ------------------------------------------------------------------ #
    # Internal helpers                                                   #
    # ------------------------------------------------------------------ #

    def _is_candidate(self, path: Path) -> bool:
        if self._config.should_ignore(path):
            return False
        return any(path.parent == folder for folder in self._folders)

    def _subscribe(self) -> None:
        if self._config.root_path:
            self._config.inbox_path.mkdir(parents=True, exist_ok=True)
        folders = self._config.all_watch_folders
        if not folders:
            raise OSError("No watch folders are configured.")

        observer = self._observer_factory()
        for folder in folders:
            observer.schedule(_SortEventHandler(self), str(folder), recursive=False)
        observer.start()
        self._folders = folders
        self._observer = observer
        LOGGER.info("Watching %s", ", ".join(str(folder) for folder in folders))

    def _unsubscribe(self) -> None:
        observer = self._observer
        self._observer = None
        if observer is None:
            return
        try:
            observer.stop()
            if observer.is_alive():
                observer.join(timeout=5)
        except RuntimeError as exc:  # pragma: no cover - observer never started
            LOGGER.debug("Observer shutdown failed: %s", exc)

    def _observer_healthy(self) -> bool:
        observer = self._observer
        if observer is None or not observer.is_alive():
            return False
        return all(emitter.is_alive() for emitter in observer.emitters)

    def _seed_existing(self) -> None:
        for folder in self._folders:
            for path in self._sorter.pending_files(folder):
                self._tracker.on_file_event(path)

    def _on_settled(self, event: FileSettledEvent) -> None:
        if self._stop_event.is_set() or self._paused.is_set():
            return
        self._queue.put(event.path)

    def _run_worker(self) -> None:
        work = self._queue
        while True:
            path = work.get()
            if path is None or self._stop_event.is_set():
                break
            result = self._sorter.sort_file(path)
            for callback in list(self._callbacks):
                try:
                    callback(result)
                except Exception:  # pragma: no cover
                    LOGGER.exception("Watch callback failed for %s", path)


class _SortEventHandler(FileSystemEventHandler):
    """Forward watchdog events into the watch service."""

    def __init__(self, service: WatchService) -> None:
        self._service = service

    def on_created(self, event: FileSystemEvent) -> None:
        """Handle a filesystem create event."""
        if not event.is_directory:
            self._service.handle_activity(_as_path(event.src_path))

    def on_modified(self, event: FileSystemEvent) -> None:
        """Handle a filesystem modify event."""
        if not event.is_directory:
            self._service.handle_activity(_as_path(event.src_path))

    def on_moved(self, event: FileSystemEvent) -> None:  # pragma: no cover - watchdog-specific
        """Handle a filesystem move event."""
        if not event.is_directory:
            self._service.handle_move(_as_path(event.src_path), _as_path(event.dest_path))

    def on_deleted(self, event: FileSystemEvent) -> None:
        """Handle a filesystem delete event."""
        if not event.is_directory:
            self._service.handle_deleted(_as_path(event.src_path))


def _as_path(raw: str | bytes) -> Path:
    return Path(os.fsdecode(raw))


__all__ = ["SortCallback", "WatchService"]
