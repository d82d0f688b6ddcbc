"""Classify, move, and audit files taken from watch folders."""

from __future__ import annotations

import errno
import logging
import os
import shutil
import time
from pathlib import Path
from typing import Callable, Iterable, Optional

from download_sorter.classification import Classifier, Destination
from download_sorter.config import SorterConfig
from download_sorter.state import AuditRecord, AuditStore, AuditStoreError, SortStatus

from .collisions import resolve_collision
from .errors import ErrorKind, FileLockedError, TooManyCollisionsError, classify_os_error
from .hashing import HashComputer
from .models import FileSortedEvent, FileSortFailedEvent, SortResult

LOGGER = logging.getLogger(__name__)

ERROR_CATEGORY = "ERROR"
VANISHED_REASON = "File no longer exists"
IGNORED_REASON = "Ignored extension"
LOCKED_REASON = "File is locked"
DESTINATION_RACE_ATTEMPTS = 5

_LINK_UNSUPPORTED = {errno.EXDEV, errno.EPERM, errno.EMLINK, errno.ENOTSUP, errno.EOPNOTSUPP}

Mover = Callable[[Path, Path], None]


def move_exclusive(source: Path, destination: Path) -> None:
    """Move ``source`` to ``destination`` without ever replacing an existing file.

    A hard link claims the destination atomically on the same volume; other
    volumes fall back to copying into a file opened with ``O_EXCL``. Either
    way an occupied destination raises ``FileExistsError`` and the source
    stays where it was.
    """
    try:
        os.link(source, destination)
    except FileExistsError:
        raise
    except OSError as exc:
        if exc.errno not in _LINK_UNSUPPORTED:
            raise
        _copy_exclusive(source, destination)
    _unlink_source(source, destination)


def _copy_exclusive(source: Path, destination: Path) -> None:
    with source.open("rb") as reader:
        writer = destination.open("xb")
        try:
            with writer:
                shutil.copyfileobj(reader, writer)
            shutil.copystat(source, destination)
        except OSError:
            destination.unlink(missing_ok=True)
            raise


def _unlink_source(source: Path, destination: Path) -> None:
    try:
        source.unlink()
    except OSError:
        destination.unlink(missing_ok=True)
        raise


class FileSorter:
    """Move single files into their category folders and record the outcome.

    ``sort_file`` never raises: every failure is converted into a ``SortResult``
    and, for lock exhaustion and hard failures, an audit record. Benign skips
    (vanished source, ignored extension) are returned without being audited.
    """

    def __init__(
        self,
        config: SorterConfig,
        store: Optional[AuditStore] = None,
        *,
        classifier: Optional[Classifier] = None,
        hasher: Optional[HashComputer] = None,
        mover: Optional[Mover] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        """Initialize the sorter.

        Args:
            config: Configuration snapshot used for every sort.
            store: Audit sink; ``None`` disables auditing.
            classifier: Classifier override, built from ``config`` by default.
            hasher: Content hasher used when ``compute_hashes`` is enabled.
            mover: Callable performing the physical move.
            sleep: Callable used for the lock retry backoff.
        """
        self._config = config
        self._store = store
        self._classifier = classifier or Classifier(config)
        self._hasher = hasher or HashComputer()
        self._mover = mover or move_exclusive
        self._sleep = sleep
        self._sorted_listeners: list[Callable[[FileSortedEvent], None]] = []
        self._failed_listeners: list[Callable[[FileSortFailedEvent], None]] = []

    @property
    def config(self) -> SorterConfig:
        """Return the configuration snapshot in use."""
        return self._config

    def add_sorted_listener(self, listener: Callable[[FileSortedEvent], None]) -> None:
        """Register ``listener`` for successful sorts."""
        self._sorted_listeners.append(listener)

    def add_failed_listener(self, listener: Callable[[FileSortFailedEvent], None]) -> None:
        """Register ``listener`` for audited skips and failures."""
        self._failed_listeners.append(listener)

    # ------------------------------------------------------------------ #
    # Single file                                                        #
    # ------------------------------------------------------------------ #

    def sort_file(self, source_path: Path | str) -> SortResult:
        """Sort one file into its destination folder.

        Args:
            source_path: File to sort.

        Returns:
            SortResult: Success with destination and category, a skip, or a failure.
        """
        source = Path(source_path)
        name = source.name
        file_size = 0
        LOGGER.debug("Processing file: %s", name)

        try:
            if not source.is_file():
                LOGGER.debug("File no longer exists: %s", name)
                return SortResult.skip(source, VANISHED_REASON)

            if self._config.should_ignore(source):
                LOGGER.debug("Ignoring partial download: %s", name)
                return SortResult.skip(source, IGNORED_REASON)

            file_size = source.stat().st_size
            destination = self._classifier.classify(source.suffix, file_size)
            destination.folder.mkdir(parents=True, exist_ok=True)
            content_hash = self._content_hash(source)
            dest_path = self._move_to_free_name(source, destination.folder)
        except FileLockedError as exc:
            LOGGER.warning("File locked, skipping: %s", name)
            self._record_failure(source, str(exc), SortStatus.SKIPPED, file_size)
            return SortResult.skip(source, LOCKED_REASON)
        except TooManyCollisionsError as exc:
            LOGGER.error("Failed to sort %s: %s", name, exc)
            self._record_failure(source, str(exc), SortStatus.FAILED, file_size)
            return SortResult.fail(source, str(exc))
        except OSError as exc:
            kind = classify_os_error(exc)
            if kind is ErrorKind.NOT_FOUND and not source.exists():
                LOGGER.debug("File vanished while sorting: %s", name)
                return SortResult.skip(source, VANISHED_REASON)
            message = exc.strerror or str(exc)
            if kind is ErrorKind.PERMISSION:
                LOGGER.error("Access denied: %s: %s", name, exc)
            else:
                LOGGER.error("Failed to sort %s: %s", name, exc)
            self._record_failure(source, message, SortStatus.FAILED, file_size)
            return SortResult.fail(source, message)
        except Exception as exc:  # pragma: no cover
            LOGGER.exception("Unexpected error while sorting %s", name)
            self._record_failure(source, str(exc), SortStatus.FAILED, file_size)
            return SortResult.fail(source, str(exc))

        self._record(
            AuditRecord(
                original_name=name,
                final_name=dest_path.name,
                source_path=str(source),
                dest_path=str(dest_path),
                category=destination.category,
                file_size=file_size,
                status=SortStatus.SUCCESS,
                content_hash=content_hash,
            )
        )
        self._notify(
            self._sorted_listeners,
            FileSortedEvent(
                original_name=name,
                final_name=dest_path.name,
                source_path=source,
                dest_path=dest_path,
                category=destination.category,
                file_size=file_size,
            ),
        )
        LOGGER.info("Sorted: %s -> %s", name, destination.category)
        return SortResult.ok(source, dest_path, destination.category)

    def preview(self, source_path: Path | str) -> Optional[Destination]:
        """Return where ``source_path`` would be sorted, or ``None`` if it would be skipped."""
        source = Path(source_path)
        if not source.is_file() or self._config.should_ignore(source):
            return None
        try:
            size = source.stat().st_size
        except OSError:
            return None
        return self._classifier.classify(source.suffix, size)

    # ------------------------------------------------------------------ #
    # Batches                                                            #
    # ------------------------------------------------------------------ #

    def sort_from_folder(self, folder: Path | str) -> list[SortResult]:
        """Sort every immediate, non-ignored file in ``folder``.

        The folder listing is taken up front; a file removed afterwards yields a
        benign skip rather than aborting the batch.
        """
        return [self.sort_file(path) for path in self.pending_files(folder)]

    def sort_from_all_watch_folders(self) -> list[SortResult]:
        """Sort every configured watch folder in order, inbox first."""
        results: list[SortResult] = []
        for folder in self._config.all_watch_folders:
            results.extend(self.sort_from_folder(folder))
        return results

    def sort_all_pending(self) -> list[SortResult]:
        """Sort the default inbox only."""
        return self.sort_from_folder(self._config.inbox_path)

    def pending_files(self, folder: Path | str) -> list[Path]:
        """Return the sortable files currently sitting in ``folder``."""
        directory = Path(folder)
        if not directory.is_dir():
            return []
        try:
            entries = sorted(directory.iterdir())
        except OSError as exc:
            LOGGER.error("Unable to list %s: %s", directory, exc)
            return []
        return [
            path for path in entries if path.is_file() and not self._config.should_ignore(path)
        ]

    def scan(
        self,
        folder: Path | str,
        *,
        recursive: bool = False,
        exclude: Iterable[Path] = (),
    ) -> list[Path]:
        """Return sortable files under ``folder`` for a one-off import.

        Args:
            folder: Directory to scan.
            recursive: Whether to descend into subdirectories.
            exclude: Directories whose contents are never returned.

        Returns:
            list[Path]: Non-ignored files in path order.
        """
        root = Path(folder)
        excluded = [Path(path).resolve() for path in exclude]
        found: list[Path] = []
        try:
            candidates = root.rglob("*") if recursive else root.iterdir()
            for path in candidates:
                if not path.is_file() or self._config.should_ignore(path):
                    continue
                parent = path.parent.resolve()
                if any(parent.is_relative_to(skip) for skip in excluded):
                    continue
                found.append(path)
        except OSError as exc:
            LOGGER.warning("Stopped scanning %s early: %s", root, exc)
        return sorted(found)

    def pending_count(self, folders: Optional[Iterable[Path]] = None) -> int:
        """Return the number of sortable files in ``folders`` (the inbox by default)."""
        targets = list(folders) if folders is not None else [self._config.inbox_path]
        return sum(len(self.pending_files(folder)) for folder in targets)

    # ------------------------------------------------------------------ #
    # Internal helpers                                                   #
    # ------------------------------------------------------------------ #

    def _move_to_free_name(self, source: Path, folder: Path) -> Path:
        # The mover refuses to overwrite, so a name taken after resolution is re-resolved.
        for _ in range(DESTINATION_RACE_ATTEMPTS - 1):
            dest_path = resolve_collision(folder, source.name)
            try:
                self._move_with_retry(source, dest_path)
                return dest_path
            except FileExistsError:
                LOGGER.warning("%s appeared before the move; choosing another name", dest_path)
        dest_path = resolve_collision(folder, source.name)
        self._move_with_retry(source, dest_path)
        return dest_path

    def _move_with_retry(self, source: Path, destination: Path) -> None:
        attempts = self._config.sorting.lock_retry_attempts
        delay = self._config.sorting.lock_retry_delay_seconds
        for attempt in range(1, attempts + 1):
            try:
                self._mover(source, destination)
                return
            except OSError as exc:
                if classify_os_error(exc) is not ErrorKind.LOCK_CONTENTION:
                    raise
                if attempt == attempts:
                    raise FileLockedError(f"{LOCKED_REASON}: {exc}") from exc
                LOGGER.debug(
                    "Move of %s blocked (attempt %d/%d); retrying in %.2fs",
                    source.name,
                    attempt,
                    attempts,
                    delay,
                )
                self._sleep(max(0.0, delay))

    def _content_hash(self, source: Path) -> Optional[str]:
        if not self._config.sorting.compute_hashes:
            return None
        try:
            return self._hasher.compute(source)
        except OSError as exc:
            LOGGER.warning("Unable to hash %s: %s", source.name, exc)
            return None

    def _record_failure(
        self,
        source: Path,
        error: str,
        status: SortStatus,
        file_size: int,
    ) -> None:
        self._record(
            AuditRecord(
                original_name=source.name,
                final_name=source.name,
                source_path=str(source),
                dest_path=str(source),
                category=ERROR_CATEGORY,
                file_size=file_size,
                status=status,
                error_message=error,
            )
        )
        self._notify(
            self._failed_listeners,
            FileSortFailedEvent(
                file_name=source.name,
                source_path=source,
                error=error,
                status=status,
            ),
        )

    def _record(self, record: AuditRecord) -> None:
        if self._store is None:
            return
        try:
            self._store.insert(record)
        except (AuditStoreError, OSError) as exc:
            LOGGER.error("Unable to write audit record for %s: %s", record.original_name, exc)

    def _notify(self, listeners: list, event: object) -> None:
        for listener in list(listeners):
            try:
                listener(event)
            except Exception:  # pragma: no cover
                LOGGER.exception("Sort listener %r failed", listener)


__all__ = [
    "DESTINATION_RACE_ATTEMPTS",
    "ERROR_CATEGORY",
    "FileSorter",
    "IGNORED_REASON",
    "LOCKED_REASON",
    "VANISHED_REASON",
    "move_exclusive",
]
