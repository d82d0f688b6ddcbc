"""Tests for the file sorter."""

from __future__ import annotations

import errno
import os
import shutil
from pathlib import Path

import pytest
from conftest import write_file

from download_sorter.config import Folders, SorterConfig
from download_sorter.organization import (
    FileSortedEvent,
    FileSorter,
    FileSortFailedEvent,
    HashComputer,
    collisions,
)
from download_sorter.organization.sorter import (
    DESTINATION_RACE_ATTEMPTS,
    ERROR_CATEGORY,
    IGNORED_REASON,
    LOCKED_REASON,
    VANISHED_REASON,
    move_exclusive,
)
from download_sorter.state import AuditStore, SortStatus


@pytest.fixture
def store(sorter_config: SorterConfig) -> AuditStore:
    return AuditStore(sorter_config.resolved_database_path)


def test_sort_file_moves_and_audits(sorter_config: SorterConfig, store: AuditStore) -> None:
    source = write_file(sorter_config.inbox_path / "report.pdf", b"%PDF")
    sorter = FileSorter(sorter_config, store)

    result = sorter.sort_file(source)

    expected = sorter_config.root / Folders.DOCUMENTS / "report.pdf"
    assert result.success
    assert result.dest_path == expected
    assert result.category == Folders.DOCUMENTS
    assert expected.read_bytes() == b"%PDF"
    assert not source.exists()

    (record,) = store.recent()
    assert record.status is SortStatus.SUCCESS
    assert record.original_name == "report.pdf"
    assert record.final_name == "report.pdf"
    assert record.source_path == str(source)
    assert record.dest_path == str(expected)
    assert record.category == Folders.DOCUMENTS
    assert record.file_size == 4
    assert record.content_hash is None


def test_collision_gets_numbered_name(sorter_config: SorterConfig, store: AuditStore) -> None:
    write_file(sorter_config.root / Folders.DOCUMENTS / "report.pdf", b"old")
    source = write_file(sorter_config.inbox_path / "report.pdf", b"new")

    result = FileSorter(sorter_config, store).sort_file(source)

    assert result.dest_path == sorter_config.root / Folders.DOCUMENTS / "report (2).pdf"
    assert (sorter_config.root / Folders.DOCUMENTS / "report.pdf").read_bytes() == b"old"
    (record,) = store.recent()
    assert record.original_name == "report.pdf"
    assert record.final_name == "report (2).pdf"


def test_big_file_routing(tmp_path: Path) -> None:
    config = SorterConfig(
        root_path=str(tmp_path / "root"),
        sorting={"big_file_threshold": 1_000},
    )
    source = write_file(config.inbox_path / "manual.pdf", b"x" * 5_000)

    result = FileSorter(config).sort_file(source)

    assert result.category == Folders.BIG_FILES
    assert result.dest_path == config.root / Folders.BIG_FILES / "manual.pdf"


def test_missing_file_is_a_silent_skip(sorter_config: SorterConfig, store: AuditStore) -> None:
    result = FileSorter(sorter_config, store).sort_file(sorter_config.inbox_path / "gone.zip")

    assert result.skipped
    assert result.reason == VANISHED_REASON
    assert store.recent() == []


def test_ignored_extension_is_a_silent_skip(
    sorter_config: SorterConfig, store: AuditStore
) -> None:
    source = write_file(sorter_config.inbox_path / "movie.mkv.crdownload")

    result = FileSorter(sorter_config, store).sort_file(source)

    assert result.skipped
    assert result.reason == IGNORED_REASON
    assert source.exists()
    assert store.recent() == []


def test_locked_file_retries_then_skips(sorter_config: SorterConfig, store: AuditStore) -> None:
    source = write_file(sorter_config.inbox_path / "setup.exe", b"MZ")
    attempts: list[Path] = []
    sleeps: list[float] = []

    def _locked(src: Path, dst: Path) -> None:
        attempts.append(src)
        raise OSError(errno.EBUSY, "Device or resource busy", str(src))

    failures: list[FileSortFailedEvent] = []
    sorter = FileSorter(sorter_config, store, mover=_locked, sleep=sleeps.append)
    sorter.add_failed_listener(failures.append)

    result = sorter.sort_file(source)

    assert result.skipped
    assert result.reason == LOCKED_REASON
    assert len(attempts) == 3
    assert sleeps == [0.5, 0.5]
    assert source.exists()

    (record,) = store.recent()
    assert record.status is SortStatus.SKIPPED
    assert record.category == ERROR_CATEGORY
    assert record.source_path == record.dest_path == str(source)
    assert record.file_size == 2
    assert failures and failures[0].status is SortStatus.SKIPPED


def test_lock_released_during_retry(sorter_config: SorterConfig, store: AuditStore) -> None:
    source = write_file(sorter_config.inbox_path / "data.csv", b"a,b")
    calls = {"count": 0}

    def _locked_once(src: Path, dst: Path) -> None:
        calls["count"] += 1
        if calls["count"] == 1:
            raise OSError(errno.EBUSY, "busy")
        shutil.move(str(src), str(dst))

    sorter = FileSorter(sorter_config, store, mover=_locked_once, sleep=lambda _: None)

    result = sorter.sort_file(source)

    assert result.success
    assert calls["count"] == 2
    assert [record.status for record in store.recent()] == [SortStatus.SUCCESS]


def test_permission_error_is_audited_failure(
    sorter_config: SorterConfig, store: AuditStore
) -> None:
    source = write_file(sorter_config.inbox_path / "secret.docx", b"doc")
    sleeps: list[float] = []

    def _denied(src: Path, dst: Path) -> None:
        raise PermissionError(errno.EACCES, "Permission denied", str(src))

    result = FileSorter(sorter_config, store, mover=_denied, sleep=sleeps.append).sort_file(
        source
    )

    assert result.failed
    assert result.reason == "Permission denied"
    assert sleeps == []
    (record,) = store.recent()
    assert record.status is SortStatus.FAILED
    assert record.category == ERROR_CATEGORY
    assert record.error_message == "Permission denied"


def test_file_vanishing_during_move_is_benign(
    sorter_config: SorterConfig, store: AuditStore
) -> None:
    source = write_file(sorter_config.inbox_path / "temp.txt", b"t")

    def _vanish(src: Path, dst: Path) -> None:
        src.unlink()
        raise FileNotFoundError(errno.ENOENT, "No such file or directory", str(src))

    result = FileSorter(sorter_config, store, mover=_vanish).sort_file(source)

    assert result.skipped
    assert result.reason == VANISHED_REASON
    assert store.recent() == []


def test_sorted_listener_receives_event(sorter_config: SorterConfig) -> None:
    source = write_file(sorter_config.inbox_path / "song.mp3", b"ID3")
    events: list[FileSortedEvent] = []
    sorter = FileSorter(sorter_config)
    sorter.add_sorted_listener(events.append)

    sorter.sort_file(source)

    assert events == [
        FileSortedEvent(
            original_name="song.mp3",
            final_name="song.mp3",
            source_path=source,
            dest_path=sorter_config.root / Folders.MEDIA / "song.mp3",
            category=Folders.MEDIA,
            file_size=3,
        )
    ]


def test_listener_failure_does_not_fail_the_sort(sorter_config: SorterConfig) -> None:
    source = write_file(sorter_config.inbox_path / "a.txt")
    sorter = FileSorter(sorter_config)

    def _boom(_: FileSortedEvent) -> None:
        raise RuntimeError("ui crashed")

    sorter.add_sorted_listener(_boom)

    assert sorter.sort_file(source).success


def test_content_hash_is_recorded_when_enabled(tmp_path: Path) -> None:
    config = SorterConfig(
        root_path=str(tmp_path / "root"),
        database_path=str(tmp_path / "db.sqlite"),
        sorting={"compute_hashes": True},
    )
    source = write_file(config.inbox_path / "a.txt", b"hello")
    expected = HashComputer().compute(source)
    store = AuditStore(config.resolved_database_path)

    FileSorter(config, store).sort_file(source)

    assert store.recent()[0].content_hash == expected


def test_batch_sorts_and_skips_partial_downloads(
    sorter_config: SorterConfig, store: AuditStore
) -> None:
    inbox = sorter_config.inbox_path
    write_file(inbox / "a.pdf")
    write_file(inbox / "b.zip")
    write_file(inbox / "c.mkv.part")
    (inbox / "nested").mkdir()
    write_file(inbox / "nested" / "d.pdf")

    results = FileSorter(sorter_config, store).sort_from_folder(inbox)

    assert [result.source_path.name for result in results] == ["a.pdf", "b.zip"]
    assert all(result.success for result in results)
    assert (inbox / "c.mkv.part").exists()
    assert (inbox / "nested" / "d.pdf").exists()


def test_file_deleted_mid_batch_is_skipped(
    sorter_config: SorterConfig, store: AuditStore
) -> None:
    inbox = sorter_config.inbox_path
    for name in ("a.txt", "b.txt", "c.txt"):
        write_file(inbox / name)
    sorter = FileSorter(sorter_config, store)
    sorter.add_sorted_listener(
        lambda event: (inbox / "c.txt").unlink() if event.original_name == "a.txt" else None
    )

    results = sorter.sort_from_folder(inbox)

    assert [result.status for result in results] == [
        SortStatus.SUCCESS,
        SortStatus.SUCCESS,
        SortStatus.SKIPPED,
    ]
    assert len(store.recent()) == 2


def test_missing_folder_yields_no_results(sorter_config: SorterConfig) -> None:
    assert FileSorter(sorter_config).sort_from_folder(sorter_config.root / "nope") == []


def test_all_watch_folders_inbox_first(tmp_path: Path) -> None:
    extra = tmp_path / "browser"
    config = SorterConfig(root_path=str(tmp_path / "root"), watch_folders=[str(extra)])
    config.create_folder_structure()
    write_file(config.inbox_path / "z.txt")
    write_file(extra / "a.txt")

    results = FileSorter(config).sort_from_all_watch_folders()

    assert [result.source_path for result in results] == [
        config.inbox_path / "z.txt",
        extra / "a.txt",
    ]
    assert (config.root / Folders.DOCUMENTS / "a.txt").exists()


def test_pending_count_and_preview(sorter_config: SorterConfig) -> None:
    inbox = sorter_config.inbox_path
    write_file(inbox / "a.iso")
    write_file(inbox / "b.tmp")
    sorter = FileSorter(sorter_config)

    assert sorter.pending_count() == 1
    destination = sorter.preview(inbox / "a.iso")
    assert destination is not None and destination.category == Folders.ISOS
    assert sorter.preview(inbox / "b.tmp") is None
    assert (inbox / "a.iso").exists()


def test_sort_all_pending_uses_inbox(sorter_config: SorterConfig) -> None:
    write_file(sorter_config.inbox_path / "x.7z")

    results = FileSorter(sorter_config).sort_all_pending()

    assert [result.category for result in results] == [Folders.ARCHIVES]


def test_three_same_name_files_are_numbered_in_sequence(
    sorter_config: SorterConfig, store: AuditStore, tmp_path: Path
) -> None:
    sources = [
        write_file(sorter_config.inbox_path / "invoice.pdf", b"one"),
        write_file(tmp_path / "browser" / "invoice.pdf", b"two"),
        write_file(tmp_path / "mail" / "invoice.pdf", b"three"),
    ]
    sorter = FileSorter(sorter_config, store)

    results = [sorter.sort_file(source) for source in sources]

    documents = sorter_config.root / Folders.DOCUMENTS
    assert [result.dest_path for result in results] == [
        documents / "invoice.pdf",
        documents / "invoice (2).pdf",
        documents / "invoice (3).pdf",
    ]
    assert [path.read_bytes() for path in sorted(documents.iterdir())] == [
        b"two",
        b"three",
        b"one",
    ]


def test_too_many_collisions_is_audited_failure(
    sorter_config: SorterConfig, store: AuditStore, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setattr(collisions, "MAX_COLLISION_COUNTER", 3)
    documents = sorter_config.root / Folders.DOCUMENTS
    for name in ("notes.txt", "notes (2).txt", "notes (3).txt"):
        write_file(documents / name)
    source = write_file(sorter_config.inbox_path / "notes.txt", b"fresh")

    result = FileSorter(sorter_config, store).sort_file(source)

    assert result.failed
    assert "Too many files named 'notes.txt'" in result.reason
    assert source.exists()
    (record,) = store.recent()
    assert record.status is SortStatus.FAILED
    assert record.category == ERROR_CATEGORY
    assert record.file_size == 5


def test_destination_taken_before_move_is_not_overwritten(
    sorter_config: SorterConfig, store: AuditStore
) -> None:
    source = write_file(sorter_config.inbox_path / "report.pdf", b"incoming")
    other = sorter_config.root / Folders.DOCUMENTS / "report.pdf"
    targets: list[Path] = []

    def _racing(src: Path, dst: Path) -> None:
        targets.append(dst)
        if not other.exists():
            write_file(other, b"someone else's file")
        move_exclusive(src, dst)

    result = FileSorter(sorter_config, store, mover=_racing).sort_file(source)

    renamed = sorter_config.root / Folders.DOCUMENTS / "report (2).pdf"
    assert result.success
    assert result.dest_path == renamed
    assert targets == [other, renamed]
    assert other.read_bytes() == b"someone else's file"
    assert renamed.read_bytes() == b"incoming"
    assert not source.exists()
    assert store.recent()[0].final_name == "report (2).pdf"


def test_destination_that_stays_taken_is_audited_failure(
    sorter_config: SorterConfig, store: AuditStore
) -> None:
    source = write_file(sorter_config.inbox_path / "clip.mp4", b"mp4")
    attempts: list[Path] = []

    def _always_taken(src: Path, dst: Path) -> None:
        attempts.append(dst)
        raise FileExistsError(errno.EEXIST, "File exists", str(dst))

    result = FileSorter(sorter_config, store, mover=_always_taken).sort_file(source)

    assert result.failed
    assert result.reason == "File exists"
    assert len(attempts) == DESTINATION_RACE_ATTEMPTS
    assert source.exists()
    (record,) = store.recent()
    assert record.status is SortStatus.FAILED
    assert record.category == ERROR_CATEGORY


def test_move_exclusive_refuses_existing_destination(tmp_path: Path) -> None:
    source = write_file(tmp_path / "in" / "a.txt", b"new")
    destination = write_file(tmp_path / "out" / "a.txt", b"old")

    with pytest.raises(FileExistsError):
        move_exclusive(source, destination)

    assert source.read_bytes() == b"new"
    assert destination.read_bytes() == b"old"


def test_move_exclusive_copies_across_devices(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    def _cross_device(src: object, dst: object) -> None:
        raise OSError(errno.EXDEV, "Invalid cross-device link")

    monkeypatch.setattr(os, "link", _cross_device)
    source = write_file(tmp_path / "in" / "a.txt", b"payload")
    destination = tmp_path / "out" / "a.txt"
    destination.parent.mkdir()

    move_exclusive(source, destination)

    assert destination.read_bytes() == b"payload"
    assert not source.exists()

    taken = write_file(tmp_path / "in" / "b.txt", b"second")
    write_file(tmp_path / "out" / "b.txt", b"kept")
    with pytest.raises(FileExistsError):
        move_exclusive(taken, tmp_path / "out" / "b.txt")
    assert (tmp_path / "out" / "b.txt").read_bytes() == b"kept"
    assert taken.exists()


def test_negative_retry_delay_still_skips_locked_file(tmp_path: Path) -> None:
    config = SorterConfig(
        root_path=str(tmp_path / "root"),
        database_path=str(tmp_path / "db.sqlite"),
        sorting={"lock_retry_delay_seconds": -1},
    )
    source = write_file(config.inbox_path / "setup.exe", b"MZ")
    store = AuditStore(config.resolved_database_path)

    def _locked(src: Path, dst: Path) -> None:
        raise OSError(errno.EBUSY, "Device or resource busy", str(src))

    result = FileSorter(config, store, mover=_locked).sort_file(source)

    assert result.skipped
    assert result.reason == LOCKED_REASON
    assert [record.status for record in store.recent()] == [SortStatus.SKIPPED]


def test_scan_honours_recursion_and_exclusions(sorter_config: SorterConfig, tmp_path: Path) -> None:
    source = tmp_path / "old"
    write_file(source / "a.pdf")
    write_file(source / "b.tmp")
    write_file(source / "deep" / "c.zip")
    write_file(source / "skip" / "d.zip")
    sorter = FileSorter(sorter_config)

    assert sorter.scan(source) == [source / "a.pdf"]
    assert sorter.scan(source, recursive=True, exclude=[source / "skip"]) == [
        source / "a.pdf",
        source / "deep" / "c.zip",
    ]
