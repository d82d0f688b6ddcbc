"""SQLite-backed audit store for sort history."""

from __future__ import annotations

import sqlite3
import threading
from contextlib import contextmanager
from datetime import date, datetime, time, timedelta, timezone
from pathlib import Path
from typing import Iterator, Optional

from .errors import AuditStoreError
from .models import AggregateStats, AuditRecord, SortStatus

_SCHEMA = """
CREATE TABLE IF NOT EXISTS file_history (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    original_name   TEXT NOT NULL,
    final_name      TEXT NOT NULL,
    source_path     TEXT NOT NULL,
    dest_path       TEXT NOT NULL,
    category        TEXT NOT NULL,
    file_size       INTEGER NOT NULL,
    sorted_at       TEXT NOT NULL,
    file_hash       TEXT,
    status          TEXT NOT NULL DEFAULT 'success',
    error_message   TEXT
);
CREATE INDEX IF NOT EXISTS idx_file_history_original_name ON file_history(original_name);
CREATE INDEX IF NOT EXISTS idx_file_history_sorted_at ON file_history(sorted_at DESC);
CREATE INDEX IF NOT EXISTS idx_file_history_category ON file_history(category);
"""

_COLUMNS = (
    "id, original_name, final_name, source_path, dest_path, category, "
    "file_size, sorted_at, file_hash, status, error_message"
)
_ORDER = "ORDER BY sorted_at DESC, id DESC"


def _to_db_timestamp(value: datetime) -> str:
    """Return a sortable UTC ISO-8601 string; naive values are treated as UTC."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _casefold(value: Optional[str]) -> Optional[str]:
    return value.casefold() if value is not None else None


def local_day_bounds(day: Optional[date] = None) -> tuple[datetime, datetime]:
    """Return the aware local midnights starting and ending ``day`` (today by default).

    Each midnight is resolved separately so days with a DST transition keep
    their true 23 or 25 hour length.
    """
    day = day or datetime.now().date()
    start = datetime.combine(day, time.min).astimezone()
    end = datetime.combine(day + timedelta(days=1), time.min).astimezone()
    return start, end


class AuditStore:
    """Append-only record sink and query surface for sort attempts.

    Every public call opens its own connection, and each insert commits in a
    single transaction, so concurrent sorters never interleave partial rows.
    """

    def __init__(self, db_path: Path | str) -> None:
        """Open (and create if needed) the audit database.

        Args:
            db_path: Location of the SQLite database file.

        Raises:
            AuditStoreError: If the schema cannot be created.
        """
        self._db_path = Path(db_path).expanduser()
        self._write_lock = threading.Lock()
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        with self._connect() as conn:
            conn.executescript(_SCHEMA)

    @property
    def db_path(self) -> Path:
        """Return the database location."""
        return self._db_path

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        try:
            conn = sqlite3.connect(self._db_path, timeout=5.0)
        except sqlite3.Error as exc:
            raise AuditStoreError(f"Unable to open audit database {self._db_path}: {exc}") from exc
        conn.row_factory = sqlite3.Row
        conn.create_function("casefold", 1, _casefold, deterministic=True)
        try:
            yield conn
            conn.commit()
        except sqlite3.Error as exc:
            conn.rollback()
            raise AuditStoreError(f"Audit database error: {exc}") from exc
        finally:
            conn.close()

    # ------------------------------------------------------------------ #
    # Writes                                                             #
    # ------------------------------------------------------------------ #

    def insert(self, record: AuditRecord) -> AuditRecord:
        """Append ``record`` and return a copy carrying its assigned id."""
        with self._write_lock, self._connect() as conn:
            cursor = conn.execute(
                """
                INSERT INTO file_history
                    (original_name, final_name, source_path, dest_path, category,
                     file_size, sorted_at, file_hash, status, error_message)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    record.original_name,
                    record.final_name,
                    record.source_path,
                    record.dest_path,
                    record.category,
                    record.file_size,
                    _to_db_timestamp(record.sorted_at),
                    record.content_hash,
                    record.status.value,
                    record.error_message,
                ),
            )
            return record.model_copy(update={"id": cursor.lastrowid})

    # ------------------------------------------------------------------ #
    # Queries                                                            #
    # ------------------------------------------------------------------ #

    def recent(self, limit: int = 50) -> list[AuditRecord]:
        """Return the most recent records, newest first."""
        return self._select(f"SELECT {_COLUMNS} FROM file_history {_ORDER} LIMIT ?", (limit,))

    def search(self, query: str, limit: int = 50) -> list[AuditRecord]:
        """Return records whose original or final name contains ``query`` (case-insensitive)."""
        needle = query.casefold()
        return self._select(
            f"""
            SELECT {_COLUMNS} FROM file_history
            WHERE instr(casefold(original_name), ?) > 0 OR instr(casefold(final_name), ?) > 0
            {_ORDER} LIMIT ?
            """,
            (needle, needle, limit),
        )

    def by_category(self, category: str, limit: int = 50) -> list[AuditRecord]:
        """Return records filed under ``category``, newest first."""
        return self._select(
            f"SELECT {_COLUMNS} FROM file_history WHERE category = ? {_ORDER} LIMIT ?",
            (category, limit),
        )

    def by_date_range(self, start: datetime, end: datetime, limit: int = 100) -> list[AuditRecord]:
        """Return records sorted between ``start`` and ``end`` inclusive, newest first."""
        return self._select(
            f"""
            SELECT {_COLUMNS} FROM file_history
            WHERE sorted_at >= ? AND sorted_at <= ?
            {_ORDER} LIMIT ?
            """,
            (_to_db_timestamp(start), _to_db_timestamp(end), limit),
        )

    def aggregate_stats(
        self,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> AggregateStats:
        """Return outcome counts for records in ``[start, end)``; open bounds are unbounded."""
        clauses: list[str] = []
        params: list[str] = []
        if start is not None:
            clauses.append("sorted_at >= ?")
            params.append(_to_db_timestamp(start))
        if end is not None:
            clauses.append("sorted_at < ?")
            params.append(_to_db_timestamp(end))
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""

        with self._connect() as conn:
            row = conn.execute(
                f"""
                SELECT
                    COUNT(*) AS total,
                    COALESCE(SUM(CASE WHEN status = 'success' THEN 1 ELSE 0 END), 0) AS success,
                    COALESCE(SUM(CASE WHEN status = 'skipped' THEN 1 ELSE 0 END), 0) AS skipped,
                    COALESCE(SUM(CASE WHEN status = 'failed' THEN 1 ELSE 0 END), 0) AS failed,
                    COALESCE(MAX(file_size), 0) AS biggest
                FROM file_history {where}
                """,
                params,
            ).fetchone()

        return AggregateStats(
            total=row["total"],
            success_count=row["success"],
            skipped_count=row["skipped"],
            failed_count=row["failed"],
            max_file_size=row["biggest"],
        )

    def today_stats(self) -> AggregateStats:
        """Return aggregate stats for the current local calendar day."""
        return self.aggregate_stats(*local_day_bounds())

    def category_counts(self, since: Optional[datetime] = None) -> dict[str, int]:
        """Return successful sort counts per category, optionally since ``since``."""
        sql = "SELECT category, COUNT(*) AS count FROM file_history WHERE status = 'success'"
        params: list[str] = []
        if since is not None:
            sql += " AND sorted_at >= ?"
            params.append(_to_db_timestamp(since))
        sql += " GROUP BY category ORDER BY count DESC, category ASC"

        with self._connect() as conn:
            return {row["category"]: row["count"] for row in conn.execute(sql, params)}

    def _select(self, sql: str, params: tuple) -> list[AuditRecord]:
        with self._connect() as conn:
            return [self._read_record(row) for row in conn.execute(sql, params)]

    @staticmethod
    def _read_record(row: sqlite3.Row) -> AuditRecord:
        return AuditRecord(
            id=row["id"],
            original_name=row["original_name"],
            final_name=row["final_name"],
            source_path=row["source_path"],
            dest_path=row["dest_path"],
            category=row["category"],
            file_size=row["file_size"],
            sorted_at=datetime.fromisoformat(row["sorted_at"]),
            status=SortStatus(row["status"]),
            error_message=row["error_message"],
            content_hash=row["file_hash"],
        )


__all__ = [
    "AggregateStats",
    "AuditRecord",
    "AuditStore",
    "AuditStoreError",
    "SortStatus",
    "local_day_bounds",
]
