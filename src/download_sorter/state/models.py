"""Audit data models persisted for every terminal sort attempt."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class SortStatus(str, Enum):
    """Terminal outcome of a sort attempt."""

    SUCCESS = "success"
    SKIPPED = "skipped"
    FAILED = "failed"


class AuditRecord(BaseModel):
    """One row of sort history.

    Attributes:
        id: Store-assigned identifier; ``None`` until inserted.
        original_name: File name in the watch folder.
        final_name: File name after collision handling.
        source_path: Path the file was taken from.
        dest_path: Path the file was moved to.
        category: Destination category, or ``ERROR`` for failed attempts.
        file_size: Size in bytes at sort time.
        sorted_at: UTC timestamp of the attempt.
        status: Terminal status of the attempt.
        error_message: Failure or skip reason, if any.
        content_hash: Optional SHA-256 digest of the file contents.
    """

    id: Optional[int] = None
    original_name: str
    final_name: str
    source_path: str
    dest_path: str
    category: str
    file_size: int = 0
    sorted_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    status: SortStatus = SortStatus.SUCCESS
    error_message: Optional[str] = None
    content_hash: Optional[str] = None


class AggregateStats(BaseModel):
    """Counts over a window of audit records."""

    total: int = 0
    success_count: int = 0
    skipped_count: int = 0
    failed_count: int = 0
    max_file_size: int = 0


__all__ = ["AggregateStats", "AuditRecord", "SortStatus"]
