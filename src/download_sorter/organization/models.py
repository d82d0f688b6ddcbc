"""Sort results and listener payloads."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from download_sorter.state.models import SortStatus


@dataclass(slots=True)
class SortResult:
    """Outcome of a single sort attempt.

    Attributes:
        status: Success, skipped, or failed.
        source_path: File the attempt was made for.
        dest_path: Destination path when the move succeeded.
        category: Destination category when the move succeeded.
        reason: Skip reason or failure message.
    """

    status: SortStatus
    source_path: Path
    dest_path: Optional[Path] = None
    category: Optional[str] = None
    reason: Optional[str] = None

    @classmethod
    def ok(cls, source_path: Path, dest_path: Path, category: str) -> "SortResult":
        return cls(SortStatus.SUCCESS, source_path, dest_path=dest_path, category=category)

    @classmethod
    def skip(cls, source_path: Path, reason: str) -> "SortResult":
        return cls(SortStatus.SKIPPED, source_path, reason=reason)

    @classmethod
    def fail(cls, source_path: Path, error: str) -> "SortResult":
        return cls(SortStatus.FAILED, source_path, reason=error)

    @property
    def success(self) -> bool:
        return self.status is SortStatus.SUCCESS

    @property
    def skipped(self) -> bool:
        return self.status is SortStatus.SKIPPED

    @property
    def failed(self) -> bool:
        return self.status is SortStatus.FAILED


@dataclass(frozen=True, slots=True)
class FileSortedEvent:
    """Payload delivered to sorted listeners after a successful move."""

    original_name: str
    final_name: str
    source_path: Path
    dest_path: Path
    category: str
    file_size: int


@dataclass(frozen=True, slots=True)
class FileSortFailedEvent:
    """Payload delivered to failure listeners for audited skips and failures."""

    file_name: str
    source_path: Path
    error: str
    status: SortStatus


__all__ = ["FileSortFailedEvent", "FileSortedEvent", "SortResult"]
