"""Sorting pipeline: collision handling, moves, and audit emission."""

from .collisions import MAX_COLLISION_COUNTER, resolve_collision, resolve_collision_name
from .errors import (
    ErrorKind,
    FileLockedError,
    SortError,
    TooManyCollisionsError,
    classify_os_error,
)
from .hashing import HashComputer
from .models import FileSortedEvent, FileSortFailedEvent, SortResult
from .sorter import FileSorter

__all__ = [
    "MAX_COLLISION_COUNTER",
    "ErrorKind",
    "FileLockedError",
    "FileSortFailedEvent",
    "FileSortedEvent",
    "FileSorter",
    "HashComputer",
    "SortError",
    "SortResult",
    "TooManyCollisionsError",
    "classify_os_error",
    "resolve_collision",
    "resolve_collision_name",
]
