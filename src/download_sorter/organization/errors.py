"""Errors raised while sorting files."""

from __future__ import annotations

import errno
from enum import Enum

_WINDOWS_LOCK_ERRORS = {32, 33}  # ERROR_SHARING_VIOLATION, ERROR_LOCK_VIOLATION
_POSIX_LOCK_ERRORS = {errno.EBUSY, errno.ETXTBSY}


class ErrorKind(str, Enum):
    """Coarse classification of operating-system failures."""

    LOCK_CONTENTION = "lock_contention"
    PERMISSION = "permission"
    NOT_FOUND = "not_found"
    OTHER = "other"


class SortError(Exception):
    """Base exception for sort operations."""


class TooManyCollisionsError(SortError):
    """Raised when no free numbered name exists below the collision cap."""


class FileLockedError(SortError):
    """Raised when a file stays locked through every move attempt."""


def classify_os_error(exc: OSError) -> ErrorKind:
    """Return the ``ErrorKind`` reported by the platform for ``exc``.

    Args:
        exc: Operating-system error raised by a filesystem call.

    Returns:
        ErrorKind: Lock contention, permission, not-found, or other.
    """

    if getattr(exc, "winerror", None) in _WINDOWS_LOCK_ERRORS:
        return ErrorKind.LOCK_CONTENTION
    if exc.errno in _POSIX_LOCK_ERRORS:
        return ErrorKind.LOCK_CONTENTION
    if isinstance(exc, PermissionError):
        return ErrorKind.PERMISSION
    if isinstance(exc, FileNotFoundError):
        return ErrorKind.NOT_FOUND
    return ErrorKind.OTHER


__all__ = [
    "ErrorKind",
    "FileLockedError",
    "SortError",
    "TooManyCollisionsError",
    "classify_os_error",
]
