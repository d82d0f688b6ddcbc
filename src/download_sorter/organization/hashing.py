"""Content hashing for optional cataloguing of sorted files."""

from __future__ import annotations

import hashlib
from pathlib import Path

_CHUNK_SIZE = 1024 * 1024


class HashComputer:
    """Compute SHA-256 digests of file contents."""

    def compute(self, path: Path) -> str:
        """Return the hex digest of ``path`` read in 1 MiB chunks."""
        digest = hashlib.sha256()
        with path.open("rb") as handle:
            for chunk in iter(lambda: handle.read(_CHUNK_SIZE), b""):
                digest.update(chunk)
        return digest.hexdigest()


__all__ = ["HashComputer"]
