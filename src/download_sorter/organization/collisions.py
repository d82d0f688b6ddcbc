"""Explorer-style collision handling: ``file.pdf``, ``file (2).pdf``, ``file (3).pdf``."""

from __future__ import annotations

import re
from pathlib import Path

from .errors import TooManyCollisionsError

MAX_COLLISION_COUNTER = 10_000
_NUMBERED_STEM = re.compile(r"^(.+)\s\((\d+)\)$")


def resolve_collision(dest_folder: Path, file_name: str) -> Path:
    """Return a path inside ``dest_folder`` that does not exist yet.

    A name that already carries a ``(N)`` suffix is re-based so the search
    continues at ``N + 1`` instead of stacking a second suffix.

    Args:
        dest_folder: Folder the file is being placed into.
        file_name: Desired file name.

    Returns:
        Path: ``dest_folder / file_name`` when free, otherwise the first free
        numbered variant.

    Raises:
        TooManyCollisionsError: If the counter passes ``MAX_COLLISION_COUNTER``.
    """

    candidate = dest_folder / file_name
    if not candidate.exists():
        return candidate

    desired = Path(file_name)
    stem, suffix = desired.stem, desired.suffix
    counter = 2

    match = _NUMBERED_STEM.match(stem)
    if match:
        stem = match.group(1)
        counter = int(match.group(2)) + 1

    while candidate.exists():
        if counter > MAX_COLLISION_COUNTER:
            raise TooManyCollisionsError(
                f"Too many files named '{file_name}' in '{dest_folder}'"
            )
        candidate = dest_folder / f"{stem} ({counter}){suffix}"
        counter += 1

    return candidate


def resolve_collision_name(dest_folder: Path, file_name: str) -> str:
    """Return only the file name portion of ``resolve_collision``."""
    return resolve_collision(dest_folder, file_name).name


__all__ = ["MAX_COLLISION_COUNTER", "resolve_collision", "resolve_collision_name"]
