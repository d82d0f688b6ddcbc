"""Rule-table classifier mapping an extension and size to a destination folder.

Evaluation order is fixed: the big-file threshold (when enabled) wins over every
extension rule, then rules are scanned in configured order and the first match
wins, and anything left over lands in the unsorted folder. The classifier holds
no state beyond the configuration snapshot it was built with.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from download_sorter.config import Folders, SorterConfig, normalize_extension


@dataclass(frozen=True, slots=True)
class Destination:
    """Resolved classification outcome.

    Attributes:
        category: Category name reported to callers and stored on audit records.
        folder: Absolute destination folder for the file.
    """

    category: str
    folder: Path


class Classifier:
    """Map ``(extension, size)`` pairs to destination folders."""

    def __init__(self, config: SorterConfig) -> None:
        self._config = config

    def classify(self, extension: str, file_size: int) -> Destination:
        """Return the destination for a file.

        Args:
            extension: File extension with or without the leading dot.
            file_size: File size in bytes.

        Returns:
            Destination: Category and folder the file belongs in.
        """
        root = self._config.root
        sorting = self._config.sorting

        if sorting.enable_big_file_routing and file_size >= sorting.big_file_threshold:
            return Destination(Folders.BIG_FILES, root / Folders.BIG_FILES)

        normalized = normalize_extension(extension)
        if normalized:
            for rule in self._config.categories:
                if rule.matches(normalized):
                    folder = root / rule.category
                    if rule.subfolder:
                        folder = folder / rule.subfolder
                    return Destination(rule.category, folder)

        return Destination(Folders.UNSORTED, root / Folders.UNSORTED)

    def get_destination(self, extension: str, file_size: int) -> Path:
        """Return only the destination folder for a file."""
        return self.classify(extension, file_size).folder
