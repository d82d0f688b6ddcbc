"""Tests for extension and size based classification."""

from pathlib import Path

import pytest

from download_sorter.classification import Classifier, Destination
from download_sorter.config import CategoryRule, Folders, SorterConfig


def _classifier(tmp_path: Path, **sorting: object) -> Classifier:
    return Classifier(SorterConfig(root_path=str(tmp_path), sorting=sorting))


@pytest.mark.parametrize(
    ("extension", "category"),
    [
        (".pdf", Folders.DOCUMENTS),
        ("PDF", Folders.DOCUMENTS),
        (".ZIP", Folders.ARCHIVES),
        (".mkv", Folders.MEDIA),
        (".py", Folders.CODE),
        (".iso", Folders.ISOS),
        (".exe", Folders.EXECUTABLES),
        (".xyz", Folders.UNSORTED),
        ("", Folders.UNSORTED),
    ],
)
def test_extension_routing(tmp_path: Path, extension: str, category: str) -> None:
    destination = _classifier(tmp_path).classify(extension, 10)

    assert destination == Destination(category, tmp_path / category)


def test_big_files_win_over_extension_rules(tmp_path: Path) -> None:
    classifier = _classifier(tmp_path, big_file_threshold=1_000_000)

    assert classifier.classify(".pdf", 5_000_000).category == Folders.BIG_FILES
    assert classifier.classify(".pdf", 1_000_000).category == Folders.BIG_FILES
    assert classifier.classify(".pdf", 999_999).category == Folders.DOCUMENTS


def test_big_file_routing_can_be_disabled(tmp_path: Path) -> None:
    classifier = _classifier(
        tmp_path, big_file_threshold=1_000, enable_big_file_routing=False
    )

    assert classifier.classify(".pdf", 5_000).category == Folders.DOCUMENTS


def test_first_matching_rule_wins(tmp_path: Path) -> None:
    config = SorterConfig(
        root_path=str(tmp_path),
        categories=[
            CategoryRule(category="10_Documents", extensions=[".txt"]),
            CategoryRule(category="50_Code", extensions=[".txt", ".py"]),
        ],
    )

    assert Classifier(config).classify(".txt", 1).category == "10_Documents"


def test_subfolder_is_appended_but_category_is_reported(tmp_path: Path) -> None:
    config = SorterConfig(
        root_path=str(tmp_path),
        categories=[CategoryRule(category="40_Media", extensions=[".jpg"], subfolder="Photos")],
    )

    destination = Classifier(config).classify(".jpg", 1)

    assert destination.category == "40_Media"
    assert destination.folder == tmp_path / "40_Media" / "Photos"


def test_get_destination_returns_folder(tmp_path: Path) -> None:
    assert _classifier(tmp_path).get_destination(".rar", 1) == tmp_path / Folders.ARCHIVES
