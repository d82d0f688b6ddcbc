"""Shared fixtures for the download sorter test suite."""

from __future__ import annotations

from pathlib import Path

import pytest

from download_sorter.config import SorterConfig


@pytest.fixture
def sorter_config(tmp_path: Path) -> SorterConfig:
    """Return a config rooted in ``tmp_path`` with the folder structure created."""

    config = SorterConfig(
        root_path=str(tmp_path / "root"),
        database_path=str(tmp_path / "state" / "sorter.db"),
    )
    config.create_folder_structure()
    return config


def write_file(path: Path, content: bytes | str = b"data") -> Path:
    """Create ``path`` (and parents) with ``content``."""

    path.parent.mkdir(parents=True, exist_ok=True)
    if isinstance(content, str):
        path.write_text(content, encoding="utf-8")
    else:
        path.write_bytes(content)
    return path
