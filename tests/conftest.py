"""Pytest configuration and fixtures for tmbackup tests."""

import logging
from pathlib import Path

import pytest
from hypothesis import settings, Phase

from tmbackup.destination import Destination
from tmbackup.marker import MarkerStore

# Configure hypothesis to use fewer examples for faster test runs
# Disable shrinking phase to speed up tests further
settings.register_profile(
    "fast",
    max_examples=10,
    deadline=10000,
    phases=[Phase.explicit, Phase.reuse, Phase.generate]
)
settings.register_profile("ci", max_examples=50, deadline=10000)
settings.register_profile("dev", max_examples=10, deadline=10000)

# Use the fast profile by default
settings.load_profile("fast")


@pytest.fixture
def reset_logger():
    """Drop handlers installed by setup_logging so streams do not leak between tests."""
    yield
    logging.getLogger("tmbackup").handlers.clear()


@pytest.fixture
def backup_root(tmp_path: Path) -> Path:
    """An initialized (UTC) backup destination directory."""
    root = tmp_path / "backups"
    root.mkdir()
    MarkerStore(Destination(str(root))).initialize()
    return root


@pytest.fixture
def source_dir(tmp_path: Path) -> Path:
    """A small source tree."""
    source = tmp_path / "source"
    source.mkdir()
    (source / "file1.txt").write_text("content1")
    (source / "subdir").mkdir()
    (source / "subdir" / "file2.txt").write_text("content2")
    return source
