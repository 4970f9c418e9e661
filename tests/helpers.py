"""Shared test doubles for backup lifecycle tests."""

from datetime import datetime
from pathlib import Path
from typing import List, Optional

from tmbackup.sync import SyncOutcome, SyncResult


NOW = datetime(2024, 1, 10, 12, 0, 0)
TARGET = "2024-01-10-120000"


def fixed_clock(moment: datetime = NOW):
    """Return a clock that always reports ``moment`` and records its calls."""
    calls = []

    def clock(utc: bool) -> datetime:
        calls.append(utc)
        return moment

    clock.calls = calls
    return clock


class FakeSyncExecutor:
    """
    Stands in for SyncExecutor.

    Each run pops the next outcome (the last one repeats) and, on success,
    writes a file into the target so the snapshot is not empty.
    """

    def __init__(self, outcomes: Optional[List[SyncOutcome]] = None, raises: Optional[Exception] = None):
        self.outcomes = list(outcomes or [SyncOutcome.SUCCESS])
        self.raises = raises
        self.calls = []
        self.signal_handler = None

    def run(self, source, target, link_base=None, exclusion_file=None, verbose=False):
        self.calls.append({
            "source": source,
            "target": target,
            "link_base": link_base,
            "exclusion_file": exclusion_file,
            "verbose": verbose,
        })
        if self.raises is not None:
            raise self.raises
        outcome = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
        if outcome in (SyncOutcome.SUCCESS, SyncOutcome.WARNING):
            Path(target, "file1.txt").write_text("content1")
        returncode = {
            SyncOutcome.SUCCESS: 0,
            SyncOutcome.WARNING: 24,
            SyncOutcome.OUT_OF_SPACE: 11,
            SyncOutcome.FATAL_ERROR: 23,
        }[outcome]
        errors = ["rsync error: some files could not be transferred (code 23)"] \
            if outcome is SyncOutcome.FATAL_ERROR else []
        return SyncResult(outcome=outcome, returncode=returncode, errors=errors)


def make_snapshots(root: Path, names, expired: bool = False) -> None:
    base = root / "expired" if expired else root
    for name in names:
        (base / name).mkdir(parents=True)
        (base / name / "data.txt").write_text(name)


def listing(root: Path):
    """All paths under root, for before/after comparisons."""
    return sorted(str(p.relative_to(root)) for p in root.rglob("*"))
