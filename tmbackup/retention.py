"""Retention engine for tmbackup.

This module decides which snapshots to keep. Snapshots are thinned out in
tiers by age:

- ALL: every snapshot younger than the ALL window is kept
- 01H: at most one snapshot per hour
- 04H: at most one snapshot per 4-hour block of a day
- 08H: at most one snapshot per 8-hour block of a day
- 24H: at most one snapshot per day
- 01M: beyond all windows, at most one snapshot per month

Snapshots are examined newest first. Each one is compared with the snapshot
examined just before it, whether that one was kept or expired. The newest
snapshot is compared with a sentinel that matches nothing, so it is always
kept.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Iterable, Iterator, List, Optional
import logging

from tmbackup.catalog import parse_snapshot_name
from tmbackup.errors import UnparseableSnapshotName
from tmbackup.marker import RetentionWindows


logger = logging.getLogger(__name__)


# Compares unequal to every real snapshot's day and month
SENTINEL_NAME = "0000-00-00-000000"


class Disposition(Enum):
    RETAIN = "retain"
    EXPIRE = "expire"


@dataclass(frozen=True)
class RetentionDecision:
    """Outcome of classifying one snapshot."""
    name: str
    disposition: Disposition
    tier: str

    @property
    def expired(self) -> bool:
        return self.disposition is Disposition.EXPIRE


def _epoch(moment: datetime, utc: bool) -> float:
    """Seconds since the epoch for a snapshot time in the given time base."""
    if moment.tzinfo is not None:
        return moment.timestamp()
    if utc:
        return moment.replace(tzinfo=timezone.utc).timestamp()
    # Naive datetimes are interpreted in the local timezone
    return moment.timestamp()


def snapshot_time(name: str) -> datetime:
    """
    Return the timestamp encoded in a snapshot name.

    Raises:
        UnparseableSnapshotName: If the name is not a valid timestamp
    """
    moment = parse_snapshot_name(name)
    if moment is None:
        raise UnparseableSnapshotName(f"Could not parse date: {name}")
    return moment


def _day(name: str) -> str:
    return name[:10]


def _month(name: str) -> str:
    return name[:7]


def _hour(name: str) -> int:
    try:
        return int(name[11:13])
    except ValueError:
        return 0


def _same_block(name: str, previous: str, hours: int) -> bool:
    """Whether two snapshots fall into the same ``hours``-block of one day."""
    return (
        _day(name) == _day(previous)
        and _hour(name) // hours == _hour(previous) // hours
    )


class RetentionEngine:
    """
    Classifies snapshots as retained or expired.

    The engine is pure: it reads no filesystem state and the same inputs
    always give the same decisions. Moving expired snapshots is up to the
    caller.
    """

    def __init__(self, windows: Optional[RetentionWindows] = None, utc: bool = False):
        """
        Initialize the retention engine.

        Args:
            windows: Retention window durations; defaults apply if omitted
            utc: Whether snapshot names are UTC (else local time)
        """
        self.windows = windows if windows is not None else RetentionWindows()
        self.utc = utc

    def _tier(self, age: float, name: str, previous: str) -> RetentionDecision:
        windows = self.windows
        if age <= windows.all:
            return RetentionDecision(name, Disposition.RETAIN, "ALL")
        if age <= windows.hourly:
            tier, expire = "01H", _same_block(name, previous, 1)
        elif age <= windows.four_hourly:
            tier, expire = "04H", _same_block(name, previous, 4)
        elif age <= windows.eight_hourly:
            tier, expire = "08H", _same_block(name, previous, 8)
        elif age <= windows.daily:
            tier, expire = "24H", _day(name) == _day(previous)
        else:
            tier, expire = "01M", _month(name) == _month(previous)
        disposition = Disposition.EXPIRE if expire else Disposition.RETAIN
        return RetentionDecision(name, disposition, tier)

    def iter_classify(self, snapshots: Iterable[str], now: datetime) -> Iterator[RetentionDecision]:
        """
        Classify snapshots lazily, newest first.

        Yielding one decision at a time lets the caller apply each expiry
        before the next snapshot is looked at.

        Args:
            snapshots: Snapshot names; they are examined in descending order
            now: Current time in the destination's time base

        Yields:
            RetentionDecision for every snapshot with a valid name
        """
        now_epoch = _epoch(now, self.utc)
        previous = SENTINEL_NAME

        for name in sorted(snapshots, reverse=True):
            try:
                moment = snapshot_time(name)
            except UnparseableSnapshotName as e:
                logger.warning(str(e))
                continue

            age = now_epoch - _epoch(moment, self.utc)
            decision = self._tier(age, name, previous)
            if decision.expired:
                logger.info(f"  {name} {decision.tier} expired")
            else:
                logger.debug(f"  {name} {decision.tier} retained")

            # The baseline moves on even when this snapshot is expired
            previous = name
            yield decision

    def classify(self, snapshots: Iterable[str], now: datetime) -> List[RetentionDecision]:
        """Classify all snapshots; see iter_classify."""
        return list(self.iter_classify(snapshots, now))

    def expired(self, snapshots: Iterable[str], now: datetime) -> List[str]:
        """Return the names of the snapshots that should be expired."""
        return [d.name for d in self.iter_classify(snapshots, now) if d.expired]


def classify(
    snapshots: Iterable[str],
    now: datetime,
    windows: Optional[RetentionWindows] = None,
    utc: bool = False,
) -> List[RetentionDecision]:
    """Classify snapshots with a one-off RetentionEngine."""
    return RetentionEngine(windows, utc=utc).classify(snapshots, now)
