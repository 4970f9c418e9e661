"""Snapshot enumeration for tmbackup.

Snapshots are directories named ``YYYY-MM-DD-HHMMSS`` directly under the
destination root (active) or under its ``expired/`` sub-directory (expired).
Because the names are fixed-width timestamps, sorting them by name sorts
them chronologically.
"""

from datetime import datetime
from enum import Enum
from typing import List, Optional
import logging

from tmbackup.destination import Destination
from tmbackup.runner import CommandRunner


logger = logging.getLogger(__name__)


# Timestamp format for snapshot directories
TIMESTAMP_FORMAT = "%Y-%m-%d-%H%M%S"

# find -name pattern matching snapshot directory names
SNAPSHOT_GLOB = "????-??-??-??????"

EXPIRED_DIR_NAME = "expired"


class Area(Enum):
    """Where a snapshot lives on the destination."""
    ACTIVE = "active"
    EXPIRED = "expired"


def snapshot_name(moment: datetime) -> str:
    """Return the snapshot directory name for a point in time."""
    return moment.strftime(TIMESTAMP_FORMAT)


def parse_snapshot_name(name: str) -> Optional[datetime]:
    """
    Parse a YYYY-MM-DD-HHMMSS directory name.

    Returns:
        Naive datetime, or None if the name is not a valid timestamp
    """
    try:
        return datetime.strptime(name, TIMESTAMP_FORMAT)
    except ValueError:
        return None


class SnapshotCatalog:
    """Lists the snapshots stored at a destination."""

    def __init__(self, destination: Destination, runner: Optional[CommandRunner] = None):
        self.destination = destination
        self.runner = runner if runner is not None else destination.runner()

    @property
    def expired_dir(self) -> str:
        return self.destination.join(EXPIRED_DIR_NAME)

    def area_dir(self, area: Area) -> str:
        if area is Area.EXPIRED:
            return self.expired_dir
        return self.destination.path

    def path(self, name: str, area: Area = Area.ACTIVE) -> str:
        """Return the full path of a snapshot in the given area."""
        if area is Area.EXPIRED:
            return self.destination.join(EXPIRED_DIR_NAME, name)
        return self.destination.join(name)

    def list(self, area: Area = Area.ACTIVE) -> List[str]:
        """
        List snapshot names in an area, newest first.

        A missing ``expired/`` directory is an empty area, not an error.
        """
        directory = self.area_dir(area)
        if area is Area.EXPIRED and not self.runner.is_dir(directory):
            return []
        names = self.runner.list_dirs(directory, SNAPSHOT_GLOB)
        logger.debug(f"Found {len(names)} {area.value} snapshots in {directory}")
        return sorted(names, reverse=True)

    def newest(self, area: Area = Area.ACTIVE) -> Optional[str]:
        snapshots = self.list(area)
        return snapshots[0] if snapshots else None

    def oldest(self, area: Area = Area.ACTIVE) -> Optional[str]:
        snapshots = self.list(area)
        return snapshots[-1] if snapshots else None
