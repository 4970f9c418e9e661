"""Backup marker handling for tmbackup.

The backup marker (``backup.marker``) sits at the root of every backup
destination. Its presence proves the directory is a backup location, and
its key=value lines hold the destination's time base and retention windows.

The marker is parsed, never executed. Values written by older versions as
shell arithmetic (``"$((4 * 3600))"``) are still understood.
"""

from dataclasses import dataclass, field
from typing import Dict, Optional
import logging
import re

from tmbackup.destination import Destination
from tmbackup.errors import NotABackupDestination, PermissionDenied
from tmbackup.runner import CommandRunner


logger = logging.getLogger(__name__)


MARKER_FILE_NAME = "backup.marker"

HOUR = 3600
DAY = 24 * HOUR

# Marker keys for the retention windows, in tier order
WINDOW_KEYS = {
    "all": "RETENTION_WIN_ALL",
    "hourly": "RETENTION_WIN_01H",
    "four_hourly": "RETENTION_WIN_04H",
    "eight_hourly": "RETENTION_WIN_08H",
    "daily": "RETENTION_WIN_24H",
}

_ARITHMETIC = re.compile(r"^\$\(\((.*)\)\)$")


@dataclass
class RetentionWindows:
    """Retention window durations in seconds, one per tier."""
    all: int = 4 * HOUR
    hourly: int = 1 * DAY
    four_hourly: int = 3 * DAY
    eight_hourly: int = 14 * DAY
    daily: int = 28 * DAY


@dataclass
class BackupMarker:
    """Configuration stored in a destination's backup marker."""
    utc: bool = False
    windows: RetentionWindows = field(default_factory=RetentionWindows)


def _strip_comment(line: str) -> str:
    """Remove a trailing ``# comment`` that is outside double quotes."""
    in_quotes = False
    for i, char in enumerate(line):
        if char == '"':
            in_quotes = not in_quotes
        elif char == "#" and not in_quotes:
            return line[:i]
    return line


def _parse_seconds(value: str) -> int:
    """
    Parse a window duration.

    Accepts a plain integer or a product such as ``$((14 * 24 * 3600))``.

    Raises:
        ValueError: If the value is neither
    """
    match = _ARITHMETIC.match(value)
    if match:
        result = 1
        for factor in match.group(1).split("*"):
            result *= int(factor.strip())
        return result
    return int(value)


def _parse_bool(value: str) -> bool:
    lowered = value.lower()
    if lowered == "true":
        return True
    if lowered == "false":
        return False
    raise ValueError(f"not a boolean: {value!r}")


def parse_marker(text: str) -> BackupMarker:
    """
    Parse backup marker content.

    Missing fields keep their defaults so destinations initialized by older
    versions keep working. Later assignments override earlier ones. A value
    that cannot be parsed is logged and replaced by the default.

    Args:
        text: Raw marker file content

    Returns:
        BackupMarker with the time base and retention windows
    """
    values: Dict[str, str] = {}
    for raw_line in text.splitlines():
        line = _strip_comment(raw_line).strip()
        if not line or "=" not in line:
            continue
        key, value = line.split("=", 1)
        values[key.strip()] = value.strip().strip('"').strip("'")

    marker = BackupMarker()

    if "UTC" in values:
        try:
            marker.utc = _parse_bool(values["UTC"])
        except ValueError:
            logger.warning(f"Invalid UTC value in backup marker: {values['UTC']!r}")

    for attr, key in WINDOW_KEYS.items():
        if key not in values:
            continue
        try:
            seconds = _parse_seconds(values[key])
        except ValueError:
            logger.warning(f"Invalid {key} value in backup marker: {values[key]!r}")
            continue
        setattr(marker.windows, attr, seconds)

    unknown = set(values) - set(WINDOW_KEYS.values()) - {"UTC"}
    for key in sorted(unknown):
        logger.debug(f"Ignoring unknown backup marker key {key}")

    return marker


def format_marker(marker: BackupMarker) -> str:
    """Format a BackupMarker as marker file content."""
    windows = marker.windows
    lines = [
        f"UTC={'true' if marker.utc else 'false'}",
        f"RETENTION_WIN_ALL={windows.all}  # {_describe(windows.all)}",
        f"RETENTION_WIN_01H={windows.hourly}  # {_describe(windows.hourly)}",
        f"RETENTION_WIN_04H={windows.four_hourly}  # {_describe(windows.four_hourly)}",
        f"RETENTION_WIN_08H={windows.eight_hourly}  # {_describe(windows.eight_hourly)}",
        f"RETENTION_WIN_24H={windows.daily}  # {_describe(windows.daily)}",
    ]
    return "\n".join(lines) + "\n"


def _describe(seconds: int) -> str:
    if seconds % DAY == 0 and seconds >= DAY:
        days = seconds // DAY
        return f"{days} day{'s' if days != 1 else ''}"
    hours = seconds / HOUR
    return f"{hours:g} hrs"


class MarkerStore:
    """Reads and writes the backup marker of one destination."""

    def __init__(self, destination: Destination, runner: Optional[CommandRunner] = None):
        self.destination = destination
        self.runner = runner if runner is not None else destination.runner()

    @property
    def marker_path(self) -> str:
        return self.destination.join(MARKER_FILE_NAME)

    def exists(self) -> bool:
        return self.runner.is_file(self.marker_path)

    def initialize(self, use_local_time: bool = False) -> BackupMarker:
        """
        Turn the destination into a backup location.

        Appends the default configuration to the marker file and restricts
        it to its owner. An existing marker is not checked for; callers must
        not initialize twice.

        Args:
            use_local_time: Name snapshots in local time instead of UTC

        Returns:
            The BackupMarker that was written

        Raises:
            NotABackupDestination: If the destination directory does not exist
            PermissionDenied: If the marker cannot be written
        """
        if not self.runner.is_dir(self.destination.path):
            raise NotABackupDestination(
                f"backup location {self.destination.display()} does not exist"
            )

        marker = BackupMarker(utc=not use_local_time)
        if not self.runner.write_text(self.marker_path, format_marker(marker), append=True):
            raise PermissionDenied(f"cannot write backup marker {self.marker_path}")
        # The marker holds configuration, so only its owner may change it
        self.runner.chmod(self.marker_path, "600")
        logger.info(f"Backup marker {self.marker_path} created.")
        return marker

    def verify(self) -> None:
        """
        Check that the destination is a writable backup location.

        Raises:
            NotABackupDestination: If there is no marker file
            PermissionDenied: If the marker file cannot be written
        """
        if not self.exists():
            raise NotABackupDestination(
                "Destination does not appear to be a backup location - "
                "no backup marker file found."
            )
        if not self.runner.touch_existing(self.marker_path):
            raise PermissionDenied(
                "no write permission for this backup location - aborting."
            )

    def load(self) -> BackupMarker:
        """
        Verify the destination and read its marker.

        Returns:
            BackupMarker, with defaults for any field the marker omits
        """
        self.verify()
        content = self.runner.read_text(self.marker_path)
        if not content or not content.strip():
            logger.info("no configuration imported from backup marker - using defaults")
            return BackupMarker()
        marker = parse_marker(content)
        logger.info("configuration imported from backup marker")
        return marker
