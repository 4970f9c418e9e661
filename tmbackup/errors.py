"""Error kinds for tmbackup.

Every failure a backup run can end in maps to one of the exceptions below.
Each carries the process exit code the CLI reports for it.
"""

from typing import Optional


EXIT_SUCCESS = 0
EXIT_CONFIG_ERROR = 1
EXIT_NOT_A_BACKUP_DESTINATION = 2
EXIT_PERMISSION_DENIED = 3
EXIT_SOURCE_MISSING = 4
EXIT_CONCURRENT_RUN = 5
EXIT_DIRECTORY_CREATE_FAILED = 6
EXIT_SYNC_FAILED = 7
EXIT_NO_SPACE = 8
EXIT_UNPARSEABLE_SNAPSHOT = 9
EXIT_INTERRUPTED = 130


class BackupError(Exception):
    """Base exception for backup errors."""

    exit_code = 1

    def __init__(self, message: str, exit_code: Optional[int] = None):
        super().__init__(message)
        if exit_code is not None:
            self.exit_code = exit_code


class NotABackupDestination(BackupError):
    """Raised when the destination is missing or has no backup marker."""

    exit_code = EXIT_NOT_A_BACKUP_DESTINATION


class PermissionDenied(BackupError):
    """Raised when the backup marker cannot be written."""

    exit_code = EXIT_PERMISSION_DENIED


class SourceMissing(BackupError):
    """Raised when the source directory does not exist."""

    exit_code = EXIT_SOURCE_MISSING


class ConcurrentRunDetected(BackupError):
    """Raised when another live backup run holds the destination."""

    exit_code = EXIT_CONCURRENT_RUN

    def __init__(self, message: str, pid: Optional[int] = None):
        super().__init__(message)
        self.pid = pid


class DirectoryCreateFailed(BackupError):
    """Raised when a directory on the destination cannot be created."""

    exit_code = EXIT_DIRECTORY_CREATE_FAILED


class SyncFailed(BackupError):
    """Raised when rsync reports a fatal error."""

    exit_code = EXIT_SYNC_FAILED


class NoSpaceNoCandidates(BackupError):
    """Raised when the destination is full and nothing is left to expire."""

    exit_code = EXIT_NO_SPACE


class UnparseableSnapshotName(BackupError):
    """A snapshot directory name is not a valid timestamp.

    Never escapes a run: the retention engine skips such snapshots and logs
    a warning instead.
    """

    exit_code = EXIT_UNPARSEABLE_SNAPSHOT


class BackupInterrupted(BackupError):
    """Raised when a run is stopped by SIGINT or SIGTERM.

    The in-progress marker and the target directory are left in place so
    the next run resumes.
    """

    exit_code = EXIT_INTERRUPTED

    def __init__(self, message: str, signum: int = 2):
        super().__init__(message, exit_code=128 + signum)
        self.signum = signum
