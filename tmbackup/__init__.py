"""tmbackup - Time Machine like incremental backups with rsync and hard links."""

__version__ = "0.1.0"

from tmbackup.errors import (
    BackupError,
    BackupInterrupted,
    ConcurrentRunDetected,
    DirectoryCreateFailed,
    NoSpaceNoCandidates,
    NotABackupDestination,
    PermissionDenied,
    SourceMissing,
    SyncFailed,
    UnparseableSnapshotName,
)
from tmbackup.config import (
    Configuration,
    ConfigurationError,
    ValidationError,
    parse_config,
)
from tmbackup.runner import CommandRunner, CommandResult
from tmbackup.destination import Destination, parse_destination
from tmbackup.marker import (
    BackupMarker,
    MarkerStore,
    RetentionWindows,
    format_marker,
    parse_marker,
)
from tmbackup.catalog import Area, SnapshotCatalog, snapshot_name, parse_snapshot_name
from tmbackup.lock import LockManager, is_backup_process
from tmbackup.retention import (
    Disposition,
    RetentionDecision,
    RetentionEngine,
    classify,
)
from tmbackup.sync import SyncExecutor, SyncOutcome, SyncResult, classify_log
from tmbackup.logger import LoggingError, setup_logging, get_logger
from tmbackup.backup import (
    BackupContext,
    BackupResult,
    BackupState,
    LifecycleController,
    run_backup,
)

__all__ = [
    "BackupError",
    "BackupInterrupted",
    "ConcurrentRunDetected",
    "DirectoryCreateFailed",
    "NoSpaceNoCandidates",
    "NotABackupDestination",
    "PermissionDenied",
    "SourceMissing",
    "SyncFailed",
    "UnparseableSnapshotName",
    "Configuration",
    "ConfigurationError",
    "ValidationError",
    "parse_config",
    "CommandRunner",
    "CommandResult",
    "Destination",
    "parse_destination",
    "BackupMarker",
    "MarkerStore",
    "RetentionWindows",
    "format_marker",
    "parse_marker",
    "Area",
    "SnapshotCatalog",
    "snapshot_name",
    "parse_snapshot_name",
    "LockManager",
    "is_backup_process",
    "Disposition",
    "RetentionDecision",
    "RetentionEngine",
    "classify",
    "SyncExecutor",
    "SyncOutcome",
    "SyncResult",
    "classify_log",
    "LoggingError",
    "setup_logging",
    "get_logger",
    "BackupContext",
    "BackupResult",
    "BackupState",
    "LifecycleController",
    "run_backup",
]
