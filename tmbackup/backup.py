"""Backup orchestration for tmbackup.

This module provides the LifecycleController that runs one backup against a
destination, and the run_backup function that wraps it for the CLI:

- Validate the destination and source
- Acquire the in-progress marker, resuming an interrupted run if needed
- Expire snapshots according to the retention windows
- Prepare the target directory, reusing an expired snapshot when possible
- Run rsync, expiring and deleting old snapshots while the disk is full
- Point ``latest`` at the new snapshot, delete expired snapshots and
  release the in-progress marker

A failed or interrupted run keeps the in-progress marker and the target
directory, so the next run picks up where it stopped.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Callable, List, Optional
import logging
import time

from tmbackup.catalog import Area, SnapshotCatalog, snapshot_name
from tmbackup.destination import Destination
from tmbackup.errors import (
    EXIT_SUCCESS,
    BackupError,
    DirectoryCreateFailed,
    NoSpaceNoCandidates,
    NotABackupDestination,
    SourceMissing,
    SyncFailed,
)
from tmbackup.lock import LockManager
from tmbackup.logger import log_backup_completion, log_backup_error, log_backup_start
from tmbackup.marker import BackupMarker, MarkerStore
from tmbackup.retention import RetentionEngine
from tmbackup.runner import CommandRunner
from tmbackup.signal_handler import SignalHandler
from tmbackup.sync import SyncExecutor, SyncOutcome, SyncResult


logger = logging.getLogger(__name__)


LATEST_LINK_NAME = "latest"


class BackupState(Enum):
    VALIDATING = "validating"
    LOCKING = "locking"
    RESUMING = "resuming"
    EXPIRING = "expiring"
    PREPARING_TARGET = "preparing target"
    SYNCING = "syncing"
    RECLAIMING = "reclaiming space"
    FINALIZING = "finalizing"
    DONE = "done"
    FAILED = "failed"


@dataclass
class BackupContext:
    """Everything one backup run needs to know."""
    source: str
    destination: Destination
    exclusion_file: Optional[str] = None
    keep_expired: bool = False
    verbose: bool = False
    ssh_port: Optional[int] = None
    identity_file: Optional[str] = None


@dataclass
class BackupResult:
    """Result of a backup run."""
    success: bool
    exit_code: int
    snapshot: Optional[str] = None
    resumed: bool = False
    reused_expired: Optional[str] = None
    expired: List[str] = field(default_factory=list)
    deleted: List[str] = field(default_factory=list)
    space_retries: int = 0
    sync_result: Optional[SyncResult] = None
    error_message: Optional[str] = None
    failed_state: Optional[BackupState] = None
    duration_seconds: float = 0.0


def current_time(utc: bool) -> datetime:
    """Return the current time in the requested time base, without tzinfo."""
    if utc:
        return datetime.now(timezone.utc).replace(tzinfo=None)
    return datetime.now()


class LifecycleController:
    """
    Runs one backup against one destination.

    All state is read from and written to the destination through a
    CommandRunner, so the controller works the same for local and remote
    destinations.
    """

    def __init__(
        self,
        context: BackupContext,
        runner: Optional[CommandRunner] = None,
        sync_executor: Optional[SyncExecutor] = None,
        lock_manager: Optional[LockManager] = None,
        clock: Optional[Callable[[bool], datetime]] = None,
        signal_handler: Optional[SignalHandler] = None,
    ):
        """
        Initialize the controller.

        Args:
            context: Run configuration
            runner: CommandRunner for the destination's host
            sync_executor: Executor running rsync; built from the context
                if omitted
            lock_manager: LockManager for the destination's in-progress marker
            clock: Callable returning "now" for a time base (utc flag)
            signal_handler: SignalHandler stopping rsync on SIGINT/SIGTERM
        """
        self.context = context
        destination = context.destination
        self.runner = runner if runner is not None else destination.runner(
            ssh_port=context.ssh_port,
            identity_file=context.identity_file,
        )
        self.markers = MarkerStore(destination, self.runner)
        self.catalog = SnapshotCatalog(destination, self.runner)
        self.lock = lock_manager if lock_manager is not None else LockManager(destination, self.runner)
        self.sync = sync_executor if sync_executor is not None else SyncExecutor(
            destination, self.runner, signal_handler=signal_handler
        )
        self.clock = clock if clock is not None else current_time
        self.state = BackupState.VALIDATING
        self.result = BackupResult(success=False, exit_code=EXIT_SUCCESS)

    def _transition(self, state: BackupState) -> None:
        logger.debug(f"state: {self.state.value} -> {state.value}")
        self.state = state

    def run(self) -> BackupResult:
        """
        Run the backup.

        Returns:
            BackupResult for a completed backup

        Raises:
            BackupError: On any failure; self.state names the failed step
        """
        start_time = time.time()
        marker = self._validate()

        now = self.clock(marker.utc)
        name = snapshot_name(now)
        self.result.snapshot = name
        logger.info(f"backup time base: {'UTC' if marker.utc else 'local time'}")

        self._transition(BackupState.LOCKING)
        stale = self.lock.acquire()
        resumed = stale and self._resume(name)
        self.result.resumed = resumed

        self._transition(BackupState.EXPIRING)
        self._expire(now, marker, name)

        self._transition(BackupState.PREPARING_TARGET)
        if not resumed:
            self._prepare_target(name)

        self._transition(BackupState.SYNCING)
        self.result.sync_result = self._sync_with_space_recovery(name)

        self._transition(BackupState.FINALIZING)
        self._finalize(name)

        self._transition(BackupState.DONE)
        self.result.success = True
        self.result.exit_code = EXIT_SUCCESS
        self.result.duration_seconds = time.time() - start_time
        return self.result

    def _validate(self) -> BackupMarker:
        destination = self.context.destination
        if not self.runner.is_dir(destination.path):
            raise NotABackupDestination(
                f"backup location {destination.display()} does not exist."
            )
        marker = self.markers.load()
        if not Path(self.context.source).is_dir():
            raise SourceMissing(f"source location {self.context.source} does not exist.")
        return marker

    def _resume(self, name: str) -> bool:
        """
        Turn the snapshot of an interrupted run into this run's target.

        The newest active snapshot is the one the interrupted run was
        writing. It is renamed to the new snapshot name so rsync continues
        filling it; the snapshot before it becomes the link base.

        Returns:
            True if a snapshot was taken over
        """
        previous = self.catalog.newest()
        if previous is None:
            return False

        self._transition(BackupState.RESUMING)
        logger.info(f"previous backup {previous} was interrupted - resuming from there.")
        if previous != name:
            if not self.runner.move(self.catalog.path(previous), self.catalog.path(name)):
                raise DirectoryCreateFailed(
                    f"could not move interrupted backup {previous} to {name}."
                )
        return True

    def _expire(self, now: datetime, marker: BackupMarker, target: str) -> None:
        logger.info("expiring backups...")
        engine = RetentionEngine(marker.windows, utc=marker.utc)
        for decision in engine.iter_classify(self.catalog.list(), now):
            if decision.expired and decision.name != target:
                self._mark_expired(decision.name)

    def _mark_expired(self, name: str) -> bool:
        """Move an active snapshot into the expired area."""
        self.markers.verify()
        expired_dir = self.catalog.expired_dir
        if not self.runner.make_dirs(expired_dir):
            raise DirectoryCreateFailed(f"creation of directory {expired_dir} failed.")
        if not self.runner.move(self.catalog.path(name), self.catalog.path(name, Area.EXPIRED)):
            logger.warning(f"could not expire backup {name}")
            return False
        self.result.expired.append(name)
        return True

    def _prepare_target(self, name: str) -> None:
        target = self.catalog.path(name)
        reusable = self.catalog.newest(Area.EXPIRED)
        if reusable is not None and not self.runner.exists(target):
            # rsync runs with --delete --delete-excluded, so an old snapshot
            # is a valid starting point that only needs the deltas applied
            logger.info(f"reusing expired backup {reusable}")
            if self.runner.move(self.catalog.path(reusable, Area.EXPIRED), target):
                self.result.reused_expired = reusable
                return
            logger.warning(f"could not reuse expired backup {reusable}")

        if not self.runner.make_dirs(target):
            raise DirectoryCreateFailed(f"creation of directory {target} failed.")

    def _link_base(self, name: str) -> Optional[str]:
        """Return the path of the newest active snapshot other than the target."""
        for snapshot in self.catalog.list():
            if snapshot != name:
                return self.catalog.path(snapshot)
        return None

    def _retry_budget(self, name: str) -> int:
        """
        Upper bound on out-of-space retries.

        Every retry deletes the expired area; once it is empty, every
        further retry has to expire one more active snapshot besides the
        target.
        """
        candidates = len([s for s in self.catalog.list() if s != name])
        pending = 1 if self.catalog.list(Area.EXPIRED) else 0
        return candidates + pending

    def _sync_with_space_recovery(self, name: str) -> SyncResult:
        target = self.catalog.path(name)
        budget = self._retry_budget(name)

        for attempt in range(budget + 1):
            result = self.sync.run(
                self.context.source,
                target,
                link_base=self._link_base(name),
                exclusion_file=self.context.exclusion_file,
                verbose=self.context.verbose,
            )

            if result.outcome is SyncOutcome.OUT_OF_SPACE:
                if attempt == budget:
                    break
                self._reclaim_space(name)
                self.result.space_retries += 1
                continue

            if result.outcome is SyncOutcome.FATAL_ERROR:
                for line in result.errors:
                    logger.error(line)
                raise SyncFailed(
                    f"Rsync reported an error - exiting (exit status {result.returncode})."
                )

            if result.outcome is SyncOutcome.WARNING:
                logger.warning("Rsync reported a warning.")
            return result

        raise NoSpaceNoCandidates("No space left on device, and no old backup to delete.")

    def _reclaim_space(self, name: str) -> None:
        """
        Free space after rsync ran out of it.

        If nothing is waiting in the expired area, the oldest active
        snapshot is expired first. The newest snapshot is never sacrificed.

        Raises:
            NoSpaceNoCandidates: If fewer than two active snapshots remain
        """
        self._transition(BackupState.RECLAIMING)
        if not self.catalog.list(Area.EXPIRED):
            logger.warning("No space left on device, removing oldest backup")
            candidates = [s for s in self.catalog.list() if s != name]
            if not candidates:
                raise NoSpaceNoCandidates(
                    "No space left on device, and no old backup to delete."
                )
            self._mark_expired(candidates[-1])
        self._delete_expired()
        self._transition(BackupState.SYNCING)

    def _delete_expired(self) -> None:
        """Delete every snapshot in the expired area, then the area itself."""
        self.markers.verify()
        for name in self.catalog.list(Area.EXPIRED):
            logger.info(f"deleting expired backup {name}")
            if self.runner.remove_tree(self.catalog.path(name, Area.EXPIRED)):
                self.result.deleted.append(name)
            else:
                logger.warning(f"could not delete expired backup {name}")

        expired_dir = self.catalog.expired_dir
        if not self.catalog.list(Area.EXPIRED) and self.runner.is_dir(expired_dir):
            self.runner.remove_empty_dir(expired_dir)

    def _finalize(self, name: str) -> None:
        latest = self.context.destination.join(LATEST_LINK_NAME)
        self.runner.remove_file(latest)
        if not self.runner.symlink(name, latest):
            logger.warning(f"could not update {latest}")

        if not self.context.keep_expired:
            self._delete_expired()

        self.lock.release()
        logger.info(f"backup {name} completed")


def run_backup(
    context: BackupContext,
    runner: Optional[CommandRunner] = None,
    sync_executor: Optional[SyncExecutor] = None,
    lock_manager: Optional[LockManager] = None,
    clock: Optional[Callable[[bool], datetime]] = None,
    handle_signals: bool = True,
) -> BackupResult:
    """
    Run a complete backup and report the outcome.

    Args:
        context: Run configuration
        runner: Optional CommandRunner for the destination's host
        sync_executor: Optional SyncExecutor (mainly for tests)
        lock_manager: Optional LockManager (mainly for tests)
        clock: Optional source of "now"
        handle_signals: Install SIGINT/SIGTERM handlers for the run

    Returns:
        BackupResult; on failure success is False and exit_code names the
        error kind
    """
    signal_handler = SignalHandler() if handle_signals else None
    controller = LifecycleController(
        context,
        runner=runner,
        sync_executor=sync_executor,
        lock_manager=lock_manager,
        clock=clock,
        signal_handler=signal_handler,
    )
    if signal_handler is not None and sync_executor is not None:
        sync_executor.signal_handler = signal_handler

    log_backup_start(logger, context.source, context.destination.display())
    start_time = time.time()

    if signal_handler is not None:
        signal_handler.register()
    try:
        result = controller.run()
    except BackupError as e:
        log_backup_error(logger, e, controller.state.value)
        result = controller.result
        result.success = False
        result.exit_code = e.exit_code
        result.error_message = str(e)
        result.failed_state = controller.state
        controller.state = BackupState.FAILED
        result.duration_seconds = time.time() - start_time
        return result
    finally:
        if signal_handler is not None:
            signal_handler.unregister()

    log_backup_completion(logger, result)
    return result
