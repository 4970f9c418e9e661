"""Lock management for tmbackup.

This module provides the LockManager class that prevents concurrent backup
runs against one destination using the in-progress marker
(``backup.inprogress``) and a process liveness check on the PID it records.

The lock is advisory: nothing stops two runs that check the recorded holder
at the same moment. A crashed run leaves the marker behind with a dead
holder, which the next run detects and resumes from.
"""

from typing import Callable, Optional
import logging
import os
import subprocess

from tmbackup.destination import Destination
from tmbackup.errors import ConcurrentRunDetected, PermissionDenied
from tmbackup.runner import CommandRunner


logger = logging.getLogger(__name__)


INPROGRESS_FILE_NAME = "backup.inprogress"

# Name looked for in the argument list of a recorded lock holder
PROGRAM_NAME = "tmbackup"


def _runs_program(args: str, program: str) -> bool:
    """
    Check whether a ``ps`` argument list runs ``program``.

    Only the executable name counts, or the script or ``-m`` module when the
    executable is a Python interpreter. A mention anywhere else, like an
    editor opening ``tmbackup.log``, does not.
    """
    tokens = args.split()
    if not tokens:
        return False
    names = {os.path.basename(tokens[0])}
    if os.path.basename(tokens[0]).startswith("python") and len(tokens) > 1:
        if tokens[1] == "-m" and len(tokens) > 2:
            names.add(tokens[2])
        else:
            names.add(os.path.basename(tokens[1]))
    return program in names


def is_backup_process(pid: int, program: str = PROGRAM_NAME) -> bool:
    """
    Check whether ``pid`` is a running backup process.

    The process must exist and run ``program`` (see ``_runs_program``),
    so a recycled PID belonging to an unrelated process counts as dead.

    Args:
        pid: Process id read from the in-progress marker
        program: Program name to look for

    Returns:
        True if a live backup process owns the PID
    """
    if pid == os.getpid():
        return False
    try:
        # Signal 0 only checks that the process exists
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        # Process exists but belongs to another user
        pass

    try:
        result = subprocess.run(
            ["ps", "-p", str(pid), "-o", "args="],
            capture_output=True,
            text=True,
        )
    except OSError as e:
        logger.debug(f"Cannot inspect process {pid}: {e}")
        return True

    if result.returncode != 0:
        return False
    return _runs_program(result.stdout, program)


class LockManager:
    """
    Manages the in-progress marker of a destination.

    The marker holds the PID of the run that owns the destination. It is
    removed only after a successful run; a crashed run leaves it behind,
    which the next run detects as stale.
    """

    def __init__(
        self,
        destination: Destination,
        runner: Optional[CommandRunner] = None,
        liveness_check: Optional[Callable[[int], bool]] = None,
        pid: Optional[int] = None,
    ):
        """
        Initialize LockManager.

        Args:
            destination: Backup destination holding the marker
            runner: CommandRunner for the destination's host
            liveness_check: Callable deciding whether a recorded PID is a
                live backup run. Defaults to is_backup_process.
            pid: PID to record. Defaults to the current process.
        """
        self.destination = destination
        self.runner = runner if runner is not None else destination.runner()
        self.liveness_check = liveness_check if liveness_check is not None else is_backup_process
        self.pid = pid if pid is not None else os.getpid()
        self._acquired = False

    @property
    def marker_path(self) -> str:
        return self.destination.join(INPROGRESS_FILE_NAME)

    def is_present(self) -> bool:
        return self.runner.is_file(self.marker_path)

    def holder_pid(self) -> Optional[int]:
        """Return the PID recorded in the marker, or None."""
        content = self.runner.read_text(self.marker_path)
        if not content:
            return None
        try:
            return int(content.strip())
        except ValueError:
            return None

    def acquire(self) -> bool:
        """
        Take ownership of the destination.

        Returns:
            True if a stale marker from a dead run was found (the caller
            should try to resume), False if there was no marker

        Raises:
            ConcurrentRunDetected: If a live backup run holds the marker
        """
        stale = False
        if self.is_present():
            holder = self.holder_pid()
            if holder is not None and self.liveness_check(holder):
                raise ConcurrentRunDetected(
                    "previous backup task is still active - aborting.",
                    pid=holder,
                )
            stale = True
            logger.debug(f"Found stale in-progress marker (pid {holder})")

        if not self.runner.write_text(self.marker_path, f"{self.pid}\n"):
            raise PermissionDenied(
                f"cannot write in-progress marker {self.marker_path}"
            )
        self._acquired = True
        return stale

    def release(self) -> None:
        """Remove the in-progress marker. Safe to call when it is absent."""
        self.runner.remove_file(self.marker_path)
        self._acquired = False

    @property
    def acquired(self) -> bool:
        return self._acquired
