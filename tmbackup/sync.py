"""rsync invocation for tmbackup.

This module provides the SyncExecutor class that runs rsync for one
snapshot and classifies the result. Unchanged files are hard-linked to the
link base (``--link-dest``) so every snapshot is a full, browsable tree
that only costs the space of what changed.

rsync does not report "disk full" through a dedicated exit status, so the
outcome is read from its log file: the out-of-space signatures first, then
error and warning lines, with the exit status as a fallback.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable, List, Optional
import logging
import os
import posixpath
import re
import shlex
import subprocess
import tempfile

from tmbackup.destination import Destination
from tmbackup.logger import log_rsync_output
from tmbackup.runner import CommandRunner


logger = logging.getLogger(__name__)


RSYNC_FLAGS = [
    "--archive",
    "--hard-links",
    "--numeric-ids",
    "--delete",
    "--delete-excluded",
    "--one-file-system",
    "--itemize-changes",
    "--human-readable",
]

OUT_OF_SPACE_SIGNATURES = (
    "No space left on device (28)",
    "Result too large (34)",
)

# rsync exit status for "some files vanished before they could be transferred"
RSYNC_VANISHED = 24

# Prefix rsync puts in front of every --log-file line
_LOG_PREFIX = re.compile(r"^\d{4}/\d{2}/\d{2} \d{2}:\d{2}:\d{2} \[\d+\] ")

# Lines rsync prints for a dry-run diff that carry no per-file information
_DIFF_NOISE = re.compile(r"^sending|^$|^sent.*sec$|^total.*RUN\)")


class SyncOutcome(Enum):
    SUCCESS = "success"
    WARNING = "warning"
    OUT_OF_SPACE = "out_of_space"
    FATAL_ERROR = "fatal_error"


@dataclass
class SyncResult:
    """Result of one rsync run."""
    outcome: SyncOutcome
    returncode: int
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.outcome in (SyncOutcome.SUCCESS, SyncOutcome.WARNING)


def _strip_log_prefix(line: str) -> str:
    return _LOG_PREFIX.sub("", line.rstrip("\n"))


def classify_log(lines: Iterable[str], returncode: int) -> SyncResult:
    """
    Classify an rsync run from its log lines and exit status.

    Args:
        lines: Lines of the rsync log (prefixed or not)
        returncode: rsync exit status

    Returns:
        SyncResult with the outcome and the error/warning lines found
    """
    errors: List[str] = []
    warnings: List[str] = []
    out_of_space = False

    for raw in lines:
        line = _strip_log_prefix(raw)
        if any(signature in line for signature in OUT_OF_SPACE_SIGNATURES):
            out_of_space = True
        if line.startswith("rsync error:"):
            errors.append(line)
        elif line.startswith("rsync:") or line.startswith("rsync warning:"):
            warnings.append(line)

    if out_of_space:
        outcome = SyncOutcome.OUT_OF_SPACE
    elif errors or returncode not in (0, RSYNC_VANISHED):
        outcome = SyncOutcome.FATAL_ERROR
    elif warnings or returncode == RSYNC_VANISHED:
        outcome = SyncOutcome.WARNING
    else:
        outcome = SyncOutcome.SUCCESS

    return SyncResult(
        outcome=outcome,
        returncode=returncode,
        errors=errors,
        warnings=warnings,
    )


class SyncExecutor:
    """
    Runs rsync to fill one snapshot directory.

    rsync always runs on the local host; for remote destinations the target
    is given as ``user@host:path`` and rsync reaches it over ssh.
    """

    def __init__(
        self,
        destination: Destination,
        runner: Optional[CommandRunner] = None,
        rsync_path: str = "rsync",
        signal_handler: Optional[Any] = None,
    ):
        """
        Initialize the sync executor.

        Args:
            destination: Backup destination receiving the snapshot
            runner: CommandRunner for the destination's host, used to
                resolve the link base to an absolute path
            rsync_path: rsync executable
            signal_handler: Optional SignalHandler told about the running
                rsync process so it can be stopped on SIGINT/SIGTERM
        """
        self.destination = destination
        self.runner = runner if runner is not None else destination.runner()
        self.rsync_path = rsync_path
        self.signal_handler = signal_handler

    def build_command(
        self,
        source: str,
        target: str,
        log_file: str,
        link_base: Optional[str] = None,
        exclusion_file: Optional[str] = None,
        verbose: bool = False,
    ) -> List[str]:
        """
        Build the rsync argument list.

        Args:
            source: Local source directory
            target: Snapshot directory on the destination
            log_file: Scratch file rsync writes its log to
            link_base: Absolute path of the snapshot to hard-link against
            exclusion_file: Optional --exclude-from file
            verbose: Add --verbose

        Returns:
            List of command arguments for subprocess
        """
        cmd = [self.rsync_path] + RSYNC_FLAGS + ["--log-file", log_file]

        if verbose:
            cmd.append("--verbose")

        if self.runner.is_remote and (self.runner.ssh_port is not None or self.runner.identity_file):
            cmd += ["-e", shlex.join(self.runner.ssh_command())]

        if exclusion_file:
            cmd += ["--exclude-from", exclusion_file]

        if link_base:
            cmd.append(f"--link-dest={link_base}")

        # Trailing slashes: copy the contents of source into target
        cmd += [
            "--",
            source.rstrip("/") + "/",
            self.destination.sync_location(target.rstrip("/") + "/"),
        ]
        return cmd

    def run(
        self,
        source: str,
        target: str,
        link_base: Optional[str] = None,
        exclusion_file: Optional[str] = None,
        verbose: bool = False,
    ) -> SyncResult:
        """
        Run rsync for one snapshot and classify the result.

        Args:
            source: Local source directory
            target: Snapshot directory on the destination
            link_base: Previous snapshot to hard-link unchanged files against
            exclusion_file: Optional --exclude-from file
            verbose: Pass --verbose to rsync

        Returns:
            SyncResult
        """
        fd, log_file = tempfile.mkstemp(prefix="tmbackup_rsync_", suffix=".log")
        os.close(fd)
        try:
            resolved_link_base = None
            if link_base:
                # A relative --link-dest is resolved against the target
                # directory, so always pass an absolute path
                resolved_link_base = self.runner.absolute_path(link_base) or link_base
                logger.info(
                    f"doing incremental backup from {posixpath.basename(resolved_link_base)}"
                )

            cmd = self.build_command(
                source,
                target,
                log_file,
                link_base=resolved_link_base,
                exclusion_file=exclusion_file,
                verbose=verbose,
            )
            logger.info(f"rsync started for backup {posixpath.basename(target.rstrip('/'))}")
            logger.debug(shlex.join(cmd))

            output: List[str] = []
            try:
                returncode = self._execute(cmd, output)
            except OSError as e:
                logger.error(f"Could not start rsync: {e}")
                return SyncResult(
                    outcome=SyncOutcome.FATAL_ERROR,
                    returncode=127,
                    errors=[str(e)],
                )
            logger.info("rsync end")

            with open(log_file, encoding="utf-8", errors="replace") as f:
                log_lines = f.readlines()
            return classify_log(log_lines + output, returncode)
        finally:
            try:
                os.unlink(log_file)
            except FileNotFoundError:
                pass

    def _execute(self, cmd: List[str], output: List[str]) -> int:
        """Run rsync, streaming its output to the log; returns the exit status."""
        with subprocess.Popen(
            cmd,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
            errors="replace",
        ) as process:
            if self.signal_handler is not None:
                self.signal_handler.set_rsync_process(process)
            try:
                for line in process.stdout:
                    line = line.rstrip("\n")
                    output.append(line)
                    log_rsync_output(logger, line)
                return process.wait()
            finally:
                if self.signal_handler is not None:
                    self.signal_handler.set_rsync_process(None)


def run_diff(first: str, second: str, rsync_path: str = "rsync") -> int:
    """
    Show the differences between two local backups.

    Runs rsync in dry-run mode from ``first`` to ``second`` and logs the
    itemized changes.

    Returns:
        rsync exit status
    """
    cmd = [
        rsync_path, "--dry-run", "-auvi", "--",
        first.rstrip("/") + "/",
        second.rstrip("/") + "/",
    ]
    logger.debug(shlex.join(cmd))
    completed = subprocess.run(cmd, capture_output=True, text=True, errors="replace")
    for line in completed.stdout.splitlines():
        if not _DIFF_NOISE.search(line):
            logger.info(line)
    for line in completed.stderr.splitlines():
        logger.error(line)
    return completed.returncode
