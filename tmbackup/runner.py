"""Command execution for tmbackup.

This module provides the CommandRunner class that executes shell commands
either on the local host or on a remote host over ssh. Every filesystem
operation the backup core performs on the destination goes through a
runner, so local and remote destinations share one code path.
"""

from dataclasses import dataclass
from typing import List, Optional
import logging
import shlex
import subprocess


logger = logging.getLogger(__name__)


@dataclass
class CommandResult:
    """Result of a command run through a CommandRunner."""
    stdout: str
    stderr: str
    returncode: int

    @property
    def ok(self) -> bool:
        return self.returncode == 0


class CommandRunner:
    """
    Runs shell commands locally or on a configured ssh target.

    Commands are plain POSIX shell strings. Locally they are run with
    ``sh -c``; remotely they are handed to ``ssh user@host`` which runs them
    with the remote login shell.
    """

    def __init__(
        self,
        ssh_target: Optional[str] = None,
        ssh_port: Optional[int] = None,
        identity_file: Optional[str] = None,
    ):
        """
        Initialize the runner.

        Args:
            ssh_target: ``user@host`` to run commands on, or None for local
            ssh_port: Optional ssh port
            identity_file: Optional private key passed to ssh with ``-i``
        """
        self.ssh_target = ssh_target
        self.ssh_port = ssh_port
        self.identity_file = identity_file

    @property
    def is_remote(self) -> bool:
        return self.ssh_target is not None

    def ssh_command(self) -> List[str]:
        """Return the ssh invocation (without the remote command)."""
        cmd = ["ssh"]
        if self.ssh_port is not None:
            cmd += ["-p", str(self.ssh_port)]
        if self.identity_file:
            cmd += ["-i", self.identity_file]
        return cmd

    def build_command(self, command: str) -> List[str]:
        """Build the argv that runs ``command`` locally or remotely."""
        if self.is_remote:
            return self.ssh_command() + [self.ssh_target, command]
        return ["sh", "-c", command]

    def run(self, command: str) -> CommandResult:
        """
        Run a shell command and capture its output.

        Args:
            command: Shell command line

        Returns:
            CommandResult with decoded stdout/stderr and the exit status
        """
        argv = self.build_command(command)
        if self.is_remote:
            logger.debug(f"Running remote command on {self.ssh_target}: {command}")
        else:
            logger.debug(f"Running local command: {command}")

        try:
            completed = subprocess.run(
                argv,
                capture_output=True,
                text=True,
                errors="replace",
            )
        except OSError as e:
            logger.debug(f"Command could not be started: {e}")
            return CommandResult(stdout="", stderr=str(e), returncode=127)

        return CommandResult(
            stdout=completed.stdout,
            stderr=completed.stderr,
            returncode=completed.returncode,
        )

    def test(self, command: str) -> bool:
        """Run a command and return whether it exited with status 0."""
        return self.run(command).ok

    # Filesystem verbs. Each is one shell command so that it works
    # unchanged over ssh.

    def is_dir(self, path: str) -> bool:
        return self.test(f"[ -d {shlex.quote(path)} ]")

    def is_file(self, path: str) -> bool:
        return self.test(f"[ -f {shlex.quote(path)} ]")

    def exists(self, path: str) -> bool:
        return self.test(f"[ -e {shlex.quote(path)} ] || [ -L {shlex.quote(path)} ]")

    def make_dirs(self, path: str) -> bool:
        return self.test(f"mkdir -p -- {shlex.quote(path)}")

    def move(self, source: str, dest: str) -> bool:
        return self.test(f"mv -- {shlex.quote(source)} {shlex.quote(dest)}")

    def remove_tree(self, path: str) -> bool:
        return self.test(f"rm -rf -- {shlex.quote(path)}")

    def remove_file(self, path: str) -> bool:
        return self.test(f"rm -f -- {shlex.quote(path)}")

    def remove_empty_dir(self, path: str) -> bool:
        return self.test(f"rmdir -- {shlex.quote(path)}")

    def symlink(self, target: str, link: str) -> bool:
        return self.test(f"ln -s -- {shlex.quote(target)} {shlex.quote(link)}")

    def chmod(self, path: str, mode: str) -> bool:
        return self.test(f"chmod -- {mode} {shlex.quote(path)}")

    def touch_existing(self, path: str) -> bool:
        """Update the mtime of ``path`` without creating it; a write check."""
        return self.test(f"touch -c -- {shlex.quote(path)}")

    def read_text(self, path: str) -> Optional[str]:
        """Return the content of a file, or None if it cannot be read."""
        result = self.run(f"cat -- {shlex.quote(path)}")
        if not result.ok:
            return None
        return result.stdout

    def write_text(self, path: str, text: str, append: bool = False) -> bool:
        """Write ``text`` to ``path``, replacing or appending to its content."""
        redirect = ">>" if append else ">"
        return self.test(
            f"printf '%s' {shlex.quote(text)} {redirect} {shlex.quote(path)}"
        )

    def absolute_path(self, path: str) -> Optional[str]:
        """Resolve ``path`` to an absolute path on the runner's host."""
        result = self.run(f"cd -- {shlex.quote(path)} && pwd")
        if not result.ok:
            return None
        return result.stdout.strip() or None

    def list_dirs(self, path: str, name_glob: str) -> List[str]:
        """
        List directory names directly inside ``path`` matching ``name_glob``.

        Args:
            path: Directory to search
            name_glob: ``find -name`` pattern

        Returns:
            Base names of matching directories, in no particular order
        """
        result = self.run(
            f"find {shlex.quote(path)} -mindepth 1 -maxdepth 1 -type d "
            f"-name {shlex.quote(name_glob)}"
        )
        if not result.ok:
            logger.debug(f"Listing {path} failed: {result.stderr.strip()}")
            return []
        names = []
        for line in result.stdout.splitlines():
            line = line.rstrip("/")
            if line:
                names.append(line.rsplit("/", 1)[-1])
        return names
