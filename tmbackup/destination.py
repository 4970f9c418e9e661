"""Destination parsing for tmbackup.

This module turns a destination argument into a Destination value: either a
local directory or a directory on a remote host reached over ssh
(``user@host:path``). No network access happens here; the destination is
probed later through a CommandRunner.
"""

from dataclasses import dataclass
from typing import Optional
import posixpath
import re

from tmbackup.runner import CommandRunner


REMOTE_PATTERN = re.compile(r"^([A-Za-z0-9._%+-]+)@([A-Za-z0-9.-]+):(.+)$")


@dataclass(frozen=True)
class Destination:
    """A backup location, local or on a remote host."""
    path: str
    user: Optional[str] = None
    host: Optional[str] = None

    @property
    def is_remote(self) -> bool:
        return self.host is not None

    @property
    def ssh_target(self) -> Optional[str]:
        """Return ``user@host`` for remote destinations, else None."""
        if not self.is_remote:
            return None
        return f"{self.user}@{self.host}"

    def join(self, *names: str) -> str:
        """Join names onto the destination path."""
        return posixpath.join(self.path, *names)

    def sync_location(self, path: str) -> str:
        """Return ``path`` in the form rsync expects for this destination."""
        if self.is_remote:
            return f"{self.ssh_target}:{path}"
        return path

    def display(self) -> str:
        return self.sync_location(self.path)

    def runner(
        self,
        ssh_port: Optional[int] = None,
        identity_file: Optional[str] = None,
    ) -> CommandRunner:
        """Create a CommandRunner that executes on this destination's host."""
        return CommandRunner(
            ssh_target=self.ssh_target,
            ssh_port=ssh_port,
            identity_file=identity_file,
        )


def _strip_trailing_slash(path: str) -> str:
    if len(path) > 1:
        return path.rstrip("/") or "/"
    return path


def parse_destination(text: str) -> Destination:
    """
    Parse a destination string.

    ``user@host:path`` yields a remote destination; anything else is taken
    as a local path.

    Args:
        text: Destination argument as given on the command line

    Returns:
        Destination with any trailing slash removed from the path
    """
    match = REMOTE_PATTERN.match(text)
    if match:
        user, host, path = match.groups()
        return Destination(path=_strip_trailing_slash(path), user=user, host=host)
    return Destination(path=_strip_trailing_slash(text))
