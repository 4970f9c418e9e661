"""Signal handling for backup runs.

This module provides the SignalHandler class that handles SIGINT and
SIGTERM during a backup. Unlike a rollback, an interrupted run keeps its
state: the in-progress marker and the partially filled snapshot stay on the
destination so the next run resumes from them. The handler only stops rsync
and turns the signal into a BackupInterrupted exception.
"""

from typing import Any, Dict, Optional
import logging
import signal
import subprocess
import threading

from tmbackup.errors import BackupInterrupted


class SignalHandler:
    """
    Handles OS signals for a backup run.

    Usage:
        handler = SignalHandler()
        handler.register()
        handler.set_rsync_process(process)
        # ... do backup ...
        handler.unregister()
    """

    def __init__(self):
        self._rsync_process: Optional[subprocess.Popen] = None
        self._original_handlers: Dict[int, Any] = {}
        self._registered = False
        self._logger = logging.getLogger(__name__)

    def register(self) -> None:
        """
        Register handlers for SIGTERM and SIGINT.

        Signal handlers can only be installed from the main thread; from any
        other thread this is a no-op apart from a debug message.
        """
        if threading.current_thread() is not threading.main_thread():
            self._logger.debug("Signal handlers not registered: not running in main thread")
            return

        for sig in (signal.SIGTERM, signal.SIGINT):
            self._original_handlers[sig] = signal.signal(sig, self._handle_signal)
        self._registered = True
        self._logger.debug("Signal handlers registered")

    def set_rsync_process(self, process: Optional[subprocess.Popen]) -> None:
        """Set the rsync subprocess to terminate on signal."""
        self._rsync_process = process

    def unregister(self) -> None:
        """Restore the original signal handlers."""
        if not self._registered:
            return
        for sig, handler in self._original_handlers.items():
            signal.signal(sig, handler)
        self._original_handlers.clear()
        self._rsync_process = None
        self._registered = False
        self._logger.debug("Signal handlers unregistered")

    def terminate_rsync(self) -> None:
        """Stop the running rsync process, killing it if it does not exit."""
        process = self._rsync_process
        if process is None or process.poll() is not None:
            return
        process.terminate()
        try:
            process.wait(timeout=5)
        except subprocess.TimeoutExpired:
            process.kill()
            process.wait()
        self._logger.debug("Rsync subprocess terminated")

    def _handle_signal(self, signum: int, frame: Any) -> None:
        sig_name = signal.Signals(signum).name
        self._logger.warning(f"{sig_name} caught.")
        self.terminate_rsync()
        raise BackupInterrupted(
            f"backup interrupted by {sig_name} - it will resume on the next run",
            signum=signum,
        )

    @property
    def is_registered(self) -> bool:
        """Return whether signal handlers are currently registered."""
        return self._registered

    def __enter__(self) -> "SignalHandler":
        self.register()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        self.unregister()
        return False
