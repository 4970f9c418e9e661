"""Unit tests for the error kinds and their exit codes."""

from tmbackup.errors import (
    EXIT_CONCURRENT_RUN,
    EXIT_NO_SPACE,
    BackupError,
    BackupInterrupted,
    ConcurrentRunDetected,
    NoSpaceNoCandidates,
)


class TestExitCodes:
    """Tests for the exit code each error carries."""

    def test_base_error_defaults_to_one(self):
        assert BackupError("failed").exit_code == 1

    def test_explicit_exit_code(self):
        assert BackupError("failed", exit_code=42).exit_code == 42

    def test_none_keeps_class_exit_code(self):
        assert NoSpaceNoCandidates("full", exit_code=None).exit_code == EXIT_NO_SPACE

    def test_interrupt_maps_signal(self):
        assert BackupInterrupted("SIGTERM caught", signum=15).exit_code == 143


class TestConcurrentRunDetected:
    """Tests for the recorded lock holder."""

    def test_pid_optional(self):
        error = ConcurrentRunDetected("busy")
        assert error.pid is None
        assert error.exit_code == EXIT_CONCURRENT_RUN

    def test_pid_recorded(self):
        assert ConcurrentRunDetected("busy", pid=1234).pid == 1234
