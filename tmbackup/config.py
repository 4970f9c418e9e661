"""Configuration management for tmbackup.

This module provides dataclasses for the tool's own configuration and
functions for parsing its TOML configuration file. The file is
optional: per-destination settings (time base, retention windows) live in
each destination's backup marker, so the tool file only covers logging,
ssh access and the keep-expired default.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional
import tomllib


class ConfigurationError(Exception):
    """Raised when the configuration file is missing or malformed."""
    pass


class ValidationError(Exception):
    """Raised when configuration values have invalid types."""
    pass


@dataclass
class LoggingConfig:
    """Configuration for logging."""
    level: str = "INFO"  # "DEBUG", "INFO", "WARNING", "ERROR"
    log_file: Optional[Path] = None  # None = console only
    log_max_size_mb: int = 10  # Maximum log file size in MB before rotation
    log_backup_count: int = 5  # Number of rotated log files to keep

    @property
    def log_max_bytes(self) -> int:
        """Return max size in bytes for use with RotatingFileHandler."""
        return self.log_max_size_mb * 1024 * 1024


@dataclass
class SSHConfig:
    """Configuration for remote destinations."""
    port: Optional[int] = None
    identity_file: Optional[Path] = None


@dataclass
class Configuration:
    """Main configuration for tmbackup."""
    keep_expired: bool = False
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    ssh: SSHConfig = field(default_factory=SSHConfig)


# Default config file path
DEFAULT_CONFIG_PATH = Path.home() / ".config/tmbackup/config.toml"


def _validate_type(value: Any, expected_type: type, key: str) -> None:
    """Validate that a value has the expected type."""
    # bool is a subclass of int; "port = true" is not a port
    if isinstance(value, bool) and expected_type is not bool:
        raise ValidationError(
            f"Key '{key}' has invalid type: expected {expected_type.__name__}, got bool"
        )
    if not isinstance(value, expected_type):
        raise ValidationError(
            f"Key '{key}' has invalid type: expected {expected_type.__name__}, "
            f"got {type(value).__name__}"
        )


def _expand(path: str) -> Path:
    return Path(path).expanduser()


def _parse_logging_config(data: Dict[str, Any]) -> LoggingConfig:
    """Parse logging configuration from dict."""
    logging_data = data.get("logging", {})
    _validate_type(logging_data, dict, "logging")

    level = logging_data.get("level", "INFO")
    _validate_type(level, str, "logging.level")

    log_file = logging_data.get("log_file")
    if log_file is not None:
        _validate_type(log_file, str, "logging.log_file")

    log_max_size_mb = logging_data.get("log_max_size_mb", 10)
    _validate_type(log_max_size_mb, int, "logging.log_max_size_mb")

    log_backup_count = logging_data.get("log_backup_count", 5)
    _validate_type(log_backup_count, int, "logging.log_backup_count")

    return LoggingConfig(
        level=level.upper(),
        log_file=_expand(log_file) if log_file is not None else None,
        log_max_size_mb=log_max_size_mb,
        log_backup_count=log_backup_count,
    )


def _parse_ssh_config(data: Dict[str, Any]) -> SSHConfig:
    """Parse ssh configuration from dict."""
    ssh_data = data.get("ssh", {})
    _validate_type(ssh_data, dict, "ssh")

    port = ssh_data.get("port")
    if port is not None:
        _validate_type(port, int, "ssh.port")
        if not 0 < port < 65536:
            raise ValidationError(f"Key 'ssh.port' out of range: {port}")

    identity_file = ssh_data.get("identity_file")
    if identity_file is not None:
        _validate_type(identity_file, str, "ssh.identity_file")

    return SSHConfig(
        port=port,
        identity_file=_expand(identity_file) if identity_file is not None else None,
    )


def parse_config_data(data: Dict[str, Any]) -> Configuration:
    """
    Build a Configuration from parsed TOML data.

    Raises:
        ValidationError: If a value has the wrong type
    """
    keep_expired = data.get("keep_expired", False)
    _validate_type(keep_expired, bool, "keep_expired")

    return Configuration(
        keep_expired=keep_expired,
        logging=_parse_logging_config(data),
        ssh=_parse_ssh_config(data),
    )


def parse_config(config_path: Optional[Path] = None) -> Configuration:
    """
    Parse the TOML configuration file.

    Args:
        config_path: Path to config file. If None, the default path is used
            and a missing file means default settings.

    Returns:
        Configuration

    Raises:
        ConfigurationError: If an explicitly given file is missing, or the
            file cannot be read or parsed
        ValidationError: If a value has the wrong type
    """
    if config_path is None:
        path = DEFAULT_CONFIG_PATH
        if not path.exists():
            return Configuration()
    else:
        path = Path(config_path)
        if not path.exists():
            raise ConfigurationError(f"Configuration file not found: {path}")

    try:
        with open(path, "rb") as f:
            data = tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ConfigurationError(f"Invalid TOML in {path}: {e}")
    except OSError as e:
        raise ConfigurationError(f"Cannot read configuration file {path}: {e}")

    return parse_config_data(data)
