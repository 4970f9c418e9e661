"""Unit tests for configuration parsing."""

from pathlib import Path

import pytest

from tmbackup.config import (
    Configuration,
    ConfigurationError,
    LoggingConfig,
    ValidationError,
    parse_config,
    parse_config_data,
)


def write_config(tmp_path: Path, content: str) -> Path:
    path = tmp_path / "config.toml"
    path.write_text(content)
    return path


class TestParseConfig:
    """Tests for parse_config."""

    def test_full_config(self, tmp_path):
        path = write_config(tmp_path, """
keep_expired = true

[logging]
level = "debug"
log_file = "~/logs/tmbackup.log"
log_max_size_mb = 2
log_backup_count = 3

[ssh]
port = 2222
identity_file = "/keys/backup"
""")
        config = parse_config(path)
        assert config.keep_expired is True
        assert config.logging.level == "DEBUG"
        assert config.logging.log_file == Path("~/logs/tmbackup.log").expanduser()
        assert config.logging.log_max_bytes == 2 * 1024 * 1024
        assert config.logging.log_backup_count == 3
        assert config.ssh.port == 2222
        assert config.ssh.identity_file == Path("/keys/backup")

    def test_empty_file_gives_defaults(self, tmp_path):
        assert parse_config(write_config(tmp_path, "")) == Configuration()

    def test_missing_explicit_file(self, tmp_path):
        with pytest.raises(ConfigurationError):
            parse_config(tmp_path / "missing.toml")

    def test_missing_default_file(self, tmp_path, monkeypatch):
        monkeypatch.setattr("tmbackup.config.DEFAULT_CONFIG_PATH", tmp_path / "missing.toml")
        assert parse_config() == Configuration()

    def test_invalid_toml(self, tmp_path):
        with pytest.raises(ConfigurationError):
            parse_config(write_config(tmp_path, "keep_expired = \n"))


class TestValidation:
    """Tests for value type validation."""

    @pytest.mark.parametrize("data", [
        {"keep_expired": "yes"},
        {"logging": {"level": 10}},
        {"logging": {"log_max_size_mb": "10"}},
        {"logging": "verbose"},
        {"ssh": {"port": "22"}},
        {"ssh": {"port": True}},
        {"ssh": {"port": 70000}},
        {"ssh": {"identity_file": 1}},
    ])
    def test_invalid_values(self, data):
        with pytest.raises(ValidationError):
            parse_config_data(data)

    def test_defaults(self):
        config = parse_config_data({})
        assert config.keep_expired is False
        assert config.logging == LoggingConfig()
        assert config.ssh.port is None
        assert config.ssh.identity_file is None
