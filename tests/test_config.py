"""
Configuration Tests
===================
"""

import json
import logging

import pytest
from pydantic import ValidationError

from kcl_child.config import JsonLineFormatter, Settings, load_config


@pytest.fixture
def clean_env(monkeypatch, tmp_path):
    """Run with no config file and no KCL_CHILD_* variables."""
    for name in (
        "KCL_CHILD_CONFIG",
        "KCL_CHILD_READ_CHUNK_SIZE",
        "KCL_CHILD_MAX_FRAME_BYTES",
        "KCL_CHILD_LOG_LEVEL",
        "KCL_CHILD_LOG_FORMAT",
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)
    return tmp_path


class TestLoadConfig:
    """Tests for file and environment loading."""

    def test_defaults(self, clean_env):
        """Verify defaults apply without a file or environment."""
        settings = load_config()
        assert settings == Settings()
        assert settings.transport.read_chunk_size == 64 * 1024
        assert settings.transport.max_frame_bytes == 64 * 1024 * 1024
        assert settings.logging.level == "INFO"
        assert settings.engine.redirect_stdout is True

    def test_yaml_file(self, clean_env):
        """Verify values are read from a YAML file."""
        path = clean_env / "custom.yaml"
        path.write_text(
            "transport:\n"
            "  read_chunk_size: 4096\n"
            "logging:\n"
            "  level: DEBUG\n"
            "  format: json\n"
        )

        settings = load_config(str(path))

        assert settings.transport.read_chunk_size == 4096
        assert settings.logging.format == "json"
        assert settings.logging.level == "DEBUG"

    def test_file_found_in_working_directory(self, clean_env):
        """Verify kcl_child.yaml is found in the working directory."""
        (clean_env / "kcl_child.yaml").write_text("engine:\n  warn_on_shard_end_without_checkpoint: false\n")
        assert load_config().engine.warn_on_shard_end_without_checkpoint is False

    def test_config_path_from_environment(self, clean_env, monkeypatch):
        """Verify KCL_CHILD_CONFIG selects the file."""
        path = clean_env / "elsewhere.yml"
        path.write_text("transport:\n  max_frame_bytes: 1024\n")
        monkeypatch.setenv("KCL_CHILD_CONFIG", str(path))

        assert load_config().transport.max_frame_bytes == 1024

    def test_environment_overrides_file(self, clean_env, monkeypatch):
        """Verify environment variables take precedence over the file."""
        path = clean_env / "kcl_child.yaml"
        path.write_text("transport:\n  read_chunk_size: 4096\nlogging:\n  level: DEBUG\n")
        monkeypatch.setenv("KCL_CHILD_READ_CHUNK_SIZE", "128")
        monkeypatch.setenv("KCL_CHILD_LOG_LEVEL", "WARNING")

        settings = load_config()

        assert settings.transport.read_chunk_size == 128
        assert settings.logging.level == "WARNING"

    def test_missing_file_falls_back_to_defaults(self, clean_env):
        """Verify a missing file falls back to defaults."""
        assert load_config(str(clean_env / "missing.yaml")) == Settings()

    def test_empty_file(self, clean_env):
        """Verify an empty file yields defaults."""
        path = clean_env / "kcl_child.yaml"
        path.write_text("")
        assert load_config() == Settings()

    def test_invalid_values_rejected(self, clean_env, monkeypatch):
        """Verify invalid values fail validation."""
        monkeypatch.setenv("KCL_CHILD_LOG_FORMAT", "xml")
        with pytest.raises(ValidationError):
            load_config()

        monkeypatch.delenv("KCL_CHILD_LOG_FORMAT")
        monkeypatch.setenv("KCL_CHILD_MAX_FRAME_BYTES", "0")
        with pytest.raises(ValidationError):
            load_config()


class TestJsonLineFormatter:
    """Tests for the JSON log line format."""

    def test_quotes_in_message_stay_valid_json(self):
        """Verify messages containing quotes produce parseable lines."""
        record = logging.LogRecord(
            "kcl_child.main", logging.ERROR, __file__, 1,
            'Fatal ProtocolFault: Invalid action in frame 3: "shardId" missing', None, None,
        )
        line = JsonLineFormatter().format(record)

        entry = json.loads(line)
        assert entry["level"] == "ERROR"
        assert entry["module"] == "kcl_child.main"
        assert entry["message"] == 'Fatal ProtocolFault: Invalid action in frame 3: "shardId" missing'
        assert "\n" not in line
