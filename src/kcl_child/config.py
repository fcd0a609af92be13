"""
kcl-child Configuration
=======================

This module handles configuration loading for the protocol engine.

Configuration Sources (in order of precedence):
    1. Environment variables (highest priority)
    2. YAML file (KCL_CHILD_CONFIG, or kcl_child.yaml in the working directory)
    3. Default values (lowest priority)

Environment Variable Mapping:
    KCL_CHILD_CONFIG           -> path of the YAML file
    KCL_CHILD_READ_CHUNK_SIZE  -> transport.read_chunk_size
    KCL_CHILD_MAX_FRAME_BYTES  -> transport.max_frame_bytes
    KCL_CHILD_LOG_LEVEL        -> logging.level
    KCL_CHILD_LOG_FORMAT       -> logging.format

Logging always goes to stderr: stdout carries the protocol and anything
else written there corrupts the framing.

Example:
    from kcl_child.config import load_config, setup_logging

    settings = load_config()
    setup_logging(settings)
"""

import json
import logging
import os
import sys
from pathlib import Path
from typing import Literal, Optional

import yaml
from pydantic import BaseModel, Field

from kcl_child.stream.transport import DEFAULT_MAX_FRAME_BYTES, DEFAULT_READ_CHUNK_SIZE


logger = logging.getLogger(__name__)


# =============================================================================
# Configuration Models
# =============================================================================

class TransportConfig(BaseModel):
    """Line transport configuration."""

    read_chunk_size: int = Field(
        default=DEFAULT_READ_CHUNK_SIZE,
        ge=1,
        description="Bytes requested per read from stdin",
    )
    max_frame_bytes: int = Field(
        default=DEFAULT_MAX_FRAME_BYTES,
        ge=1,
        description="Largest accepted frame; larger frames are fatal",
    )
    encoding: str = Field(default="utf-8", description="Frame text encoding")


class EngineConfig(BaseModel):
    """Dispatcher behaviour."""

    warn_on_shard_end_without_checkpoint: bool = Field(
        default=True,
        description="Log a warning when shard_ended returns without checkpointing",
    )
    redirect_stdout: bool = Field(
        default=True,
        description="Send print() output from processors to stderr instead of the protocol stream",
    )


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = Field(default="INFO", description="Log level")
    format: Literal["text", "json"] = Field(default="text", description="Log format: json or text")


class Settings(BaseModel):
    """
    Main settings class for kcl-child.

    Loads configuration from YAML file and environment variables.
    Environment variables take precedence over file values.
    """

    transport: TransportConfig = Field(default_factory=TransportConfig)
    engine: EngineConfig = Field(default_factory=EngineConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


# =============================================================================
# Configuration Loading
# =============================================================================

def load_config(config_path: Optional[str] = None) -> Settings:
    """
    Load configuration from YAML file and environment variables.

    Args:
        config_path: Path to a YAML file. If None, KCL_CHILD_CONFIG and
            then the working directory are searched.

    Returns:
        Settings: Loaded configuration
    """
    if config_path is None:
        config_path = os.environ.get("KCL_CHILD_CONFIG")
    if config_path is None:
        for path in (Path("kcl_child.yaml"), Path("kcl_child.yml")):
            if path.exists():
                config_path = str(path)
                break

    config_data = {}
    if config_path and Path(config_path).exists():
        logger.info(f"Loading config from: {config_path}")
        with open(config_path, "r") as f:
            config_data = yaml.safe_load(f) or {}
    elif config_path:
        logger.warning(f"Config file {config_path} not found, using defaults")

    _apply_env_overrides(config_data)

    return Settings.model_validate(config_data)


def _apply_env_overrides(config_data: dict) -> None:
    """Apply environment variable overrides to config data."""

    # Transport settings
    if env_chunk := os.environ.get("KCL_CHILD_READ_CHUNK_SIZE"):
        config_data.setdefault("transport", {})["read_chunk_size"] = int(env_chunk)
    if env_max := os.environ.get("KCL_CHILD_MAX_FRAME_BYTES"):
        config_data.setdefault("transport", {})["max_frame_bytes"] = int(env_max)

    # Logging settings
    if env_log := os.environ.get("KCL_CHILD_LOG_LEVEL"):
        config_data.setdefault("logging", {})["level"] = env_log
    if env_format := os.environ.get("KCL_CHILD_LOG_FORMAT"):
        config_data.setdefault("logging", {})["format"] = env_format


class JsonLineFormatter(logging.Formatter):
    """Formats each record as one JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "time": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "module": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False)


def setup_logging(settings: Settings) -> None:
    """Configure root logging to stderr based on settings."""
    log_level = getattr(logging, settings.logging.level.upper(), logging.INFO)
    datefmt = "%Y-%m-%dT%H:%M:%S"

    handler = logging.StreamHandler(sys.stderr)
    if settings.logging.format == "json":
        handler.setFormatter(JsonLineFormatter(datefmt=datefmt))
    else:
        handler.setFormatter(
            logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s", datefmt=datefmt)
        )

    logging.basicConfig(level=log_level, handlers=[handler])
