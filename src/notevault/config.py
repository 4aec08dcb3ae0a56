"""
Configuration -- ``<home>/config.yaml`` plus environment overrides.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, Field, ValidationError

from . import NOTEVAULT_HOME

logger = logging.getLogger("notevault.config")

CONFIG_FILE = "config.yaml"
DEFAULT_PORT = 4000


class NotevaultConfig(BaseModel):
    """Settings shared by the client coordinator and the API server."""

    server_url: str = f"http://127.0.0.1:{DEFAULT_PORT}"
    request_timeout: float = Field(default=5.0, gt=0)
    debounce_seconds: float = Field(default=1.0, ge=0)
    host: str = "127.0.0.1"
    port: int = Field(default=DEFAULT_PORT, ge=0, le=65535)
    data_dir: Optional[Path] = None
    mirror_file: Optional[Path] = None

    def resolve_paths(self, home: Path) -> "NotevaultConfig":
        """Fill unset paths with defaults under ``home``."""
        return self.model_copy(update={
            "data_dir": (self.data_dir or home / "server").expanduser(),
            "mirror_file": (
                self.mirror_file or home / "local" / "mirror.json"
            ).expanduser(),
        })


def resolve_home(home: Optional[Path] = None) -> Path:
    """Expand the notevault home directory."""
    return Path(home or NOTEVAULT_HOME).expanduser()


def load_config(home: Optional[Path] = None) -> NotevaultConfig:
    """Load configuration from disk and apply environment overrides.

    A missing or unreadable config file yields the defaults.

    Args:
        home: notevault home. Defaults to ``NOTEVAULT_HOME``.

    Returns:
        NotevaultConfig with all paths resolved.
    """
    home_path = resolve_home(home)
    config_file = home_path / CONFIG_FILE

    data: dict = {}
    if config_file.exists():
        try:
            data = yaml.safe_load(config_file.read_text(encoding="utf-8")) or {}
            if not isinstance(data, dict):
                logger.warning("Ignoring non-mapping config in %s", config_file)
                data = {}
        except (yaml.YAMLError, OSError) as exc:
            logger.warning("Failed to load config: %s", exc)
            data = {}

    server_url = os.environ.get("NOTEVAULT_SERVER_URL")
    if server_url:
        data["server_url"] = server_url
    port = os.environ.get("NOTEVAULT_PORT")
    if port:
        data["port"] = port

    try:
        config = NotevaultConfig(**data)
    except ValidationError as exc:
        logger.warning("Invalid config values, using defaults: %s", exc)
        config = NotevaultConfig()

    return config.resolve_paths(home_path)


def save_config(config: NotevaultConfig, home: Optional[Path] = None) -> Path:
    """Write configuration to ``<home>/config.yaml``.

    Returns:
        Path of the written file.
    """
    home_path = resolve_home(home)
    home_path.mkdir(parents=True, exist_ok=True)
    config_file = home_path / CONFIG_FILE
    data = config.model_dump(mode="json", exclude_none=True)
    config_file.write_text(
        yaml.dump(data, default_flow_style=False), encoding="utf-8"
    )
    return config_file
