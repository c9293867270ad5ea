"""
Engine configuration for the loop engine.

Loads engine.yaml from the engine home directory. If no config file exists,
returns defaults matching the built-in constants.

Home directory resolution (first match wins):
- explicit argument (the CLI's --home flag)
- LOOPENGINE_HOME environment variable
- ~/.loopengine
"""

import logging
import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Optional

import yaml

from .constants import (
    FLUSH_DEBOUNCE_SECONDS,
    KILL_GRACE_SECONDS,
    MANIFEST_FILE,
    MAX_LOG_LENGTH,
    PRD_FILE,
)

logger = logging.getLogger(__name__)

HOME_ENV_VAR = "LOOPENGINE_HOME"
DEFAULT_HOME = Path("~/.loopengine")
CONFIG_FILE = "engine.yaml"


@dataclass
class EngineConfig:
    """Engine settings from engine.yaml."""
    home: Path
    tickets_file: str = "tickets.json"  # Relative to home
    max_log_length: int = MAX_LOG_LENGTH
    kill_grace_seconds: float = KILL_GRACE_SECONDS
    flush_debounce_seconds: float = FLUSH_DEBOUNCE_SECONDS
    prd_timeout: int = 300  # Seconds allowed for PRD generation
    prd_file: str = PRD_FILE  # Relative to the ticket workspace
    manifest_file: str = MANIFEST_FILE  # Relative to the ticket workspace

    @property
    def tickets_path(self) -> Path:
        return self.home / self.tickets_file


# Keys that may appear in engine.yaml, with the type each value is coerced to
_YAML_KEYS = {
    f.name: f.type for f in fields(EngineConfig) if f.name != "home"
}


def resolve_home(home: Optional[Path | str] = None) -> Path:
    """Resolve the engine home directory."""
    if home:
        return Path(home).expanduser()
    env_home = os.environ.get(HOME_ENV_VAR)
    if env_home:
        return Path(env_home).expanduser()
    return DEFAULT_HOME.expanduser()


def load_engine_config(home: Optional[Path | str] = None) -> EngineConfig:
    """Load engine.yaml and return EngineConfig.

    Missing file, parse errors, and bad values fall back to defaults.
    """
    home_dir = resolve_home(home)
    config = EngineConfig(home=home_dir)

    config_path = home_dir / CONFIG_FILE
    if not config_path.exists():
        return config

    try:
        data = yaml.safe_load(config_path.read_text())
    except yaml.YAMLError as e:
        logger.warning(f"Failed to parse {config_path}: {e}")
        return config

    if not data:
        return config
    if not isinstance(data, dict):
        logger.warning(f"Ignoring {config_path}: expected a mapping, got {type(data).__name__}")
        return config

    for key, value in data.items():
        if key not in _YAML_KEYS:
            logger.warning(f"Unknown key '{key}' in {config_path}, ignoring")
            continue
        try:
            setattr(config, key, _YAML_KEYS[key](value))
        except (TypeError, ValueError):
            logger.warning(f"Invalid value for '{key}' in {config_path}: {value!r}")

    return config
