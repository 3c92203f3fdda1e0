"""Configuration for Tether - root discovery, config.yml, layout paths."""

import copy
import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from loguru import logger

from tether_core.constants import (
    TETHER_DIR,
    CONFIG_FILE,
    DATA_SYNC_DIR,
    WORKSPACES_DIR,
    STATE_DB,
    DEFAULT_SYNC_BRANCH,
    DEFAULT_SYNC_REMOTE,
    DEFAULT_SYNC_WORKSPACE,
    DEFAULT_FETCH_TIMEOUT,
)
from tether_core.exceptions import ConfigError
from tether_core.utils import atomic_write_text

__all__ = [
    "DEFAULT_CONFIG",
    "find_root",
    "require_root",
    "get_config_path",
    "get_store_dir",
    "get_workspaces_dir",
    "get_state_db_path",
    "load_config",
    "write_config",
]

DEFAULT_CONFIG: Dict[str, Any] = {
    "prefix": "issue",
    "sync": {
        "branch": DEFAULT_SYNC_BRANCH,
        "remote": DEFAULT_SYNC_REMOTE,
        "workspace": DEFAULT_SYNC_WORKSPACE,
        "fetch_timeout": DEFAULT_FETCH_TIMEOUT,
    },
    "log_file": None,
}


def find_root(cwd: Optional[str] = None) -> Optional[Path]:
    """Find the tether root by walking up from cwd.

    Args:
        cwd: Starting directory (defaults to os.getcwd())

    Returns:
        Directory containing .tether/, or None if not inside a tether root
    """
    if cwd is None:
        cwd = os.getcwd()

    current_path = Path(cwd).resolve()

    for parent in [current_path] + list(current_path.parents):
        if (parent / TETHER_DIR / CONFIG_FILE).exists():
            return parent

    return None


def require_root(cwd: Optional[str] = None) -> Path:
    """Like find_root, but raises ConfigError outside a tether root."""
    root = find_root(cwd)
    if root is None:
        raise ConfigError("Not a tether repository. Run 'tether init' first.")
    return root


def get_config_path(root: Path) -> Path:
    return Path(root) / TETHER_DIR / CONFIG_FILE


def get_store_dir(root: Path) -> Path:
    """Record store (the sync branch working tree)."""
    return Path(root) / TETHER_DIR / DATA_SYNC_DIR


def get_workspaces_dir(root: Path) -> Path:
    return Path(root) / TETHER_DIR / WORKSPACES_DIR


def get_state_db_path(root: Path) -> Path:
    return Path(root) / TETHER_DIR / STATE_DB


def _merge_defaults(defaults: Dict[str, Any], loaded: Dict[str, Any]) -> Dict[str, Any]:
    merged = copy.deepcopy(defaults)
    for key, value in loaded.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge_defaults(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_config(root: Path) -> Dict[str, Any]:
    """Load .tether/config.yml, filling missing keys from DEFAULT_CONFIG.

    Args:
        root: Tether root directory

    Returns:
        Config dict with at least prefix, sync.{branch,remote,workspace,fetch_timeout}

    Raises:
        ConfigError: If the config file is missing or is not a YAML mapping
    """
    config_path = get_config_path(root)

    if not config_path.exists():
        raise ConfigError(f"Not a tether repository (no {config_path}). Run 'tether init' first.")

    try:
        loaded = yaml.safe_load(config_path.read_text()) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid config file {config_path}: {e}") from e

    if not isinstance(loaded, dict):
        raise ConfigError(f"Invalid config file {config_path}: expected a mapping")

    config = _merge_defaults(DEFAULT_CONFIG, loaded)
    logger.debug(f"Loaded config from {config_path}: sync={config['sync']}")
    return config


def write_config(root: Path, config: Dict[str, Any]) -> Path:
    """Write config.yml atomically with sorted keys."""
    config_path = get_config_path(root)
    atomic_write_text(config_path, yaml.safe_dump(config, sort_keys=True, default_flow_style=False))
    return config_path
