"""Configuration loading and merging for the worktree agent.

Handles TOML loading, project config discovery, deep merging, and
environment overlay. Environment variables take precedence over the
project config file so MCP client configurations (which usually only set
``env``) keep working without any file on disk.
"""

from __future__ import annotations

import os
import sys
from pathlib import Path
from typing import Any, Dict, Optional

# TOML loading: tomllib (3.11+) with tomli fallback
if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib  # type: ignore

from pydantic import ValidationError

from .config_schema import WorktreeAgentConfig


CONFIG_FILENAME = "config.toml"
PROJECT_CONFIG_DIR = ".worktree-agent"

# Environment variable -> (section path, key)
ENV_MAPPING: Dict[str, tuple[list[str], str]] = {
    "PROJECT_ROOT": ([], "project_root"),
    "CLAUDE_COMMAND": (["agent"], "command"),
    "CLAUDE_ARGS": (["agent"], "args"),
    "WORKTREE_AGENT_BASE_BRANCH": (["sync"], "base_branch"),
    "WORKTREE_AGENT_REMOTE": (["sync"], "remote"),
    "WORKTREE_AGENT_BRANCH_PREFIX": (["sync"], "branch_prefix"),
    "WORKTREE_AGENT_WORKTREES_DIR": (["sync"], "worktrees_dir"),
    "WORKTREE_AGENT_LOG_LEVEL": (["logging"], "level"),
    "WORKTREE_AGENT_LOG_DIR": (["logging"], "dir"),
    "WORKTREE_AGENT_LOG_DISABLE_FILE": (["logging"], "disable_file"),
}


class ConfigError(Exception):
    """Configuration loading or validation error."""

    pass


def _load_toml(path: Path) -> Dict[str, Any]:
    """Load a TOML file.

    Raises:
        ConfigError: If file cannot be loaded or parsed
    """
    try:
        with open(path, "rb") as f:
            return tomllib.load(f)
    except FileNotFoundError:
        raise ConfigError(f"Config file not found: {path}")
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"Invalid TOML in {path}: {e}")


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Deep merge two dictionaries.

    Override values take precedence. Nested dicts are merged recursively.
    Lists are replaced, not merged.
    """
    result = base.copy()

    for key, value in override.items():
        if (
            key in result
            and isinstance(result[key], dict)
            and isinstance(value, dict)
        ):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value

    return result


def _apply_env_overlay(config_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Apply environment variable overrides to config dict."""
    result = _deep_merge({}, config_dict)

    for env_var, (section_path, key_name) in ENV_MAPPING.items():
        value = os.getenv(env_var)
        if value is None or value == "":
            continue

        current = result
        for section in section_path:
            if section not in current or not isinstance(current[section], dict):
                current[section] = {}
            current = current[section]

        # Type conversion happens during Pydantic validation
        current[key_name] = value

    return result


def get_project_config_path(project_path: Optional[Path]) -> Optional[Path]:
    """Return ``<project>/.worktree-agent/config.toml`` if it exists."""
    if project_path is None:
        return None
    candidate = Path(project_path).expanduser() / PROJECT_CONFIG_DIR / CONFIG_FILENAME
    return candidate if candidate.is_file() else None


def load_config(
    project_path: Optional[Path] = None,
    skip_env: bool = False,
) -> WorktreeAgentConfig:
    """Load and merge configuration.

    Discovery order (later sources override earlier):
    1. Built-in defaults
    2. Project config (``<project>/.worktree-agent/config.toml``), where the
       project is ``project_path`` or, if omitted, ``PROJECT_ROOT``
    3. Environment variables (unless skip_env=True)

    Raises:
        ConfigError: If the config file or the merged values are invalid
    """
    config_dict: Dict[str, Any] = {}

    if project_path is None and not skip_env:
        env_root = os.getenv("PROJECT_ROOT")
        project_path = Path(env_root) if env_root else None

    project_config_path = get_project_config_path(project_path)
    if project_config_path is not None:
        try:
            config_dict = _deep_merge(config_dict, _load_toml(project_config_path))
        except ConfigError as e:
            raise ConfigError(f"Invalid project config: {e}")

    if project_path is not None and "project_root" not in config_dict:
        config_dict["project_root"] = str(project_path)

    if not skip_env:
        config_dict = _apply_env_overlay(config_dict)

    try:
        return WorktreeAgentConfig.model_validate(config_dict)
    except ValidationError as e:
        raise ConfigError(f"Config validation failed:\n{e}")


def require_project_root(config: WorktreeAgentConfig) -> Path:
    """Return the configured project root or raise ConfigError."""
    if not config.project_root:
        raise ConfigError(
            "PROJECT_ROOT environment variable not set. Add "
            '"env": {"PROJECT_ROOT": "/path/to/your/project"} to your MCP configuration.'
        )
    return Path(config.project_root).expanduser().resolve()
