"""Feature identity helpers.

A feature name is canonicalized once (lowercase, anything outside
``[a-z0-9-]`` becomes ``-``) and derives both the branch name and the
worktree directory.
"""

from __future__ import annotations

import re
from pathlib import Path

from .config_loader import ConfigError

DEFAULT_BRANCH_PREFIX = "feature/"
DEFAULT_WORKTREES_DIR = ".worktrees"

_UNSAFE_CHARS = re.compile(r"[^a-z0-9-]")


def canonical_feature_name(name: str) -> str:
    """Canonicalize a feature name.

    >>> canonical_feature_name("User Dashboard")
    'user-dashboard'
    """
    if name is None or not str(name).strip():
        raise ConfigError("Feature name is required")
    return _UNSAFE_CHARS.sub("-", str(name).strip().lower())


def branch_name(name: str, prefix: str = DEFAULT_BRANCH_PREFIX) -> str:
    return f"{prefix}{name}"


def worktree_path(
    project_root: Path,
    name: str,
    worktrees_dir: str = DEFAULT_WORKTREES_DIR,
) -> Path:
    return Path(project_root) / worktrees_dir / name


def worktree_exists(
    project_root: Path,
    name: str,
    worktrees_dir: str = DEFAULT_WORKTREES_DIR,
) -> bool:
    return worktree_path(project_root, name, worktrees_dir).is_dir()
