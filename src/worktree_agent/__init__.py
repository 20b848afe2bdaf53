"""Worktree agent core library: configuration and feature identity."""

from .config_loader import ConfigError, load_config
from .features import canonical_feature_name

__all__ = ["ConfigError", "load_config", "canonical_feature_name"]
