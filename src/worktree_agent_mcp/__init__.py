"""Claude Worktree Agent MCP Server

FastMCP server that keeps feature worktrees in sync with their base branch.
Conflicts are handed to an external agent; what it cannot resolve is written
to CONFLICTS.md in the worktree.
"""

from importlib.metadata import version, PackageNotFoundError

try:
    __version__ = version("claude-worktree-agent")
except PackageNotFoundError:
    __version__ = "0.0.0-dev"  # Fallback for editable installs without metadata

from .server import mcp

__all__ = ["mcp"]
