"""Claude Worktree Agent MCP Server

FastMCP server exposing feature worktree tools to AI agents.

Tools:
- feature_sync: rebase a feature worktree onto the latest base branch,
  delegating conflicts to an external agent
- worktree_health: configuration diagnostics
"""

import sys
if sys.version_info < (3, 10):
    raise RuntimeError(
        f"Worktree Agent MCP requires Python 3.10+; found {sys.version.split()[0]}"
    )

# Standard library imports
import json
import time

# Third-party imports
from fastmcp import FastMCP, Context

# Local application imports
from worktree_agent.config_loader import ConfigError
from .config import get_logging_config, get_sync_settings, get_transport_config, get_version
from .feature_sync import FeatureSyncOrchestrator
from .observability import configure_logging, log_action, log_error, log_warning
from .repository import FeatureSyncError

mcp = FastMCP(name="Claude Worktree Agent")


# Instrument FastMCP tool execution for observability
try:
    from fastmcp.tools.tool import FunctionTool  # type: ignore

    _orig_run = FunctionTool.run

    async def _instrumented_run(self, arguments):  # type: ignore
        tool_name = getattr(self, 'name', '<unknown>')
        input_chars = len(json.dumps(arguments)) if arguments else 0
        start_time = time.perf_counter()
        outcome = "ok"
        try:
            return await _orig_run(self, arguments)
        except Exception:
            outcome = "error"
            raise
        finally:
            duration_ms = (time.perf_counter() - start_time) * 1000.0
            log_action(
                "mcp.tool",
                tool_name=tool_name,
                input_chars=input_chars,
                duration_ms=duration_ms,
                outcome=outcome,
            )

    FunctionTool.run = _instrumented_run  # type: ignore
except ImportError:
    pass


@mcp.tool(name="feature_sync")
def feature_sync(ctx: Context, featureName: str) -> str:
    """Sync a feature branch with the latest main branch.

    Fetches the base branch, rebases feature/<featureName> onto it and, if
    the rebase conflicts, hands the conflicts to the configured agent
    (CLAUDE_COMMAND). If the agent cannot finish, the rebase is aborted
    and CONFLICTS.md is written in the worktree for manual resolution.

    Args:
        featureName: Name of the feature to sync (e.g. "user-dashboard")

    Returns:
        Narrative of the sync. Errors are returned as "❌ Error: ..." text.
    """
    try:
        settings = get_sync_settings()
        result = FeatureSyncOrchestrator(settings).sync(featureName)
        return result.to_text()
    except (ConfigError, FeatureSyncError) as e:
        log_error("feature_sync failed", feature=featureName, error=str(e), kind=type(e).__name__)
        return f"❌ Error: Failed to sync feature '{featureName}': {e}"


@mcp.tool(name="worktree_health")
def health(ctx: Context) -> str:
    """Check server health and configuration.

    Example output:
        Claude Worktree Agent MCP Server v0.1.0
        Status: Healthy
        Project Root: /path/to/project
        Worktrees Dir: /path/to/project/.worktrees
        Base: origin/main
        Agent: claude --dangerously-skip-permissions
    """
    version = get_version()
    try:
        settings = get_sync_settings()
    except ConfigError as e:
        return f"Claude Worktree Agent MCP Server v{version}\nStatus: Error\nError: {e}"

    worktrees_dir = settings.project_root / settings.worktrees_dir
    features = sorted(p.name for p in worktrees_dir.iterdir() if p.is_dir()) if worktrees_dir.is_dir() else []
    try:
        import fastmcp as _fm
        fm_ver = getattr(_fm, "__version__", "unknown")
    except ImportError:
        fm_ver = "not-importable"

    status_lines = [
        f"Claude Worktree Agent MCP Server v{version}",
        "Status: Healthy",
        f"Project Root: {settings.project_root}",
        f"Project Root Exists: {settings.project_root.is_dir()}",
        f"Worktrees Dir: {worktrees_dir}",
        f"Features: {', '.join(features) if features else 'none'}",
        f"Base: {settings.upstream}",
        f"Agent: {' '.join([settings.agent_command, *settings.agent_args])}",
        f"Python: {sys.executable or 'unknown'}",
        f"fastmcp: {fm_ver}",
    ]
    return "\n".join(status_lines)


def main():
    """Entry point for worktree-agent-mcp command."""
    try:
        configure_logging(**get_logging_config())
    except ConfigError as e:
        log_warning(f"Ignoring invalid logging configuration: {e}")

    transport_config = get_transport_config()

    if transport_config["transport"] == "http":
        host = transport_config["host"]
        port = transport_config["port"]
        print(f"Starting Claude Worktree Agent MCP Server on http://{host}:{port}", file=sys.stderr)
        mcp.run(transport="http", host=host, port=port)
    else:
        # stdio transport (default)
        mcp.run()


if __name__ == "__main__":
    main()
