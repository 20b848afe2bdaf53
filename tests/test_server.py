from __future__ import annotations

import logging

import pytest

from worktree_agent_mcp import server
from worktree_agent_mcp.conflict_report import REPORT_FILENAME


@pytest.fixture
def project_env(sync_project, monkeypatch):
    monkeypatch.setenv("PROJECT_ROOT", str(sync_project.root))
    # Never launch a real agent from tests
    monkeypatch.setenv("CLAUDE_COMMAND", "worktree-agent-test-missing-agent")
    return sync_project


def test_feature_sync_tool_up_to_date(project_env):
    output = server.feature_sync.fn(None, featureName="alpha")
    assert "Syncing feature 'alpha'" in output
    assert "already up to date" in output
    assert "0 commits ahead of main" in output


def test_feature_sync_tool_clean(project_env):
    project_env.upstream_commit("upstream.txt", "from main\n")
    output = server.feature_sync.fn(None, featureName="alpha")
    assert "Rebase completed successfully" in output


def test_feature_sync_tool_manual_when_agent_missing(project_env):
    project_env.upstream_commit("app.txt", "line 1\nmain line 2\nline 3\n")
    project_env.feature_commit("app.txt", "line 1\nfeature line 2\nline 3\n")

    output = server.feature_sync.fn(None, featureName="alpha")

    assert "conflict detected in:" in output
    assert "   - app.txt" in output
    assert "worktree-agent-test-missing-agent" in output
    assert REPORT_FILENAME in output
    assert (project_env.worktree / REPORT_FILENAME).exists()


def test_feature_sync_tool_unknown_feature(project_env):
    output = server.feature_sync.fn(None, featureName="ghost")
    assert output.startswith("❌ Error: Failed to sync feature 'ghost'")
    assert "not found" in output


def test_feature_sync_tool_without_project_root(clean_env):
    output = server.feature_sync.fn(None, featureName="alpha")
    assert output.startswith("❌ Error:")
    assert "PROJECT_ROOT environment variable not set" in output


def test_health_reports_configuration(project_env):
    output = server.health.fn(None)
    assert "Status: Healthy" in output
    assert f"Project Root: {project_env.root.resolve()}" in output
    assert "Features: alpha" in output
    assert "Base: origin/main" in output
    assert "Agent: worktree-agent-test-missing-agent --dangerously-skip-permissions" in output


def test_health_without_project_root(clean_env):
    output = server.health.fn(None)
    assert "Status: Error" in output


def test_main_applies_logging_config_before_serving(clean_env, tmp_path, monkeypatch):
    from worktree_agent_mcp import observability as obs

    config_dir = tmp_path / ".worktree-agent"
    config_dir.mkdir()
    (config_dir / "config.toml").write_text('[logging]\nlevel = "DEBUG"\n')
    clean_env.setenv("PROJECT_ROOT", str(tmp_path))
    runs = []
    monkeypatch.setattr(server.mcp, "run", lambda **kwargs: runs.append(kwargs))
    monkeypatch.setattr(obs, "_configured", {})

    server.main()

    assert runs == [{}]
    assert obs._configured["level"] == "DEBUG"
    assert obs._get_log_level() == logging.DEBUG
