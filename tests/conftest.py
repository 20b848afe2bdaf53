from __future__ import annotations

import os
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import pytest

# Keep test runs out of ~/.worktree-agent/logs
os.environ.setdefault("WORKTREE_AGENT_LOG_DISABLE_FILE", "1")

from git import Repo  # noqa: E402


def pytest_sessionstart(session):  # type: ignore[override]
    root = Path(__file__).resolve().parents[1]
    src = root / "src"
    if str(src) not in sys.path:
        sys.path.insert(0, str(src))
    # Ensure console scripts load in editable style as well
    os.environ.setdefault("PYTHONPATH", str(src))


_CONFIG_ENV = (
    "PROJECT_ROOT",
    "CLAUDE_COMMAND",
    "CLAUDE_ARGS",
    "WORKTREE_AGENT_BASE_BRANCH",
    "WORKTREE_AGENT_REMOTE",
    "WORKTREE_AGENT_BRANCH_PREFIX",
    "WORKTREE_AGENT_WORKTREES_DIR",
    "WORKTREE_AGENT_LOG_LEVEL",
    "WORKTREE_AGENT_LOG_DIR",
)


@pytest.fixture
def clean_env(monkeypatch):
    """Remove every configuration variable the loader reads."""
    for name in _CONFIG_ENV:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


@pytest.fixture
def git_identity(tmp_path: Path, clean_env):
    """Isolate git from the user's global config and give commits an author."""
    home = tmp_path / "home"
    home.mkdir()
    clean_env.setenv("HOME", str(home))
    clean_env.setenv("GIT_CONFIG_NOSYSTEM", "1")
    clean_env.setenv("GIT_AUTHOR_NAME", "Test")
    clean_env.setenv("GIT_AUTHOR_EMAIL", "test@example.com")
    clean_env.setenv("GIT_COMMITTER_NAME", "Test")
    clean_env.setenv("GIT_COMMITTER_EMAIL", "test@example.com")
    return clean_env


def _configure(repo: Repo) -> None:
    # Predictable conflict output across git versions
    with repo.config_writer() as config:
        config.set_value("rerere", "enabled", "false")
        config.set_value("merge", "conflictstyle", "merge")
        config.set_value("commit", "gpgsign", "false")


def _write_and_commit(repo: Repo, relpath: str, content: Optional[str], message: str) -> str:
    target = Path(repo.working_tree_dir) / relpath
    if content is None:
        repo.git.rm(relpath)
    else:
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(content)
        repo.git.add(relpath)
    repo.git.commit("-m", message)
    return repo.head.commit.hexsha


APP_CONTENT = "line 1\nline 2\nline 3\n"


@dataclass
class SyncProject:
    """A bare origin, a second clone playing the upstream developer, and a
    project clone with one feature worktree on ``feature/<feature>``."""

    origin: Path
    upstream: Path
    root: Path
    feature: str = "alpha"

    @property
    def worktree(self) -> Path:
        return self.root / ".worktrees" / self.feature

    @property
    def repo(self) -> Repo:
        return Repo(self.worktree)

    @property
    def branch(self) -> str:
        return f"feature/{self.feature}"

    def head(self) -> str:
        return self.repo.head.commit.hexsha

    def upstream_commit(self, relpath: str, content: Optional[str], message: str = "Upstream change") -> str:
        repo = Repo(self.upstream)
        sha = _write_and_commit(repo, relpath, content, message)
        repo.git.push("origin", "HEAD:main")
        return sha

    def feature_commit(self, relpath: str, content: Optional[str], message: str = "Feature change") -> str:
        return _write_and_commit(self.repo, relpath, content, message)

    def add_worktree(self, feature: str) -> Path:
        path = self.root / ".worktrees" / feature
        Repo(self.root).git.worktree("add", "-b", f"feature/{feature}", str(path), "origin/main")
        return path

    def settings(self, **overrides):
        from worktree_agent_mcp.config import SyncSettings

        return SyncSettings(project_root=self.root, **overrides)


@pytest.fixture
def sync_project(tmp_path: Path, git_identity) -> SyncProject:
    origin = tmp_path / "origin.git"
    Repo.init(origin, bare=True)

    upstream_path = tmp_path / "upstream"
    upstream = Repo.clone_from(str(origin), str(upstream_path))
    _configure(upstream)
    (upstream_path / "README.md").write_text("# Project\n")
    (upstream_path / "app.txt").write_text(APP_CONTENT)
    upstream.git.add("README.md", "app.txt")
    upstream.git.commit("-m", "Initial commit")
    upstream.git.checkout("-B", "main")
    upstream.git.push("origin", "HEAD:main")

    root = tmp_path / "project"
    project = Repo.clone_from(str(origin), str(root), branch="main")
    _configure(project)

    sp = SyncProject(origin=origin, upstream=upstream_path, root=root)
    sp.add_worktree(sp.feature)
    return sp
