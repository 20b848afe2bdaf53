"""Git repository handle for a single feature worktree.

Thin wrapper over GitPython bound to one working directory. Every git call
runs with that directory as its cwd; nothing here touches the process-wide
current directory, so syncs of different features can run side by side.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

from git import Repo
from git.exc import GitCommandError, InvalidGitRepositoryError, NoSuchPathError

from .observability import log_debug


# Porcelain XY codes git uses for unmerged paths
CONFLICT_CODES = frozenset({"DD", "AU", "UD", "UA", "DU", "AA", "UU"})
# Unmerged codes where one side deleted the path
DELETION_CODES = frozenset({"DD", "DU", "UD"})

# Fail fast instead of waiting for input that will never come (stdin belongs to MCP)
GIT_ENV: Dict[str, str] = {
    "GIT_TERMINAL_PROMPT": "0",
    "GCM_INTERACTIVE": "never",
    "GIT_EDITOR": "true",
    "GIT_SEQUENCE_EDITOR": "true",
}

_AUTH_TOKENS = (
    "authentication failed",
    "permission denied",
    "could not read username",
    "could not read password",
    "access denied",
    "invalid username or password",
    "the requested url returned error: 403",
)


class FeatureSyncError(Exception):
    """Base exception for feature sync operations."""
    pass


class NotFoundError(FeatureSyncError):
    """Feature worktree does not exist."""
    pass


class InvalidRepositoryError(FeatureSyncError):
    """Worktree directory is not a git repository."""
    pass


class ConflictInProgressError(FeatureSyncError):
    """A rebase is already in progress in the worktree."""
    pass


class UnmergedPathsError(FeatureSyncError):
    """Worktree has unmerged paths but no rebase in progress."""
    pass


class FetchError(FeatureSyncError):
    """Failed to fetch the base branch from the remote."""
    pass


class NetworkError(FetchError):
    """Remote could not be reached."""
    pass


class AuthError(FetchError):
    """Remote rejected our credentials."""
    pass


class RefNotFoundError(FeatureSyncError):
    """Ref does not exist locally."""
    pass


class RebaseError(FeatureSyncError):
    """A rebase command (start, continue or abort) failed."""
    pass


@dataclass(frozen=True)
class ConflictEntry:
    """One unmerged path as reported by ``git status``."""
    path: str
    code: str

    @property
    def is_deletion(self) -> bool:
        return self.code in DELETION_CODES


@dataclass
class RepositoryStatus:
    conflicted: List[ConflictEntry] = field(default_factory=list)
    dirty: bool = False

    @property
    def conflicted_paths(self) -> List[str]:
        return [entry.path for entry in self.conflicted]


def parse_porcelain_z(output: str) -> RepositoryStatus:
    """Parse ``git status --porcelain=v1 -z`` output.

    Entry order is preserved. Renames and copies carry an extra NUL-separated
    source path which is skipped.
    """
    status = RepositoryStatus()
    tokens = output.split("\0")
    i = 0
    while i < len(tokens):
        token = tokens[i]
        i += 1
        if len(token) < 4:
            continue
        xy, path = token[:2], token[3:]
        if xy[0] in "RC":
            i += 1  # source path of the rename/copy
        if xy in CONFLICT_CODES:
            status.conflicted.append(ConflictEntry(path=path, code=xy))
            status.dirty = True
        elif xy != "??" and xy != "!!":
            status.dirty = True
    return status


class WorktreeRepository:
    """Git operations for one feature worktree.

    Attributes:
        path: Worktree directory; all commands run with it as cwd
        repo: Underlying GitPython Repo

    Thread Safety:
        Not thread-safe. One instance belongs to one sync attempt.
    """

    def __init__(self, repo: Repo, path: Path, env: Optional[Dict[str, str]] = None):
        self.repo = repo
        self.path = Path(path)
        self._env = dict(GIT_ENV)
        if env:
            self._env.update(env)

    @classmethod
    def open(cls, path: Path, env: Optional[Dict[str, str]] = None) -> "WorktreeRepository":
        """Open the repository rooted exactly at ``path``.

        Raises:
            InvalidRepositoryError: If ``path`` is not a git working tree
        """
        try:
            repo = Repo(path)
        except (InvalidGitRepositoryError, NoSuchPathError):
            raise InvalidRepositoryError(f"Worktree directory is not a git repository: {path}")
        if repo.bare:
            raise InvalidRepositoryError(f"Worktree directory is a bare repository: {path}")
        return cls(repo, Path(path), env=env)

    # ------------------------------------------------------------------
    # Remote
    # ------------------------------------------------------------------

    def fetch(self, remote: str, ref: str) -> None:
        """Fetch ``ref`` from ``remote`` into its remote-tracking branch.

        Raises:
            AuthError: Remote rejected the credentials
            NetworkError: Any other transport failure
        """
        log_debug(f"GIT_OP_START: fetch {remote} {ref}", cwd=str(self.path))
        try:
            self.repo.git.fetch(remote, ref, env=self._env)
        except GitCommandError as e:
            stderr = (e.stderr or str(e)).lower()
            if any(token in stderr for token in _AUTH_TOKENS):
                raise AuthError(f"Authentication failed fetching {remote}/{ref}: {e}") from e
            raise NetworkError(f"Failed to fetch {remote}/{ref}: {e}") from e
        log_debug(f"GIT_OP_END: fetch {remote} {ref}")

    # ------------------------------------------------------------------
    # Refs and history
    # ------------------------------------------------------------------

    def ref_exists(self, ref: str) -> bool:
        try:
            self.repo.git.rev_parse("--verify", "--quiet", f"{ref}^{{commit}}")
            return True
        except GitCommandError:
            return False

    def checkout(self, ref: str) -> None:
        """Switch the working tree to ``ref``.

        Raises:
            RefNotFoundError: ``ref`` does not resolve to a commit
            FeatureSyncError: git refused the checkout
        """
        if not self.ref_exists(ref):
            raise RefNotFoundError(f"Ref '{ref}' not found in {self.path}")
        try:
            self.repo.git.checkout(ref, env=self._env)
        except GitCommandError as e:
            raise FeatureSyncError(f"Failed to checkout '{ref}': {e}") from e

    def current_branch(self) -> Optional[str]:
        """Active branch name, or None if detached HEAD."""
        try:
            if self.repo.head.is_detached:
                return None
            return self.repo.active_branch.name
        except (TypeError, ValueError):
            return None

    def count_commits(self, rev_range: str) -> int:
        """Number of commits in ``rev_range`` (e.g. ``origin/main..HEAD``)."""
        return sum(1 for _ in self.repo.iter_commits(rev_range))

    def is_ancestor(self, ancestor: str, descendant: str = "HEAD") -> bool:
        try:
            return self.repo.is_ancestor(ancestor, descendant)
        except GitCommandError:
            return False

    # ------------------------------------------------------------------
    # Rebase
    # ------------------------------------------------------------------

    def rebase(self, onto: str) -> None:
        """Replay the current branch onto ``onto``.

        Raises:
            RebaseError: For any failure. Callers decide whether it was a
                conflict by inspecting ``status()`` afterwards.
        """
        log_debug(f"GIT_OP_START: rebase onto {onto}", cwd=str(self.path))
        try:
            self.repo.git.rebase(onto, env=self._env)
        except GitCommandError as e:
            log_debug(f"GIT_OP_FAIL: rebase onto {onto}: {e}")
            raise RebaseError(str(e)) from e
        log_debug(f"GIT_OP_END: rebase onto {onto}")

    def rebase_continue(self) -> None:
        try:
            self.repo.git.rebase("--continue", env=self._env)
        except GitCommandError as e:
            raise RebaseError(str(e)) from e

    def rebase_abort(self) -> None:
        try:
            self.repo.git.rebase("--abort", env=self._env)
        except GitCommandError as e:
            raise RebaseError(str(e)) from e

    def _git_path(self, name: str) -> Path:
        # Worktrees keep their rebase state under .git/worktrees/<name>/
        raw = self.repo.git.rev_parse("--git-path", name)
        path = Path(raw)
        if not path.is_absolute():
            path = self.path / path
        return path

    def is_rebase_in_progress(self) -> bool:
        """Check for rebase-control metadata in this worktree's git dir."""
        return any(self._git_path(name).exists() for name in ("rebase-merge", "rebase-apply"))

    # ------------------------------------------------------------------
    # Working tree
    # ------------------------------------------------------------------

    def status(self) -> RepositoryStatus:
        """Conflicted paths (in git's order) and whether tracked files are modified."""
        try:
            output = self.repo.git.status("--porcelain=v1", "-z", "--untracked-files=no")
        except GitCommandError as e:
            raise FeatureSyncError(f"Failed to read status of {self.path}: {e}") from e
        return parse_porcelain_z(output)

    def stash_push(self, message: str) -> Optional[str]:
        """Stash tracked modifications. Returns the stash message or None if nothing to stash."""
        if not self.status().dirty:
            return None
        result = self.repo.git.stash("push", "-m", message, env=self._env)
        if "No local changes" in result:
            return None
        log_debug(f"Stashed changes: {message}")
        return message

    def stash_pop(self) -> bool:
        """Pop the most recent stash.

        When the pop conflicts, git keeps the stash but leaves unmerged paths
        behind. Those are discarded with ``git reset --merge`` so the tree is
        back at HEAD, and False is returned. The changes stay in the stash.
        """
        try:
            self.repo.git.stash("pop", env=self._env)
            return True
        except GitCommandError as e:
            log_debug(f"Stash pop failed (stash preserved): {e}")
        try:
            self.repo.git.reset("--merge", env=self._env)
        except GitCommandError as e:
            raise FeatureSyncError(f"Failed to reset {self.path} after a failed stash pop: {e}") from e
        return False
