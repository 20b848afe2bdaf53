"""Feature sync: rebase a feature worktree onto the moving base branch.

State machine for one call::

    START -> FETCHING -> REBASING -> CLEAN_SUCCESS
                                  -> CONFLICTED -> DELEGATING -> RESOLVED_SUCCESS
                                                              -> MANUAL_REQUIRED
    (every terminal state) -> END

Whether a failed rebase was a conflict is decided from the repository
status alone, never from git's error text. Conflicts and a failed
delegation are results, not exceptions; only configuration, precondition,
fetch, ref and non-conflict rebase failures raise.

Every path leaves the worktree fully rebased or fully aborted. A dirty
working tree is stashed before the rebase and popped again afterwards.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, List, Optional

from worktree_agent.features import branch_name, canonical_feature_name, worktree_exists, worktree_path

from .config import SyncSettings
from .conflict_report import build_conflict_report, remove_conflict_report, write_conflict_report
from .conflicts import ConflictSet, extract_conflicts
from .delegate import ResolutionDelegate
from .observability import log_debug, log_error, log_warning, timeit
from .repository import (
    ConflictInProgressError,
    NotFoundError,
    RebaseError,
    RefNotFoundError,
    UnmergedPathsError,
    WorktreeRepository,
)


class SyncState(str, Enum):
    START = "start"
    FETCHING = "fetching"
    REBASING = "rebasing"
    CLEAN_SUCCESS = "clean_success"
    CONFLICTED = "conflicted"
    DELEGATING = "delegating"
    RESOLVED_SUCCESS = "resolved_success"
    MANUAL_REQUIRED = "manual_required"
    END = "end"


class SyncStatus(str, Enum):
    UP_TO_DATE = "up_to_date"
    SYNCED_CLEAN = "synced_clean"
    SYNCED_AFTER_RESOLUTION = "synced_after_resolution"
    MANUAL_REQUIRED = "manual_intervention_required"


@dataclass
class SyncResult:
    """What a sync call reports back.

    Attributes:
        feature: Canonical feature name
        status: Outcome tag
        lines: Human-readable narrative, in order
        commits_ahead: Feature commits on top of the base (successful outcomes only)
        report_path: Where CONFLICTS.md was written (manual outcome only)
        conflicted_files: Paths that conflicted during this attempt
        warnings: Non-fatal problems (e.g. a stash that could not be restored)
    """
    feature: str
    status: SyncStatus
    lines: List[str] = field(default_factory=list)
    commits_ahead: Optional[int] = None
    report_path: Optional[Path] = None
    conflicted_files: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.status != SyncStatus.MANUAL_REQUIRED

    def to_text(self) -> str:
        out = list(self.lines)
        if self.warnings:
            out.append("")
            out.append("⚠️  Warnings:")
            out.extend(f"   - {w}" for w in self.warnings)
        return "\n".join(out)


@dataclass
class SyncAttempt:
    """Working state of one call. Discarded when the call returns."""
    feature: str
    branch: str
    worktree: Path
    base_branch: str
    upstream: str
    state: SyncState = SyncState.START
    lines: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    conflict_set: Optional[ConflictSet] = None
    stash: Optional[str] = None
    report_path: Optional[Path] = None

    def transition(self, state: SyncState) -> None:
        log_debug(f"feature_sync {self.feature}: {self.state.value} -> {state.value}")
        self.state = state

    def say(self, line: str = "") -> None:
        self.lines.append(line)


RepoFactory = Callable[[Path], WorktreeRepository]


class FeatureSyncOrchestrator:
    """Runs the sync workflow for feature worktrees under one project root."""

    def __init__(
        self,
        settings: SyncSettings,
        delegate: Optional[ResolutionDelegate] = None,
        repo_factory: Optional[RepoFactory] = None,
    ):
        self.settings = settings
        self.delegate = delegate or ResolutionDelegate(
            settings.agent_command, settings.agent_args
        )
        self.repo_factory: RepoFactory = repo_factory or WorktreeRepository.open

    def sync(self, feature_name: str) -> SyncResult:
        """Bring ``feature/<name>`` up to date with the remote base branch.

        Raises:
            ConfigError: Bad feature name
            NotFoundError: No worktree for the feature
            InvalidRepositoryError: Worktree directory is not a repository
            ConflictInProgressError: A rebase is already in progress there
            UnmergedPathsError: Unmerged paths left behind without a rebase
            FetchError: The base branch could not be fetched
            RefNotFoundError: The feature branch or upstream ref is missing
            RebaseError: The rebase failed for a reason other than conflicts
        """
        feature = canonical_feature_name(feature_name)
        settings = self.settings
        attempt = SyncAttempt(
            feature=feature,
            branch=branch_name(feature, settings.branch_prefix),
            worktree=worktree_path(settings.project_root, feature, settings.worktrees_dir),
            base_branch=settings.base_branch,
            upstream=settings.upstream,
        )
        with timeit("feature_sync", feature=feature) as info:
            result = self._run(attempt)
            info["outcome"] = result.status.value
            info["output_chars"] = len(result.to_text())
        attempt.transition(SyncState.END)
        return result

    # ------------------------------------------------------------------
    # Workflow
    # ------------------------------------------------------------------

    def _run(self, attempt: SyncAttempt) -> SyncResult:
        # START: nothing is touched until every precondition holds
        if not worktree_exists(self.settings.project_root, attempt.feature, self.settings.worktrees_dir):
            raise NotFoundError(
                f"Feature '{attempt.feature}' not found at '{attempt.worktree}'. "
                "Create the feature worktree first."
            )
        repo = self.repo_factory(attempt.worktree)
        if repo.is_rebase_in_progress():
            raise ConflictInProgressError(
                f"A rebase is already in progress in '{attempt.worktree}'. "
                "Finish it with 'git rebase --continue' or drop it with 'git rebase --abort'."
            )
        unmerged = repo.status().conflicted_paths
        if unmerged:
            # Left over from a merge or stash pop, not from a rebase we could resolve
            raise UnmergedPathsError(
                f"'{attempt.worktree}' has unmerged paths with no rebase in progress: "
                f"{', '.join(unmerged)}. Resolve and 'git add' them, or discard them with "
                "'git reset --merge', then run feature_sync again."
            )

        attempt.say(f"🔄 Syncing feature '{attempt.feature}' to {attempt.base_branch}...")
        attempt.say()

        attempt.transition(SyncState.FETCHING)
        repo.fetch(self.settings.remote, attempt.base_branch)
        if not repo.ref_exists(attempt.upstream):
            raise RefNotFoundError(f"Upstream ref '{attempt.upstream}' not found after fetch")
        if not repo.ref_exists(attempt.branch):
            raise RefNotFoundError(f"Feature branch '{attempt.branch}' not found in '{attempt.worktree}'")

        behind = repo.count_commits(f"{attempt.branch}..{attempt.upstream}")
        if behind == 0:
            attempt.say(f"📥 Fetched {attempt.upstream} (already up to date)")
            attempt.transition(SyncState.CLEAN_SUCCESS)
            return self._succeed(attempt, repo, SyncStatus.UP_TO_DATE)
        attempt.say(f"📥 Fetched {attempt.upstream} ({behind} new commit{'s' if behind != 1 else ''})")

        attempt.stash = repo.stash_push(f"worktree-agent: pre-sync {attempt.feature}")
        if attempt.stash:
            attempt.say("📦 Stashed uncommitted changes")
        try:
            status = self._rebase(attempt, repo)
        except Exception:
            self._abort_if_in_progress(attempt, repo, strict=False)
            self._restore_stash(attempt, repo)
            raise
        self._restore_stash(attempt, repo)

        if status == SyncStatus.MANUAL_REQUIRED:
            return self._result(attempt, status)
        return self._succeed(attempt, repo, status)

    def _rebase(self, attempt: SyncAttempt, repo: WorktreeRepository) -> SyncStatus:
        if repo.current_branch() != attempt.branch:
            repo.checkout(attempt.branch)

        attempt.transition(SyncState.REBASING)
        attempt.say(f"🔀 Rebasing {attempt.branch} onto {attempt.upstream}...")
        try:
            repo.rebase(attempt.upstream)
        except RebaseError:
            if not repo.status().conflicted:
                # Not a conflict: the caller aborts and re-raises unchanged
                raise
            return self._resolve(attempt, repo)

        attempt.transition(SyncState.CLEAN_SUCCESS)
        attempt.say("✅ Rebase completed successfully!")
        return SyncStatus.SYNCED_CLEAN

    def _resolve(self, attempt: SyncAttempt, repo: WorktreeRepository) -> SyncStatus:
        attempt.transition(SyncState.CONFLICTED)
        conflict_set = extract_conflicts(repo)
        attempt.conflict_set = conflict_set
        attempt.say(f"⚠️  {len(conflict_set)} conflict{'s' if len(conflict_set) != 1 else ''} detected in:")
        for path in conflict_set.paths:
            attempt.say(f"   - {path}")
        attempt.say()

        attempt.transition(SyncState.DELEGATING)
        attempt.say("🤖 Launching agent for conflict resolution...")
        outcome = self.delegate.attempt(
            repo,
            conflict_set,
            attempt.feature,
            attempt.base_branch,
            attempt.worktree,
            feature_branch=attempt.branch,
        )
        if outcome.resolved and self._complete_rebase(attempt, repo):
            attempt.transition(SyncState.RESOLVED_SUCCESS)
            attempt.say(f"✅ Agent resolved conflicts ({attempt.base_branch}-first strategy)")
            return SyncStatus.SYNCED_AFTER_RESOLUTION

        attempt.transition(SyncState.MANUAL_REQUIRED)
        reason = outcome.error or "rebase could not be completed"
        attempt.say(f"🤖 Agent could not complete conflict resolution: {reason}")
        self._abort_if_in_progress(attempt, repo, strict=True)

        report = build_conflict_report(
            conflict_set,
            attempt.feature,
            attempt.base_branch,
            remote=self.settings.remote,
            feature_branch=attempt.branch,
        )
        attempt.report_path = write_conflict_report(attempt.worktree, report)
        attempt.say(f"📋 Conflict details saved to {attempt.report_path}")
        attempt.say()
        attempt.say("Next steps: Review conflicts manually, then run feature_sync again")
        return SyncStatus.MANUAL_REQUIRED

    def _complete_rebase(self, attempt: SyncAttempt, repo: WorktreeRepository) -> bool:
        """Finish a rebase the agent left open and check the result landed on the base."""
        if repo.is_rebase_in_progress():
            try:
                repo.rebase_continue()
            except RebaseError as e:
                log_warning("rebase --continue failed after agent run", feature=attempt.feature, error=str(e))
                return False
        if repo.status().conflicted:
            return False
        if not repo.is_ancestor(attempt.upstream, "HEAD"):
            # Agent aborted or reset instead of resolving
            log_warning("HEAD does not contain upstream after agent run", feature=attempt.feature)
            return False
        return True

    # ------------------------------------------------------------------
    # Cleanup and results
    # ------------------------------------------------------------------

    def _abort_if_in_progress(self, attempt: SyncAttempt, repo: WorktreeRepository, *, strict: bool) -> None:
        try:
            if not repo.is_rebase_in_progress():
                return
            repo.rebase_abort()
            log_debug(f"feature_sync {attempt.feature}: rebase aborted")
        except RebaseError as e:
            if strict:
                raise
            log_error("rebase --abort failed", feature=attempt.feature, error=str(e))

    def _restore_stash(self, attempt: SyncAttempt, repo: WorktreeRepository) -> None:
        if not attempt.stash:
            return
        if repo.stash_pop():
            attempt.say("📦 Restored uncommitted changes")
        else:
            msg = (
                "Could not restore stashed changes; the working tree was reset to the rebased "
                f"commit and the changes remain in 'git stash list' as '{attempt.stash}'"
            )
            log_warning(msg, feature=attempt.feature)
            attempt.warnings.append(msg)
        attempt.stash = None

    def _succeed(self, attempt: SyncAttempt, repo: WorktreeRepository, status: SyncStatus) -> SyncResult:
        if remove_conflict_report(attempt.worktree):
            attempt.say("🧹 Removed stale CONFLICTS.md")
        ahead = repo.count_commits(f"{attempt.upstream}..{attempt.branch}")
        dirty = repo.status().dirty
        attempt.say()
        attempt.say("📊 **Sync Summary:**")
        attempt.say(f"   Feature branch is now {ahead} commits ahead of {attempt.base_branch}")
        attempt.say(f"   Working directory: {'has uncommitted changes' if dirty else 'clean'}")
        result = self._result(attempt, status)
        result.commits_ahead = ahead
        return result

    def _result(self, attempt: SyncAttempt, status: SyncStatus) -> SyncResult:
        return SyncResult(
            feature=attempt.feature,
            status=status,
            lines=list(attempt.lines),
            report_path=attempt.report_path,
            conflicted_files=attempt.conflict_set.paths if attempt.conflict_set else [],
            warnings=list(attempt.warnings),
        )
