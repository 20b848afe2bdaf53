"""Hand a conflicted rebase to an external autonomous agent.

The agent gets a prompt on stdin and runs with the worktree as its cwd. It
is expected to edit the conflicted files, stage them and continue the
rebase itself. Whatever it reports, the verdict comes from re-reading the
repository status afterwards.
"""

from __future__ import annotations

import os
import signal
import subprocess
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Optional, Sequence

from .conflicts import ConflictSet
from .observability import log_debug, log_warning, timeit
from .repository import FeatureSyncError, WorktreeRepository

# Fixed bound on the agent run
DELEGATE_TIMEOUT_SECONDS = 300


@dataclass
class ProcessResult:
    stdout: str
    exit_code: int


@dataclass
class DelegateOutcome:
    """Result of one delegation.

    Attributes:
        resolved: True if no conflicted paths remained after the agent exited
        transcript: Captured agent stdout (may be empty)
        error: Why the agent could not be run to completion, if it couldn't
    """
    resolved: bool
    transcript: str = ""
    error: Optional[str] = None


Runner = Callable[..., ProcessResult]


def run_process(
    command: str,
    args: Sequence[str],
    *,
    input: str,
    cwd: Path,
    timeout: float,
) -> ProcessResult:
    """Run ``command`` with ``input`` on stdin and capture its stdout.

    On Unix the child gets its own process group so a timeout kills the
    whole tree, not just the top process.

    Raises:
        OSError: The command could not be started
        subprocess.TimeoutExpired: The command outlived ``timeout``
    """
    cmd = [command, *args]
    use_process_group = sys.platform != "win32"
    process = subprocess.Popen(
        cmd,
        cwd=str(cwd),
        stdin=subprocess.PIPE,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        text=True,
        start_new_session=use_process_group,
    )
    try:
        stdout, _stderr = process.communicate(input=input, timeout=timeout)
    except subprocess.TimeoutExpired:
        if use_process_group:
            try:
                os.killpg(process.pid, signal.SIGKILL)
            except ProcessLookupError:
                pass  # already gone
        else:
            process.kill()
        process.communicate()
        raise
    return ProcessResult(stdout=stdout or "", exit_code=process.returncode)


def build_resolution_prompt(
    conflict_set: ConflictSet,
    feature: str,
    base_branch: str,
    *,
    feature_branch: Optional[str] = None,
) -> str:
    """Build the instructions handed to the agent on stdin.

    Only paths are listed; the agent reads the files itself.
    """
    feature_branch = feature_branch or f"feature/{feature}"
    file_lines = "\n".join(f"- {path}" for path in conflict_set.paths)
    return f"""# Conflict Resolution Instructions

You are resolving merge conflicts left by a feature sync.

## Context
- **Feature:** {feature}
- **Branch:** {feature_branch}
- **Operation:** rebasing {feature_branch} onto the latest {base_branch}
- **Strategy:** {base_branch}-first (prefer {base_branch} when in doubt)

## Conflicted Files
{file_lines}

## Your Task
1. Read each conflicted file and work out what changed on {base_branch} and on the feature.
2. Resolve every conflict:
   - When in doubt, keep the {base_branch} version
   - Keep feature additions that do not contradict the intent of {base_branch}
   - Follow {base_branch} on style and structural changes
3. Check that the code still works after the resolution.
4. Stage the resolved files and continue the rebase.

## Commands to run after resolution
```bash
git add .
git rebase --continue
```

## Notes
- A rebase is in progress in this directory; resolve it, do not abort it.
- Repeat steps 1-4 if continuing stops on another conflicted commit.
"""


class ResolutionDelegate:
    """Runs the external agent against a conflicted worktree.

    Never continues or aborts the rebase itself; that stays with the caller.
    """

    def __init__(
        self,
        command: str = "claude",
        args: Optional[Sequence[str]] = None,
        runner: Optional[Runner] = None,
        timeout: float = DELEGATE_TIMEOUT_SECONDS,
    ):
        self.command = command
        self.args: List[str] = list(args) if args is not None else ["--dangerously-skip-permissions"]
        self.runner: Runner = runner or run_process
        self.timeout = timeout

    def attempt(
        self,
        repo: WorktreeRepository,
        conflict_set: ConflictSet,
        feature: str,
        base_branch: str,
        worktree: Path,
        *,
        feature_branch: Optional[str] = None,
    ) -> DelegateOutcome:
        prompt = build_resolution_prompt(
            conflict_set, feature, base_branch, feature_branch=feature_branch
        )
        with timeit("delegate.run", input_chars=len(prompt), feature=feature) as info:
            try:
                result = self.runner(
                    self.command,
                    self.args,
                    input=prompt,
                    cwd=worktree,
                    timeout=self.timeout,
                )
            except subprocess.TimeoutExpired:
                info["outcome"] = "timeout"
                log_warning(
                    "Conflict resolution agent timed out",
                    feature=feature,
                    timeout_s=self.timeout,
                )
                return DelegateOutcome(
                    resolved=False,
                    error=f"Agent timed out after {int(self.timeout)} seconds",
                )
            except OSError as e:
                info["outcome"] = "start_failed"
                log_warning(
                    "Conflict resolution agent could not be started",
                    feature=feature,
                    command=self.command,
                    error=str(e),
                )
                return DelegateOutcome(resolved=False, error=f"Could not start '{self.command}': {e}")

            info["output_chars"] = len(result.stdout)
            log_debug("Agent exited", feature=feature, exit_code=result.exit_code)

            try:
                remaining = repo.status().conflicted_paths
            except FeatureSyncError as e:
                info["outcome"] = "status_failed"
                return DelegateOutcome(resolved=False, transcript=result.stdout, error=str(e))

            if remaining:
                info["outcome"] = "unresolved"
                log_debug("Conflicts remain after agent run", paths=remaining)
                return DelegateOutcome(
                    resolved=False,
                    transcript=result.stdout,
                    error=f"{len(remaining)} conflicted file(s) remain",
                )
            info["outcome"] = "resolved"
            return DelegateOutcome(resolved=True, transcript=result.stdout)
