"""Manual-recovery document written when automatic resolution fails.

The report lives at ``CONFLICTS.md`` in the worktree root: a new failing
sync overwrites it, a successful sync deletes it.
"""

from __future__ import annotations

import re
import shlex
from pathlib import Path
from typing import List, Optional

from .conflicts import ConflictedFile, ConflictKind, ConflictSet

REPORT_FILENAME = "CONFLICTS.md"
REPORT_TITLE = "# Manual Conflict Resolution Guide"
FILES_HEADING = "## Conflicted Files"

_FENCE_RE = re.compile(r"^(`{3,})")
_BACKTICK_RUN_RE = re.compile(r"`+")


def _longest_backtick_run(text: str) -> int:
    return max((len(m.group(0)) for m in _BACKTICK_RUN_RE.finditer(text)), default=0)


def _inline_code(text: str) -> str:
    ticks = "`" * (_longest_backtick_run(text) + 1)
    if "`" in text:
        return f"{ticks} {text} {ticks}"
    return f"{ticks}{text}{ticks}"


def _strip_inline_code(text: str) -> str:
    match = re.fullmatch(r"(`+)(.*)\1", text, flags=re.DOTALL)
    if not match:
        return text
    inner = match.group(2)
    if len(match.group(1)) > 1 and inner.startswith(" ") and inner.endswith(" "):
        inner = inner[1:-1]
    return inner


def _fenced(text: str) -> List[str]:
    fence = "`" * max(3, _longest_backtick_run(text) + 1)
    body = text if text.endswith("\n") or not text else text + "\n"
    return [fence, body.rstrip("\n"), fence] if body else [fence, fence]


def _describe(conflicted: ConflictedFile) -> str:
    if conflicted.kind == ConflictKind.DELETION:
        return "Deletion conflict: one side deleted this file while the other changed it"
    if conflicted.kind == ConflictKind.BINARY:
        return "Binary or mode conflict: no text conflict markers found"
    count = conflicted.region_count
    return f"{count} conflict region{'s' if count != 1 else ''}"


def _render_file(conflicted: ConflictedFile, base_branch: str, feature_branch: str) -> List[str]:
    lines = [f"### {_inline_code(conflicted.path)}", "", f"- {_describe(conflicted)}", ""]
    for index, region in enumerate(conflicted.regions, start=1):
        lines.append(f"#### Region {index}")
        lines.append("")
        lines.append(f"**Upstream ({base_branch}){': ' + region.ours_label if region.ours_label else ''}**")
        lines.append("")
        lines.extend(_fenced(region.ours))
        lines.append("")
        if region.base is not None:
            lines.append("**Common ancestor**")
            lines.append("")
            lines.extend(_fenced(region.base))
            lines.append("")
        lines.append(f"**Feature ({feature_branch}){': ' + region.theirs_label if region.theirs_label else ''}**")
        lines.append("")
        lines.extend(_fenced(region.theirs))
        lines.append("")
    return lines


def build_conflict_report(
    conflict_set: ConflictSet,
    feature: str,
    base_branch: str,
    *,
    remote: str = "origin",
    feature_branch: Optional[str] = None,
) -> str:
    """Render the manual-recovery document for ``conflict_set``."""
    feature_branch = feature_branch or f"feature/{feature}"
    upstream = f"{remote}/{base_branch}"
    lines: List[str] = [
        REPORT_TITLE,
        "",
        f"- **Feature:** {feature}",
        f"- **Branch:** {feature_branch}",
        f"- **Base:** {upstream}",
        f"- **Conflicted files:** {len(conflict_set)}",
        "",
        "Automatic conflict resolution did not complete. The rebase was aborted, "
        f"so `{feature_branch}` is back at its pre-sync tip.",
        "",
        FILES_HEADING,
        "",
    ]
    for conflicted in conflict_set.files:
        lines.extend(_render_file(conflicted, base_branch, feature_branch))

    paths = " ".join(shlex.quote(p) for p in conflict_set.paths)
    lines.extend([
        "## Resolution Strategy",
        "",
        f"- When in doubt, prefer the changes from `{base_branch}`.",
        f"- Keep feature additions that do not conflict with the intent of `{base_branch}`.",
        f"- Follow `{base_branch}` on style and structural changes.",
        "- Make sure the feature still works on top of the new base.",
        "",
        "## How to Finish",
        "",
        "```bash",
        f"git rebase {upstream}",
        "# resolve the conflicts listed above, then:",
        f"git add {paths}" if paths else "git add <resolved files>",
        "git rebase --continue",
        "```",
        "",
        f"Finally run `feature_sync` for `{feature}` again to verify; "
        "a successful sync removes this file.",
        "",
    ])
    return "\n".join(lines)


def parse_report_paths(text: str) -> List[str]:
    """Recover the conflicted path list from a rendered report."""
    paths: List[str] = []
    in_files = False
    fence: Optional[str] = None
    for line in text.splitlines():
        if fence is not None:
            if line.strip() == fence:
                fence = None
            continue
        match = _FENCE_RE.match(line)
        if match:
            fence = match.group(1)
            continue
        if line.startswith("## "):
            in_files = line.strip() == FILES_HEADING
            continue
        if in_files and line.startswith("### "):
            paths.append(_strip_inline_code(line[4:]))
    return paths


def report_path(worktree: Path) -> Path:
    return Path(worktree) / REPORT_FILENAME


def write_conflict_report(worktree: Path, text: str) -> Path:
    path = report_path(worktree)
    path.write_text(text, encoding="utf-8")
    return path


def remove_conflict_report(worktree: Path) -> bool:
    """Delete a stale report. Returns True if one was removed."""
    path = report_path(worktree)
    try:
        path.unlink()
        return True
    except FileNotFoundError:
        return False
